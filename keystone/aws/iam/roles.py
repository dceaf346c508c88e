"""
AWS IAM role utilities.

This module reads and writes the roles Keystone manages: role definitions
(trust policy, session ceiling), their inline permission fragments and their
managed policy attachments.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union
from urllib.parse import unquote

from mypy_boto3_iam.client import IAMClient

from ...types import PolicyDocument, Role
from ..helpers import paginate
from ..lookup import LookupResult, lookup

# Set up logging
logger = logging.getLogger(__name__)


@dataclass
class RoleRecord:
    """
    Observed state of an IAM role.

    Attributes:
        name: Role name
        arn: Role ARN
        path: IAM path
        trust_policy: Decoded AssumeRolePolicyDocument
        max_session_duration: Session ceiling in seconds
        description: Role description
        tags: Role tags
        attached_policy_arns: Managed policy ARNs, filled only when requested
    """
    name: str
    arn: str
    path: str
    trust_policy: PolicyDocument
    max_session_duration: int
    description: str = ""
    tags: Dict[str, str] = field(default_factory=dict)
    attached_policy_arns: List[str] = field(default_factory=list)


def decode_policy_document(document: Union[str, Dict[str, Any]], label: str) -> PolicyDocument:
    """
    Decode a policy document as returned by IAM.

    The policy can be either a URL-encoded JSON string or a dict.

    Args:
        document: Raw document from the API
        label: What the document belongs to, for error logging

    Returns:
        Policy document as a dict
    """
    if isinstance(document, dict):
        return document
    try:
        return json.loads(unquote(document))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse policy JSON for {label}: {e}")
        raise


def _describe_role(iam_client: IAMClient, role_name: str) -> RoleRecord:
    role = iam_client.get_role(RoleName=role_name)["Role"]
    return RoleRecord(
        name=role["RoleName"],
        arn=role["Arn"],
        path=role.get("Path", "/"),
        trust_policy=decode_policy_document(role["AssumeRolePolicyDocument"], f"role '{role_name}'"),  # type: ignore[arg-type]
        max_session_duration=role.get("MaxSessionDuration", 3600),
        description=role.get("Description", ""),
        tags={tag["Key"]: tag["Value"] for tag in role.get("Tags", [])},
    )


def find_role(iam_client: IAMClient, role_name: str) -> LookupResult[RoleRecord]:
    """
    Look up a role by name.

    Args:
        iam_client: IAM client for the target account
        role_name: Role name

    Returns:
        LookupResult holding the role record when present
    """
    return lookup(
        lambda: _describe_role(iam_client, role_name),
        not_found_codes={"NoSuchEntity"},
        operation="iam:GetRole",
        resource=role_name,
    )


def create_role(iam_client: IAMClient, role: Role, tags: List[Dict[str, str]]) -> str:
    """
    Create a role with its trust policy and session ceiling.

    Returns:
        ARN of the new role

    Raises:
        ClientError: On any API failure (EntityAlreadyExists included)
    """
    response = iam_client.create_role(
        RoleName=role.name,
        Path=role.path,
        AssumeRolePolicyDocument=json.dumps(role.trust_document()),
        Description=role.description,
        MaxSessionDuration=role.max_session_duration,
        Tags=tags,  # type: ignore[arg-type]
    )
    arn = response["Role"]["Arn"]
    logger.info(f"Created role {arn}")
    return arn


def update_trust_policy(iam_client: IAMClient, role_name: str, trust_policy: PolicyDocument) -> None:
    iam_client.update_assume_role_policy(RoleName=role_name, PolicyDocument=json.dumps(trust_policy))
    logger.info(f"Updated trust policy of role {role_name}")


def update_max_session_duration(iam_client: IAMClient, role_name: str, max_session_duration: int) -> None:
    iam_client.update_role(RoleName=role_name, MaxSessionDuration=max_session_duration)
    logger.info(f"Set max session duration of role {role_name} to {max_session_duration}s")


def _describe_inline_policy(iam_client: IAMClient, role_name: str, policy_name: str) -> PolicyDocument:
    response = iam_client.get_role_policy(RoleName=role_name, PolicyName=policy_name)
    return decode_policy_document(response["PolicyDocument"], f"policy '{policy_name}' on role '{role_name}'")  # type: ignore[arg-type]


def find_inline_policy(iam_client: IAMClient, role_name: str, policy_name: str) -> LookupResult[PolicyDocument]:
    """
    Look up an inline policy attached to a role.

    A missing role and a missing policy both report NoSuchEntity, so callers
    must only ask after the role is known to exist.
    """
    return lookup(
        lambda: _describe_inline_policy(iam_client, role_name, policy_name),
        not_found_codes={"NoSuchEntity"},
        operation="iam:GetRolePolicy",
        resource=f"{role_name}/{policy_name}",
    )


def put_inline_policy(iam_client: IAMClient, role_name: str, policy_name: str, document: PolicyDocument) -> None:
    iam_client.put_role_policy(RoleName=role_name, PolicyName=policy_name, PolicyDocument=json.dumps(document))
    logger.info(f"Put inline policy {policy_name} on role {role_name}")


def list_attached_policy_arns(iam_client: IAMClient, role_name: str) -> List[str]:
    """Return the ARNs of managed policies attached to a role."""
    arns: List[str] = []
    for page in paginate(iam_client, "list_attached_role_policies", RoleName=role_name):
        for policy in page.get("AttachedPolicies", []):
            arns.append(policy["PolicyArn"])
    return arns


def attach_managed_policy(iam_client: IAMClient, role_name: str, policy_arn: str) -> None:
    iam_client.attach_role_policy(RoleName=role_name, PolicyArn=policy_arn)
    logger.info(f"Attached {policy_arn} to role {role_name}")