"""
Permission fragment composition.

Each deployment role's permissions are the union of independently attached,
orthogonal fragments: state backend access, workload resources carrying the
environment token, and account-scoped read-only discovery. Additional
fragments may be authored declaratively as JSON or YAML documents.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from ..config import KeystoneConfig
from ..constants import (
    ACTION_ASSUME_ROLE,
    ACTION_TAG_SESSION,
    BROKER_POLICY_NAME,
    READ_ONLY_POLICY_NAME,
    STATE_BACKEND_POLICY_NAME,
    WORKLOAD_POLICY_NAME,
)
from ..types import PermissionSet, PermissionStatement, PolicyDocument, StateBackend

logger = logging.getLogger(__name__)

DECLARATIVE_SUFFIXES = (".json", ".yaml", ".yml")


@dataclass(frozen=True)
class PolicyFragment:
    """A named policy document attached to a role as one inline policy."""
    name: str
    document: PolicyDocument

    @classmethod
    def from_permission_set(cls, permission_set: PermissionSet) -> "PolicyFragment":
        return cls(name=permission_set.name, document=permission_set.to_document())


def state_backend_fragment(backend: StateBackend) -> PermissionSet:
    """
    Object and lock-record access scoped to exactly one environment's backend.

    Objects are limited to the state keys of the backend's stacks; lock
    records live in the backend's own table.
    """
    object_arns = [f"{backend.bucket_arn}/{backend.state_key(stack)}" for stack in backend.stacks]
    return PermissionSet(
        name=STATE_BACKEND_POLICY_NAME,
        statements=[
            PermissionStatement(
                sid="StateBucketList",
                actions=["s3:ListBucket", "s3:GetBucketLocation", "s3:GetBucketVersioning"],
                resources=[backend.bucket_arn],
            ),
            PermissionStatement(
                sid="StateObjects",
                actions=["s3:GetObject", "s3:PutObject", "s3:DeleteObject"],
                resources=object_arns,
            ),
            PermissionStatement(
                sid="StateLockRecords",
                actions=["dynamodb:DescribeTable", "dynamodb:GetItem", "dynamodb:PutItem", "dynamodb:DeleteItem"],
                resources=[backend.lock_table_arn],
            ),
        ],
    )


def workload_fragment(project: str, environment: str, account_id: str, region: str) -> PermissionSet:
    """CRUD and tagging on workload resources whose names carry the environment token."""
    prefix = f"{project}-{environment}-"
    return PermissionSet(
        name=WORKLOAD_POLICY_NAME,
        statements=[
            PermissionStatement(
                sid="WorkloadBuckets",
                actions=[
                    "s3:CreateBucket",
                    "s3:DeleteBucket",
                    "s3:ListBucket",
                    "s3:GetBucket*",
                    "s3:PutBucket*",
                    "s3:DeleteBucketPolicy",
                    "s3:GetEncryptionConfiguration",
                    "s3:PutEncryptionConfiguration",
                    "s3:GetLifecycleConfiguration",
                    "s3:PutLifecycleConfiguration",
                ],
                resources=[f"arn:aws:s3:::{prefix}*"],
            ),
            PermissionStatement(
                sid="WorkloadObjects",
                actions=["s3:GetObject", "s3:PutObject", "s3:DeleteObject", "s3:GetObjectTagging", "s3:PutObjectTagging"],
                resources=[f"arn:aws:s3:::{prefix}*/*"],
            ),
            PermissionStatement(
                sid="WorkloadLogGroups",
                actions=[
                    "logs:CreateLogGroup",
                    "logs:DeleteLogGroup",
                    "logs:PutRetentionPolicy",
                    "logs:TagResource",
                    "logs:UntagResource",
                    "logs:ListTagsForResource",
                ],
                resources=[f"arn:aws:logs:{region}:{account_id}:log-group:/{project}/{environment}/*"],
            ),
            PermissionStatement(
                sid="WorkloadTopics",
                actions=[
                    "sns:CreateTopic",
                    "sns:DeleteTopic",
                    "sns:GetTopicAttributes",
                    "sns:SetTopicAttributes",
                    "sns:TagResource",
                    "sns:UntagResource",
                    "sns:ListTagsForResource",
                ],
                resources=[f"arn:aws:sns:{region}:{account_id}:{prefix}*"],
            ),
        ],
    )


def read_only_fragment() -> PermissionSet:
    """Account-scoped discovery; every statement is on the read-only exception list."""
    return PermissionSet(
        name=READ_ONLY_POLICY_NAME,
        statements=[
            PermissionStatement(
                sid="ReadOnlyDescribe",
                actions=[
                    "acm:DescribeCertificate",
                    "cloudfront:GetDistribution",
                    "logs:DescribeLogGroups",
                    "sns:GetSubscriptionAttributes",
                ],
                resources=["*"],
            ),
            PermissionStatement(
                sid="ReadOnlyList",
                actions=[
                    "acm:ListCertificates",
                    "cloudfront:ListDistributions",
                    "route53:ListHostedZones",
                    "s3:ListAllMyBuckets",
                    "sns:ListTopics",
                ],
                resources=["*"],
            ),
            PermissionStatement(
                sid="CallerIdentity",
                actions=["sts:GetCallerIdentity"],
                resources=["*"],
            ),
        ],
    )


def broker_fragment(deployment_role_arns: List[str]) -> PermissionSet:
    """The broker may only assume the enumerated deployment roles."""
    return PermissionSet(
        name=BROKER_POLICY_NAME,
        statements=[
            PermissionStatement(
                sid="AssumeDeploymentRoles",
                actions=[ACTION_ASSUME_ROLE, ACTION_TAG_SESSION],
                resources=sorted(deployment_role_arns),
            )
        ],
    )


def placeholder_values(config: KeystoneConfig, environment: str, account_id: str) -> Dict[str, str]:
    return {
        "PROJECT_NAME": config.project_name,
        "ENVIRONMENT": environment,
        "ACCOUNT_ID": account_id,
        "REGION": config.region,
        "MANAGEMENT_ACCOUNT_ID": config.management_account_id or "",
        "REPOSITORY": config.repository,
    }


def render_template(text: str, values: Dict[str, str]) -> str:
    """Substitute {NAME} placeholders; unknown braces are left untouched."""
    for key, value in values.items():
        text = text.replace(f"{{{key}}}", value)
    return text


def load_policy_documents(directory: Optional[str], values: Dict[str, str]) -> List[PolicyFragment]:
    """
    Load declarative permission fragments from a directory.

    Each *.json, *.yaml or *.yml file holds one IAM policy document. The
    fragment is named keystone-<file stem>.

    Args:
        directory: Directory to read, or None for no declarative fragments
        values: Placeholder substitutions for this environment

    Returns:
        Fragments in file-name order

    Raises:
        ValueError: If a file does not contain a policy document
    """
    if not directory:
        return []
    base = Path(directory)
    if not base.is_dir():
        raise ValueError(f"policy_documents_dir '{directory}' is not a directory")

    fragments: List[PolicyFragment] = []
    for path in sorted(base.iterdir()):
        if path.suffix not in DECLARATIVE_SUFFIXES:
            continue
        with open(path, 'r') as f:
            document = yaml.safe_load(render_template(f.read(), values))
        if not isinstance(document, dict) or "Statement" not in document:
            raise ValueError(f"{path} does not contain an IAM policy document")
        fragments.append(PolicyFragment(name=f"keystone-{path.stem}", document=document))
        logger.debug(f"Loaded declarative policy fragment from {path}")
    return fragments


def deployment_fragments(config: KeystoneConfig, environment: str, account_id: str, backend: StateBackend) -> List[PolicyFragment]:
    """
    All fragments attached to an environment's deployment role, in attachment order.
    """
    fragments = [
        PolicyFragment.from_permission_set(state_backend_fragment(backend)),
        PolicyFragment.from_permission_set(workload_fragment(config.project_name, environment, account_id, config.region)),
        PolicyFragment.from_permission_set(read_only_fragment()),
    ]
    fragments.extend(
        load_policy_documents(config.policy_documents_dir, placeholder_values(config, environment, account_id))
    )
    return fragments
