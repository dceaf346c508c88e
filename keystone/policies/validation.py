"""
Authoring-time policy validation.

Permission fragments and trust documents are validated before anything is
attached. Violations are collected per document and raised together so an
author sees every problem in one pass.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Set

from ..constants import (
    ACTION_ASSUME_ROLE,
    ACTION_ASSUME_ROLE_WITH_WEB_IDENTITY,
    AWS_ARN_ACCOUNT_ID_PATTERN,
    CONDITION_EXTERNAL_ID,
    READ_ONLY_ACTION_PREFIXES,
    READ_ONLY_RESOURCE_EXCEPTIONS,
)
from ..enums import Effect
from ..errors import PolicyValidationError
from ..types import PolicyDocument
from .evaluation import glob_match
from .permissions import PolicyFragment

ALLOWED_PRINCIPAL_TYPES = {"AWS", "Federated"}
_TOKEN_DELIMITERS = re.compile(r'[-/:._*?]+')


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _extract_account_ids_from_principal(principal: Any) -> Set[str]:
    """
    Extract AWS account IDs from a trust policy principal.

    Args:
        principal: Principal field from a policy statement (can be string, list, or dict)

    Returns:
        Set of extracted account IDs (12-digit strings)
    """
    account_ids: Set[str] = set()

    if isinstance(principal, str):
        if principal == "*":
            return set()
        arn_match = re.match(AWS_ARN_ACCOUNT_ID_PATTERN, principal)
        if arn_match:
            account_ids.add(arn_match.group(1))
        elif re.match(r'^\d{12}$', principal):
            account_ids.add(principal)
    elif isinstance(principal, list):
        for item in principal:
            account_ids.update(_extract_account_ids_from_principal(item))
    elif isinstance(principal, dict):
        if "AWS" in principal:
            account_ids.update(_extract_account_ids_from_principal(principal["AWS"]))

    return account_ids


def _has_wildcard_principal(principal: Any) -> bool:
    """
    Check if principal contains a wildcard.

    Args:
        principal: Principal field from a policy statement

    Returns:
        True if principal contains wildcard
    """
    if isinstance(principal, str):
        return "*" in principal
    elif isinstance(principal, list):
        return any(_has_wildcard_principal(item) for item in principal)
    elif isinstance(principal, dict):
        return any(_has_wildcard_principal(value) for value in principal.values())
    return False


def _is_account_root(principal: str) -> bool:
    return bool(re.match(r'^\d{12}$', principal)) or principal.endswith(":root")


def is_read_only_action(action: str) -> bool:
    """True for actions such as ec2:Describe*, s3:ListAllMyBuckets or iam:GetRole."""
    service, _, name = action.partition(":")
    if not service or "*" in service or not name:
        return False
    return name.startswith(READ_ONLY_ACTION_PREFIXES)


def is_environment_qualified(pattern: str, environment: str) -> bool:
    """True if the environment token appears as a delimited segment of the pattern."""
    return environment in _TOKEN_DELIMITERS.split(pattern)


def validate_policy_document(name: str, document: PolicyDocument, environment: Optional[str]) -> List[str]:
    """
    Check a permission document against the authoring rules.

    Args:
        name: Fragment name, for messages
        document: IAM policy document
        environment: Environment token every resource pattern must carry, or
            None for documents that span environments (the broker fragment)

    Returns:
        List of violation messages; empty when the document is valid
    """
    violations: List[str] = []
    statements = _as_list(document.get("Statement"))
    if not statements:
        violations.append("document has no statements")

    for index, statement in enumerate(statements):
        sid = statement.get("Sid", f"#{index}")
        effect = statement.get("Effect")
        if effect not in (Effect.ALLOW.value, Effect.DENY.value):
            violations.append(f"{sid}: Effect must be Allow or Deny, got {effect!r}")
            continue
        if effect == Effect.ALLOW.value:
            for key in ("NotAction", "NotResource"):
                if key in statement:
                    violations.append(f"{sid}: {key} is not permitted in Allow statements")
        actions = [str(action) for action in _as_list(statement.get("Action"))]
        resources = [str(resource) for resource in _as_list(statement.get("Resource"))]

        if effect == Effect.DENY.value:
            continue

        for action in actions:
            service, _, action_name = action.partition(":")
            if action == "*" or action_name == "*":
                violations.append(f"{sid}: action '{action}' grants every operation of {service or 'every service'}")

        for resource in resources:
            if resource == "*":
                if sid not in READ_ONLY_RESOURCE_EXCEPTIONS:
                    violations.append(f"{sid}: unscoped '*' resource outside the read-only exception list")
                elif not all(is_read_only_action(action) for action in actions):
                    mutating = sorted(action for action in actions if not is_read_only_action(action))
                    violations.append(f"{sid}: '*' resource with non read-only action(s) {mutating}")
                continue
            if environment is not None and not is_environment_qualified(resource, environment):
                violations.append(f"{sid}: resource '{resource}' is not qualified with environment '{environment}'")

    return [f"{name}: {violation}" for violation in violations]


def validate_fragments(fragments: Iterable[PolicyFragment], environment: Optional[str]) -> None:
    """
    Validate every fragment and raise once with all violations.

    Raises:
        PolicyValidationError: If any fragment violates the authoring rules
    """
    violations: List[str] = []
    names: List[str] = []
    for fragment in fragments:
        names.append(fragment.name)
        violations.extend(validate_policy_document(fragment.name, fragment.document, environment))
    if violations:
        raise PolicyValidationError(", ".join(names), violations)


def validate_trust_document(role_name: str, document: PolicyDocument, machine_role: bool = True) -> List[str]:
    """
    Check a trust document for minimality.

    Machine (deployment and broker) roles must never trust a wildcard or a
    bare account root, federated statements must pin both audience and
    subject, and role-chain statements must require an external id.

    Returns:
        List of violation messages; empty when the document is valid
    """
    violations: List[str] = []
    for index, statement in enumerate(_as_list(document.get("Statement"))):
        sid = statement.get("Sid", f"#{index}")
        if statement.get("Effect") != Effect.ALLOW.value:
            continue
        principal = statement.get("Principal")
        actions = _as_list(statement.get("Action"))
        conditions: Dict[str, Dict[str, Any]] = statement.get("Condition", {})

        if principal is None or principal == "*" or _has_wildcard_principal(principal):
            violations.append(f"{sid}: wildcard principal")
            continue
        if not isinstance(principal, dict):
            violations.append(f"{sid}: principal must name its type")
            continue
        unknown_types = set(principal) - ALLOWED_PRINCIPAL_TYPES
        if unknown_types:
            violations.append(f"{sid}: unexpected principal type(s) {sorted(unknown_types)}")

        if "Federated" in principal:
            if ACTION_ASSUME_ROLE in actions:
                violations.append(f"{sid}: federated principal with {ACTION_ASSUME_ROLE}")
            if ACTION_ASSUME_ROLE_WITH_WEB_IDENTITY not in actions:
                violations.append(f"{sid}: federated principal without {ACTION_ASSUME_ROLE_WITH_WEB_IDENTITY}")
            condition_keys = {key for block in conditions.values() for key in block}
            if not any(key.endswith(":aud") for key in condition_keys):
                violations.append(f"{sid}: federated statement does not pin the audience")
            subjects = [
                pattern
                for block in conditions.values()
                for key, value in block.items() if key.endswith(":sub")
                for pattern in _as_list(value)
            ]
            if not subjects:
                violations.append(f"{sid}: federated statement does not restrict the subject")
            for pattern in subjects:
                if glob_match(pattern, "repo:any-owner/any-repo:ref:refs/heads/main"):
                    violations.append(f"{sid}: subject pattern '{pattern}' is not scoped to a repository")

        if "AWS" in principal and machine_role:
            for value in _as_list(principal["AWS"]):
                if _is_account_root(str(value)):
                    violations.append(f"{sid}: bare account root '{value}' trusted by a machine role")
            has_external_id = any(CONDITION_EXTERNAL_ID in block for block in conditions.values())
            if not has_external_id:
                violations.append(f"{sid}: role-chain statement does not require an external id")

    return [f"{role_name}: {violation}" for violation in violations]


def trusted_account_ids(document: PolicyDocument) -> Set[str]:
    """Account ids named by AWS principals in a trust document."""
    account_ids: Set[str] = set()
    for statement in _as_list(document.get("Statement")):
        account_ids.update(_extract_account_ids_from_principal(statement.get("Principal")))
    return account_ids


def isolation_violations(
    fragments_by_environment: Dict[str, List[PolicyFragment]],
    resources_by_environment: Dict[str, List[str]],
) -> List[str]:
    """
    Find allow patterns of one environment that match another environment's resources.

    Args:
        fragments_by_environment: Fragments attached to each environment's deployment role
        resources_by_environment: Representative resource ARNs owned by each environment

    Returns:
        List of violation messages; empty when environments are isolated
    """
    violations: List[str] = []
    for environment, fragments in fragments_by_environment.items():
        for fragment in fragments:
            for statement in _as_list(fragment.document.get("Statement")):
                if statement.get("Effect") != Effect.ALLOW.value:
                    continue
                for pattern in _as_list(statement.get("Resource")):
                    if pattern == "*":
                        continue
                    for other, resources in resources_by_environment.items():
                        if other == environment:
                            continue
                        for resource in resources:
                            if glob_match(str(pattern), resource):
                                violations.append(
                                    f"{environment}/{fragment.name}: '{pattern}' matches {other} resource '{resource}'"
                                )
    return violations
