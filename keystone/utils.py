"""
Utility functions used across the Keystone codebase.

This module contains general-purpose naming helpers that turn a project,
environment and account into the deterministic identifiers every other
module looks resources up by.
"""

import json
from typing import Any, Dict, List
from urllib.parse import urlencode

from .constants import (
    ADMIN_ROLE_NAME_TEMPLATE,
    BROKER_ROLE_NAME_TEMPLATE,
    DEPLOYMENT_ROLE_NAME_TEMPLATE,
    LOCK_TABLE_NAME_TEMPLATE,
    MANAGED_BY,
    READONLY_ROLE_NAME_TEMPLATE,
    STATE_BUCKET_NAME_TEMPLATE,
    SWITCH_ROLE_URL,
)


def format_account_identifier(environment: str, account_id: str) -> str:
    """
    Format a consistent account identifier string.

    Args:
        environment: Environment name
        account_id: Account ID

    Returns:
        Formatted identifier string in format: environment_id
    """
    return f"{environment}_{account_id}"


def title_token(name: str) -> str:
    """
    Convert a slug to the title-cased token used in role names.

    Args:
        name: Slug such as "static-site" or "dev"

    Returns:
        Title-cased token without separators (e.g., "StaticSite", "Dev")
    """
    return "".join(part[:1].upper() + part[1:] for part in name.replace("_", "-").split("-") if part)


def deployment_role_name(project: str, environment: str) -> str:
    return DEPLOYMENT_ROLE_NAME_TEMPLATE.format(project=title_token(project), env=title_token(environment))


def broker_role_name(project: str) -> str:
    return BROKER_ROLE_NAME_TEMPLATE.format(project=title_token(project))


def admin_role_name(project: str, environment: str) -> str:
    return ADMIN_ROLE_NAME_TEMPLATE.format(project=project, env=environment)


def readonly_role_name(project: str, environment: str) -> str:
    return READONLY_ROLE_NAME_TEMPLATE.format(project=project, env=environment)


def state_bucket_name(project: str, environment: str, account_id: str) -> str:
    return STATE_BUCKET_NAME_TEMPLATE.format(project=project, env=environment, account_id=account_id)


def lock_table_name(project: str, environment: str) -> str:
    return LOCK_TABLE_NAME_TEMPLATE.format(project=project, env=environment)


def role_arn(account_id: str, role_name: str, path: str = "/") -> str:
    return f"arn:aws:iam::{account_id}:role{path}{role_name}"


def account_root_arn(account_id: str) -> str:
    return f"arn:aws:iam::{account_id}:root"


def switch_role_link(account_id: str, role_name: str, display_name: str) -> str:
    """
    Build a console deep link that pre-fills the switch-role form.

    Args:
        account_id: Target account ID
        role_name: Role to switch into
        display_name: Label shown in the console role history

    Returns:
        URL such as https://signin.aws.amazon.com/switchrole?roleName=..&account=..&displayName=..
    """
    query = urlencode({"roleName": role_name, "account": account_id, "displayName": display_name})
    return f"{SWITCH_ROLE_URL}?{query}"


def resource_tags(project: str, environment: str) -> List[Dict[str, str]]:
    """Tags applied to every resource Keystone creates."""
    return [
        {"Key": "Environment", "Value": environment},
        {"Key": "ManagedBy", "Value": MANAGED_BY},
        {"Key": "Project", "Value": project},
    ]


def _canonical_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _canonical_value(item) for key, item in sorted(value.items())}
    if isinstance(value, list):
        items = [_canonical_value(item) for item in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True))
    return value


def canonical_policy(document: Dict[str, Any]) -> List[Any]:
    """
    Normalize a policy document for comparison.

    Single values and one-element lists compare equal, and the order of
    statements, principals, actions and condition values is ignored.
    """
    statements = document.get("Statement", [])
    if isinstance(statements, dict):
        statements = [statements]
    normalized = []
    for statement in statements:
        entry = {}
        for key, value in statement.items():
            if key in ("Action", "NotAction", "Resource", "NotResource") and not isinstance(value, list):
                value = [value]
            elif key == "Principal" and isinstance(value, dict):
                value = {kind: item if isinstance(item, list) else [item] for kind, item in value.items()}
            elif key == "Condition":
                value = {
                    operator: {k: v if isinstance(v, list) else [v] for k, v in block.items()}
                    for operator, block in value.items()
                }
            entry[key] = value
        normalized.append(_canonical_value(entry))
    return sorted(normalized, key=lambda item: json.dumps(item, sort_keys=True))
