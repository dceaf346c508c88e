"""
Run outputs.

Writes the per-run status report, the deployment role identifier of every
environment (consumed by pipeline configuration), a backend config per
environment and the console switch-role links for human operators.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping

from .config import KeystoneConfig
from .constants import (
    BACKEND_CONFIG_TEMPLATE,
    CONSOLE_URLS_FILENAME,
    REPORT_FILENAME,
    ROLE_ARNS_FILENAME,
    STATE_STACKS,
)
from .enums import ReconcileAction
from .reconcile.base import build_state_backend
from .types import Account, JsonDict, ResourceStatus, StateBackend
from .utils import admin_role_name, deployment_role_name, readonly_role_name, role_arn, switch_role_link

logger = logging.getLogger(__name__)

# Stack whose state the pipelines apply; the foundation stack passes its own key
PIPELINE_STACK = STATE_STACKS[-1]


def deployment_role_arns(config: KeystoneConfig, accounts: Mapping[str, Account]) -> Dict[str, str]:
    """Environment -> deployment role ARN."""
    return {
        environment: role_arn(
            account.account_id,
            deployment_role_name(config.project_name, environment),
            config.deployment_role.path,
        )
        for environment, account in accounts.items()
    }


def console_links(config: KeystoneConfig, accounts: Mapping[str, Account]) -> List[Dict[str, str]]:
    """
    Switch-role links for the admin and read-only roles of every environment.

    Returns:
        One entry per role with environment, account, role and url keys
    """
    if not config.admin_roles.enabled:
        return []

    links = []
    for environment, account in accounts.items():
        roles = [(admin_role_name(config.project_name, environment), "admin")]
        if config.admin_roles.readonly_companion:
            roles.append((readonly_role_name(config.project_name, environment), "readonly"))
        for role_name, access in roles:
            links.append({
                "environment": environment,
                "account": account.account_id,
                "access": access,
                "role": role_name,
                "url": switch_role_link(account.account_id, role_name, f"{config.project_name}-{environment}-{access}"),
            })
    return links


def render_backend_config(backend: StateBackend, stack: str = PIPELINE_STACK) -> str:
    lines = [
        f'bucket         = "{backend.bucket}"',
        f'key            = "{backend.state_key(stack)}"',
        f'region         = "{backend.region}"',
        f'dynamodb_table = "{backend.lock_table}"',
        'encrypt        = true',
    ]
    return "\n".join(lines) + "\n"


def render_console_urls(config: KeystoneConfig, links: List[Dict[str, str]]) -> str:
    lines = [
        "=" * 72,
        f"AWS Console Role Switching URLs - {config.project_name}",
        "=" * 72,
        "",
    ]
    for link in links:
        lines.append(f"{link['environment']} ({link['access']}):")
        lines.append(f"  Account: {link['account']}")
        lines.append(f"  Role:    {link['role']}")
        lines.append(f"  URL:     {link['url']}")
        lines.append("")
    return "\n".join(lines)


def build_report(
    config: KeystoneConfig,
    accounts: Mapping[str, Account],
    statuses: List[ResourceStatus],
) -> JsonDict:
    counts = {action.value: sum(1 for s in statuses if s.action == action) for action in ReconcileAction}
    report: JsonDict = {
        "project": config.project_name,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": config.dry_run,
        "trust_topology": config.trust_topology.value,
        "summary": counts,
        "resources": [status.to_dict() for status in statuses],
        "role_arns": deployment_role_arns(config, accounts),
        "console_links": console_links(config, accounts),
    }
    return report


def _write_text(path: Path, content: str) -> None:
    with open(path, 'w') as f:
        f.write(content)
    logger.info(f"Wrote {path}")


def _write_json(path: Path, data: Any) -> None:
    with open(path, 'w') as f:
        json.dump(data, f, indent=2, default=str)
        f.write('\n')
    logger.info(f"Wrote {path}")


def write_outputs(
    config: KeystoneConfig,
    accounts: Mapping[str, Account],
    statuses: List[ResourceStatus],
) -> List[Path]:
    """
    Write every run output under config.output_dir.

    Args:
        config: Validated Keystone configuration
        accounts: Accounts reconciled in this run
        statuses: Status list of the run

    Returns:
        Paths of the files written
    """
    output_dir = Path(config.output_dir)
    os.makedirs(output_dir, exist_ok=True)
    written: List[Path] = []

    report_path = output_dir / REPORT_FILENAME
    _write_json(report_path, build_report(config, accounts, statuses))
    written.append(report_path)

    arns_path = output_dir / ROLE_ARNS_FILENAME
    _write_json(arns_path, deployment_role_arns(config, accounts))
    written.append(arns_path)

    for environment, account in accounts.items():
        backend_path = output_dir / BACKEND_CONFIG_TEMPLATE.format(env=environment)
        _write_text(backend_path, render_backend_config(build_state_backend(config, account)))
        written.append(backend_path)

    links = console_links(config, accounts)
    if links:
        urls_path = output_dir / CONSOLE_URLS_FILENAME
        _write_text(urls_path, render_console_urls(config, links))
        written.append(urls_path)

    return written
