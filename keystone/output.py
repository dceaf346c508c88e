"""
Centralized output handling with consistent formatting.

This module provides a single point of control for all user-facing output,
ensuring consistent formatting and making it easy to modify output behavior.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from .enums import ReconcileAction
from .types import ResourceStatus, VerificationCheck

logger = logging.getLogger(__name__)

ACTION_ICONS = {
    ReconcileAction.CREATED: "✨",
    ReconcileAction.IMPORTED: "📥",
    ReconcileAction.UPDATED: "🔧",
    ReconcileAction.SKIPPED: "✔️ ",
    ReconcileAction.FAILED: "❌",
}


class OutputHandler:
    """Centralized output handling with consistent formatting."""

    @staticmethod
    def resource_reconciled(status: ResourceStatus) -> None:
        """
        Log the outcome of reconciling one resource.

        Args:
            status: Resource status recorded by the reconciler
        """
        message = (
            f"{status.kind.value} {status.identifier} in {status.environment} "
            f"({status.account_id}): {status.action.value}"
        )
        if status.detail:
            message += f" - {status.detail}"
        if status.action == ReconcileAction.FAILED:
            logger.error(f"{message}: {status.error}")
        else:
            logger.info(message)

    @staticmethod
    def error(title: str, error: Exception) -> None:
        """
        Print formatted error message.

        Args:
            title: Error title
            error: Exception that occurred
        """
        print(f"\n🚨 {title}:\n{error}\n")

    @staticmethod
    def success(title: str, data: Optional[Any] = None) -> None:
        """
        Print formatted success message.

        Args:
            title: Success message title
            data: Optional data to display (dict will be JSON formatted)
        """
        print(f"\n✅ {title}")
        if not data:
            return

        if isinstance(data, dict):
            print(json.dumps(data, indent=2, default=str))
            return

        print(data)

    @staticmethod
    def warning(title: str, detail: str = "") -> None:
        print(f"\n⚠️  {title}")
        if detail:
            print(detail)

    @staticmethod
    def section_header(title: str) -> None:
        """
        Print section header with divider.

        Args:
            title: Section title
        """
        print("\n" + "=" * 80)
        print(title)
        print("=" * 80)

    @staticmethod
    def status_table(statuses: Iterable[ResourceStatus]) -> None:
        """
        Print the per-resource status list for a run.

        Args:
            statuses: Statuses in the order resources were reconciled
        """
        OutputHandler.section_header("RECONCILIATION STATUS")
        rows = list(statuses)
        if not rows:
            print("No resources reconciled.")
            return
        for status in rows:
            icon = ACTION_ICONS.get(status.action, " ")
            line = (
                f"{icon} {status.action.value:<9} {status.environment:<11} {status.account_id:<13} "
                f"{status.kind.value:<18} {status.identifier}"
            )
            print(line)
            if status.error:
                print(f"      └─ {status.error}")
        counts = {action: sum(1 for s in rows if s.action == action) for action in ReconcileAction}
        print("-" * 80)
        print(", ".join(f"{count} {action.value}" for action, count in counts.items()))

    @staticmethod
    def verification_table(checks: Iterable[VerificationCheck]) -> None:
        """
        Print verification outcomes grouped by environment.

        Args:
            checks: Checks in the order they were run
        """
        OutputHandler.section_header("VERIFICATION")
        rows = list(checks)
        environment = None
        for check in rows:
            if check.environment != environment:
                environment = check.environment
                print(f"\n{environment}:")
            print(f"  {'✅' if check.passed else '❌'} {check.name}")
            if check.detail and not check.passed:
                print(f"      └─ {check.detail}")
        failed = sum(1 for check in rows if not check.passed)
        print("-" * 80)
        print(f"{len(rows) - failed} passed, {failed} failed")

    @staticmethod
    def console_links(links: List[Dict[str, str]]) -> None:
        OutputHandler.section_header("CONSOLE SWITCH-ROLE LINKS")
        if not links:
            print("Admin roles are disabled; no links to show.")
            return
        for link in links:
            print(f"{link['environment']:<11} {link['access']:<9} {link['url']}")
