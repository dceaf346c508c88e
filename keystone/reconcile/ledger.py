"""
Tracked-state ledger.

Handles persisting per-account reconciliation results to JSON files. A
resource is tracked once any run has recorded it as created, imported,
updated or skipped; tracked resources that still match are skipped rather
than imported again. The ledger is rewritten after every resource so a
cancelled run keeps everything that converged.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from ..enums import ReconcileAction, ResourceKind
from ..types import ResourceStatus
from ..utils import format_account_identifier

# Set up logging
logger = logging.getLogger(__name__)

LEDGER_VERSION = 1


@dataclass
class LedgerPathResolver:
    """
    Resolves the ledger file path for an account.

    Attributes:
        state_dir: Base directory for ledgers
        environment: Environment name
        account_id: Account ID
    """

    state_dir: str
    environment: str
    account_id: str

    def get_file_path(self) -> Path:
        """
        Get file path for the ledger.

        Returns:
            Path object such as {state_dir}/dev_111111111111.json
        """
        return Path(self.state_dir) / f"{format_account_identifier(self.environment, self.account_id)}.json"


def resource_key(kind: ResourceKind, identifier: str) -> str:
    return f"{kind.value}:{identifier}"


class Ledger:
    """Per-account record of resources under management, keyed by resource identity."""

    def __init__(self, path: Path, account_id: str, environment: str) -> None:
        self.path = path
        self.account_id = account_id
        self.environment = environment
        self.entries: Dict[str, Dict[str, Any]] = {}
        self._load()

    @classmethod
    def for_account(cls, state_dir: str, environment: str, account_id: str) -> "Ledger":
        resolver = LedgerPathResolver(state_dir=state_dir, environment=environment, account_id=account_id)
        return cls(resolver.get_file_path(), account_id, environment)

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path, 'r') as f:
            data = json.load(f)
        if data.get("account_id") != self.account_id:
            raise ValueError(
                f"Ledger {self.path} belongs to account {data.get('account_id')}, not {self.account_id}"
            )
        self.entries = data.get("resources", {})
        logger.debug(f"Loaded {len(self.entries)} tracked resource(s) from {self.path}")

    def is_tracked(self, kind: ResourceKind, identifier: str) -> bool:
        entry = self.entries.get(resource_key(kind, identifier))
        return entry is not None and entry.get("action") != ReconcileAction.FAILED.value

    def record(self, status: ResourceStatus, desired_digest: str) -> None:
        """
        Record a resource outcome and persist the ledger.

        A failure never untracks a resource that an earlier run converged.
        """
        key = resource_key(status.kind, status.identifier)
        if status.action == ReconcileAction.FAILED and self.is_tracked(status.kind, status.identifier):
            self.entries[key]["last_error"] = status.error
        else:
            self.entries[key] = {
                "kind": status.kind.value,
                "identifier": status.identifier,
                "action": status.action.value,
                "desired_digest": desired_digest,
                "recorded_at": datetime.now(timezone.utc).isoformat(),
            }
        self.write()

    def write(self) -> None:
        os.makedirs(self.path.parent, exist_ok=True)
        data = {
            "version": LEDGER_VERSION,
            "account_id": self.account_id,
            "environment": self.environment,
            "resources": self.entries,
        }
        with open(self.path, 'w') as f:
            json.dump(data, f, indent=2, default=str, sort_keys=True)
            f.write('\n')
        logger.debug(f"Wrote ledger to {self.path}")
