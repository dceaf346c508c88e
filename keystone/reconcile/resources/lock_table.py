"""Per-environment lock table keyed by LockID."""

from typing import Any, Dict

from ...aws.dynamodb import LockTableRecord, create_lock_table, find_lock_table, wait_for_table_active
from ...aws.lookup import LookupResult
from ...constants import LOCK_TABLE_HASH_KEY
from ...enums import Phase, ResourceKind
from ...errors import TrustMismatchError
from ..base import BaseReconciler
from ..registry import register_reconciler

TABLE_ACTIVE_TIMEOUT_SECONDS = 300
TABLE_ACTIVE_INTERVAL_SECONDS = 5


@register_reconciler("lock_table", ResourceKind.LOCK_TABLE, Phase.FOUNDATION, order=50)
class LockTableReconciler(BaseReconciler[LockTableRecord]):

    # A table left CREATING by an interrupted run is waited on, not recreated
    UPDATABLE = True
    UPDATE_DETAIL = "waited for table to become ACTIVE"

    def identifier(self) -> str:
        return self.context.backend.lock_table

    def lookup(self) -> LookupResult[LockTableRecord]:
        return find_lock_table(self.context.client("dynamodb"), self.identifier())

    def desired(self) -> Dict[str, Any]:
        return {
            "name": self.identifier(),
            "hash_key": LOCK_TABLE_HASH_KEY,
            "hash_key_type": "S",
            "billing_mode": "PAY_PER_REQUEST",
        }

    def matches(self, observed: LockTableRecord) -> bool:
        return observed.has_lock_schema and observed.status == "ACTIVE"

    def _wait(self) -> None:
        wait_for_table_active(
            self.context.client("dynamodb"),
            self.identifier(),
            TABLE_ACTIVE_TIMEOUT_SECONDS,
            TABLE_ACTIVE_INTERVAL_SECONDS,
        )

    def create(self) -> None:
        create_lock_table(self.context.client("dynamodb"), self.identifier(), self.context.tags())
        self._wait()

    def update(self, observed: LockTableRecord) -> None:
        if not observed.has_lock_schema:
            raise TrustMismatchError(
                f"Table {observed.name} exists with a key schema unusable for state locking",
                expected=f"{LOCK_TABLE_HASH_KEY} (S)",
                actual=f"{observed.hash_key} ({observed.hash_key_type})",
            )
        self._wait()
