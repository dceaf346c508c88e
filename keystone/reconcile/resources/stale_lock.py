"""
Stale digest sweep.

An interrupted apply can leave a digest record whose checksum no longer
matches the state object, which blocks every later apply. A digest is
stale when no lock is held for the same state object and the object is
missing or has a different MD5. Only stale digests of this environment's
own backend are ever touched, and the delete is conditional on the digest
still holding the inspected value.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from ...aws.dynamodb import delete_digest_item, find_lock_item, item_digest
from ...aws.lookup import LookupResult
from ...aws.s3 import find_object_md5
from ...enums import Phase, ResourceKind
from ..base import BaseReconciler, ReconcileContext
from ..registry import register_reconciler


@dataclass
class DigestState:
    """
    Observed lock-table state for one state object.

    Attributes:
        digest_present: True if a digest record exists
        digest: MD5 stored on the digest record
        lock_held: True if a lock record exists (an apply is in flight)
        state_md5: MD5 of the state object, None when the object is missing
    """
    digest_present: bool
    digest: Optional[str]
    lock_held: bool
    state_md5: Optional[str]

    @property
    def stale(self) -> bool:
        if not self.digest_present or self.lock_held:
            return False
        return self.state_md5 is None or self.state_md5 != self.digest


@register_reconciler(
    "stale_lock",
    ResourceKind.STALE_LOCK,
    Phase.FOUNDATION,
    order=70,
    depends_on=(ResourceKind.LOCK_TABLE,),
)
class StaleLockReconciler(BaseReconciler[DigestState]):
    """Clears the stale digest of one logical stack, if there is one."""

    UPDATABLE = True
    TRACKS_IDENTITY = False
    UPDATE_DETAIL = "stale digest cleared"

    def __init__(self, context: ReconcileContext, stack: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(context, **kwargs)
        if stack is None:
            raise ValueError("StaleLockReconciler needs a stack")
        self.stack = stack

    @classmethod
    def instances(cls, context: ReconcileContext) -> Sequence[BaseReconciler[Any]]:
        return [cls(context, stack=stack) for stack in context.backend.stacks]

    def identifier(self) -> str:
        return self.context.backend.digest_id(self.stack)

    def lookup(self) -> LookupResult[DigestState]:
        backend = self.context.backend
        ddb = self.context.client("dynamodb")

        digest_result = find_lock_item(ddb, backend.lock_table, backend.digest_id(self.stack))
        if digest_result.is_failed:
            return LookupResult.failed(digest_result.error or RuntimeError("digest lookup failed"))
        if not digest_result.is_present or digest_result.value is None:
            return LookupResult.present(DigestState(False, None, False, None))

        lock_result = find_lock_item(ddb, backend.lock_table, backend.lock_id(self.stack))
        if lock_result.is_failed:
            return LookupResult.failed(lock_result.error or RuntimeError("lock lookup failed"))

        object_result = find_object_md5(self.context.client("s3"), backend.bucket, backend.state_key(self.stack))
        if object_result.is_failed:
            return LookupResult.failed(object_result.error or RuntimeError("state object lookup failed"))

        return LookupResult.present(
            DigestState(
                digest_present=True,
                digest=item_digest(digest_result.value),
                lock_held=lock_result.is_present,
                state_md5=object_result.value if object_result.is_present else None,
            )
        )

    def desired(self) -> Dict[str, Any]:
        return {"digest_id": self.identifier(), "stale": False}

    def matches(self, observed: DigestState) -> bool:
        return not observed.stale

    def create(self) -> None:
        # lookup() never reports a digest as absent
        raise NotImplementedError("digest records are written by the deployment tool, not created here")

    def update(self, observed: DigestState) -> None:
        backend = self.context.backend
        delete_digest_item(
            self.context.client("dynamodb"),
            backend.lock_table,
            self.identifier(),
            observed.digest,
            backend.lock_id(self.stack),
        )
