"""Per-environment state bucket: versioned, encrypted, never public."""

from typing import Any, Dict

from ...aws.lookup import LookupResult
from ...aws.s3 import BucketRecord, create_bucket, find_bucket, harden_bucket
from ...enums import Phase, ResourceKind
from ..base import BaseReconciler
from ..registry import register_reconciler


@register_reconciler("state_bucket", ResourceKind.STATE_BUCKET, Phase.FOUNDATION, order=40)
class StateBucketReconciler(BaseReconciler[BucketRecord]):

    UPDATABLE = True

    def identifier(self) -> str:
        return self.context.backend.bucket

    def lookup(self) -> LookupResult[BucketRecord]:
        return find_bucket(self.context.client("s3"), self.identifier())

    def desired(self) -> Dict[str, Any]:
        return {
            "name": self.identifier(),
            "region": self.config.region,
            "versioning_enabled": True,
            "encryption_enabled": True,
            "public_access_blocked": True,
        }

    def matches(self, observed: BucketRecord) -> bool:
        return observed.hardened

    def create(self) -> None:
        s3 = self.context.client("s3")
        create_bucket(s3, self.identifier(), self.config.region)
        harden_bucket(s3, self.identifier(), self.context.tags())

    def update(self, observed: BucketRecord) -> None:
        harden_bucket(self.context.client("s3"), self.identifier(), self.context.tags())
