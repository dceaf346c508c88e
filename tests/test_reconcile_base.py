"""
Tests for keystone.reconcile.base module.

Tests for the create/import/update/skip decision, concurrent creation,
propagation retries and dry runs, using an in-memory reconciler.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import patch

import pytest

from keystone.aws.lookup import LookupResult
from keystone.config import KeystoneConfig
from keystone.enums import Phase, ReconcileAction, ResourceKind
from keystone.errors import LookupFailedError, PermissionDeniedError, PropagationTimeoutError, TrustMismatchError
from keystone.reconcile.base import BaseReconciler, ReconcileContext, build_state_backend
from keystone.reconcile.ledger import Ledger
from keystone.types import Account

from conftest import DEV_ACCOUNT, client_error


class Widget:
    def __init__(self, size: int) -> None:
        self.size = size


class WidgetReconciler(BaseReconciler[Widget]):
    """Reconciles one widget held in a dict."""

    KIND = ResourceKind.STATE_BUCKET
    PHASE = Phase.FOUNDATION
    ORDER = 1
    RECONCILER_NAME = "widget"

    def __init__(self, context: ReconcileContext, store: Optional[Dict[str, Widget]] = None, **kwargs: Any) -> None:
        super().__init__(context, **kwargs)
        self.store: Dict[str, Widget] = store if store is not None else {}
        self.lookup_errors: List[Exception] = []
        self.create_errors: List[Exception] = []
        self.created = 0
        self.updated = 0

    def identifier(self) -> str:
        return "widget-1"

    def lookup(self) -> LookupResult[Widget]:
        if self.lookup_errors:
            return LookupResult.failed(self.lookup_errors.pop(0))
        widget = self.store.get(self.identifier())
        return LookupResult.present(widget) if widget else LookupResult.absent()

    def desired(self) -> Dict[str, Any]:
        return {"size": 3}

    def matches(self, observed: Widget) -> bool:
        return observed.size == 3

    def create(self) -> None:
        if self.create_errors:
            raise self.create_errors.pop(0)
        self.created += 1
        self.store[self.identifier()] = Widget(3)

    def update(self, observed: Widget) -> None:
        self.updated += 1
        observed.size = 3


class FixedWidgetReconciler(WidgetReconciler):
    UPDATABLE = False


@pytest.fixture
def context(make_config: Callable[..., KeystoneConfig], tmp_path: Path) -> ReconcileContext:
    config = make_config()
    account = Account(DEV_ACCOUNT, "dev")
    ledger = Ledger.for_account(config.state_dir, "dev", DEV_ACCOUNT)
    return ReconcileContext(config=config, account=account, session=None, ledger=ledger)


@pytest.fixture(autouse=True)
def no_sleep() -> Any:
    with patch("keystone.aws.helpers.time.sleep") as mock_sleep:
        yield mock_sleep


class TestReconcileDecision:
    """Test the reconcile template method."""

    def test_absent_is_created_and_tracked(self, context: ReconcileContext) -> None:
        """Test that an absent resource is created and recorded."""
        reconciler = WidgetReconciler(context)
        status = reconciler.reconcile()
        assert status.action == ReconcileAction.CREATED
        assert reconciler.created == 1
        assert context.ledger.is_tracked(ResourceKind.STATE_BUCKET, "widget-1")

    def test_tracked_match_is_skipped(self, context: ReconcileContext) -> None:
        """Test that a second run skips a converged resource."""
        store: Dict[str, Widget] = {}
        WidgetReconciler(context, store=store).reconcile()
        second = WidgetReconciler(context, store=store)
        assert second.reconcile().action == ReconcileAction.SKIPPED
        assert second.created == 0

    def test_untracked_match_is_imported(self, context: ReconcileContext) -> None:
        """Test that an existing matching resource is adopted, not recreated."""
        reconciler = WidgetReconciler(context, store={"widget-1": Widget(3)})
        status = reconciler.reconcile()
        assert status.action == ReconcileAction.IMPORTED
        assert reconciler.created == 0
        assert context.ledger.is_tracked(ResourceKind.STATE_BUCKET, "widget-1")

    def test_drift_is_updated(self, context: ReconcileContext) -> None:
        """Test that an updatable resource with drift is updated in place."""
        store = {"widget-1": Widget(1)}
        reconciler = WidgetReconciler(context, store=store)
        status = reconciler.reconcile()
        assert status.action == ReconcileAction.UPDATED
        assert status.detail == "drift corrected"
        assert store["widget-1"].size == 3

    def test_drift_on_fixed_kind_is_trust_mismatch(self, context: ReconcileContext) -> None:
        """Test that a non-updatable difference raises with expected and actual."""
        reconciler = FixedWidgetReconciler(context, store={"widget-1": Widget(1)})
        with pytest.raises(TrustMismatchError) as exc_info:
            reconciler.reconcile()
        assert exc_info.value.expected == {"size": 3}

    def test_concurrent_create_is_imported(self, context: ReconcileContext) -> None:
        """Test that losing a create race falls back to importing the winner."""
        store: Dict[str, Widget] = {}
        reconciler = WidgetReconciler(context, store=store)

        def racing_create() -> None:
            store["widget-1"] = Widget(3)
            raise client_error("EntityAlreadyExists")

        with patch.object(reconciler, "create", side_effect=racing_create):
            status = reconciler.reconcile()
        assert status.action == ReconcileAction.IMPORTED
        assert status.detail == "created concurrently; adopted"

    def test_propagation_lag_is_retried(self, context: ReconcileContext) -> None:
        """Test that a not-yet-visible dependency is retried with backoff."""
        reconciler = WidgetReconciler(context)
        reconciler.create_errors = [client_error("NoSuchEntity"), client_error("MalformedPolicyDocument", "Invalid principal")]
        assert reconciler.reconcile().action == ReconcileAction.CREATED
        assert reconciler.created == 1

    def test_persistent_lag_times_out(self, context: ReconcileContext) -> None:
        """Test that retries are bounded."""
        reconciler = WidgetReconciler(context)
        reconciler.create_errors = [client_error("NoSuchEntity")] * 10
        with pytest.raises(PropagationTimeoutError):
            reconciler.reconcile()

    def test_permission_denied_is_translated(self, context: ReconcileContext) -> None:
        """Test that access denied becomes a PermissionDeniedError without retries."""
        reconciler = WidgetReconciler(context)
        reconciler.create_errors = [client_error("AccessDenied")]
        with pytest.raises(PermissionDeniedError):
            reconciler.reconcile()

    def test_retryable_lookup_failure_is_retried(self, context: ReconcileContext) -> None:
        """Test that a throttled lookup is retried before deciding."""
        reconciler = WidgetReconciler(context, store={"widget-1": Widget(3)})
        reconciler.lookup_errors = [client_error("Throttling")]
        assert reconciler.reconcile().action == ReconcileAction.IMPORTED

    def test_failed_lookup_never_creates(self, context: ReconcileContext) -> None:
        """Test that a lookup that could not decide never falls through to create."""
        reconciler = WidgetReconciler(context)
        reconciler.lookup_errors = [client_error("ValidationError")]
        with pytest.raises(LookupFailedError):
            reconciler.reconcile()
        assert reconciler.created == 0

    def test_dry_run_changes_nothing(self, make_config: Callable[..., KeystoneConfig]) -> None:
        """Test that a dry run reports intent without mutating or recording."""
        config = make_config(dry_run=True)
        ledger = Ledger.for_account(config.state_dir, "dev", DEV_ACCOUNT)
        context = ReconcileContext(config=config, account=Account(DEV_ACCOUNT, "dev"), session=None, ledger=ledger)

        created = WidgetReconciler(context)
        status = created.reconcile()
        assert status.action == ReconcileAction.CREATED
        assert status.detail == "dry run: would create"
        assert created.created == 0

        drifted = WidgetReconciler(context, store={"widget-1": Widget(1)})
        status = drifted.reconcile()
        assert status.action == ReconcileAction.UPDATED
        assert status.detail == "dry run: drift corrected"
        assert drifted.updated == 0
        assert not ledger.path.exists()


class TestReconcileContext:
    """Test ReconcileContext helpers."""

    def test_client_needs_session(self, context: ReconcileContext) -> None:
        """Test that offline contexts cannot create clients."""
        with pytest.raises(RuntimeError):
            context.client("iam")

    def test_tags_and_backend(self, context: ReconcileContext) -> None:
        """Test resource tags and the backend names of the account."""
        assert {"Key": "Environment", "Value": "dev"} in context.tags()
        backend = context.backend
        assert backend.bucket == f"site-state-dev-{DEV_ACCOUNT}"
        assert backend.lock_table == "site-locks-dev"
        assert backend.lock_id("workload") == f"site-state-dev-{DEV_ACCOUNT}/workload/dev/terraform.tfstate"
        assert backend.digest_id("workload").endswith("terraform.tfstate-md5")
        assert backend == build_state_backend(context.config, context.account)
