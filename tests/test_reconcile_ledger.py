"""
Tests for keystone.reconcile.ledger module.

Tests for per-account tracked-state persistence.
"""

import json
from pathlib import Path

import pytest

from keystone.enums import ReconcileAction, ResourceKind
from keystone.reconcile.ledger import Ledger, LedgerPathResolver
from keystone.types import ResourceStatus

from conftest import DEV_ACCOUNT, PROD_ACCOUNT


def status(action: ReconcileAction, identifier: str = "GitHubActions-Site-Dev-Role", error: str = "") -> ResourceStatus:
    return ResourceStatus(
        account_id=DEV_ACCOUNT,
        environment="dev",
        kind=ResourceKind.DEPLOYMENT_ROLE,
        identifier=identifier,
        action=action,
        error=error or None,
    )


class TestLedgerPathResolver:
    """Test LedgerPathResolver class."""

    def test_file_path(self) -> None:
        """Test the per-account ledger file name."""
        resolver = LedgerPathResolver(state_dir="/state", environment="dev", account_id=DEV_ACCOUNT)
        assert resolver.get_file_path() == Path(f"/state/dev_{DEV_ACCOUNT}.json")


class TestLedger:
    """Test Ledger class."""

    def test_new_ledger_is_empty(self, tmp_path: Path) -> None:
        """Test that a missing file means nothing is tracked."""
        ledger = Ledger.for_account(str(tmp_path), "dev", DEV_ACCOUNT)
        assert not ledger.is_tracked(ResourceKind.DEPLOYMENT_ROLE, "GitHubActions-Site-Dev-Role")
        assert not ledger.path.exists()

    def test_record_persists(self, tmp_path: Path) -> None:
        """Test that a recorded resource is tracked after reloading."""
        ledger = Ledger.for_account(str(tmp_path), "dev", DEV_ACCOUNT)
        ledger.record(status(ReconcileAction.CREATED), "digest-1")

        reloaded = Ledger.for_account(str(tmp_path), "dev", DEV_ACCOUNT)
        assert reloaded.is_tracked(ResourceKind.DEPLOYMENT_ROLE, "GitHubActions-Site-Dev-Role")
        entry = reloaded.entries["deployment_role:GitHubActions-Site-Dev-Role"]
        assert entry["action"] == "created"
        assert entry["desired_digest"] == "digest-1"

        data = json.loads(ledger.path.read_text())
        assert data["version"] == 1
        assert data["account_id"] == DEV_ACCOUNT
        assert data["environment"] == "dev"

    def test_failure_does_not_track(self, tmp_path: Path) -> None:
        """Test that a resource that only ever failed is not tracked."""
        ledger = Ledger.for_account(str(tmp_path), "dev", DEV_ACCOUNT)
        ledger.record(status(ReconcileAction.FAILED, error="boom"), "digest")
        assert not ledger.is_tracked(ResourceKind.DEPLOYMENT_ROLE, "GitHubActions-Site-Dev-Role")

    def test_failure_keeps_earlier_tracking(self, tmp_path: Path) -> None:
        """Test that a later failure never untracks a converged resource."""
        ledger = Ledger.for_account(str(tmp_path), "dev", DEV_ACCOUNT)
        ledger.record(status(ReconcileAction.IMPORTED), "digest")
        ledger.record(status(ReconcileAction.FAILED, error="throttled"), "digest")

        entry = ledger.entries["deployment_role:GitHubActions-Site-Dev-Role"]
        assert entry["action"] == "imported"
        assert entry["last_error"] == "throttled"
        assert ledger.is_tracked(ResourceKind.DEPLOYMENT_ROLE, "GitHubActions-Site-Dev-Role")

    def test_ledger_of_another_account_is_rejected(self, tmp_path: Path) -> None:
        """Test that a ledger file is never applied to a different account."""
        Ledger.for_account(str(tmp_path), "dev", DEV_ACCOUNT).record(status(ReconcileAction.CREATED), "d")
        path = tmp_path / f"dev_{PROD_ACCOUNT}.json"
        path.write_text((tmp_path / f"dev_{DEV_ACCOUNT}.json").read_text())
        with pytest.raises(ValueError):
            Ledger.for_account(str(tmp_path), "dev", PROD_ACCOUNT)
