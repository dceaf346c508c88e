"""
Tests for keystone.reconcile.registry module.

Tests for reconciler registration, discovery and ordering.
"""

from typing import List

import pytest

import keystone.reconcile  # noqa: F401  (triggers discovery)
from keystone.enums import Phase, ResourceKind
from keystone.reconcile.engine import reconciler_classes
from keystone.reconcile.registry import get_all_reconciler_classes, register_reconciler


def names(phase: Phase) -> List[str]:
    return [cls.RECONCILER_NAME for cls in get_all_reconciler_classes(phase)]


class TestRegistry:
    """Test the reconciler registry."""

    def test_foundation_order(self) -> None:
        """Test that foundation reconcilers run trust anchor first and the sweep last."""
        assert names(Phase.FOUNDATION) == [
            "identity_provider",
            "deployment_role",
            "state_bucket",
            "lock_table",
            "policy_attachment",
            "stale_lock",
        ]

    def test_admin_and_broker_phases(self) -> None:
        """Test the admin and broker phase reconcilers."""
        assert names(Phase.ADMIN) == ["admin_role", "readonly_role"]
        assert names(Phase.BROKER) == [
            "broker_identity_provider",
            "broker_role",
            "broker_policy_attachment",
        ]

    def test_registration_attributes(self) -> None:
        """Test that the decorator stamps kind, phase, order and dependencies."""
        (cls,) = [cls for cls in get_all_reconciler_classes() if cls.RECONCILER_NAME == "policy_attachment"]
        assert cls.KIND == ResourceKind.POLICY_ATTACHMENT
        assert cls.PHASE == Phase.FOUNDATION
        assert cls.ORDER == 60
        assert cls.DEPENDS_ON == (ResourceKind.DEPLOYMENT_ROLE, ResourceKind.STATE_BUCKET, ResourceKind.LOCK_TABLE)

    def test_duplicate_name_rejected(self) -> None:
        """Test that a second class cannot take an existing name."""
        with pytest.raises(ValueError):
            @register_reconciler("lock_table", ResourceKind.LOCK_TABLE, Phase.FOUNDATION, order=50)
            class Duplicate:  # type: ignore[misc]
                pass

    def test_all_classes_unfiltered(self) -> None:
        """Test that every registered reconciler is listed without a phase filter."""
        assert len(get_all_reconciler_classes()) == 11

    def test_engine_merges_phases_by_order(self) -> None:
        """Test that foundation and admin reconcilers interleave by order."""
        ordered = [cls.RECONCILER_NAME for cls in reconciler_classes([Phase.FOUNDATION, Phase.ADMIN])]
        assert ordered.index("admin_role") > ordered.index("deployment_role")
        assert ordered.index("admin_role") < ordered.index("state_bucket")
