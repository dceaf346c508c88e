"""
Enumerations for Keystone application.

This module contains all enum types used throughout the application
to replace magic strings and improve type safety.
"""

from enum import Enum


class EnvironmentTier(str, Enum):
    """Risk tier of an environment."""
    NONPROD = "nonprod"
    PRODUCTION = "production"


class TrustTopology(str, Enum):
    """How the pipeline reaches a deployment role."""
    DIRECT = "direct"
    CHAINED = "chained"
    # Both statements rendered while pipelines move from chained to direct
    MIGRATION = "migration"


class ResourceKind(str, Enum):
    """Kinds of resources managed by the reconciliation engine."""
    IDENTITY_PROVIDER = "identity_provider"
    DEPLOYMENT_ROLE = "deployment_role"
    BROKER_ROLE = "broker_role"
    ADMIN_ROLE = "admin_role"
    READONLY_ROLE = "readonly_role"
    STATE_BUCKET = "state_bucket"
    LOCK_TABLE = "lock_table"
    POLICY_ATTACHMENT = "policy_attachment"
    STALE_LOCK = "stale_lock"


class ReconcileAction(str, Enum):
    """Action taken for a resource during one run."""
    CREATED = "created"
    IMPORTED = "imported"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class LookupState(str, Enum):
    """Outcome of an existence check."""
    ABSENT = "absent"
    PRESENT = "present"
    LOOKUP_FAILED = "lookup_failed"


class Phase(str, Enum):
    """Bootstrap phases, each owning a disjoint set of named resources."""
    FOUNDATION = "foundation"
    ADMIN = "admin"
    BROKER = "broker"


class Effect(str, Enum):
    """IAM statement effect."""
    ALLOW = "Allow"
    DENY = "Deny"


class Decision(str, Enum):
    """Result of evaluating a request against policy documents."""
    ALLOWED = "allowed"
    EXPLICIT_DENY = "explicit_deny"
    IMPLICIT_DENY = "implicit_deny"
