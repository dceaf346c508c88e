"""
Shared data types and models for the Keystone application.

This module contains the data classes used across the application to avoid
circular import issues and provide a single source of truth for the trust
graph: accounts, identity providers, trust statements, roles, permission
sets, state backends and per-run resource statuses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .constants import (
    CONDITION_EXTERNAL_ID,
    CONDITION_MFA_AGE,
    CONDITION_MFA_PRESENT,
    DIGEST_SUFFIX,
    STATE_KEY_TEMPLATE,
    STATE_STACKS,
)
from .enums import Effect, EnvironmentTier, ReconcileAction, ResourceKind


# Type aliases for JSON-serializable data
JsonDict = Dict[str, Any]
"""Type for JSON-serializable dictionaries with runtime-typed values."""

PolicyDocument = Dict[str, Any]
"""An IAM policy document ({"Version": ..., "Statement": [...]})."""

POLICY_VERSION = "2012-10-17"


@dataclass(frozen=True)
class Account:
    """An isolated cloud account bound to one environment."""
    account_id: str
    environment: str
    purpose: str = "workload"
    tier: EnvironmentTier = EnvironmentTier.NONPROD


@dataclass(frozen=True)
class IdentityProvider:
    """
    Federated token issuer trusted by an account.

    Attributes:
        issuer_url: Issuer URL including scheme
        audiences: Client ids (audiences) accepted from the issuer
        thumbprints: SHA-1 fingerprints of the issuer's certificate chain
    """
    issuer_url: str
    audiences: List[str]
    thumbprints: List[str]

    @property
    def host(self) -> str:
        """Issuer without scheme, as used in provider ARNs and condition keys."""
        return strip_scheme(self.issuer_url)

    def arn(self, account_id: str) -> str:
        return f"arn:aws:iam::{account_id}:oidc-provider/{self.host}"


def strip_scheme(url: str) -> str:
    """Remove the scheme and trailing slash from an issuer URL."""
    for scheme in ("https://", "http://"):
        if url.startswith(scheme):
            url = url[len(scheme):]
    return url.rstrip("/")


@dataclass(frozen=True)
class TrustStatement:
    """
    One trust statement on a role.

    Statements on a role combine as OR; the conditions of a single statement
    combine as AND. Empty condition fields are not rendered.
    """
    sid: str
    principal_type: str  # "Federated" or "AWS"
    principals: List[str]
    action: str
    issuer_host: Optional[str] = None
    audiences: List[str] = field(default_factory=list)
    subject_patterns: List[str] = field(default_factory=list)
    external_id: Optional[str] = None
    require_mfa: bool = False
    max_mfa_age_seconds: Optional[int] = None

    def to_document(self) -> JsonDict:
        """Render as an IAM trust policy statement."""
        principal: Any = self.principals[0] if len(self.principals) == 1 else sorted(self.principals)
        conditions: Dict[str, Dict[str, Any]] = {}

        if self.issuer_host and self.audiences:
            conditions.setdefault("StringEquals", {})[f"{self.issuer_host}:aud"] = _one_or_many(self.audiences)
        if self.issuer_host and self.subject_patterns:
            conditions.setdefault("StringLike", {})[f"{self.issuer_host}:sub"] = _one_or_many(self.subject_patterns)
        if self.external_id is not None:
            conditions.setdefault("StringEquals", {})[CONDITION_EXTERNAL_ID] = self.external_id
        if self.require_mfa:
            conditions.setdefault("Bool", {})[CONDITION_MFA_PRESENT] = "true"
        if self.max_mfa_age_seconds is not None:
            conditions.setdefault("NumericLessThan", {})[CONDITION_MFA_AGE] = str(self.max_mfa_age_seconds)

        statement: JsonDict = {
            "Sid": self.sid,
            "Effect": Effect.ALLOW.value,
            "Principal": {self.principal_type: principal},
            "Action": self.action,
        }
        if conditions:
            statement["Condition"] = conditions
        return statement


def _one_or_many(values: List[str]) -> Any:
    return values[0] if len(values) == 1 else sorted(values)


@dataclass(frozen=True)
class PermissionStatement:
    """A single permission statement (effect, actions, resource patterns)."""
    sid: str
    actions: List[str]
    resources: List[str]
    effect: Effect = Effect.ALLOW
    conditions: Optional[JsonDict] = None

    def to_document(self) -> JsonDict:
        statement: JsonDict = {
            "Sid": self.sid,
            "Effect": self.effect.value,
            "Action": sorted(self.actions),
            "Resource": self.resources[0] if len(self.resources) == 1 else sorted(self.resources),
        }
        if self.conditions:
            statement["Condition"] = self.conditions
        return statement


@dataclass(frozen=True)
class PermissionSet:
    """A named, independently attached permission fragment."""
    name: str
    statements: List[PermissionStatement]

    def to_document(self) -> PolicyDocument:
        return {
            "Version": POLICY_VERSION,
            "Statement": [statement.to_document() for statement in self.statements],
        }


@dataclass(frozen=True)
class Role:
    """
    Desired definition of an IAM role.

    Attributes:
        name: Role name
        kind: DEPLOYMENT_ROLE, BROKER_ROLE, ADMIN_ROLE or READONLY_ROLE
        account_id: Account the role lives in
        environment: Environment the role serves ("management" for the broker)
        trust: Trust statements (OR-combined)
        max_session_duration: Session ceiling in seconds
        path: IAM path
        description: Role description
        managed_policy_arns: Managed policies to attach
    """
    name: str
    kind: ResourceKind
    account_id: str
    environment: str
    trust: List[TrustStatement]
    max_session_duration: int
    path: str = "/"
    description: str = ""
    managed_policy_arns: List[str] = field(default_factory=list)

    @property
    def arn(self) -> str:
        return f"arn:aws:iam::{self.account_id}:role{self.path}{self.name}"

    def trust_document(self) -> PolicyDocument:
        return {
            "Version": POLICY_VERSION,
            "Statement": [statement.to_document() for statement in self.trust],
        }


@dataclass(frozen=True)
class StateBackend:
    """
    Per-environment state storage: one bucket plus one lock table.

    Objects are namespaced per logical stack; lock records are keyed by
    bucket and state key, so they embed project, environment and stack.
    """
    environment: str
    account_id: str
    region: str
    bucket: str
    lock_table: str
    stacks: List[str] = field(default_factory=lambda: list(STATE_STACKS))

    def state_key(self, stack: str) -> str:
        return STATE_KEY_TEMPLATE.format(stack=stack, env=self.environment)

    def lock_id(self, stack: str) -> str:
        return f"{self.bucket}/{self.state_key(stack)}"

    def digest_id(self, stack: str) -> str:
        return f"{self.lock_id(stack)}{DIGEST_SUFFIX}"

    @property
    def bucket_arn(self) -> str:
        return f"arn:aws:s3:::{self.bucket}"

    @property
    def lock_table_arn(self) -> str:
        return f"arn:aws:dynamodb:{self.region}:{self.account_id}:table/{self.lock_table}"


@dataclass
class ResourceStatus:
    """
    Outcome of reconciling one resource in one run.

    Attributes:
        account_id: Account the resource lives in
        environment: Environment name
        kind: Resource kind
        identifier: Deterministic resource identifier (name or ARN)
        action: Action taken
        detail: Human-readable detail
        error: Error text when action is FAILED
    """
    account_id: str
    environment: str
    kind: ResourceKind
    identifier: str
    action: ReconcileAction
    detail: str = ""
    error: Optional[str] = None

    def to_dict(self) -> JsonDict:
        data: JsonDict = {
            "account": self.account_id,
            "environment": self.environment,
            "resource_kind": self.kind.value,
            "action": self.action.value,
            "resource_id": self.identifier,
        }
        if self.detail:
            data["detail"] = self.detail
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class VerificationCheck:
    """
    One post-bootstrap verification outcome.

    Attributes:
        environment: Environment checked
        name: What was checked and the required outcome
        passed: True when the live state behaved as required
        detail: Evaluator reason or violation text
    """
    environment: str
    name: str
    passed: bool
    detail: str = ""
