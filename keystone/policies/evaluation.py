"""
Offline policy evaluation.

A small evaluator with IAM semantics for the documents Keystone composes:
explicit deny beats allow, allow beats the implicit deny, and `*` / `?`
glob over actions, resources and StringLike values. It covers the condition
operators Keystone emits and nothing else; an unknown operator never
matches, so anything it cannot model is denied.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

from ..constants import MIN_SESSION_DURATION, ROLE_CHAINING_MAX_SESSION_DURATION
from ..enums import Decision, Effect
from ..types import PolicyDocument


@lru_cache(maxsize=1024)
def _compile_glob(pattern: str, case_sensitive: bool) -> "re.Pattern[str]":
    regex = "".join(
        ".*" if char == "*" else "." if char == "?" else re.escape(char)
        for char in pattern
    )
    return re.compile(f"^{regex}$", 0 if case_sensitive else re.IGNORECASE)


def glob_match(pattern: str, value: str, case_sensitive: bool = True) -> bool:
    """Match value against an IAM-style glob where * spans any run and ? one character."""
    return bool(_compile_glob(pattern, case_sensitive).match(value))


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _condition_holds(operator: str, key: str, expected: Any, context: Dict[str, Any]) -> bool:
    if key not in context:
        return False
    actual = str(context[key])
    values = [str(value) for value in _as_list(expected)]
    if operator == "StringEquals":
        return actual in values
    if operator == "StringNotEquals":
        return actual not in values
    if operator == "StringLike":
        return any(glob_match(value, actual) for value in values)
    if operator == "Bool":
        return actual.lower() in (value.lower() for value in values)
    if operator in ("NumericLessThan", "NumericLessThanEquals"):
        try:
            number = float(actual)
            bounds = [float(value) for value in values]
        except ValueError:
            return False
        if operator == "NumericLessThan":
            return any(number < bound for bound in bounds)
        return any(number <= bound for bound in bounds)
    return False


def conditions_hold(conditions: Optional[Dict[str, Dict[str, Any]]], context: Dict[str, Any]) -> bool:
    """All operators and all keys within a Condition block must hold (AND)."""
    for operator, block in (conditions or {}).items():
        for key, expected in block.items():
            if not _condition_holds(operator, key, expected, context):
                return False
    return True


def _statements(documents: Iterable[PolicyDocument]) -> Iterable[Dict[str, Any]]:
    for document in documents:
        yield from _as_list(document.get("Statement"))


def evaluate_permissions(
    documents: Iterable[PolicyDocument],
    action: str,
    resource: str,
    context: Optional[Dict[str, Any]] = None,
) -> Decision:
    """
    Evaluate a request against the union of permission documents.

    Args:
        documents: Policy documents attached to one principal
        action: Requested action (service:Operation)
        resource: Requested resource ARN
        context: Condition keys present on the request

    Returns:
        EXPLICIT_DENY, ALLOWED or IMPLICIT_DENY
    """
    context = context or {}
    allowed = False
    for statement in _statements(documents):
        if not any(glob_match(pattern, action, case_sensitive=False) for pattern in _as_list(statement.get("Action"))):
            continue
        if not any(glob_match(pattern, resource) for pattern in _as_list(statement.get("Resource"))):
            continue
        if not conditions_hold(statement.get("Condition"), context):
            continue
        if statement.get("Effect") == Effect.DENY.value:
            return Decision.EXPLICIT_DENY
        allowed = True
    return Decision.ALLOWED if allowed else Decision.IMPLICIT_DENY


@dataclass
class AssumeRoleRequest:
    """
    A request to assume a role, as seen by the role's trust policy.

    Attributes:
        action: sts:AssumeRoleWithWebIdentity or sts:AssumeRole
        principal: Federated provider ARN or calling role ARN
        context: Request condition keys (token claims, external id, MFA)
        duration_seconds: Requested session length
        via_role_chain: True when the caller is itself an assumed-role session
    """
    action: str
    principal: str
    context: Dict[str, Any] = field(default_factory=dict)
    duration_seconds: int = 3600
    via_role_chain: bool = False


@dataclass
class TrustDecision:
    allowed: bool
    reason: str


def _principal_matches(statement_principal: Any, principal_type: str, principal: str) -> bool:
    if statement_principal == "*":
        return True
    if not isinstance(statement_principal, dict):
        return False
    for candidate in _as_list(statement_principal.get(principal_type)):
        candidate = str(candidate)
        if candidate == "*" or candidate == principal:
            return True
        if principal_type == "AWS":
            # A bare account (or account root) trusts every identity in that account
            account = candidate[:-len(":root")].rsplit(":", 1)[-1] if candidate.endswith(":root") else candidate
            if re.match(r'^\d{12}$', account) and f"::{account}:" in principal:
                return True
    return False


def evaluate_trust(document: PolicyDocument, request: AssumeRoleRequest, max_session_duration: int) -> TrustDecision:
    """
    Decide whether a role's trust policy admits a request.

    Args:
        document: The role's trust policy
        request: Assume-role request
        max_session_duration: The role's session ceiling

    Returns:
        TrustDecision with the reason for the outcome
    """
    if request.duration_seconds < MIN_SESSION_DURATION:
        return TrustDecision(False, f"requested {request.duration_seconds}s is below the {MIN_SESSION_DURATION}s minimum")
    if request.duration_seconds > max_session_duration:
        return TrustDecision(
            False, f"requested {request.duration_seconds}s exceeds the role maximum of {max_session_duration}s"
        )
    if request.via_role_chain and request.duration_seconds > ROLE_CHAINING_MAX_SESSION_DURATION:
        return TrustDecision(
            False, f"role chaining caps sessions at {ROLE_CHAINING_MAX_SESSION_DURATION}s"
        )

    principal_type = "Federated" if request.action.endswith("WithWebIdentity") else "AWS"
    allowed_by: Optional[str] = None
    for statement in _statements([document]):
        if request.action not in _as_list(statement.get("Action")) and "sts:*" not in _as_list(statement.get("Action")):
            continue
        if not _principal_matches(statement.get("Principal"), principal_type, request.principal):
            continue
        if not conditions_hold(statement.get("Condition"), request.context):
            continue
        sid = statement.get("Sid", "unnamed statement")
        if statement.get("Effect") == Effect.DENY.value:
            return TrustDecision(False, f"explicitly denied by {sid}")
        allowed_by = allowed_by or sid
    if allowed_by:
        return TrustDecision(True, f"allowed by {allowed_by}")
    return TrustDecision(False, "no trust statement matches the principal, action and conditions")
