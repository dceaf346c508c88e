"""
Error taxonomy for bootstrap and reconciliation.

Recoverable errors are absorbed by the reconciliation loop; fatal ones halt
the run and carry enough context (expected vs. actual) to act on without
guessing.
"""

from typing import List, Optional, Sequence


class KeystoneError(Exception):
    """Base class for all Keystone errors."""

    retryable = False
    fatal = True


class TrustMismatchError(KeystoneError):
    """
    Raised when trust material differs from what is expected.

    Never recovered by widening trust or overwriting the existing anchor.
    """

    def __init__(self, message: str, expected: object = None, actual: object = None) -> None:
        self.expected = expected
        self.actual = actual
        detail = message
        if expected is not None or actual is not None:
            detail = f"{message} (expected: {expected}, actual: {actual})"
        super().__init__(detail)


class FingerprintMismatchError(TrustMismatchError):
    """Raised when an existing identity provider trusts a different signing certificate."""


class ResourceOwnershipError(TrustMismatchError):
    """Raised when a globally named resource is owned by another account."""


class AlreadyExistsError(KeystoneError):
    """Raised when a create call races an existing resource."""

    retryable = False
    fatal = False


class DependencyMissingError(KeystoneError):
    """Raised when a step runs before the resource it depends on exists."""

    retryable = True

    def __init__(self, message: str, missing: Optional[str] = None) -> None:
        self.missing = missing
        super().__init__(message)


class DependencyChainError(DependencyMissingError):
    """Raised when a failed resource is a hard dependency of a later step."""

    retryable = False

    def __init__(self, step: str, failed_dependencies: Sequence[str]) -> None:
        self.step = step
        self.failed_dependencies = list(failed_dependencies)
        super().__init__(
            f"Cannot reconcile {step}: required resource(s) failed earlier in this run: "
            f"{', '.join(self.failed_dependencies)}. Fix the failure above and re-run; "
            f"converged resources will be skipped.",
            missing=", ".join(self.failed_dependencies),
        )


class PropagationTimeoutError(KeystoneError):
    """Raised when an eventually consistent control plane does not converge in time."""

    retryable = True


class PermissionDeniedError(KeystoneError):
    """
    Raised when the bootstrap identity is refused an API call.

    Requires human escalation; no alternative call path is attempted.
    """

    def __init__(self, operation: str, resource: str, message: str) -> None:
        self.operation = operation
        self.resource = resource
        super().__init__(
            f"Permission denied calling {operation} on {resource}: {message}. "
            f"Grant the bootstrap role this permission and re-run."
        )


class LookupFailedError(KeystoneError):
    """Raised when an existence check could not determine whether a resource exists."""


class AccountResolutionError(KeystoneError):
    """Raised when an environment has no account identifier in any source."""


class AccountNotActiveError(KeystoneError):
    """Raised when a member account is suspended or pending closure."""


class PolicyValidationError(KeystoneError):
    """Raised when a permission or trust document violates authoring rules."""

    def __init__(self, policy_name: str, violations: List[str]) -> None:
        self.policy_name = policy_name
        self.violations = violations
        joined = "\n  - ".join(violations)
        super().__init__(f"Policy '{policy_name}' failed validation:\n  - {joined}")
