"""
Tri-state existence checks.

A lookup either proves a resource is absent, returns its observed
configuration, or reports that the check itself failed. A failed lookup is
never treated as absent, because creating on top of a resource that merely
could not be read produces duplicate-resource errors.
"""

from dataclasses import dataclass
from typing import Callable, Collection, Generic, Optional, TypeVar

from botocore.exceptions import ClientError

from ..enums import LookupState
from ..errors import LookupFailedError
from .helpers import error_code, translate_client_error

T = TypeVar("T")


@dataclass(frozen=True)
class LookupResult(Generic[T]):
    """
    Outcome of an existence check.

    Attributes:
        state: ABSENT, PRESENT or LOOKUP_FAILED
        value: Observed configuration when PRESENT
        error: Underlying error when LOOKUP_FAILED
    """
    state: LookupState
    value: Optional[T] = None
    error: Optional[Exception] = None

    @classmethod
    def absent(cls) -> "LookupResult[T]":
        return cls(state=LookupState.ABSENT)

    @classmethod
    def present(cls, value: T) -> "LookupResult[T]":
        return cls(state=LookupState.PRESENT, value=value)

    @classmethod
    def failed(cls, error: Exception) -> "LookupResult[T]":
        return cls(state=LookupState.LOOKUP_FAILED, error=error)

    @property
    def is_absent(self) -> bool:
        return self.state == LookupState.ABSENT

    @property
    def is_present(self) -> bool:
        return self.state == LookupState.PRESENT

    @property
    def is_failed(self) -> bool:
        return self.state == LookupState.LOOKUP_FAILED

    def require(self, description: str) -> T:
        """
        Return the observed value, or raise if the resource is not known to exist.

        Raises:
            LookupFailedError: If the lookup failed or the resource is absent
        """
        if self.is_present and self.value is not None:
            return self.value
        if self.is_failed:
            raise LookupFailedError(f"Could not determine whether {description} exists: {self.error}")
        raise LookupFailedError(f"{description} does not exist")


def lookup(
    fetch: Callable[[], Optional[T]],
    not_found_codes: Collection[str],
    operation: str,
    resource: str,
) -> LookupResult[T]:
    """
    Run an existence check and fold its outcome into a LookupResult.

    Args:
        fetch: Callable returning the observed configuration, or None when absent
        not_found_codes: Error codes that prove the resource does not exist
        operation: API operation performed, for error context
        resource: Resource identifier, for error context

    Returns:
        LookupResult in one of its three states
    """
    try:
        value = fetch()
    except ClientError as exc:
        if error_code(exc) in not_found_codes:
            return LookupResult.absent()
        return LookupResult.failed(translate_client_error(exc, operation, resource))
    if value is None:
        return LookupResult.absent()
    return LookupResult.present(value)
