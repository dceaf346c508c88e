"""
Shared AWS helper utilities for clients, pagination, error classification,
bounded retries and polling.
"""

import logging
import time
from collections.abc import Iterator
from typing import Any, Callable, Optional, TypeVar

from boto3.session import Session
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import ClientError

from ..errors import (
    AlreadyExistsError,
    KeystoneError,
    PermissionDeniedError,
    PropagationTimeoutError,
    ResourceOwnershipError,
)

__all__ = [
    "CLIENT_CONFIG",
    "backoff_seconds",
    "client_for",
    "error_code",
    "is_propagation_lag",
    "is_retryable",
    "paginate",
    "poll_until",
    "retry_with_backoff",
    "translate_client_error",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLIENT_CONFIG = Config(retries={"max_attempts": 5, "mode": "standard"})

ALREADY_EXISTS_CODES = {
    "EntityAlreadyExists",
    "BucketAlreadyOwnedByYou",
    "ResourceInUseException",
}
OWNERSHIP_CODES = {"BucketAlreadyExists"}
PERMISSION_DENIED_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
    "UnauthorizedAccess",
}
RETRYABLE_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "ServiceFailure",
    "ServiceUnavailable",
    "InternalError",
    "SlowDown",
    "OperationAborted",
    "ConcurrentModification",
    "ProvisionedThroughputExceededException",
    # IAM reports unreachable issuers as InvalidInput; see is_retryable
    "InvalidInput",
}


def client_for(session: Session, service: str, region: Optional[str] = None) -> Any:
    """
    Create a boto3 client with the standard retry mode enabled.

    Args:
        session: boto3 Session scoped to the target account
        service: Service name (iam, s3, dynamodb, ...)
        region: Optional region override

    Returns:
        boto3 client for the service
    """
    if region:
        return session.client(service, region_name=region, config=CLIENT_CONFIG)
    return session.client(service, config=CLIENT_CONFIG)


def paginate(
    client: BaseClient,
    operation_name: str,
    **operation_kwargs: Any
) -> Iterator[dict[str, Any]]:
    """
    Yield pages for a paginated AWS API operation.
    """
    paginator = client.get_paginator(operation_name)
    for page in paginator.paginate(**operation_kwargs):
        yield page


def error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", "Unknown"))


def _error_message(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Message", exc))


def is_retryable(exc: BaseException) -> bool:
    """
    Decide whether an error is worth retrying with backoff.

    InvalidInput is retryable only when IAM could not reach the issuer to
    fetch its certificate; any other InvalidInput is a caller error.
    """
    if isinstance(exc, KeystoneError):
        return exc.retryable
    if not isinstance(exc, ClientError):
        return False
    code = error_code(exc)
    if code not in RETRYABLE_CODES:
        return False
    if code == "InvalidInput":
        message = _error_message(exc).lower()
        return "unable to" in message or "could not" in message or "timed out" in message
    return True


def is_propagation_lag(exc: ClientError) -> bool:
    """
    True when IAM refuses a call only because a just-created entity has not
    propagated yet (the role is not found, or a new principal is 'invalid').
    """
    code = error_code(exc)
    if code == "NoSuchEntity":
        return True
    return code == "MalformedPolicyDocument" and "invalid principal" in _error_message(exc).lower()


def translate_client_error(exc: ClientError, operation: str, resource: str) -> Exception:
    """
    Map a botocore ClientError onto the Keystone error taxonomy.

    Args:
        exc: Error raised by boto3
        operation: API operation that failed
        resource: Resource identifier the call targeted

    Returns:
        A KeystoneError for known codes, otherwise the original ClientError
    """
    code = error_code(exc)
    message = _error_message(exc)
    if code in ALREADY_EXISTS_CODES:
        return AlreadyExistsError(f"{resource} already exists ({code})")
    if code in OWNERSHIP_CODES:
        return ResourceOwnershipError(
            f"{resource} is owned by another account; choose a different name",
            expected="owned by this account",
            actual=code,
        )
    if code in PERMISSION_DENIED_CODES:
        return PermissionDeniedError(operation, resource, message)
    return exc


def backoff_seconds(attempt: int, base_delay: float = 2.0, max_delay: float = 30.0) -> float:
    """Exponential delay before retry number `attempt` (1-based), capped at max_delay."""
    return float(min(max_delay, base_delay * (2 ** max(0, attempt - 1))))


def retry_with_backoff(
    func: Callable[[], T],
    description: str,
    max_attempts: int = 5,
    base_delay: float = 2.0,
    max_delay: float = 30.0,
) -> T:
    """
    Call func, retrying retryable failures with bounded exponential backoff.

    Args:
        func: Zero-argument callable performing one attempt
        description: What is being attempted, for logs and errors
        max_attempts: Total attempts including the first
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay, in seconds

    Returns:
        Whatever func returns on its first successful attempt

    Raises:
        PropagationTimeoutError: If every attempt failed with a retryable error
        Exception: Any non-retryable error, unchanged
    """
    attempt = 1
    while True:
        try:
            return func()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt >= max_attempts:
                raise PropagationTimeoutError(
                    f"{description} did not succeed after {max_attempts} attempts: {exc}"
                ) from exc
            delay = backoff_seconds(attempt, base_delay, max_delay)
            logger.warning(f"{description} failed (attempt {attempt}/{max_attempts}): {exc}; retrying in {delay:.0f}s")
            time.sleep(delay)
            attempt += 1


def poll_until(
    check: Callable[[], Optional[T]],
    description: str,
    timeout_seconds: float,
    interval_seconds: float,
) -> T:
    """
    Poll check() until it returns a non-None value or the timeout elapses.

    Raises:
        PropagationTimeoutError: If the timeout elapses first
    """
    deadline = time.monotonic() + timeout_seconds
    while True:
        result = check()
        if result is not None:
            return result
        if time.monotonic() >= deadline:
            raise PropagationTimeoutError(f"Timed out after {timeout_seconds:.0f}s waiting for {description}")
        logger.debug(f"Waiting for {description}; next check in {interval_seconds:.0f}s")
        time.sleep(interval_seconds)
