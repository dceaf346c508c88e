"""
Base reconciler framework.

This module provides an abstract base class that implements the Template
Method pattern for every managed resource. Concrete reconcilers implement
identifier(), lookup(), desired(), matches() and create(); the base class
turns their answers into a create/import/update/skip decision, performs it,
and records the outcome.
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar

from boto3.session import Session
from botocore.exceptions import ClientError

from ..aws.helpers import client_for, is_propagation_lag, is_retryable, retry_with_backoff, translate_client_error
from ..aws.lookup import LookupResult
from ..config import KeystoneConfig
from ..enums import Phase, ReconcileAction, ResourceKind
from ..errors import AlreadyExistsError, DependencyMissingError, KeystoneError, LookupFailedError, TrustMismatchError
from ..output import OutputHandler
from ..types import Account, ResourceStatus, StateBackend
from ..utils import lock_table_name, resource_tags, state_bucket_name
from .ledger import Ledger

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_state_backend(config: KeystoneConfig, account: Account) -> StateBackend:
    """State bucket and lock table of an environment account."""
    project = config.project_name
    return StateBackend(
        environment=account.environment,
        account_id=account.account_id,
        region=config.region,
        bucket=state_bucket_name(project, account.environment, account.account_id),
        lock_table=lock_table_name(project, account.environment),
    )


@dataclass
class ReconcileContext:
    """
    Everything a reconciler needs for one account.

    Attributes:
        config: Validated Keystone configuration
        account: Account being reconciled
        session: boto3 Session with bootstrap access to the account; None until credentials are obtained
        ledger: Tracked-state ledger of the account
        accounts: Resolved environment -> account map for the whole run
        clients: Cache of boto3 clients created for this account
    """
    config: KeystoneConfig
    account: Account
    session: Optional[Session]
    ledger: Ledger
    accounts: Mapping[str, Account] = field(default_factory=dict)
    clients: Dict[str, Any] = field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    @property
    def environment(self) -> str:
        return self.account.environment

    @property
    def account_id(self) -> str:
        return self.account.account_id

    def client(self, service: str) -> Any:
        if service not in self.clients:
            if self.session is None:
                raise RuntimeError(f"No session for account {self.account_id}; cannot create a {service} client")
            self.clients[service] = client_for(self.session, service, self.config.region)
        return self.clients[service]

    def tags(self) -> List[Dict[str, str]]:
        return resource_tags(self.config.project_name, self.environment)

    @property
    def backend(self) -> StateBackend:
        return build_state_backend(self.config, self.account)

    def retry(self, func: Callable[[], T], description: str) -> T:
        retry = self.config.retry
        return retry_with_backoff(
            func,
            description,
            max_attempts=retry.max_attempts,
            base_delay=retry.base_delay_seconds,
            max_delay=retry.max_delay_seconds,
        )


class BaseReconciler(ABC, Generic[T]):
    """
    Abstract base class for all resource reconcilers.

    Implements template method pattern for reconciliation.
    Subclasses implement:
    - identifier(): Deterministic identity of the resource
    - lookup(): Tri-state existence check
    - desired(): Desired configuration (JSON-serializable)
    - matches(): Whether an observed resource already converges
    - create(): Create the resource
    Updatable kinds also set UPDATABLE and implement update().
    """

    # These are set by the @register_reconciler decorator
    RECONCILER_NAME: str
    KIND: ResourceKind
    PHASE: Phase
    ORDER: int
    DEPENDS_ON: Tuple[ResourceKind, ...] = ()

    # Present-but-different resources are updated in place when True;
    # otherwise the difference is a trust mismatch
    UPDATABLE = False
    UPDATE_DETAIL = "drift corrected"
    # Kinds that are health checks rather than owned resources are never "imported"
    TRACKS_IDENTITY = True

    def __init__(self, context: ReconcileContext, **kwargs: Any) -> None:
        """
        Initialize the reconciler.

        Args:
            context: Reconciliation context for the account
            **kwargs: Reconciler-specific parameters (ignored by base class)
        """
        self.context = context
        self.config = context.config

    @classmethod
    def instances(cls, context: ReconcileContext) -> Sequence["BaseReconciler[Any]"]:
        """Reconcilers to run for an account; kinds with several resources return one per resource."""
        return [cls(context)]

    def applicable(self) -> bool:
        """False when the configuration does not call for this resource."""
        return True

    def hard_dependencies(self) -> Tuple[ResourceKind, ...]:
        return self.DEPENDS_ON

    def preflight(self) -> None:
        """Offline checks run for every resource before the first mutation of a run."""

    @abstractmethod
    def identifier(self) -> str:
        """Deterministic identifier (name or ARN) of the resource."""

    @abstractmethod
    def lookup(self) -> LookupResult[T]:
        """
        Query current state by deterministic identifier.

        Returns:
            Absent, Present(observed) or LookupFailed
        """

    @abstractmethod
    def desired(self) -> Any:
        """Desired configuration, JSON-serializable."""

    @abstractmethod
    def matches(self, observed: T) -> bool:
        """True if the observed resource already has the desired configuration."""

    @abstractmethod
    def create(self) -> None:
        """Create the resource with its desired configuration."""

    def update(self, observed: T) -> None:
        """Bring an existing resource to its desired configuration."""
        raise NotImplementedError(f"{self.KIND.value} cannot be updated in place")

    def describe_difference(self, observed: T) -> Tuple[Any, Any]:
        """(expected, actual) pair reported when an observed resource does not match."""
        return self.desired(), observed

    def desired_digest(self) -> str:
        payload = json.dumps(self.desired(), sort_keys=True, default=str)
        return hashlib.sha256(payload.encode()).hexdigest()

    def _status(self, action: ReconcileAction, detail: str = "", error: Optional[str] = None) -> ResourceStatus:
        return ResourceStatus(
            account_id=self.context.account_id,
            environment=self.context.environment,
            kind=self.KIND,
            identifier=self.identifier(),
            action=action,
            detail=detail,
            error=error,
        )

    def failed_status(self, error: BaseException) -> ResourceStatus:
        return self._status(ReconcileAction.FAILED, error=str(error))

    def _lookup_with_retry(self) -> LookupResult[T]:
        def attempt() -> LookupResult[T]:
            result = self.lookup()
            if result.is_failed and result.error is not None and is_retryable(result.error):
                raise result.error
            return result

        result = self.context.retry(attempt, f"lookup of {self.KIND.value} {self.identifier()}")
        if result.is_failed:
            error = result.error
            if isinstance(error, KeystoneError) and error.fatal and not isinstance(error, LookupFailedError):
                raise error
            raise LookupFailedError(
                f"Could not determine whether {self.KIND.value} {self.identifier()} exists: {error}"
            ) from error
        return result

    def _mutate(self, func: Callable[[], None], description: str) -> None:
        def attempt() -> None:
            try:
                func()
            except ClientError as e:
                if is_propagation_lag(e):
                    raise DependencyMissingError(f"{description}: {e}", missing=self.identifier()) from e
                translated = translate_client_error(e, description, self.identifier())
                if translated is e:
                    raise
                raise translated from e

        self.context.retry(attempt, description)

    def _converge_existing(self, observed: T, tracked: bool, imported_detail: str = "") -> ResourceStatus:
        if self.matches(observed):
            if tracked or not self.TRACKS_IDENTITY:
                return self._status(ReconcileAction.SKIPPED, "already converged")
            return self._status(ReconcileAction.IMPORTED, imported_detail or "existing resource adopted")
        if not self.UPDATABLE:
            expected, actual = self.describe_difference(observed)
            raise TrustMismatchError(
                f"{self.KIND.value} {self.identifier()} exists with a different configuration",
                expected=expected,
                actual=actual,
            )
        if not self.context.dry_run:
            self._mutate(lambda: self.update(observed), f"update {self.KIND.value} {self.identifier()}")
        return self._status(ReconcileAction.UPDATED, self.UPDATE_DETAIL)

    def reconcile(self) -> ResourceStatus:
        """
        Reconcile the resource (template method).

        This method orchestrates the whole decision:
        1. Lookup: tri-state existence check, retried while retryable
        2. Absent: create, falling back to import if a concurrent creator won
        3. Present: skip (tracked), import (untracked) or update (drifted)
        4. Record: persist the outcome in the account ledger
        5. Log: report the outcome

        Returns:
            ResourceStatus describing the action taken

        Raises:
            TrustMismatchError: If an existing resource differs and cannot be updated
            PermissionDeniedError: If the bootstrap identity is refused a call
            LookupFailedError: If existence could not be determined
        """
        tracked = self.context.ledger.is_tracked(self.KIND, self.identifier())
        result = self._lookup_with_retry()

        if result.is_present and result.value is not None:
            status = self._converge_existing(result.value, tracked)
        elif self.context.dry_run:
            status = self._status(ReconcileAction.CREATED, "dry run: would create")
        else:
            try:
                self._mutate(self.create, f"create {self.KIND.value} {self.identifier()}")
                status = self._status(ReconcileAction.CREATED)
            except AlreadyExistsError:
                logger.info(f"{self.KIND.value} {self.identifier()} appeared concurrently; importing it")
                observed = self._lookup_with_retry().require(f"{self.KIND.value} {self.identifier()}")
                status = self._converge_existing(observed, tracked=False, imported_detail="created concurrently; adopted")

        if self.context.dry_run:
            status.detail = status.detail if status.detail.startswith("dry run") else f"dry run: {status.detail}"
        else:
            self.context.ledger.record(status, self.desired_digest())
        OutputHandler.resource_reconciled(status)
        return status
