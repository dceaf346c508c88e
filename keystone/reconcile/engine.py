"""
Reconciliation engine.

Runs the registered reconcilers account by account: the broker phase in
the management account first (member trust policies reference the broker
by ARN, which IAM rejects until it exists), then the foundation and admin
phases in every selected member account, in registration order.
"""

import logging
from typing import Dict, List, Mapping, Optional, Set, Type

from boto3.session import Session
from botocore.exceptions import ClientError

from ..accounts import (
    get_account_session,
    get_management_session,
    management_account,
    resolve_accounts,
    wait_for_account_active,
)
from ..aws.helpers import client_for
from ..config import KeystoneConfig
from ..enums import Phase, ReconcileAction, ResourceKind, TrustTopology
from ..errors import (
    DependencyChainError,
    KeystoneError,
    PermissionDeniedError,
    PolicyValidationError,
    TrustMismatchError,
)
from ..output import OutputHandler
from ..types import Account, ResourceStatus
from ..utils import format_account_identifier
from .base import BaseReconciler, ReconcileContext
from .ledger import Ledger
from .registry import get_all_reconciler_classes

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Errors that stop the whole run; anything else fails only its own resource
ABORTING_ERRORS = (TrustMismatchError, PermissionDeniedError, PolicyValidationError, DependencyChainError)

MEMBER_PHASES = (Phase.FOUNDATION, Phase.ADMIN)


def reconciler_classes(phases: List[Phase]) -> List[Type[BaseReconciler]]:
    """Registered reconcilers of the given phases, in execution order."""
    classes = [cls for phase in phases for cls in get_all_reconciler_classes(phase)]
    return sorted(classes, key=lambda cls: (cls.ORDER, cls.RECONCILER_NAME))


class ReconciliationEngine:
    """
    Orchestrates one bootstrap run.

    Attributes:
        config: Validated Keystone configuration
        statuses: Status of every resource handled so far, in run order
        accounts: Accounts resolved for the run, by environment
    """

    def __init__(
        self,
        config: KeystoneConfig,
        management_session: Optional[Session] = None,
        file_accounts: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config = config
        self._management_session = management_session
        self._file_accounts = file_accounts
        self.statuses: List[ResourceStatus] = []
        self.accounts: Mapping[str, Account] = {}

    @property
    def management_session(self) -> Session:
        if self._management_session is None:
            self._management_session = get_management_session(self.config)
        return self._management_session

    def broker_enabled(self) -> bool:
        return (
            Phase.BROKER in self.config.active_phases()
            and self.config.trust_topology in (TrustTopology.CHAINED, TrustTopology.MIGRATION)
        )

    def resolve(self) -> Mapping[str, Account]:
        """
        Resolve accounts for the run.

        The broker's permission enumerates every environment's deployment
        role, so all environments are resolved when the broker phase runs.
        """
        environments = list(self.config.environments) if self.broker_enabled() else None
        return resolve_accounts(self.config, self._file_accounts, environments)

    def selected_accounts(self) -> Mapping[str, Account]:
        """Accounts of the selected environments, as resolved at the start of the run."""
        return {environment: self.accounts[environment] for environment in self.config.active_environments()}

    def build_context(self, account: Account, accounts: Mapping[str, Account]) -> ReconcileContext:
        ledger = Ledger.for_account(self.config.state_dir, account.environment, account.account_id)
        return ReconcileContext(config=self.config, account=account, session=None, ledger=ledger, accounts=accounts)

    def plan_reconcilers(self, context: ReconcileContext, phases: List[Phase]) -> List[BaseReconciler]:
        """Applicable reconciler instances for one account, in execution order."""
        planned: List[BaseReconciler] = []
        for cls in reconciler_classes(phases):
            for reconciler in cls.instances(context):
                if reconciler.applicable():
                    planned.append(reconciler)
        return planned

    def preflight(self, plans: Dict[str, List[BaseReconciler]]) -> None:
        """
        Validate every trust and permission document of the run before any mutation.

        Raises:
            PolicyValidationError: On the first document that violates an authoring rule
        """
        for label, reconcilers in plans.items():
            logger.info(f"Validating {len(reconcilers)} resource definition(s) for {label}")
            for reconciler in reconcilers:
                reconciler.preflight()

    def run(self) -> List[ResourceStatus]:
        """
        Reconcile every selected account.

        Returns:
            Status of every resource, in run order

        Raises:
            TrustMismatchError: If existing trust material differs from the desired trust
            PermissionDeniedError: If the bootstrap identity is refused a call
            PolicyValidationError: If a document fails authoring-time validation
            DependencyChainError: If a hard dependency of a later step failed
            AccountResolutionError: If an environment has no account id
            AccountNotActiveError: If a member account is suspended or closing
        """
        mode = "dry run" if self.config.dry_run else "apply"
        logger.info(f"Starting bootstrap ({mode}) with {self.config.trust_topology.value} trust topology")

        accounts = self.resolve()
        self.accounts = accounts
        member_phases = [phase for phase in self.config.active_phases() if phase in MEMBER_PHASES]

        plans: Dict[str, List[BaseReconciler]] = {}
        contexts: Dict[str, ReconcileContext] = {}
        if self.broker_enabled():
            context = self.build_context(management_account(self.config), accounts)
            plans["management"] = self.plan_reconcilers(context, [Phase.BROKER])
            contexts["management"] = context
        for environment in self.config.active_environments():
            context = self.build_context(accounts[environment], accounts)
            plans[environment] = self.plan_reconcilers(context, member_phases)
            contexts[environment] = context

        self.preflight(plans)

        for label, context in contexts.items():
            if not plans[label]:
                logger.info(f"Nothing to reconcile for {label}")
                continue
            self.reconcile_account(context, plans[label])

        logger.info(f"Bootstrap ({mode}) completed: {len(self.statuses)} resource(s) reconciled")
        return self.statuses

    def open_session(self, account: Account) -> Session:
        if account.account_id == self.config.management_account_id:
            return self.management_session
        org_client = client_for(self.management_session, "organizations", self.config.region)
        wait_for_account_active(
            org_client,
            account.account_id,
            self.config.account_poll_timeout_seconds,
            self.config.account_poll_interval_seconds,
        )
        return get_account_session(self.config, self.management_session, account)

    def reconcile_account(self, context: ReconcileContext, reconcilers: List[BaseReconciler]) -> None:
        """
        Run the planned reconcilers of one account, sequentially.

        A failed resource is recorded and its siblings continue; a later
        resource that hard-depends on the failed kind aborts the run.
        """
        account_identifier = format_account_identifier(context.environment, context.account_id)
        OutputHandler.section_header(f"Reconciling {account_identifier}")
        context.session = self.open_session(context.account)

        failed_kinds: Set[ResourceKind] = set()
        for reconciler in reconcilers:
            blocked = [kind.value for kind in reconciler.hard_dependencies() if kind in failed_kinds]
            if blocked:
                error = DependencyChainError(f"{reconciler.KIND.value} {reconciler.identifier()}", blocked)
                self._record_failure(reconciler, error)
                raise error

            try:
                status = reconciler.reconcile()
            except ABORTING_ERRORS as e:
                self._record_failure(reconciler, e)
                raise
            except (KeystoneError, ClientError) as e:
                logger.error(f"{reconciler.KIND.value} {reconciler.identifier()} failed: {e}", exc_info=True)
                failed_kinds.add(reconciler.KIND)
                self._record_failure(reconciler, e)
                continue
            self.statuses.append(status)

        logger.info(f"Finished {account_identifier}")

    def _record_failure(self, reconciler: BaseReconciler, error: Exception) -> None:
        status = reconciler.failed_status(error)
        if not reconciler.context.dry_run:
            reconciler.context.ledger.record(status, reconciler.desired_digest())
        OutputHandler.resource_reconciled(status)
        self.statuses.append(status)

    def failed(self) -> List[ResourceStatus]:
        return [status for status in self.statuses if status.action == ReconcileAction.FAILED]
