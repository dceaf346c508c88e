"""
Post-bootstrap verification.

Reads each environment's live deployment role and evaluates its trust
policy offline against canonical requests that must be allowed or denied,
then checks that no environment's permission fragments reach into another
environment's resources.
"""

import logging
from typing import Dict, List, Mapping, Optional, Set, Tuple

from boto3.session import Session
from mypy_boto3_iam.client import IAMClient

from .accounts import get_account_session, get_management_session, resolve_accounts
from .aws.helpers import client_for
from .aws.iam import RoleRecord, find_inline_policy, find_role
from .config import KeystoneConfig
from .constants import (
    ACTION_ASSUME_ROLE,
    ACTION_ASSUME_ROLE_WITH_WEB_IDENTITY,
    CONDITION_EXTERNAL_ID,
    ROLE_CHAINING_MAX_SESSION_DURATION,
)
from .enums import TrustTopology
from .policies.evaluation import AssumeRoleRequest, TrustDecision, evaluate_trust
from .policies.permissions import PolicyFragment, deployment_fragments
from .policies.trust import broker_role_arn, identity_provider_from_config, subject_patterns_for
from .policies.validation import isolation_violations, trusted_account_ids, validate_trust_document
from .reconcile.base import build_state_backend
from .types import Account, VerificationCheck
from .utils import deployment_role_name, role_arn

logger = logging.getLogger(__name__)

FOREIGN_OWNER = "someone-else"
WRONG_AUDIENCE = "https://example.invalid"


def representative_subject(pattern: str) -> str:
    """A concrete token subject matched by a subject pattern."""
    if pattern.endswith(":*"):
        return pattern[:-1] + "ref:refs/heads/main"
    return pattern.replace("*", "main")


def foreign_subject(subject: str) -> str:
    """The same subject issued to a repository of another owner."""
    prefix, _, rest = subject.partition(":")
    repository, _, claims = rest.partition(":")
    name = repository.split("/", 1)[-1]
    return f"{prefix}:{FOREIGN_OWNER}/{name}:{claims}"


def canonical_requests(
    config: KeystoneConfig,
    environment: str,
    account_id: str,
    max_session_duration: int,
) -> List[Tuple[str, AssumeRoleRequest, bool]]:
    """
    Requests a deployment role must allow (True) or deny (False).

    Returns:
        (name, request, expected_allowed) triples for the configured topology
    """
    requests: List[Tuple[str, AssumeRoleRequest, bool]] = []
    topology = config.trust_topology

    if topology in (TrustTopology.DIRECT, TrustTopology.MIGRATION):
        provider = identity_provider_from_config(config)
        provider_arn = provider.arn(account_id)
        subject = representative_subject(subject_patterns_for(config, environment)[0])
        audience = provider.audiences[0]

        def token(sub: str, aud: str = audience, duration: int = ROLE_CHAINING_MAX_SESSION_DURATION) -> AssumeRoleRequest:
            return AssumeRoleRequest(
                action=ACTION_ASSUME_ROLE_WITH_WEB_IDENTITY,
                principal=provider_arn,
                context={f"{provider.host}:aud": aud, f"{provider.host}:sub": sub},
                duration_seconds=duration,
            )

        requests.append((f"repository subject {subject}", token(subject), True))
        requests.append(("foreign repository subject", token(foreign_subject(subject)), False))
        requests.append(("wrong audience", token(subject, aud=WRONG_AUDIENCE), False))
        requests.append(("session above role maximum", token(subject, duration=max_session_duration + 1), False))

    if topology in (TrustTopology.CHAINED, TrustTopology.MIGRATION) and config.broker.external_id:
        broker_arn = broker_role_arn(config) or ""
        external_id = config.broker.external_id

        def chained(principal: str, context: Dict[str, str], duration: int = ROLE_CHAINING_MAX_SESSION_DURATION) -> AssumeRoleRequest:
            return AssumeRoleRequest(
                action=ACTION_ASSUME_ROLE,
                principal=principal,
                context=context,
                duration_seconds=duration,
                via_role_chain=True,
            )

        management = config.management_account_id or ""
        requests.append(("broker with external id", chained(broker_arn, {CONDITION_EXTERNAL_ID: external_id}), True))
        requests.append(("broker with wrong external id", chained(broker_arn, {CONDITION_EXTERNAL_ID: external_id + "-x"}), False))
        requests.append(("broker without external id", chained(broker_arn, {}), False))
        requests.append((
            "other management-account role",
            chained(role_arn(management, "SomeOtherRole"), {CONDITION_EXTERNAL_ID: external_id}),
            False,
        ))
        requests.append((
            "chained session above one hour",
            chained(broker_arn, {CONDITION_EXTERNAL_ID: external_id}, duration=ROLE_CHAINING_MAX_SESSION_DURATION + 1),
            False,
        ))

    return requests


def check_trust(config: KeystoneConfig, account: Account, role: RoleRecord) -> List[VerificationCheck]:
    """Evaluate a live deployment role's trust against the canonical requests."""
    environment = account.environment
    checks: List[VerificationCheck] = []

    for name, request, expected in canonical_requests(config, environment, account.account_id, role.max_session_duration):
        decision: TrustDecision = evaluate_trust(role.trust_policy, request, role.max_session_duration)
        requirement = "allowed" if expected else "denied"
        checks.append(VerificationCheck(environment, f"{name} {requirement}", decision.allowed == expected, decision.reason))

    violations = validate_trust_document(role.name, role.trust_policy, machine_role=True)
    checks.append(VerificationCheck(environment, "trust policy authoring rules", not violations, "; ".join(violations)))

    expected_accounts: Set[str] = set()
    if config.trust_topology in (TrustTopology.CHAINED, TrustTopology.MIGRATION) and config.management_account_id:
        expected_accounts.add(config.management_account_id)
    unexpected = trusted_account_ids(role.trust_policy) - expected_accounts
    checks.append(VerificationCheck(
        environment,
        "no foreign accounts trusted",
        not unexpected,
        f"unexpected account(s): {sorted(unexpected)}" if unexpected else "",
    ))
    return checks


def environment_resources(config: KeystoneConfig, account: Account) -> List[str]:
    """Representative resource ARNs owned by an environment."""
    backend = build_state_backend(config, account)
    project, environment, region = config.project_name, account.environment, config.region
    resources = [backend.bucket_arn, backend.lock_table_arn]
    resources.extend(f"{backend.bucket_arn}/{backend.state_key(stack)}" for stack in backend.stacks)
    resources.extend([
        f"arn:aws:s3:::{project}-{environment}-assets",
        f"arn:aws:s3:::{project}-{environment}-assets/index.html",
        f"arn:aws:logs:{region}:{account.account_id}:log-group:/{project}/{environment}/app",
        f"arn:aws:sns:{region}:{account.account_id}:{project}-{environment}-alerts",
    ])
    return resources


def live_fragments(config: KeystoneConfig, account: Account, iam_client: IAMClient) -> List[PolicyFragment]:
    """Attached fragments as they are in the account; desired documents stand in for missing ones."""
    desired = deployment_fragments(config, account.environment, account.account_id, build_state_backend(config, account))
    role_name = deployment_role_name(config.project_name, account.environment)
    fragments: List[PolicyFragment] = []
    for fragment in desired:
        observed = find_inline_policy(iam_client, role_name, fragment.name)
        document = observed.require(f"inline policy {role_name}/{fragment.name}") if not observed.is_absent else None
        fragments.append(PolicyFragment(fragment.name, document or fragment.document))
    return fragments


def check_isolation(
    config: KeystoneConfig,
    accounts: Mapping[str, Account],
    fragments_by_environment: Dict[str, List[PolicyFragment]],
) -> List[VerificationCheck]:
    resources = {environment: environment_resources(config, account) for environment, account in accounts.items()}
    violations = isolation_violations(fragments_by_environment, resources)
    checks = []
    for environment in fragments_by_environment:
        own = [violation for violation in violations if violation.startswith(f"{environment}/")]
        checks.append(VerificationCheck(environment, "environment isolation", not own, "; ".join(own)))
    return checks


def run_verification(
    config: KeystoneConfig,
    management_session: Optional[Session] = None,
    file_accounts: Optional[Mapping[str, str]] = None,
) -> List[VerificationCheck]:
    """
    Verify every selected environment.

    Returns:
        All checks, passed and failed

    Raises:
        LookupFailedError: If a role or policy could not be read
    """
    accounts = resolve_accounts(config, file_accounts)
    if management_session is None:
        management_session = get_management_session(config)

    checks: List[VerificationCheck] = []
    fragments_by_environment: Dict[str, List[PolicyFragment]] = {}
    for environment, account in accounts.items():
        logger.info(f"Verifying {environment} ({account.account_id})")
        session = get_account_session(config, management_session, account)
        iam = client_for(session, "iam", config.region)
        role_name = deployment_role_name(config.project_name, environment)

        result = find_role(iam, role_name)
        if result.is_absent:
            checks.append(VerificationCheck(environment, "deployment role exists", False, f"{role_name} not found"))
            continue
        role = result.require(f"role {role_name}")
        checks.append(VerificationCheck(environment, "deployment role exists", True, role.arn))
        checks.extend(check_trust(config, account, role))
        fragments_by_environment[environment] = live_fragments(config, account, iam)

    checks.extend(check_isolation(config, accounts, fragments_by_environment))
    return checks
