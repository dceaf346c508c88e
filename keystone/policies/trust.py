"""
Trust statement composition.

Builds the trust statements for every role Keystone manages: deployment roles
(direct federation, broker chain, or both during migration), the legacy
central broker role, and the human admin roles.
"""

from typing import List, Optional

from ..config import KeystoneConfig
from ..constants import ACTION_ASSUME_ROLE, ACTION_ASSUME_ROLE_WITH_WEB_IDENTITY, PRODUCTION_ADMIN_SESSION_CEILING
from ..enums import EnvironmentTier, TrustTopology
from ..types import IdentityProvider, TrustStatement
from ..utils import account_root_arn, broker_role_name, role_arn

FEDERATED_SID = "GitHubActionsFederated"
BROKER_CHAIN_SID = "CentralBrokerChain"
BROKER_FEDERATED_SID = "GitHubActionsBroker"
ADMIN_SID = "HumanOperators"


def identity_provider_from_config(config: KeystoneConfig) -> IdentityProvider:
    provider = config.identity_provider
    return IdentityProvider(
        issuer_url=provider.issuer_url,
        audiences=list(provider.audiences),
        thumbprints=list(provider.thumbprints),
    )


def default_subject_patterns(repository: str, environment: str, tier: EnvironmentTier) -> List[str]:
    """
    Subject patterns used when an environment does not override them.

    Non-production environments accept any ref of the repository; production
    accepts only the main branch or the matching deployment environment.
    """
    if tier == EnvironmentTier.PRODUCTION:
        return [
            f"repo:{repository}:ref:refs/heads/main",
            f"repo:{repository}:environment:{environment}",
        ]
    return [f"repo:{repository}:*"]


def subject_patterns_for(config: KeystoneConfig, environment: str) -> List[str]:
    env_config = config.environments[environment]
    if env_config.subject_patterns:
        return list(env_config.subject_patterns)
    return default_subject_patterns(config.repository, environment, env_config.tier)


def federated_statement(
    provider: IdentityProvider,
    account_id: str,
    subject_patterns: List[str],
    sid: str = FEDERATED_SID,
) -> TrustStatement:
    """
    Trust statement for a token presented straight to the role.

    Args:
        provider: Identity provider registered in the role's account
        account_id: Account the role and provider live in
        subject_patterns: Allowed token subjects (repository scoped)
        sid: Statement id

    Returns:
        TrustStatement gated on audience and subject
    """
    return TrustStatement(
        sid=sid,
        principal_type="Federated",
        principals=[provider.arn(account_id)],
        action=ACTION_ASSUME_ROLE_WITH_WEB_IDENTITY,
        issuer_host=provider.host,
        audiences=list(provider.audiences),
        subject_patterns=list(subject_patterns),
    )


def broker_chain_statement(broker_arn: str, external_id: str) -> TrustStatement:
    """Second hop of the chained topology: only the broker role, only with the shared external id."""
    return TrustStatement(
        sid=BROKER_CHAIN_SID,
        principal_type="AWS",
        principals=[broker_arn],
        action=ACTION_ASSUME_ROLE,
        external_id=external_id,
    )


def broker_role_arn(config: KeystoneConfig) -> Optional[str]:
    if not config.management_account_id:
        return None
    return role_arn(config.management_account_id, broker_role_name(config.project_name))


def deployment_trust(config: KeystoneConfig, environment: str, account_id: str) -> List[TrustStatement]:
    """
    Trust statements for an environment's deployment role.

    Args:
        config: Keystone configuration
        environment: Environment name
        account_id: Account the deployment role lives in

    Returns:
        One statement for direct or chained trust, two for migration
    """
    statements: List[TrustStatement] = []
    topology = config.trust_topology
    if topology in (TrustTopology.DIRECT, TrustTopology.MIGRATION):
        statements.append(
            federated_statement(
                identity_provider_from_config(config),
                account_id,
                subject_patterns_for(config, environment),
            )
        )
    if topology in (TrustTopology.CHAINED, TrustTopology.MIGRATION):
        broker_arn = broker_role_arn(config)
        if broker_arn is None or not config.broker.external_id:
            raise ValueError(f"{topology.value} trust needs management_account_id and broker.external_id")
        statements.append(broker_chain_statement(broker_arn, config.broker.external_id))
    return statements


def broker_subject_patterns(config: KeystoneConfig) -> List[str]:
    """Subjects accepted by the broker: explicit list, else the union over all environments."""
    if config.broker.subject_patterns:
        return list(config.broker.subject_patterns)
    patterns: List[str] = []
    for environment in config.environments:
        for pattern in subject_patterns_for(config, environment):
            if pattern not in patterns:
                patterns.append(pattern)
    return patterns


def broker_trust(config: KeystoneConfig) -> List[TrustStatement]:
    if not config.management_account_id:
        raise ValueError("the broker role needs management_account_id")
    return [
        federated_statement(
            identity_provider_from_config(config),
            config.management_account_id,
            broker_subject_patterns(config),
            sid=BROKER_FEDERATED_SID,
        )
    ]


def admin_requires_mfa(config: KeystoneConfig, environment: str) -> bool:
    env_config = config.environments[environment]
    if env_config.tier == EnvironmentTier.PRODUCTION:
        return True
    if env_config.admin_require_mfa is not None:
        return env_config.admin_require_mfa
    return config.admin_roles.require_mfa


def admin_session_ceiling(config: KeystoneConfig, environment: str) -> int:
    if config.environments[environment].tier == EnvironmentTier.PRODUCTION:
        return min(config.admin_roles.production_max_session_duration, PRODUCTION_ADMIN_SESSION_CEILING)
    return config.admin_roles.max_session_duration


def admin_principals(config: KeystoneConfig) -> List[str]:
    if config.admin_roles.principals:
        return list(config.admin_roles.principals)
    if not config.management_account_id:
        raise ValueError("admin roles need admin_roles.principals or management_account_id")
    return [account_root_arn(config.management_account_id)]


def admin_trust(config: KeystoneConfig, environment: str) -> List[TrustStatement]:
    """
    Trust statement for the human admin roles of an environment.

    The principal is the operator set in the management account, never the
    broker role. MFA is always required for production-tier environments.
    """
    admin = config.admin_roles
    require_mfa = admin_requires_mfa(config, environment)
    return [
        TrustStatement(
            sid=ADMIN_SID,
            principal_type="AWS",
            principals=admin_principals(config),
            action=ACTION_ASSUME_ROLE,
            external_id=admin.external_id,
            require_mfa=require_mfa,
            max_mfa_age_seconds=admin.max_mfa_age_seconds if require_mfa else None,
        )
    ]
