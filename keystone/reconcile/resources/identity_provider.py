"""
Identity provider registration.

Exactly one provider per issuer and account. An existing provider is left
untouched when its audiences and fingerprints match; any difference is a
trust mismatch and is never overwritten.
"""

from typing import Any, Dict, Tuple

from ...aws.iam import OidcProviderRecord, create_oidc_provider, find_oidc_provider
from ...aws.lookup import LookupResult
from ...enums import Phase, ResourceKind, TrustTopology
from ...errors import FingerprintMismatchError, TrustMismatchError
from ...policies.trust import identity_provider_from_config
from ...types import IdentityProvider
from ..base import BaseReconciler
from ..registry import register_reconciler


@register_reconciler("identity_provider", ResourceKind.IDENTITY_PROVIDER, Phase.FOUNDATION, order=10)
class IdentityProviderReconciler(BaseReconciler[OidcProviderRecord]):
    """Federated trust anchor of a member account."""

    @property
    def provider(self) -> IdentityProvider:
        return identity_provider_from_config(self.config)

    def identifier(self) -> str:
        return self.provider.arn(self.context.account_id)

    def lookup(self) -> LookupResult[OidcProviderRecord]:
        return find_oidc_provider(self.context.client("iam"), self.provider.issuer_url)

    def desired(self) -> Dict[str, Any]:
        provider = self.provider
        return {
            "host": provider.host,
            "audiences": sorted(provider.audiences),
            "thumbprints": sorted(thumbprint.lower() for thumbprint in provider.thumbprints),
        }

    def matches(self, observed: OidcProviderRecord) -> bool:
        self._check_trust_material(observed)
        return True

    def _check_trust_material(self, observed: OidcProviderRecord) -> None:
        desired = self.desired()
        actual_thumbprints = sorted(thumbprint.lower() for thumbprint in observed.thumbprints)
        if set(desired["thumbprints"]) != set(actual_thumbprints):
            raise FingerprintMismatchError(
                f"Identity provider {observed.arn} trusts a different signing certificate; "
                f"rotate its thumbprints deliberately, Keystone never overwrites them",
                expected=desired["thumbprints"],
                actual=actual_thumbprints,
            )
        if set(desired["audiences"]) != set(observed.audiences):
            raise TrustMismatchError(
                f"Identity provider {observed.arn} accepts different audiences",
                expected=desired["audiences"],
                actual=sorted(observed.audiences),
            )

    def describe_difference(self, observed: OidcProviderRecord) -> Tuple[Any, Any]:
        return self.desired(), {"audiences": sorted(observed.audiences), "thumbprints": sorted(observed.thumbprints)}

    def create(self) -> None:
        create_oidc_provider(self.context.client("iam"), self.provider, self.context.tags())


@register_reconciler("broker_identity_provider", ResourceKind.IDENTITY_PROVIDER, Phase.BROKER, order=10)
class BrokerIdentityProviderReconciler(IdentityProviderReconciler):
    """Trust anchor of the management account, used by the central broker role."""

    def applicable(self) -> bool:
        return self.config.trust_topology in (TrustTopology.CHAINED, TrustTopology.MIGRATION)
