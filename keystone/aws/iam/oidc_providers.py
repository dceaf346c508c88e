"""
AWS IAM OpenID Connect provider utilities.

Providers are looked up by issuer URL, never by name, because IAM derives the
provider ARN from the issuer host and allows only one provider per issuer in
an account.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from mypy_boto3_iam.client import IAMClient

from ...types import IdentityProvider, strip_scheme
from ..lookup import LookupResult, lookup

logger = logging.getLogger(__name__)


@dataclass
class OidcProviderRecord:
    """
    Observed state of an IAM OIDC provider.

    Attributes:
        arn: Provider ARN
        host: Issuer host without scheme
        audiences: Client ids registered on the provider
        thumbprints: Lowercase SHA-1 thumbprints registered on the provider
        tags: Provider tags
    """

    arn: str
    host: str
    audiences: List[str]
    thumbprints: List[str]
    tags: Dict[str, str] = field(default_factory=dict)


def _find_provider_arn(iam_client: IAMClient, host: str) -> Optional[str]:
    suffix = f":oidc-provider/{host}"
    # ListOpenIDConnectProviders is not paginated
    response = iam_client.list_open_id_connect_providers()
    for entry in response.get("OpenIDConnectProviderList", []):
        if entry["Arn"].endswith(suffix):
            return entry["Arn"]
    return None


def _describe_provider(iam_client: IAMClient, host: str) -> Optional[OidcProviderRecord]:
    arn = _find_provider_arn(iam_client, host)
    if arn is None:
        return None
    response = iam_client.get_open_id_connect_provider(OpenIDConnectProviderArn=arn)
    return OidcProviderRecord(
        arn=arn,
        host=strip_scheme(response.get("Url", host)),
        audiences=list(response.get("ClientIDList", [])),
        thumbprints=[thumbprint.lower() for thumbprint in response.get("ThumbprintList", [])],
        tags={tag["Key"]: tag["Value"] for tag in response.get("Tags", [])},
    )


def find_oidc_provider(iam_client: IAMClient, issuer_url: str) -> LookupResult[OidcProviderRecord]:
    """
    Look up the OIDC provider registered for an issuer.

    Args:
        iam_client: IAM client for the target account
        issuer_url: Issuer URL, with or without scheme

    Returns:
        LookupResult holding the provider record when present
    """
    host = strip_scheme(issuer_url)
    return lookup(
        lambda: _describe_provider(iam_client, host),
        not_found_codes={"NoSuchEntity"},
        operation="iam:GetOpenIDConnectProvider",
        resource=host,
    )


def create_oidc_provider(
    iam_client: IAMClient,
    provider: IdentityProvider,
    tags: List[Dict[str, str]],
) -> str:
    """
    Register an OIDC provider.

    Args:
        iam_client: IAM client for the target account
        provider: Desired provider definition
        tags: Tags to apply

    Returns:
        ARN of the new provider

    Raises:
        ClientError: On any API failure (EntityAlreadyExists included)
    """
    response = iam_client.create_open_id_connect_provider(
        Url=f"https://{provider.host}",
        ClientIDList=list(provider.audiences),
        ThumbprintList=list(provider.thumbprints),
        Tags=tags,  # type: ignore[arg-type]
    )
    arn = response["OpenIDConnectProviderArn"]
    logger.info(f"Created OIDC provider {arn}")
    return arn

