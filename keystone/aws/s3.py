"""
AWS S3 state bucket utilities.

This module contains functions for looking up, creating and hardening the
per-environment bucket that holds deployment state, and for reading the
checksum of individual state objects.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from botocore.exceptions import ClientError
from mypy_boto3_s3.client import S3Client

from ..errors import ResourceOwnershipError
from .helpers import error_code
from .lookup import LookupResult, lookup

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchBucket", "NotFound", "NoSuchKey"}


@dataclass
class BucketRecord:
    """
    Observed state of a state bucket.

    Attributes:
        name: Bucket name
        versioning_enabled: True if versioning status is Enabled
        encryption_enabled: True if default encryption is configured
        public_access_blocked: True if all four public access block settings are on
    """
    name: str
    versioning_enabled: bool
    encryption_enabled: bool
    public_access_blocked: bool

    @property
    def hardened(self) -> bool:
        return self.versioning_enabled and self.encryption_enabled and self.public_access_blocked


def _encryption_enabled(s3_client: S3Client, bucket_name: str) -> bool:
    try:
        response = s3_client.get_bucket_encryption(Bucket=bucket_name)
    except ClientError as e:
        if error_code(e) == "ServerSideEncryptionConfigurationNotFoundError":
            return False
        raise
    return bool(response.get("ServerSideEncryptionConfiguration", {}).get("Rules"))


def _public_access_blocked(s3_client: S3Client, bucket_name: str) -> bool:
    try:
        response = s3_client.get_public_access_block(Bucket=bucket_name)
    except ClientError as e:
        if error_code(e) == "NoSuchPublicAccessBlockConfiguration":
            return False
        raise
    settings = response.get("PublicAccessBlockConfiguration", {})
    return all(
        settings.get(key, False)
        for key in ("BlockPublicAcls", "IgnorePublicAcls", "BlockPublicPolicy", "RestrictPublicBuckets")
    )


def _describe_bucket(s3_client: S3Client, bucket_name: str) -> BucketRecord:
    try:
        s3_client.head_bucket(Bucket=bucket_name)
    except ClientError as e:
        # HeadBucket answers 403 for a bucket that exists under another owner
        if error_code(e) in ("403", "Forbidden"):
            raise ResourceOwnershipError(
                f"Bucket {bucket_name} exists but is not accessible from this account",
                expected="owned by this account",
                actual="403 Forbidden",
            ) from e
        raise
    versioning = s3_client.get_bucket_versioning(Bucket=bucket_name)
    return BucketRecord(
        name=bucket_name,
        versioning_enabled=versioning.get("Status") == "Enabled",
        encryption_enabled=_encryption_enabled(s3_client, bucket_name),
        public_access_blocked=_public_access_blocked(s3_client, bucket_name),
    )


def find_bucket(s3_client: S3Client, bucket_name: str) -> LookupResult[BucketRecord]:
    """
    Look up a bucket and its hardening settings.

    Returns:
        LookupResult holding the bucket record when present; a bucket owned by
        another account is reported as a failed lookup carrying a
        ResourceOwnershipError
    """
    try:
        return lookup(
            lambda: _describe_bucket(s3_client, bucket_name),
            not_found_codes=NOT_FOUND_CODES,
            operation="s3:HeadBucket",
            resource=bucket_name,
        )
    except ResourceOwnershipError as e:
        return LookupResult.failed(e)


def create_bucket(s3_client: S3Client, bucket_name: str, region: str) -> None:
    """
    Create a bucket in the given region.

    Raises:
        ClientError: On any API failure (BucketAlreadyOwnedByYou included)
    """
    if region == "us-east-1":
        s3_client.create_bucket(Bucket=bucket_name)
    else:
        s3_client.create_bucket(
            Bucket=bucket_name,
            CreateBucketConfiguration={"LocationConstraint": region},  # type: ignore[typeddict-item]
        )
    logger.info(f"Created bucket {bucket_name} in {region}")


def harden_bucket(s3_client: S3Client, bucket_name: str, tags: List[Dict[str, str]]) -> None:
    """Enable versioning and default encryption, block public access and tag the bucket."""
    s3_client.put_bucket_versioning(Bucket=bucket_name, VersioningConfiguration={"Status": "Enabled"})
    s3_client.put_bucket_encryption(
        Bucket=bucket_name,
        ServerSideEncryptionConfiguration={
            "Rules": [{"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}, "BucketKeyEnabled": True}]
        },
    )
    s3_client.put_public_access_block(
        Bucket=bucket_name,
        PublicAccessBlockConfiguration={
            "BlockPublicAcls": True,
            "IgnorePublicAcls": True,
            "BlockPublicPolicy": True,
            "RestrictPublicBuckets": True,
        },
    )
    s3_client.put_bucket_tagging(Bucket=bucket_name, Tagging={"TagSet": tags})  # type: ignore[typeddict-item]
    logger.info(f"Hardened bucket {bucket_name}")


def _object_md5(s3_client: S3Client, bucket_name: str, key: str) -> Optional[str]:
    response = s3_client.head_object(Bucket=bucket_name, Key=key)
    # Single-part SSE-S3 objects carry their MD5 as the ETag
    return response["ETag"].strip('"')


def find_object_md5(s3_client: S3Client, bucket_name: str, key: str) -> LookupResult[str]:
    """Look up the MD5 checksum of a state object."""
    return lookup(
        lambda: _object_md5(s3_client, bucket_name, key),
        not_found_codes=NOT_FOUND_CODES,
        operation="s3:HeadObject",
        resource=f"s3://{bucket_name}/{key}",
    )
