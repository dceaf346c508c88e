"""
AWS DynamoDB lock table utilities.

The lock table holds two kinds of record per state object: the lock itself
(present only while an apply is in flight) and a digest record carrying the
MD5 of the last state written.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError
from mypy_boto3_dynamodb.client import DynamoDBClient

from ..constants import LOCK_TABLE_HASH_KEY
from .helpers import error_code, poll_until
from .lookup import LookupResult, lookup

logger = logging.getLogger(__name__)


@dataclass
class LockTableRecord:
    """
    Observed state of a lock table.

    Attributes:
        name: Table name
        arn: Table ARN
        status: TableStatus (CREATING, ACTIVE, ...)
        hash_key: Name of the partition key
        hash_key_type: Attribute type of the partition key
    """
    name: str
    arn: str
    status: str
    hash_key: Optional[str]
    hash_key_type: Optional[str]

    @property
    def has_lock_schema(self) -> bool:
        return self.hash_key == LOCK_TABLE_HASH_KEY and self.hash_key_type == "S"


def _describe_table(ddb_client: DynamoDBClient, table_name: str) -> LockTableRecord:
    table = ddb_client.describe_table(TableName=table_name)["Table"]
    hash_key = next((key["AttributeName"] for key in table.get("KeySchema", []) if key["KeyType"] == "HASH"), None)
    hash_key_type = next(
        (attr["AttributeType"] for attr in table.get("AttributeDefinitions", []) if attr["AttributeName"] == hash_key),
        None,
    )
    return LockTableRecord(
        name=table["TableName"],
        arn=table.get("TableArn", ""),
        status=table.get("TableStatus", "ACTIVE"),
        hash_key=hash_key,
        hash_key_type=hash_key_type,
    )


def find_lock_table(ddb_client: DynamoDBClient, table_name: str) -> LookupResult[LockTableRecord]:
    return lookup(
        lambda: _describe_table(ddb_client, table_name),
        not_found_codes={"ResourceNotFoundException"},
        operation="dynamodb:DescribeTable",
        resource=table_name,
    )


def create_lock_table(ddb_client: DynamoDBClient, table_name: str, tags: List[Dict[str, str]]) -> None:
    """
    Create an on-demand lock table keyed by LockID.

    Raises:
        ClientError: On any API failure (ResourceInUseException included)
    """
    ddb_client.create_table(
        TableName=table_name,
        AttributeDefinitions=[{"AttributeName": LOCK_TABLE_HASH_KEY, "AttributeType": "S"}],
        KeySchema=[{"AttributeName": LOCK_TABLE_HASH_KEY, "KeyType": "HASH"}],
        BillingMode="PAY_PER_REQUEST",
        SSESpecification={"Enabled": True},
        Tags=tags,  # type: ignore[arg-type]
    )
    logger.info(f"Created lock table {table_name}")


def wait_for_table_active(
    ddb_client: DynamoDBClient,
    table_name: str,
    timeout_seconds: float = 300,
    interval_seconds: float = 5,
) -> LockTableRecord:
    """
    Poll until a table reports ACTIVE.

    Raises:
        PropagationTimeoutError: If the table is not ACTIVE in time
    """
    def check() -> Optional[LockTableRecord]:
        record = _describe_table(ddb_client, table_name)
        return record if record.status == "ACTIVE" else None

    return poll_until(check, f"lock table {table_name} to become ACTIVE", timeout_seconds, interval_seconds)


def _get_item(ddb_client: DynamoDBClient, table_name: str, lock_id: str) -> Optional[Dict[str, Any]]:
    response = ddb_client.get_item(
        TableName=table_name,
        Key={LOCK_TABLE_HASH_KEY: {"S": lock_id}},
        ConsistentRead=True,
    )
    return response.get("Item")


def find_lock_item(ddb_client: DynamoDBClient, table_name: str, lock_id: str) -> LookupResult[Dict[str, Any]]:
    """Look up a lock or digest record by its LockID."""
    return lookup(
        lambda: _get_item(ddb_client, table_name, lock_id),
        not_found_codes={"ResourceNotFoundException"},
        operation="dynamodb:GetItem",
        resource=f"{table_name}/{lock_id}",
    )


def item_digest(item: Dict[str, Any]) -> Optional[str]:
    """Return the MD5 stored on a digest record, if any."""
    digest = item.get("Digest", {})
    return digest.get("S") if isinstance(digest, dict) else None


def delete_digest_item(
    ddb_client: DynamoDBClient,
    table_name: str,
    digest_id: str,
    expected_digest: Optional[str],
    lock_id: str,
) -> bool:
    """
    Delete a digest record if it still holds the inspected digest and no lock is held.

    The lock check and the delete run in one transaction, so a lock taken
    after inspection keeps the digest in place.

    Returns:
        True if the record was deleted, False if the digest changed or a lock appeared
    """
    delete: Dict[str, Any] = {
        "TableName": table_name,
        "Key": {LOCK_TABLE_HASH_KEY: {"S": digest_id}},
        "ExpressionAttributeNames": {"#id": LOCK_TABLE_HASH_KEY},
    }
    if expected_digest is None:
        delete["ConditionExpression"] = "attribute_exists(#id) AND attribute_not_exists(Digest)"
    else:
        delete["ConditionExpression"] = "attribute_exists(#id) AND Digest = :digest"
        delete["ExpressionAttributeValues"] = {":digest": {"S": expected_digest}}
    lock_absent = {
        "TableName": table_name,
        "Key": {LOCK_TABLE_HASH_KEY: {"S": lock_id}},
        "ConditionExpression": "attribute_not_exists(#id)",
        "ExpressionAttributeNames": {"#id": LOCK_TABLE_HASH_KEY},
    }
    try:
        ddb_client.transact_write_items(TransactItems=[{"ConditionCheck": lock_absent}, {"Delete": delete}])
    except ClientError as e:
        if error_code(e) == "TransactionCanceledException":
            logger.info(f"Digest record {digest_id} changed or {lock_id} is locked; leaving it in place")
            return False
        raise
    logger.info(f"Deleted stale digest record {digest_id} from {table_name}")
    return True
