"""
Shared fixtures: an in-memory stand-in for the IAM, S3, DynamoDB, STS and
Organizations calls the engine makes, spanning several accounts.

Every client call is recorded in FakeCloud.calls so tests can count
mutating operations.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from unittest.mock import patch
from urllib.parse import quote

import pytest
from botocore.exceptions import ClientError

from keystone.config import KeystoneConfig

MANAGEMENT_ACCOUNT = "999999999999"
DEV_ACCOUNT = "111111111111"
PROD_ACCOUNT = "333333333333"

MUTATING_PREFIXES = ("create_", "put_", "update_", "attach_", "delete_", "transact_")


def client_error(code: str, message: str = "", operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


@dataclass
class FakeBucket:
    owner: str
    versioning: bool = False
    encryption: bool = False
    public_access_blocked: bool = False
    tags: List[Dict[str, str]] = field(default_factory=list)
    objects: Dict[str, str] = field(default_factory=dict)


@dataclass
class FakeTable:
    hash_key: str = "LockID"
    hash_key_type: str = "S"
    status: str = "ACTIVE"
    items: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class FakeAccount:
    account_id: str
    status: str = "ACTIVE"
    oidc_providers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    roles: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    role_policies: Dict[Tuple[str, str], str] = field(default_factory=dict)
    attached_policies: Dict[str, List[str]] = field(default_factory=dict)
    tables: Dict[str, FakeTable] = field(default_factory=dict)


class FakeCloud:
    """State of every fake account plus the shared (global) bucket namespace."""

    def __init__(self) -> None:
        self.accounts: Dict[str, FakeAccount] = {}
        self.buckets: Dict[str, FakeBucket] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.failures: Dict[Tuple[str, str], ClientError] = {}

    def account(self, account_id: str) -> FakeAccount:
        if account_id not in self.accounts:
            self.accounts[account_id] = FakeAccount(account_id)
        return self.accounts[account_id]

    def session(self, account_id: str) -> "FakeSession":
        self.account(account_id)
        return FakeSession(self, account_id)

    def fail(self, service: str, operation: str, code: str, message: str = "") -> None:
        """Make every call of service.operation fail with the given error code."""
        self.failures[(service, operation)] = client_error(code, message, operation)

    def record(self, account_id: str, service: str, operation: str) -> None:
        self.calls.append((account_id, service, operation))
        failure = self.failures.get((service, operation))
        if failure is not None:
            raise failure

    def mutating_calls(self, account_id: Optional[str] = None) -> List[Tuple[str, str, str]]:
        return [
            call for call in self.calls
            if call[2].startswith(MUTATING_PREFIXES) and (account_id is None or call[0] == account_id)
        ]

    def role_exists(self, arn: str) -> bool:
        account_id = arn.split(":")[4]
        name = arn.rsplit("/", 1)[-1]
        return account_id in self.accounts and name in self.accounts[account_id].roles


class FakeSession:
    """Duck-typed boto3 Session bound to one fake account."""

    def __init__(self, cloud: FakeCloud, account_id: str) -> None:
        self.cloud = cloud
        self.account_id = account_id

    def client(self, service: str, region_name: Optional[str] = None, config: Any = None) -> Any:
        clients: Dict[str, Callable[[FakeCloud, str], Any]] = {
            "iam": FakeIam,
            "s3": FakeS3,
            "dynamodb": FakeDynamoDB,
            "organizations": FakeOrganizations,
            "sts": FakeSts,
        }
        return clients[service](self.cloud, self.account_id)


class FakeClient:
    SERVICE = ""

    def __init__(self, cloud: FakeCloud, account_id: str) -> None:
        self.cloud = cloud
        self.account_id = account_id

    @property
    def state(self) -> FakeAccount:
        return self.cloud.account(self.account_id)

    def _record(self, operation: str) -> None:
        self.cloud.record(self.account_id, self.SERVICE, operation)


class FakePaginator:
    def __init__(self, pages: List[Dict[str, Any]]) -> None:
        self.pages = pages

    def paginate(self, **kwargs: Any) -> Iterator[Dict[str, Any]]:
        return iter(self.pages)


class FakeIam(FakeClient):
    SERVICE = "iam"

    # OIDC providers
    def list_open_id_connect_providers(self) -> Dict[str, Any]:
        self._record("list_open_id_connect_providers")
        return {"OpenIDConnectProviderList": [{"Arn": arn} for arn in self.state.oidc_providers]}

    def get_open_id_connect_provider(self, OpenIDConnectProviderArn: str) -> Dict[str, Any]:
        self._record("get_open_id_connect_provider")
        if OpenIDConnectProviderArn not in self.state.oidc_providers:
            raise client_error("NoSuchEntity")
        return dict(self.state.oidc_providers[OpenIDConnectProviderArn])

    def create_open_id_connect_provider(
        self, Url: str, ClientIDList: List[str], ThumbprintList: List[str], Tags: List[Dict[str, str]]
    ) -> Dict[str, Any]:
        self._record("create_open_id_connect_provider")
        host = Url.replace("https://", "")
        arn = f"arn:aws:iam::{self.account_id}:oidc-provider/{host}"
        if arn in self.state.oidc_providers:
            raise client_error("EntityAlreadyExists")
        self.state.oidc_providers[arn] = {
            "Url": host,
            "ClientIDList": list(ClientIDList),
            "ThumbprintList": list(ThumbprintList),
            "Tags": list(Tags),
        }
        return {"OpenIDConnectProviderArn": arn}

    # Roles
    def _check_principals(self, document: str) -> None:
        for statement in json.loads(document).get("Statement", []):
            principals = statement.get("Principal", {}).get("AWS", [])
            for principal in [principals] if isinstance(principals, str) else principals:
                if ":role/" in principal and not self.cloud.role_exists(principal):
                    raise client_error("MalformedPolicyDocument", f"Invalid principal in policy: {principal}")

    def _stored_trust(self, document: str) -> str:
        """IAM rewrites bare account ids in AWS principals to the account root ARN."""
        parsed = json.loads(document)
        for statement in parsed.get("Statement", []):
            principal = statement.get("Principal", {})
            if "AWS" not in principal:
                continue
            single = isinstance(principal["AWS"], str)
            values = [principal["AWS"]] if single else principal["AWS"]
            rewritten = [f"arn:aws:iam::{value}:root" if value.isdigit() and len(value) == 12 else value for value in values]
            principal["AWS"] = rewritten[0] if single else rewritten
        return quote(json.dumps(parsed))

    def get_role(self, RoleName: str) -> Dict[str, Any]:
        self._record("get_role")
        if RoleName not in self.state.roles:
            raise client_error("NoSuchEntity", f"The role with name {RoleName} cannot be found.")
        return {"Role": dict(self.state.roles[RoleName])}

    def create_role(
        self,
        RoleName: str,
        AssumeRolePolicyDocument: str,
        Path: str = "/",
        Description: str = "",
        MaxSessionDuration: int = 3600,
        Tags: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        self._record("create_role")
        if RoleName in self.state.roles:
            raise client_error("EntityAlreadyExists")
        self._check_principals(AssumeRolePolicyDocument)
        role = {
            "RoleName": RoleName,
            "Arn": f"arn:aws:iam::{self.account_id}:role{Path}{RoleName}",
            "Path": Path,
            # IAM returns trust policies URL-encoded
            "AssumeRolePolicyDocument": self._stored_trust(AssumeRolePolicyDocument),
            "Description": Description,
            "MaxSessionDuration": MaxSessionDuration,
            "Tags": list(Tags or []),
        }
        self.state.roles[RoleName] = role
        return {"Role": dict(role)}

    def update_assume_role_policy(self, RoleName: str, PolicyDocument: str) -> Dict[str, Any]:
        self._record("update_assume_role_policy")
        self._check_principals(PolicyDocument)
        self.state.roles[RoleName]["AssumeRolePolicyDocument"] = self._stored_trust(PolicyDocument)
        return {}

    def update_role(self, RoleName: str, MaxSessionDuration: int) -> Dict[str, Any]:
        self._record("update_role")
        self.state.roles[RoleName]["MaxSessionDuration"] = MaxSessionDuration
        return {}

    def get_role_policy(self, RoleName: str, PolicyName: str) -> Dict[str, Any]:
        self._record("get_role_policy")
        key = (RoleName, PolicyName)
        if key not in self.state.role_policies:
            raise client_error("NoSuchEntity")
        return {"RoleName": RoleName, "PolicyName": PolicyName, "PolicyDocument": quote(self.state.role_policies[key])}

    def put_role_policy(self, RoleName: str, PolicyName: str, PolicyDocument: str) -> Dict[str, Any]:
        self._record("put_role_policy")
        if RoleName not in self.state.roles:
            raise client_error("NoSuchEntity")
        self.state.role_policies[(RoleName, PolicyName)] = PolicyDocument
        return {}

    def attach_role_policy(self, RoleName: str, PolicyArn: str) -> Dict[str, Any]:
        self._record("attach_role_policy")
        attached = self.state.attached_policies.setdefault(RoleName, [])
        if PolicyArn not in attached:
            attached.append(PolicyArn)
        return {}

    def get_paginator(self, operation_name: str) -> FakePaginator:
        assert operation_name == "list_attached_role_policies"
        outer = self

        class _Paginator(FakePaginator):
            def paginate(self, **kwargs: Any) -> Iterator[Dict[str, Any]]:
                outer._record("list_attached_role_policies")
                arns = outer.state.attached_policies.get(kwargs["RoleName"], [])
                return iter([{"AttachedPolicies": [{"PolicyArn": arn, "PolicyName": arn.rsplit("/", 1)[-1]} for arn in arns]}])

        return _Paginator([])


class FakeS3(FakeClient):
    SERVICE = "s3"

    def _bucket(self, name: str) -> FakeBucket:
        bucket = self.cloud.buckets.get(name)
        if bucket is None:
            raise client_error("404", "Not Found")
        if bucket.owner != self.account_id:
            raise client_error("403", "Forbidden")
        return bucket

    def head_bucket(self, Bucket: str) -> Dict[str, Any]:
        self._record("head_bucket")
        self._bucket(Bucket)
        return {}

    def get_bucket_versioning(self, Bucket: str) -> Dict[str, Any]:
        self._record("get_bucket_versioning")
        return {"Status": "Enabled"} if self._bucket(Bucket).versioning else {}

    def get_bucket_encryption(self, Bucket: str) -> Dict[str, Any]:
        self._record("get_bucket_encryption")
        if not self._bucket(Bucket).encryption:
            raise client_error("ServerSideEncryptionConfigurationNotFoundError")
        rule = {"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}, "BucketKeyEnabled": True}
        return {"ServerSideEncryptionConfiguration": {"Rules": [rule]}}

    def get_public_access_block(self, Bucket: str) -> Dict[str, Any]:
        self._record("get_public_access_block")
        if not self._bucket(Bucket).public_access_blocked:
            raise client_error("NoSuchPublicAccessBlockConfiguration")
        keys = ("BlockPublicAcls", "IgnorePublicAcls", "BlockPublicPolicy", "RestrictPublicBuckets")
        return {"PublicAccessBlockConfiguration": {key: True for key in keys}}

    def create_bucket(self, Bucket: str, CreateBucketConfiguration: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        self._record("create_bucket")
        existing = self.cloud.buckets.get(Bucket)
        if existing is not None:
            raise client_error("BucketAlreadyOwnedByYou" if existing.owner == self.account_id else "BucketAlreadyExists")
        self.cloud.buckets[Bucket] = FakeBucket(owner=self.account_id)
        return {}

    def put_bucket_versioning(self, Bucket: str, VersioningConfiguration: Dict[str, str]) -> Dict[str, Any]:
        self._record("put_bucket_versioning")
        self._bucket(Bucket).versioning = VersioningConfiguration.get("Status") == "Enabled"
        return {}

    def put_bucket_encryption(self, Bucket: str, ServerSideEncryptionConfiguration: Dict[str, Any]) -> Dict[str, Any]:
        self._record("put_bucket_encryption")
        self._bucket(Bucket).encryption = bool(ServerSideEncryptionConfiguration.get("Rules"))
        return {}

    def put_public_access_block(self, Bucket: str, PublicAccessBlockConfiguration: Dict[str, bool]) -> Dict[str, Any]:
        self._record("put_public_access_block")
        self._bucket(Bucket).public_access_blocked = all(PublicAccessBlockConfiguration.values())
        return {}

    def put_bucket_tagging(self, Bucket: str, Tagging: Dict[str, Any]) -> Dict[str, Any]:
        self._record("put_bucket_tagging")
        self._bucket(Bucket).tags = list(Tagging["TagSet"])
        return {}

    def head_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self._record("head_object")
        bucket = self._bucket(Bucket)
        if Key not in bucket.objects:
            raise client_error("404", "Not Found")
        return {"ETag": f'"{bucket.objects[Key]}"'}


class FakeDynamoDB(FakeClient):
    SERVICE = "dynamodb"

    def _table(self, name: str) -> FakeTable:
        if name not in self.state.tables:
            raise client_error("ResourceNotFoundException", f"Requested resource not found: Table: {name} not found")
        return self.state.tables[name]

    def describe_table(self, TableName: str) -> Dict[str, Any]:
        self._record("describe_table")
        table = self._table(TableName)
        return {
            "Table": {
                "TableName": TableName,
                "TableArn": f"arn:aws:dynamodb:us-east-1:{self.account_id}:table/{TableName}",
                "TableStatus": table.status,
                "KeySchema": [{"AttributeName": table.hash_key, "KeyType": "HASH"}],
                "AttributeDefinitions": [{"AttributeName": table.hash_key, "AttributeType": table.hash_key_type}],
            }
        }

    def create_table(self, TableName: str, AttributeDefinitions: List[Dict[str, str]], KeySchema: List[Dict[str, str]], **kwargs: Any) -> Dict[str, Any]:
        self._record("create_table")
        if TableName in self.state.tables:
            raise client_error("ResourceInUseException", f"Table already exists: {TableName}")
        self.state.tables[TableName] = FakeTable(
            hash_key=KeySchema[0]["AttributeName"],
            hash_key_type=AttributeDefinitions[0]["AttributeType"],
        )
        return {}

    def get_item(self, TableName: str, Key: Dict[str, Dict[str, str]], ConsistentRead: bool = False) -> Dict[str, Any]:
        self._record("get_item")
        item = self._table(TableName).items.get(Key["LockID"]["S"])
        return {"Item": dict(item)} if item is not None else {}

    def _condition_holds(self, table: FakeTable, request: Dict[str, Any]) -> bool:
        item = table.items.get(request["Key"]["LockID"]["S"])
        expression = request.get("ConditionExpression", "")
        if not expression:
            return True
        if expression == "attribute_not_exists(#id)":
            return item is None
        if item is None:
            return False
        if "Digest = :digest" in expression:
            return item.get("Digest", {}).get("S") == request["ExpressionAttributeValues"][":digest"]["S"]
        return "Digest" not in item

    def transact_write_items(self, TransactItems: List[Dict[str, Dict[str, Any]]]) -> Dict[str, Any]:
        self._record("transact_write_items")
        requests = []
        for entry in TransactItems:
            ((action, request),) = entry.items()
            requests.append((action, self._table(request["TableName"]), request))
        if not all(self._condition_holds(table, request) for _, table, request in requests):
            raise client_error("TransactionCanceledException", "Transaction cancelled [ConditionalCheckFailed]")
        for action, table, request in requests:
            if action == "Delete":
                table.items.pop(request["Key"]["LockID"]["S"], None)
        return {}


class FakeOrganizations(FakeClient):
    SERVICE = "organizations"

    def describe_account(self, AccountId: str) -> Dict[str, Any]:
        self._record("describe_account")
        return {"Account": {"Id": AccountId, "Status": self.cloud.account(AccountId).status}}


class FakeSts(FakeClient):
    SERVICE = "sts"

    def get_caller_identity(self) -> Dict[str, Any]:
        self._record("get_caller_identity")
        return {"Account": self.account_id}


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def aws(cloud: FakeCloud) -> Iterator[FakeCloud]:
    """Route role assumption into the fake and make backoff sleeps instant."""
    def fake_assume_role(role_arn: str, session_name: str, base_session: Any = None, **kwargs: Any) -> FakeSession:
        return cloud.session(role_arn.split(":")[4])

    with patch("keystone.accounts.assume_role", side_effect=fake_assume_role), \
            patch("keystone.aws.helpers.time.sleep"):
        yield cloud


def base_config_data(tmp_path: Path) -> Dict[str, Any]:
    return {
        "project_name": "site",
        "repository": "acme/site",
        "region": "us-east-1",
        "management_account_id": MANAGEMENT_ACCOUNT,
        "accounts_file": str(tmp_path / "accounts.json"),
        "environments": {
            "dev": {"account_id": DEV_ACCOUNT},
            "prod": {"account_id": PROD_ACCOUNT, "tier": "production"},
        },
        "state_dir": str(tmp_path / "state"),
        "output_dir": str(tmp_path / "output"),
        "account_poll_timeout_seconds": 30,
        "account_poll_interval_seconds": 1,
    }


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., KeystoneConfig]:
    """Factory for a two-environment configuration; keyword arguments override top-level fields."""
    def factory(**overrides: Any) -> KeystoneConfig:
        data = base_config_data(tmp_path)
        data.update(overrides)
        return KeystoneConfig(**data)
    return factory
