"""AWS session management utilities."""

from typing import Optional

from boto3.session import Session
from mypy_boto3_sts.client import STSClient
from mypy_boto3_sts.type_defs import AssumeRoleResponseTypeDef, CredentialsTypeDef


def assume_role(
    role_arn: str,
    session_name: str,
    base_session: Optional[Session] = None,
    external_id: Optional[str] = None,
    duration_seconds: Optional[int] = None,
    region: Optional[str] = None,
) -> Session:
    """
    Assume an IAM role and return a session with temporary credentials.

    Args:
        role_arn: ARN of the role to assume
        session_name: Name for the role session
        base_session: Session to use for assuming role (defaults to boto3.Session())
        external_id: External id required by the role's trust policy, if any
        duration_seconds: Requested session length; omitted to use the STS default
        region: Default region for clients created from the returned session

    Returns:
        boto3 Session with assumed role credentials

    Raises:
        ClientError: If role assumption fails (AccessDenied, InvalidParameterValue, etc.)
    """
    if base_session is None:
        base_session = Session()

    kwargs = {"RoleArn": role_arn, "RoleSessionName": session_name}
    if external_id is not None:
        kwargs["ExternalId"] = external_id
    if duration_seconds is not None:
        kwargs["DurationSeconds"] = duration_seconds

    sts: STSClient = base_session.client("sts")
    resp: AssumeRoleResponseTypeDef = sts.assume_role(**kwargs)  # type: ignore[arg-type]

    creds: CredentialsTypeDef = resp["Credentials"]
    return Session(
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
        region_name=region,
    )


def get_caller_account_id(session: Session) -> str:
    """Return the account id the session's credentials belong to."""
    sts: STSClient = session.client("sts")
    return sts.get_caller_identity()["Account"]
