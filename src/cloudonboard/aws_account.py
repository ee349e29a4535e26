"""
AWS account loading.

An ``AwsAccount`` couples an AWS account id and display name with the boto3
session used to manage the account's CloudFormation stack. Accounts are
loaded from a shared-config profile (optionally with a region override and
an assumed role), from an existing boto3 session, or declared by id alone
when no stack operations are needed (e.g. removing a feature whose stack is
managed elsewhere).

Usage:
    from cloudonboard.aws_account import from_profile

    account = from_profile("prod", region="us-east-2")
    print(account.native_id, account.name)
"""

from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from cloudonboard.errors import ConfigurationError, InvalidIdentityError
from cloudonboard.logging_config import get_logger, log_with_context

logger = get_logger(__name__)

ROLE_SESSION_NAME = "cloudonboard"


@dataclass
class AwsAccount:
    """
    An AWS account and the credentials to manage it.

    Attributes:
        native_id: 12 digit AWS account id
        name: Display name used when onboarding the account
        session: boto3 session, or None for an account declared by id only
        profile: Shared-config profile the session was loaded from
    """

    native_id: str
    name: str
    session: boto3.Session | None = None
    profile: str | None = None

    def client(self, service_name: str) -> Any:
        """
        Create a boto3 client for the account.

        Raises:
            ConfigurationError: If the account has no credentials
        """
        if self.session is None:
            raise ConfigurationError(
                f"AWS account {self.native_id} has no credentials",
                config_key="aws_profile",
                reason="An AWS profile or session is required for stack operations",
            )
        return self.session.client(service_name)


def verify_account_id(account_id: str) -> bool:
    """Return True if the string is a 12 digit AWS account id."""
    return len(account_id) == 12 and account_id.isascii() and account_id.isdigit()


def assumed_role_session(role_arn: str, base_session: boto3.Session) -> boto3.Session:
    """
    Return a session with temporary credentials for the role.

    Raises:
        InvalidIdentityError: If the role cannot be assumed
    """
    sts = base_session.client("sts")
    try:
        response = sts.assume_role(RoleArn=role_arn, RoleSessionName=ROLE_SESSION_NAME)
    except (ClientError, BotoCoreError) as e:
        raise InvalidIdentityError(f"failed to assume role {role_arn}: {e}", reference=role_arn) from e

    credentials = response["Credentials"]
    return boto3.Session(
        aws_access_key_id=credentials["AccessKeyId"],
        aws_secret_access_key=credentials["SecretAccessKey"],
        aws_session_token=credentials["SessionToken"],
        region_name=base_session.region_name,
    )


def account_info(session: boto3.Session) -> tuple[str, str]:
    """
    Look up the account id and, when permitted, the account name.

    The name comes from AWS Organizations. Callers without
    ``organizations:DescribeAccount`` get an empty name.

    Returns:
        Tuple of (account id, account name or "")

    Raises:
        InvalidIdentityError: If the caller identity cannot be read
    """
    try:
        identity = session.client("sts").get_caller_identity()
    except (ClientError, BotoCoreError) as e:
        raise InvalidIdentityError(f"failed to get AWS identity from STS: {e}") from e
    account_id = str(identity["Account"])

    try:
        info = session.client("organizations").describe_account(AccountId=account_id)
        name = str(info["Account"]["Name"])
    except (ClientError, BotoCoreError) as e:
        log_with_context(
            logger,
            "debug",
            "Account name not available from Organizations",
            native_id=account_id,
            error=str(e),
        )
        name = ""

    return account_id, name


def from_session(session: boto3.Session, name: str | None = None) -> AwsAccount:
    """
    Load the account behind an existing boto3 session.

    The name falls back to the Organizations account name and then to the
    account id.
    """
    account_id, org_name = account_info(session)
    return AwsAccount(native_id=account_id, name=name or org_name or account_id, session=session)


def from_profile(
    profile: str = "default",
    region: str | None = None,
    role_arn: str | None = None,
    account_id: str | None = None,
) -> AwsAccount:
    """
    Load an account from a shared-config profile.

    Args:
        profile: Profile name. "default" lets environment credentials
            override the profile, as the AWS CLI does.
        region: Region override for the profile
        role_arn: Role to assume with the profile's credentials
        account_id: Known account id, skips the STS lookup

    Returns:
        Loaded account. The name is the Organizations name when readable,
        otherwise "<account id> : <profile>".

    Raises:
        ConfigurationError: If the profile does not exist or has no region
        InvalidIdentityError: If the account cannot be accessed
    """
    try:
        session = boto3.Session(
            profile_name=None if profile == "default" else profile,
            region_name=region,
        )
    except BotoCoreError as e:
        raise ConfigurationError(
            f"failed to load AWS profile {profile!r}: {e}",
            config_key="aws_profile",
            reason=str(e),
        ) from e

    if not session.region_name:
        raise ConfigurationError(
            "missing AWS region, used for AWS CloudFormation stack operations",
            config_key="aws_region",
            reason="No region configured for the profile",
        )

    if role_arn:
        session = assumed_role_session(role_arn, session)

    name = ""
    if not account_id:
        account_id, name = account_info(session)
    elif not verify_account_id(account_id):
        raise InvalidIdentityError(f"invalid AWS account id: {account_id!r}", reference=account_id)

    log_with_context(
        logger,
        "debug",
        "Loaded AWS account",
        native_id=account_id,
        profile=profile,
        region=session.region_name,
        assumed_role=role_arn,
    )
    return AwsAccount(
        native_id=account_id,
        name=name or f"{account_id} : {profile}",
        session=session,
        profile=profile,
    )


def without_credentials(native_id: str, name: str | None = None) -> AwsAccount:
    """
    Declare an account by id, without credentials.

    Raises:
        InvalidIdentityError: If the id is not a 12 digit account id
    """
    if not verify_account_id(native_id):
        raise InvalidIdentityError(f"invalid AWS account id: {native_id!r}", reference=native_id)
    return AwsAccount(native_id=native_id, name=name or native_id)
