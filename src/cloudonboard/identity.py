"""
Account references and their resolution.

Callers name the account a saga operates on in one of several forms. Each
form resolves to a ``ResolvedIdentity``: either a native AWS account id
(``internal=False``) or a platform cloud account id (``internal=True``).
Malformed references raise ``InvalidIdentityError`` before any remote call
is made.

    NativeAccountId("123456789012")            native, no remote call
    PlatformAccountId(UUID("..."))             platform id, native id looked up lazily
    RoleArn("arn:aws:iam::123456789012:role/x") native, taken from the ARN
    AccountReference(lambda: from_profile())   native, taken from a loaded account

Usage:
    from cloudonboard.identity import NativeAccountId, resolve_native_id

    native_id = resolve_native_id(saga, NativeAccountId("123456789012"))
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from cloudonboard.aws_account import AwsAccount, verify_account_id
from cloudonboard.context import SagaContext
from cloudonboard.errors import InvalidIdentityError
from cloudonboard.features import ALL, Feature
from cloudonboard.logging_config import get_logger, log_with_context

logger = get_logger(__name__)

__all__ = [
    "AccountReference",
    "Identity",
    "NativeAccountId",
    "PlatformAccountId",
    "ResolvedIdentity",
    "RoleArn",
    "resolve_native_id",
    "resolve_platform_account_id",
    "verify_account_id",
]


@dataclass(frozen=True)
class ResolvedIdentity:
    """
    A resolved account reference.

    Attributes:
        id: Native AWS account id, or platform cloud account id if internal
        internal: True for a platform cloud account id
    """

    id: str
    internal: bool


class Identity(Protocol):
    """An account reference that can be resolved within a saga."""

    def resolve(self, saga: SagaContext) -> ResolvedIdentity: ...


class NativeAccountId:
    """12 digit AWS account id."""

    def __init__(self, aws_account_id: str) -> None:
        self.aws_account_id: str = aws_account_id

    def resolve(self, saga: SagaContext) -> ResolvedIdentity:
        if not verify_account_id(self.aws_account_id):
            raise InvalidIdentityError(
                f"invalid AWS account id: {self.aws_account_id!r}",
                reference=self.aws_account_id,
            )
        return ResolvedIdentity(id=self.aws_account_id, internal=False)


class PlatformAccountId:
    """Platform cloud account id."""

    def __init__(self, cloud_account_id: UUID | str) -> None:
        try:
            self.cloud_account_id: UUID = (
                cloud_account_id if isinstance(cloud_account_id, UUID) else UUID(cloud_account_id)
            )
        except ValueError as e:
            raise InvalidIdentityError(
                f"invalid cloud account id: {cloud_account_id!r}",
                reference=str(cloud_account_id),
            ) from e

    def resolve(self, saga: SagaContext) -> ResolvedIdentity:
        return ResolvedIdentity(id=str(self.cloud_account_id), internal=True)


class RoleArn:
    """IAM role ARN; the account id is taken from the ARN."""

    def __init__(self, arn: str) -> None:
        self.arn: str = arn

    def resolve(self, saga: SagaContext) -> ResolvedIdentity:
        # arn:partition:service:region:account-id:resource
        parts = self.arn.split(":", 5)
        if len(parts) != 6 or parts[0] != "arn" or not parts[1] or not parts[2] or not parts[5]:
            raise InvalidIdentityError(f"failed to parse role ARN: {self.arn!r}", reference=self.arn)
        account_id = parts[4]
        if not verify_account_id(account_id):
            raise InvalidIdentityError(
                f"invalid AWS account id in role ARN: {self.arn!r}",
                reference=self.arn,
            )
        return ResolvedIdentity(id=account_id, internal=False)


class AccountReference:
    """
    Reference to a loaded AWS account.

    The loader runs on the first resolve, so credentials are only touched
    when a saga actually needs the account.
    """

    def __init__(self, account_loader: Callable[[], AwsAccount]) -> None:
        self._account_loader: Callable[[], AwsAccount] = account_loader
        self._account: AwsAccount | None = None

    @property
    def account(self) -> AwsAccount:
        if self._account is None:
            self._account = self._account_loader()
        return self._account

    def resolve(self, saga: SagaContext) -> ResolvedIdentity:
        return NativeAccountId(self.account.native_id).resolve(saga)


def resolve_native_id(saga: SagaContext, identity: Identity) -> str:
    """
    Resolve a reference to a native AWS account id.

    A platform cloud account id costs one control plane lookup. The result
    is cached on the saga, so repeated resolution within one saga is free.

    Raises:
        InvalidIdentityError: If the reference is malformed
        NotFoundError: If the platform account does not exist
    """
    resolved = identity.resolve(saga)
    if not resolved.internal:
        return resolved.id

    cloud_account_id = UUID(resolved.id)
    cached = saga.native_ids.get(cloud_account_id)
    if cached is not None:
        return cached

    account = saga.control_plane.cloud_account(cloud_account_id)
    saga.native_ids[cloud_account_id] = account.native_id
    log_with_context(
        logger,
        "debug",
        "Resolved platform account id",
        cloud_account_id=str(cloud_account_id),
        native_id=account.native_id,
    )
    return account.native_id


def resolve_platform_account_id(saga: SagaContext, identity: Identity, feature: Feature = ALL) -> UUID:
    """
    Resolve a reference to a platform cloud account id.

    Raises:
        InvalidIdentityError: If the reference is malformed
        NotFoundError: If no platform account has the native id
    """
    resolved = identity.resolve(saga)
    if resolved.internal:
        return UUID(resolved.id)

    account = saga.control_plane.cloud_account_by_native_id(resolved.id, feature)
    saga.native_ids[account.id] = account.native_id
    return account.id
