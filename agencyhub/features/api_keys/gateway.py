"""
Key store gateway.

The only interface the authentication core uses to persist and retrieve
API key records. ``SqlAlchemyKeyStore`` backs it with the relational store;
each call opens its own short session so it can be used from request
handlers and from detached background tasks alike.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agencyhub.core.exceptions import GatewayUnavailableError
from agencyhub.models.api_key import ApiKey
from agencyhub.models.sub_agency import SubAgency
from agencyhub.models.user import User
from agencyhub.utils.datetime import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiKeyRecord:
    """Persisted credential metadata. Never carries plaintext."""

    id: str
    name: str
    secret_hash: str
    lookup_hash: str
    display_prefix: str
    owner_id: str
    scope_id: str | None
    created_at: datetime
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    scope_name: str | None = None

    def __repr__(self) -> str:
        return f"ApiKeyRecord(id={self.id!r}, prefix={self.display_prefix!r})"

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass(frozen=True)
class OwnerIdentity:
    id: str
    email: str
    full_name: str | None = None


@dataclass(frozen=True)
class ApiKeyLookup:
    """Result of fetch-by-hash: the record plus its owner's identity."""

    record: ApiKeyRecord
    owner: OwnerIdentity


class KeyStoreGateway(Protocol):
    """Persistence operations the authentication core depends on."""

    async def fetch_by_hash(self, lookup_hash: str) -> ApiKeyLookup | None: ...

    async def insert(self, record: ApiKeyRecord) -> ApiKeyRecord: ...

    async def delete_owned(self, key_id: str, owner_id: str) -> ApiKeyRecord | None: ...

    async def touch_last_used(self, key_id: str, at: datetime) -> None: ...

    async def list_for_owner(
        self, owner_id: str, scope_id: str | None = None
    ) -> list[ApiKeyRecord]: ...

    async def owns_scope(self, owner_id: str, scope_id: str) -> bool: ...

    async def delete_expired(self, now: datetime) -> int: ...


def to_record(row: ApiKey, scope_name: str | None = None) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=row.id,
        name=row.name,
        secret_hash=row.secret_hash,
        lookup_hash=row.lookup_hash,
        display_prefix=row.display_prefix,
        owner_id=row.owner_id,
        scope_id=row.scope_id,
        created_at=ensure_utc(row.created_at),
        expires_at=ensure_utc(row.expires_at),
        last_used_at=ensure_utc(row.last_used_at),
        scope_name=scope_name,
    )


# Errors that mean "the store is unreachable", as opposed to bad input
_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, OSError, TimeoutError)


class SqlAlchemyKeyStore:
    """Key store gateway over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _unavailable(self, operation: str, exc: Exception) -> GatewayUnavailableError:
        logger.error("Key store %s failed: %s", operation, exc)
        return GatewayUnavailableError(
            "Key store unavailable",
            {"operation": operation},
        )

    async def fetch_by_hash(self, lookup_hash: str) -> ApiKeyLookup | None:
        """Find a key by its lookup digest. Expiry is not filtered here."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ApiKey, User)
                    .join(User, User.id == ApiKey.owner_id)
                    .where(ApiKey.lookup_hash == lookup_hash)
                )
                row = result.first()
        except _UNAVAILABLE_ERRORS as e:
            raise self._unavailable("fetch_by_hash", e) from e

        if row is None:
            return None

        api_key, user = row
        return ApiKeyLookup(
            record=to_record(api_key),
            owner=OwnerIdentity(id=user.id, email=user.email, full_name=user.full_name),
        )

    async def insert(self, record: ApiKeyRecord) -> ApiKeyRecord:
        row = ApiKey(
            id=record.id,
            name=record.name,
            secret_hash=record.secret_hash,
            lookup_hash=record.lookup_hash,
            display_prefix=record.display_prefix,
            owner_id=record.owner_id,
            scope_id=record.scope_id,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )

        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
        except _UNAVAILABLE_ERRORS as e:
            raise self._unavailable("insert", e) from e

        return to_record(row)

    async def delete_owned(self, key_id: str, owner_id: str) -> ApiKeyRecord | None:
        """
        Delete a key only if ``owner_id`` owns it.

        A missing key and someone else's key both return None.
        """
        # Only one of several concurrent deletes gets the row back
        statement = (
            delete(ApiKey)
            .where(ApiKey.id == key_id, ApiKey.owner_id == owner_id)
            .returning(ApiKey)
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                row = result.scalar_one_or_none()
                record = to_record(row) if row is not None else None
                await session.commit()
        except _UNAVAILABLE_ERRORS as e:
            raise self._unavailable("delete_owned", e) from e

        return record

    async def touch_last_used(self, key_id: str, at: datetime) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(ApiKey)
                    .where(ApiKey.id == key_id)
                    .values(last_used_at=at)
                )
                await session.commit()
        except (DBAPIError, *_UNAVAILABLE_ERRORS) as e:
            raise self._unavailable("touch_last_used", e) from e

    async def list_for_owner(
        self,
        owner_id: str,
        scope_id: str | None = None,
    ) -> list[ApiKeyRecord]:
        """Owner's keys with the bound sub-agency's name, oldest first."""
        query = (
            select(ApiKey, SubAgency.name)
            .outerjoin(SubAgency, SubAgency.id == ApiKey.scope_id)
            .where(ApiKey.owner_id == owner_id)
        )
        if scope_id:
            query = query.where(ApiKey.scope_id == scope_id)

        try:
            async with self._session_factory() as session:
                result = await session.execute(query.order_by(ApiKey.created_at))
                rows = result.all()
        except _UNAVAILABLE_ERRORS as e:
            raise self._unavailable("list_for_owner", e) from e

        return [to_record(api_key, scope_name) for api_key, scope_name in rows]

    async def owns_scope(self, owner_id: str, scope_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SubAgency.id).where(
                        SubAgency.id == scope_id,
                        SubAgency.owner_id == owner_id,
                    )
                )
                return result.scalar_one_or_none() is not None
        except _UNAVAILABLE_ERRORS as e:
            raise self._unavailable("owns_scope", e) from e

    async def delete_expired(self, now: datetime) -> int:
        """Cleanup pass: remove records whose expiry has passed."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(ApiKey).where(
                        ApiKey.expires_at.is_not(None),
                        ApiKey.expires_at <= now,
                    )
                )
                await session.commit()
        except _UNAVAILABLE_ERRORS as e:
            raise self._unavailable("delete_expired", e) from e

        return result.rowcount or 0
