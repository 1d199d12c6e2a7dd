"""
API key lifecycle business logic.
"""

from datetime import timedelta

import structlog
from fastapi.concurrency import run_in_threadpool

from agencyhub.core.audit import AuditEmitter, AuditEvent, AuditEventKind, ClientInfo
from agencyhub.core.exceptions import ResourceNotFoundError, ScopeDeniedError
from agencyhub.core.metrics import api_key_lifecycle_total
from agencyhub.core.security import ApiKeyHasher, generate_api_key
from agencyhub.features.api_keys.gateway import ApiKeyRecord, KeyStoreGateway
from agencyhub.features.api_keys.schemas import ApiKeyCreate
from agencyhub.models.base import new_id
from agencyhub.utils.datetime import Clock, utcnow

logger = structlog.get_logger(__name__)


class ApiKeyService:
    """Create, list, delete and clean up API keys."""

    def __init__(
        self,
        gateway: KeyStoreGateway,
        hasher: ApiKeyHasher,
        audit: AuditEmitter,
        prefix: str,
        clock: Clock = utcnow,
    ) -> None:
        self._gateway = gateway
        self._hasher = hasher
        self._audit = audit
        self._prefix = prefix
        self._clock = clock

    async def _require_scope_owner(self, owner_id: str, scope_id: str) -> None:
        if not await self._gateway.owns_scope(owner_id, scope_id):
            logger.warning("sub_agency_access_denied", user_id=owner_id, scope_id=scope_id)
            raise ScopeDeniedError("Access denied to this sub-agency")

    async def create_key(
        self,
        owner_id: str,
        data: ApiKeyCreate,
        client: ClientInfo | None = None,
    ) -> tuple[ApiKeyRecord, str]:
        """
        Create a key for ``owner_id``.

        Returns:
            Tuple of (stored record, plaintext key). The plaintext is not
            kept anywhere after this call returns.

        Raises:
            ScopeDeniedError: scope_id given but not owned by the caller
        """
        if data.scope_id:
            await self._require_scope_owner(owner_id, data.scope_id)

        material = generate_api_key(self._prefix)
        secret_hash = await run_in_threadpool(self._hasher.hash, material.secret)

        now = self._clock()
        expires_at = None
        if data.expires_in_days:
            expires_at = now + timedelta(days=data.expires_in_days)

        record = await self._gateway.insert(ApiKeyRecord(
            id=new_id(),
            name=data.name,
            secret_hash=secret_hash,
            lookup_hash=self._hasher.lookup_digest(material.secret),
            display_prefix=material.display_prefix,
            owner_id=owner_id,
            scope_id=data.scope_id,
            created_at=now,
            expires_at=expires_at,
        ))

        api_key_lifecycle_total.labels(event="created").inc()
        self._audit.emit(AuditEvent.build(
            AuditEventKind.KEY_CREATED,
            owner_id,
            client,
            key_id=record.id,
            key_name=record.name,
            scope_id=record.scope_id,
        ))

        return record, material.secret

    async def list_keys(
        self,
        owner_id: str,
        scope_id: str | None = None,
    ) -> list[ApiKeyRecord]:
        """List the owner's keys, optionally only those bound to one sub-agency."""
        if scope_id:
            await self._require_scope_owner(owner_id, scope_id)
        return await self._gateway.list_for_owner(owner_id, scope_id)

    async def delete_key(
        self,
        key_id: str,
        owner_id: str,
        client: ClientInfo | None = None,
    ) -> ApiKeyRecord:
        """
        Delete one of the owner's keys.

        Raises:
            ResourceNotFoundError: no such key, or not owned by ``owner_id``
        """
        deleted = await self._gateway.delete_owned(key_id, owner_id)
        if deleted is None:
            raise ResourceNotFoundError("API key not found or access denied")

        api_key_lifecycle_total.labels(event="deleted").inc()
        self._audit.emit(AuditEvent.build(
            AuditEventKind.KEY_DELETED,
            owner_id,
            client,
            key_id=deleted.id,
            key_name=deleted.name,
            scope_id=deleted.scope_id,
        ))

        return deleted

    async def cleanup_expired(self) -> int:
        """Remove expired keys from storage. Returns the number removed."""
        removed = await self._gateway.delete_expired(self._clock())
        if removed:
            api_key_lifecycle_total.labels(event="expired_cleanup").inc(removed)
        logger.info("expired_api_keys_cleaned", count=removed)
        return removed
