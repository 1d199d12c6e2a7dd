"""
API key authentication.

Turns an ``Authorization: Bearer <key>`` header into an
``AuthenticatedPrincipal``. Every attempt produces exactly one audit
event; callers see a uniform failure message whatever the cause.
"""

from dataclasses import dataclass
from typing import Literal

import structlog
from fastapi.concurrency import run_in_threadpool

from agencyhub.core.audit import AuditEmitter, AuditEvent, AuditEventKind, ClientInfo
from agencyhub.core.background import TaskSpawner
from agencyhub.core.exceptions import (
    AuthenticationError,
    GatewayUnavailableError,
    InvalidCredentialError,
    MalformedCredentialError,
    MissingCredentialError,
)
from agencyhub.core.metrics import api_key_auth_total
from agencyhub.core.security import ApiKeyHasher, is_valid_api_key_format
from agencyhub.features.api_keys.gateway import ApiKeyLookup, KeyStoreGateway
from agencyhub.utils.datetime import Clock, utcnow

logger = structlog.get_logger(__name__)

BEARER_SCHEME = "Bearer"


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """
    Identity derived from an API key for the duration of one request.

    ``auth_method`` distinguishes key-derived principals from
    session-derived users for downstream authorization.
    """

    user_id: str
    email: str
    full_name: str | None
    scope_id: str | None
    key_id: str
    auth_method: Literal["api_key"] = "api_key"

    @property
    def is_api_key_auth(self) -> bool:
        return self.auth_method == "api_key"


def parse_bearer(authorization: str | None) -> str:
    """
    Extract the token from an Authorization header value.

    Raises:
        MissingCredentialError: header absent or blank
        MalformedCredentialError: not exactly "Bearer <token>"
    """
    if authorization is None or not authorization.strip():
        raise MissingCredentialError("Missing Authorization header")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != BEARER_SCHEME or not parts[1]:
        raise MalformedCredentialError(
            "Invalid Authorization header format. Expected: Bearer <api_key>"
        )

    return parts[1]


class Authenticator:
    """Resolves bearer API keys against the key store."""

    def __init__(
        self,
        gateway: KeyStoreGateway,
        hasher: ApiKeyHasher,
        audit: AuditEmitter,
        spawner: TaskSpawner,
        prefix: str,
        clock: Clock = utcnow,
    ) -> None:
        self._gateway = gateway
        self._hasher = hasher
        self._audit = audit
        self._spawner = spawner
        self._prefix = prefix
        self._clock = clock

    async def authenticate(
        self,
        authorization: str | None,
        client: ClientInfo | None = None,
    ) -> AuthenticatedPrincipal:
        """
        Authenticate one request.

        Raises:
            MissingCredentialError, MalformedCredentialError,
            InvalidCredentialError: credential rejected
            GatewayUnavailableError: key store unreachable
        """
        client = client or ClientInfo()

        try:
            lookup = await self._resolve(authorization)
        except (AuthenticationError, GatewayUnavailableError) as e:
            reason = e.reason if isinstance(e, AuthenticationError) else "gateway_unavailable"
            self._record_failure(reason, client)
            raise
        except Exception:
            self._record_failure("error", client)
            logger.error("api_key_authentication_error", exc_info=True)
            raise

        record = lookup.record
        now = self._clock()
        self._spawner.spawn(
            self._gateway.touch_last_used(record.id, now),
            name=f"touch_last_used:{record.id}",
        )

        api_key_auth_total.labels(outcome="success").inc()
        self._audit.emit(AuditEvent.build(
            AuditEventKind.KEY_USED,
            lookup.owner.id,
            client,
            key_id=record.id,
            key_name=record.name,
            scope_id=record.scope_id,
        ))

        return AuthenticatedPrincipal(
            user_id=lookup.owner.id,
            email=lookup.owner.email,
            full_name=lookup.owner.full_name,
            scope_id=record.scope_id,
            key_id=record.id,
        )

    async def _resolve(self, authorization: str | None) -> ApiKeyLookup:
        candidate = parse_bearer(authorization)

        # Shape check before any hashing
        if not is_valid_api_key_format(candidate, self._prefix):
            raise MalformedCredentialError("Invalid API key format")

        lookup = await self._gateway.fetch_by_hash(self._hasher.lookup_digest(candidate))
        if lookup is None:
            raise InvalidCredentialError("Invalid API key", reason="not_found")

        matches = await run_in_threadpool(
            self._hasher.verify, candidate, lookup.record.secret_hash
        )
        if not matches:
            raise InvalidCredentialError("Invalid API key", reason="hash_mismatch")

        if lookup.record.is_expired(self._clock()):
            raise InvalidCredentialError("API key has expired", reason="expired")

        return lookup

    def _record_failure(self, reason: str, client: ClientInfo) -> None:
        api_key_auth_total.labels(outcome=reason).inc()
        self._audit.emit(AuditEvent.build(
            AuditEventKind.KEY_AUTH_FAILED,
            None,
            client,
            reason=reason,
        ))
