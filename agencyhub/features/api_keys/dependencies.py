"""
Wiring and FastAPI dependencies for API key authentication.

Components are built once per process by ``build_auth_components`` and
stored on ``app.state.auth``; nothing here is module-level mutable state.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Annotated, Callable

from fastapi import Depends, Header, Request
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agencyhub.config import Settings
from agencyhub.core.audit import AuditEmitter, client_info_from_request
from agencyhub.core.background import PeriodicTask, TaskSpawner
from agencyhub.core.context import set_request_context
from agencyhub.core.database import get_db
from agencyhub.core.exceptions import RateLimitExceededError, forbidden, unauthorized
from agencyhub.core.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from agencyhub.core.redis_client import redis_manager
from agencyhub.core.security import ApiKeyHasher, decode_token
from agencyhub.features.api_keys.authenticator import AuthenticatedPrincipal, Authenticator
from agencyhub.features.api_keys.gateway import KeyStoreGateway, SqlAlchemyKeyStore
from agencyhub.features.api_keys.scope import ScopeEnforcer
from agencyhub.features.api_keys.service import ApiKeyService
from agencyhub.models.user import User
from agencyhub.utils.datetime import Clock, utcnow

logger = logging.getLogger(__name__)

KEY_CREATION_SUBJECT = "key-creation"


@dataclass
class AuthComponents:
    """Everything the API key endpoints need, owned by the hosting process."""

    settings: Settings
    gateway: KeyStoreGateway
    hasher: ApiKeyHasher
    audit: AuditEmitter
    rate_limiter: RateLimiter
    spawner: TaskSpawner
    authenticator: Authenticator
    service: ApiKeyService
    scope_enforcer: ScopeEnforcer
    periodic_tasks: list[PeriodicTask] = field(default_factory=list)

    async def start(self) -> None:
        for task in self.periodic_tasks:
            await task.start()

    async def stop(self) -> None:
        for task in self.periodic_tasks:
            await task.stop()
        await self.spawner.drain()


def build_auth_components(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    gateway: KeyStoreGateway | None = None,
    rate_limiter: RateLimiter | None = None,
    audit: AuditEmitter | None = None,
    clock: Clock = utcnow,
    timer: Callable[[], float] = time.monotonic,
) -> AuthComponents:
    """Construct the authentication components from settings."""
    gateway = gateway or SqlAlchemyKeyStore(session_factory)
    hasher = ApiKeyHasher(
        rounds=settings.api_key_hash_rounds,
        lookup_secret=settings.api_key_lookup_secret,
    )
    audit = audit or AuditEmitter()
    spawner = TaskSpawner()

    periodic_tasks: list[PeriodicTask] = []

    if rate_limiter is None:
        if settings.rate_limit_backend == "redis":
            rate_limiter = RedisRateLimiter(redis_manager.client)
        else:
            rate_limiter = InMemoryRateLimiter(timer=timer)

    if isinstance(rate_limiter, InMemoryRateLimiter):
        periodic_tasks.append(PeriodicTask(
            "rate_limit_sweep",
            rate_limiter.asweep,
            interval=settings.rate_limit_sweep_interval_seconds,
        ))

    service = ApiKeyService(
        gateway=gateway,
        hasher=hasher,
        audit=audit,
        prefix=settings.api_key_prefix,
        clock=clock,
    )

    if settings.expired_key_cleanup_interval_seconds > 0:
        periodic_tasks.append(PeriodicTask(
            "expired_api_key_cleanup",
            service.cleanup_expired,
            interval=settings.expired_key_cleanup_interval_seconds,
        ))

    return AuthComponents(
        settings=settings,
        gateway=gateway,
        hasher=hasher,
        audit=audit,
        rate_limiter=rate_limiter,
        spawner=spawner,
        authenticator=Authenticator(
            gateway=gateway,
            hasher=hasher,
            audit=audit,
            spawner=spawner,
            prefix=settings.api_key_prefix,
            clock=clock,
        ),
        service=service,
        scope_enforcer=ScopeEnforcer(),
        periodic_tasks=periodic_tasks,
    )


def get_auth_components(request: Request) -> AuthComponents:
    components = getattr(request.app.state, "auth", None)
    if components is None:
        raise RuntimeError("Auth components not initialized")
    return components


Components = Annotated[AuthComponents, Depends(get_auth_components)]


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> User:
    """
    Resolve the signed-in user from a session-issued bearer JWT.

    Used by the key-management endpoints.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise unauthorized("Authentication required")

    try:
        payload = decode_token(authorization.removeprefix("Bearer ").strip())
    except JWTError:
        raise unauthorized("Invalid or expired token")

    if payload.get("type") != "access" or not payload.get("sub"):
        raise unauthorized("Invalid token payload")

    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()

    if not user:
        logger.warning("Token valid but user not found: %s", payload["sub"])
        raise unauthorized("User not found")

    if not user.is_active:
        raise forbidden("User account is inactive")

    request.state.user_id = user.id
    set_request_context(user_id=user.id)
    return user


async def get_api_key_principal(
    request: Request,
    components: Components,
    authorization: Annotated[str | None, Header()] = None,
) -> AuthenticatedPrincipal:
    """Authenticate the request with an API key."""
    principal = await components.authenticator.authenticate(
        authorization,
        client_info_from_request(request),
    )

    request.state.user_id = principal.user_id
    request.state.scope_id = principal.scope_id
    request.state.auth_method = principal.auth_method
    set_request_context(user_id=principal.user_id, scope_id=principal.scope_id)
    return principal


CurrentUser = Annotated[User, Depends(get_current_user)]
ApiKeyPrincipal = Annotated[AuthenticatedPrincipal, Depends(get_api_key_principal)]


async def rate_limit_key_creation(
    current_user: CurrentUser,
    components: Components,
) -> None:
    """
    Gate key creation per user.

    Runs before any key material is generated or hashed.
    """
    settings = components.settings
    if not settings.rate_limit_enabled:
        return

    result = await components.rate_limiter.check(
        f"{KEY_CREATION_SUBJECT}:{current_user.id}",
        settings.api_key_creation_limit,
        settings.api_key_creation_window_seconds,
    )

    if not result.allowed:
        logger.warning(
            "Key creation rate limit exceeded for user %s (retry in %ss)",
            current_user.id,
            result.retry_after_seconds,
        )
        raise RateLimitExceededError(
            retry_after_seconds=result.retry_after_seconds or 1,
            limit=result.limit,
        )


def require_scope(param: str = "sub_agency_id"):
    """
    Dependency factory enforcing the key's scope against a path parameter.

    Usage:
        @router.get("/sub-agencies/{sub_agency_id}")
        async def read(principal: AuthenticatedPrincipal = Depends(require_scope())):
            ...
    """
    async def scope_checker(
        request: Request,
        principal: ApiKeyPrincipal,
        components: Components,
    ) -> AuthenticatedPrincipal:
        components.scope_enforcer.require(principal, request.path_params[param])
        return principal

    return scope_checker
