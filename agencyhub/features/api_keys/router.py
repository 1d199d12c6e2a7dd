"""
API key management endpoints.

Authenticated with the user's session bearer token, not with API keys.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, status

from agencyhub.core.audit import client_info_from_request
from agencyhub.features.api_keys.dependencies import (
    Components,
    CurrentUser,
    rate_limit_key_creation,
)
from agencyhub.features.api_keys.schemas import (
    ApiKeyCreate,
    ApiKeyCreated,
    ApiKeyList,
    ApiKeyRead,
)
from agencyhub.schemas.common import MessageResponse, RateLimitedResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api-keys", tags=["API Keys"])


@router.get("", response_model=ApiKeyList)
async def list_api_keys(
    current_user: CurrentUser,
    components: Components,
    scope_id: str | None = Query(None, description="Only keys bound to this sub-agency"),
) -> ApiKeyList:
    """
    List the caller's API keys.

    Hashes and plaintext keys are never returned.
    """
    records = await components.service.list_keys(current_user.id, scope_id)
    return ApiKeyList(data=[ApiKeyRead.model_validate(record) for record in records])


@router.post(
    "",
    response_model=ApiKeyCreated,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit_key_creation)],
    responses={status.HTTP_429_TOO_MANY_REQUESTS: {"model": RateLimitedResponse}},
)
async def create_api_key(
    data: ApiKeyCreate,
    request: Request,
    current_user: CurrentUser,
    components: Components,
) -> ApiKeyCreated:
    """
    Create an API key.

    The plaintext key is in the response body and this is the only time
    it is ever returned.
    """
    record, secret = await components.service.create_key(
        current_user.id,
        data,
        client_info_from_request(request),
    )

    return ApiKeyCreated(
        api_key=secret,
        id=record.id,
        name=record.name,
        display_prefix=record.display_prefix,
        scope_id=record.scope_id,
        created_at=record.created_at,
        expires_at=record.expires_at,
    )


@router.delete("/{key_id}", response_model=MessageResponse)
async def delete_api_key(
    key_id: str,
    request: Request,
    current_user: CurrentUser,
    components: Components,
) -> MessageResponse:
    """Delete one of the caller's API keys."""
    await components.service.delete_key(
        key_id,
        current_user.id,
        client_info_from_request(request),
    )
    return MessageResponse(message="API key deleted successfully")
