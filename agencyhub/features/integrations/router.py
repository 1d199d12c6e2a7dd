"""
Endpoints for programmatic callers authenticated with an API key.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agencyhub.core.database import get_db
from agencyhub.core.exceptions import not_found
from agencyhub.features.api_keys.authenticator import AuthenticatedPrincipal
from agencyhub.features.api_keys.dependencies import ApiKeyPrincipal, require_scope
from agencyhub.features.api_keys.schemas import PrincipalRead
from agencyhub.features.integrations.schemas import SubAgencyRead
from agencyhub.models.sub_agency import SubAgency
from agencyhub.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/integrations",
    tags=["Integrations"],
    responses={status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse}},
)


@router.get("/me", response_model=PrincipalRead)
async def whoami(principal: ApiKeyPrincipal) -> PrincipalRead:
    """Identity and scope of the presented API key."""
    return PrincipalRead.model_validate(principal)


@router.get(
    "/sub-agencies/{sub_agency_id}",
    response_model=SubAgencyRead,
    responses={
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    },
)
async def get_sub_agency(
    sub_agency_id: str,
    principal: Annotated[AuthenticatedPrincipal, Depends(require_scope("sub_agency_id"))],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SubAgency:
    """
    Read a sub-agency.

    The key's scope is checked first, then the owner's rights. A
    sub-agency the owner has no rights to looks the same as one that
    does not exist.
    """
    result = await db.execute(
        select(SubAgency).where(
            SubAgency.id == sub_agency_id,
            SubAgency.owner_id == principal.user_id,
        )
    )
    sub_agency = result.scalar_one_or_none()

    if sub_agency is None:
        logger.info(
            "Sub-agency %s not found for user %s",
            sub_agency_id,
            principal.user_id,
        )
        raise not_found("Sub-agency not found")

    return sub_agency
