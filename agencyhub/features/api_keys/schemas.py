"""
API key request/response schemas.
"""

from datetime import datetime

from pydantic import Field

from agencyhub.schemas.common import BaseSchema


class ApiKeyCreate(BaseSchema):
    """Key creation request."""

    name: str = Field(..., min_length=3, max_length=50, description="Display name")
    scope_id: str | None = Field(
        None,
        min_length=1,
        max_length=36,
        description="Restrict the key to one sub-agency",
    )
    expires_in_days: int | None = Field(
        None,
        ge=1,
        le=365,
        description="Expire the key after this many days",
    )


class ApiKeyRead(BaseSchema):
    """Key listing entry. Never includes the hash or the plaintext."""

    id: str
    name: str
    display_prefix: str
    owner_id: str
    scope_id: str | None = None
    scope_name: str | None = None
    last_used_at: datetime | None = None
    created_at: datetime
    expires_at: datetime | None = None


class ApiKeyList(BaseSchema):
    data: list[ApiKeyRead]


class ApiKeyCreated(BaseSchema):
    """
    Key creation response.

    ``api_key`` is the plaintext secret. It is returned here once and
    cannot be retrieved again.
    """

    api_key: str = Field(..., description="Plaintext key, shown only once")
    id: str
    name: str
    display_prefix: str
    scope_id: str | None = None
    created_at: datetime
    expires_at: datetime | None = None


class PrincipalRead(BaseSchema):
    """Identity resolved from an API key."""

    user_id: str
    email: str
    full_name: str | None = None
    scope_id: str | None = None
    key_id: str
    auth_method: str
