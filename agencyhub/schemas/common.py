"""
Common/shared Pydantic schemas.
"""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base schema with common configuration.

    All schemas should inherit from this.
    """

    model_config = ConfigDict(
        from_attributes=True,  # Allow building from ORM objects and dataclasses
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )


class MessageResponse(BaseModel):
    """Simple message response."""
    message: str


class ErrorResponse(BaseModel):
    """Standardized error response."""
    detail: str | dict


class RateLimitedDetail(BaseModel):
    """Body of a 429 response."""
    error: str = "Rate limit exceeded"
    message: str
    retry_after: int


class RateLimitedResponse(BaseModel):
    detail: RateLimitedDetail
