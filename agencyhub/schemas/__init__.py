"""
Pydantic schemas package.
"""

from agencyhub.schemas.common import (
    BaseSchema,
    ErrorResponse,
    MessageResponse,
    RateLimitedDetail,
    RateLimitedResponse,
)

__all__ = [
    "BaseSchema",
    "MessageResponse",
    "ErrorResponse",
    "RateLimitedDetail",
    "RateLimitedResponse",
]
