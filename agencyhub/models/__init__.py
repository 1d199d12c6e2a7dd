"""
Database models package.
"""

from agencyhub.core.database import Base
from agencyhub.models.base import BaseModel
from agencyhub.models.user import User
from agencyhub.models.sub_agency import SubAgency
from agencyhub.models.api_key import ApiKey

__all__ = [
    "Base",
    "BaseModel",
    "User",
    "SubAgency",
    "ApiKey",
]
