"""
Schemas for endpoints consumed by API key holders.
"""

from datetime import datetime

from agencyhub.schemas.common import BaseSchema


class SubAgencyRead(BaseSchema):
    id: str
    name: str
    description: str | None = None
    parent_agency_id: str | None = None
    owner_id: str
    created_at: datetime
