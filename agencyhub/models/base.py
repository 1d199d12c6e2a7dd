"""
Base model with common fields for all entities.

Provides:
- Primary key (UUID string)
- Creation timestamp
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from agencyhub.core.database import Base
from agencyhub.utils.datetime import utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class BaseModel(Base):
    """
    Abstract base model for all database tables.

    Subclasses must define __tablename__.
    """

    __abstract__ = True

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
        comment="Unique identifier"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created"
    )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id={self.id})>"

    def dict(self) -> dict[str, Any]:
        """Convert model to dictionary. Prefer Pydantic schemas in routes."""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }
