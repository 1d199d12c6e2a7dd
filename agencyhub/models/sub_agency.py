"""
Sub-agency model.

A sub-agency is the tenant sub-unit an API key can be restricted to.
"""

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agencyhub.models.base import BaseModel


class SubAgency(BaseModel):
    """Tenant sub-scope owned by a user."""

    __tablename__ = "sub_agencies"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name"
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    parent_agency_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
        index=True,
        comment="Owning agency, if nested"
    )

    owner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="User who owns this sub-agency"
    )

    owner: Mapped["User"] = relationship("User", back_populates="sub_agencies")

    def __repr__(self) -> str:
        return f"<SubAgency(id={self.id}, name={self.name})>"
