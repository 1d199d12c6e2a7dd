"""
API Key model for programmatic access.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agencyhub.models.base import BaseModel


class ApiKey(BaseModel):
    """
    API key credential metadata.

    The plaintext key is never stored. ``secret_hash`` is a salted bcrypt
    hash; ``lookup_hash`` is a keyed deterministic digest used to find the
    row.
    """

    __tablename__ = "api_keys"
    __table_args__ = (
        Index("ix_api_keys_owner_scope", "owner_id", "scope_id"),
    )

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Descriptive name for the key"
    )

    secret_hash: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        unique=True,
        comment="Salted bcrypt hash of the key"
    )

    lookup_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        comment="HMAC-SHA256 digest of the key, for lookup"
    )

    # First 8 chars, e.g. "ahk_1a2b"
    display_prefix: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        comment="Key prefix for identification"
    )

    owner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="User who created this key"
    )

    scope_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("sub_agencies.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Sub-agency restriction; NULL means all of the owner's sub-agencies"
    )

    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last successful authentication"
    )

    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Key expiration timestamp"
    )

    # Relationships
    owner: Mapped["User"] = relationship("User", back_populates="api_keys")
    scope: Mapped["SubAgency | None"] = relationship("SubAgency")

    def __repr__(self) -> str:
        return f"<ApiKey(prefix={self.display_prefix}, name={self.name})>"
