"""Note model: one row per room holding its document and access settings."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .note_version import NoteVersion
    from .user_presence import UserPresence


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Note(Base):
    """Room metadata plus the current authoritative content."""

    __tablename__ = "notes"

    room_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    room_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255))
    password_salt: Mapped[str | None] = mapped_column(String(64))
    is_encrypted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_delete_hours: Mapped[int] = mapped_column(Integer, default=168, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    last_accessed: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )
    created_by: Mapped[str] = mapped_column(String(255), default="anonymous", nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64))

    versions: Mapped[list["NoteVersion"]] = relationship(
        "NoteVersion", back_populates="note", cascade="all, delete-orphan", passive_deletes=True
    )
    presences: Mapped[list["UserPresence"]] = relationship(
        "UserPresence", back_populates="note", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None
