"""Persisted cursor state used to show presence to late joiners."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .note import Note


class UserPresence(Base):
    """Latest cursor position of one user in one room."""

    __tablename__ = "user_sessions"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_user_sessions_room_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(ForeignKey("notes.room_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(String(255), default="Anonymous", nullable=False)
    cursor_position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    selection_start: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    selection_end: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    color: Mapped[str] = mapped_column(String(7), default="#007bff", nullable=False)
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    note: Mapped["Note"] = relationship("Note", back_populates="presences")
