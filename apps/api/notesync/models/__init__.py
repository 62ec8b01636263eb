"""Expose ORM models."""
from .note import Note
from .note_version import NoteVersion
from .user_presence import UserPresence

__all__ = [
    "Note",
    "NoteVersion",
    "UserPresence",
]
