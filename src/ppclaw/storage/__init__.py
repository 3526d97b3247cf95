"""Keyed text storage used by the message router (per-group notes)."""

from .notes import (
    MAX_NOTES_BYTES,
    LocalFileNotesStore,
    MemoryNotesStore,
    NotesStats,
    NotesStore,
    normalize_group_id,
    validate_group_id,
    validate_notes,
)

__all__ = [
    "MAX_NOTES_BYTES",
    "LocalFileNotesStore",
    "MemoryNotesStore",
    "NotesStats",
    "NotesStore",
    "normalize_group_id",
    "validate_group_id",
    "validate_notes",
]
