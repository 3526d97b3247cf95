"""Group notes storage.

Each group the agent serves has one bounded text document. Keys are
validated group ids (strict UUID shape) and are namespaced per agent
instance, so two agents sharing a storage root never see each other's
notes.

Supported backends:
- Memory (for testing and embedding hosts)
- Local file system
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..core.exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_NOTES_BYTES = 100 * 1024

_GROUP_ID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def normalize_group_id(group_id: str) -> str:
    """Canonical form of a group id: UUIDs compare case-insensitively."""
    if _GROUP_ID_RE.match(group_id):
        return group_id.lower()
    return group_id


def validate_group_id(group_id: Any) -> str:
    """Return the normalized ``group_id`` if it has a strict UUID shape, else raise.

    Raises:
        ValidationError: For anything else, including path fragments
            such as ``"../../etc"``.
    """
    if not isinstance(group_id, str) or not _GROUP_ID_RE.match(group_id):
        raise ValidationError(f"Invalid group id: {group_id!r}", field="group_id", value=group_id)
    return normalize_group_id(group_id)


def validate_notes(text: Any) -> bytes:
    """Encode notes text, enforcing the size limit."""
    if not isinstance(text, str):
        raise ValidationError("Notes content must be a string", field="content")
    encoded = text.encode("utf-8")
    if len(encoded) > MAX_NOTES_BYTES:
        raise ValidationError(
            f"Notes exceed {MAX_NOTES_BYTES} bytes ({len(encoded)} bytes)",
            field="content",
            value=len(encoded),
        )
    return encoded


@dataclass
class NotesStats:
    """Statistics for a notes backend."""

    backend_type: str
    agent_instance_id: str
    groups: int = 0
    total_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend_type": self.backend_type,
            "agent_instance_id": self.agent_instance_id,
            "groups": self.groups,
            "total_bytes": self.total_bytes,
        }


class NotesStore(ABC):
    """Abstract base class for group notes backends.

    Subclasses only implement the raw ``_load`` / ``_save`` / ``_remove``
    primitives; validation happens here, before any backend is touched.
    """

    def __init__(self, agent_instance_id: str = "default"):
        if not agent_instance_id or "/" in agent_instance_id or agent_instance_id in (".", ".."):
            raise ValidationError(
                f"Invalid agent instance id: {agent_instance_id!r}",
                field="agent_instance_id",
                value=agent_instance_id,
            )
        self.agent_instance_id = agent_instance_id

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Type of backend (e.g., 'local', 'memory')."""

    @abstractmethod
    async def _load(self, group_id: str) -> str | None:
        pass

    @abstractmethod
    async def _save(self, group_id: str, data: bytes) -> None:
        pass

    @abstractmethod
    async def _remove(self, group_id: str) -> bool:
        pass

    @abstractmethod
    async def get_stats(self) -> NotesStats:
        pass

    async def read(self, group_id: str) -> str:
        """Return the notes for a group, or an empty string if none exist."""
        key = validate_group_id(group_id)
        text = await self._load(key)
        return text or ""

    async def write(self, group_id: str, text: str) -> int:
        """Replace the notes for a group.

        Returns:
            Number of bytes written.

        Raises:
            ValidationError: If the group id is malformed or the text is
                larger than ``MAX_NOTES_BYTES``. Nothing is written.
        """
        key = validate_group_id(group_id)
        data = validate_notes(text)
        await self._save(key, data)
        logger.debug(f"Wrote {len(data)} bytes of notes for group {key}")
        return len(data)

    async def delete(self, group_id: str) -> bool:
        """Delete the notes for a group. Returns False if there were none."""
        key = validate_group_id(group_id)
        return await self._remove(key)


class MemoryNotesStore(NotesStore):
    """In-memory notes backend."""

    def __init__(self, agent_instance_id: str = "default"):
        super().__init__(agent_instance_id)
        self._notes: dict[tuple[str, str], bytes] = {}

    @property
    def backend_type(self) -> str:
        return "memory"

    async def _load(self, group_id: str) -> str | None:
        data = self._notes.get((self.agent_instance_id, group_id))
        return data.decode("utf-8") if data is not None else None

    async def _save(self, group_id: str, data: bytes) -> None:
        self._notes[(self.agent_instance_id, group_id)] = data

    async def _remove(self, group_id: str) -> bool:
        return self._notes.pop((self.agent_instance_id, group_id), None) is not None

    async def get_stats(self) -> NotesStats:
        own = [v for (ns, _), v in self._notes.items() if ns == self.agent_instance_id]
        return NotesStats(
            backend_type=self.backend_type,
            agent_instance_id=self.agent_instance_id,
            groups=len(own),
            total_bytes=sum(len(v) for v in own),
        )

    def clear(self) -> None:
        self._notes.clear()


class LocalFileNotesStore(NotesStore):
    """Local file system notes backend.

    Layout: ``<base_path>/<agent_instance_id>/<group_id>.md``. Writes
    are atomic (temp file + ``os.replace``).
    """

    def __init__(self, base_path: str | Path, agent_instance_id: str = "default"):
        super().__init__(agent_instance_id)
        self._base_path = Path(base_path).expanduser()
        self._dir = self._base_path / agent_instance_id

    @property
    def backend_type(self) -> str:
        return "local"

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, group_id: str) -> Path:
        return self._dir / f"{group_id}.md"

    async def _load(self, group_id: str) -> str | None:
        path = self._path(group_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    async def _save(self, group_id: str, data: bytes) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._path(group_id)

        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".notes-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def _remove(self, group_id: str) -> bool:
        path = self._path(group_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    async def get_stats(self) -> NotesStats:
        stats = NotesStats(backend_type=self.backend_type, agent_instance_id=self.agent_instance_id)
        if not self._dir.exists():
            return stats
        for path in self._dir.glob("*.md"):
            stats.groups += 1
            stats.total_bytes += path.stat().st_size
        return stats
