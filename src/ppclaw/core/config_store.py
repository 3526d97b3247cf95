# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Durable configuration persistence.

The connector writes back to configuration exactly once in normal
operation: after a bind token has been exchanged for an api key. A
``None`` value in a partial update deletes the key, which is how the
spent bind token is removed.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ConfigStore(Protocol):
    """Protocol for the host configuration collaborator."""

    def load(self) -> dict[str, Any]:
        """Return the persisted configuration (empty dict if none)."""
        ...

    def persist(self, partial: dict[str, Any]) -> None:
        """Merge ``partial`` into the persisted configuration and save it."""
        ...


def deep_merge(base: dict[str, Any], partial: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``base`` with ``partial`` merged in.

    Nested dicts are merged recursively; ``None`` values remove keys.
    """
    merged = copy.deepcopy(base)
    for key, value in partial.items():
        if value is None:
            merged.pop(key, None)
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class MemoryConfigStore:
    """In-memory config store for tests and embedding hosts."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self.data: dict[str, Any] = dict(initial or {})
        self.persist_count = 0

    def load(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)

    def persist(self, partial: dict[str, Any]) -> None:
        self.data = deep_merge(self.data, partial)
        self.persist_count += 1


class JsonConfigStore:
    """JSON file config store.

    Writes go to a temp file in the same directory and are moved into
    place with ``os.replace`` so a crash never leaves a truncated file.
    The file holds the api key, so it is created with mode 0600.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable config file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {self.path}: top level is not an object")
            return {}
        return data

    def persist(self, partial: dict[str, Any]) -> None:
        merged = deep_merge(self.load(), partial)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".config-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(merged, f, indent=2, sort_keys=True)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info(f"Persisted configuration keys {sorted(partial)} to {self.path}")
