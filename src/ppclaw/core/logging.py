# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Logging setup for the connector.

Records are enriched from a task-local context with three fields:

- ``relay_id``: the relay the live connection is attached to (set by the
  supervisor around its read loop)
- ``frame_id``: the id of the inbound frame being processed (set by the
  router per message; doubles as the correlation id)
- ``session_key``: the conversation the agent is being invoked for

Processing tasks are spawned inside the read loop, so they inherit
``relay_id``. Every line about one message can be found by ``frame_id``
and every line about one conversation by ``session_key``.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .config import ConnectorSettings

CONTEXT_FIELDS = ("relay_id", "frame_id", "session_key")

_log_context: ContextVar[dict[str, str] | None] = ContextVar("ppclaw_log_context", default=None)

_tool_log = logging.getLogger("ppclaw.tools")


# =============================================================================
# CONTEXT
# =============================================================================


def get_log_context() -> dict[str, str]:
    """Copy of the fields bound in the current task."""
    return dict(_log_context.get() or {})


@contextmanager
def log_context(**fields: Any) -> Generator[dict[str, str], None, None]:
    """Bind context fields for the duration of the block.

    Fields nest: inner blocks add to (or override) the outer ones and the
    outer values come back on exit. ``None`` values are ignored.
    """
    merged = {**(_log_context.get() or {}), **{k: str(v) for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    """The frame id being processed, if any."""
    return (_log_context.get() or {}).get("frame_id")


@contextmanager
def correlation_context(frame_id: str | None = None) -> Generator[str, None, None]:
    """Bind ``frame_id`` (a fresh uuid when the frame carries none)."""
    cid = frame_id or generate_correlation_id()
    with log_context(frame_id=cid):
        yield cid


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Mask a credential for logging, keeping only a short prefix."""
    if not value:
        return "<unset>"
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * 8


def _record_fields(record: logging.LogRecord) -> dict[str, str]:
    # Explicit extra={"relay_id": ...} on the call wins over the task context
    fields = get_log_context()
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value:
            fields[name] = str(value)
    return fields


# =============================================================================
# FORMATTERS
# =============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per line with the context fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_record_fields(record))

        extra = getattr(record, "extra_data", None)
        if extra:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Terminal format: ``time level logger [relay frame session] message``.

    The frame id is shortened to 8 characters.
    """

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s %(ppclaw_context)s%(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        parts = []
        for name in CONTEXT_FIELDS:
            if name in fields:
                parts.append(fields[name][:8] if name == "frame_id" else fields[name])
        record.ppclaw_context = f"[{' '.join(parts)}] " if parts else ""
        return super().format(record)


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
    settings: ConnectorSettings | None = None,
) -> None:
    """Install the connector's handlers on the root logger.

    Unset arguments come from ``settings`` (``PPCLAW_LOG_LEVEL``,
    ``PPCLAW_LOG_FORMAT``, ``PPCLAW_LOG_FILE``). With no format configured,
    JSON is used unless stderr is a terminal. The log file is always JSON.
    """
    if settings is None:
        from .config import get_config

        settings = get_config()

    level = level or settings.log_level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        json_format = {"json": True, "text": False}.get(
            settings.log_format.lower(), not sys.stderr.isatty()
        )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JSONFormatter() if json_format else TextFormatter())
    handlers: list[logging.Handler] = [console]

    log_file = log_file or settings.log_file
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger("aiohttp").setLevel(logging.WARNING)


# =============================================================================
# TOOL CALLS
# =============================================================================


def _summarize(value: Any) -> Any:
    # Tool arguments carry user content (group notes); log shape, not text
    if isinstance(value, str):
        return f"<{len(value.encode('utf-8'))} bytes>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return f"<{type(value).__name__}>"


def log_tool_call(tool: str, arguments: dict[str, Any], result: dict[str, Any]) -> None:
    """Log one agent tool invocation and its outcome.

    Successful calls log at DEBUG, refused ones at WARNING.
    """
    success = bool(result.get("success"))
    outcome = "ok" if success else result.get("error", "failed")
    _tool_log.log(
        logging.DEBUG if success else logging.WARNING,
        f"Tool {tool}: {outcome}",
        extra={
            "extra_data": {
                "tool": tool,
                "arguments": {key: _summarize(value) for key, value in arguments.items()},
                "success": success,
            }
        },
    )
