"""Global test fixtures for the ppclaw test suite."""

from __future__ import annotations

import json
import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from ppclaw.core.config import clear_config_cache
from ppclaw.network.discovery import RelayInfo

GROUP_ID = "3f2b6a1e-9c4d-4e8a-b7f1-0a2c5d6e7f80"
OTHER_GROUP_ID = "8d1c0b2a-7e6f-4a5b-9c8d-1e2f3a4b5c6d"


# ============================================================================
# Environment fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Remove all PPCLAW_ environment variables and isolate .env lookup."""
    for key in list(os.environ.keys()):
        if key.startswith("PPCLAW_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_config_cache()
    yield
    clear_config_cache()


# ============================================================================
# Relay fixtures
# ============================================================================


@pytest.fixture
def relays() -> tuple[RelayInfo, ...]:
    return (
        RelayInfo("relay-a", "wss://a.example.com/ws", 1.0),
        RelayInfo("relay-b", "wss://b.example.com/ws", 3.0),
        RelayInfo("relay-c", "wss://c.example.com/ws", 6.0),
    )


def make_response(status: int = 200, body: Any = None, text: str | None = None) -> MagicMock:
    """Create a mock aiohttp response."""
    response = MagicMock()
    response.status = status
    if text is None:
        text = json.dumps(body) if body is not None else ""
    response.text = AsyncMock(return_value=text)
    if isinstance(body, Exception):
        response.json = AsyncMock(side_effect=body)
    else:
        response.json = AsyncMock(return_value=body)
    return response


def make_session(get_response: Any = None, post_response: Any = None) -> MagicMock:
    """Create a mock aiohttp session whose get/post act as async context managers."""
    session = MagicMock()
    session.get = MagicMock(
        return_value=MagicMock(
            __aenter__=AsyncMock(return_value=get_response),
            __aexit__=AsyncMock(return_value=False),
        )
    )
    session.post = MagicMock(
        return_value=MagicMock(
            __aenter__=AsyncMock(return_value=post_response),
            __aexit__=AsyncMock(return_value=False),
        )
    )
    return session


# ============================================================================
# Connection fixtures
# ============================================================================


class FakeWebSocket:
    """Minimal stand-in for aiohttp's ClientWebSocketResponse."""

    def __init__(self, messages: list[Any] | None = None):
        self._messages = list(messages or [])
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.close_calls = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed or not self._messages:
            raise StopAsyncIteration
        return self._messages.pop(0)

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    def exception(self) -> Exception | None:
        return None


class RecordingSender:
    """Async send callable that records outbound frames in order."""

    def __init__(self, fail: bool = False):
        self.frames: list[dict[str, Any]] = []
        self.fail = fail

    async def __call__(self, frame: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(frame)

    def types(self) -> list[str]:
        return [f["type"] for f in self.frames]


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()
