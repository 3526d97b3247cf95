# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Agent collaborator boundary.

The connector never generates replies itself. Each inbound conversational
frame becomes an ``AgentRequest`` handed to an object implementing the
``Agent`` protocol. The request carries an ``InvocationContext`` that
scopes side effects: the group notes tool attached to it may only write
the notes of the group being served by that one invocation, and stops
working once the invocation has finished.
"""

from __future__ import annotations

import importlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .core.exceptions import ValidationError
from .core.logging import log_tool_call

if TYPE_CHECKING:
    from .storage.notes import NotesStore

logger = logging.getLogger(__name__)


@dataclass
class AgentReply:
    """What the agent returns for one request."""

    content: str = ""
    attachments: list[Any] | None = None

    @classmethod
    def coerce(cls, value: Any) -> AgentReply:
        """Accept an AgentReply, a mapping with content/attachments, or a string."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(content=value)
        if isinstance(value, dict):
            return cls(content=value.get("content") or "", attachments=value.get("attachments"))
        raise TypeError(f"Unsupported agent reply type: {type(value).__name__}")


@dataclass
class InvocationContext:
    """Side-effect scope for one in-flight agent invocation.

    ``group_id`` is the "current group" for this invocation only; it is
    None for direct and bot messages and is cleared by ``close()``.
    """

    session_key: str
    group_id: str | None = None
    tools: list[Any] = field(default_factory=list)
    closed: bool = False

    def close(self) -> None:
        self.group_id = None
        self.closed = True

    def get_tool(self, name: str) -> Any | None:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Dispatch a tool call by name."""
        tool = self.get_tool(name)
        if tool is None:
            return {"success": False, "error": f"Unknown tool: {name}"}
        return await tool.invoke(arguments)


@dataclass
class AgentRequest:
    """One unit of work for the agent."""

    content: str
    attachments: list[Any]
    channel_id: str
    message_id: str
    session_key: str
    metadata: dict[str, Any]
    context: InvocationContext


@runtime_checkable
class Agent(Protocol):
    """Protocol the message-processing collaborator implements."""

    async def process_message(self, request: AgentRequest) -> Any:
        """Process a request, returning an AgentReply (or dict/str). May raise."""
        ...

    def reset_conversation(self) -> Any:
        """Clear conversation state. May be sync or async."""
        ...


class GroupNotesTool:
    """Tool letting the agent rewrite the notes of the group it is serving.

    The target group always comes from the invocation context, never from
    the tool arguments.
    """

    name = "update_group_notes"

    definition: dict[str, Any] = {
        "name": name,
        "description": (
            "Replace the shared notes for the current group. Only available "
            "while answering a group message. Notes are limited to 100 KiB."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "content": {
                    "type": "string",
                    "description": "Full new notes text (replaces existing notes)",
                },
            },
            "required": ["content"],
        },
    }

    def __init__(self, context: InvocationContext, notes_store: NotesStore):
        self.context = context
        self.notes_store = notes_store

    async def invoke(self, arguments: dict[str, Any]) -> dict[str, Any]:
        result = await self._invoke(arguments)
        log_tool_call(self.name, arguments, result)
        return result

    async def _invoke(self, arguments: dict[str, Any]) -> dict[str, Any]:
        group_id = self.context.group_id
        if self.context.closed or group_id is None:
            return {"success": False, "error": "No group is currently being served"}

        content = arguments.get("content")
        try:
            written = await self.notes_store.write(group_id, content)
        except ValidationError as e:
            return {"success": False, "error": e.message, "details": e.details}

        return {"success": True, "group_id": group_id, "bytes": written}


class EchoAgent:
    """Minimal agent that repeats the message back.

    Used by ``ppclaw run --echo`` to verify relay connectivity end to end.
    """

    def __init__(self, prefix: str = "echo: "):
        self.prefix = prefix
        self.resets = 0

    async def process_message(self, request: AgentRequest) -> AgentReply:
        return AgentReply(content=f"{self.prefix}{request.content}", attachments=request.attachments or None)

    def reset_conversation(self) -> None:
        self.resets += 1


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable (agents may be sync or async)."""
    if inspect.isawaitable(value):
        return await value
    return value


def load_agent(path: str) -> Any:
    """Load an agent from a ``module:attribute`` path.

    If the attribute is callable and not itself an agent, it is called
    with no arguments and the result is used (a factory).
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Agent path must look like 'module:attribute', got {path!r}")

    module = importlib.import_module(module_name)
    target = getattr(module, attr)
    if inspect.isclass(target) or (callable(target) and not isinstance(target, Agent)):
        target = target()
    if not isinstance(target, Agent):
        raise TypeError(f"{path} does not provide process_message/reset_conversation")
    logger.debug(f"Loaded agent {type(target).__name__} from {path}")
    return target
