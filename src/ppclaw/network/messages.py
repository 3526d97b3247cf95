"""
Frame formats for the ppclaw relay protocol.

Inbound (relay -> agent):
- ping
- new_session
- message: direct chat from a user
- group_message: message in a group the agent belongs to
- bot_dm: agent-to-agent message, optionally scoped to a task

Outbound (agent -> relay):
- pong, ack, reply, group_reply, bot_dm_reply

Each conversational inbound frame derives a session key. Equal keys
always map to the same conversation state in the agent; different keys
never share state.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import json

from ..storage.notes import normalize_group_id

SESSION_PREFIX = "ppclaw"

PING = "ping"
NEW_SESSION = "new_session"
MESSAGE = "message"
GROUP_MESSAGE = "group_message"
BOT_DM = "bot_dm"

INBOUND_TYPES = frozenset({PING, NEW_SESSION, MESSAGE, GROUP_MESSAGE, BOT_DM})


def parse_frame(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Decode a raw WebSocket payload into a frame dict.

    Returns None for anything that is not a JSON object with a string
    ``type``; callers drop such payloads silently.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        return None
    return raw


def _attachments(value: Any) -> List[Any]:
    return list(value) if isinstance(value, list) else []


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _key_part(value: str) -> str:
    """Escape a session key segment so ids containing ":" cannot forge segments."""
    return value.replace("%", "%25").replace(":", "%3A")


# =============================================================================
# INBOUND FRAMES
# =============================================================================


@dataclass
class DirectMessage:
    """A user's direct chat message."""

    type: str = field(default=MESSAGE, init=False)
    id: str = ""
    content: str = ""
    attachments: List[Any] = field(default_factory=list)
    sender_id: Optional[str] = None
    sender_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DirectMessage":
        return cls(
            id=str(data.get("id", "")),
            content=data.get("content") or "",
            attachments=_attachments(data.get("attachments")),
            sender_id=_opt_str(data.get("senderId")),
            sender_name=_opt_str(data.get("senderName")),
        )

    @property
    def session_key(self) -> str:
        return f"{SESSION_PREFIX}:dm:{_key_part(self.sender_id or 'anonymous')}"

    def metadata(self) -> Dict[str, Any]:
        return {
            "chatType": "direct",
            "senderId": self.sender_id,
            "senderName": self.sender_name,
        }


@dataclass
class GroupMessage:
    """A message posted in a group the agent is a member of."""

    type: str = field(default=GROUP_MESSAGE, init=False)
    id: str = ""
    group_id: str = ""
    group_name: Optional[str] = None
    content: str = ""
    attachments: List[Any] = field(default_factory=list)
    sender_id: Optional[str] = None
    sender_type: Optional[str] = None
    sender_name: Optional[str] = None
    is_mentioned: bool = False
    group_owner: Optional[Any] = None
    group_agents: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroupMessage":
        return cls(
            id=str(data.get("id", "")),
            group_id=str(data.get("groupId", "")),
            group_name=_opt_str(data.get("groupName")),
            content=data.get("content") or "",
            attachments=_attachments(data.get("attachments")),
            sender_id=_opt_str(data.get("senderId")),
            sender_type=_opt_str(data.get("senderType")),
            sender_name=_opt_str(data.get("senderName")),
            is_mentioned=bool(data.get("isMentioned", False)),
            group_owner=data.get("groupOwner"),
            group_agents=_attachments(data.get("groupAgents")),
        )

    @property
    def session_key(self) -> str:
        return f"{SESSION_PREFIX}:group:{_key_part(normalize_group_id(self.group_id))}"

    def metadata(self, group_notes: str = "") -> Dict[str, Any]:
        return {
            "chatType": "group",
            "groupId": self.group_id,
            "groupName": self.group_name,
            "senderId": self.sender_id,
            "senderType": self.sender_type,
            "senderName": self.sender_name,
            "isMentioned": self.is_mentioned,
            "groupOwner": self.group_owner,
            "groupAgents": self.group_agents,
            "groupNotes": group_notes,
        }


@dataclass
class BotDirectMessage:
    """An agent-to-agent message."""

    type: str = field(default=BOT_DM, init=False)
    id: str = ""
    content: str = ""
    from_agent_id: str = ""
    from_agent_name: Optional[str] = None
    task_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BotDirectMessage":
        task_id = data.get("taskId")
        return cls(
            id=str(data.get("id", "")),
            content=data.get("content") or "",
            from_agent_id=str(data.get("fromAgentId", "")),
            from_agent_name=_opt_str(data.get("fromAgentName")),
            task_id=str(task_id) if task_id else None,
        )

    @property
    def session_key(self) -> str:
        # Task-scoped and free-standing conversations with the same agent
        # must never collide, hence the explicit "task" segment.
        base = f"{SESSION_PREFIX}:bot:{_key_part(self.from_agent_id)}"
        if self.task_id:
            return f"{base}:task:{_key_part(self.task_id)}"
        return base

    def metadata(self) -> Dict[str, Any]:
        return {
            "chatType": "bot",
            "fromAgentId": self.from_agent_id,
            "fromAgentName": self.from_agent_name,
            "taskId": self.task_id,
        }


# =============================================================================
# OUTBOUND FRAMES
# =============================================================================


def pong() -> Dict[str, Any]:
    return {"type": "pong"}


def ack(message_id: str) -> Dict[str, Any]:
    return {"type": "ack", "id": message_id}


@dataclass
class Reply:
    """Reply to a direct message."""

    type: str = field(default="reply", init=False)
    reply_to: str = ""
    content: str = ""
    attachments: Optional[List[Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "replyTo": self.reply_to,
            "content": self.content,
        }
        if self.attachments is not None:
            data["attachments"] = self.attachments
        return data


@dataclass
class GroupReply:
    """Reply posted into a group."""

    type: str = field(default="group_reply", init=False)
    reply_to: str = ""
    group_id: str = ""
    content: str = ""
    attachments: Optional[List[Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "replyTo": self.reply_to,
            "groupId": self.group_id,
            "content": self.content,
        }
        if self.attachments is not None:
            data["attachments"] = self.attachments
        return data


@dataclass
class BotDmReply:
    """Reply to another agent."""

    type: str = field(default="bot_dm_reply", init=False)
    reply_to: str = ""
    target_agent_id: str = ""
    task_id: Optional[str] = None
    content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "replyTo": self.reply_to,
            "targetAgentId": self.target_agent_id,
            "taskId": self.task_id,
            "content": self.content,
        }
