"""
ppclaw Network - relay discovery, binding and the agent-side connection.

This module provides the pieces that keep one agent connected to the
relay pool: discovery, weighted relay selection, bind-token exchange,
the supervised WebSocket connection and inbound frame routing.
"""

from ppclaw.network.binding import (
    BIND_PATH,
    CredentialBinder,
    Credentials,
    relay_http_base,
    resolve_credentials,
)
from ppclaw.network.discovery import (
    RelayDirectory,
    RelayInfo,
    RelaySnapshot,
    parse_relay_payload,
)
from ppclaw.network.message_handler import APOLOGY, MessageRouter
from ppclaw.network.messages import (
    BotDirectMessage,
    BotDmReply,
    DirectMessage,
    GroupMessage,
    GroupReply,
    Reply,
    ack,
    parse_frame,
    pong,
)
from ppclaw.network.selector import RelaySelector
from ppclaw.network.supervisor import (
    BackoffTimer,
    ConnectionState,
    ConnectionSupervisor,
    FrameSender,
    SupervisorConfig,
)

__all__ = [
    # Discovery
    "RelayDirectory",
    "RelayInfo",
    "RelaySnapshot",
    "parse_relay_payload",
    # Selection
    "RelaySelector",
    # Binding
    "BIND_PATH",
    "CredentialBinder",
    "Credentials",
    "relay_http_base",
    "resolve_credentials",
    # Frames
    "BotDirectMessage",
    "BotDmReply",
    "DirectMessage",
    "GroupMessage",
    "GroupReply",
    "Reply",
    "ack",
    "parse_frame",
    "pong",
    # Routing
    "APOLOGY",
    "MessageRouter",
    # Connection
    "BackoffTimer",
    "ConnectionState",
    "ConnectionSupervisor",
    "FrameSender",
    "SupervisorConfig",
]
