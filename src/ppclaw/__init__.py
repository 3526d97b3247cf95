# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""ppclaw connector - bridges a local AI agent to the ppclaw relay network.

The connector keeps one outbound WebSocket open to a relay chosen from a
discovery endpoint, receives user, group and agent-to-agent messages,
hands each to an agent collaborator, and sends the replies back.

Architecture:
  Discovery (relay pool, weighted)
    -> Supervisor (bind once, connect, back off, fail over)
    -> Router (ack, session keys, group notes, replies)
    -> Agent (any object with process_message/reset_conversation)

CLI entry point: ``ppclaw``
Host plugin entry point: ``ppclaw.connector.activate``
"""

__version__ = "0.1.0"

from .agent import Agent, AgentReply, AgentRequest, EchoAgent, InvocationContext
from .connector import PLUGIN_NAME, PLUGIN_TYPE, Connector, activate

__all__ = [
    "Agent",
    "AgentReply",
    "AgentRequest",
    "Connector",
    "EchoAgent",
    "InvocationContext",
    "PLUGIN_NAME",
    "PLUGIN_TYPE",
    "activate",
    "__version__",
]
