# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Connector wiring and host plugin entry point.

``Connector`` assembles the relay directory, selector, binder, message
router and connection supervisor from ``ConnectorSettings``. Hosts that
load channel plugins call ``activate(context)``; standalone use goes
through ``ppclaw run``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Mapping
from typing import Any

import aiohttp

from .core.config import ConnectorSettings
from .core.config_store import ConfigStore, JsonConfigStore
from .network.binding import CredentialBinder, resolve_credentials
from .network.discovery import RelayDirectory
from .network.message_handler import MessageRouter
from .network.selector import RelaySelector
from .network.supervisor import ConnectionSupervisor, SupervisorConfig
from .storage.notes import LocalFileNotesStore, NotesStore

logger = logging.getLogger(__name__)

PLUGIN_NAME = "ppclaw-connector"
PLUGIN_TYPE = "channel"

# Host channel config keys -> settings fields
_HOST_KEYS = {
    "apiKey": "api_key",
    "bindToken": "bind_token",
    "discoveryUrl": "discovery_url",
    "agentInstanceId": "agent_instance_id",
    "notesDir": "notes_dir",
}


class Connector:
    """The assembled relay connector.

    Raises ConfigurationError from the constructor when neither an api key
    nor a bind token is configured, before any network I/O.
    """

    def __init__(
        self,
        settings: ConnectorSettings,
        agent: Any,
        notes_store: NotesStore | None = None,
        config_store: ConfigStore | None = None,
        session: aiohttp.ClientSession | None = None,
        rng: random.Random | None = None,
    ):
        self.settings = settings
        self.agent = agent
        credentials = resolve_credentials(settings.api_key, settings.bind_token)

        self.notes_store = notes_store or LocalFileNotesStore(
            settings.notes_dir, settings.agent_instance_id
        )
        self.config_store = config_store or JsonConfigStore(settings.config_file)

        self.directory = RelayDirectory(
            settings.discovery_url,
            session=session,
            request_timeout=settings.request_timeout,
        )
        self.selector = RelaySelector(rng)
        self.binder = CredentialBinder(
            self.config_store,
            session=session,
            request_timeout=settings.request_timeout,
        )
        self.router = MessageRouter(agent, self.notes_store, channel_id=settings.channel_id)
        self.supervisor = ConnectionSupervisor(
            self.directory,
            self.selector,
            self.router,
            credentials,
            binder=self.binder,
            config=SupervisorConfig(
                retry_base_delay=settings.retry_base_delay,
                retry_max_delay=settings.retry_max_delay,
                connect_timeout=settings.request_timeout,
                heartbeat=settings.heartbeat_interval,
            ),
            session=session,
        )
        self._task: asyncio.Task | None = None

    async def start(self) -> asyncio.Task:
        """Bind if needed, then run the connection loop in the background."""
        await self.supervisor.ensure_credentials()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def run(self) -> None:
        """Run the connection loop until ``stop()``."""
        await self.supervisor.run()

    async def stop(self) -> None:
        await self.supervisor.stop()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    def get_stats(self) -> dict[str, Any]:
        return {
            "directory": self.directory.get_stats(),
            "supervisor": self.supervisor.get_stats(),
            "router": self.router.get_stats(),
        }


class HostConfigStore:
    """Config store that writes through the host's ``update_config``."""

    def __init__(self, context: Any, channel: str = "ppclaw"):
        self.context = context
        self.channel = channel

    def load(self) -> dict[str, Any]:
        return dict(_channel_config(self.context, self.channel))

    def persist(self, partial: dict[str, Any]) -> None:
        reverse = {v: k for k, v in _HOST_KEYS.items()}
        host_partial = {reverse.get(key, key): value for key, value in partial.items()}
        self.context.update_config({"channels": {self.channel: host_partial}})


def _channel_config(context: Any, channel: str) -> Mapping[str, Any]:
    config = context.config if hasattr(context, "config") else context["config"]
    channels = config.get("channels", {}) if isinstance(config, Mapping) else getattr(config, "channels", {})
    return channels.get(channel) or {}


def settings_from_host(channel_config: Mapping[str, Any]) -> ConnectorSettings:
    """Translate a host channel config section into settings."""
    values = {
        field: channel_config[key]
        for key, field in _HOST_KEYS.items()
        if channel_config.get(key) is not None
    }
    return ConnectorSettings(**values)


async def activate(context: Any) -> Connector:
    """Host plugin entry point.

    ``context`` exposes ``config`` (with a ``channels.ppclaw`` section),
    ``agent`` and ``update_config``; it may also provide ``notes_store``.
    Binding happens before this returns; the connection loop then runs in
    the background.
    """
    settings = settings_from_host(_channel_config(context, "ppclaw"))
    connector = Connector(
        settings,
        context.agent,
        notes_store=getattr(context, "notes_store", None),
        config_store=HostConfigStore(context),
    )
    await connector.start()
    logger.info(f"{PLUGIN_NAME} activated")
    return connector
