"""
Connection Supervisor - owns the relay connect/reconnect loop.

This module manages:
- First-time credential binding when only a bind token is configured
- Relay discovery (best effort) and selection per attempt
- The single live WebSocket connection and its read loop
- Failed-relay bookkeeping and exponential reconnect backoff

State machine:

    DISCOVERING -> (BINDING) -> CONNECTING -> CONNECTED
                                     ^            |
                                     |            v
                                     +------- BACKOFF

TERMINATED is entered only through ``stop()``. Attempts are strictly
sequential: a new one never starts while the previous socket is open.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set, TYPE_CHECKING

import aiohttp
from aiohttp import WSMsgType

from ..core.exceptions import ConfigurationError, RelayConnectionError
from ..core.logging import log_context, mask_secret
from .binding import Credentials

if TYPE_CHECKING:
    from .binding import CredentialBinder
    from .discovery import RelayDirectory, RelayInfo
    from .message_handler import MessageRouter
    from .selector import RelaySelector

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle states of the supervisor."""

    DISCOVERING = "discovering"
    BINDING = "binding"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"
    TERMINATED = "terminated"


@dataclass
class BackoffTimer:
    """Exponential reconnect delay: doubles per failure, capped, reset on open."""

    base: float = 1.0
    maximum: float = 30.0
    current: float = field(init=False)

    def __post_init__(self) -> None:
        if self.base <= 0 or self.maximum < self.base:
            raise ValueError("BackoffTimer needs 0 < base <= maximum")
        self.current = self.base

    def next_delay(self) -> float:
        """Return the delay to wait now and double it for next time."""
        delay = self.current
        self.current = min(self.current * 2, self.maximum)
        return delay

    def reset(self) -> None:
        self.current = self.base


@dataclass
class SupervisorConfig:
    """Configuration for ConnectionSupervisor."""

    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 30.0  # 30 x base
    connect_timeout: float = 10.0
    heartbeat: Optional[float] = 30.0


class FrameSender:
    """Serializes JSON frame writes on one WebSocket."""

    def __init__(self, websocket: Any, relay_id: str):
        self.websocket = websocket
        self.relay_id = relay_id
        self._lock = asyncio.Lock()

    async def __call__(self, frame: Dict[str, Any]) -> None:
        if self.websocket.closed:
            raise RelayConnectionError(
                f"Connection to {self.relay_id} is closed", relay_id=self.relay_id
            )
        async with self._lock:
            await self.websocket.send_json(frame)


class ConnectionSupervisor:
    """
    Maintains one persistent connection to a relay.

    Owns the failed-relay set and the backoff timer; both have this loop
    as their only writer.
    """

    def __init__(
        self,
        directory: "RelayDirectory",
        selector: "RelaySelector",
        router: "MessageRouter",
        credentials: Credentials,
        binder: Optional["CredentialBinder"] = None,
        config: Optional[SupervisorConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ):
        """
        Initialize the ConnectionSupervisor.

        Args:
            directory: Relay pool source
            selector: Relay choice policy
            router: Consumer of inbound frames
            credentials: Api key, or bind token to exchange first
            binder: Performs the bind exchange (required with a bind token)
            config: Supervisor configuration
            session: Shared aiohttp session (owned one created when omitted)
            on_state_change: Callback invoked on every state transition
        """
        if credentials.needs_binding and binder is None:
            raise ConfigurationError("A bind token is configured but no binder was provided")
        if not credentials.api_key and not credentials.bind_token:
            raise ConfigurationError("No apiKey and no bindToken configured for ppclaw")

        self.directory = directory
        self.selector = selector
        self.router = router
        self.credentials = credentials
        self.binder = binder
        self.config = config or SupervisorConfig()
        self.on_state_change = on_state_change

        self.failed_nodes: Set[str] = set()
        self.backoff = BackoffTimer(self.config.retry_base_delay, self.config.retry_max_delay)
        self.state = ConnectionState.DISCOVERING
        self.current_relay: Optional["RelayInfo"] = None

        self._session = session
        self._owns_session = session is None
        self._websocket: Optional[Any] = None
        self._stop_event = asyncio.Event()
        self._running = False

        self._stats: Dict[str, Any] = {
            "connection_attempts": 0,
            "connections_established": 0,
            "connections_failed": 0,
            "disconnects": 0,
            "backoffs": 0,
            "last_delay": 0.0,
        }

    # -------------------------------------------------------------------------
    # PUBLIC API
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def get_stats(self) -> Dict[str, Any]:
        """Get supervisor statistics."""
        return {
            **self._stats,
            "state": self.state.value,
            "current_relay": self.current_relay.relay_id if self.current_relay else None,
            "failed_relays": sorted(self.failed_nodes),
            "next_delay": self.backoff.current,
        }

    async def run(self) -> None:
        """
        Run until ``stop()`` is called.

        Raises:
            BindingError: If the relay rejects the bind token
        """
        if self._running:
            raise RuntimeError("ConnectionSupervisor is already running")
        self._running = True

        try:
            await self.ensure_credentials()
            while not self.stopping:
                await self.connect_once()
                if self.stopping:
                    break
                await self._wait_backoff()
        finally:
            await self._close_websocket()
            if self._owns_session and self._session is not None:
                await self._session.close()
                self._session = None
            self._running = False
            self._set_state(ConnectionState.TERMINATED)

    async def stop(self) -> None:
        """Stop the loop and close the live connection."""
        logger.info("Stopping connection supervisor")
        self._stop_event.set()
        await self._close_websocket()
        await self.router.cancel_all()

    async def connect_once(self) -> bool:
        """
        Perform one connection attempt and serve it until it closes.

        Returns:
            True if the connection was opened (whether or not it has since
            closed), False if no connection could be opened
        """
        self._set_state(ConnectionState.CONNECTING)

        relays = await self.directory.refresh_best_effort()
        if self.stopping:
            return False
        if not relays:
            logger.warning("No relays available")
            return False

        relay = self.selector.pick(relays, self.failed_nodes)
        if relay is None:
            return False

        self.current_relay = relay
        self._stats["connection_attempts"] += 1
        logger.info(f"Connecting to {relay.relay_id} ({relay.agent_url})")

        try:
            websocket = await self._open(relay)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._stats["connections_failed"] += 1
            self.failed_nodes.add(relay.relay_id)
            logger.warning(f"Failed to connect to {relay.relay_id}: {e}")
            return False

        if self.stopping:
            # stop() ran while the handshake was in flight
            logger.info(f"Discarding connection to {relay.relay_id}: shutting down")
            await websocket.close()
            return False

        self._on_open(relay, websocket)
        try:
            await self._serve(relay, websocket)
        finally:
            await self._close_websocket()

        if not self.stopping:
            self._stats["disconnects"] += 1
            self.failed_nodes.add(relay.relay_id)
            logger.info(f"Disconnected from {relay.relay_id}, reconnecting...")
        return True

    # -------------------------------------------------------------------------
    # BINDING
    # -------------------------------------------------------------------------

    async def ensure_credentials(self) -> None:
        """
        Exchange the bind token for an api key if needed.

        Relay discovery and transport failures are retried with backoff.

        Raises:
            BindingError: If the relay rejects the bind token
        """
        self._set_state(ConnectionState.DISCOVERING)
        if not self.credentials.needs_binding:
            return

        assert self.binder is not None
        bind_token = self.credentials.bind_token or ""

        while not self.stopping:
            relays = await self.directory.refresh_best_effort()
            relay = self.selector.pick(relays, self.failed_nodes)
            if relay is None:
                logger.warning("No relays available for binding")
                await self._wait_backoff()
                self._set_state(ConnectionState.DISCOVERING)
                continue

            self._set_state(ConnectionState.BINDING)
            try:
                api_key = await self.binder.bind(relay, bind_token)
            except RelayConnectionError as e:
                self.failed_nodes.add(relay.relay_id)
                logger.warning(f"Binding via {relay.relay_id} failed: {e.message}")
                await self._wait_backoff()
                self._set_state(ConnectionState.DISCOVERING)
                continue

            self.credentials = Credentials(api_key=api_key)
            self.backoff.reset()
            return

    # -------------------------------------------------------------------------
    # CONNECTION
    # -------------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _open(self, relay: "RelayInfo") -> Any:
        session = await self._get_session()
        headers = {"Authorization": f"Bearer {self.credentials.api_key}"}
        logger.debug(f"Authenticating with api key {mask_secret(self.credentials.api_key)}")
        return await asyncio.wait_for(
            session.ws_connect(
                relay.agent_url,
                headers=headers,
                heartbeat=self.config.heartbeat,
            ),
            timeout=self.config.connect_timeout,
        )

    def _on_open(self, relay: "RelayInfo", websocket: Any) -> None:
        self._websocket = websocket
        self._set_state(ConnectionState.CONNECTED)
        self.backoff.reset()
        self.failed_nodes.discard(relay.relay_id)
        self._stats["connections_established"] += 1
        logger.info(f"Connected to {relay.relay_id}")

    async def _serve(self, relay: "RelayInfo", websocket: Any) -> None:
        """Read loop: hand every data frame to the router."""
        sender = FrameSender(websocket, relay.relay_id)
        # Processing tasks spawned by the router inherit relay_id
        with log_context(relay_id=relay.relay_id):
            async for msg in websocket:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await self.router.dispatch(msg.data, sender)
                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {websocket.exception()}")
                    break
                elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break

    async def _close_websocket(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is None:
            return
        try:
            if not websocket.closed:
                await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing websocket: {e}")

    # -------------------------------------------------------------------------
    # BACKOFF
    # -------------------------------------------------------------------------

    async def _wait_backoff(self) -> None:
        """Wait the current backoff delay (interrupted by ``stop()``)."""
        if self.stopping:
            return
        delay = self.backoff.next_delay()
        self._stats["backoffs"] += 1
        self._stats["last_delay"] = delay
        self._set_state(ConnectionState.BACKOFF)
        logger.debug(f"Retrying in {delay:.1f}s")
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.warning(f"State change callback error: {e}")
