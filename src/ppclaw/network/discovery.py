"""
Relay Directory - discovery client for the relay pool.

The connector needs to find relays before it can open its WebSocket.
This module provides the client side of the discovery protocol:

1. GET the discovery URL
2. Parse the relay list ({"relays": [{"id", "ws", "weight"}, ...]})
3. Replace the cached snapshot atomically on success
4. Keep the last good snapshot when a refresh fails

No retry logic lives here; the connection supervisor owns retry and
backoff.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import aiohttp

from ..core.exceptions import DiscoveryError

logger = logging.getLogger(__name__)


# =============================================================================
# DATA MODELS
# =============================================================================


@dataclass(frozen=True)
class RelayInfo:
    """A relay node advertised by the discovery endpoint."""

    relay_id: str
    ws_endpoint: str  # ws:// or wss:// base URL
    weight: float = 1.0

    @property
    def agent_url(self) -> str:
        """WebSocket URL agents connect to."""
        return f"{self.ws_endpoint.rstrip('/')}/agent"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the discovery wire format."""
        return {"id": self.relay_id, "ws": self.ws_endpoint, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayInfo":
        """
        Create from a discovery entry.

        Raises:
            ValueError: If the entry is missing an id, has a non-WebSocket
                endpoint, or a non-positive weight.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Relay entry is not an object: {data!r}")

        relay_id = data.get("id")
        if not isinstance(relay_id, str) or not relay_id:
            raise ValueError("Relay entry has no id")

        ws = data.get("ws")
        if not isinstance(ws, str) or not ws.startswith(("ws://", "wss://")):
            raise ValueError(f"Relay {relay_id} has invalid ws endpoint: {ws!r}")

        weight = data.get("weight", 1)
        if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight <= 0:
            raise ValueError(f"Relay {relay_id} has invalid weight: {weight!r}")

        return cls(relay_id=relay_id, ws_endpoint=ws, weight=float(weight))


RelaySnapshot = Tuple[RelayInfo, ...]


def parse_relay_payload(payload: Any) -> RelaySnapshot:
    """
    Parse a discovery response body.

    Malformed individual entries are skipped with a warning; a missing or
    non-list ``relays`` field fails the whole payload.

    Raises:
        DiscoveryError: If the payload has no relay list.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("relays"), list):
        raise DiscoveryError("Discovery payload is missing the relay list")

    relays = []
    seen = set()
    for entry in payload["relays"]:
        try:
            relay = RelayInfo.from_dict(entry)
        except ValueError as e:
            logger.warning(f"Skipping malformed relay entry: {e}")
            continue
        if relay.relay_id in seen:
            logger.warning(f"Skipping duplicate relay id {relay.relay_id}")
            continue
        seen.add(relay.relay_id)
        relays.append(relay)

    return tuple(relays)


# =============================================================================
# RELAY DIRECTORY
# =============================================================================


class RelayDirectory:
    """
    Fetches and caches the relay pool.

    Readers always see a complete snapshot: ``snapshot`` returns the tuple
    from the last successful refresh, never a partially updated list.

    Example:
        directory = RelayDirectory("https://api.claw.icu/relay.json")
        relays = await directory.refresh()
    """

    def __init__(
        self,
        discovery_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = 10.0,
    ):
        """
        Initialize the RelayDirectory.

        Args:
            discovery_url: Discovery endpoint URL
            session: Shared aiohttp session (a short-lived one is created per
                request when omitted)
            request_timeout: Total request timeout in seconds
        """
        self.discovery_url = discovery_url
        self.session = session
        self.request_timeout = request_timeout

        self._snapshot: RelaySnapshot = ()
        self._last_refresh: float = 0.0

        self._stats: Dict[str, int] = {
            "refreshes": 0,
            "refresh_failures": 0,
        }

    @property
    def snapshot(self) -> RelaySnapshot:
        """The last good relay snapshot (may be empty)."""
        return self._snapshot

    @property
    def last_refresh(self) -> float:
        """Unix time of the last successful refresh (0 if never)."""
        return self._last_refresh

    def get_stats(self) -> Dict[str, Any]:
        """Get directory statistics."""
        return {
            **self._stats,
            "relays": len(self._snapshot),
            "last_refresh": self._last_refresh,
        }

    async def refresh(self) -> RelaySnapshot:
        """
        Fetch the relay list and replace the snapshot.

        Returns:
            The new snapshot

        Raises:
            DiscoveryError: If the endpoint is unreachable, returns an error
                status, or returns a malformed payload. The previous snapshot
                is left untouched.
        """
        try:
            payload = await self._fetch()
            relays = parse_relay_payload(payload)
        except DiscoveryError:
            self._stats["refresh_failures"] += 1
            raise

        self._snapshot = relays
        self._last_refresh = time.time()
        self._stats["refreshes"] += 1
        logger.debug(f"Discovered {len(relays)} relays from {self.discovery_url}")
        return relays

    async def refresh_best_effort(self) -> RelaySnapshot:
        """
        Refresh, falling back to the cached snapshot on failure.

        Returns:
            Fresh relays on success, otherwise the previous snapshot
            (empty if there never was a successful refresh).
        """
        try:
            return await self.refresh()
        except DiscoveryError as e:
            logger.error(f"Failed to fetch relay list: {e}")
            if self._snapshot:
                logger.info(f"Using {len(self._snapshot)} cached relays")
            return self._snapshot

    async def _fetch(self) -> Any:
        """GET the discovery URL and decode its JSON body."""
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            if self.session is not None:
                return await self._get_json(self.session, timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                return await self._get_json(session, timeout)
        except DiscoveryError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DiscoveryError(f"Discovery request failed: {e}", url=self.discovery_url) from e
        except ValueError as e:
            raise DiscoveryError(f"Discovery response is not JSON: {e}", url=self.discovery_url) from e

    async def _get_json(self, session: aiohttp.ClientSession, timeout: aiohttp.ClientTimeout) -> Any:
        async with session.get(self.discovery_url, timeout=timeout) as response:
            if response.status != 200:
                text = await response.text()
                raise DiscoveryError(
                    f"Discovery endpoint returned HTTP {response.status}: {text[:200]}",
                    url=self.discovery_url,
                )
            return await response.json(content_type=None)
