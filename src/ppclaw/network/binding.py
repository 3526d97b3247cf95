"""
Credential Binder - one-time exchange of a bind token for an API key.

First start of a freshly provisioned agent carries only a bind token.
The token is POSTed to the chosen relay's HTTP endpoint, which answers
with a durable API key. The key is persisted and the token removed, so
the exchange never happens again.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from ..core.config_store import ConfigStore
from ..core.exceptions import BindingError, ConfigurationError, RelayConnectionError
from ..core.logging import mask_secret
from .discovery import RelayInfo

logger = logging.getLogger(__name__)

BIND_PATH = "/api/agent/connect"

_WS_SUFFIX_RE = re.compile(r"/ws/?$")


@dataclass(frozen=True)
class Credentials:
    """Connector credentials. The api key wins once it exists."""

    api_key: Optional[str] = None
    bind_token: Optional[str] = None

    @property
    def needs_binding(self) -> bool:
        return not self.api_key and bool(self.bind_token)


def resolve_credentials(api_key: Optional[str], bind_token: Optional[str]) -> Credentials:
    """
    Validate the startup credential precondition.

    Raises:
        ConfigurationError: If neither an api key nor a bind token is set.
    """
    if api_key:
        return Credentials(api_key=api_key)
    if bind_token:
        return Credentials(bind_token=bind_token)
    raise ConfigurationError(
        "No apiKey and no bindToken configured for ppclaw",
        missing=["api_key", "bind_token"],
    )


def relay_http_base(ws_endpoint: str) -> str:
    """
    Derive a relay's HTTP base URL from its WebSocket URL.

    ``wss://relay.example.com/ws`` -> ``https://relay.example.com``
    """
    base = ws_endpoint
    if base.startswith("wss://"):
        base = "https://" + base[len("wss://"):]
    elif base.startswith("ws://"):
        base = "http://" + base[len("ws://"):]
    return _WS_SUFFIX_RE.sub("", base)


class CredentialBinder:
    """Performs the bind token exchange against a relay."""

    def __init__(
        self,
        config_store: ConfigStore,
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = 10.0,
    ):
        """
        Initialize the CredentialBinder.

        Args:
            config_store: Where the new api key is persisted
            session: Shared aiohttp session (short-lived one when omitted)
            request_timeout: Total request timeout in seconds
        """
        self.config_store = config_store
        self.session = session
        self.request_timeout = request_timeout
        self._api_key: Optional[str] = None

    @property
    def bound(self) -> bool:
        return self._api_key is not None

    async def bind(self, relay: RelayInfo, bind_token: str) -> str:
        """
        Exchange ``bind_token`` for an API key via ``relay``.

        Args:
            relay: Relay whose HTTP endpoint performs the exchange
            bind_token: The one-time bind token

        Returns:
            The new API key

        Raises:
            BindingError: If the relay answers without an api key
            RelayConnectionError: If the relay cannot be reached
        """
        if self._api_key is not None:
            logger.debug("Bind already completed in this process, reusing api key")
            return self._api_key

        url = f"{relay_http_base(relay.ws_endpoint)}{BIND_PATH}"
        logger.info(f"Binding agent via relay {relay.relay_id} (token {mask_secret(bind_token)})")

        status, body = await self._post(url, {"token": bind_token}, relay)
        data = _decode(body)
        api_key = data.get("api_key") if isinstance(data, dict) else None
        if not isinstance(api_key, str) or not api_key:
            raise BindingError(f"Binding failed: {body}", body=body, status=status)

        self.config_store.persist({"api_key": api_key, "bind_token": None})
        self._api_key = api_key
        logger.info(f"Bound agent, api key {mask_secret(api_key)} persisted")
        return api_key

    async def _post(self, url: str, payload: Dict[str, Any], relay: RelayInfo) -> "tuple[int, str]":
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            if self.session is not None:
                return await _post_json(self.session, url, payload, timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                return await _post_json(session, url, payload, timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RelayConnectionError(
                f"Bind request to {relay.relay_id} failed: {e}", relay_id=relay.relay_id
            ) from e


async def _post_json(
    session: aiohttp.ClientSession,
    url: str,
    payload: Dict[str, Any],
    timeout: aiohttp.ClientTimeout,
) -> "tuple[int, str]":
    async with session.post(url, json=payload, timeout=timeout) as response:
        return response.status, await response.text()


def _decode(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return None
