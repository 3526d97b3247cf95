"""
Tests for the relay discovery client.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import aiohttp
import pytest

from conftest import make_response, make_session
from ppclaw.core.exceptions import DiscoveryError
from ppclaw.network.discovery import RelayDirectory, RelayInfo, parse_relay_payload

DISCOVERY_URL = "https://discovery.example.com/relay.json"

PAYLOAD = {
    "relays": [
        {"id": "relay-a", "ws": "wss://a.example.com/ws", "weight": 1},
        {"id": "relay-b", "ws": "wss://b.example.com/ws", "weight": 3},
    ]
}


class TestRelayInfo:
    def test_from_dict_defaults_weight(self):
        relay = RelayInfo.from_dict({"id": "r", "ws": "ws://localhost:8080/ws"})
        assert relay.weight == 1.0

    def test_agent_url(self):
        assert RelayInfo("r", "wss://a.example.com/ws").agent_url == "wss://a.example.com/ws/agent"
        assert RelayInfo("r", "wss://a.example.com/ws/").agent_url == "wss://a.example.com/ws/agent"

    @pytest.mark.parametrize(
        "entry",
        [
            {"ws": "wss://a/ws"},
            {"id": "r", "ws": "https://a/ws"},
            {"id": "r", "ws": "wss://a/ws", "weight": 0},
            {"id": "r", "ws": "wss://a/ws", "weight": -1},
            {"id": "r", "ws": "wss://a/ws", "weight": True},
            {"id": "r", "ws": "wss://a/ws", "weight": "3"},
            "relay",
        ],
    )
    def test_from_dict_rejects(self, entry):
        with pytest.raises(ValueError):
            RelayInfo.from_dict(entry)

    def test_to_dict_round_trip_shape(self):
        assert RelayInfo("r", "wss://a/ws", 2.0).to_dict() == {"id": "r", "ws": "wss://a/ws", "weight": 2.0}


class TestParseRelayPayload:
    def test_preserves_order(self):
        relays = parse_relay_payload(PAYLOAD)
        assert [r.relay_id for r in relays] == ["relay-a", "relay-b"]

    def test_skips_malformed_and_duplicates(self):
        relays = parse_relay_payload(
            {
                "relays": [
                    {"id": "relay-a", "ws": "wss://a/ws"},
                    {"id": "bad", "ws": "ftp://x"},
                    {"id": "relay-a", "ws": "wss://dup/ws"},
                ]
            }
        )
        assert [r.relay_id for r in relays] == ["relay-a"]
        assert relays[0].ws_endpoint == "wss://a/ws"

    @pytest.mark.parametrize("payload", [{}, {"relays": "x"}, [], None])
    def test_missing_relay_list(self, payload):
        with pytest.raises(DiscoveryError):
            parse_relay_payload(payload)

    def test_empty_list_is_valid(self):
        assert parse_relay_payload({"relays": []}) == ()


class TestRelayDirectory:
    @pytest.mark.asyncio
    async def test_refresh_success(self):
        session = make_session(get_response=make_response(200, PAYLOAD))
        directory = RelayDirectory(DISCOVERY_URL, session=session)

        relays = await directory.refresh()

        assert [r.relay_id for r in relays] == ["relay-a", "relay-b"]
        assert directory.snapshot == relays
        assert directory.last_refresh > 0
        assert directory.get_stats()["refreshes"] == 1
        assert session.get.call_args[0][0] == DISCOVERY_URL

    @pytest.mark.asyncio
    async def test_http_error_raises_and_keeps_snapshot(self):
        session = make_session(get_response=make_response(200, PAYLOAD))
        directory = RelayDirectory(DISCOVERY_URL, session=session)
        previous = await directory.refresh()

        session.get.return_value.__aenter__.return_value = make_response(503, text="down")
        with pytest.raises(DiscoveryError, match="HTTP 503"):
            await directory.refresh()

        assert directory.snapshot == previous
        assert directory.get_stats()["refresh_failures"] == 1

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        session = make_session(get_response=make_response(200, ValueError("bad json"), text="<html>"))
        directory = RelayDirectory(DISCOVERY_URL, session=session)
        with pytest.raises(DiscoveryError, match="not JSON"):
            await directory.refresh()

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        session = MagicMock()
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        directory = RelayDirectory(DISCOVERY_URL, session=session)
        with pytest.raises(DiscoveryError, match="request failed"):
            await directory.refresh()

    @pytest.mark.asyncio
    async def test_best_effort_falls_back_to_cache(self):
        session = make_session(get_response=make_response(200, PAYLOAD))
        directory = RelayDirectory(DISCOVERY_URL, session=session)
        previous = await directory.refresh()

        session.get.return_value.__aenter__.return_value = make_response(200, {"nope": 1})
        assert await directory.refresh_best_effort() == previous

    @pytest.mark.asyncio
    async def test_best_effort_without_cache_is_empty(self):
        session = make_session(get_response=make_response(500, text="boom"))
        directory = RelayDirectory(DISCOVERY_URL, session=session)
        assert await directory.refresh_best_effort() == ()
