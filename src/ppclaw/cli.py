#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
ppclaw CLI - Run the relay connector.

Commands:
  ppclaw run            Connect to the relay pool and serve the agent
  ppclaw bind           Exchange a bind token for an api key
  ppclaw relays         List relays from the discovery endpoint

Examples:
  # Serve an agent factory from your own module
  ppclaw run --agent mybot.agent:create_agent

  # Check connectivity with the built-in echo agent
  ppclaw run --echo

  # First-time setup
  ppclaw bind --token <bind-token>
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

from .agent import EchoAgent, load_agent
from .connector import Connector
from .core.config import ConnectorSettings, set_config
from .core.config_store import JsonConfigStore
from .core.exceptions import BindingError, ConfigurationError, DiscoveryError, RelayConnectionError
from .core.logging import configure_logging, mask_secret
from .network.binding import CredentialBinder
from .network.discovery import RelayDirectory
from .network.selector import RelaySelector

logger = logging.getLogger(__name__)


def load_settings(args: argparse.Namespace) -> ConnectorSettings:
    """Settings with precedence: flags > env > persisted config file > defaults."""
    overrides: dict[str, Any] = {}
    if getattr(args, "discovery_url", None):
        overrides["discovery_url"] = args.discovery_url
    if getattr(args, "config_file", None):
        overrides["config_file"] = args.config_file
    if getattr(args, "token", None):
        overrides["bind_token"] = args.token

    base = ConnectorSettings(**overrides)
    persisted = JsonConfigStore(base.config_file).load()
    settings = ConnectorSettings.load(persisted, **overrides)
    set_config(settings)
    return settings


async def cmd_run(args: argparse.Namespace, settings: ConnectorSettings) -> int:
    """Run the connector until SIGINT/SIGTERM."""
    if args.echo:
        agent: Any = EchoAgent()
    elif args.agent:
        try:
            agent = load_agent(args.agent)
        except (ImportError, AttributeError, TypeError, ValueError) as e:
            print(f"❌ Cannot load agent {args.agent}: {e}", file=sys.stderr)
            return 1
    else:
        print("❌ Specify --agent module:factory or --echo", file=sys.stderr)
        return 1

    try:
        connector = Connector(settings, agent)
    except ConfigurationError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            pass

    run_task = asyncio.create_task(connector.run())
    stop_task = asyncio.create_task(shutdown_event.wait())
    try:
        done, _ = await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if stop_task in done:
            await connector.stop()
        await run_task
    except BindingError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1
    finally:
        stop_task.cancel()

    print("Connector stopped")
    return 0


async def cmd_bind(args: argparse.Namespace, settings: ConnectorSettings) -> int:
    """Perform the one-time bind exchange."""
    if settings.api_key and not args.token:
        print(f"Already bound (api key {mask_secret(settings.api_key)})")
        return 0
    if not settings.bind_token:
        print("❌ No bind token: pass --token or set PPCLAW_BIND_TOKEN", file=sys.stderr)
        return 1

    directory = RelayDirectory(settings.discovery_url, request_timeout=settings.request_timeout)
    try:
        relays = await directory.refresh()
    except DiscoveryError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1

    relay = RelaySelector().pick(relays, set())
    if relay is None:
        print("❌ Discovery returned no relays", file=sys.stderr)
        return 1

    binder = CredentialBinder(
        JsonConfigStore(settings.config_file),
        request_timeout=settings.request_timeout,
    )
    try:
        api_key = await binder.bind(relay, settings.bind_token)
    except (BindingError, RelayConnectionError) as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1

    print(f"✅ Bound via {relay.relay_id}, api key {mask_secret(api_key)} saved to {settings.config_file}")
    return 0


async def cmd_relays(args: argparse.Namespace, settings: ConnectorSettings) -> int:
    """Print the relay pool."""
    directory = RelayDirectory(settings.discovery_url, request_timeout=settings.request_timeout)
    try:
        relays = await directory.refresh()
    except DiscoveryError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([r.to_dict() for r in relays], indent=2))
        return 0

    if not relays:
        print("No relays advertised")
        return 0

    total = sum(r.weight for r in relays)
    for relay in relays:
        share = relay.weight / total if total else 0
        print(f"{relay.relay_id:<20} {relay.ws_endpoint:<45} weight={relay.weight:g} ({share:.0%})")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ppclaw",
        description="ppclaw connector - bridge an agent to the relay network",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  PPCLAW_API_KEY          Relay API key
  PPCLAW_BIND_TOKEN       One-time bind token (first start only)
  PPCLAW_DISCOVERY_URL    Relay discovery endpoint
  PPCLAW_LOG_LEVEL        Log level (default: INFO)
        """,
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--discovery-url", help="Override the discovery endpoint")
    parser.add_argument("--config-file", help="Path to the persisted config JSON")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run",
        help="Connect and serve an agent",
        description="Connect to the relay pool and route messages to an agent.",
    )
    agent_group = run_parser.add_mutually_exclusive_group()
    agent_group.add_argument("--agent", help="Agent path 'module:attribute' (object or factory)")
    agent_group.add_argument("--echo", action="store_true", help="Use the built-in echo agent")

    bind_parser = subparsers.add_parser(
        "bind",
        help="Exchange a bind token for an api key",
        description="Perform the one-time bind exchange and persist the api key.",
    )
    bind_parser.add_argument("--token", help="Bind token (default: PPCLAW_BIND_TOKEN)")

    relays_parser = subparsers.add_parser(
        "relays",
        help="List relays from the discovery endpoint",
    )
    # SUPPRESS keeps a top-level --json from being reset by the subparser default
    relays_parser.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS, help="Output as JSON"
    )

    return parser


async def async_main(args: argparse.Namespace) -> int:
    """Async main entry point."""
    settings = load_settings(args)
    configure_logging(level="DEBUG" if args.verbose else None, settings=settings)

    if args.command == "run":
        return await cmd_run(args, settings)
    elif args.command == "bind":
        return await cmd_bind(args, settings)
    elif args.command == "relays":
        return await cmd_relays(args, settings)
    else:
        create_parser().print_help()
        return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    return asyncio.run(async_main(args))


if __name__ == "__main__":
    sys.exit(main())
