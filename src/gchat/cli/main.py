# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""
gchat node CLI.

Commands:
  gchat-node start                       Run the node until shutdown
  gchat-node status                      Check a running node's control channel
  gchat-node identity tripcode <id>      Print the handle suffix for a public id
  gchat-node identity address <id>       Print the rendezvous address for a public id

Environment Variables:
  GCHAT_DATA_ROOT         Node data directory
  GCHAT_API_PORT          Control channel port (default: 3001)
  GCHAT_INCOMING_PORT     Peer endpoint port (default: 3456)
  GCHAT_TOR_BINARY        Explicit tor binary path

Example:
  # Run a node with a throwaway data root
  gchat-node start --data-root /tmp/gchat-dev

  # Check it from another terminal
  gchat-node status --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

import httpx

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================


def settings_from_args(args: argparse.Namespace):
    """Build settings from the environment, with CLI arguments taking precedence."""
    from ..core.config import NodeSettings

    overrides: dict[str, Any] = {}
    if getattr(args, "data_root", None):
        overrides["data_root"] = args.data_root
    if getattr(args, "api_port", None):
        overrides["api_port"] = args.api_port
    if getattr(args, "incoming_port", None):
        overrides["incoming_port"] = args.incoming_port
    return NodeSettings(**overrides)


# =============================================================================
# COMMANDS
# =============================================================================


async def cmd_start(args: argparse.Namespace) -> int:
    """Run the node until the two-phase shutdown completes."""
    from ..core.config import set_settings
    from ..core.logging import configure_logging
    from ..node import GchatNode

    settings = settings_from_args(args)
    set_settings(settings)
    configure_logging(level="DEBUG" if args.verbose else None)

    node = GchatNode(settings=settings)

    loop = asyncio.get_running_loop()

    def handle_signal() -> None:
        logger.info("Received shutdown signal")
        node.shutdown.signal()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await node.start()

    print(f"gchat node started (data root {settings.data_root})")
    print(f"Control channel: ws://{settings.api_host}:{settings.api_port}/ws")
    print(f"Peer endpoint:   http://127.0.0.1:{settings.incoming_port}")
    print("\nPress Ctrl+C to stop (twice to force)")

    code = await node.run_until_shutdown()
    print(f"\nShut down ({node.shutdown.reason or 'exit requested'})")
    return code


async def cmd_status(args: argparse.Namespace) -> int:
    """Query the control channel's health endpoint."""
    url = args.url
    if not url:
        settings = settings_from_args(args)
        url = f"http://{settings.api_host}:{settings.api_port}"
    if not url.startswith("http"):
        url = f"http://{url}"
    url = url.rstrip("/")

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(f"{url}/health")
    except httpx.HTTPError as e:
        print(f"Connection error: {e}", file=sys.stderr)
        return 1

    if response.status_code != 200:
        print(f"Error: HTTP {response.status_code}", file=sys.stderr)
        return 1
    data = response.json()

    if args.json:
        print(json.dumps(data, indent=2))
        return 0

    print(f"Node at {url}")
    print(f"  Status:  {data.get('status', 'unknown')}")
    print(f"  Clients: {data.get('clients', 0)}")
    return 0


def cmd_identity(args: argparse.Namespace) -> int:
    """Print a derived handle suffix or rendezvous address."""
    from ..identity.keys import derive_rendezvous_address, tripcode

    try:
        if args.identity_command == "tripcode":
            print(tripcode(args.public_id))
        else:
            print(f"{derive_rendezvous_address(args.public_id)}.onion")
    except ValueError as e:
        print(f"Invalid public id: {e}", file=sys.stderr)
        return 1
    return 0


# =============================================================================
# PARSER
# =============================================================================


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gchat-node",
        description="gchat peer node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  GCHAT_DATA_ROOT         Node data directory
  GCHAT_API_PORT          Control channel port
  GCHAT_INCOMING_PORT     Peer endpoint port
        """,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    start_parser = subparsers.add_parser(
        "start",
        help="Run the node",
        description="Start the daemon supervisor, peer endpoint and control channel.",
    )
    start_parser.add_argument("--data-root", default=None, help="Node data directory")
    start_parser.add_argument("--api-port", type=int, default=None, help="Control channel port (default: 3001)")
    start_parser.add_argument("--incoming-port", type=int, default=None, help="Peer endpoint port (default: 3456)")

    status_parser = subparsers.add_parser(
        "status",
        help="Check a running node",
        description="Query the local control channel's health endpoint.",
    )
    status_parser.add_argument("--url", "-u", default=None, help="Control channel URL (default: local)")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    identity_parser = subparsers.add_parser(
        "identity",
        help="Identity helpers",
        description="Derive display and addressing values from a public id.",
    )
    identity_sub = identity_parser.add_subparsers(dest="identity_command", required=True)
    for name, help_text in (
        ("tripcode", "Print the 6-character handle suffix"),
        ("address", "Print the rendezvous address"),
    ):
        sub = identity_sub.add_parser(name, help=help_text)
        sub.add_argument("public_id", help="Base64 signing public key")

    return parser


async def async_main(args: argparse.Namespace) -> int:
    """Async main entry point."""
    if args.command == "start":
        return await cmd_start(args)
    if args.command == "status":
        return await cmd_status(args)
    parser = create_parser()
    parser.print_help()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0
    if args.command == "identity":
        return cmd_identity(args)

    return asyncio.run(async_main(args))


if __name__ == "__main__":
    sys.exit(main())
