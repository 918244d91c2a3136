"""Entry point for `python -m sigbridge` / `uv run sigbridge`.

Subcommands:
    sigbridge              Run the service (default)
    sigbridge setup        Register a phone number with Signal
    sigbridge health       Check whether the relay answers its health endpoint
    sigbridge register-chat CHAT --folder F   Add a chat to the registry
"""

from __future__ import annotations

import argparse
import asyncio
import sys


def _run() -> None:
    from sigbridge.app import SignalBridgeApp

    app = SignalBridgeApp()
    asyncio.run(app.run())


def _setup() -> None:
    from sigbridge.registration import register_number

    sys.exit(asyncio.run(register_number()))


async def _check_health() -> bool:
    from sigbridge.config import get_settings
    from sigbridge.signal.client import SignalClient

    s = get_settings()
    client = SignalClient(s.signal.number or "", s.signal.api_url, timeout=s.signal.probe_timeout)
    try:
        return await client.health()
    finally:
        await client.close()


def _health() -> None:
    healthy = asyncio.run(_check_health())
    print("healthy" if healthy else "unhealthy")
    sys.exit(0 if healthy else 1)


async def _register_chat(args: argparse.Namespace) -> int:
    from sigbridge import db
    from sigbridge.registration import register_chat

    await db.init_database()
    try:
        group = await register_chat(
            args.chat,
            args.folder,
            name=args.name,
            requires_trigger=False if args.no_trigger else None,
        )
    except ValueError as exc:
        print(f"✗ {exc}", file=sys.stderr)
        return 1
    finally:
        await db.close_database()
    print(f"✓ Registered {group.name} in folder {group.folder}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sigbridge",
        description="Signal relay supervisor and message ingestion bridge",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run the service (default)")
    sub.add_parser("setup", help="Register a phone number with Signal")
    sub.add_parser("health", help="Check the Signal API health endpoint")
    reg = sub.add_parser("register-chat", help="Register a chat for message dispatch")
    reg.add_argument("chat", help="phone number or group id (signal: prefix optional)")
    reg.add_argument("--folder", required=True, help="workspace folder for this chat")
    reg.add_argument("--name", help="display name (defaults to the chat id)")
    reg.add_argument(
        "--no-trigger",
        action="store_true",
        help="dispatch every message, not only ones starting with the trigger",
    )

    args = parser.parse_args()

    match args.command:
        case "setup":
            _setup()
        case "health":
            _health()
        case "register-chat":
            sys.exit(asyncio.run(_register_chat(args)))
        case _:
            _run()


if __name__ == "__main__":
    main()
