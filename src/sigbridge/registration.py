"""Signal number and chat registration.

``register_number`` runs once during setup to register a phone number with
Signal through the relay. Starts the relay container if needed, requests an
SMS code, verifies it, then prints the .env lines that turn the integration on.

``register_chat`` adds a chat to the registry so its messages get dispatched.

Usage: uv run sigbridge setup
       uv run sigbridge register-chat <number-or-group-id> --folder <folder>
"""

from __future__ import annotations

import re
import sys
from datetime import UTC, datetime

import aiohttp

from sigbridge import db
from sigbridge.config import get_settings
from sigbridge.logger import logger
from sigbridge.signal.client import SignalApiError, SignalClient
from sigbridge.signal.container import ensure_signal_container
from sigbridge.signal.events import JID_PREFIX, to_jid
from sigbridge.types import RegisteredGroup

CAPTCHA_URL = "https://signalcaptchas.org/registration/generate.html"
_CODE_RE = re.compile(r"^\d{3}-?\d{3}$")


def _print_env(number: str) -> None:
    print("\nAdd these to your .env file:")
    print("SIGNAL__ENABLED=true")
    print(f"SIGNAL__NUMBER={number}\n")


async def _register(client: SignalClient) -> bool:
    try:
        await client.register()
    except (SignalApiError, aiohttp.ClientError) as exc:
        if not isinstance(exc, SignalApiError) or exc.status != 402:
            print(f"✗ Registration failed: {exc}", file=sys.stderr)
            return False
        print("\n✗ Captcha required!", file=sys.stderr)
        print(f"Solve the captcha at {CAPTCHA_URL} and copy the token.\n", file=sys.stderr)
        captcha = input("Enter the captcha token: ").strip()
        try:
            await client.register(captcha=captcha)
        except (SignalApiError, aiohttp.ClientError) as retry_exc:
            print(f"✗ Registration failed: {retry_exc}", file=sys.stderr)
            return False
    print("✓ Registration requested. Check your phone for an SMS.\n")
    return True


async def register_number() -> int:
    print("\n=== Signal Bot Registration ===\n")
    print("You will need a phone number that can receive SMS, and that phone at hand.\n")

    number = input("Phone number (international format, e.g. +1234567890): ").strip()
    if not number.startswith("+"):
        print("Error: phone number must start with + and include country code", file=sys.stderr)
        return 1

    s = get_settings()
    client = SignalClient(number, s.signal.api_url, timeout=s.signal.request_timeout)
    try:
        print("\nChecking Signal API connection...")
        if not await client.health():
            print("Signal API not running, starting container...")
            if not await ensure_signal_container():
                print("\n✗ Failed to start Signal API container.", file=sys.stderr)
                return 1
        print("✓ Signal API is running\n")

        try:
            account = await client.get_account()
        except SignalApiError:
            account = None
        except aiohttp.ClientError as exc:
            print(f"✗ Lost connection to the Signal API: {exc}", file=sys.stderr)
            return 1
        if account is not None:
            print("✓ This number is already registered with Signal!")
            _print_env(number)
            return 0

        if not await _register(client):
            return 1

        code = input("Enter the 6-digit verification code from SMS: ").strip()
        if not _CODE_RE.match(code):
            print("Error: code should be 6 digits (e.g. 123456 or 123-456)", file=sys.stderr)
            return 1

        print("\nVerifying...")
        try:
            await client.verify(code.replace("-", ""))
        except (SignalApiError, aiohttp.ClientError) as exc:
            print(f"✗ Verification failed: {exc}", file=sys.stderr)
            return 1

        print("\n✓ Your number is now registered with Signal.")
        _print_env(number)
        print("Then restart sigbridge to start receiving Signal messages.")
        return 0
    finally:
        await client.close()


async def register_chat(
    chat: str,
    folder: str,
    *,
    name: str | None = None,
    requires_trigger: bool | None = None,
) -> RegisteredGroup:
    """Add or update a chat in the registry. The database must be initialized.

    *chat* is a phone number or group id, with or without the ``signal:``
    prefix. Raises ``ValueError`` if another chat already owns *folder*.
    """
    jid = chat if chat.startswith(JID_PREFIX) else to_jid(chat)
    groups = await db.get_all_registered_groups()
    for other_jid, other in groups.items():
        if other.folder == folder and other_jid != jid:
            raise ValueError(f"folder {folder!r} is already used by {other_jid}")

    existing = groups.get(jid)
    group = RegisteredGroup(
        name=name or (existing.name if existing else jid),
        folder=folder,
        trigger=f"@{get_settings().agent.name}",
        added_at=existing.added_at if existing else datetime.now(UTC).isoformat(),
        requires_trigger=requires_trigger,
    )
    await db.set_registered_group(jid, group)
    logger.info("Chat registered", chat_jid=jid, folder=folder, updated=existing is not None)
    return group
