"""Docker CLI helpers: subprocess wrappers used by the relay supervisor.

All public functions are async so they don't block the event loop.
The underlying subprocess calls run in a thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import shutil
import subprocess
import time

from sigbridge.logger import logger
from sigbridge.types import RelayProcessState


def docker_available() -> bool:
    """Check if ``docker`` is on PATH."""
    return shutil.which("docker") is not None


def _run_docker_sync(
    *args: str,
    check: bool = True,
    timeout: int = 30,
) -> subprocess.CompletedProcess[str]:
    """Run a ``docker`` CLI command (blocking, internal only)."""
    return subprocess.run(
        ["docker", *args],
        capture_output=True,
        text=True,
        timeout=timeout,
        check=check,
    )


async def run_docker(
    *args: str,
    check: bool = True,
    timeout: int = 30,
) -> subprocess.CompletedProcess[str]:
    """Run a ``docker`` CLI command without blocking the event loop."""
    return await asyncio.to_thread(_run_docker_sync, *args, check=check, timeout=timeout)


async def container_state(name: str) -> RelayProcessState:
    """Probe a container by name.

    A failed ``inspect`` (no such container, or docker itself erroring) reads
    as ABSENT; the follow-up ``docker run`` surfaces the real error.
    """
    start = time.monotonic()
    try:
        result = await run_docker("inspect", "--format={{.State.Running}}", name, check=False)
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("docker inspect failed", container=name, err=str(exc))
        return RelayProcessState.ABSENT
    elapsed_ms = (time.monotonic() - start) * 1000
    if elapsed_ms > 500:
        logger.warning("Slow docker inspect", container=name, elapsed_ms=round(elapsed_ms))

    if result.returncode != 0:
        return RelayProcessState.ABSENT
    if result.stdout.strip() == "true":
        return RelayProcessState.RUNNING
    return RelayProcessState.STOPPED


async def container_logs(name: str, tail: int = 30) -> str:
    """Last *tail* lines of a container's output, or ``""`` if unavailable."""
    try:
        result = await run_docker("logs", "--tail", str(tail), name, check=False)
    except (OSError, subprocess.TimeoutExpired):
        return ""
    return (result.stdout + result.stderr)[-2000:]
