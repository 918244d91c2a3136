"""Relay supervisor: make sure the signal-cli-rest-api container is up and serving.

``ensure_signal_container()`` probes the container, creates or starts it as
needed, then polls the health endpoint until it answers or the deadline
passes. Cold boots of signal-cli can take minutes, hence the long deadline.

Single caller at a time: two concurrent calls may both try to create the
container, and the loser's ``docker run`` fails on the name conflict.
"""

from __future__ import annotations

import asyncio
import subprocess
import time
from collections.abc import Awaitable, Callable
from urllib.parse import urlsplit

import aiohttp

from sigbridge.config import get_settings
from sigbridge.docker import container_logs, container_state, docker_available, run_docker
from sigbridge.logger import logger
from sigbridge.types import RelayProcessState

DEFAULT_API_PORT = 8080
_CONTAINER_API_PORT = 8080
_CONTAINER_DATA_DIR = "/home/.local/share/signal-cli"

Probe = Callable[[], Awaitable[bool]]


def parse_port(url: str) -> int:
    """Host port from the relay URL; anything unparseable falls back to 8080."""
    try:
        return urlsplit(url).port or DEFAULT_API_PORT
    except ValueError:
        return DEFAULT_API_PORT


def health_url(api_url: str) -> str:
    return f"{api_url.rstrip('/')}/v1/health"


async def wait_for_health(
    probe: Probe,
    *,
    timeout: float,
    poll_interval: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> bool:
    """Call *probe* every *poll_interval* seconds until it returns True.

    Returns False once *timeout* seconds have passed without a success.
    Probe errors count as "not ready yet". Cancelling the caller cancels the
    wait at the next probe or sleep.
    """
    deadline = clock() + timeout
    while clock() < deadline:
        try:
            if await probe():
                return True
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            logger.debug("Health probe failed", err=str(exc))
        await sleep(poll_interval)
    return False


def http_probe(session: aiohttp.ClientSession, url: str) -> Probe:
    """A probe that GETs *url* and reports whether it answered 2xx."""

    async def _probe() -> bool:
        async with session.get(url) as resp:
            return 200 <= resp.status < 300

    return _probe


def _run_args(name: str, image: str, port: int, data_dir: str, mode: str) -> list[str]:
    return [
        "run",
        "-d",
        "--name",
        name,
        "--restart",
        "unless-stopped",
        "-p",
        f"{port}:{_CONTAINER_API_PORT}",
        "-v",
        f"{data_dir}:{_CONTAINER_DATA_DIR}",
        "-e",
        f"MODE={mode}",
        "--health-cmd",
        f"curl -sf http://localhost:{_CONTAINER_API_PORT}/v1/health || exit 1",
        "--health-interval",
        "30s",
        "--health-timeout",
        "10s",
        "--health-retries",
        "3",
        "--health-start-period",
        "40s",
        image,
    ]


async def ensure_signal_container() -> bool:
    """Ensure the Signal API container exists, is running and answers health checks.

    Returns False if the container could not be created or started (no
    polling happens then), or if it never became healthy before the deadline.
    Safe to call repeatedly; an already-running container is only polled.
    """
    s = get_settings()
    cfg = s.signal
    name = cfg.container_name
    # The health deadline counts from here, so a slow image pull eats into it.
    start = time.monotonic()

    if not docker_available():
        logger.error("docker not found on PATH, cannot supervise Signal API container")
        return False

    state = await container_state(name)

    if state is RelayProcessState.ABSENT:
        logger.info("Signal API container not found, creating...", container=name)
        data_dir = s.signal_data_dir
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
            await run_docker(
                *_run_args(name, cfg.image, parse_port(cfg.api_url), str(data_dir), cfg.mode),
                timeout=300,  # first run pulls the image
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as exc:
            stderr = getattr(exc, "stderr", None)
            logger.error(
                "Failed to create Signal API container",
                container=name,
                err=str(exc),
                stderr=stderr.strip() if isinstance(stderr, str) else None,
            )
            return False
        logger.info("Signal API container created", container=name, image=cfg.image)
    elif state is RelayProcessState.STOPPED:
        logger.info("Signal API container stopped, starting...", container=name)
        try:
            await run_docker("start", name)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as exc:
            logger.error("Failed to start Signal API container", container=name, err=str(exc))
            return False
        logger.info("Signal API container started", container=name)
    else:
        logger.info("Signal API container already running", container=name)

    remaining = max(0.0, cfg.health_timeout - (time.monotonic() - start))
    logger.info("Waiting for Signal API to become healthy...", timeout=round(remaining, 1))
    async with aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=cfg.probe_timeout),
    ) as session:
        healthy = await wait_for_health(
            http_probe(session, health_url(cfg.api_url)),
            timeout=remaining,
            poll_interval=cfg.health_poll_interval,
        )

    if healthy:
        logger.info(
            "Signal API is healthy",
            elapsed_ms=round((time.monotonic() - start) * 1000),
        )
    else:
        logger.error(
            "Signal API did not become healthy in time",
            timeout=cfg.health_timeout,
            logs=await container_logs(name),
        )
    return healthy
