# articlerelay/infra/http_client.py
"""
Shared HTTP client sessions.

Provides named, lazy-initialized aiohttp.ClientSession singletons so the
Discord adapter reuses TCP connections across enqueue/flush calls.

Session profiles
~~~~~~~~~~~~~~~~
- **discord** – Discord REST calls (total from settings, connect=5 s, pool limit=20)

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once when the process is done dispatching.
"""
from __future__ import annotations

import aiohttp

from articlerelay.config import settings
from articlerelay.infra.logging_config import get_logger

logger = get_logger(__name__)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


def get_discord_session() -> aiohttp.ClientSession:
    """Session for Discord REST calls."""
    return _get_or_create(
        "discord",
        aiohttp.ClientTimeout(total=settings.discord_request_timeout, connect=5),
        limit=20,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
