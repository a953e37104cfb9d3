# articlerelay/transport/discord_client.py
"""
Discord REST adapter.

Implements the dispatch ports on top of the Discord HTTP API:
- ``DiscordClient``  – Platform + MessageSender (resolve channels, post messages)
- ``DiscordChannel`` – Destination (its guild is the permission authority)
- ``DiscordGuild``   – PermissionAuthority (roles listed once, then cached)
- ``DiscordRole``    – ToggleableRole (PATCH ``mentionable``)

Error classification (DiscordAPIError.retryable):
- Missing permissions (code 50013) → NOT retryable, flush skips the role
- Token invalid (401)              → NOT retryable
- Not found / bad request          → NOT retryable
- Rate limiting (429)              → retryable (retry_after from body)
- Network / timeout / 5xx          → retryable

HTTP session lifecycle:
- Uses the shared session from articlerelay.infra.http_client.
- Call close_all_sessions() when done.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from articlerelay.config import settings
from articlerelay.core.dispatch.errors import PlatformError
from articlerelay.infra.http_client import get_discord_session
from articlerelay.infra.logging_config import get_logger
from articlerelay.infra.metrics import inc_counter

logger = get_logger(__name__)

USER_AGENT = "DiscordBot (https://github.com/articlerelay/articlerelay, 0.1.0)"

# JSON error codes
UNKNOWN_CHANNEL = 10003
MISSING_PERMISSIONS = 50013


# ---------------------------------------------------------------------------
# Error type
# ---------------------------------------------------------------------------

class DiscordAPIError(PlatformError):
    """Error returned by the Discord REST API.

    Attributes:
        status:      HTTP status code (0 for connection-level errors).
        code:        Discord JSON error code from the response body.
        retry_after: Seconds to wait before retrying (429 only).
    """

    def __init__(
        self,
        status: int,
        code: int | None,
        message: str,
        *,
        retryable: bool = False,
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(status, code, message, retryable=retryable)

    def __str__(self) -> str:
        return f"Discord API error {self.status} (code={self.code}): {self.args[0]}"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass
class DiscordRole:
    id: str
    guild_id: str
    client: "DiscordClient" = field(repr=False)
    name: str = ""
    mentionable: bool = False

    async def set_mentionable(self, mentionable: bool) -> None:
        await self.client.modify_role(self.guild_id, self.id, mentionable=mentionable)
        self.mentionable = mentionable


@dataclass
class DiscordGuild:
    id: str
    client: "DiscordClient" = field(repr=False)
    _roles: dict[str, DiscordRole] | None = field(default=None, repr=False)

    async def resolve_group(self, role_id: str) -> DiscordRole | None:
        if self._roles is None:
            self._roles = {
                str(data["id"]): DiscordRole(
                    id=str(data["id"]),
                    guild_id=self.id,
                    client=self.client,
                    name=data.get("name", ""),
                    mentionable=bool(data.get("mentionable", False)),
                )
                for data in await self.client.get_guild_roles(self.id)
            }
        return self._roles.get(str(role_id))


@dataclass
class DiscordChannel:
    id: str
    client: "DiscordClient" = field(repr=False)
    guild_id: str | None = None

    async def resolve_permission_authority(self) -> DiscordGuild | None:
        # DM and group DM channels have no guild, hence no roles
        if not self.guild_id:
            return None
        return DiscordGuild(self.guild_id, self.client)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class DiscordClient:
    """Thin async client for the REST endpoints article dispatch needs."""

    def __init__(self, token: str | None = None, api_url: str | None = None):
        self.token = token or settings.discord_bot_token
        self.api_url = (api_url or settings.discord_api_url).rstrip("/")

    # -- Platform ----------------------------------------------------------

    async def resolve_destination(self, channel_id: str) -> DiscordChannel | None:
        try:
            data = await self.request("GET", f"/channels/{channel_id}")
        except DiscordAPIError as exc:
            if exc.status == 404 or exc.code == UNKNOWN_CHANNEL:
                return None
            raise
        data = data or {}
        guild_id = data.get("guild_id")
        return DiscordChannel(
            id=str(data.get("id", channel_id)),
            client=self,
            guild_id=str(guild_id) if guild_id else None,
        )

    # -- MessageSender -----------------------------------------------------

    async def send_message(self, channel_id: str, content: str) -> dict:
        """
        Post a message to a channel.

        Role pings are allowed explicitly; they only notify if the role is
        mentionable (or the bot may mention everyone).
        """
        payload = {
            "content": content,
            "allowed_mentions": {"parse": ["roles"]},
        }
        result = await self.request("POST", f"/channels/{channel_id}/messages", payload)
        inc_counter("discord_messages_sent")
        logger.info(
            f"Discord message sent: channel={channel_id}, msg_id={(result or {}).get('id', 'unknown')}"
        )
        return result

    # -- Guild roles -------------------------------------------------------

    async def get_guild_roles(self, guild_id: str) -> list[dict]:
        return await self.request("GET", f"/guilds/{guild_id}/roles") or []

    async def modify_role(self, guild_id: str, role_id: str, **fields: Any) -> dict:
        return await self.request("PATCH", f"/guilds/{guild_id}/roles/{role_id}", fields)

    # -- Transport ---------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bot {self.token}",
            "User-Agent": USER_AGENT,
        }

    async def request(self, method: str, path: str, payload: dict | None = None) -> Any:
        """
        Execute a Discord REST request.

        Returns:
            Parsed JSON body (None for 204 No Content)

        Raises:
            DiscordAPIError: On API and connection errors
        """
        url = f"{self.api_url}{path}"
        try:
            session = get_discord_session()
            async with session.request(method, url, json=payload, headers=self._headers()) as resp:
                if resp.status == 204:
                    return None

                body = await _safe_response_json(resp)
                if 200 <= resp.status < 300:
                    return body

                raise _error_from_response(method, path, resp.status, body)

        except DiscordAPIError:
            raise
        except aiohttp.ClientError as exc:
            logger.error(f"Discord API connection error: {method} {path}: {exc}", exc_info=True)
            inc_counter("discord_connection_error")
            raise DiscordAPIError(0, None, str(exc), retryable=True)
        except asyncio.TimeoutError as exc:
            logger.error(f"Discord API timeout: {method} {path}")
            inc_counter("discord_timeout")
            raise DiscordAPIError(0, None, str(exc) or "timeout", retryable=True)
        except Exception as exc:
            logger.error(f"Discord API unexpected error: {method} {path}: {exc}", exc_info=True)
            inc_counter("discord_unexpected_error")
            raise DiscordAPIError(0, None, str(exc) or type(exc).__name__, retryable=True)


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

async def _safe_response_json(resp: aiohttp.ClientResponse) -> Any:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json()
    except (aiohttp.ContentTypeError, ValueError):
        logger.warning(f"Discord API returned non-JSON body: status={resp.status}")
        return None


def _error_from_response(method: str, path: str, status: int, body: Any) -> DiscordAPIError:
    body = body if isinstance(body, dict) else {}
    message = body.get("message", "Unknown error")
    code = body.get("code")

    if status == 429:
        retry_after = float(body.get("retry_after", 1.0))
        logger.warning(f"Discord rate limit on {method} {path}, retry_after={retry_after}s")
        inc_counter("discord_rate_limited")
        return DiscordAPIError(status, code, message, retryable=True, retry_after=retry_after)

    if status >= 500:
        logger.error(f"Discord server error: {method} {path} status={status}, msg={message}")
        inc_counter("discord_server_error")
        return DiscordAPIError(status, code, message, retryable=True)

    if status == 401:
        logger.error(f"Discord API auth error (token invalid): {message}")
    elif code == MISSING_PERMISSIONS:
        logger.info(f"Discord missing permissions: {method} {path}")
    else:
        logger.warning(f"Discord API error: {method} {path} status={status}, code={code}, msg={message}")
    inc_counter("discord_client_error", status=status)
    return DiscordAPIError(status, code, message, retryable=False)
