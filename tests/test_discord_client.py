"""Tests for the Discord REST adapter (aiohttp session mocked)."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from articlerelay.core.dispatch import ArticleMessageFactory, ArticleMessageQueue, is_permission_denied
from articlerelay.transport.discord_client import (
    DiscordAPIError,
    DiscordChannel,
    DiscordClient,
    DiscordGuild,
)

API = "https://discord.test/api/v10"


def _make_mock_response(status=200, json_data=None):
    """Create a mock aiohttp response."""
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data)
    return resp


def _make_mock_session(*responses):
    """Session whose .request() returns the given responses in order."""
    contexts = []
    for response in responses:
        ctx = AsyncMock()
        ctx.__aenter__ = AsyncMock(return_value=response)
        ctx.__aexit__ = AsyncMock(return_value=False)
        contexts.append(ctx)

    session = MagicMock()
    session.request = MagicMock(side_effect=contexts)
    return session


def _client() -> DiscordClient:
    return DiscordClient(token="tkn", api_url=API)


# ============================================================================
# Transport
# ============================================================================

class TestRequest:
    @pytest.mark.asyncio
    async def test_send_message_posts_content(self):
        session = _make_mock_session(_make_mock_response(200, {"id": "999"}))

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            result = await _client().send_message("123", "hello <@&1>")

        assert result == {"id": "999"}
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "POST"
        assert url == f"{API}/channels/123/messages"
        assert kwargs["json"]["content"] == "hello <@&1>"
        assert kwargs["json"]["allowed_mentions"] == {"parse": ["roles"]}
        assert kwargs["headers"]["Authorization"] == "Bot tkn"

    @pytest.mark.asyncio
    async def test_no_content_returns_none(self):
        session = _make_mock_session(_make_mock_response(204))

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            assert await _client().request("PATCH", "/guilds/1/roles/2", {"mentionable": True}) is None

    @pytest.mark.asyncio
    async def test_missing_permissions_error(self):
        body = {"message": "Missing Permissions", "code": 50013}
        session = _make_mock_session(_make_mock_response(403, body))

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            with pytest.raises(DiscordAPIError) as exc_info:
                await _client().modify_role("1", "2", mentionable=True)

        error = exc_info.value
        assert error.status == 403
        assert error.code == 50013
        assert error.retryable is False
        assert is_permission_denied(error, [50013])
        assert "Missing Permissions" in str(error)

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(self):
        body = {"message": "You are being rate limited.", "retry_after": 2.5, "global": False}
        session = _make_mock_session(_make_mock_response(429, body))

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            with pytest.raises(DiscordAPIError) as exc_info:
                await _client().send_message("123", "x")

        assert exc_info.value.retryable is True
        assert exc_info.value.retry_after == 2.5

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        session = _make_mock_session(_make_mock_response(502, None))

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            with pytest.raises(DiscordAPIError) as exc_info:
                await _client().send_message("123", "x")

        assert exc_info.value.status == 502
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_connection_error(self):
        ctx = AsyncMock()
        ctx.__aenter__ = AsyncMock(side_effect=aiohttp.ClientError("Connection refused"))
        ctx.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.request = MagicMock(return_value=ctx)

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            with pytest.raises(DiscordAPIError) as exc_info:
                await _client().send_message("123", "x")

        assert exc_info.value.status == 0
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        ctx = AsyncMock()
        ctx.__aenter__ = AsyncMock(side_effect=asyncio.TimeoutError())
        ctx.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.request = MagicMock(return_value=ctx)

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            with pytest.raises(DiscordAPIError) as exc_info:
                await _client().send_message("123", "x")

        assert exc_info.value.status == 0
        assert exc_info.value.retryable is True
        assert "timeout" in str(exc_info.value)


# ============================================================================
# Platform entities
# ============================================================================

class TestEntities:
    @pytest.mark.asyncio
    async def test_resolve_destination(self):
        session = _make_mock_session(_make_mock_response(200, {"id": "123", "guild_id": "g1"}))

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            channel = await _client().resolve_destination("123")

        assert isinstance(channel, DiscordChannel)
        assert channel.guild_id == "g1"
        guild = await channel.resolve_permission_authority()
        assert isinstance(guild, DiscordGuild)
        assert guild.id == "g1"

    @pytest.mark.asyncio
    async def test_unknown_channel_is_none(self):
        body = {"message": "Unknown Channel", "code": 10003}
        session = _make_mock_session(_make_mock_response(404, body))

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            assert await _client().resolve_destination("123") is None

    @pytest.mark.asyncio
    async def test_forbidden_channel_raises(self):
        body = {"message": "Missing Access", "code": 50001}
        session = _make_mock_session(_make_mock_response(403, body))

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            with pytest.raises(DiscordAPIError):
                await _client().resolve_destination("123")

    @pytest.mark.asyncio
    async def test_dm_channel_has_no_authority(self):
        channel = DiscordChannel("123", _client(), guild_id=None)
        assert await channel.resolve_permission_authority() is None

    @pytest.mark.asyncio
    async def test_guild_lists_roles_once(self):
        roles = [
            {"id": "1", "name": "news", "mentionable": False},
            {"id": "2", "name": "alerts", "mentionable": True},
        ]
        session = _make_mock_session(_make_mock_response(200, roles))
        guild = DiscordGuild("g1", _client())

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            news = await guild.resolve_group("1")
            alerts = await guild.resolve_group("2")
            missing = await guild.resolve_group("3")

        assert news.name == "news"
        assert alerts.mentionable is True
        assert missing is None
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_role_set_mentionable_patches(self):
        session = _make_mock_session(
            _make_mock_response(200, [{"id": "1", "name": "news"}]),
            _make_mock_response(200, {"id": "1", "mentionable": True}),
        )
        guild = DiscordGuild("g1", _client())

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            role = await guild.resolve_group("1")
            await role.set_mentionable(True)

        method, url = session.request.call_args.args
        assert method == "PATCH"
        assert url == f"{API}/guilds/g1/roles/1"
        assert session.request.call_args.kwargs["json"] == {"mentionable": True}
        assert role.mentionable is True


# ============================================================================
# Queue over the Discord adapter
# ============================================================================

class TestQueueWithDiscord:
    @pytest.mark.asyncio
    async def test_flush_with_missing_permissions_still_delivers(self):
        session = _make_mock_session(
            _make_mock_response(200, {"id": "c1", "guild_id": "g1"}),           # GET channel
            _make_mock_response(200, [{"id": "r1", "name": "news"}]),          # GET roles
            _make_mock_response(403, {"message": "Missing Permissions", "code": 50013}),  # enable
            _make_mock_response(200, {"id": "m1"}),                              # send
            _make_mock_response(200, {"id": "m2"}),                              # send
            _make_mock_response(403, {"message": "Missing Permissions", "code": 50013}),  # disable
        )
        client = _client()
        queue = ArticleMessageQueue(
            ArticleMessageFactory(client),
            permission_denied_codes=[50013],
            concurrent_destinations=False,
        )

        with patch("articlerelay.transport.discord_client.get_discord_session", return_value=session):
            await queue.enqueue({"channel_id": "c1", "text": "one", "role_ids": ["r1"]})
            await queue.enqueue({"channel_id": "c1", "text": "two", "role_ids": ["r1"]})
            await queue.flush(client)

        calls = [(c.args[0], c.args[1].removeprefix(API)) for c in session.request.call_args_list]
        assert calls == [
            ("GET", "/channels/c1"),
            ("GET", "/guilds/g1/roles"),
            ("PATCH", "/guilds/g1/roles/r1"),
            ("POST", "/channels/c1/messages"),
            ("POST", "/channels/c1/messages"),
            ("PATCH", "/guilds/g1/roles/r1"),
        ]
        assert len(queue) == 0
