"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from articlerelay.core.dispatch import ArticleMessageFactory, ArticleMessageQueue  # noqa: E402


class PermissionError50013(Exception):
    """What a chat client raises when the bot lacks Manage Roles."""

    def __init__(self, message: str = "Missing Permissions"):
        super().__init__(message)
        self.code = 50013


class FakeRole:
    def __init__(self, role_id: str, events: list, mentionable: bool = False):
        self.id = role_id
        self.mentionable = mentionable
        self.calls: list[bool] = []
        self.errors: dict[bool, Exception] = {}
        self._events = events

    async def set_mentionable(self, mentionable: bool) -> None:
        self.calls.append(mentionable)
        self._events.append(("enable" if mentionable else "disable", self.id))
        error = self.errors.get(mentionable)
        if error is not None:
            raise error
        self.mentionable = mentionable


class FakeGuild:
    """Roles are created on first lookup unless listed in ``missing``."""

    def __init__(self, events: list):
        self.roles: dict[str, FakeRole] = {}
        self.missing: set[str] = set()
        self.lookups: list[str] = []
        self._events = events

    def role(self, role_id: str) -> FakeRole:
        if role_id not in self.roles:
            self.roles[role_id] = FakeRole(role_id, self._events)
        return self.roles[role_id]

    async def resolve_group(self, role_id: str):
        self.lookups.append(role_id)
        if role_id in self.missing:
            return None
        return self.role(role_id)


class FakeChannel:
    def __init__(self, channel_id: str, guild: FakeGuild | None):
        self.id = channel_id
        self.guild = guild

    async def resolve_permission_authority(self):
        return self.guild


class FakePlatform:
    """Each channel gets its own guild on first lookup."""

    def __init__(self, events: list):
        self.channels: dict[str, FakeChannel] = {}
        self.missing: set[str] = set()
        self.lookups: list[str] = []
        self._events = events

    def channel(self, channel_id: str) -> FakeChannel:
        if channel_id not in self.channels:
            self.channels[channel_id] = FakeChannel(channel_id, FakeGuild(self._events))
        return self.channels[channel_id]

    def role(self, channel_id: str, role_id: str) -> FakeRole:
        return self.channel(channel_id).guild.role(role_id)

    async def resolve_destination(self, destination_id: str):
        self.lookups.append(destination_id)
        if destination_id in self.missing:
            return None
        return self.channel(destination_id)


class FakeSender:
    """Records deliveries; ``errors`` maps an article text (first line) to the exception to raise."""

    def __init__(self, events: list):
        self.sent: list[tuple[str, str]] = []
        self.errors: dict[str, Exception] = {}
        self.before_send = None
        self._events = events

    async def send_message(self, destination_id: str, content: str) -> dict:
        if self.before_send is not None:
            await self.before_send(destination_id, content)
        self._events.append(("send", destination_id, content))
        error = self.errors.get(content.split("\n")[0])
        if error is not None:
            raise error
        self.sent.append((destination_id, content))
        return {"id": str(len(self.sent))}


@pytest.fixture
def events():
    """Ordered log of toggles and sends across platform and sender"""
    return []


@pytest.fixture
def sender(events):
    return FakeSender(events)


@pytest.fixture
def platform(events):
    return FakePlatform(events)


@pytest.fixture
def queue(sender):
    """Sequential queue with the Discord permission-denied code"""
    return ArticleMessageQueue(
        ArticleMessageFactory(sender, toggle_role_mentions=True),
        permission_denied_codes=[50013],
        concurrent_destinations=False,
    )


@pytest.fixture
def concurrent_queue(sender):
    return ArticleMessageQueue(
        ArticleMessageFactory(sender, toggle_role_mentions=True),
        permission_denied_codes=[50013],
        concurrent_destinations=True,
    )


@pytest.fixture
def permission_error():
    return PermissionError50013
