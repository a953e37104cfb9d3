from __future__ import annotations
from typing import Any, Optional, Protocol


# ============================================================================
# PLATFORM (handle passed to flush)
# ============================================================================

class ToggleableRole(Protocol):
    id: str

    async def set_mentionable(self, mentionable: bool) -> Any: ...


class PermissionAuthority(Protocol):
    """Owner of the roles that can be pinged in a destination (a guild)."""

    async def resolve_group(self, role_id: str) -> Optional[ToggleableRole]: ...


class Destination(Protocol):
    id: str

    async def resolve_permission_authority(self) -> Optional[PermissionAuthority]: ...


class Platform(Protocol):
    async def resolve_destination(self, destination_id: str) -> Optional[Destination]:
        """
        None => destination unknown to the platform (deleted, no access),
        its roles are not toggled but delivery is still attempted
        """
        ...


# ============================================================================
# DELIVERY
# ============================================================================

class MessageSender(Protocol):
    async def send_message(self, destination_id: str, content: str) -> Any: ...
