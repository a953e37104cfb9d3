# articlerelay/core/dispatch/queue.py
"""
Article dispatch queue.

Articles whose roles need no toggling are sent as soon as they are
enqueued. The rest wait in a per-destination batch until ``flush()``,
which runs three phases over every pending destination:

1. enable  - make each distinct role of the destination mentionable
2. deliver - send the destination's messages in enqueue order
3. disable - revert every role touched in phase 1

Each phase finishes for all destinations before the next one starts, so a
role stays mentionable only for as long as the deliveries take.

Failure policy
~~~~~~~~~~~~~~
A toggle rejected with a permission-denied code is skipped (the role is
simply not pinged). Any other failure aborts the flush with
``ArticleMessageError``. Before raising, roles already made mentionable are
reverted and every undelivered message is put back at the head of its
destination's batch, so the next flush resumes without re-sending.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping

from articlerelay.config import settings
from articlerelay.core.dispatch.article_message import ArticleIn, ArticleMessage
from articlerelay.core.dispatch.errors import ArticleMessageError, is_permission_denied
from articlerelay.core.dispatch.ports import Platform, ToggleableRole
from articlerelay.infra.logging_config import LogContext, get_logger
from articlerelay.infra.metrics import inc_counter, timed

logger = get_logger(__name__)

MessageFactory = Callable[[Any], ArticleMessage]

PHASE_ENABLE = "enable"
PHASE_DELIVER = "deliver"
PHASE_DISABLE = "disable"


@dataclass
class _DestinationFlush:
    """Snapshot of one destination's batch and its progress through a flush."""
    destination_id: str
    messages: list[ArticleMessage]
    enabled_roles: list[ToggleableRole] = field(default_factory=list)
    delivered: int = 0

    @property
    def role_ids(self) -> list[str]:
        """Distinct role ids across the batch, first-seen order."""
        return list(dict.fromkeys(
            role_id for message in self.messages for role_id in message.role_ids
        ))

    @property
    def undelivered(self) -> list[ArticleMessage]:
        return self.messages[self.delivered:]


class ArticleMessageQueue:
    """
    Per-destination batching of articles that ping roles.

    One instance per dispatcher; pass it explicitly to whoever enqueues.
    """

    def __init__(
        self,
        message_factory: MessageFactory,
        *,
        permission_denied_codes: Iterable[int] | None = None,
        concurrent_destinations: bool | None = None,
    ):
        self._factory = message_factory
        self._batches: dict[str, list[ArticleMessage]] = {}
        self._permission_denied_codes = frozenset(
            settings.permission_denied_codes if permission_denied_codes is None
            else permission_denied_codes
        )
        self._concurrent = (
            settings.flush_concurrent_destinations if concurrent_destinations is None
            else concurrent_destinations
        )

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def pending(self, destination_id: str) -> list[ArticleMessage]:
        """Messages waiting for the next flush of ``destination_id``."""
        return list(self._batches.get(destination_id, ()))

    def pending_destinations(self) -> list[str]:
        return [dest for dest, batch in self._batches.items() if batch]

    def __len__(self) -> int:
        return sum(len(batch) for batch in self._batches.values())

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(self, raw: ArticleIn | Mapping[str, Any]) -> ArticleMessage:
        """
        Send the article now, or batch it if its roles must be toggled.

        Raises:
            Whatever ``send()`` raises on the immediate path, unchanged.
        """
        message = self._factory(raw)
        log = LogContext(logger, destination_id=message.destination_id, article_id=message.article_id)

        if not message.toggle_role_mentions:
            await message.send()
            inc_counter("articles_sent_immediate")
            log.debug("Article sent immediately")
            return message

        batch = self._batches.setdefault(message.destination_id, [])
        batch.append(message)
        inc_counter("articles_queued")
        log.debug(f"Article queued: batch_size={len(batch)}")
        return message

    # ------------------------------------------------------------------
    # Role toggling
    # ------------------------------------------------------------------

    @staticmethod
    async def toggle_role_mentionable(
        role: ToggleableRole,
        mentionable: bool,
        permission_denied_codes: Iterable[int] | None = None,
    ) -> bool:
        """
        Set a role's mentionable flag.

        Returns:
            True if applied, False if the platform refused for lack of
            permissions (the role will just not be pinged)

        Raises:
            Any other error from ``set_mentionable``
        """
        if permission_denied_codes is None:
            permission_denied_codes = settings.permission_denied_codes
        state = "on" if mentionable else "off"
        try:
            await role.set_mentionable(mentionable)
        except Exception as exc:
            if not is_permission_denied(exc, permission_denied_codes):
                raise
            logger.warning(
                f"Missing permissions to set role mentionable={mentionable}: {exc}",
                extra={"role_id": getattr(role, "id", None)},
            )
            inc_counter("role_toggle_permission_denied", state=state)
            return False
        inc_counter("role_toggles", state=state)
        return True

    # ------------------------------------------------------------------
    # Flush
    # ------------------------------------------------------------------

    async def flush(self, platform: Platform) -> None:
        """
        Run enable / deliver / disable over every pending destination.

        Raises:
            ArticleMessageError: first fatal failure, with the original message
        """
        flushes = self._detach_batches()
        if not flushes:
            return

        logger.info(
            f"Flushing {sum(len(f.messages) for f in flushes)} queued articles "
            f"for {len(flushes)} destinations"
        )

        with timed("flush_duration_seconds"):
            try:
                await self._run_phase(PHASE_ENABLE, flushes, lambda f: self._enable_roles(f, platform))
                await self._run_phase(PHASE_DELIVER, flushes, self._deliver)
                await self._run_phase(PHASE_DISABLE, flushes, self._disable_roles)
            except BaseException as exc:
                # cancellation too: detached batches must not be lost
                await self._abort(flushes, exc)
                raise

        for f in flushes:
            LogContext(logger, destination_id=f.destination_id).info(
                f"Destination flushed: delivered={f.delivered}"
            )

    def _detach_batches(self) -> list[_DestinationFlush]:
        """Take every non-empty batch out of the queue; later enqueues start new ones."""
        batches, self._batches = self._batches, {}
        return [
            _DestinationFlush(destination_id, messages)
            for destination_id, messages in batches.items()
            if messages
        ]

    async def _run_phase(
        self,
        phase: str,
        flushes: list[_DestinationFlush],
        step: Callable[[_DestinationFlush], Awaitable[None]],
    ) -> None:
        if not self._concurrent:
            for f in flushes:
                try:
                    await step(f)
                except Exception as exc:
                    raise ArticleMessageError.wrap(exc, destination_id=f.destination_id, phase=phase)
            return

        results = await asyncio.gather(*(step(f) for f in flushes), return_exceptions=True)
        for f, result in zip(flushes, results):
            if isinstance(result, Exception):
                raise ArticleMessageError.wrap(result, destination_id=f.destination_id, phase=phase)
            if isinstance(result, BaseException):
                raise result

    async def _enable_roles(self, f: _DestinationFlush, platform: Platform) -> None:
        log = LogContext(logger, destination_id=f.destination_id, phase=PHASE_ENABLE)

        destination = await platform.resolve_destination(f.destination_id)
        if destination is None:
            log.warning("Destination not found, delivering without role mentions")
            return

        authority = await destination.resolve_permission_authority()
        if authority is None:
            log.debug("Destination has no roles to toggle")
            return

        for role_id in f.role_ids:
            role = await authority.resolve_group(role_id)
            if role is None:
                log.bind(role_id=role_id).warning("Role not found, skipping")
                continue
            await self.toggle_role_mentionable(role, True, self._permission_denied_codes)
            f.enabled_roles.append(role)

    async def _deliver(self, f: _DestinationFlush) -> None:
        for message in f.undelivered:
            await message.send()
            f.delivered += 1
            inc_counter("articles_delivered")

    async def _disable_roles(self, f: _DestinationFlush) -> None:
        while f.enabled_roles:
            role = f.enabled_roles.pop(0)
            await self.toggle_role_mentionable(role, False, self._permission_denied_codes)

    async def _abort(self, flushes: list[_DestinationFlush], error: BaseException) -> None:
        phase = getattr(error, "phase", None) or type(error).__name__
        inc_counter("flush_failed", phase=phase)
        LogContext(logger, destination_id=getattr(error, "destination_id", None), phase=phase).error(
            f"Flush aborted: {error}"
        )

        for f in flushes:
            remaining = f.undelivered
            if remaining:
                self._batches[f.destination_id] = remaining + self._batches.get(f.destination_id, [])
                LogContext(logger, destination_id=f.destination_id).info(
                    f"Requeued {len(remaining)} undelivered articles"
                )

        for f in flushes:
            log = LogContext(logger, destination_id=f.destination_id)
            while f.enabled_roles:
                role = f.enabled_roles.pop(0)
                try:
                    await self.toggle_role_mentionable(role, False, self._permission_denied_codes)
                except Exception as exc:
                    log.bind(role_id=getattr(role, "id", None)).error(
                        f"Could not revert role mentionable after failed flush: {exc}",
                        exc_info=True,
                    )
