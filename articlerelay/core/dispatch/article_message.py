# articlerelay/core/dispatch/article_message.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from articlerelay.core.dispatch.ports import MessageSender


# ============================================================================
# RAW INPUT
# ============================================================================

class ArticleIn(BaseModel):
    """Raw article event as handed to the queue."""

    channel_id: str = Field(
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("channel_id", "destination_id"),
    )
    text: str = Field(default="", max_length=2000)
    title: str | None = None
    link: str | None = None
    article_id: str | None = None
    role_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("role_ids", "subscription_ids"),
    )
    # None => use the dispatcher-wide default
    toggle_role_mentions: bool | None = None

    @field_validator("channel_id", "article_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Snowflakes often arrive as JSON numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("role_ids", mode="before")
    @classmethod
    def _coerce_role_ids(cls, value: Any) -> Any:
        if value is None:
            return []
        return [str(v) if isinstance(v, int) and not isinstance(v, bool) else v for v in value]


# ============================================================================
# MESSAGE
# ============================================================================

@dataclass(frozen=True)
class NotifyTargets:
    """
    Roles to make mentionable around delivery of a message.
    Always non-empty: a message with nothing to ping carries no NotifyTargets.
    """
    role_ids: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.role_ids:
            raise ValueError("NotifyTargets requires at least one role id")

    @classmethod
    def of(cls, role_ids) -> Optional["NotifyTargets"]:
        """NotifyTargets for ``role_ids``, or None if there are none."""
        role_ids = tuple(role_ids)
        return cls(role_ids) if role_ids else None


@dataclass
class ArticleMessage:
    """Outbound message for one article, bound to the sender that delivers it."""
    destination_id: str
    content: str
    sender: MessageSender = field(repr=False)
    notify: Optional[NotifyTargets] = None
    article_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def toggle_role_mentions(self) -> bool:
        return self.notify is not None

    @property
    def role_ids(self) -> tuple[str, ...]:
        return self.notify.role_ids if self.notify else ()

    async def send(self) -> Any:
        return await self.sender.send_message(self.destination_id, self.content)


# ============================================================================
# FACTORY
# ============================================================================

def format_article_text(article: ArticleIn) -> str:
    """Plain text body: title, text and link, whichever are present."""
    parts = [p for p in (article.title and f"**{article.title}**", article.text, article.link) if p]
    return "\n".join(parts)


def format_role_mentions(role_ids) -> str:
    return " ".join(f"<@&{role_id}>" for role_id in role_ids)


class ArticleMessageFactory:
    """
    Builds ArticleMessage objects from raw article input.

    A message needs its roles toggled only when toggling is enabled for the
    article (explicitly, or by the factory default) and it names at least
    one role.
    """

    def __init__(self, sender: MessageSender, toggle_role_mentions: bool = True):
        self.sender = sender
        self.toggle_role_mentions = toggle_role_mentions

    def __call__(self, raw: ArticleIn | Mapping[str, Any]) -> ArticleMessage:
        article = raw if isinstance(raw, ArticleIn) else ArticleIn.model_validate(raw)

        toggle = article.toggle_role_mentions
        if toggle is None:
            toggle = self.toggle_role_mentions

        mentions = format_role_mentions(article.role_ids)
        content = "\n".join(p for p in (format_article_text(article), mentions) if p)

        message = ArticleMessage(
            destination_id=article.channel_id,
            content=content,
            sender=self.sender,
            notify=NotifyTargets.of(article.role_ids) if toggle else None,
        )
        if article.article_id:
            message.article_id = article.article_id
        return message
