# articlerelay/core/dispatch/__init__.py
"""
Article dispatch -- platform-agnostic batching and delivery.

- ``article_message`` — raw article input, ArticleMessage, factory
- ``queue`` — ArticleMessageQueue (immediate vs. batched, three-phase flush)
- ``ports`` — protocols the platform adapter implements
- ``errors`` — ArticleMessageError and permission-failure classification

Canonical imports:
    from articlerelay.core.dispatch import ArticleMessageQueue, ArticleMessageFactory
"""
from articlerelay.core.dispatch.article_message import (  # noqa: F401
    ArticleIn,
    ArticleMessage,
    ArticleMessageFactory,
    NotifyTargets,
)
from articlerelay.core.dispatch.errors import (  # noqa: F401
    ArticleMessageError,
    DispatchError,
    PlatformError,
    is_permission_denied,
)
from articlerelay.core.dispatch.ports import (  # noqa: F401
    Destination,
    MessageSender,
    PermissionAuthority,
    Platform,
    ToggleableRole,
)
from articlerelay.core.dispatch.queue import ArticleMessageQueue  # noqa: F401
