"""
Typed errors for article dispatch.

``ArticleMessageError`` is the only error a flush raises: it wraps the
triggering failure and keeps its message verbatim, so callers can log or
retry without caring which collaborator failed.
"""
from __future__ import annotations

from typing import Iterable


class DispatchError(Exception):
    """Base class for all dispatch errors."""


class ArticleMessageError(DispatchError):
    """Fatal failure during a flush.

    Attributes:
        destination_id: Destination being processed when the failure happened.
        phase:          "enable", "deliver" or "disable".
    """

    def __init__(
        self,
        message: str,
        *,
        destination_id: str | None = None,
        phase: str | None = None,
    ):
        self.destination_id = destination_id
        self.phase = phase
        super().__init__(message)

    @classmethod
    def wrap(
        cls,
        exc: BaseException,
        *,
        destination_id: str | None = None,
        phase: str | None = None,
    ) -> "ArticleMessageError":
        """Build a dispatch error carrying ``exc``'s message."""
        if isinstance(exc, cls):
            return exc
        error = cls(str(exc), destination_id=destination_id, phase=phase)
        error.__cause__ = exc
        return error


class PlatformError(DispatchError):
    """Error returned by a chat platform adapter.

    Attributes:
        status:    HTTP status code (0 for connection-level errors).
        code:      Platform-specific error code from the response body.
        retryable: Whether the caller could retry the same request later.
    """

    def __init__(
        self,
        status: int,
        code: int | None,
        message: str,
        *,
        retryable: bool = False,
    ):
        self.status = status
        self.code = code
        self.retryable = retryable
        super().__init__(message)


def is_permission_denied(exc: BaseException, codes: Iterable[int]) -> bool:
    """True if ``exc`` carries one of the "insufficient permission" codes.

    Any exception with a matching ``code`` attribute qualifies, not only
    ``PlatformError``: third-party clients tag their errors the same way.
    """
    code = getattr(exc, "code", None)
    if code is None:
        return False
    return any(code == denied for denied in codes)

