from __future__ import annotations

from typing import Any, Mapping, Optional


class HearAndThereError(Exception):
    """Base class for errors raised by the tour pipeline."""


class ConfigurationError(HearAndThereError):
    """Graph wiring or routing is invalid. Aborts the run."""


class ValidationError(HearAndThereError, ValueError):
    """A value was rejected at a boundary (cache key, work item index, ...)."""


class TransientProviderError(HearAndThereError):
    """A provider call failed in a way that is worth retrying."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class PartialItemFailure(HearAndThereError):
    """One fan-out work item failed. Recorded per item, never fails the batch."""

    def __init__(self, index: int, cause: BaseException) -> None:
        super().__init__(f"Work item {index} failed: {cause}")
        self.index = index
        self.cause = cause


class StepFailure(HearAndThereError):
    """
    Raised by a step that failed but still has a best-effort partial update.

    The graph engine merges `partial` into the state before routing onwards.
    """

    def __init__(self, message: str, *, partial: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.partial = dict(partial) if partial else {}


class RunCancelled(BaseException):
    """
    The session was cancelled by the user.

    Derives from BaseException, like asyncio.CancelledError, so that generic
    `except Exception` handlers inside steps let it through.
    """

    def __init__(self, session_id: Optional[str] = None, where: str = "unknown") -> None:
        super().__init__(f"Session cancelled. session_id={session_id} where={where}")
        self.session_id = session_id
        self.where = where
