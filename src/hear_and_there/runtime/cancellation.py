from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import timedelta
from typing import Awaitable, Optional, TypeVar

from hear_and_there.errors import RunCancelled
from hear_and_there.storage.ttl_store import TTLStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_KEY_PREFIX = "session:"


class CancellationRegistry:
    """
    Per-session cancellation flags.

    Flags live in a TTL store so they are visible to every run of the session and
    disappear together with the session. Setting a flag is idempotent.
    """

    def __init__(self, store: Optional[TTLStore] = None) -> None:
        self._store = store or TTLStore(name="cancellation", default_ttl=timedelta(days=1))

    def cancel(self, session_id: str) -> None:
        if self.is_cancelled(session_id):
            return
        self._store.set(_KEY_PREFIX + session_id, {"cancelled": True})
        logger.info("Session cancellation requested. session_id=%s", session_id)

    def clear(self, session_id: str) -> None:
        self._store.delete(_KEY_PREFIX + session_id)

    def is_cancelled(self, session_id: str) -> bool:
        record = self._store.get(_KEY_PREFIX + session_id)
        return bool(record and record.get("cancelled"))

    def token(self, session_id: str) -> "CancellationToken":
        return CancellationToken(session_id=session_id, registry=self)


class CancellationToken:
    """A pollable view of one session's cancellation flag."""

    __slots__ = ("session_id", "_registry")

    def __init__(self, *, session_id: Optional[str], registry: Optional[CancellationRegistry]) -> None:
        self.session_id = session_id
        self._registry = registry

    @classmethod
    def never(cls) -> "CancellationToken":
        return cls(session_id=None, registry=None)

    def is_cancelled(self) -> bool:
        if self._registry is None or self.session_id is None:
            return False
        return self._registry.is_cancelled(self.session_id)

    def raise_if_cancelled(self, where: str = "unknown") -> None:
        if self.is_cancelled():
            logger.info("Run stopped by cancellation. session_id=%s where=%s", self.session_id, where)
            raise RunCancelled(self.session_id, where)


async def race_with_cancellation(
    awaitable: Awaitable[T],
    token: CancellationToken,
    *,
    poll_interval_seconds: float,
    where: str = "unknown",
) -> T:
    """
    Await `awaitable` while polling `token` every `poll_interval_seconds`.

    When the token is set, the in-flight operation is cancelled and RunCancelled is
    raised within one poll interval.
    """
    if token.is_cancelled():
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled(where)

    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval_seconds)
            if done:
                return task.result()
            if token.is_cancelled():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                logger.info("In-flight operation interrupted by cancellation. session_id=%s where=%s", token.session_id, where)
                raise RunCancelled(token.session_id, where)
    finally:
        if not task.done():
            task.cancel()
