from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from hear_and_there.storage.ttl_store import TTLStore

logger = logging.getLogger(__name__)

_KEY_PREFIX = "checkpoint:"


@dataclass(frozen=True, slots=True)
class CheckpointRecord:
    thread_id: str
    state: Dict[str, Any]
    created_at: float
    ttl_seconds: Optional[float]
    # Step to resume from; None once the run reached END.
    next_step: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.next_step is None


class CheckpointStore:
    """
    Snapshots of graph state keyed by thread id.

    Records expire `ttl` after they were written. Reading does not extend the
    expiry unless `refresh_on_read` is set.
    """

    def __init__(self, *, store: TTLStore, ttl: timedelta = timedelta(minutes=120), refresh_on_read: bool = False) -> None:
        self._store = store
        self._ttl = ttl
        self._refresh_on_read = refresh_on_read

    @property
    def refresh_on_read(self) -> bool:
        return self._refresh_on_read

    def save(self, thread_id: str, state: Dict[str, Any], *, next_step: Optional[str] = None) -> CheckpointRecord:
        payload = {"state": state, "next_step": next_step}
        self._store.set(_KEY_PREFIX + thread_id, payload, ttl=self._ttl)
        logger.debug("Checkpoint saved. thread_id=%s next_step=%s", thread_id, next_step)
        return CheckpointRecord(
            thread_id=thread_id,
            state=state,
            created_at=self._store.now(),
            ttl_seconds=self._ttl.total_seconds(),
            next_step=next_step,
        )

    def load(self, thread_id: str) -> Optional[CheckpointRecord]:
        entry = self._store.get_entry(_KEY_PREFIX + thread_id, refresh_ttl=self._refresh_on_read)
        if entry is None:
            return None
        payload = entry.value
        return CheckpointRecord(
            thread_id=thread_id,
            state=payload["state"],
            created_at=entry.created_at,
            ttl_seconds=entry.ttl_seconds,
            next_step=payload.get("next_step"),
        )

    def delete(self, thread_id: str) -> bool:
        return self._store.delete(_KEY_PREFIX + thread_id)
