from __future__ import annotations

import copy
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Tuple, Union

logger = logging.getLogger(__name__)

SchemaVersion = 1

Clock = Callable[[], float]


class _DefaultTTL:
    def __repr__(self) -> str:
        return "DEFAULT_TTL"


DEFAULT_TTL = _DefaultTTL()
TTLArg = Union[Optional[timedelta], _DefaultTTL]


@dataclass(slots=True)
class StoredValue:
    value: Any
    created_at: float
    expires_at: Optional[float]
    ttl_seconds: Optional[float]


def _format_rfc3339(ts: float) -> str:
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def _parse_rfc3339(value: str) -> float:
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw).timestamp()


def _atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8")
    tmp_path.replace(path)


def _encode_entry(entry: StoredValue) -> dict:
    return {
        "value": entry.value,
        "created_at": _format_rfc3339(entry.created_at),
        "expires_at": _format_rfc3339(entry.expires_at) if entry.expires_at is not None else None,
        "ttl_seconds": entry.ttl_seconds,
    }


def _decode_entry(payload: dict) -> StoredValue:
    expires_at = payload.get("expires_at")
    return StoredValue(
        value=payload["value"],
        created_at=_parse_rfc3339(payload["created_at"]),
        expires_at=_parse_rfc3339(expires_at) if expires_at else None,
        ttl_seconds=payload.get("ttl_seconds"),
    )


class TTLStore:
    """
    A keyed store of JSON-compatible values with per-entry expiry.

    Values are deep-copied on the way in and out, so callers never alias stored data.
    Concurrent writers are last-write-wins. When `path` is given the store is loaded
    from it on construction and rewritten atomically after every mutation.
    """

    def __init__(
        self,
        *,
        name: str,
        default_ttl: Optional[timedelta],
        path: Optional[Path] = None,
        clock: Clock = time.time,
    ) -> None:
        self._name = name
        self._default_ttl = default_ttl
        self._path = path
        self._clock = clock
        self._entries: Dict[str, StoredValue] = {}
        if self._path is not None:
            self._load()

    @property
    def name(self) -> str:
        return self._name

    def now(self) -> float:
        return self._clock()

    def get(self, key: str, *, refresh_ttl: bool = False) -> Any | None:
        entry = self.get_entry(key, refresh_ttl=refresh_ttl)
        if entry is None:
            return None
        return entry.value

    def get_entry(self, key: str, *, refresh_ttl: bool = False) -> StoredValue | None:
        entry = self._live_entry(key)
        if entry is None:
            return None
        if refresh_ttl and entry.ttl_seconds is not None:
            entry.expires_at = self._clock() + entry.ttl_seconds
            self._save()
        return StoredValue(
            value=copy.deepcopy(entry.value),
            created_at=entry.created_at,
            expires_at=entry.expires_at,
            ttl_seconds=entry.ttl_seconds,
        )

    def set(self, key: str, value: Any, *, ttl: TTLArg = DEFAULT_TTL) -> None:
        """Store `value` under `key`. `ttl=None` stores an entry that never expires."""
        resolved = self._default_ttl if isinstance(ttl, _DefaultTTL) else ttl
        now = self._clock()
        ttl_seconds = resolved.total_seconds() if resolved is not None else None
        self._entries[key] = StoredValue(
            value=copy.deepcopy(value),
            created_at=now,
            expires_at=now + ttl_seconds if ttl_seconds is not None else None,
            ttl_seconds=ttl_seconds,
        )
        self._save()

    def delete(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            self._save()
        return removed

    def scan(self, prefix: str = "") -> Iterator[Tuple[str, Any]]:
        """
        Iterate live entries without copying.

        Yielded values are the stored objects themselves and must be treated as read-only.
        """
        now = self._clock()
        for key, entry in list(self._entries.items()):
            if not key.startswith(prefix):
                continue
            if entry.expires_at is not None and entry.expires_at <= now:
                continue
            yield key, entry.value

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self._live_entry(key) is not None

    def __len__(self) -> int:
        return sum(1 for _ in self.scan())

    def _live_entry(self, key: str) -> StoredValue | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _load(self) -> None:
        assert self._path is not None
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            version = int(payload.get("schema_version", SchemaVersion))
            if version != SchemaVersion:
                logger.warning(
                    "Store schema mismatch, starting empty. store=%s expected=%s actual=%s",
                    self._name,
                    SchemaVersion,
                    version,
                )
                return
            entries = {key: _decode_entry(raw) for key, raw in payload.get("entries", {}).items()}
        except Exception:
            logger.exception("Failed to load store file, starting empty. store=%s path=%s", self._name, self._path)
            return
        self._entries = entries
        logger.info("Store loaded. store=%s path=%s entries=%d", self._name, self._path, len(entries))

    def _save(self) -> None:
        if self._path is None:
            return
        payload = {
            "schema_version": SchemaVersion,
            "generated_at": _format_rfc3339(self._clock()),
            "entries": {key: _encode_entry(entry) for key, entry in self._entries.items()},
        }
        _atomic_write_json(self._path, payload)


def store_path(data_dir: str, name: str) -> Optional[Path]:
    """Return the persistence path for a store, or None when persistence is disabled."""
    if not data_dir:
        return None
    return Path(data_dir) / f"{name}.json"
