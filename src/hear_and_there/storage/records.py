from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Literal, Mapping, Optional

from hear_and_there.storage.ttl_store import TTLStore

logger = logging.getLogger(__name__)

SessionStage = Literal["created", "area_context_built", "candidates_generated", "tours_ranked", "cancelled"]
TourStatus = Literal["pending", "generating", "complete", "partial", "failed"]

_SESSION_PREFIX = "session:"
_TOUR_PREFIX = "tour:"


@dataclass(frozen=True, slots=True)
class SessionRecord:
    session_id: str
    latitude: float
    longitude: float
    duration_minutes: int
    language: str = "english"
    customization: Optional[str] = None
    area_context: Optional[Dict[str, Any]] = None
    tours: List[Dict[str, Any]] = field(default_factory=list)
    stage: SessionStage = "created"
    created_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionRecord":
        return cls(
            session_id=str(data["session_id"]),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            duration_minutes=int(data["duration_minutes"]),
            language=data.get("language") or "english",
            customization=data.get("customization"),
            area_context=data.get("area_context"),
            tours=list(data.get("tours") or []),
            stage=data.get("stage") or "created",
            created_at=float(data.get("created_at") or 0.0),
        )

    def find_tour(self, tour_id: str) -> Optional[Dict[str, Any]]:
        for tour in self.tours:
            if tour.get("id") == tour_id:
                return tour
        return None


@dataclass(frozen=True, slots=True)
class TourRecord:
    """A generated tour with its narration and audio, shareable by tour id alone."""

    tour_id: str
    session_id: str
    status: TourStatus = "pending"
    tour: Dict[str, Any] = field(default_factory=dict)
    scripts: Dict[str, Any] = field(default_factory=dict)
    audio_files: Dict[str, Any] = field(default_factory=dict)
    updated_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TourRecord":
        return cls(
            tour_id=str(data["tour_id"]),
            session_id=str(data["session_id"]),
            status=data.get("status") or "pending",
            tour=dict(data.get("tour") or {}),
            scripts=dict(data.get("scripts") or {}),
            audio_files=dict(data.get("audio_files") or {}),
            updated_at=float(data.get("updated_at") or 0.0),
        )


class SessionRecordStore:
    def __init__(self, *, store: TTLStore) -> None:
        self._store = store

    def get(self, session_id: str) -> Optional[SessionRecord]:
        raw = self._store.get(_SESSION_PREFIX + session_id)
        return SessionRecord.from_dict(raw) if raw is not None else None

    def save(self, record: SessionRecord) -> SessionRecord:
        if not record.created_at:
            record = replace(record, created_at=self._store.now())
        self._store.set(_SESSION_PREFIX + record.session_id, record.to_dict())
        logger.debug("Session record saved. session_id=%s stage=%s", record.session_id, record.stage)
        return record

    def update(self, session_id: str, **changes: Any) -> Optional[SessionRecord]:
        """Apply `changes` to an existing record. Returns None when the session is unknown."""
        existing = self.get(session_id)
        if existing is None:
            logger.warning("Session record not found for update. session_id=%s", session_id)
            return None
        return self.save(replace(existing, **changes))


class TourRecordStore:
    def __init__(self, *, store: TTLStore) -> None:
        self._store = store

    def get(self, tour_id: str) -> Optional[TourRecord]:
        raw = self._store.get(_TOUR_PREFIX + tour_id)
        return TourRecord.from_dict(raw) if raw is not None else None

    def save(self, record: TourRecord) -> TourRecord:
        record = replace(record, updated_at=self._store.now())
        self._store.set(_TOUR_PREFIX + record.tour_id, record.to_dict())
        logger.debug("Tour record saved. tour_id=%s status=%s", record.tour_id, record.status)
        return record

    def update(self, tour_id: str, **changes: Any) -> Optional[TourRecord]:
        existing = self.get(tour_id)
        if existing is None:
            logger.warning("Tour record not found for update. tour_id=%s", tour_id)
            return None
        return self.save(replace(existing, **changes))
