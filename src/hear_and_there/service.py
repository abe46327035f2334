from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Optional

from hear_and_there.audioguide import AudioguideSteps, build_audioguide_graph, thread_id_for
from hear_and_there.cache.geo_index import GeoPointIndex
from hear_and_there.cache.suggestions import TourSuggestionCache
from hear_and_there.cache.summary_cache import SummaryCache
from hear_and_there.config.models import AppConfig
from hear_and_there.core.models import AudioguideRequest, CandidateRequest
from hear_and_there.graph.checkpoint import CheckpointStore
from hear_and_there.graph.engine import RunResult
from hear_and_there.providers.interfaces import (
    CandidateLLM,
    PointSearchProvider,
    ReverseGeocoder,
    RouteValidator,
    ScriptLLM,
    SpeechSynthesizer,
    SummaryGenerator,
)
from hear_and_there.runtime.cancellation import CancellationRegistry
from hear_and_there.runtime.fanout import DetachedTasks
from hear_and_there.runtime.retry import ModelFallbackGenerator, RetryPolicy
from hear_and_there.storage.records import (
    SessionRecord,
    SessionRecordStore,
    TourRecord,
    TourRecordStore,
)
from hear_and_there.storage.ttl_store import TTLStore, store_path
from hear_and_there.tours import CandidateSteps, build_candidate_graph

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Collaborators:
    """External capabilities, constructed once at process start."""

    geocoder: ReverseGeocoder
    poi_search: PointSearchProvider
    summary_generator: SummaryGenerator
    candidate_llm: CandidateLLM
    script_llm: ScriptLLM
    synthesizer: SpeechSynthesizer
    route_validator: RouteValidator


@dataclass(frozen=True, slots=True)
class Stores:
    geo_index: GeoPointIndex
    summaries: SummaryCache
    suggestions: TourSuggestionCache
    checkpoints: CheckpointStore
    sessions: SessionRecordStore
    tours: TourRecordStore
    cancellation: CancellationRegistry

    @classmethod
    def from_config(cls, config: AppConfig) -> "Stores":
        """Build every store; they are persisted under `storage.data_dir` when it is set."""
        data_dir = config.storage.data_dir
        cache = config.cache

        def _store(name: str, ttl: Optional[timedelta]) -> TTLStore:
            return TTLStore(name=name, default_ttl=ttl, path=store_path(data_dir, name))

        session_ttl = timedelta(days=cache.session_ttl_days)
        return cls(
            geo_index=GeoPointIndex(store=_store("pois", timedelta(days=cache.poi_ttl_days))),
            summaries=SummaryCache(store=_store("summaries", timedelta(days=cache.summary_ttl_days))),
            suggestions=TourSuggestionCache(
                store=_store("suggestions", timedelta(days=cache.suggestion_ttl_days)),
                match_radius_m=config.tours.suggestion_match_radius_m,
            ),
            checkpoints=CheckpointStore(
                store=_store("checkpoints", None),
                ttl=timedelta(minutes=cache.checkpoint_ttl_minutes),
                refresh_on_read=cache.checkpoint_refresh_on_read,
            ),
            sessions=SessionRecordStore(store=_store("sessions", session_ttl)),
            tours=TourRecordStore(store=_store("tours", session_ttl)),
            cancellation=CancellationRegistry(_store("cancellation", session_ttl)),
        )


class TourService:
    """
    Entry point for the two workflows.

    Builds both graphs once from injected collaborators and stores, and keeps the
    session and tour records in step with each run.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        collaborators: Collaborators,
        stores: Optional[Stores] = None,
        detached: Optional[DetachedTasks] = None,
    ) -> None:
        self._config = config
        self._stores = stores or Stores.from_config(config)
        self._detached = detached or DetachedTasks()

        candidate_steps = CandidateSteps(
            geocoder=collaborators.geocoder,
            poi_search=collaborators.poi_search,
            summary_generator=collaborators.summary_generator,
            candidate_llm=collaborators.candidate_llm,
            route_validator=collaborators.route_validator,
            geo_index=self._stores.geo_index,
            summaries=self._stores.summaries,
            suggestions=self._stores.suggestions,
            detached=self._detached,
            settings=config.tours,
            cancellation=config.cancellation,
            sessions=self._stores.sessions,
        )
        script_generator = ModelFallbackGenerator(
            llm=collaborators.script_llm,
            policy=RetryPolicy.from_settings(config.retry),
            primary_model=config.llm.model,
            fallback_model=config.llm.fallback_model or None,
        )
        audioguide_steps = AudioguideSteps(
            geocoder=collaborators.geocoder,
            summary_generator=collaborators.summary_generator,
            script_generator=script_generator,
            synthesizer=collaborators.synthesizer,
            geo_index=self._stores.geo_index,
            summaries=self._stores.summaries,
            tours=self._stores.tours,
            sessions=self._stores.sessions,
            settings=config.audioguide,
            cancellation=config.cancellation,
        )
        self._candidate_graph = build_candidate_graph(candidate_steps)
        self._audioguide_graph = build_audioguide_graph(audioguide_steps, checkpointer=self._stores.checkpoints)

    @property
    def stores(self) -> Stores:
        return self._stores

    @property
    def detached(self) -> DetachedTasks:
        return self._detached

    async def suggest_tours(self, request: CandidateRequest) -> RunResult:
        self._stores.sessions.save(
            SessionRecord(
                session_id=request.session_id,
                latitude=request.latitude,
                longitude=request.longitude,
                duration_minutes=request.duration_minutes,
                language=request.language,
                customization=request.customization,
            )
        )
        logger.info(
            "Tour suggestion requested. session_id=%s duration_minutes=%s language=%s customized=%s",
            request.session_id,
            request.duration_minutes,
            request.language,
            bool(request.customization),
        )
        result = await self._candidate_graph.invoke(
            asdict(request),
            thread_id=request.session_id,
            cancellation=self._stores.cancellation.token(request.session_id),
        )

        if result.cancelled:
            self._stores.sessions.update(request.session_id, stage="cancelled")
        elif result.state.cache_hit:
            self._stores.sessions.update(request.session_id, tours=list(result.state.final_tours), stage="tours_ranked")
        return result

    async def generate_audioguide(self, request: AudioguideRequest) -> RunResult:
        thread_id = thread_id_for(request.session_id, request.tour_id)
        logger.info(
            "Audioguide requested. session_id=%s tour_id=%s language=%s voice=%s",
            request.session_id,
            request.tour_id,
            request.language,
            request.voice,
        )
        result = await self._audioguide_graph.invoke(
            asdict(request),
            thread_id=thread_id,
            cancellation=self._stores.cancellation.token(request.session_id),
            checkpoint_each_step=True,
        )
        if result.cancelled:
            self._stores.tours.update(request.tour_id, status="pending")
        return result

    def cancel(self, session_id: str) -> None:
        self._stores.cancellation.cancel(session_id)

    def clear_cancellation(self, session_id: str) -> None:
        self._stores.cancellation.clear(session_id)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self._stores.sessions.get(session_id)

    def get_tour(self, tour_id: str) -> Optional[TourRecord]:
        return self._stores.tours.get(tour_id)

    async def aclose(self, *, timeout_seconds: Optional[float] = 10.0) -> None:
        await self._detached.drain(timeout_seconds=timeout_seconds)
