from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional, Sequence

from hear_and_there.cache.geo_index import GeoPointIndex
from hear_and_there.cache.suggestions import TourSuggestionCache
from hear_and_there.cache.summary_cache import SummaryCache, area_summary
from hear_and_there.config.models import CancellationSettings, TourSettings
from hear_and_there.core.models import EMPTY_SUMMARY, GeoPoint, PointOfInterest, SummaryData, haversine_m
from hear_and_there.graph.engine import RunContext
from hear_and_there.graph.state import GraphState
from hear_and_there.providers.interfaces import (
    CandidateLLM,
    PointSearchProvider,
    ReverseGeocoder,
    RouteValidator,
    SummaryGenerator,
)
from hear_and_there.runtime.cancellation import race_with_cancellation
from hear_and_there.runtime.fanout import DetachedTasks, WorkItem, fan_out
from hear_and_there.storage.records import SessionRecordStore
from hear_and_there.streaming.extractor import PartialHint, extract_models
from hear_and_there.tours.models import CandidateTour, candidate_schema
from hear_and_there.tours.planning import (
    apply_route_legs,
    heuristic_tours,
    rank_tours,
    tour_from_candidate,
    within_duration,
)
from hear_and_there.tours.poi_search import escalating_query, search_area, search_radius_m
from hear_and_there.tours.prompts import build_candidate_prompt

logger = logging.getLogger(__name__)

NO_POIS_AVAILABLE = "no_pois_available"


def _message(content: str, role: str = "system") -> dict[str, str]:
    return {"role": role, "content": content}


def _start(state: GraphState) -> GeoPoint:
    return GeoPoint(float(state.latitude), float(state.longitude))


async def _empty_summary() -> SummaryData:
    return EMPTY_SUMMARY


class CandidateSteps:
    """
    Steps of the candidate-generation workflow.

    Every collaborator is injected once at construction; the bound methods are
    registered as graph steps. Provider failures degrade to partial state so the
    run always reaches the end of the graph.
    """

    def __init__(
        self,
        *,
        geocoder: ReverseGeocoder,
        poi_search: PointSearchProvider,
        summary_generator: SummaryGenerator,
        candidate_llm: CandidateLLM,
        route_validator: RouteValidator,
        geo_index: GeoPointIndex,
        summaries: SummaryCache,
        suggestions: TourSuggestionCache,
        detached: DetachedTasks,
        settings: TourSettings,
        cancellation: CancellationSettings,
        sessions: Optional[SessionRecordStore] = None,
    ) -> None:
        self._geocoder = geocoder
        self._poi_search = poi_search
        self._summary_generator = summary_generator
        self._candidate_llm = candidate_llm
        self._route_validator = route_validator
        self._geo_index = geo_index
        self._summaries = summaries
        self._suggestions = suggestions
        self._detached = detached
        self._settings = settings
        self._cancellation = cancellation
        self._sessions = sessions

    def _radius(self, state: GraphState) -> float:
        if state.search_radius_m is not None:
            return float(state.search_radius_m)
        return search_radius_m(
            int(state.duration_minutes),
            min_radius_m=self._settings.min_radius_m,
            max_radius_m=self._settings.max_radius_m,
        )

    def _update_session(self, session_id: Optional[str], **changes: Any) -> None:
        if self._sessions is None or not session_id:
            return
        self._sessions.update(session_id, **changes)

    async def check_tour_cache(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        if state.customization:
            logger.info("Skipping tour suggestion cache for customized request. session_id=%s", state.session_id)
            return {"cache_hit": False}

        cached = self._suggestions.find(
            _start(state),
            duration_minutes=int(state.duration_minutes),
            language=state.language,
            limit=self._settings.max_cached_suggestions,
        )
        if not cached:
            return {"cache_hit": False}

        logger.info("Tour suggestion cache hit. session_id=%s tours=%d", state.session_id, len(cached))
        return {
            "cache_hit": True,
            "final_tours": cached,
            "messages": [_message(f"Found {len(cached)} cached tours near this location.")],
        }

    async def reverse_geocode(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        if state.city and state.neighborhood:
            return {}
        ctx.cancellation.raise_if_cancelled("reverse_geocode")
        try:
            location = await self._geocoder.lookup(latitude=float(state.latitude), longitude=float(state.longitude))
        except Exception as exc:
            logger.warning("Reverse geocoding failed. session_id=%s error=%s", state.session_id, exc)
            return {"messages": [_message("Could not determine the area name.")]}
        if location is None:
            logger.info("Reverse geocoding found no address. session_id=%s", state.session_id)
            return {}

        logger.info(
            "Reverse geocoded start point. session_id=%s country=%s city=%s neighborhood=%s",
            state.session_id,
            location.country,
            location.city,
            location.neighborhood,
        )
        return {
            "country": state.country or location.country,
            "city": state.city or location.city,
            "neighborhood": state.neighborhood or location.neighborhood,
        }

    async def check_poi_cache(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        radius = self._radius(state)
        hits = self._geo_index.query(
            _start(state),
            radius,
            primary_only=True,
            limit=self._settings.min_poi_count,
        )
        sufficient = len(hits) >= self._settings.min_poi_count
        logger.info(
            "POI cache checked. session_id=%s radius_m=%.0f primary_hits=%d sufficient=%s",
            state.session_id,
            radius,
            len(hits),
            sufficient,
        )
        return {"search_radius_m": radius, "poi_cache_hit": sufficient, "pois_count": len(hits)}

    async def fetch_pois(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        ctx.cancellation.raise_if_cancelled("fetch_pois")
        radius = self._radius(state)
        try:
            pois = await search_area(
                self._poi_search,
                _start(state),
                radius,
                max_results_per_group=self._settings.search_results_per_group,
            )
        except Exception as exc:
            logger.warning("POI search failed, continuing with cached points. session_id=%s error=%s", state.session_id, exc)
            return {"google_maps_fetched": False, "messages": [_message("Nearby place search failed.")]}

        self._detached.spawn(self._store_pois(pois), name=f"store_pois:{state.session_id}")
        logger.info("Fetched POIs from search provider. session_id=%s count=%d", state.session_id, len(pois))
        return {
            "pois": [poi.to_dict() for poi in pois],
            "pois_count": len(pois),
            "google_maps_fetched": True,
        }

    async def _store_pois(self, pois: Sequence[PointOfInterest]) -> None:
        for poi in pois:
            self._geo_index.upsert(poi)
        logger.debug("Fetched POIs stored in index. count=%d", len(pois))

    async def query_pois(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        start = _start(state)
        result = escalating_query(
            self._geo_index,
            start,
            self._radius(state),
            min_count=self._settings.min_poi_count,
            radius_multiplier=self._settings.radius_multiplier,
        )

        # Points fetched in this run may not be indexed yet.
        ranked: dict[str, tuple[float, dict[str, Any]]] = {
            hit.poi.id: (hit.distance_m, hit.poi.to_dict()) for hit in result.hits
        }
        for raw in state.pois or []:
            if raw["id"] in ranked:
                continue
            distance = haversine_m(start, GeoPoint(float(raw["latitude"]), float(raw["longitude"])))
            ranked[raw["id"]] = (distance, dict(raw))
        pois = [poi for _, poi in sorted(ranked.values(), key=lambda entry: (entry[0], entry[1]["id"]))]
        pois = pois[: max(self._settings.min_poi_count, len(result.hits))]

        logger.info(
            "POIs selected for generation. session_id=%s tier=%d indexed=%d total=%d",
            state.session_id,
            result.final_tier.tier,
            len(result.hits),
            len(pois),
        )
        return {
            "pois": pois,
            "pois_count": len(pois),
            "messages": [_message(f"Selected {len(pois)} points of interest.")],
        }

    async def generate_area_summaries(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        ctx.cancellation.raise_if_cancelled("generate_area_summaries")
        country, city, neighborhood = state.country, state.city, state.neighborhood
        city_data, neighborhood_data = await asyncio.gather(
            area_summary(self._summaries, self._summary_generator, country=country, city=city),
            area_summary(self._summaries, self._summary_generator, country=country, city=city, neighborhood=neighborhood)
            if neighborhood
            else _empty_summary(),
        )
        return {"city_data": city_data.to_dict(), "neighborhood_data": neighborhood_data.to_dict()}

    async def assemble_area_context(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        area_context = {
            "country": state.country,
            "city": state.city,
            "neighborhood": state.neighborhood,
            "pois": list(state.pois or []),
            "city_data": state.city_data or EMPTY_SUMMARY.to_dict(),
            "neighborhood_data": state.neighborhood_data or EMPTY_SUMMARY.to_dict(),
        }
        self._update_session(state.session_id, area_context=area_context, stage="area_context_built")
        return {
            "area_context": area_context,
            "messages": [
                _message(f"Assembled area context with {len(area_context['pois'])} POIs for {state.city or 'area'}.")
            ],
        }

    async def generate_candidate_tours(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        area_context = state.area_context or {}
        pois = area_context.get("pois") or []
        if not pois:
            logger.warning("No POIs available for tour generation. session_id=%s", state.session_id)
            return {
                "candidate_tours": [],
                "error": NO_POIS_AVAILABLE,
                "messages": [
                    _message(
                        "No points of interest detected in this area. Please try again from a different location.",
                        role="assistant",
                    )
                ],
            }

        duration = int(state.duration_minutes)
        ctx.cancellation.raise_if_cancelled("generate_candidate_tours")
        food_pois: list[dict[str, Any]] = []
        if duration >= self._settings.food_min_duration_minutes:
            try:
                hits = self._geo_index.query_food(_start(state), self._radius(state), limit=self._settings.max_food_pois)
                food_pois = [hit.poi.to_dict() for hit in hits]
            except Exception as exc:
                logger.warning("Food POI query failed. session_id=%s error=%s", state.session_id, exc)
        ctx.cancellation.raise_if_cancelled("generate_candidate_tours")

        prompt = build_candidate_prompt(
            latitude=float(state.latitude),
            longitude=float(state.longitude),
            duration_minutes=duration,
            language=state.language,
            customization=state.customization,
            area_context=area_context,
            food_pois=food_pois,
        )
        try:
            candidates = await race_with_cancellation(
                self._stream_candidates(prompt, session_id=state.session_id),
                ctx.cancellation,
                poll_interval_seconds=self._cancellation.poll_interval_seconds,
                where="generate_candidate_tours",
            )
        except Exception as exc:
            logger.warning("Candidate generation failed, using heuristic tours. session_id=%s error=%s", state.session_id, exc)
            candidates = []

        if candidates:
            tours = [tour_from_candidate(candidate) for candidate in candidates]
            note = f"Generated {len(tours)} candidate tours."
        else:
            tours = heuristic_tours(
                latitude=float(state.latitude),
                longitude=float(state.longitude),
                duration_minutes=duration,
                city=state.city,
                pois=pois,
            )
            note = f"Model returned no usable tours; built {len(tours)} heuristic tours."
        logger.info("Candidate tours ready. session_id=%s count=%d heuristic=%s", state.session_id, len(tours), not candidates)
        self._update_session(state.session_id, stage="candidates_generated")
        return {"candidate_tours": tours, "messages": [_message(note)]}

    async def _stream_candidates(self, prompt: str, *, session_id: Optional[str]) -> list[CandidateTour]:
        def _on_partial(hint: PartialHint) -> None:
            logger.debug(
                "Candidate tour in progress. session_id=%s index=%d %s=%s",
                session_id,
                hint.index,
                hint.field,
                hint.value,
            )

        collected: list[CandidateTour] = []
        chunks = self._candidate_llm.stream_generate(prompt=prompt, schema=candidate_schema())
        async for candidate in extract_models(chunks, CandidateTour, on_partial=_on_partial):
            collected.append(candidate)
            logger.info("Candidate tour received. session_id=%s index=%d title=%s", session_id, len(collected) - 1, candidate.title)
        return collected

    async def validate_walking_times(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        tours = list(state.candidate_tours or [])
        if not tours:
            return {}
        ctx.cancellation.raise_if_cancelled("validate_walking_times")
        start = _start(state)

        async def _validate(item: WorkItem) -> dict[str, Any]:
            tour = item.payload
            stops = tour["stops"]
            points = [GeoPoint(float(s["latitude"]), float(s["longitude"])) for s in stops]
            legs = await self._route_validator.walking_route(origin=start, destination=points[-1], waypoints=points[:-1])
            validated = apply_route_legs(tour, legs)
            if validated is None:
                raise ValueError(f"Route has {len(legs)} legs for {len(stops)} stops")
            return validated

        outcomes = await fan_out([WorkItem(index=i, kind="tour", payload=t) for i, t in enumerate(tours)], _validate)
        checked = [outcome.value if outcome.ok else tours[outcome.index] for outcome in outcomes]
        failed = sum(1 for outcome in outcomes if not outcome.ok)

        duration = int(state.duration_minutes)
        kept = [
            tour
            for tour in checked
            if within_duration(tour, duration, tolerance_minutes=self._settings.duration_tolerance_minutes)
        ]
        if not kept:
            logger.info("No tour within the duration tolerance, keeping all for ranking. session_id=%s", state.session_id)
            kept = checked
        logger.info(
            "Walking times validated. session_id=%s tours=%d unvalidated=%d kept=%d",
            state.session_id,
            len(tours),
            failed,
            len(kept),
        )
        return {
            "candidate_tours": kept,
            "messages": [_message(f"Validated walking times for {len(tours) - failed} of {len(tours)} tours.")],
        }

    async def rank_tours(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        ranked = rank_tours(
            state.candidate_tours or [],
            int(state.duration_minutes),
            limit=self._settings.max_ranked_tours,
        )
        self._update_session(state.session_id, tours=ranked, stage="tours_ranked")
        return {"final_tours": ranked, "messages": [_message(f"Ranked and kept {len(ranked)} tours.")]}

    async def save_tour_suggestions(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        if state.cache_hit or state.customization or not state.final_tours:
            return {}
        self._detached.spawn(
            self._save_suggestions(
                _start(state),
                duration_minutes=int(state.duration_minutes),
                language=state.language,
                tours=list(state.final_tours),
            ),
            name=f"save_suggestions:{state.session_id}",
        )
        return {}

    async def _save_suggestions(
        self,
        start: GeoPoint,
        *,
        duration_minutes: int,
        language: str,
        tours: Sequence[Mapping[str, Any]],
    ) -> None:
        self._suggestions.save(start, duration_minutes=duration_minutes, language=language, tours=tours)
