from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from hear_and_there.audioguide.prompts import build_intro_prompt, build_stop_prompt
from hear_and_there.audioguide.speech import (
    audio_file_name,
    language_code_for_voice,
    resolve_voice,
    trim_to_bytes,
)
from hear_and_there.cache.geo_index import GeoPointIndex
from hear_and_there.cache.summary_cache import SummaryCache, area_summary
from hear_and_there.config.models import AudioguideSettings, CancellationSettings
from hear_and_there.core.models import EMPTY_SUMMARY, Location, SummaryData
from hear_and_there.graph.engine import RunContext
from hear_and_there.graph.state import GraphState, merge_slots
from hear_and_there.providers.interfaces import ReverseGeocoder, SpeechSynthesizer, SummaryGenerator
from hear_and_there.runtime.cancellation import race_with_cancellation
from hear_and_there.runtime.fanout import ItemOutcome, WorkItem, fan_out
from hear_and_there.runtime.retry import ModelFallbackGenerator
from hear_and_there.storage.records import SessionRecordStore, TourRecord, TourRecordStore

logger = logging.getLogger(__name__)

TOUR_NOT_FOUND = "tour_not_found"
TOUR_HAS_NO_STOPS = "tour_has_no_stops"


async def _empty_summary() -> SummaryData:
    return EMPTY_SUMMARY


def location_key(country: Optional[str], city: Optional[str], neighborhood: Optional[str]) -> str:
    return f"{country or 'unknown'}:{city or 'unknown'}:{neighborhood or 'unknown'}"


def _slot_ok(slot: Optional[Mapping[str, Any]]) -> bool:
    return bool(slot) and slot.get("status") == "complete"


def _stop_slot(slots: Mapping[str, Any], index: int) -> Optional[Mapping[str, Any]]:
    stops = slots.get("stops") or []
    return stops[index] if index < len(stops) else None


def _failed_slot(outcome: ItemOutcome) -> Dict[str, Any]:
    return {"status": "failed", "error": outcome.error}


def _slots_update(stop_count: int, assignments: Mapping[Optional[int], Dict[str, Any]]) -> Dict[str, Any]:
    """Slot update with the intro under key None and stops under their index; unset slots stay None."""
    stops: List[Optional[Dict[str, Any]]] = [None] * stop_count
    for stop_index, slot in assignments.items():
        if stop_index is not None:
            stops[stop_index] = slot
    return {"intro": assignments.get(None), "stops": stops}


class AudioguideSteps:
    """
    Steps of the audioguide workflow.

    Slots already complete in the state (for example after resuming from a
    checkpoint) are not generated again.
    """

    def __init__(
        self,
        *,
        geocoder: ReverseGeocoder,
        summary_generator: SummaryGenerator,
        script_generator: ModelFallbackGenerator,
        synthesizer: SpeechSynthesizer,
        geo_index: GeoPointIndex,
        summaries: SummaryCache,
        tours: TourRecordStore,
        sessions: SessionRecordStore,
        settings: AudioguideSettings,
        cancellation: CancellationSettings,
    ) -> None:
        self._geocoder = geocoder
        self._summary_generator = summary_generator
        self._script_generator = script_generator
        self._synthesizer = synthesizer
        self._geo_index = geo_index
        self._summaries = summaries
        self._tours = tours
        self._sessions = sessions
        self._settings = settings
        self._cancellation = cancellation

    async def load_tour_data(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        tour = state.tour
        area_context = state.area_context
        session = self._sessions.get(state.session_id) if state.session_id else None
        if not tour:
            record = self._tours.get(state.tour_id)
            if record is not None and record.tour:
                tour = record.tour
            elif session is not None:
                tour = session.find_tour(state.tour_id)
        if area_context is None and session is not None:
            area_context = session.area_context

        if not tour:
            logger.warning("Tour not found for audioguide. session_id=%s tour_id=%s", state.session_id, state.tour_id)
            return {"error": TOUR_NOT_FOUND, "status": "failed"}
        if not tour.get("stops"):
            logger.warning("Tour has no stops. session_id=%s tour_id=%s", state.session_id, state.tour_id)
            return {"error": TOUR_HAS_NO_STOPS, "status": "failed"}

        record = self._tours.get(state.tour_id)
        if record is None:
            self._tours.save(TourRecord(tour_id=state.tour_id, session_id=state.session_id, status="generating", tour=tour))
        else:
            self._tours.update(state.tour_id, status="generating", tour=tour)

        logger.info(
            "Tour loaded for audioguide. session_id=%s tour_id=%s stops=%d",
            state.session_id,
            state.tour_id,
            len(tour["stops"]),
        )
        return {
            "tour": tour,
            "area_context": area_context or {},
            "voice": resolve_voice(state.voice, state.language, self._settings),
            # Clears the outcome of an earlier run on the same thread.
            "status": None,
            "error": None,
        }

    async def preload_location_summaries(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        ctx.cancellation.raise_if_cancelled("preload_location_summaries")
        stops = state.tour["stops"]
        locations = await asyncio.gather(*(self._stop_location(stop) for stop in stops))

        summaries: Dict[str, Dict[str, Any]] = {}
        stop_locations: List[Optional[str]] = []
        for location in locations:
            if location is None:
                stop_locations.append(None)
                continue
            key = location_key(location.country, location.city, location.neighborhood)
            stop_locations.append(key)
            summaries.setdefault(
                key,
                {"country": location.country, "city": location.city, "neighborhood": location.neighborhood},
            )

        async def _load(entry: Dict[str, Any]) -> None:
            city_data, neighborhood_data = await asyncio.gather(
                area_summary(self._summaries, self._summary_generator, country=entry["country"], city=entry["city"]),
                area_summary(
                    self._summaries,
                    self._summary_generator,
                    country=entry["country"],
                    city=entry["city"],
                    neighborhood=entry["neighborhood"],
                )
                if entry["neighborhood"]
                else _empty_summary(),
            )
            entry["city_data"] = city_data.to_dict()
            entry["neighborhood_data"] = neighborhood_data.to_dict()

        await asyncio.gather(*(_load(entry) for entry in summaries.values()))
        logger.info(
            "Location summaries preloaded. tour_id=%s stops=%d locations=%d",
            state.tour_id,
            len(stops),
            len(summaries),
        )
        return {"location_summaries": summaries, "stop_locations": stop_locations}

    async def _stop_location(self, stop: Mapping[str, Any]) -> Optional[Location]:
        if stop.get("latitude") is None or stop.get("longitude") is None:
            logger.warning("Stop has no coordinates, skipping location lookup. name=%s", stop.get("name"))
            return None
        country, city, neighborhood = stop.get("country"), stop.get("city"), stop.get("neighborhood")
        if city or neighborhood:
            return Location(country=country, city=city, neighborhood=neighborhood)

        try:
            found = await self._geocoder.lookup(latitude=float(stop["latitude"]), longitude=float(stop["longitude"]))
        except Exception as exc:
            logger.warning("Reverse geocoding a stop failed. name=%s error=%s", stop.get("name"), exc)
            return Location(country=country, city=None, neighborhood=None)
        if found is None:
            return Location(country=country, city=None, neighborhood=None)

        if stop.get("place_id"):
            self._geo_index.update_location(
                stop["place_id"],
                country=found.country,
                city=found.city,
                neighborhood=found.neighborhood,
            )
        return found

    def _area_for_stop(self, state: GraphState, index: int) -> Mapping[str, Any]:
        locations = state.stop_locations or []
        key = locations[index] if index < len(locations) else None
        if key and key in (state.location_summaries or {}):
            return state.location_summaries[key]
        return state.area_context or {}

    async def generate_scripts(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        ctx.cancellation.raise_if_cancelled("generate_scripts")
        tour = state.tour
        stop_count = len(tour["stops"])

        # Slot targets: None is the intro, an int is a stop index.
        targets: List[Optional[int]] = []
        if not _slot_ok(state.scripts.get("intro")):
            targets.append(None)
        targets.extend(i for i in range(stop_count) if not _slot_ok(_stop_slot(state.scripts, i)))
        if not targets:
            logger.info("All scripts already generated. tour_id=%s", state.tour_id)
            return {}

        async def _generate(item: WorkItem) -> Dict[str, Any]:
            stop_index = item.payload
            if stop_index is None:
                prompt = build_intro_prompt(tour, location_summaries=state.location_summaries, language=state.language)
                label = "intro"
            else:
                prompt = build_stop_prompt(tour, stop_index, area=self._area_for_stop(state, stop_index), language=state.language)
                label = f"stop_{stop_index}"
            result = await race_with_cancellation(
                self._script_generator.generate(prompt, log_context=f"tour_id={state.tour_id} item={label}"),
                ctx.cancellation,
                poll_interval_seconds=self._cancellation.poll_interval_seconds,
                where=f"generate_scripts:{label}",
            )
            return {"status": "complete", "content": result.text, "model_used": result.model_used}

        items = [
            WorkItem(index=i, kind="intro" if target is None else "stop", payload=target)
            for i, target in enumerate(targets)
        ]
        outcomes = await fan_out(items, _generate, concurrency=self._settings.script_concurrency)
        update = _slots_update(
            stop_count,
            {targets[o.index]: (o.value if o.ok else _failed_slot(o)) for o in outcomes},
        )

        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(
            "Scripts generated. tour_id=%s requested=%d failed=%d",
            state.tour_id,
            len(outcomes),
            failed,
        )
        self._tours.update(state.tour_id, scripts=merge_slots(state.scripts, update))
        return {"scripts": update}

    async def synthesize_audio(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        ctx.cancellation.raise_if_cancelled("synthesize_audio")
        stop_count = len(state.tour["stops"])
        voice = resolve_voice(state.voice, state.language, self._settings)
        language_code = language_code_for_voice(voice)

        skipped: Dict[Optional[int], Dict[str, Any]] = {}
        targets: List[Optional[int]] = []
        for target in [None, *range(stop_count)]:
            script = state.scripts.get("intro") if target is None else _stop_slot(state.scripts, target)
            audio = state.audio_files.get("intro") if target is None else _stop_slot(state.audio_files, target)
            if _slot_ok(audio):
                continue
            if not _slot_ok(script):
                skipped[target] = {"status": "skipped", "error": "script unavailable"}
                continue
            targets.append(target)

        async def _synthesize(item: WorkItem) -> Dict[str, Any]:
            stop_index = item.payload
            script = state.scripts["intro"] if stop_index is None else _stop_slot(state.scripts, stop_index)
            text = trim_to_bytes(script["content"], self._settings.tts_max_bytes)
            url = await race_with_cancellation(
                self._synthesizer.synthesize(
                    text=text,
                    voice=voice,
                    language=language_code,
                    output_name=audio_file_name(state.tour_id, stop_index),
                ),
                ctx.cancellation,
                poll_interval_seconds=self._cancellation.poll_interval_seconds,
                where="synthesize_audio",
            )
            return {"status": "complete", "url": url}

        items = [
            WorkItem(index=i, kind="intro" if target is None else "stop", payload=target)
            for i, target in enumerate(targets)
        ]
        outcomes = await fan_out(items, _synthesize, concurrency=self._settings.audio_concurrency)
        assignments = dict(skipped)
        assignments.update({targets[o.index]: (o.value if o.ok else _failed_slot(o)) for o in outcomes})
        update = _slots_update(stop_count, assignments)

        logger.info(
            "Audio synthesized. tour_id=%s voice=%s requested=%d failed=%d skipped=%d",
            state.tour_id,
            voice,
            len(outcomes),
            sum(1 for o in outcomes if not o.ok),
            len(skipped),
        )
        self._tours.update(state.tour_id, audio_files=merge_slots(state.audio_files, update))
        return {"audio_files": update}

    async def finalize(self, state: GraphState, ctx: RunContext) -> Mapping[str, Any]:
        stop_count = len(state.tour["stops"])
        slots = [state.audio_files.get("intro"), *(_stop_slot(state.audio_files, i) for i in range(stop_count))]
        complete = sum(1 for slot in slots if _slot_ok(slot))
        if complete == len(slots):
            status = "complete"
        elif complete == 0:
            status = "failed"
        else:
            status = "partial"

        self._tours.update(
            state.tour_id,
            status=status,
            scripts=state.scripts,
            audio_files=state.audio_files,
        )
        logger.info(
            "Audioguide finished. session_id=%s tour_id=%s status=%s complete=%d total=%d",
            state.session_id,
            state.tour_id,
            status,
            complete,
            len(slots),
        )
        return {"status": status}
