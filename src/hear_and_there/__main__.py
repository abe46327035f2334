from __future__ import annotations

import argparse
import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiohttp

from hear_and_there.config import AppConfig, ConfigLoadRequest, YamlConfigLoader
from hear_and_there.core.models import AudioguideRequest, CandidateRequest
from hear_and_there.graph.engine import RunResult
from hear_and_there.llm import LLMInvoker
from hear_and_there.llm.adapters import InvokerCandidateLLM, InvokerScriptLLM, InvokerSummaryGenerator
from hear_and_there.logging import init_logging
from hear_and_there.providers.google_maps import GoogleMapsClient
from hear_and_there.providers.mock import MockSpeechSynthesizer, mock_collaborators
from hear_and_there.service import Collaborators, TourService

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hear-and-there", description="Walking tour and audioguide generator")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use deterministic mock collaborators instead of Google Maps and the LLM provider.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: suggest
    suggest_parser = subparsers.add_parser("suggest", help="Generate ranked tour suggestions for a location")
    suggest_parser.add_argument("--lat", type=float, required=True, help="Start latitude")
    suggest_parser.add_argument("--lon", type=float, required=True, help="Start longitude")
    suggest_parser.add_argument("--duration", type=int, default=60, help="Tour duration in minutes (default: 60)")
    suggest_parser.add_argument("--language", choices=("english", "hebrew"), default="english")
    suggest_parser.add_argument("--customization", default=None, help="Free-text preference for the tours")
    suggest_parser.add_argument("--session-id", default=None, help="Session id (default: a new UUID)")

    # Command: audioguide
    audioguide_parser = subparsers.add_parser(
        "audioguide",
        help="Generate scripts and audio for a suggested tour (requires storage.data_dir to share sessions)",
    )
    audioguide_parser.add_argument("--session-id", required=True)
    audioguide_parser.add_argument("--tour-id", required=True)
    audioguide_parser.add_argument("--language", choices=("english", "hebrew"), default="english")
    audioguide_parser.add_argument("--voice", default=None, help="Speech voice name (default depends on language)")

    # Command: cancel
    cancel_parser = subparsers.add_parser("cancel", help="Cancel the running work of a session")
    cancel_parser.add_argument("--session-id", required=True)

    return parser


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


@asynccontextmanager
async def _collaborators(config: AppConfig, *, mock: bool) -> AsyncIterator[Collaborators]:
    if mock:
        yield mock_collaborators()
        return

    async with aiohttp.ClientSession() as http:
        maps = GoogleMapsClient(settings=config.google_maps, session=http)
        invoker = LLMInvoker(llm=config.llm)
        logger.warning("No speech provider is configured; audio references are placeholders.")
        yield Collaborators(
            geocoder=maps,
            poi_search=maps,
            summary_generator=InvokerSummaryGenerator(invoker=invoker),
            candidate_llm=InvokerCandidateLLM(invoker=invoker),
            script_llm=InvokerScriptLLM(invoker=invoker),
            synthesizer=MockSpeechSynthesizer(),
            route_validator=maps,
        )


def _print_result(result: RunResult, *, field: str) -> None:
    state = result.state
    payload = {
        "status": result.status,
        "thread_id": result.thread_id,
        "steps": list(result.steps_run),
        "errors": state.errors,
        field: state[field],
    }
    if result.error:
        payload["error"] = result.error
    print(json.dumps(payload, indent=2, ensure_ascii=False))


async def _suggest(args: argparse.Namespace, config: AppConfig) -> None:
    request = CandidateRequest(
        session_id=args.session_id or str(uuid.uuid4()),
        latitude=args.lat,
        longitude=args.lon,
        duration_minutes=args.duration,
        language=args.language,
        customization=args.customization,
    )
    async with _collaborators(config, mock=args.mock) as collaborators:
        service = TourService(config=config, collaborators=collaborators)
        try:
            result = await service.suggest_tours(request)
        finally:
            await service.aclose()
    _print_result(result, field="final_tours")


async def _audioguide(args: argparse.Namespace, config: AppConfig) -> None:
    request = AudioguideRequest(
        session_id=args.session_id,
        tour_id=args.tour_id,
        language=args.language,
        voice=args.voice,
    )
    async with _collaborators(config, mock=args.mock) as collaborators:
        service = TourService(config=config, collaborators=collaborators)
        try:
            result = await service.generate_audioguide(request)
        finally:
            await service.aclose()
    _print_result(result, field="audio_files")


async def _cancel(args: argparse.Namespace, config: AppConfig) -> None:
    if not config.storage.data_dir:
        logger.warning("storage.data_dir is not set; the cancellation is only visible to this process.")
    service = TourService(config=config, collaborators=mock_collaborators())
    service.cancel(args.session_id)


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    config = await _load_config(args)
    init_logging(config.logging)
    logger.info("Starting command. command=%s mock=%s", args.command, args.mock)

    if args.command == "suggest":
        await _suggest(args, config)
    elif args.command == "audioguide":
        await _audioguide(args, config)
    elif args.command == "cancel":
        await _cancel(args, config)


def main() -> None:
    try:
        asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")


if __name__ == "__main__":
    main()
