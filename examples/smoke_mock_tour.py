from __future__ import annotations

import asyncio
import logging
import uuid

from hear_and_there.providers.mock import mock_collaborators
from hear_and_there.config import YamlConfigLoader
from hear_and_there.config.models import ConfigLoadRequest
from hear_and_there.core.models import AudioguideRequest, CandidateRequest
from hear_and_there.logging import init_logging
from hear_and_there.service import TourService


async def main() -> None:
    config = await YamlConfigLoader().load(ConfigLoadRequest(yaml_path="data/config/config.yaml"))
    init_logging(config.logging)

    logger = logging.getLogger("smoke")
    logger.info("Config loaded data_dir=%s llm_provider=%s", config.storage.data_dir, config.llm.provider)

    service = TourService(config=config, collaborators=mock_collaborators())
    session_id = str(uuid.uuid4())
    try:
        suggested = await service.suggest_tours(
            CandidateRequest(session_id=session_id, latitude=32.0603, longitude=34.7657, duration_minutes=60)
        )
        logger.info("Suggestions status=%s tours=%d", suggested.status, len(suggested.state.final_tours))
        if not suggested.state.final_tours:
            return

        tour_id = suggested.state.final_tours[0]["id"]
        guide = await service.generate_audioguide(AudioguideRequest(session_id=session_id, tour_id=tour_id))
        logger.info("Audioguide status=%s tour_status=%s", guide.status, guide.state.status)
    finally:
        await service.aclose()


if __name__ == "__main__":
    asyncio.run(main())
