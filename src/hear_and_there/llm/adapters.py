from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Mapping

from pydantic import BaseModel, ConfigDict, Field

from hear_and_there.core.models import SummaryData
from hear_and_there.llm.invoker import LLMInvoker
from hear_and_there.llm.prompts import (
    CANDIDATE_SYSTEM_PROMPT,
    NARRATION_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    build_summary_request,
)

logger = logging.getLogger(__name__)


class SummaryResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str
    key_facts: list[str] = Field(default_factory=list)


class InvokerSummaryGenerator:
    """SummaryGenerator backed by structured output of the shared LLM invoker."""

    def __init__(self, *, invoker: LLMInvoker) -> None:
        self._invoker = invoker

    async def summarize(self, *, place_name: str, context: str) -> SummaryData:
        result = await self._invoker.invoke_llm(
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            user_content=build_summary_request(place_name, context),
            response_model=SummaryResponse,
        )
        return SummaryData(summary=result.summary.strip() or None, key_facts=tuple(result.key_facts))


class InvokerScriptLLM:
    def __init__(self, *, invoker: LLMInvoker) -> None:
        self._invoker = invoker

    async def generate(self, *, prompt: str, use_fallback: bool = False) -> str:
        return await self._invoker.invoke_text(
            system_prompt=NARRATION_SYSTEM_PROMPT,
            user_content=prompt,
            use_fallback=use_fallback,
        )


class InvokerCandidateLLM:
    def __init__(self, *, invoker: LLMInvoker) -> None:
        self._invoker = invoker

    async def stream_generate(self, *, prompt: str, schema: Mapping[str, Any]) -> AsyncIterator[str]:
        user_content = (
            f"{prompt}\n\nEach array element must validate against this JSON schema:\n"
            f"{json.dumps(schema, ensure_ascii=False)}"
        )
        received = 0
        async for text in self._invoker.stream_text(system_prompt=CANDIDATE_SYSTEM_PROMPT, user_content=user_content):
            received += len(text)
            yield text
        logger.debug("Candidate stream finished. chars=%d", received)
