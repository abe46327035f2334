from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Type, TypeVar

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from hear_and_there.llm.settings import LLMSettings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def create_chat_model(settings: LLMSettings, *, model: Optional[str] = None) -> BaseChatModel:
    """Create a LangChain chat model for the configured provider."""
    model_name = model or settings.model
    if settings.provider == "crynux":
        from langchain_crynux import ChatCrynux

        return ChatCrynux(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=model_name,
            temperature=settings.temperature,
            request_timeout=settings.timeout_seconds,
            max_retries=settings.max_retries,
        )

    from langchain_google_genai import ChatGoogleGenerativeAI

    return ChatGoogleGenerativeAI(
        model=model_name,
        google_api_key=settings.api_key or None,
        temperature=settings.temperature,
        timeout=settings.timeout_seconds,
        max_retries=settings.max_retries,
    )


def content_text(content: Any) -> str:
    """Flatten LangChain message content (a string or a list of parts) to plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return "" if content is None else str(content)


class LLMInvoker:
    """
    Thin wrapper over a primary chat model and an optional fallback model.

    Models are created once, at construction, and shared by every request.
    """

    def __init__(
        self,
        *,
        llm: LLMSettings,
        chat_model: Optional[BaseChatModel] = None,
        fallback_chat_model: Optional[BaseChatModel] = None,
    ) -> None:
        self._llm_config = llm
        self._llm = chat_model or create_chat_model(llm)
        if fallback_chat_model is not None:
            self._fallback_llm: Optional[BaseChatModel] = fallback_chat_model
        elif llm.fallback_model and chat_model is None:
            self._fallback_llm = create_chat_model(llm, model=llm.fallback_model)
        else:
            self._fallback_llm = None

    def _model(self, use_fallback: bool) -> BaseChatModel:
        if use_fallback:
            if self._fallback_llm is None:
                raise RuntimeError("No fallback model is configured.")
            return self._fallback_llm
        return self._llm

    @staticmethod
    def _messages(system_prompt: str, user_content: str) -> list[BaseMessage]:
        messages: list[BaseMessage] = []
        if system_prompt.strip():
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=user_content))
        return messages

    async def invoke_llm(
        self,
        *,
        system_prompt: str,
        user_content: str,
        response_model: Type[T],
    ) -> T:
        structured_llm = self._llm.with_structured_output(response_model)
        result = await asyncio.wait_for(
            structured_llm.ainvoke(self._messages(system_prompt, user_content)),
            timeout=self._llm_config.timeout_seconds,
        )
        if result is None:
            raise RuntimeError("LLM returned null structured output.")
        try:
            return response_model.model_validate(result)
        except Exception as exc:
            raise RuntimeError(
                f"LLM returned unexpected structured output. expected={response_model.__name__} got={type(result).__name__}"
            ) from exc

    async def invoke_text(self, *, system_prompt: str, user_content: str, use_fallback: bool = False) -> str:
        response = await asyncio.wait_for(
            self._model(use_fallback).ainvoke(self._messages(system_prompt, user_content)),
            timeout=self._llm_config.timeout_seconds,
        )
        return content_text(response.content)

    async def stream_text(self, *, system_prompt: str, user_content: str) -> AsyncIterator[str]:
        async for chunk in self._llm.astream(self._messages(system_prompt, user_content)):
            text = content_text(chunk.content)
            if text:
                yield text
