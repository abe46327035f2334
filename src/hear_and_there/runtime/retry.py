from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

import aiohttp

from hear_and_there.config.models import RetrySettings
from hear_and_there.errors import TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_HTTP_ERRORS: tuple[type[BaseException], ...] = (
    TransientProviderError,
    aiohttp.ClientConnectorError,
    aiohttp.ClientOSError,
    aiohttp.ServerDisconnectedError,
    asyncio.TimeoutError,
    ConnectionResetError,
)

_RETRYABLE_MESSAGE_MARKERS = ("rate limit", "quota", "resource_exhausted", "resource exhausted", "429", "503")


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status", "status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable_status(status: Optional[int]) -> bool:
    if status is None:
        return False
    return status in (403, 408, 429) or status >= 500


def is_retryable_error(exc: BaseException) -> bool:
    """
    Decide whether a provider failure is transient.

    Rate limits, quota exhaustion, server errors, network errors and timeouts are
    retryable. Anything else (bad request, auth misconfiguration, parse errors) is fatal.
    """
    if isinstance(exc, aiohttp.ClientResponseError):
        return is_retryable_status(exc.status)
    if isinstance(exc, _RETRYABLE_HTTP_ERRORS):
        return True
    if is_retryable_status(_status_of(exc)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RETRYABLE_MESSAGE_MARKERS)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    backoff_factor: float = 2.0

    def __post_init__(self) -> None:
        # The first call always happens; zero or negative counts mean "no retries".
        if self.max_attempts < 1:
            object.__setattr__(self, "max_attempts", 1)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.base_delay_seconds,
            backoff_factor=settings.backoff_factor,
        )

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_seconds * (self.backoff_factor ** (attempt - 1))


async def retry_async(
    operation: str,
    *,
    policy: RetryPolicy,
    make_call: Callable[[], Awaitable[T]],
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    log_context: str = "",
) -> T:
    last_error: BaseException | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await make_call()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            last_error = exc
            if attempt >= policy.max_attempts:
                break
            delay_seconds = policy.delay_for(attempt)
            logger.warning(
                "Retrying provider call. operation=%s attempt=%s/%s delay_seconds=%s %s error=%s",
                operation,
                attempt,
                policy.max_attempts,
                delay_seconds,
                log_context,
                type(exc).__name__,
            )
            await asyncio.sleep(delay_seconds)

    if last_error is None:
        raise RuntimeError(f"Retry loop made no attempt. operation={operation}")
    raise last_error


class TextModel(Protocol):
    async def generate(self, *, prompt: str, use_fallback: bool = False) -> str:
        ...


@dataclass(frozen=True, slots=True)
class GenerationResult:
    text: str
    model_used: str


class ModelFallbackGenerator:
    """
    Text generation with bounded retries and a one-way switch to a fallback model.

    The primary model is retried on transient errors. Once its retries are exhausted
    the fallback model (when configured) gets its own retry budget. Fatal errors
    propagate immediately.
    """

    def __init__(
        self,
        *,
        llm: TextModel,
        policy: RetryPolicy,
        primary_model: str,
        fallback_model: Optional[str],
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    ) -> None:
        self._llm = llm
        self._policy = policy
        self._primary_model = primary_model
        self._fallback_model = fallback_model
        self._is_retryable = is_retryable

    async def generate(self, prompt: str, *, log_context: str = "") -> GenerationResult:
        try:
            text = await retry_async(
                "generate_text",
                policy=self._policy,
                make_call=lambda: self._call(prompt, use_fallback=False),
                is_retryable=self._is_retryable,
                log_context=log_context,
            )
            return GenerationResult(text=text, model_used=self._primary_model)
        except Exception as exc:
            if not self._fallback_model or not self._is_retryable(exc):
                raise
            logger.warning(
                "Primary model exhausted retries, switching to fallback. primary=%s fallback=%s %s error=%s",
                self._primary_model,
                self._fallback_model,
                log_context,
                type(exc).__name__,
            )

        text = await retry_async(
            "generate_text_fallback",
            policy=self._policy,
            make_call=lambda: self._call(prompt, use_fallback=True),
            is_retryable=self._is_retryable,
            log_context=log_context,
        )
        return GenerationResult(text=text, model_used=self._fallback_model)

    async def _call(self, prompt: str, *, use_fallback: bool) -> str:
        text = await self._llm.generate(prompt=prompt, use_fallback=use_fallback)
        if not text or not text.strip():
            raise TransientProviderError("Model returned empty text.")
        return text.strip()
