from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

LLMProvider = Literal["google_genai", "crynux"]


class LLMSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    provider: LLMProvider = "google_genai"
    base_url: str = ""
    api_key: str = ""
    model: str = "gemini-2.5-flash"
    # Used by script generation once the primary model exhausts its retries.
    fallback_model: Optional[str] = "gemini-2.5-pro"
    temperature: float = 0.7
    timeout_seconds: float = 120
    max_retries: int = 1
