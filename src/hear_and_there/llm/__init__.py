"""Shared LLM helpers, settings and collaborator adapters."""

from hear_and_there.llm.invoker import LLMInvoker, create_chat_model
from hear_and_there.llm.settings import LLMSettings

__all__ = ["LLMInvoker", "LLMSettings", "create_chat_model"]
