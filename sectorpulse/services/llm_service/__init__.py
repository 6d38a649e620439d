"""LLM Service: streamed narrative summaries.

Callers hand it finished prompts, either k-anonymity-checked statistics or a
respondent's own answers; nothing here reads the database.
"""

from .base_llm import (
    AnthropicLLM,
    BaseLLM,
    LLMConfig,
    LLMNotConfiguredError,
    LLMProvider,
    LLMResponse,
    OpenAILLM,
    create_llm,
    llm_from_env,
)
from .events import DONE_EVENT, STREAM_ERROR_MESSAGE, format_event, sse_events

__all__ = [
    "AnthropicLLM",
    "BaseLLM",
    "LLMConfig",
    "LLMNotConfiguredError",
    "LLMProvider",
    "LLMResponse",
    "OpenAILLM",
    "create_llm",
    "llm_from_env",
    "DONE_EVENT",
    "STREAM_ERROR_MESSAGE",
    "format_event",
    "sse_events",
]
