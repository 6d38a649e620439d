"""Base LLM interface and implementations.

Provides an abstract base class and concrete implementations for the
providers used to write narrative summaries (Anthropic and OpenAI). Text is
streamed chunk by chunk so HTTP handlers can forward it as server-sent
events.
"""
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 60000


class LLMProvider(Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


DEFAULT_MODELS = {
    LLMProvider.ANTHROPIC: "claude-sonnet-4-6",
    LLMProvider.OPENAI: "gpt-4o",
}

_PROVIDER_KEY_VARS = {
    LLMProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    LLMProvider.OPENAI: "OPENAI_API_KEY",
}


class LLMNotConfiguredError(RuntimeError):
    """No API key is available for the configured provider."""
    pass


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for LLM inference."""
    provider: LLMProvider
    model_name: str
    api_key: Optional[str] = None
    max_tokens: int = 1024
    temperature: float = 0.3
    timeout_seconds: int = 60

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Create config from environment variables.

        Environment variables:
            LLM_PROVIDER: anthropic or openai (default anthropic)
            LLM_MODEL: Model name (default per provider)
            LLM_API_KEY: API key; falls back to ANTHROPIC_API_KEY or
                OPENAI_API_KEY for the chosen provider
            LLM_TIMEOUT_SECONDS: Request timeout (default 60)
        """
        raw_provider = os.getenv("LLM_PROVIDER", LLMProvider.ANTHROPIC.value).strip().lower()
        try:
            provider = LLMProvider(raw_provider)
        except ValueError:
            logger.warning("LLM_PROVIDER_UNKNOWN", extra={"provider": raw_provider})
            provider = LLMProvider.ANTHROPIC

        api_key = os.getenv("LLM_API_KEY") or os.getenv(_PROVIDER_KEY_VARS[provider])
        try:
            timeout = int(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
        except ValueError:
            timeout = 60

        return cls(
            provider=provider,
            model_name=os.getenv("LLM_MODEL") or DEFAULT_MODELS[provider],
            api_key=api_key or None,
            timeout_seconds=timeout if timeout > 0 else 60,
        )


@dataclass
class LLMResponse:
    """Response from LLM inference."""
    text: str
    model: str
    provider: str
    latency_ms: Optional[float] = None


class BaseLLM(ABC):
    """Abstract base class for LLM implementations."""

    def __init__(self, config: LLMConfig):
        """Initialize LLM with configuration.

        Args:
            config: LLM configuration

        Raises:
            LLMNotConfiguredError: If no API key is set
        """
        if not config.is_configured:
            raise LLMNotConfiguredError(f"{config.provider.value} API key required")

        self.config = config
        logger.info(
            "LLM_INITIALIZED",
            extra={
                "provider": config.provider.value,
                "model": config.model_name,
            }
        )

    @abstractmethod
    def stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        """Stream generated text.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt for context
            max_tokens: Overrides the configured token limit

        Yields:
            Text chunks in generation order

        Raises:
            ValueError: If the prompt is invalid
        """
        pass

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Generate the full response by draining ``stream``."""
        start_time = time.time()
        text = "".join(self.stream(prompt, system_prompt, max_tokens))
        return LLMResponse(
            text=text,
            model=self.config.model_name,
            provider=self.config.provider.value,
            latency_ms=(time.time() - start_time) * 1000,
        )

    def validate_prompt(self, prompt: str) -> bool:
        """Validate prompt before sending to LLM.

        Args:
            prompt: The prompt to validate

        Returns:
            True if valid, False otherwise
        """
        if not prompt or not prompt.strip():
            logger.warning("LLM_PROMPT_EMPTY")
            return False

        if len(prompt) > MAX_PROMPT_CHARS:
            logger.warning(
                "LLM_PROMPT_TOO_LONG",
                extra={"length": len(prompt)}
            )
            return False

        return True

    def _messages(self, prompt: str) -> List[Dict[str, str]]:
        if not self.validate_prompt(prompt):
            raise ValueError("Invalid prompt")
        return [{"role": "user", "content": prompt}]


class AnthropicLLM(BaseLLM):
    """Anthropic Messages API implementation."""

    def __init__(self, config: LLMConfig):
        super().__init__(config)

        import anthropic
        self.client = anthropic.Anthropic(
            api_key=config.api_key, timeout=config.timeout_seconds
        )

    def stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        messages = self._messages(prompt)
        request = {
            "model": self.config.model_name,
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": messages,
        }
        if system_prompt:
            request["system"] = system_prompt

        chunks = 0
        try:
            with self.client.messages.stream(**request) as stream:
                for text in stream.text_stream:
                    chunks += 1
                    yield text
        except Exception as e:
            logger.error(
                "LLM_STREAM_FAILED",
                extra={
                    "provider": self.config.provider.value,
                    "model": self.config.model_name,
                    "error": str(e),
                }
            )
            raise

        logger.info(
            "LLM_STREAM_COMPLETED",
            extra={"model": self.config.model_name, "chunks": chunks}
        )


class OpenAILLM(BaseLLM):
    """OpenAI Chat Completions implementation."""

    def __init__(self, config: LLMConfig):
        super().__init__(config)

        import openai
        self.client = openai.OpenAI(
            api_key=config.api_key, timeout=config.timeout_seconds
        )

    def stream(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> Iterator[str]:
        messages = self._messages(prompt)
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        chunks = 0
        try:
            response = self.client.chat.completions.create(
                model=self.config.model_name,
                messages=messages,
                max_tokens=max_tokens or self.config.max_tokens,
                temperature=self.config.temperature,
                stream=True,
            )
            for chunk in response:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    chunks += 1
                    yield text
        except Exception as e:
            logger.error(
                "LLM_STREAM_FAILED",
                extra={
                    "provider": self.config.provider.value,
                    "model": self.config.model_name,
                    "error": str(e),
                }
            )
            raise

        logger.info(
            "LLM_STREAM_COMPLETED",
            extra={"model": self.config.model_name, "chunks": chunks}
        )


def create_llm(config: LLMConfig) -> BaseLLM:
    """Factory function to create LLM instance.

    Args:
        config: LLM configuration

    Returns:
        BaseLLM instance

    Raises:
        ValueError: If provider not supported
        LLMNotConfiguredError: If no API key is set
    """
    if config.provider is LLMProvider.ANTHROPIC:
        return AnthropicLLM(config)
    elif config.provider is LLMProvider.OPENAI:
        return OpenAILLM(config)
    else:
        raise ValueError(f"Unsupported provider: {config.provider}")


def llm_from_env() -> Optional[BaseLLM]:
    """LLM built from the environment, or None when no API key is set."""
    config = LLMConfig.from_env()
    if not config.is_configured:
        logger.info("LLM_NOT_CONFIGURED", extra={"provider": config.provider.value})
        return None
    return create_llm(config)
