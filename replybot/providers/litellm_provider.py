"""LiteLLM provider implementation for multi-provider support."""

import os
import time
from typing import Any, Callable
from dataclasses import dataclass

import litellm
from litellm import acompletion
from loguru import logger

from replybot.providers.base import LLMProvider, LLMResponse


@dataclass
class ModelHealth:
    """Failure state of one model. Times are epoch seconds."""
    failure_count: int = 0
    retry_at: float = 0.0
    last_error: str = ""

    def record_failure(self, error: str, now: float, cooldown_seconds: int) -> None:
        self.failure_count += 1
        self.retry_at = now + cooldown_seconds
        self.last_error = error

    def record_success(self) -> None:
        self.failure_count = 0
        self.last_error = ""

    def is_available(self, now: float) -> bool:
        """A failed model becomes available again once its cooldown ends."""
        return self.failure_count == 0 or now >= self.retry_at


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM.

    Model names carry the provider prefix LiteLLM expects
    (``gemini/gemini-1.5-flash``, ``openai/gpt-4o-mini``, ...). When the
    primary model fails, configured fallback models are tried in order;
    a failed model is skipped until its cooldown expires.
    """

    # Environment variable LiteLLM reads for each provider prefix
    ENV_KEYS = {
        "gemini": "GEMINI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "openai": "OPENAI_API_KEY",
        "openrouter": "OPENROUTER_API_KEY",
        "deepseek": "DEEPSEEK_API_KEY",
    }

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "gemini/gemini-1.5-flash",
        fallback_models: list[str] | None = None,
        cooldown_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.fallback_models = fallback_models or []
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

        self._health: dict[str, ModelHealth] = {}
        self._total_tokens = 0
        self._request_count = 0

        self._export_api_key(api_key, default_model)
        litellm.suppress_debug_info = True

    def _export_api_key(self, api_key: str | None, model: str) -> None:
        """Export the API key under the variable LiteLLM looks up.

        A key already present in the environment wins over the configured one.
        Model names without a provider prefix are treated as OpenAI models.
        """
        if not api_key:
            return
        prefix = model.split("/", 1)[0] if "/" in model else "openai"
        env_key = self.ENV_KEYS.get(prefix)
        if env_key:
            os.environ.setdefault(env_key, api_key)

    def _candidate_models(self, model: str) -> list[str]:
        """Requested model first, then fallbacks, minus models cooling down."""
        now = self._clock()
        ordered = [model] + [m for m in self.fallback_models if m != model]
        return [
            m for m in ordered
            if self._health.setdefault(m, ModelHealth()).is_available(now)
        ]

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        Send a chat completion request, failing over across models.

        Returns:
            LLMResponse; ``finish_reason == "error"`` when no model answered.
        """
        last_error = "no model available"

        for candidate in self._candidate_models(model or self.default_model):
            health = self._health[candidate]
            try:
                response = await self._complete(candidate, messages, max_tokens, temperature)
            except Exception as e:
                last_error = str(e)
                logger.warning(f"Model {candidate} failed, cooling down for {self.cooldown_seconds}s: {e}")
                health.record_failure(last_error, self._clock(), self.cooldown_seconds)
                continue

            health.record_success()
            self._request_count += 1
            self._total_tokens += response.usage.get("total_tokens", 0)
            return response

        return LLMResponse(
            content=f"Error: All models failed. Last error: {last_error}",
            finish_reason="error",
        )

    async def _complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = dict(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if self.api_base:
            kwargs["api_base"] = self.api_base

        raw = await acompletion(**kwargs)
        choice = raw.choices[0]
        usage = getattr(raw, "usage", None)
        return LLMResponse(
            content=choice.message.content,
            finish_reason=choice.finish_reason or "stop",
            usage={
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "total_tokens": usage.total_tokens,
            } if usage else {},
        )

    def get_default_model(self) -> str:
        return self.default_model

    def get_usage_stats(self) -> dict[str, Any]:
        """Request and token counters plus the models currently cooling down."""
        now = self._clock()
        return {
            "request_count": self._request_count,
            "total_tokens": self._total_tokens,
            "unhealthy_models": [
                name for name, health in self._health.items()
                if not health.is_available(now)
            ],
        }
