"""LLM client module.

Routes chat completions through LiteLLM so extraction, suggestions and
summaries can each point at whichever provider/model the deployment uses
(``gemini/...``, ``openai/...``, ``anthropic/...``).
"""

from __future__ import annotations

import logging
import time
from typing import Any

import litellm
from litellm import acompletion

from salesister.core.exceptions import ExternalServiceError
from salesister.core.resilience import CircuitBreaker, CircuitBreakerOpen, llm_circuit_breaker

# Unsupported optional params (top_p, response_format) are dropped per provider
litellm.drop_params = True

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini/gemini-2.5-flash"
DEFAULT_MAX_TOKENS = 4096


def _prepend_system_message(
    system_prompt: str | None,
    messages: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Convert a separate system_prompt into an OpenAI-style system message.

    LiteLLM expects the system prompt as the first message with
    ``role: "system"`` rather than a separate ``system`` kwarg.
    """
    if not system_prompt:
        return list(messages)
    return [{"role": "system", "content": system_prompt}, *messages]


class LLMClient:
    """Async chat-completion client.

    Args:
        model: LiteLLM model string.
        api_key: Provider API key; None lets LiteLLM read provider env vars.
        circuit_breaker: Breaker guarding the provider.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        circuit_breaker: CircuitBreaker = llm_circuit_breaker,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._circuit_breaker = circuit_breaker

    @property
    def model(self) -> str:
        return self._model

    async def generate_response(
        self,
        messages: list[dict[str, Any]],
        system_prompt: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.7,
        top_p: float | None = None,
        json_mode: bool = False,
    ) -> str:
        """Generate a single completion.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            system_prompt: Optional system prompt.
            max_tokens: Maximum tokens in the response.
            temperature: Sampling temperature.
            top_p: Optional nucleus sampling value.
            json_mode: Ask the provider for a strict JSON object response.

        Returns:
            The response text (possibly empty).

        Raises:
            CircuitBreakerOpen: If the provider circuit is open.
            ExternalServiceError: If the provider call fails. The message is
                ``"API error: <status>"`` when the provider returned a status.
        """
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _prepend_system_message(system_prompt, messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if top_p is not None:
            kwargs["top_p"] = top_p
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if self._api_key:
            kwargs["api_key"] = self._api_key

        logger.debug(
            "Calling LLM via LiteLLM",
            extra={
                "model": self._model,
                "message_count": len(messages),
                "has_system": system_prompt is not None,
                "json_mode": json_mode,
            },
        )

        start = time.time()
        try:
            response = await self._circuit_breaker.call(acompletion, **kwargs)
        except CircuitBreakerOpen:
            raise
        except Exception as exc:
            status = getattr(exc, "status_code", None)
            logger.warning(
                "LLM call failed",
                extra={"model": self._model, "status_code": status, "error": str(exc)},
            )
            message = f"API error: {status}" if status else f"API error: {exc}"
            raise ExternalServiceError("llm", message, upstream_status=status) from exc

        text_content = str(response.choices[0].message.content or "")
        logger.debug(
            "LLM response received",
            extra={
                "model": self._model,
                "response_length": len(text_content),
                "latency_ms": int((time.time() - start) * 1000),
            },
        )
        return text_content

    async def generate_json(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.3,
    ) -> str:
        """One system+user completion in strict JSON mode; returns the raw text."""
        return await self.generate_response(
            messages=[{"role": "user", "content": user_prompt}],
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            json_mode=True,
        )
