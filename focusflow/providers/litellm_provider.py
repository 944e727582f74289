"""LiteLLM provider implementation for multi-provider support."""

import asyncio
import logging
import time
from typing import Any

import litellm
from litellm import acompletion

from focusflow.logging import get_logger, mask_secret
from focusflow.providers.base import LLMProvider, LLMResponse

logger = get_logger("focusflow.providers.litellm")


_ALLOWED_MSG_KEYS = frozenset({"role", "content", "name"})


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM for multi-provider support.

    Model names follow LiteLLM conventions (``gpt-4o``,
    ``anthropic/claude-sonnet-4-5``, ``ollama/llama3``...). Failures are
    reported as an ``LLMResponse`` with ``finish_reason="error"`` rather than
    raised.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "gpt-4o",
        resilience_config: Any | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model

        # Resilience: timeout / retry / circuit-breaker
        self._resilience = resilience_config  # ResilienceConfig or None
        self._consecutive_failures: int = 0
        self._circuit_open_until: float = 0.0

        if api_key:
            logger.info("provider_initialized", model=default_model, api_key=mask_secret(api_key))

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True
        # Drop unsupported parameters for providers
        litellm.drop_params = True

    @staticmethod
    def _sanitize_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Strip non-standard keys and replace empty content, which strict providers reject."""
        sanitized = []
        for msg in messages:
            clean = {k: v for k, v in msg.items() if k in _ALLOWED_MSG_KEYS}
            if not clean.get("content"):
                clean["content"] = "(empty)"
            sanitized.append(clean)
        return sanitized

    def _check_circuit_breaker(self) -> str | None:
        """Return an error message if the circuit is open, else None."""
        rc = self._resilience
        if not rc or rc.circuit_breaker_threshold <= 0:
            return None
        if self._consecutive_failures < rc.circuit_breaker_threshold:
            return None
        now = time.monotonic()
        if now < self._circuit_open_until:
            return (
                f"Circuit breaker open: {self._consecutive_failures} consecutive failures. "
                f"Retry after {int(self._circuit_open_until - now)}s cooldown."
            )
        # Cooldown expired → half-open: allow one trial attempt
        return None

    def _record_result(self, success: bool) -> None:
        """Update circuit-breaker counters after a call."""
        rc = self._resilience
        if not rc or rc.circuit_breaker_threshold <= 0:
            return
        if success:
            self._consecutive_failures = 0
            self._circuit_open_until = 0.0
        else:
            self._consecutive_failures += 1
            if self._consecutive_failures >= rc.circuit_breaker_threshold:
                self._circuit_open_until = time.monotonic() + rc.circuit_breaker_cooldown
                logger.warning(
                    "circuit_breaker_opened",
                    failures=self._consecutive_failures,
                    cooldown=rc.circuit_breaker_cooldown,
                )

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """
        Send a chat completion request via LiteLLM.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            model: Model identifier (e.g., 'anthropic/claude-sonnet-4-5').
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature.

        Returns:
            LLMResponse with the reply text, or an error response.
        """
        model = model or self.default_model

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._sanitize_messages(messages),
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        if logging.getLogger("focusflow").isEnabledFor(logging.DEBUG):
            logger.debug(
                "litellm_request",
                model=model,
                message_count=len(kwargs["messages"]),
                system_chars=len(kwargs["messages"][0]["content"]) if kwargs["messages"] else 0,
            )

        try:
            cb_error = self._check_circuit_breaker()
            if cb_error:
                return LLMResponse(content=f"Error calling LLM: {cb_error}", finish_reason="error")

            # LiteLLM built-in retry + timeout
            rc = self._resilience
            if rc:
                kwargs["request_timeout"] = rc.timeout
                kwargs["num_retries"] = rc.max_retries

            # asyncio.wait_for safety net
            safety_timeout = (rc.timeout + 30) if rc else None
            coro = acompletion(**kwargs)
            if safety_timeout:
                response = await asyncio.wait_for(coro, timeout=safety_timeout)
            else:
                response = await coro

            self._record_result(True)
            return self._parse_response(response)
        except asyncio.TimeoutError:
            self._record_result(False)
            logger.error("llm_call_timeout", model=model)
            return LLMResponse(
                content="Error calling LLM: request timed out",
                finish_reason="error",
            )
        except Exception as e:
            self._record_result(False)
            error_msg = str(e)
            if self.api_key and self.api_key in error_msg:
                error_msg = error_msg.replace(self.api_key, mask_secret(self.api_key))
            logger.error("llm_call_failed", model=model, error=error_msg)
            return LLMResponse(
                content=f"Error calling LLM: {error_msg}",
                finish_reason="error",
            )

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return LLMResponse(
            content=choice.message.content,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        """Get the default model."""
        return self.default_model
