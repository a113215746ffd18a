"""
Text-generation client (litellm).

One ``complete()`` call = one logical LLM round-trip.  Transient failures
(timeouts, rate limits, 5xx, dropped connections) are retried with
exponential backoff + jitter; everything else is raised immediately as an
``LLMError`` subclass so callers never see provider-specific exceptions.
"""

from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Callable, Optional

import litellm

from nomad import config
from nomad.errors import (
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
    LLMUnavailableError,
    MalformedResponseError,
)

logger = logging.getLogger(__name__)

# Silence litellm's own verbose logging
litellm.suppress_debug_info = True
# Drop params unsupported by the active model (e.g. temperature on gpt-5)
litellm.drop_params = True

_UNAVAILABLE_STATUS = (500, 502, 503, 504)


def _safe_json_parse(text: str) -> Any:
    """Extract and parse JSON from an LLM response that may include markdown fences."""
    cleaned = (text or "").strip()
    if "```json" in cleaned:
        cleaned = cleaned.split("```json", 1)[1].split("```", 1)[0]
    elif "```" in cleaned:
        cleaned = cleaned.split("```", 1)[1].split("```", 1)[0]
    return json.loads(cleaned.strip())


def classify_exception(exc: Exception) -> LLMError:
    """Map a provider exception onto our error taxonomy."""
    if isinstance(exc, LLMError):
        return exc
    status = getattr(exc, "status_code", None)
    message = f"{type(exc).__name__}: {exc}"

    if isinstance(exc, (litellm.Timeout, TimeoutError)):
        return LLMTimeoutError(message)
    if isinstance(exc, litellm.RateLimitError) or status == 429:
        return LLMRateLimitError(message)
    if isinstance(exc, (
        litellm.ServiceUnavailableError,
        litellm.InternalServerError,
        litellm.APIConnectionError,
        ConnectionError,
    )) or status in _UNAVAILABLE_STATUS:
        return LLMUnavailableError(message)
    return LLMError(message)


class LLMClient:
    """Thin litellm wrapper with timeout, retries and JSON mode."""

    def __init__(
        self,
        model: Optional[str] = None,
        timeout: float = config.LLM_TIMEOUT_SECONDS,
        max_retries: int = config.LLM_MAX_RETRIES,
        backoff: float = config.LLM_BACKOFF_SECONDS,
        temperature: float = config.LLM_TEMPERATURE,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = model or config.llm_name()
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.temperature = temperature
        self._sleep = sleep

    def _delay(self, attempt: int) -> float:
        return self.backoff * (2 ** attempt) + random.uniform(0, self.backoff)

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        response_format: str = "text",
        temperature: Optional[float] = None,
    ) -> str:
        """Run one completion and return the text content.

        ``response_format="json"`` asks the provider for a JSON object.
        """
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature if temperature is None else temperature,
            "timeout": self.timeout,
        }
        if response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}

        attempt = 0
        while True:
            try:
                response = litellm.completion(**kwargs)
                content = response.choices[0].message.content
                if content is None:
                    raise MalformedResponseError("empty completion content")
                return content
            except Exception as exc:
                err = classify_exception(exc)
                if not err.retryable or attempt >= self.max_retries:
                    logger.warning(
                        "LLM call failed after %d attempt(s): %s", attempt + 1, err,
                    )
                    raise err from exc
                delay = self._delay(attempt)
                logger.info(
                    "LLM call hit %s, retrying in %.2fs (%d/%d)",
                    type(err).__name__, delay, attempt + 1, self.max_retries,
                )
                self._sleep(delay)
                attempt += 1

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
    ) -> Any:
        """Like ``complete()`` but parses the reply; raises MalformedResponseError."""
        raw = self.complete(system_prompt, user_prompt, response_format="json",
                            temperature=temperature)
        try:
            return _safe_json_parse(raw)
        except (ValueError, TypeError) as exc:
            raise MalformedResponseError(f"could not parse JSON reply: {exc}") from exc


def build_llm_client() -> LLMClient:
    return LLMClient()
