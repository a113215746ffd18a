"""
Configuration for the trip chat service.

Everything is read from environment variables (a local .env file is loaded
by main.py before this module is imported).  Defaults are tuned for a
single-process deployment with an in-memory session store.
"""

import os


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


# ---------------------------------------------------------------------------
# LLM (supports OpenAI, Gemini, Claude via LLM_PROVIDER)
# ---------------------------------------------------------------------------

LLM_DEFAULTS = {
    "openai":    "gpt-4o-mini",
    "gemini":    "gemini-2.0-flash",
    "anthropic": "claude-sonnet-4-20250514",
}

LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai").lower().strip()
LLM_MODEL: str = os.getenv("LLM_MODEL", "")
LLM_TEMPERATURE: float = _float("LLM_TEMPERATURE", 0.7)
LLM_TIMEOUT_SECONDS: float = _float("LLM_TIMEOUT_SECONDS", 40.0)
LLM_MAX_RETRIES: int = _int("LLM_MAX_RETRIES", 2)
LLM_BACKOFF_SECONDS: float = _float("LLM_BACKOFF_SECONDS", 1.0)


def llm_name(provider: str | None = None, model: str | None = None) -> str:
    """Return the litellm model string (provider/model format)."""
    provider = (provider or LLM_PROVIDER).lower().strip()
    if provider not in LLM_DEFAULTS:
        provider = "openai"
    model = model or LLM_MODEL or LLM_DEFAULTS[provider]
    if provider == "openai":
        return model  # litellm uses bare model name for OpenAI
    return f"{provider}/{model}"


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

CLASSIFIER_CONFIDENCE_THRESHOLD: float = _float("CLASSIFIER_CONFIDENCE_THRESHOLD", 0.65)

# ---------------------------------------------------------------------------
# Limits: planning (first request) and editing are configured separately
# ---------------------------------------------------------------------------

PLANNING_MAX_DESTINATIONS: int = _int("PLANNING_MAX_DESTINATIONS", 5)
PLANNING_MAX_DAYS_PER_CITY: int = _int("PLANNING_MAX_DAYS_PER_CITY", 30)

MODIFICATION_MAX_DESTINATIONS: int = _int("MODIFICATION_MAX_DESTINATIONS", 5)
MODIFICATION_MIN_DAYS: int = _int("MODIFICATION_MIN_DAYS", 1)
MODIFICATION_MAX_DAYS: int = _int("MODIFICATION_MAX_DAYS", 15)

# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

SESSION_BACKEND: str = os.getenv("SESSION_BACKEND", "memory")   # memory | sql
SESSION_DB_URL: str = os.getenv("SESSION_DB_URL", "sqlite:///./nomad_sessions.db")
SESSION_TTL_SECONDS: int = _int("SESSION_TTL_SECONDS", 24 * 60 * 60)

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
