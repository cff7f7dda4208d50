"""
Configuration Management
========================

Centralized, typed configuration loaded from environment variables
(and a .env file, via python-dotenv).

Sections:
- llm: the OpenAI-compatible inference provider (Groq by default)
- supabase: the task / conversation / identity store
- assistant: orchestrator behaviour (context window, temperatures,
  structured output strategy, undo window, working hours)
- server: HTTP bind address

STORE_BACKEND selects where data lives:
- "supabase" (default): SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required
- "memory": an in-process store, for local development

Usage:
    from taskpilot.utils.config import get_config

    config = get_config()
    print(config.llm.model)
    print(config.assistant.conversation_window)
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _required(name: str) -> str:
    """
    Get a required environment variable.

    Raises:
        ValueError: If the variable is not set
    """
    value = os.getenv(name)
    if not value:
        raise ValueError(
            f"Missing required environment variable: {name}\n"
            f"Please ensure {name} is set in your .env file."
        )
    return value


def _optional(name: str, default: str) -> str:
    return os.getenv(name, default)


def _optional_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        print(f"Warning: {name} is not a valid integer, using default: {default}")
        return default


def _optional_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        print(f"Warning: {name} is not a valid number, using default: {default}")
        return default


def _optional_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes")


# ==============================================================================
# Configuration Dataclasses
# ==============================================================================

@dataclass(frozen=True)
class LLMConfig:
    """Inference provider configuration."""
    api_key: str            # Provider API key (GROQ_API_KEY is accepted as a fallback)
    base_url: str           # OpenAI-compatible endpoint
    model: str              # Model used for selection, composition and briefs
    timeout_seconds: float  # Per-call timeout
    max_retries: int        # Client retry budget for transient failures


@dataclass(frozen=True)
class SupabaseConfig:
    """Supabase (PostgREST + GoTrue admin) configuration."""
    url: str | None
    service_role_key: str | None
    timeout_seconds: float
    max_retries: int


@dataclass(frozen=True)
class AssistantConfig:
    """Orchestrator behaviour."""
    conversation_window: int = 30          # Hard cap on prior turns sent to the model
    selection_temperature: float = 0.0
    composition_temperature: float = 0.7
    structured_strategy: str = "map"       # "map" or "model"
    strict_structured_output: bool = False
    undo_window_minutes: int = 60
    working_hours_start: str = "09:00"
    working_hours_end: str = "17:00"


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server configuration."""
    host: str
    port: int
    environment: str


@dataclass(frozen=True)
class Config:
    """
    Root configuration object.

        config = get_config()
        config.llm.model
        config.assistant.conversation_window
    """
    llm: LLMConfig
    supabase: SupabaseConfig
    assistant: AssistantConfig
    server: ServerConfig
    store_backend: str
    log_level: str


def load_config() -> Config:
    """
    Load and validate all configuration from the environment.

    Raises:
        ValueError: If required configuration is missing
    """
    load_dotenv()

    store_backend = _optional("STORE_BACKEND", "supabase").strip().lower()
    if store_backend not in ("supabase", "memory"):
        raise ValueError(f"STORE_BACKEND must be 'supabase' or 'memory', got: {store_backend}")

    if store_backend == "supabase":
        supabase_url = _required("SUPABASE_URL")
        service_role_key = _required("SUPABASE_SERVICE_ROLE_KEY")
    else:
        supabase_url = os.getenv("SUPABASE_URL")
        service_role_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    api_key = os.getenv("LLM_API_KEY") or _required("GROQ_API_KEY")

    structured_strategy = _optional("STRUCTURED_STRATEGY", "map").strip().lower()
    if structured_strategy not in ("map", "model"):
        raise ValueError(f"STRUCTURED_STRATEGY must be 'map' or 'model', got: {structured_strategy}")

    return Config(
        llm=LLMConfig(
            api_key=api_key,
            base_url=_optional("LLM_BASE_URL", "https://api.groq.com/openai/v1"),
            model=_optional("LLM_MODEL", "openai/gpt-oss-20b"),
            timeout_seconds=_optional_float("LLM_TIMEOUT_SECONDS", 30.0),
            max_retries=_optional_int("LLM_MAX_RETRIES", 2),
        ),
        supabase=SupabaseConfig(
            url=supabase_url,
            service_role_key=service_role_key,
            timeout_seconds=_optional_float("STORE_TIMEOUT_SECONDS", 10.0),
            max_retries=_optional_int("STORE_MAX_RETRIES", 2),
        ),
        assistant=AssistantConfig(
            conversation_window=_optional_int("CONVERSATION_WINDOW", 30),
            selection_temperature=_optional_float("SELECTION_TEMPERATURE", 0.0),
            composition_temperature=_optional_float("COMPOSITION_TEMPERATURE", 0.7),
            structured_strategy=structured_strategy,
            strict_structured_output=_optional_bool("STRICT_STRUCTURED_OUTPUT", False),
            undo_window_minutes=_optional_int("UNDO_WINDOW_MINUTES", 60),
            working_hours_start=_optional("WORKING_HOURS_START", "09:00"),
            working_hours_end=_optional("WORKING_HOURS_END", "17:00"),
        ),
        server=ServerConfig(
            host=_optional("HOST", "0.0.0.0"),
            port=_optional_int("PORT", 3000),
            environment=_optional("ENVIRONMENT", "development"),
        ),
        store_backend=store_backend,
        log_level=_optional("LOG_LEVEL", "info"),
    )


# ==============================================================================
# Singleton
# ==============================================================================

_config_instance: Config | None = None


def get_config() -> Config:
    """Get the configuration, loading it on first access."""
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance


def reset_config() -> None:
    """Forget the cached configuration so the next get_config() reloads it."""
    global _config_instance
    _config_instance = None
