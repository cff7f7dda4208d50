"""Tests for environment configuration."""
import pytest

from taskpilot.utils import config as config_module
from taskpilot.utils.config import load_config

ENV_VARS = [
    "STORE_BACKEND", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "LLM_API_KEY", "GROQ_API_KEY",
    "LLM_MODEL", "CONVERSATION_WINDOW", "STRUCTURED_STRATEGY", "STRICT_STRUCTURED_OUTPUT", "PORT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr(config_module, "load_dotenv", lambda: None)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_memory_backend_defaults(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("GROQ_API_KEY", "gsk-test")

    config = load_config()

    assert config.store_backend == "memory"
    assert config.llm.api_key == "gsk-test"
    assert config.llm.model == "openai/gpt-oss-20b"
    assert config.assistant.conversation_window == 30
    assert config.assistant.structured_strategy == "map"
    assert config.server.port == 3000


def test_supabase_backend_requires_credentials(monkeypatch):
    monkeypatch.setenv("GROQ_API_KEY", "gsk-test")
    with pytest.raises(ValueError, match="SUPABASE_URL"):
        load_config()


def test_overrides(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("LLM_API_KEY", "key")
    monkeypatch.setenv("CONVERSATION_WINDOW", "10")
    monkeypatch.setenv("STRICT_STRUCTURED_OUTPUT", "true")
    monkeypatch.setenv("PORT", "not-a-port")

    config = load_config()

    assert config.assistant.conversation_window == 10
    assert config.assistant.strict_structured_output is True
    assert config.server.port == 3000


def test_unknown_strategy(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("LLM_API_KEY", "key")
    monkeypatch.setenv("STRUCTURED_STRATEGY", "guess")
    with pytest.raises(ValueError):
        load_config()


def test_get_config_is_cached_until_reset(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("LLM_API_KEY", "key")
    config_module.reset_config()

    first = config_module.get_config()
    monkeypatch.setenv("CONVERSATION_WINDOW", "5")
    assert config_module.get_config() is first

    config_module.reset_config()
    assert config_module.get_config().assistant.conversation_window == 5
    config_module.reset_config()
