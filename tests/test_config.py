import pytest
from pydantic import ValidationError

from turistik.config import DEFAULT_API_BASE_URL, Settings

ENV_VARS = [
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "GEMINI_URL",
    "GENERATIVE_BACKEND",
    "TURISTIK_API_BASE_URL",
    "RECOMMENDATION_URL",
    "API_TIMEOUT_SHORT",
    "API_TIMEOUT_MEDIUM",
    "API_TIMEOUT_LONG",
    "STRICT_PLACE_ORDER",
    "RESPONSE_LANGUAGE",
    "CORS_ALLOW_ORIGINS",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = Settings.from_env()
    assert settings.gemini_api_key == ""
    assert settings.generative_url.endswith("/models/gemini-2.5-flash:generateContent")
    assert settings.api_base_url == DEFAULT_API_BASE_URL
    assert settings.recommendation_url is None
    assert (settings.timeout_short, settings.timeout_medium, settings.timeout_long) == (10.0, 20.0, 60.0)
    assert settings.strict_place_order is False
    assert settings.cors_allow_origins == ["*"]


def test_values_from_environment(clean_env):
    clean_env.setenv("GEMINI_API_KEY", " abc ")
    clean_env.setenv("GEMINI_URL", "https://proxy.test/generate")
    clean_env.setenv("GENERATIVE_BACKEND", "Vertex")
    clean_env.setenv("TURISTIK_API_BASE_URL", "http://localhost:3000/")
    clean_env.setenv("RECOMMENDATION_URL", "http://localhost:5000/predict")
    clean_env.setenv("API_TIMEOUT_LONG", "45")
    clean_env.setenv("STRICT_PLACE_ORDER", "yes")
    clean_env.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test,")

    settings = Settings.from_env()
    assert settings.gemini_api_key == "abc"
    assert settings.generative_url == "https://proxy.test/generate"
    assert settings.generative_backend == "vertex"
    assert settings.api_base_url == "http://localhost:3000"
    assert settings.recommendation_url == "http://localhost:5000/predict"
    assert settings.timeout_long == 45.0
    assert settings.strict_place_order is True
    assert settings.cors_allow_origins == ["http://a.test", "http://b.test"]


@pytest.mark.parametrize("value", ["soon", "-1", "0"])
def test_bad_timeouts_are_rejected(clean_env, value):
    clean_env.setenv("API_TIMEOUT_SHORT", value)
    with pytest.raises(ValueError):
        Settings.from_env()


def test_unknown_backend_is_rejected(clean_env):
    clean_env.setenv("GENERATIVE_BACKEND", "openai")
    with pytest.raises(ValidationError):
        Settings.from_env()
