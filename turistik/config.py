import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_API_BASE_URL = "https://api-turistik-original-1015484149970.us-central1.run.app"
DEFAULT_LANGUAGE = "español"

# Seconds. Generation is slow, CRUD calls are not.
TIMEOUT_SHORT = 10.0
TIMEOUT_MEDIUM = 20.0
TIMEOUT_LONG = 60.0


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    gemini_api_key: str = ""
    gemini_model: str = DEFAULT_GEMINI_MODEL
    gemini_url: str = ""
    generative_backend: str = Field(default="rest", pattern="^(rest|vertex)$")
    api_base_url: str = DEFAULT_API_BASE_URL
    recommendation_url: Optional[str] = None
    timeout_short: float = Field(default=TIMEOUT_SHORT, gt=0)
    timeout_medium: float = Field(default=TIMEOUT_MEDIUM, gt=0)
    timeout_long: float = Field(default=TIMEOUT_LONG, gt=0)
    strict_place_order: bool = False
    response_language: str = DEFAULT_LANGUAGE
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    @property
    def generative_url(self) -> str:
        return self.gemini_url or DEFAULT_GEMINI_URL.format(model=self.gemini_model)

    @classmethod
    def from_env(cls) -> "Settings":
        origins = _env_str("CORS_ALLOW_ORIGINS", "*").split(",")
        return cls(
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            gemini_model=_env_str("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
            gemini_url=_env_str("GEMINI_URL"),
            generative_backend=_env_str("GENERATIVE_BACKEND", "rest").lower(),
            api_base_url=_env_str("TURISTIK_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/"),
            recommendation_url=_env_str("RECOMMENDATION_URL") or None,
            timeout_short=_env_float("API_TIMEOUT_SHORT", TIMEOUT_SHORT),
            timeout_medium=_env_float("API_TIMEOUT_MEDIUM", TIMEOUT_MEDIUM),
            timeout_long=_env_float("API_TIMEOUT_LONG", TIMEOUT_LONG),
            strict_place_order=_env_bool("STRICT_PLACE_ORDER"),
            response_language=_env_str("RESPONSE_LANGUAGE", DEFAULT_LANGUAGE),
            cors_allow_origins=[origin.strip() for origin in origins if origin.strip()],
        )
