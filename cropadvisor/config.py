"""
Runtime configuration read from the process environment.

A `.env` file next to the working directory is honoured through
python-dotenv. The completion API key is mandatory: `Settings.from_env`
raises `ConfigError` instead of starting a server that can only fail on
its first AI call.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-5"
DEV_JWT_SECRET = "please_change_this_secret"


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    openai_api_key: str
    openai_base_url: str = DEFAULT_BASE_URL
    openai_model: str = DEFAULT_MODEL
    ai_timeout_seconds: float = 30.0
    ai_max_retries: int = 1
    chat_history_limit: int = 50
    default_location: str = "Delhi, India"
    default_crop: str = "Wheat"
    default_user_id: str = "demo-user-1"
    jwt_secret: str = DEV_JWT_SECRET
    jwt_expires_days: int = 7
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not api_key:
            raise ConfigError("OPENAI_API_KEY is not set; the completion API cannot be reached without it")

        jwt_secret = os.getenv("JWT_SECRET", "").strip()
        if not jwt_secret:
            logger.warning("JWT_SECRET is not set, using the development secret")
            jwt_secret = DEV_JWT_SECRET

        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

        return cls(
            openai_api_key=api_key,
            openai_base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL,
            openai_model=os.getenv("OPENAI_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL,
            ai_timeout_seconds=_env_float("AI_TIMEOUT_SECONDS", 30.0),
            ai_max_retries=_env_int("AI_MAX_RETRIES", 1),
            chat_history_limit=_env_int("CHAT_HISTORY_LIMIT", 50, minimum=1),
            default_location=os.getenv("DEFAULT_LOCATION", "Delhi, India"),
            default_crop=os.getenv("DEFAULT_CROP", "Wheat"),
            default_user_id=os.getenv("DEFAULT_USER_ID", "demo-user-1"),
            jwt_secret=jwt_secret,
            jwt_expires_days=_env_int("JWT_EXPIRES_DAYS", 7, minimum=1),
            cors_origins=origins or ["*"],
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            port=_env_int("PORT", 8000, minimum=1),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
