from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, ValidationError

from auth.cors import DEV_CORS_ORIGINS
from auth.routes import DEFAULT_API_PREFIX
from auth.state_store import DEFAULT_STATE_TTL_SECONDS
from auth.token_client import (
    DEFAULT_TOKEN_TIMEOUT_SECONDS,
    SCHWAB_AUTHORIZE_URL,
    SCHWAB_TOKEN_URL,
)
from auth.token_store import DEFAULT_TOKENS_TABLE

from .constants import LOGGER, PRODUCTION_ENVIRONMENTS, REQUIRED_ENV


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv_env(key: str) -> set[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a numeric value.")


def _get_env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return is_truthy(raw)


def _validate_url(key: str, value: str) -> str:
    try:
        AnyHttpUrl(value)
    except ValidationError:
        raise RuntimeError(f"{key} must be a valid http(s) URL.")
    # Keep the raw string: redirect matching is exact, so no normalization.
    return value


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def is_production() -> bool:
    return os.getenv("SCHWAB_ENV", "development").strip().lower() in PRODUCTION_ENVIRONMENTS


def validate_env() -> None:
    missing = [key for key in REQUIRED_ENV if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    redirect_uri = os.getenv("SCHWAB_REDIRECT_URI", "").strip()
    _validate_url("SCHWAB_REDIRECT_URI", redirect_uri)
    if not redirect_uri.startswith("https://"):
        LOGGER.warning("SCHWAB_REDIRECT_URI is not HTTPS; Schwab requires HTTPS for production.")

    for uri in parse_csv_env("SCHWAB_REDIRECT_URI_ALLOWED"):
        _validate_url("SCHWAB_REDIRECT_URI_ALLOWED", uri)

    if is_production() and not parse_csv_env("FRONTEND_ORIGIN"):
        raise RuntimeError("FRONTEND_ORIGIN must be set when SCHWAB_ENV is production.")

    if _get_env_int("SCHWAB_STATE_TTL_SECONDS", DEFAULT_STATE_TTL_SECONDS) <= 0:
        raise RuntimeError("SCHWAB_STATE_TTL_SECONDS must be positive.")

    supabase = [key for key in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY") if os.getenv(key)]
    if len(supabase) == 1:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set together.")


@dataclass(frozen=True)
class Settings:
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str
    allowed_redirect_uris: frozenset[str] = frozenset()
    allow_any_redirect: bool = False
    authorize_url: str = SCHWAB_AUTHORIZE_URL
    token_url: str = SCHWAB_TOKEN_URL
    scope: str | None = None
    enforce_state: bool = True
    state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS
    token_timeout: float = DEFAULT_TOKEN_TIMEOUT_SECONDS
    cors_origins: frozenset[str] = frozenset()
    api_prefix: str = DEFAULT_API_PREFIX
    redis_url: str | None = None
    supabase_url: str | None = None
    supabase_service_role_key: str | None = field(default=None, repr=False)
    supabase_table: str = DEFAULT_TOKENS_TABLE
    token_store_path: str = ".schwab_tokens.json"


def load_settings() -> Settings:
    cors_origins = parse_csv_env("FRONTEND_ORIGIN")
    if not cors_origins:
        LOGGER.warning(
            "FRONTEND_ORIGIN is unset; allowing only local dev origins %s.",
            sorted(DEV_CORS_ORIGINS),
        )
        cors_origins = set(DEV_CORS_ORIGINS)

    return Settings(
        client_id=os.getenv("SCHWAB_CLIENT_ID", "").strip(),
        client_secret=os.getenv("SCHWAB_CLIENT_SECRET", "").strip(),
        redirect_uri=os.getenv("SCHWAB_REDIRECT_URI", "").strip(),
        allowed_redirect_uris=frozenset(parse_csv_env("SCHWAB_REDIRECT_URI_ALLOWED")),
        allow_any_redirect=_get_env_bool("SCHWAB_ALLOW_ANY_REDIRECT", False),
        authorize_url=_validate_url(
            "SCHWAB_AUTH_URL", os.getenv("SCHWAB_AUTH_URL", SCHWAB_AUTHORIZE_URL).strip()
        ),
        token_url=_validate_url(
            "SCHWAB_TOKEN_URL", os.getenv("SCHWAB_TOKEN_URL", SCHWAB_TOKEN_URL).strip()
        ),
        scope=os.getenv("SCHWAB_SCOPE", "").strip() or None,
        enforce_state=_get_env_bool("SCHWAB_ENFORCE_STATE", True),
        state_ttl_seconds=_get_env_int("SCHWAB_STATE_TTL_SECONDS", DEFAULT_STATE_TTL_SECONDS),
        token_timeout=_get_env_float("SCHWAB_TOKEN_TIMEOUT", DEFAULT_TOKEN_TIMEOUT_SECONDS),
        cors_origins=frozenset(cors_origins),
        api_prefix=os.getenv("SCHWAB_API_PREFIX", DEFAULT_API_PREFIX).strip() or DEFAULT_API_PREFIX,
        redis_url=os.getenv("REDIS_URL", "").strip() or None,
        supabase_url=os.getenv("SUPABASE_URL", "").strip() or None,
        supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip() or None,
        supabase_table=os.getenv("SUPABASE_TOKENS_TABLE", DEFAULT_TOKENS_TABLE).strip()
        or DEFAULT_TOKENS_TABLE,
        token_store_path=os.getenv("SCHWAB_TOKEN_STORE_PATH", ".schwab_tokens.json"),
    )


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("SCHWAB_API_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)

    log_file = os.getenv("SCHWAB_LOG_FILE", "").strip()
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(JsonLineFormatter())
        handler.setLevel(logging.INFO)
        logging.getLogger().addHandler(handler)
        if logging.getLogger().level > logging.INFO:
            logging.getLogger().setLevel(logging.INFO)
    return debug_enabled
