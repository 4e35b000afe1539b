"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PRODUCTION_API_URL = "https://api.smartsheti.com"
DEVELOPMENT_API_URL = "http://localhost:5000"
API_VERSION_PREFIX = "/api/v1"


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    # Priority 1: Read from /run/secrets
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.info("Loaded %s from /run/secrets", secret_name)
                return secret_value
        except OSError as e:
            logger.warning("Failed to read /run/secrets/%s: %s", secret_name, e)

    # Priority 2: Fallback to environment variable
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            logger.info("Loaded %s from environment (fallback)", env_var)
            return secret_value

    return None


@dataclass
class ClientConfig:
    """Client configuration container."""
    # Backend
    environment: str = "development"
    api_root: str = DEVELOPMENT_API_URL + API_VERSION_PREFIX
    request_timeout: float = 10.0

    # Credentials
    credentials_file: str = ""
    token_refresh_leeway: int = 0
    login_path: str = "/login"

    # Telemetry
    telemetry_enabled: bool = True
    telemetry_batch_size: int = 10
    telemetry_flush_interval: float = 30.0
    telemetry_max_attempts: int = 5
    telemetry_backoff_base: float = 2.0
    telemetry_backoff_max: float = 300.0
    app_url: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def login_password(self) -> Optional[str]:
        """Password used by the command line tool when none is given.

        Priority:
        1. Docker secrets: /run/secrets/krushi_password
        2. Environment variable: KRUSHI_PASSWORD
        """
        return _load_secret_from_file("krushi_password", "KRUSHI_PASSWORD")


def _env_bool(var_name: str, default: bool) -> bool:
    value = os.environ.get(var_name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(var_name: str, default, cast=float, minimum=None):
    """Read a numeric environment variable, failing loudly on garbage."""
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ValueError(f"Environment variable {var_name} must be a number, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise ValueError(f"Environment variable {var_name} must be >= {minimum}, got {value}")
    return value


def resolve_api_root(environment: str, base_url: str | None = None) -> str:
    """Build the versioned API root from a base URL.

    Production falls back to the public API host, development to the local
    backend on port 5000. A base URL that already ends with the version
    prefix is used as-is.
    """
    base = (base_url or "").strip().rstrip("/")
    if not base:
        base = PRODUCTION_API_URL if environment == "production" else DEVELOPMENT_API_URL
    if base.endswith(API_VERSION_PREFIX):
        return base
    return f"{base}{API_VERSION_PREFIX}"


def load_settings() -> ClientConfig:
    """Load client settings from environment variables."""
    environment = os.environ.get("KRUSHI_ENV", "development").strip().lower() or "development"
    api_root = resolve_api_root(environment, os.environ.get("KRUSHI_API_URL"))

    batch_size = _env_number("KRUSHI_TELEMETRY_BATCH_SIZE", 10, cast=int, minimum=1)
    max_attempts = _env_number("KRUSHI_TELEMETRY_MAX_ATTEMPTS", 5, cast=int, minimum=1)

    config = ClientConfig(
        environment=environment,
        api_root=api_root,
        request_timeout=_env_number("KRUSHI_REQUEST_TIMEOUT", 10.0, minimum=0),
        credentials_file=os.environ.get("KRUSHI_CREDENTIALS_FILE", "").strip(),
        token_refresh_leeway=_env_number("KRUSHI_TOKEN_REFRESH_LEEWAY", 0, cast=int, minimum=0),
        login_path=os.environ.get("KRUSHI_LOGIN_PATH", "/login").strip() or "/login",
        telemetry_enabled=_env_bool("KRUSHI_TELEMETRY_ENABLED", True),
        telemetry_batch_size=batch_size,
        telemetry_flush_interval=_env_number("KRUSHI_TELEMETRY_FLUSH_INTERVAL", 30.0, minimum=0.1),
        telemetry_max_attempts=max_attempts,
        telemetry_backoff_base=_env_number("KRUSHI_TELEMETRY_BACKOFF_BASE", 2.0, minimum=0),
        telemetry_backoff_max=_env_number("KRUSHI_TELEMETRY_BACKOFF_MAX", 300.0, minimum=0),
        app_url=os.environ.get("KRUSHI_APP_URL", "").strip(),
    )

    logger.info("Mode=%s; api_root=%s", environment.upper(), api_root)
    return config


# Global settings instance (loaded on first import)
settings: ClientConfig = load_settings()
