"""App configuration — environment variable loading with typed defaults.

Loads settings from .env file (via python-dotenv) and os.environ.
Real environment variables take precedence over .env file values.

The cache profile env var (BIZCOIN_CACHE_PROFILE=stable) is validated
against PROFILE_MAP from bizcoin.cache.policy at load time, so a typo
fails on startup rather than on the first read.

Usage:
    from bizcoin.config import get_settings
    settings = get_settings()
    print(settings.api_base_url)  # "http://localhost:5000"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from bizcoin.cache.policy import PROFILE_MAP

# Only load .env from the project root; parent directories are not searched.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DOTENV_PATH = PROJECT_ROOT / ".env"


@dataclass(frozen=True)
class Settings:
    """Typed configuration for the BizCoin client and its stub server.

    All fields have sensible defaults for local development.
    """

    # Logging
    log_level: str

    # Remote Store
    api_base_url: str
    request_timeout: float
    token_path: str

    # Cache
    cache_profile: str


def _parse_number(env_var: str, value: str, kind: type) -> int | float:
    """Parses a numeric env var, naming the variable on failure.

    Raises:
        ValueError: If the value is not a valid number of the given kind.
    """
    try:
        return kind(value)
    except ValueError:
        raise ValueError(
            f"Invalid value for {env_var}: {value!r}. Expected {kind.__name__}."
        ) from None


def _resolve_profile(env_var: str, value: str) -> str:
    """Checks a cache profile name against PROFILE_MAP.

    An empty value means "use the global default" and is passed through.

    Raises:
        ValueError: If the value doesn't match any key in PROFILE_MAP.
    """
    if not value or value in PROFILE_MAP:
        return value
    valid = ", ".join(sorted(PROFILE_MAP.keys()))
    raise ValueError(
        f"Invalid value for {env_var}: {value!r}. "
        f"Valid options: {valid}"
    )


def _load_settings() -> Settings:
    """Loads configuration from .env file and environment variables.

    Returns:
        A fully resolved Settings instance.
    """
    load_dotenv(_DOTENV_PATH)

    return Settings(
        # Logging
        log_level=os.environ.get("LOG_LEVEL", "info"),
        # Remote Store
        api_base_url=os.environ.get("BIZCOIN_API_BASE_URL", "http://localhost:5000").rstrip("/"),
        request_timeout=_parse_number(
            "BIZCOIN_REQUEST_TIMEOUT",
            os.environ.get("BIZCOIN_REQUEST_TIMEOUT", "10"),
            float,
        ),
        token_path=os.environ.get("BIZCOIN_TOKEN_PATH", ""),
        # Cache
        cache_profile=_resolve_profile(
            "BIZCOIN_CACHE_PROFILE",
            os.environ.get("BIZCOIN_CACHE_PROFILE", ""),
        ),
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Returns the singleton Settings instance. Loads .env on first call."""
    global _settings
    if _settings is None:
        _settings = _load_settings()
    return _settings
