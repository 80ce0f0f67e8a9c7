# src/settings.py
"""Configuration for the EUR/USD rate feed.

A single ``Settings`` object is built once at process start by
``load_settings`` and handed to the fetcher, the generator and the cache.
Values are resolved in this order (highest first):

1. keyword overrides passed to ``load_settings`` / ``Settings``
2. environment variables (and a ``.env`` file if present)
3. the persisted local settings file (JSON, see ``settings_file_path``)
4. the defaults declared on the model

Secrets never appear in ``safe_summary``; use it for logs and health output.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Type

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = ".fx_settings.json"
SETTINGS_FILE_ENV = "SETTINGS_FILE"

# Values shipped in example configs; never accepted as a real key.
PLACEHOLDER_API_KEYS = frozenset(
    {
        "demo",
        "DEMO_KEY",
        "your_api_key_here",
        "YOUR_API_KEY_HERE",
        "YOUR_ALPHA_VANTAGE_API_KEY",
    }
)
MIN_API_KEY_LENGTH = 8


class ConfigurationError(ValueError):
    """Raised when the service cannot start with the configuration it was given."""


class SessionBand(BaseModel):
    """Inclusive UTC hour range mapped to a volatility multiplier."""

    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=0, le=23)
    multiplier: float = Field(gt=0)

    @model_validator(mode="after")
    def _ordered(self) -> "SessionBand":
        if self.start_hour > self.end_hour:
            raise ValueError("start_hour must not be after end_hour")
        return self

    def covers(self, hour: int) -> bool:
        return self.start_hour <= hour <= self.end_hour


def default_session_bands() -> List[SessionBand]:
    return [
        SessionBand(start_hour=8, end_hour=16, multiplier=1.5),   # London
        SessionBand(start_hour=17, end_hour=21, multiplier=1.3),  # New York
    ]


def settings_file_path() -> Path:
    """Location of the persisted local settings file."""
    return Path(os.getenv(SETTINGS_FILE_ENV, DEFAULT_SETTINGS_FILE)).expanduser()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "test", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Market data provider
    alpha_vantage_api_key: str = ""
    alpha_vantage_api_url: str = "https://www.alphavantage.co/query"
    api_timeout: float = Field(default=10.0, ge=1.0, le=30.0)
    api_request_ceiling: int = Field(default=20, ge=1, le=10_000)
    api_min_interval: float = Field(default=3600.0, ge=0)
    api_request_window: Optional[float] = Field(default=None, gt=0)

    # Single-slot cache
    cache_strategy: Literal["memory", "file", "none"] = "memory"
    cache_path: str = ".fx_rate_cache.json"
    cache_staleness: float = Field(default=86_400.0, gt=0)

    # Synthetic price generator
    base_price: float = Field(default=1.1659, gt=0)
    base_max_move: float = Field(default=0.0003, ge=0)
    trend_drift: float = 0.00001
    min_price: float = Field(default=1.1500, gt=0)
    max_price: float = Field(default=1.1800, gt=0)
    session_bands: List[SessionBand] = Field(default_factory=default_session_bands)
    default_session_multiplier: float = Field(default=0.7, gt=0)

    # Dashboard refresh
    refresh_interval: float = Field(default=180.0, gt=0)
    history_size: int = Field(default=50, ge=2)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=settings_file_path()),
        )

    @field_validator("alpha_vantage_api_url")
    @classmethod
    def _https_only(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError(f"API base URL is not a valid URL: {exc}") from exc
        if url.scheme != "https":
            raise ValueError("API base URL must use HTTPS")
        if not url.host:
            raise ValueError("API base URL must include a host")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {value!r}")
        return level

    @model_validator(mode="after")
    def _price_band(self) -> "Settings":
        if not self.min_price < self.max_price:
            raise ValueError("min_price must be below max_price")
        if not self.min_price <= self.base_price <= self.max_price:
            raise ValueError("base_price must lie within [min_price, max_price]")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def has_api_key(self) -> bool:
        return is_usable_api_key(self.alpha_vantage_api_key)


def is_usable_api_key(api_key: Optional[str]) -> bool:
    """Reject empty, placeholder and obviously truncated keys."""
    if not api_key:
        return False
    key = api_key.strip()
    if key in PLACEHOLDER_API_KEYS:
        return False
    return len(key) >= MIN_API_KEY_LENGTH


def _describe(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        where = ".".join(str(part) for part in err["loc"]) or "settings"
        problems.append(f"{where}: {err['msg']}")
    return "; ".join(problems)


def load_settings(**overrides: Any) -> Settings:
    """Build and validate the process settings.

    Raises ConfigurationError when a value is malformed, or when production
    runs without a usable API key. Outside production a missing key only
    produces a warning and the feed serves synthetic rates.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        message = f"Invalid configuration: {_describe(exc)}"
        logger.error(message)
        raise ConfigurationError(message) from exc
    except ValueError as exc:
        message = f"Unreadable settings file {settings_file_path()}: {exc}"
        logger.error(message)
        raise ConfigurationError(message) from exc

    check_provider_key(settings)
    return settings


def check_provider_key(settings: Settings) -> None:
    """Fail in production without a usable API key; warn everywhere else."""
    if settings.has_api_key:
        return
    if settings.is_production:
        message = (
            "ALPHA_VANTAGE_API_KEY is missing or a placeholder value; "
            "a real key is required when ENVIRONMENT=production"
        )
        logger.error(message)
        raise ConfigurationError(message)
    logger.warning(
        "ALPHA_VANTAGE_API_KEY is not configured; serving synthetic EUR/USD rates only"
    )


def write_json_atomic(path: Path, document: Any) -> None:
    """Write ``document`` next to ``path`` and swap it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    os.replace(tmp_path, path)


def safe_summary(settings: Settings) -> Dict[str, Any]:
    """Configuration snapshot without secrets."""
    key = settings.alpha_vantage_api_key
    if settings.has_api_key:
        key_type = "configured"
    elif key:
        key_type = "placeholder"
    else:
        key_type = "missing"
    return {
        "environment": settings.environment,
        "has_api_key": settings.has_api_key,
        "api_key_type": key_type,
        "api_url": settings.alpha_vantage_api_url,
        "api_timeout": settings.api_timeout,
        "request_ceiling": settings.api_request_ceiling,
        "min_interval": settings.api_min_interval,
        "request_window": settings.api_request_window,
        "cache_strategy": settings.cache_strategy,
        "cache_staleness": settings.cache_staleness,
        "refresh_interval": settings.refresh_interval,
        "price_band": [settings.min_price, settings.max_price],
    }


def persist_api_key(settings: Settings, api_key: str) -> Settings:
    """Store a new API key in the local settings file and return updated settings.

    An environment variable still wins on the next ``load_settings``.
    """
    api_key = api_key.strip()
    if not is_usable_api_key(api_key):
        raise ConfigurationError("Invalid API key format. Please check your key and try again.")

    path = settings_file_path()
    stored: Dict[str, Any] = {}
    if path.is_file():
        try:
            stored = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
            stored = {}
        if not isinstance(stored, dict):
            stored = {}
    stored["alpha_vantage_api_key"] = api_key
    write_json_atomic(path, stored)
    logger.info("API key updated in %s", path)
    return settings.model_copy(update={"alpha_vantage_api_key": api_key})
