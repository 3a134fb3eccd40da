"""
Configuration loader module.

Loads application configuration from YAML files and environment variables.
"""

import logging
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from pricecore.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_RATES: dict[str, float] = {
    "USD": 1.0,
    "EUR": 0.85,
    "GBP": 0.75,
    "JPY": 110.0,
    "CAD": 1.25,
    "AUD": 1.35,
}


@dataclass
class PricingConfig:
    """Price resolution configuration."""

    default_currency: str = "USD"
    decimals: int = 2
    locale: str = "en-US"


@dataclass
class RatesConfig:
    """Exchange rate cache and source configuration."""

    base_currency: str = "USD"
    ttl_seconds: int = 3600
    refresh_interval_seconds: int = 0  # 0 disables background refresh
    timeout_seconds: float = 10.0
    api_url: str = ""
    api_key_env: str = "RATES_API_KEY"
    history_limit: int = 1000
    default_rates: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_RATES))


@dataclass
class PathsConfig:
    """File path configuration."""

    seed_dir: str = "data/sample"
    logs_dir: str = "logs"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "text"
    file: str = ""  # file name under paths.logs_dir; empty logs to stdout only


@dataclass
class AppConfig:
    """
    Main application configuration.

    Aggregates all configuration sections into a single object.
    """

    pricing: PricingConfig = field(default_factory=PricingConfig)
    rates: RatesConfig = field(default_factory=RatesConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_env(env_file: Path = Path(".env")) -> None:
    """
    Load environment variables from .env file.

    Args:
        env_file: Path to .env file.
    """
    if env_file.exists():
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from: {env_file}")
    else:
        logger.debug(f"No .env file found at: {env_file}")


def load_config(config_file: Path = Path("config/config.yaml")) -> AppConfig:
    """
    Load application configuration from YAML file.

    Environment overrides are applied after the file is parsed.

    Args:
        config_file: Path to configuration YAML file.

    Returns:
        AppConfig: Loaded configuration object.

    Raises:
        ConfigurationError: If a value is invalid.
        yaml.YAMLError: If config file is invalid.
    """
    if not config_file.exists():
        logger.warning(f"Config file not found: {config_file}. Using defaults.")
        raw_config: dict[str, Any] = {}
    else:
        with open(config_file, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from: {config_file}")

    config = _parse_config(raw_config)
    _apply_env_overrides(config)
    validate_config(config)
    return config


def _parse_config(raw: dict[str, Any]) -> AppConfig:
    """
    Parse raw YAML dict into AppConfig dataclass.

    Args:
        raw: Raw dictionary from YAML file.

    Returns:
        AppConfig: Parsed configuration object.
    """
    pricing_raw = raw.get("pricing", {}) or {}
    pricing = PricingConfig(
        default_currency=str(pricing_raw.get("default_currency", "USD")).upper(),
        decimals=int(pricing_raw.get("decimals", 2)),
        locale=pricing_raw.get("locale", "en-US"),
    )

    rates_raw = raw.get("rates", {}) or {}
    default_rates = rates_raw.get("default_rates") or DEFAULT_RATES
    rates = RatesConfig(
        base_currency=str(rates_raw.get("base_currency", "USD")).upper(),
        ttl_seconds=int(rates_raw.get("ttl_seconds", 3600)),
        refresh_interval_seconds=int(rates_raw.get("refresh_interval_seconds", 0)),
        timeout_seconds=float(rates_raw.get("timeout_seconds", 10)),
        api_url=rates_raw.get("api_url", "") or "",
        api_key_env=rates_raw.get("api_key_env", "RATES_API_KEY"),
        history_limit=int(rates_raw.get("history_limit", 1000)),
        default_rates={str(code).upper(): float(rate) for code, rate in default_rates.items()},
    )

    paths_raw = raw.get("paths", {}) or {}
    paths = PathsConfig(
        seed_dir=paths_raw.get("seed_dir", "data/sample"),
        logs_dir=paths_raw.get("logs_dir", "logs"),
    )

    logging_raw = raw.get("logging", {}) or {}
    logging_config = LoggingConfig(
        level=logging_raw.get("level", "INFO"),
        format=logging_raw.get("format", "text"),
        file=logging_raw.get("file", "") or "",
    )

    return AppConfig(
        pricing=pricing,
        rates=rates,
        paths=paths,
        logging=logging_config,
    )


def _apply_env_overrides(config: AppConfig) -> None:
    """Apply environment variable overrides in place."""
    default_currency = get_env_var("PRICING_DEFAULT_CURRENCY")
    if default_currency:
        config.pricing.default_currency = default_currency.upper()

    api_url = get_env_var("RATES_API_URL")
    if api_url:
        config.rates.api_url = api_url

    ttl = get_env_var("RATES_CACHE_TTL")
    if ttl:
        config.rates.ttl_seconds = _parse_int("RATES_CACHE_TTL", ttl)

    interval = get_env_var("RATES_UPDATE_INTERVAL")
    if interval:
        config.rates.refresh_interval_seconds = _parse_int("RATES_UPDATE_INTERVAL", interval)


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def validate_config(config: AppConfig) -> None:
    """
    Check configuration values are usable.

    Raises:
        ConfigurationError: If any value is out of range.
    """
    if config.rates.ttl_seconds <= 0:
        raise ConfigurationError(f"rates.ttl_seconds must be positive, got {config.rates.ttl_seconds}")
    if config.rates.refresh_interval_seconds < 0:
        raise ConfigurationError(
            f"rates.refresh_interval_seconds must be >= 0, got {config.rates.refresh_interval_seconds}"
        )
    if config.rates.timeout_seconds <= 0:
        raise ConfigurationError(f"rates.timeout_seconds must be positive, got {config.rates.timeout_seconds}")
    if config.rates.history_limit <= 0:
        raise ConfigurationError(f"rates.history_limit must be positive, got {config.rates.history_limit}")
    if not 0 <= config.pricing.decimals <= 8:
        raise ConfigurationError(f"pricing.decimals must be between 0 and 8, got {config.pricing.decimals}")
    if any(not math.isfinite(rate) or rate <= 0 for rate in config.rates.default_rates.values()):
        raise ConfigurationError("rates.default_rates must all be positive numbers")


def get_env_var(key: str, default: str | None = None) -> str | None:
    """
    Get an environment variable with optional default.

    Args:
        key: Environment variable name.
        default: Default value if not set.

    Returns:
        Environment variable value or default.
    """
    return os.environ.get(key, default)


def get_api_key(config: AppConfig) -> str | None:
    """
    Get the rates API key from the environment variable named in config.

    Returns:
        API key if set, None otherwise.
    """
    return get_env_var(config.rates.api_key_env)
