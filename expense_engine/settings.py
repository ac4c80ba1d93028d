from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Mapping, Optional

from expense_engine.currency_engine import DEFAULT_CURRENCY, SUPPORTED_CURRENCIES, safe_normalize_currency
from expense_engine.rate_cache import (
    DEFAULT_BASE_CURRENCY,
    DEFAULT_RATE_API_URL,
    DEFAULT_REFRESH_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Process configuration, read once from environment variables."""

    database_url: str = "sqlite:///./expense_engine.db"
    default_currency: str = DEFAULT_CURRENCY
    frontend_origin: str = "http://localhost:3000"
    rate_api_enabled: bool = True
    rate_api_url: str = DEFAULT_RATE_API_URL
    rate_base_currency: str = DEFAULT_BASE_CURRENCY
    rate_refresh_seconds: float = DEFAULT_REFRESH_SECONDS
    rate_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get("DATABASE_URL", cls.database_url),
            default_currency=_currency_setting(env.get("DEFAULT_CURRENCY")),
            frontend_origin=env.get("FRONTEND_ORIGIN", cls.frontend_origin),
            rate_api_enabled=_bool_setting(
                env.get("EXCHANGE_RATE_API_ENABLED"), cls.rate_api_enabled
            ),
            rate_api_url=env.get("EXCHANGE_RATE_API_URL", cls.rate_api_url),
            rate_base_currency=safe_normalize_currency(env.get("EXCHANGE_RATE_BASE"))
            or cls.rate_base_currency,
            rate_refresh_seconds=_number_setting(
                env.get("EXCHANGE_RATE_REFRESH_SECONDS"), cls.rate_refresh_seconds
            ),
            rate_timeout_seconds=_number_setting(
                env.get("EXCHANGE_RATE_TIMEOUT_SECONDS"), cls.rate_timeout_seconds
            ),
            log_level=(env.get("LOG_LEVEL") or cls.log_level).strip().upper(),
        )


def _currency_setting(raw: str | None) -> str:
    if raw is None:
        return DEFAULT_CURRENCY
    normalized = safe_normalize_currency(raw)
    if normalized not in SUPPORTED_CURRENCIES:
        logger.warning("DEFAULT_CURRENCY %r is not supported; using %s", raw, DEFAULT_CURRENCY)
        return DEFAULT_CURRENCY
    return normalized


def _bool_setting(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return default


def _number_setting(raw: str | None, default: float) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    return value
