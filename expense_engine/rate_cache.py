from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from http.client import HTTPException
import json
import logging
import threading
from types import MappingProxyType
from typing import Callable, Mapping, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

DEFAULT_BASE_CURRENCY = "USD"
DEFAULT_REFRESH_SECONDS = 3600
DEFAULT_TIMEOUT_SECONDS = 10
DEFAULT_RATE_API_URL = "https://api.exchangerate-api.com/v4/latest/"

FALLBACK_RATES: Mapping[str, Decimal] = MappingProxyType(
    {
        "USD": Decimal("1.0"),
        "EUR": Decimal("0.85"),
        "GBP": Decimal("0.73"),
        "JPY": Decimal("110.0"),
        "CAD": Decimal("1.25"),
        "AUD": Decimal("1.35"),
        "CHF": Decimal("0.92"),
        "CNY": Decimal("6.45"),
        "INR": Decimal("74.0"),
        "PHP": Decimal("50.0"),
    }
)


class RateSourceError(RuntimeError):
    """Raised when a rate source cannot produce a usable rate table."""


class RateSource(Protocol):
    def fetch(self, base_currency: str) -> Mapping[str, Decimal]:
        ...


@dataclass(frozen=True)
class RateSnapshot:
    """Exchange rates expressed as units of each currency per 1 base unit."""

    base_currency: str
    rates: Mapping[str, Decimal]
    fetched_at: datetime
    source: str = "live"

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", MappingProxyType(dict(self.rates)))

    def rate_for(self, currency: str) -> Decimal | None:
        return self.rates.get(currency)


@dataclass(frozen=True)
class StaticRateSource:
    rates: Mapping[str, Decimal] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", dict(self.rates or FALLBACK_RATES))

    def fetch(self, base_currency: str) -> Mapping[str, Decimal]:
        return parse_rate_table(self.rates, base_currency)


@dataclass(frozen=True)
class HttpRateSource:
    url: str = DEFAULT_RATE_API_URL
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    user_agent: str = "ExpenseTracker/1.0"

    def fetch(self, base_currency: str) -> Mapping[str, Decimal]:
        request = Request(f"{self.url}{base_currency}", headers={"User-Agent": self.user_agent})
        try:
            with urlopen(request, timeout=self.timeout) as response:
                payload = json.load(response)
        except (HTTPError, URLError, HTTPException, OSError, ValueError) as exc:
            raise RateSourceError(f"Exchange rate API unavailable: {exc}") from exc

        if not isinstance(payload, dict):
            raise RateSourceError("Exchange rate response is not an object")
        return parse_rate_table(payload.get("rates"), base_currency)


def parse_rate_table(raw_rates: object, base_currency: str) -> dict[str, Decimal]:
    if not isinstance(raw_rates, Mapping) or not raw_rates:
        raise RateSourceError("Exchange rate response missing rates")

    parsed: dict[str, Decimal] = {}
    for code, value in raw_rates.items():
        if isinstance(value, bool):
            raise RateSourceError(f"Malformed rate for {code!r}")
        try:
            rate = Decimal(str(value))
        except InvalidOperation as exc:
            raise RateSourceError(f"Malformed rate for {code!r}") from exc
        if not rate.is_finite() or rate <= 0:
            raise RateSourceError(f"Malformed rate for {code!r}")
        parsed[str(code).strip().upper()] = rate
    parsed[base_currency] = Decimal("1")
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RateCache:
    """Lazily refreshed exchange-rate snapshot.

    ``get_rates`` never raises. A failed refresh keeps the last good snapshot,
    and when there is none yet a snapshot is built from ``fallback_rates``.
    Snapshots are immutable and swapped in whole, so concurrent readers see
    either the old table or the new one.
    """

    source: RateSource | None = None
    fallback_rates: Mapping[str, Decimal] = field(default_factory=lambda: FALLBACK_RATES)
    base_currency: str = DEFAULT_BASE_CURRENCY
    refresh_interval: float = DEFAULT_REFRESH_SECONDS
    clock: Callable[[], datetime] = _utcnow
    _snapshot: RateSnapshot | None = field(default=None, init=False, repr=False)
    _retry_after: datetime | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def get_rates(self) -> RateSnapshot:
        snapshot = self._snapshot
        now = self.clock()
        if snapshot is not None and not self._needs_refresh(snapshot, now):
            return snapshot

        if snapshot is None:
            # First caller builds the initial snapshot; others wait for it.
            with self._lock:
                if self._snapshot is None:
                    self._refresh(self.clock())
                return self._snapshot

        if not self._lock.acquire(blocking=False):
            return snapshot
        try:
            if self._snapshot is snapshot:
                self._refresh(now)
            return self._snapshot
        finally:
            self._lock.release()

    def _needs_refresh(self, snapshot: RateSnapshot, now: datetime) -> bool:
        if self._retry_after is not None and now < self._retry_after:
            return False
        age = (now - snapshot.fetched_at).total_seconds()
        return age > self.refresh_interval

    def _refresh(self, now: datetime) -> None:
        if self.source is not None:
            try:
                rates = self.source.fetch(self.base_currency)
            except RateSourceError as exc:
                logger.warning("Exchange rate refresh failed: %s", exc)
            except Exception:
                logger.warning("Exchange rate source raised unexpectedly", exc_info=True)
            else:
                self._snapshot = RateSnapshot(
                    base_currency=self.base_currency,
                    rates=rates,
                    fetched_at=now,
                    source="live",
                )
                self._retry_after = None
                logger.info("Exchange rates refreshed (%d currencies)", len(rates))
                return

        if self._snapshot is None:
            self._snapshot = RateSnapshot(
                base_currency=self.base_currency,
                rates=parse_rate_table(self.fallback_rates, self.base_currency),
                fetched_at=now,
                source="fallback",
            )
            logger.info("Using fallback exchange rates")
        else:
            logger.info("Keeping exchange rates fetched at %s", self._snapshot.fetched_at.isoformat())
        self._retry_after = now + timedelta(seconds=self.refresh_interval)
