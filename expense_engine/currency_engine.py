from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import logging
from types import MappingProxyType
from typing import Mapping

from expense_engine.rate_cache import RateCache

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DEFAULT_CURRENCY = "PHP"


@dataclass(frozen=True)
class CurrencyProfile:
    code: str
    name: str
    symbol: str
    position: str = "before"
    decimals: int = 2
    thousands_separator: str = ","
    decimal_separator: str = "."


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: str


SUPPORTED_CURRENCIES: Mapping[str, CurrencyProfile] = MappingProxyType(
    {
        profile.code: profile
        for profile in (
            CurrencyProfile("USD", "US Dollar", "$"),
            CurrencyProfile("EUR", "Euro", "€", thousands_separator=".", decimal_separator=","),
            CurrencyProfile("GBP", "British Pound", "£"),
            CurrencyProfile("JPY", "Japanese Yen", "¥", decimals=0),
            CurrencyProfile("CAD", "Canadian Dollar", "C$"),
            CurrencyProfile("AUD", "Australian Dollar", "A$"),
            CurrencyProfile("CHF", "Swiss Franc", "CHF", position="after", thousands_separator="'"),
            CurrencyProfile("CNY", "Chinese Yuan", "¥"),
            CurrencyProfile("INR", "Indian Rupee", "₹"),
            CurrencyProfile("PHP", "Philippine Peso", "₱"),
        )
    }
)


@dataclass(frozen=True)
class CurrencyEngine:
    """Formats, parses and converts monetary amounts.

    Unknown currency codes resolve to ``default_currency`` for formatting and
    parsing. Conversion between codes missing from the current rate snapshot
    returns the amount unchanged.
    """

    rate_cache: RateCache = field(default_factory=RateCache)
    default_currency: str = DEFAULT_CURRENCY
    profiles: Mapping[str, CurrencyProfile] = field(default_factory=lambda: SUPPORTED_CURRENCIES)

    def __post_init__(self) -> None:
        normalized = normalize_currency(self.default_currency)
        if normalized not in self.profiles:
            raise ValueError(f"Unsupported default currency: {normalized}")
        object.__setattr__(self, "default_currency", normalized)

    def profile(self, currency: str | None = None) -> CurrencyProfile:
        code = safe_normalize_currency(currency)
        return self.profiles.get(code) or self.profiles[self.default_currency]

    def resolve_currency(self, currency: str | None = None) -> str:
        return self.profile(currency).code

    def is_supported(self, currency: str | None) -> bool:
        return safe_normalize_currency(currency) in self.profiles

    def supported_currencies(self) -> list[str]:
        return list(self.profiles)

    def currency_details(self, currency: str | None) -> CurrencyProfile | None:
        return self.profiles.get(safe_normalize_currency(currency))

    def symbol(self, currency: str | None = None) -> str:
        return self.profile(currency).symbol

    def position(self, currency: str | None = None) -> str:
        return self.profile(currency).position

    def decimals(self, currency: str | None = None) -> int:
        return self.profile(currency).decimals

    def money(self, amount: Decimal | int | float | str, currency: str | None = None) -> Money:
        return Money(amount=coerce_amount(amount), currency=self.resolve_currency(currency))

    def format(self, amount: Decimal | int | float | str, currency: str | None = None) -> str:
        profile = self.profile(currency)
        quantum = Decimal(1).scaleb(-profile.decimals)
        try:
            rounded = coerce_amount(amount).quantize(quantum, rounding=ROUND_HALF_UP)
        except InvalidOperation as exc:
            raise ValueError("Amount out of range.") from exc
        sign = "-" if rounded < 0 else ""
        whole, _, fraction = f"{abs(rounded):f}".partition(".")
        number = _group_thousands(whole, profile.thousands_separator)
        if profile.decimals:
            number = f"{number}{profile.decimal_separator}{fraction}"
        if profile.position == "after":
            return f"{sign}{number} {profile.symbol}"
        return f"{sign}{profile.symbol}{number}"

    def parse(self, text: str | None, currency: str | None = None) -> Decimal:
        """Inverse of :meth:`format`.

        Lossy by contract: anything that cannot be read as a number yields
        ``Decimal("0")``. Callers that need strict validation must check the
        input themselves.
        """
        if text is None:
            return ZERO
        profile = self.profile(currency)
        cleaned = "".join(str(text).replace(profile.symbol, "").split())
        if profile.thousands_separator:
            cleaned = cleaned.replace(profile.thousands_separator, "")
        if profile.decimal_separator != ".":
            cleaned = cleaned.replace(profile.decimal_separator, ".")
        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            return ZERO
        if not value.is_finite():
            return ZERO
        return value

    def convert(
        self,
        amount: Decimal | int | float | str,
        source_currency: str | None,
        target_currency: str | None,
    ) -> Decimal:
        return self.exchange(amount, source_currency, target_currency).amount

    def exchange(
        self,
        amount: Decimal | int | float | str,
        source_currency: str | None,
        target_currency: str | None,
    ) -> Money:
        """Convert ``amount`` and report which currency the result is in.

        Without a rate for either side the amount stays in the source currency.
        """
        value = coerce_amount(amount)
        source = safe_normalize_currency(source_currency)
        target = safe_normalize_currency(target_currency)
        if source == target:
            return Money(amount=value, currency=target or self.default_currency)

        snapshot = self.rate_cache.get_rates()
        source_rate = snapshot.rate_for(source) if source else None
        target_rate = snapshot.rate_for(target) if target else None
        if source_rate is None or target_rate is None:
            logger.debug(
                "No rate for %s -> %s, returning amount unconverted",
                source_currency,
                target_currency,
            )
            return Money(amount=value, currency=source or self.default_currency)
        return Money(amount=value / source_rate * target_rate, currency=target)


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def safe_normalize_currency(value: str | None) -> str | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return normalize_currency(value)
    except ValueError:
        return None


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, bool):
        raise ValueError("Invalid amount.")
    if isinstance(amount, Decimal):
        value = amount
    else:
        try:
            value = Decimal(str(amount).strip())
        except InvalidOperation as exc:
            raise ValueError("Invalid amount.") from exc
    if not value.is_finite():
        raise ValueError("Invalid amount.")
    return value


def _group_thousands(digits: str, separator: str) -> str:
    groups: list[str] = []
    while len(digits) > 3:
        groups.insert(0, digits[-3:])
        digits = digits[:-3]
    groups.insert(0, digits)
    return separator.join(groups)
