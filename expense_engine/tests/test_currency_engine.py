import unittest
from decimal import Decimal

from expense_engine.currency_engine import (
    SUPPORTED_CURRENCIES,
    CurrencyEngine,
    Money,
    coerce_amount,
    normalize_currency,
    safe_normalize_currency,
)
from expense_engine.rate_cache import RateCache, StaticRateSource


def build_engine(default_currency: str = "PHP") -> CurrencyEngine:
    source = StaticRateSource(
        rates={"USD": Decimal("1"), "EUR": Decimal("0.5"), "PHP": Decimal("50")}
    )
    return CurrencyEngine(rate_cache=RateCache(source=source), default_currency=default_currency)


class CurrencyFormatTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine()

    def test_formats_with_profile_conventions(self) -> None:
        cases = [
            (Decimal("1234.5"), "USD", "$1,234.50"),
            (Decimal("1234.5"), "EUR", "€1.234,50"),
            (Decimal("1234.5"), "JPY", "¥1,235"),
            (Decimal("1234.5"), "CHF", "1'234.50 CHF"),
            (Decimal("1234567.891"), "INR", "₹1,234,567.89"),
            (Decimal("0"), "GBP", "£0.00"),
        ]
        for amount, currency, expected in cases:
            with self.subTest(currency=currency):
                self.assertEqual(self.engine.format(amount, currency), expected)

    def test_rounds_half_up(self) -> None:
        self.assertEqual(self.engine.format(Decimal("0.005"), "USD"), "$0.01")
        self.assertEqual(self.engine.format(Decimal("2.5"), "JPY"), "¥3")

    def test_negative_amount_puts_sign_first(self) -> None:
        self.assertEqual(self.engine.format(Decimal("-5"), "USD"), "-$5.00")
        self.assertEqual(self.engine.format(Decimal("-1234.5"), "CHF"), "-1'234.50 CHF")

    def test_unknown_currency_uses_default_profile(self) -> None:
        self.assertEqual(self.engine.format(Decimal("10"), "XYZ"), "₱10.00")
        self.assertEqual(self.engine.format(Decimal("10"), None), "₱10.00")

    def test_lowercase_code_is_accepted(self) -> None:
        self.assertEqual(self.engine.format(Decimal("10"), " usd "), "$10.00")

    def test_out_of_range_amount_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.engine.format(Decimal("1e40"), "USD")


class CurrencyParseTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine()

    def test_parse_inverts_format_for_every_currency(self) -> None:
        amount = Decimal("-98765.4")
        for code, profile in SUPPORTED_CURRENCIES.items():
            with self.subTest(currency=code):
                expected = amount.quantize(Decimal(1).scaleb(-profile.decimals))
                formatted = self.engine.format(amount, code)
                self.assertEqual(self.engine.parse(formatted, code), expected)

    def test_unreadable_text_parses_to_zero(self) -> None:
        self.assertEqual(self.engine.parse("not money", "USD"), Decimal("0"))
        self.assertEqual(self.engine.parse("", "USD"), Decimal("0"))
        self.assertEqual(self.engine.parse(None, "USD"), Decimal("0"))
        self.assertEqual(self.engine.parse("Infinity", "USD"), Decimal("0"))

    def test_parse_ignores_whitespace(self) -> None:
        self.assertEqual(self.engine.parse(" $ 1,000.25 ", "USD"), Decimal("1000.25"))


class CurrencyConvertTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine()

    def test_same_currency_returns_amount(self) -> None:
        self.assertEqual(self.engine.convert(Decimal("12.50"), "usd", "USD"), Decimal("12.50"))

    def test_converts_through_base_rates(self) -> None:
        self.assertEqual(self.engine.convert(Decimal("100"), "USD", "EUR"), Decimal("50"))
        self.assertEqual(self.engine.convert(Decimal("50"), "EUR", "PHP"), Decimal("5000"))

    def test_round_trip_restores_amount(self) -> None:
        there = self.engine.convert(Decimal("123.45"), "USD", "PHP")
        back = self.engine.convert(there, "PHP", "USD")

        self.assertEqual(back, Decimal("123.45"))

    def test_missing_rate_returns_amount_unchanged(self) -> None:
        self.assertEqual(self.engine.convert(Decimal("10"), "USD", "GBP"), Decimal("10"))
        self.assertEqual(self.engine.convert(Decimal("10"), "USD", "bogus"), Decimal("10"))

    def test_exchange_reports_currency_of_result(self) -> None:
        converted = self.engine.exchange(Decimal("100"), "usd", "EUR")
        unconverted = self.engine.exchange(Decimal("10"), "USD", "XYZ")
        missing_rate = self.engine.exchange(Decimal("10"), "EUR", "GBP")

        self.assertEqual(converted, Money(amount=Decimal("50"), currency="EUR"))
        self.assertEqual(unconverted, Money(amount=Decimal("10"), currency="USD"))
        self.assertEqual(missing_rate, Money(amount=Decimal("10"), currency="EUR"))


class CurrencyEngineTests(unittest.TestCase):
    def test_profile_lookups(self) -> None:
        engine = build_engine()

        self.assertEqual(engine.symbol("EUR"), "€")
        self.assertEqual(engine.position("CHF"), "after")
        self.assertEqual(engine.decimals("JPY"), 0)
        self.assertTrue(engine.is_supported(" cad "))
        self.assertFalse(engine.is_supported("XYZ"))
        self.assertIsNone(engine.currency_details("XYZ"))
        self.assertEqual(len(engine.supported_currencies()), 10)

    def test_unsupported_default_currency_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            build_engine(default_currency="XYZ")

    def test_money_resolves_currency(self) -> None:
        money = build_engine(default_currency="usd").money("7.5", "nope")

        self.assertEqual(money.amount, Decimal("7.5"))
        self.assertEqual(money.currency, "USD")


class CurrencyHelperTests(unittest.TestCase):
    def test_normalize_currency(self) -> None:
        self.assertEqual(normalize_currency(" eur "), "EUR")
        with self.assertRaises(ValueError):
            normalize_currency("EURO")
        self.assertIsNone(safe_normalize_currency("12$"))
        self.assertIsNone(safe_normalize_currency(None))

    def test_coerce_amount_rejects_bad_values(self) -> None:
        for bad in ("abc", True, float("nan"), "Infinity"):
            with self.subTest(value=bad):
                with self.assertRaises(ValueError):
                    coerce_amount(bad)
        self.assertEqual(coerce_amount(3), Decimal("3"))


if __name__ == "__main__":
    unittest.main()
