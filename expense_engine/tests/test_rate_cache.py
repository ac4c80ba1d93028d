from http.client import IncompleteRead
import io
import json
import threading
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch
from urllib.error import URLError

from expense_engine.currency_engine import SUPPORTED_CURRENCIES, CurrencyEngine
from expense_engine.rate_cache import (
    FALLBACK_RATES,
    HttpRateSource,
    RateCache,
    RateSourceError,
    StaticRateSource,
    parse_rate_table,
)

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class ScriptedSource:
    """Returns the queued responses in order; exceptions are raised."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls = 0

    def fetch(self, base_currency: str):
        self.calls += 1
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return parse_rate_table(response, base_currency)


class RateCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock(START)

    def test_first_read_fetches_live_rates(self) -> None:
        source = ScriptedSource({"USD": "1", "EUR": "0.9"})
        cache = RateCache(source=source, clock=self.clock)

        snapshot = cache.get_rates()

        self.assertEqual(snapshot.source, "live")
        self.assertEqual(snapshot.rate_for("EUR"), Decimal("0.9"))
        self.assertEqual(snapshot.fetched_at, START)
        self.assertEqual(source.calls, 1)

    def test_fresh_snapshot_is_reused(self) -> None:
        source = ScriptedSource({"USD": "1", "EUR": "0.9"})
        cache = RateCache(source=source, refresh_interval=60, clock=self.clock)

        first = cache.get_rates()
        self.clock.advance(30)
        second = cache.get_rates()

        self.assertIs(first, second)
        self.assertEqual(source.calls, 1)

    def test_stale_snapshot_is_replaced(self) -> None:
        source = ScriptedSource({"USD": "1", "EUR": "0.9"}, {"USD": "1", "EUR": "0.8"})
        cache = RateCache(source=source, refresh_interval=60, clock=self.clock)

        cache.get_rates()
        self.clock.advance(61)
        snapshot = cache.get_rates()

        self.assertEqual(snapshot.rate_for("EUR"), Decimal("0.8"))
        self.assertEqual(snapshot.fetched_at, self.clock.now)

    def test_failed_refresh_keeps_previous_snapshot(self) -> None:
        source = ScriptedSource(
            {"USD": "1", "EUR": "0.9"},
            RateSourceError("offline"),
        )
        cache = RateCache(source=source, refresh_interval=60, clock=self.clock)

        first = cache.get_rates()
        self.clock.advance(61)
        second = cache.get_rates()

        self.assertIs(first, second)
        self.assertEqual(second.fetched_at, START)
        self.assertEqual(second.rate_for("EUR"), Decimal("0.9"))

    def test_failed_refresh_waits_one_interval_before_retrying(self) -> None:
        source = ScriptedSource(
            {"USD": "1", "EUR": "0.9"},
            RateSourceError("offline"),
            {"USD": "1", "EUR": "0.7"},
        )
        cache = RateCache(source=source, refresh_interval=60, clock=self.clock)

        cache.get_rates()
        self.clock.advance(61)
        cache.get_rates()
        self.clock.advance(30)
        cache.get_rates()
        self.assertEqual(source.calls, 2)

        self.clock.advance(31)
        snapshot = cache.get_rates()

        self.assertEqual(source.calls, 3)
        self.assertEqual(snapshot.rate_for("EUR"), Decimal("0.7"))

    def test_first_failure_uses_fallback_table(self) -> None:
        cache = RateCache(source=ScriptedSource(RateSourceError("offline")), clock=self.clock)

        snapshot = cache.get_rates()

        self.assertEqual(snapshot.source, "fallback")
        self.assertEqual(snapshot.fetched_at, START)
        self.assertEqual(snapshot.rate_for("PHP"), FALLBACK_RATES["PHP"])

    def test_cache_without_source_uses_fallback_table(self) -> None:
        snapshot = RateCache(clock=self.clock).get_rates()

        self.assertEqual(snapshot.source, "fallback")
        self.assertEqual(set(snapshot.rates), set(FALLBACK_RATES))

    def test_snapshot_rates_are_read_only(self) -> None:
        snapshot = RateCache(source=StaticRateSource(), clock=self.clock).get_rates()

        with self.assertRaises(TypeError):
            snapshot.rates["USD"] = Decimal("2")

    def test_unexpected_source_error_uses_fallback_table(self) -> None:
        cache = RateCache(source=ScriptedSource(RuntimeError("boom")), clock=self.clock)

        with self.assertLogs("expense_engine.rate_cache", level="WARNING"):
            snapshot = cache.get_rates()

        self.assertEqual(snapshot.source, "fallback")

    def test_unexpected_source_error_keeps_previous_snapshot(self) -> None:
        source = ScriptedSource({"USD": "1", "EUR": "0.9"}, KeyError("rates"))
        cache = RateCache(source=source, refresh_interval=60, clock=self.clock)

        first = cache.get_rates()
        self.clock.advance(61)

        self.assertIs(cache.get_rates(), first)

    def test_default_tables_are_shared(self) -> None:
        self.assertIs(RateCache().fallback_rates, FALLBACK_RATES)
        self.assertIs(CurrencyEngine().profiles, SUPPORTED_CURRENCIES)


class BlockingSource:
    """Serves one table at once, then blocks the next fetch until released."""

    def __init__(self) -> None:
        self.calls = 0
        self.started = threading.Event()
        self.release = threading.Event()

    def fetch(self, base_currency: str):
        self.calls += 1
        if self.calls > 1:
            self.started.set()
            self.release.wait(5)
            return parse_rate_table({"EUR": "0.8"}, base_currency)
        return parse_rate_table({"EUR": "0.9"}, base_currency)


class RateCacheConcurrencyTests(unittest.TestCase):
    def test_readers_get_current_snapshot_while_refresh_runs(self) -> None:
        clock = FakeClock(START)
        source = BlockingSource()
        cache = RateCache(source=source, refresh_interval=60, clock=clock)
        first = cache.get_rates()
        clock.advance(61)

        results = []
        refresher = threading.Thread(target=lambda: results.append(cache.get_rates()))
        refresher.start()
        try:
            self.assertTrue(source.started.wait(5))
            during = cache.get_rates()
        finally:
            source.release.set()
            refresher.join(5)

        self.assertIs(during, first)
        self.assertEqual(during.rate_for("EUR"), Decimal("0.9"))
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].rate_for("EUR"), Decimal("0.8"))
        self.assertIs(cache.get_rates(), results[0])
        self.assertEqual(source.calls, 2)

    def test_first_readers_wait_for_initial_snapshot(self) -> None:
        source = BlockingSource()
        source.calls = 1
        cache = RateCache(source=source, clock=FakeClock(START))

        results = []
        readers = [
            threading.Thread(target=lambda: results.append(cache.get_rates())) for _ in range(3)
        ]
        for reader in readers:
            reader.start()
        self.assertTrue(source.started.wait(5))
        source.release.set()
        for reader in readers:
            reader.join(5)

        self.assertEqual(len(results), 3)
        self.assertTrue(all(snapshot is results[0] for snapshot in results))
        self.assertEqual(source.calls, 2)


class HttpRateSourceTests(unittest.TestCase):
    def test_reads_rates_from_response(self) -> None:
        body = io.BytesIO(json.dumps({"base": "USD", "rates": {"EUR": 0.9, "PHP": 56.1}}).encode())

        with patch("expense_engine.rate_cache.urlopen", return_value=body) as opener:
            rates = HttpRateSource(url="https://rates.test/latest/").fetch("USD")

        request = opener.call_args.args[0]
        self.assertEqual(request.full_url, "https://rates.test/latest/USD")
        self.assertEqual(rates["PHP"], Decimal("56.1"))
        self.assertEqual(rates["USD"], Decimal("1"))

    def test_network_error_becomes_rate_source_error(self) -> None:
        with patch("expense_engine.rate_cache.urlopen", side_effect=URLError("down")):
            with self.assertRaises(RateSourceError):
                HttpRateSource().fetch("USD")

    def test_malformed_body_becomes_rate_source_error(self) -> None:
        for body in (b"not json", b"[1, 2]", b'{"rates": {}}'):
            with self.subTest(body=body):
                with patch("expense_engine.rate_cache.urlopen", return_value=io.BytesIO(body)):
                    with self.assertRaises(RateSourceError):
                        HttpRateSource().fetch("USD")

    def test_undecodable_body_becomes_rate_source_error(self) -> None:
        body = io.BytesIO(b'{"rates": {"EUR": "\xff"}}')

        with patch("expense_engine.rate_cache.urlopen", return_value=body):
            with self.assertRaises(RateSourceError):
                HttpRateSource().fetch("USD")

    def test_truncated_response_becomes_rate_source_error(self) -> None:
        with patch("expense_engine.rate_cache.urlopen", side_effect=IncompleteRead(b"")):
            with self.assertRaises(RateSourceError):
                HttpRateSource().fetch("USD")

    def test_cache_recovers_from_bad_http_responses(self) -> None:
        clock = FakeClock(START)
        good = io.BytesIO(json.dumps({"rates": {"EUR": 0.5}}).encode())
        cache = RateCache(source=HttpRateSource(), refresh_interval=60, clock=clock)

        with patch("expense_engine.rate_cache.urlopen", return_value=io.BytesIO(b"\xff\xfe")):
            self.assertEqual(cache.get_rates().source, "fallback")

        cache = RateCache(source=HttpRateSource(), refresh_interval=60, clock=clock)
        engine = CurrencyEngine(rate_cache=cache)
        with patch(
            "expense_engine.rate_cache.urlopen", side_effect=[good, IncompleteRead(b"")]
        ):
            first = cache.get_rates()
            clock.advance(61)
            converted = engine.convert(Decimal("10"), "USD", "EUR")

        self.assertEqual(first.source, "live")
        self.assertIs(cache.get_rates(), first)
        self.assertEqual(converted, Decimal("5"))


class ParseRateTableTests(unittest.TestCase):
    def test_base_currency_is_pinned_to_one(self) -> None:
        rates = parse_rate_table({"usd": 1.0, "EUR": "0.85"}, "USD")

        self.assertEqual(rates["USD"], Decimal("1"))
        self.assertEqual(rates["EUR"], Decimal("0.85"))

    def test_rejects_missing_table(self) -> None:
        with self.assertRaises(RateSourceError):
            parse_rate_table(None, "USD")
        with self.assertRaises(RateSourceError):
            parse_rate_table({}, "USD")

    def test_rejects_non_positive_or_malformed_rates(self) -> None:
        for bad in ("0", "-1", "abc", True, "NaN"):
            with self.subTest(rate=bad):
                with self.assertRaises(RateSourceError):
                    parse_rate_table({"EUR": bad}, "USD")


if __name__ == "__main__":
    unittest.main()
