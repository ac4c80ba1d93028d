from datetime import date
from decimal import Decimal

from expense_engine.currency_engine import CurrencyEngine
from expense_engine.finance_service import FinanceService
from expense_engine.rate_cache import RateCache, StaticRateSource
from expense_engine.store import FinanceStore, build_engine

TEST_RATES = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.5"),
    "PHP": Decimal("50"),
}


def build_store() -> FinanceStore:
    store = FinanceStore(build_engine("sqlite://"))
    store.create_all()
    return store


def build_service(store: FinanceStore, today: date) -> FinanceService:
    currency = CurrencyEngine(
        rate_cache=RateCache(source=StaticRateSource(rates=TEST_RATES)),
        default_currency="PHP",
    )
    return FinanceService(store=store, currency=currency, today=lambda: today)
