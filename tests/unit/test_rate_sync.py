"""
Unit tests for cms_api/services/rate_sync.py

No network and no database: quotes come from a stub source and rows land in
an in-memory store.
  - derive_rates: inversion, symmetric spread, allow-list filtering
  - RateSyncEngine.sync_all: created/updated actions, idempotence,
    source failures, per-currency store failures
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Mapping, Optional
from unittest.mock import AsyncMock

import pytest

from cms_api.services.rate_source import ExternalSourceError
from cms_api.services.rate_sync import (
    ALLOW_LIST,
    DerivedRate,
    RateSyncEngine,
    SyncResult,
    derive_rates,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class StubSource:
    def __init__(self, quotes: Optional[Mapping[str, object]] = None, error: Optional[Exception] = None):
        self.quotes = quotes or {}
        self.error = error
        self.calls = 0

    async def fetch_quotes(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.quotes


class MemoryRateStore:
    """Dict-backed RateStore keyed by currency code."""

    def __init__(self, fail_on: Optional[set] = None):
        self.rows: Dict[str, dict] = {}
        self.fail_on = fail_on or set()

    async def upsert(self, rate: DerivedRate, base_currency: str, synced_at: datetime) -> str:
        if rate.currency_code in self.fail_on:
            raise RuntimeError(f"duplicate key for {rate.currency_code}")
        row = self.rows.get(rate.currency_code)
        if row:
            row.update(buy_rate=rate.buy_rate, sell_rate=rate.sell_rate, last_synced_at=synced_at)
            return "updated"
        self.rows[rate.currency_code] = {
            "display_name": rate.display_name,
            "flag_glyph": rate.flag_glyph,
            "buy_rate": rate.buy_rate,
            "sell_rate": rate.sell_rate,
            "base_currency_code": base_currency,
            "active": True,
            "last_synced_at": synced_at,
        }
        return "created"


# ---------------------------------------------------------------------------
# derive_rates
# ---------------------------------------------------------------------------


def test_derive_usd_example():
    [usd] = derive_rates({"USD": 0.0004}, Decimal("0.02"))
    assert usd.currency_code == "USD"
    assert usd.midpoint == Decimal("2500")
    assert usd.buy_rate == Decimal("2475")
    assert usd.sell_rate == Decimal("2525")
    assert usd.display_name == "US Dollar"


@pytest.mark.parametrize("quote", [0.0004, 0.00037, 0.0061, 0.052, 1.0, 3.3])
@pytest.mark.parametrize("spread", ["0.001", "0.02", "0.1", "0.5", "0.99"])
def test_spread_gap_equals_midpoint_times_spread(quote, spread):
    s = Decimal(spread)
    [rate] = derive_rates({"EUR": quote}, s)
    assert rate.sell_rate > rate.buy_rate > 0
    assert rate.sell_rate - rate.buy_rate == pytest.approx(rate.midpoint * s, rel=Decimal("1e-20"))


def test_derive_skips_codes_not_in_upstream():
    derived = derive_rates({"USD": 0.0004, "GBP": 0.0003})
    assert [r.currency_code for r in derived] == ["USD", "GBP"]


def test_derive_ignores_codes_outside_allow_list():
    derived = derive_rates({"USD": 0.0004, "BTC": 0.00000001, "XAU": 0.0000002})
    assert [r.currency_code for r in derived] == ["USD"]


@pytest.mark.parametrize("bad", [0, -0.0004, None, "abc", True, float("inf"), float("nan")])
def test_derive_skips_unusable_quotes(bad):
    assert derive_rates({"USD": bad}) == []


def test_derive_preserves_allow_list_order():
    quotes = {code: 0.001 for code in reversed(list(ALLOW_LIST))}
    assert [r.currency_code for r in derive_rates(quotes)] == list(ALLOW_LIST)


@pytest.mark.parametrize("spread", ["0", "1", "-0.02", "1.5"])
def test_derive_rejects_spread_outside_unit_interval(spread):
    with pytest.raises(ValueError):
        derive_rates({"USD": 0.0004}, Decimal(spread))


# ---------------------------------------------------------------------------
# RateSyncEngine.sync_all
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sync_creates_then_updates():
    store = MemoryRateStore()
    engine = RateSyncEngine(store, StubSource({"USD": 0.0004}), spread=Decimal("0.02"))

    first = await engine.sync_all()
    assert first.to_dict() == {"success": True, "updates": [{"currency": "USD", "action": "created"}]}
    assert store.rows["USD"]["buy_rate"] == Decimal("2475")
    assert store.rows["USD"]["sell_rate"] == Decimal("2525")
    assert store.rows["USD"]["active"] is True
    assert store.rows["USD"]["base_currency_code"] == "TZS"
    assert store.rows["USD"]["flag_glyph"] == ALLOW_LIST["USD"].flag_glyph

    second = await engine.sync_all()
    assert second.to_dict() == {"success": True, "updates": [{"currency": "USD", "action": "updated"}]}


@pytest.mark.asyncio
async def test_sync_is_idempotent_for_unchanged_upstream():
    quotes = {"USD": 0.000398, "EUR": 0.000367, "KES": 0.0497, "JPY": 0.0583}
    store = MemoryRateStore()
    engine = RateSyncEngine(store, StubSource(quotes))

    await engine.sync_all()
    snapshot = {c: (r["buy_rate"], r["sell_rate"]) for c, r in store.rows.items()}
    await engine.sync_all()
    assert {c: (r["buy_rate"], r["sell_rate"]) for c, r in store.rows.items()} == snapshot


@pytest.mark.asyncio
async def test_sync_excludes_currencies_missing_upstream():
    engine = RateSyncEngine(MemoryRateStore(), StubSource({"USD": 0.0004, "EUR": 0.00037}))
    result = await engine.sync_all()
    assert result.success is True
    assert {u.currency for u in result.updates} == {"USD", "EUR"}


@pytest.mark.asyncio
async def test_sync_source_failure_writes_nothing():
    store = MemoryRateStore()
    store.upsert = AsyncMock(side_effect=AssertionError("must not write"))
    engine = RateSyncEngine(store, StubSource(error=ExternalSourceError("Quote source returned status 503")))

    result = await engine.sync_all()

    assert isinstance(result, SyncResult)
    assert result.success is False
    assert "503" in result.error
    assert result.to_dict() == {"success": False, "error": "Quote source returned status 503"}
    store.upsert.assert_not_awaited()


@pytest.mark.asyncio
async def test_sync_store_failure_drops_only_that_currency():
    store = MemoryRateStore(fail_on={"EUR"})
    engine = RateSyncEngine(store, StubSource({"USD": 0.0004, "EUR": 0.00037, "GBP": 0.00031}))

    result = await engine.sync_all()

    assert result.success is True
    assert [u.currency for u in result.updates] == ["USD", "GBP"]
    assert set(store.rows) == {"USD", "GBP"}


@pytest.mark.asyncio
async def test_sync_uses_configured_base_currency():
    store = MemoryRateStore()
    engine = RateSyncEngine(store, StubSource({"USD": 0.0004}), base_currency="tzs")
    await engine.sync_all()
    assert store.rows["USD"]["base_currency_code"] == "TZS"


def test_engine_rejects_zero_spread():
    with pytest.raises(ValueError):
        RateSyncEngine(MemoryRateStore(), StubSource(), spread=Decimal("0"))
