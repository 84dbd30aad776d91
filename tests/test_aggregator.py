"""Multi-provider aggregation: reference fallback, mandatory sub-calls, currency checks."""

import asyncio
from dataclasses import replace

import pytest

from conftest import make_global, make_item
from financeflow.core.errors import ConfigurationMissing, UpstreamFailure, ValidationFailure
from financeflow.models.datatypes import Capability, StockQuote, TradingPair
from financeflow.pipeline.aggregator import SnapshotAggregator, SubCall, normalize_currency
from financeflow.pipeline.fetcher import ChunkedFetcher
from financeflow.providers.base import MarketListingProvider, TradingPairProvider
from financeflow.providers.crypto import CoinMarketCapProvider


class FakeMarket(MarketListingProvider):
    def __init__(self, provider, items=None, global_metrics=None, fail_global=False):
        super().__init__(provider)
        self.items = items if items is not None else [make_item()]
        self.global_metrics = global_metrics or make_global()
        self.fail_global = fail_global

    async def fetch_bulk(self, limit=10, currency="USD"):
        return self.items[:limit]

    async def fetch_global(self, currency="USD"):
        if self.fail_global:
            raise UpstreamFailure("coinmarketcap API error: 500 Internal Server Error", provider=self.name)
        return self.global_metrics


class FakePairs(TradingPairProvider):
    async def fetch_bulk(self, limit=10):
        return [TradingPair(
            symbol="BTCUSDT", price=100.0, change_24h=1.0, change_pct_24h=1.0, high_24h=101.0,
            low_24h=99.0, volume_24h=10.0, quote_volume_24h=1000.0, currency="USDT",
        )]


def _cmc(make_provider, credential=None):
    return make_provider(
        name="coinmarketcap", auth_required=True, credential=credential,
        rate_limit=30, window=60.0, capability=Capability.LISTINGS,
    )


@pytest.mark.asyncio
async def test_missing_credential_uses_reference_snapshot(make_provider, fixed_clock):
    adapter = CoinMarketCapProvider(_cmc(make_provider), client=None)

    snapshot = await SnapshotAggregator(clock=fixed_clock).market_snapshot(adapter, limit=10)

    assert list(snapshot.views) == ["global", "items"]
    assert snapshot.sources == ("coinmarketcap (reference)",)
    assert [i.symbol for i in snapshot.view("items")] == ["BTC", "ETH"]
    assert snapshot.view("global").btc_dominance == 56.5
    assert snapshot.generated_at == fixed_clock()


@pytest.mark.asyncio
async def test_live_sub_calls_are_merged_by_name(make_provider):
    adapter = FakeMarket(_cmc(make_provider, credential="key"))
    pairs = FakePairs(make_provider(name="binance", capability=Capability.LISTINGS))

    snapshot = await SnapshotAggregator().market_snapshot(adapter, limit=5, trading=pairs)

    assert list(snapshot.views) == ["global", "items", "pairs"]
    assert snapshot.sources == ("coinmarketcap", "binance")
    assert isinstance(snapshot.view("items"), tuple)


@pytest.mark.asyncio
async def test_views_are_exactly_the_sub_calls_in_declared_order(make_provider):
    provider = make_provider(name="binance", capability=Capability.LISTINGS)

    async def slow():
        await asyncio.sleep(0.01)
        return "slow"

    async def fast():
        return "fast"

    snapshot = await SnapshotAggregator().aggregate([
        SubCall(name="first", provider=provider, call=slow),
        SubCall(name="second", provider=provider, call=fast),
    ])

    assert list(snapshot.views) == ["first", "second"]
    assert snapshot.view("first") == "slow"
    assert snapshot.sources == ("binance",)


@pytest.mark.asyncio
async def test_failed_mandatory_sub_call_fails_whole_aggregation(make_provider):
    adapter = FakeMarket(_cmc(make_provider, credential="key"), fail_global=True)

    with pytest.raises(UpstreamFailure) as exc_info:
        await SnapshotAggregator().market_snapshot(adapter)

    assert exc_info.value.sub_call == "global"
    assert exc_info.value.provider == "coinmarketcap"
    assert "500" in exc_info.value.message


@pytest.mark.asyncio
async def test_sub_call_timeout_is_an_upstream_failure(make_provider):
    async def hang():
        await asyncio.sleep(5)

    sub = SubCall(name="items", provider=make_provider(), call=hang)
    with pytest.raises(UpstreamFailure) as exc_info:
        await SnapshotAggregator(timeout=0.05).aggregate([sub])
    assert exc_info.value.sub_call == "items"


@pytest.mark.asyncio
async def test_no_credential_and_no_reference_is_configuration_missing(make_provider):
    async def never():
        raise AssertionError("must not be called")

    sub = SubCall(name="stocks", provider=make_provider(auth_required=True), call=never)
    with pytest.raises(ConfigurationMissing):
        await SnapshotAggregator().aggregate([sub])


@pytest.mark.asyncio
async def test_currency_mismatch_is_rejected(make_provider):
    eur_item = replace(make_item(), currency="EUR")
    adapter = FakeMarket(_cmc(make_provider, credential="key"), items=[eur_item])

    with pytest.raises(ValidationFailure):
        await SnapshotAggregator(currency="USD").market_snapshot(adapter)


@pytest.mark.asyncio
async def test_reference_snapshot_is_usd_only(make_provider):
    adapter = CoinMarketCapProvider(_cmc(make_provider), client=None)

    with pytest.raises(ValidationFailure):
        await SnapshotAggregator(currency="EUR").market_snapshot(adapter)


def test_stablecoin_quotes_reconcile_to_usd():
    assert normalize_currency("usdt") == "USD"
    assert normalize_currency("EUR") == "EUR"


@pytest.mark.asyncio
async def test_portfolio_snapshot_reports_failed_symbols(make_provider, sleep_recorder):
    provider = make_provider(name="alphavantage", auth_required=True, credential="key")

    async def quote(symbol):
        if symbol == "BAD":
            raise UpstreamFailure("No data found for symbol: BAD", provider="alphavantage")
        return StockQuote(
            symbol=symbol, price=100.0, change=1.0, change_pct=1.0,
            volume=1000, latest_trading_day="2025-06-02",
        )

    fetcher = ChunkedFetcher(provider, quote, sleep=sleep_recorder)
    snapshot = await SnapshotAggregator().portfolio_snapshot(fetcher, ["AAPL", "BAD", "MSFT"])

    summary = snapshot.view("portfolio")
    assert [q.symbol for q in snapshot.view("stocks")] == ["AAPL", "MSFT"]
    assert summary["total_value"] == 200.0
    assert summary["count"] == 2
    assert summary["requested"] == 3
    assert summary["failed"][0]["symbol"] == "BAD"
    assert snapshot.sources == ("alphavantage",)
    assert snapshot.to_dict()["views"]["portfolio"]["failed"] == [
        {"symbol": "BAD", "reason": "upstream_failure: No data found for symbol: BAD"}
    ]
