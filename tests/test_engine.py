"""Entry points: envelopes, cache policies, limits and degraded paths."""

import json
import random

import httpx
import pytest

from conftest import FIXED_NOW
from financeflow.core.config import Settings
from financeflow.core.errors import InsightFailure
from financeflow.models.datatypes import Insight, Sentiment
from financeflow.pipeline.engine import FinanceFlowEngine, clamp_limit
from financeflow.pipeline.validator import validate
from financeflow.providers.base import InsightProducer

TICKERS = [
    {
        "symbol": "BTCUSDT", "lastPrice": "109000.0", "priceChange": "1500.0", "priceChangePercent": "1.4",
        "highPrice": "110000.0", "lowPrice": "107000.0", "volume": "20000.0", "quoteVolume": "2180000000.0",
    },
    {
        "symbol": "ETHBTC", "lastPrice": "0.035", "priceChange": "0.001", "priceChangePercent": "2.9",
        "highPrice": "0.036", "lowPrice": "0.034", "volume": "1000.0", "quoteVolume": "35.0",
    },
]


class StubProducer(InsightProducer):
    name = "stub"

    def __init__(self, error=None):
        self.error = error

    async def produce(self, snapshot):
        if self.error is not None:
            raise self.error
        return Insight(
            summary="Steady market.", sentiment=Sentiment.NEUTRAL, key_points=("Range-bound",),
            opportunities=(), risks=(), recommendation="Wait.", confidence=60, generated_at=FIXED_NOW,
        )


def _binance_ok(request):
    return httpx.Response(200, json=TICKERS)


def _engine(settings, mock_client, handler=_binance_ok, **kwargs):
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    return FinanceFlowEngine(settings, client=mock_client(handler), **kwargs)


def test_clamp_limit():
    assert clamp_limit(None, 10, 100) == 10
    assert clamp_limit(500, 10, 100) == 100
    assert clamp_limit(0, 10, 50) == 1
    assert clamp_limit("7", 10, 50) == 7


@pytest.mark.asyncio
async def test_malformed_limit_is_a_validation_failure(settings, mock_client):
    engine = _engine(settings, mock_client)

    for result in (
        await engine.market_overview(limit="abc"),
        await engine.trading_summary(limit=[5]),
        await engine.business_opportunities(limit="ten"),
        await engine.generate_report(limit=object()),
    ):
        assert not result.ok
        assert result.failure["kind"] == "validation_failure"


# ── market / trading ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_market_overview_uses_reference_data_without_key(settings, mock_client):
    result = await _engine(settings, mock_client).market_overview(limit=500)

    assert result.ok
    assert result.cache.max_age == 120
    assert result.payload["meta"]["limit"] == 100
    body = result.to_dict()
    assert body["ok"] is True
    assert body["snapshot"]["sources"] == ["coinmarketcap (reference)"]
    assert body["cache"] == {"max_age": 120, "stale_while_revalidate": 240}


@pytest.mark.asyncio
async def test_trading_summary(settings, mock_client):
    result = await _engine(settings, mock_client).trading_summary(limit=5)

    assert result.ok
    pairs = result.payload["snapshot"].view("pairs")
    assert [p.symbol for p in pairs] == ["BTCUSDT"]
    assert result.cache.max_age == 60


@pytest.mark.asyncio
async def test_trading_summary_upstream_error(settings, mock_client):
    result = await _engine(settings, mock_client, handler=lambda r: httpx.Response(500)).trading_summary()

    assert not result.ok
    assert result.failure["kind"] == "upstream_failure"
    assert result.failure["sub_call"] == "pairs"
    assert result.to_dict()["error"] == "upstream_failure"


# ── portfolio ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_portfolio_without_key_is_configuration_missing(settings, mock_client):
    result = await _engine(settings, mock_client).portfolio(["AAPL"])

    assert not result.ok
    assert result.failure["kind"] == "configuration_missing"
    assert result.cache.max_age == 60


@pytest.mark.asyncio
async def test_portfolio_chunks_and_reports_failures(mock_client, sleep_recorder):
    settings = Settings.from_config(
        {"fetch": {"group_size": 2, "group_delay_seconds": 0.5}},
        env={"ALPHAVANTAGE_API_KEY": "k"},
    )

    def handler(request):
        symbol = request.url.params["symbol"]
        if symbol == "BAD":
            return httpx.Response(200, json={})
        return httpx.Response(200, json={"Global Quote": {
            "01. symbol": symbol, "05. price": "10.0", "06. volume": "100",
            "07. latest trading day": "2025-06-02", "09. change": "0.1", "10. change percent": "1.0%",
        }})

    engine = _engine(settings, mock_client, handler=handler, sleep=sleep_recorder)
    result = await engine.portfolio(["aapl", "BAD", "msft"])

    assert result.ok
    summary = result.payload["snapshot"].view("portfolio")
    assert summary["count"] == 2
    assert summary["total_value"] == 20.0
    assert summary["groups"] == 2
    assert [f["symbol"] for f in summary["failed"]] == ["BAD"]
    assert sleep_recorder.calls == [0.5]


@pytest.mark.asyncio
async def test_malformed_symbols_are_a_validation_failure(mock_client):
    settings = Settings.from_config({}, env={"ALPHAVANTAGE_API_KEY": "k"})
    engine = _engine(settings, mock_client)

    result = await engine.portfolio(symbols=["AAPL", None])

    assert not result.ok
    assert result.failure["kind"] == "validation_failure"
    assert result.cache.max_age == 60


# ── opportunities ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_business_opportunities_filters_and_totals(settings, mock_client):
    result = await _engine(settings, mock_client).business_opportunities(category="saas")

    ranking = result.payload["ranking"]
    assert result.ok
    assert {o.id for o in ranking.opportunities()} == {"flip_001", "flip_004", "micro_005"}
    assert ranking.total_value == 172000
    assert result.cache.max_age == 1800
    assert result.to_dict()["ranking"]["count"] == 3


@pytest.mark.asyncio
async def test_business_opportunities_with_listed_scores(mock_client):
    settings = Settings.from_config({"scoring": {"use_listed_scores": True}}, env={})
    result = await _engine(settings, mock_client).business_opportunities(category="saas")

    assert [o.id for o in result.payload["ranking"].opportunities()] == ["flip_004", "flip_001", "micro_005"]


@pytest.mark.asyncio
async def test_domain_opportunities_keywords(settings, mock_client):
    result = await _engine(settings, mock_client).domain_opportunities(keywords="crypto,finance")

    ranking = result.payload["ranking"]
    assert {o.id for o in ranking.opportunities()} == {"financeflow.io", "cryptotracker.com"}
    assert ranking.total_value == 1499
    assert result.cache.max_age == 3600


@pytest.mark.asyncio
async def test_malformed_keywords_are_a_validation_failure(settings, mock_client):
    result = await _engine(settings, mock_client).domain_opportunities(keywords=42)

    assert not result.ok
    assert result.failure["kind"] == "validation_failure"


@pytest.mark.asyncio
async def test_domain_availability_is_seeded(settings, mock_client):
    first = await _engine(settings, mock_client, rng=random.Random(3)).domain_availability("financeflow", ".io")
    second = await _engine(settings, mock_client, rng=random.Random(3)).domain_availability("financeflow", ".io")

    assert first.ok
    assert first.payload["availability"] == second.payload["availability"]
    assert first.payload["availability"]["domain"] == "financeflow.io"


# ── insights ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_insights_with_injected_producer(settings, mock_client):
    result = await _engine(settings, mock_client, insight_producer=StubProducer()).insights(limit=200)

    assert result.ok
    assert result.payload["insight"].sentiment is Sentiment.NEUTRAL
    assert result.payload["alerts"] == ()
    assert result.cache.max_age == 300
    assert result.to_dict()["insight"]["confidence"] == 60


@pytest.mark.asyncio
async def test_insights_without_key(settings, mock_client):
    result = await _engine(settings, mock_client).insights()

    assert not result.ok
    assert result.failure["kind"] == "configuration_missing"


@pytest.mark.asyncio
async def test_insights_producer_failure(settings, mock_client):
    producer = StubProducer(InsightFailure("model unavailable", provider="stub"))
    result = await _engine(settings, mock_client, insight_producer=producer).insights()

    assert result.failure["kind"] == "insight_failure"


@pytest.mark.asyncio
async def test_unexpected_error_becomes_internal_error(settings, mock_client):
    producer = StubProducer(RuntimeError("boom"))
    result = await _engine(settings, mock_client, insight_producer=producer).insights()

    assert not result.ok
    assert result.failure == {"kind": "internal_error", "message": "boom"}


# ── report ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_generate_structured_report(settings, mock_client):
    result = await _engine(settings, mock_client, insight_producer=StubProducer()).generate_report(limit=5)

    assert result.ok
    assert result.cache.max_age == 300
    report = json.loads(result.payload["content"])
    assert report == result.payload["report"]
    assert report["report_id"] == result.payload["report_id"]
    assert report["meta"]["data_sources"] == ["coinmarketcap (reference)", "binance", "stub"]
    assert list(report["data"]["snapshot"]["views"]) == ["global", "items", "pairs"]
    passed, messages = validate(report)
    assert passed, messages


@pytest.mark.asyncio
async def test_report_degrades_without_insight(settings, mock_client):
    producer = StubProducer(InsightFailure("model unavailable", provider="stub"))
    result = await _engine(settings, mock_client, insight_producer=producer).generate_report()

    assert result.ok
    assert result.payload["report"]["data"]["insight"] is None
    assert "stub" not in result.payload["report"]["meta"]["data_sources"]


@pytest.mark.asyncio
async def test_report_survives_unexpected_producer_error(settings, mock_client):
    producer = StubProducer(RuntimeError("boom"))
    result = await _engine(settings, mock_client, insight_producer=producer).generate_report()

    assert result.ok
    assert result.payload["report"]["data"]["insight"] is None


@pytest.mark.asyncio
async def test_generate_text_report(settings, mock_client):
    result = await _engine(settings, mock_client).generate_report(fmt="markdown")

    assert result.payload["format"] == "text"
    assert result.payload["content"].startswith("# FinanceFlow Market Report")
    assert "## Top Trading Pairs" in result.payload["content"]


@pytest.mark.asyncio
async def test_generate_report_unknown_format(settings, mock_client):
    result = await _engine(settings, mock_client).generate_report(fmt="pdf")

    assert not result.ok
    assert result.failure["kind"] == "render_failure"
