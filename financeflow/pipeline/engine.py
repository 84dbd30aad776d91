"""Pipeline engine — the public entry points over providers and pipeline stages.

Entry points (each returns an :class:`EntryResult` carrying its cache policy):

  market_overview        global metrics + top listings
  trading_summary        top exchange trading pairs
  portfolio              chunked, rate-limited stock quotes
  business_opportunities filtered and ranked business listings
  domain_opportunities   filtered and ranked domain listings
  domain_availability    simulated availability check for one name
  insights               snapshot + generated insight + alerts
  generate_report        snapshot + optional insight + alerts, rendered

A ``FinanceFlowError`` becomes ``EntryResult(ok=False, failure={kind, message})``;
anything else is logged with its traceback and reported as ``internal_error``.
Nothing escapes an entry point.
"""

import asyncio
import random
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, Optional, Sequence, Tuple, Union

import httpx

from financeflow.core.config import Settings
from financeflow.core.errors import ConfigurationMissing, FinanceFlowError, ValidationFailure
from financeflow.core.logger import logger
from financeflow.core.timeout import bounded
from financeflow.models.datatypes import EntryResult, utc_now
from financeflow.pipeline.aggregator import SnapshotAggregator
from financeflow.pipeline.alerts import AlertEngine
from financeflow.pipeline.fetcher import ChunkedFetcher
from financeflow.pipeline.ranking import OpportunityFilter, OpportunityRanker, StaticScorer, WeightedScorer
from financeflow.pipeline.report import ReportRenderer, compose_report, normalize_format
from financeflow.providers.base import InsightProducer, MarketListingProvider, QuoteProvider
from financeflow.providers.crypto import BinanceProvider, CoinGeckoProvider, CoinMarketCapProvider
from financeflow.providers.insights import OpenAIInsightProducer
from financeflow.providers.market import AlphaVantageProvider, YFinanceProvider
from financeflow.providers.marketplace import BusinessListingsProvider, DomainListingsProvider

MAX_MARKET_LIMIT = 100
MAX_INSIGHT_LIMIT = 50

_MARKET_ADAPTERS = {
    "coinmarketcap": CoinMarketCapProvider,
    "coingecko": CoinGeckoProvider,
}


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    """``None`` → default; otherwise clamped into ``[1, maximum]``."""
    if limit is None:
        limit = default
    return max(1, min(_as_int(limit, "limit"), maximum))


def string_list(values: Union[str, Iterable[str], None], name: str) -> Tuple[str, ...]:
    """Comma string or iterable of strings → stripped, non-empty entries."""
    if values is None:
        return ()
    if isinstance(values, str):
        values = values.split(",")
    try:
        items = list(values)
    except TypeError:
        raise ValidationFailure(f"{name} must be a string or a list of strings, got {values!r}") from None
    for item in items:
        if not isinstance(item, str):
            raise ValidationFailure(f"{name} must contain only strings, got {item!r}")
    return tuple(item.strip() for item in items if item.strip())


class FinanceFlowEngine:
    """Wires settings, providers and pipeline stages behind async entry points.

    Args:
        settings: Resolved :class:`Settings`.
        client: Shared HTTP client; when omitted each entry point opens and
            closes its own ``httpx.AsyncClient``.
        insight_producer: Overrides the OpenAI producer built from settings.
        sleep: Inter-group delay coroutine handed to the chunked fetcher.
        clock: UTC clock used for snapshots and reports.
        rng: Randomness for mocked availability checks; seeded from settings by default.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        insight_producer: Optional[InsightProducer] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.insight_producer = insight_producer
        self.sleep = sleep
        self.clock = clock
        self.rng = rng or random.Random(settings.random_seed)

        scorer = StaticScorer() if settings.use_listed_scores else WeightedScorer(settings.scoring_weights)
        self.ranker = OpportunityRanker(scorer)
        self.alerts = AlertEngine(settings.alert_thresholds)
        self.renderer = ReportRenderer()

    # ── public ────────────────────────────────────────────────────────────────

    async def market_overview(self, limit: Optional[int] = None, currency: Optional[str] = None) -> EntryResult:
        async def work() -> Dict[str, Any]:
            size = clamp_limit(limit, self.settings.market_limit, MAX_MARKET_LIMIT)
            async with self._session() as client:
                snapshot = await self._aggregator(currency).market_snapshot(
                    self._market_provider(client), limit=size,
                )
            return {"snapshot": snapshot, "meta": {"limit": size, "sources": list(snapshot.sources)}}

        return await self._entry("market", work)

    async def trading_summary(self, limit: Optional[int] = None) -> EntryResult:
        async def work() -> Dict[str, Any]:
            size = clamp_limit(limit, self.settings.market_limit, MAX_MARKET_LIMIT)
            async with self._session() as client:
                binance = BinanceProvider(self.settings.provider("binance"), client)
                snapshot = await self._aggregator(binance.quote_asset).trading_snapshot(binance, size)
            return {"snapshot": snapshot, "meta": {"limit": size, "quote_asset": binance.quote_asset}}

        return await self._entry("trading", work)

    async def portfolio(
        self,
        symbols: Union[str, Sequence[str], None] = None,
        currency: Optional[str] = None,
    ) -> EntryResult:
        async def work() -> Dict[str, Any]:
            requested = [s.upper() for s in string_list(symbols or self.settings.portfolio_symbols, "symbols")]
            async with self._session() as client:
                aggregator = self._aggregator(currency)
                quotes = self._quote_provider(client, aggregator.currency)
                fetcher = ChunkedFetcher(
                    quotes.provider,
                    quotes.fetch_one,
                    group_size=self.settings.fetch_group_size,
                    group_delay=self.settings.fetch_group_delay,
                    timeout=self.settings.request_timeout,
                    sleep=self.sleep,
                )
                snapshot = await aggregator.portfolio_snapshot(fetcher, requested)
            return {"snapshot": snapshot}

        return await self._entry("portfolio", work)

    async def business_opportunities(
        self,
        category: Optional[str] = None,
        max_price: Optional[float] = None,
        min_revenue: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> EntryResult:
        async def work() -> Dict[str, Any]:
            source = BusinessListingsProvider(self.settings.provider("business"))
            candidates = await source.fetch_bulk()
            ranking = self.ranker.rank(
                candidates,
                OpportunityFilter(category=category, max_price=max_price, min_revenue=min_revenue),
                limit=None if limit is None else _as_int(limit, "limit"),
                currency=self.settings.currency,
            )
            return {"ranking": ranking, "source": source.source}

        return await self._entry("business", work)

    async def domain_opportunities(
        self,
        keywords: Union[str, Iterable[str], None] = (),
        max_price: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> EntryResult:
        async def work() -> Dict[str, Any]:
            criteria = OpportunityFilter(max_price=max_price, keywords=string_list(keywords, "keywords"))
            source = DomainListingsProvider(self.settings.provider("domains"), rng=self.rng)
            candidates = await source.fetch_bulk()
            ranking = self.ranker.rank(
                candidates,
                criteria,
                limit=None if limit is None else _as_int(limit, "limit"),
                currency=self.settings.currency,
            )
            return {"ranking": ranking, "source": source.source}

        return await self._entry("domains", work)

    async def domain_availability(self, domain: str, extension: str = ".com") -> EntryResult:
        async def work() -> Dict[str, Any]:
            source = DomainListingsProvider(self.settings.provider("domains"), rng=self.rng)
            return {"availability": source.check_availability(domain, extension), "source": source.source}

        return await self._entry("domains", work)

    async def insights(self, limit: Optional[int] = None, currency: Optional[str] = None) -> EntryResult:
        async def work() -> Dict[str, Any]:
            size = clamp_limit(limit, self.settings.market_limit, MAX_INSIGHT_LIMIT)
            async with self._session() as client:
                producer = self._insight_producer(client)
                snapshot = await self._aggregator(currency).market_snapshot(
                    self._market_provider(client), limit=size,
                )
                insight = await bounded(
                    producer.produce(snapshot), self.settings.insight_timeout, producer.name, "insight",
                )
            return {"snapshot": snapshot, "insight": insight, "alerts": tuple(self.alerts.evaluate(snapshot))}

        return await self._entry("insights", work)

    async def generate_report(
        self,
        limit: Optional[int] = None,
        fmt: str = "structured",
        currency: Optional[str] = None,
    ) -> EntryResult:
        async def work() -> Dict[str, Any]:
            size = clamp_limit(limit, self.settings.market_limit, MAX_INSIGHT_LIMIT)
            fmt_name = normalize_format(fmt)
            started = time.perf_counter()
            async with self._session() as client:
                snapshot = await self._aggregator(currency).market_snapshot(
                    self._market_provider(client),
                    limit=size,
                    trading=BinanceProvider(self.settings.provider("binance"), client),
                )
                insight, insight_source = await self._optional_insight(client, snapshot)
            alerts = self.alerts.evaluate(snapshot)
            report = compose_report(
                snapshot,
                insight,
                alerts,
                duration_ms=int((time.perf_counter() - started) * 1000),
                insight_source=insight_source,
                clock=self.clock,
            )
            rendered = self.renderer.render(report, fmt_name)
            return {
                "report_id": report.report_id,
                "format": fmt_name,
                "report": self.renderer.to_canonical(report),
                "content": rendered.decode("utf-8"),
            }

        return await self._entry("report", work)

    # ── internal ──────────────────────────────────────────────────────────────

    async def _entry(self, entry_point: str, work: Callable[[], Awaitable[Dict[str, Any]]]) -> EntryResult:
        """Run ``work`` and wrap its outcome in the entry-point envelope."""
        cache = self.settings.cache_policy(entry_point)
        started = time.perf_counter()
        logger.info(f"FinanceFlowEngine: {entry_point} started")
        try:
            payload = await work()
        except FinanceFlowError as exc:
            logger.error(f"FinanceFlowEngine: {entry_point} failed — {exc.kind}: {exc.message}")
            return EntryResult(ok=False, cache=cache, failure=exc.to_dict(), duration_ms=_elapsed_ms(started))
        except Exception as exc:
            logger.error(f"FinanceFlowEngine: {entry_point} raised unexpectedly: {exc}", exc_info=True)
            return EntryResult(
                ok=False,
                cache=cache,
                failure={"kind": "internal_error", "message": str(exc) or type(exc).__name__},
                duration_ms=_elapsed_ms(started),
            )
        duration_ms = _elapsed_ms(started)
        logger.info(f"FinanceFlowEngine: {entry_point} completed in {duration_ms} ms")
        return EntryResult(ok=True, cache=cache, payload=payload, duration_ms=duration_ms)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=self.settings.request_timeout) as client:
            yield client

    def _aggregator(self, currency: Optional[str]) -> SnapshotAggregator:
        return SnapshotAggregator(
            currency=currency or self.settings.currency,
            timeout=self.settings.request_timeout,
            clock=self.clock,
        )

    def _market_provider(self, client: httpx.AsyncClient) -> MarketListingProvider:
        name = self.settings.market_source
        adapter = _MARKET_ADAPTERS.get(name)
        if adapter is None:
            raise ConfigurationMissing(f"Unsupported market source '{name}'", setting="market.source")
        return adapter(self.settings.provider(name), client)

    def _quote_provider(self, client: httpx.AsyncClient, currency: str) -> QuoteProvider:
        name = self.settings.quote_source
        if name == "alphavantage":
            return AlphaVantageProvider(self.settings.provider(name), client, currency=currency)
        if name == "yfinance":
            return YFinanceProvider(self.settings.provider(name), currency=currency)
        raise ConfigurationMissing(f"Unsupported quote source '{name}'", setting="portfolio.source")

    def _insight_producer(self, client: httpx.AsyncClient) -> InsightProducer:
        if self.insight_producer is not None:
            return self.insight_producer
        return OpenAIInsightProducer(self.settings.openai_api_key, client, model=self.settings.insight_model)

    async def _optional_insight(self, client: httpx.AsyncClient, snapshot) -> tuple:
        """Insight for a report; a missing or failing producer yields ``(None, None)``."""
        try:
            producer = self._insight_producer(client)
            insight = await bounded(
                producer.produce(snapshot), self.settings.insight_timeout, producer.name, "insight",
            )
        except FinanceFlowError as exc:
            logger.warning(f"FinanceFlowEngine: report continues without insight — {exc.kind}: {exc.message}")
            return None, None
        except Exception as exc:
            logger.warning(f"FinanceFlowEngine: report continues without insight — {exc!r}", exc_info=True)
            return None, None
        return insight, producer.name


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationFailure(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailure(f"{name} must be an integer, got {value!r}") from None


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
