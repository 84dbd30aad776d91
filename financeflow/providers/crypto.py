"""Crypto market adapters: CoinMarketCap, CoinGecko and Binance.

CoinMarketCap requires an API key; without one the aggregator switches to the
reference snapshot exposed here (``reference_listings``/``reference_global``).
"""

from typing import Any, Dict, List, Optional

import httpx

from financeflow.core.errors import UpstreamFailure
from financeflow.core.logger import logger
from financeflow.core.timeout import upstream_call
from financeflow.models.datatypes import GlobalMetrics, MarketItem, Provider, TradingPair
from financeflow.providers.base import MarketListingProvider, TradingPairProvider

CMC_API_BASE = "https://pro-api.coinmarketcap.com/v1"
COINGECKO_API_BASE = "https://api.coingecko.com/api/v3"
BINANCE_API_BASE = "https://api.binance.com/api/v3"

# Reference snapshot, quoted in USD. Used only when no CoinMarketCap key is configured.
_REFERENCE_CURRENCY = "USD"
_REFERENCE_LISTINGS = (
    MarketItem(
        rank=1, name="Bitcoin", symbol="BTC", price=109554.23,
        market_cap=2136307485000, volume_24h=35000000000,
        change_24h=1.57, change_7d=3.45, currency=_REFERENCE_CURRENCY,
    ),
    MarketItem(
        rank=2, name="Ethereum", symbol="ETH", price=3858.23,
        market_cap=462987600000, volume_24h=18000000000,
        change_24h=2.34, change_7d=5.67, currency=_REFERENCE_CURRENCY,
    ),
)
_REFERENCE_GLOBAL = GlobalMetrics(
    total_market_cap=3800000000000,
    total_volume_24h=125000000000,
    btc_dominance=56.5,
    eth_dominance=18.2,
    active_cryptocurrencies=10500,
    active_exchanges=750,
    currency=_REFERENCE_CURRENCY,
)


class CoinMarketCapProvider(MarketListingProvider):
    """CoinMarketCap ``listings/latest`` and ``global-metrics`` adapter."""

    def __init__(self, provider: Provider, client: httpx.AsyncClient) -> None:
        super().__init__(provider)
        self.client = client

    def _headers(self) -> Dict[str, str]:
        return {"X-CMC_PRO_API_KEY": self.provider.credential or "", "Accept": "application/json"}

    @upstream_call("coinmarketcap")
    async def fetch_bulk(self, limit: int = 10, currency: str = "USD") -> List[MarketItem]:
        logger.info(f"CoinMarketCapProvider: fetching top {limit} listings in {currency}")
        resp = await self.client.get(
            f"{CMC_API_BASE}/cryptocurrency/listings/latest",
            params={"limit": limit, "convert": currency},
            headers=self._headers(),
        )
        resp.raise_for_status()
        items = []
        for crypto in resp.json()["data"]:
            quote_currency, quote = _pick_quote(crypto["quote"], currency)
            items.append(MarketItem(
                rank=int(crypto["cmc_rank"]),
                name=crypto["name"],
                symbol=crypto["symbol"],
                price=float(quote["price"]),
                market_cap=float(quote["market_cap"] or 0),
                volume_24h=float(quote["volume_24h"] or 0),
                change_24h=float(quote["percent_change_24h"] or 0),
                change_7d=float(quote["percent_change_7d"] or 0),
                currency=quote_currency,
            ))
        return items

    @upstream_call("coinmarketcap")
    async def fetch_global(self, currency: str = "USD") -> GlobalMetrics:
        logger.info(f"CoinMarketCapProvider: fetching global metrics in {currency}")
        resp = await self.client.get(
            f"{CMC_API_BASE}/global-metrics/quotes/latest",
            params={"convert": currency},
            headers=self._headers(),
        )
        resp.raise_for_status()
        data = resp.json()["data"]
        quote_currency, quote = _pick_quote(data["quote"], currency)
        return GlobalMetrics(
            total_market_cap=float(quote["total_market_cap"]),
            total_volume_24h=float(quote["total_volume_24h"]),
            btc_dominance=float(data["btc_dominance"]),
            eth_dominance=float(data["eth_dominance"]),
            active_cryptocurrencies=int(data["active_cryptocurrencies"]),
            active_exchanges=int(data["active_exchanges"]),
            currency=quote_currency,
        )

    def reference_listings(self, limit: int = 10, currency: str = "USD") -> Optional[List[MarketItem]]:
        return list(_REFERENCE_LISTINGS[:limit])

    def reference_global(self, currency: str = "USD") -> Optional[GlobalMetrics]:
        return _REFERENCE_GLOBAL


class CoinGeckoProvider(MarketListingProvider):
    """CoinGecko ``coins/markets`` and ``global`` adapter (no key required)."""

    def __init__(self, provider: Provider, client: httpx.AsyncClient) -> None:
        super().__init__(provider)
        self.client = client

    @upstream_call("coingecko")
    async def fetch_bulk(self, limit: int = 10, currency: str = "USD") -> List[MarketItem]:
        logger.info(f"CoinGeckoProvider: fetching top {limit} coins in {currency}")
        resp = await self.client.get(
            f"{COINGECKO_API_BASE}/coins/markets",
            params={
                "vs_currency": currency.lower(),
                "order": "market_cap_desc",
                "per_page": limit,
                "page": 1,
                "sparkline": "false",
                "price_change_percentage": "24h,7d",
            },
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        return [
            MarketItem(
                rank=int(coin["market_cap_rank"] or position),
                name=coin["name"],
                symbol=coin["symbol"].upper(),
                price=float(coin["current_price"]),
                market_cap=float(coin["market_cap"] or 0),
                volume_24h=float(coin["total_volume"] or 0),
                change_24h=float(coin.get("price_change_percentage_24h") or 0),
                change_7d=float(coin.get("price_change_percentage_7d_in_currency") or 0),
                currency=currency.upper(),
            )
            for position, coin in enumerate(resp.json(), start=1)
        ]

    @upstream_call("coingecko")
    async def fetch_global(self, currency: str = "USD") -> GlobalMetrics:
        logger.info(f"CoinGeckoProvider: fetching global metrics in {currency}")
        resp = await self.client.get(f"{COINGECKO_API_BASE}/global", headers={"Accept": "application/json"})
        resp.raise_for_status()
        data = resp.json()["data"]
        key = currency.lower()
        if key not in data["total_market_cap"]:
            raise UpstreamFailure(f"CoinGecko has no totals in {currency}", provider=self.name)
        dominance = data.get("market_cap_percentage", {})
        return GlobalMetrics(
            total_market_cap=float(data["total_market_cap"][key]),
            total_volume_24h=float(data["total_volume"][key]),
            btc_dominance=float(dominance.get("btc", 0)),
            eth_dominance=float(dominance.get("eth", 0)),
            active_cryptocurrencies=int(data.get("active_cryptocurrencies", 0)),
            active_exchanges=int(data.get("markets", 0)),
            currency=currency.upper(),
        )


class BinanceProvider(TradingPairProvider):
    """Binance spot 24h ticker adapter; reports the top USDT pairs by quote volume."""

    quote_asset = "USDT"

    def __init__(self, provider: Provider, client: httpx.AsyncClient) -> None:
        super().__init__(provider)
        self.client = client

    @upstream_call("binance")
    async def fetch_bulk(self, limit: int = 10) -> List[TradingPair]:
        logger.info(f"BinanceProvider: fetching 24h tickers (top {limit} {self.quote_asset} pairs)")
        resp = await self.client.get(f"{BINANCE_API_BASE}/ticker/24hr")
        resp.raise_for_status()
        pairs = [
            _pair_from_ticker(ticker, self.quote_asset)
            for ticker in resp.json()
            if ticker["symbol"].endswith(self.quote_asset)
        ]
        pairs.sort(key=lambda p: p.quote_volume_24h, reverse=True)
        return pairs[:limit]


# ── helpers ───────────────────────────────────────────────────────────────────

def _pick_quote(quotes: Dict[str, Any], currency: str) -> tuple:
    """Return ``(currency, quote)``; falls back to whatever currency was returned."""
    if currency.upper() in quotes:
        return currency.upper(), quotes[currency.upper()]
    if not quotes:
        raise KeyError(f"no quote for {currency}")
    returned = next(iter(quotes))
    logger.warning(f"requested quote in {currency} but provider returned {returned}")
    return returned.upper(), quotes[returned]


def _pair_from_ticker(ticker: Dict[str, Any], quote_asset: str) -> TradingPair:
    return TradingPair(
        symbol=ticker["symbol"],
        price=float(ticker["lastPrice"]),
        change_24h=float(ticker["priceChange"]),
        change_pct_24h=float(ticker["priceChangePercent"]),
        high_24h=float(ticker["highPrice"]),
        low_24h=float(ticker["lowPrice"]),
        volume_24h=float(ticker["volume"]),
        quote_volume_24h=float(ticker["quoteVolume"]),
        currency=quote_asset,
    )
