"""Equity quote adapters: AlphaVantage over HTTP, Yahoo Finance via yfinance."""

import asyncio

import httpx
import pandas as pd
import yfinance as yf

from financeflow.core.errors import ConfigurationMissing, UpstreamFailure
from financeflow.core.logger import logger
from financeflow.core.timeout import upstream_call
from financeflow.models.datatypes import Provider, StockQuote
from financeflow.providers.base import QuoteProvider

ALPHAVANTAGE_API_BASE = "https://www.alphavantage.co/query"


class AlphaVantageProvider(QuoteProvider):
    """AlphaVantage ``GLOBAL_QUOTE`` adapter (one symbol per request)."""

    def __init__(self, provider: Provider, client: httpx.AsyncClient, currency: str = "USD") -> None:
        """Args:
            provider: Resolved ``alphavantage`` provider (credential required).
            client: Shared async HTTP client owned by the caller.
            currency: Currency the exchange quotes in.
        """
        super().__init__(provider)
        if not provider.has_credential:
            raise ConfigurationMissing(
                "AlphaVantage API key is required. Set ALPHAVANTAGE_API_KEY environment variable.",
                setting="ALPHAVANTAGE_API_KEY",
            )
        self.client = client
        self.currency = currency.upper()

    @upstream_call("alphavantage")
    async def fetch_one(self, symbol: str) -> StockQuote:
        params = {"function": "GLOBAL_QUOTE", "symbol": symbol, "apikey": self.provider.credential}
        logger.info(f"AlphaVantageProvider: fetching quote for {symbol}")
        resp = await self.client.get(ALPHAVANTAGE_API_BASE, params=params, headers={"Accept": "application/json"})
        resp.raise_for_status()
        data = resp.json()

        if data.get("Error Message"):
            raise UpstreamFailure(f"AlphaVantage: {data['Error Message']}", provider=self.name)
        # Quota exhaustion comes back as HTTP 200 with a "Note"/"Information" body
        for key in ("Note", "Information"):
            if data.get(key):
                raise UpstreamFailure(f"AlphaVantage: {data[key]}", provider=self.name)

        quote = data.get("Global Quote")
        if not quote:
            raise UpstreamFailure(f"No data found for symbol: {symbol}", provider=self.name)

        return StockQuote(
            symbol=quote["01. symbol"],
            price=float(quote["05. price"]),
            change=float(quote["09. change"]),
            change_pct=float(quote["10. change percent"].replace("%", "")),
            volume=int(quote["06. volume"]),
            latest_trading_day=quote["07. latest trading day"],
            currency=self.currency,
        )


class YFinanceProvider(QuoteProvider):
    """Yahoo Finance quote adapter. Needs no credential.

    yfinance is blocking, so each call runs in a worker thread.
    """

    def __init__(self, provider: Provider, currency: str = "USD", suffix: str = "") -> None:
        """Args:
            provider: Resolved ``yfinance`` provider.
            currency: Currency the listing exchange quotes in.
            suffix: Exchange suffix appended to symbols (e.g. ``".NS"``).
        """
        super().__init__(provider)
        self.currency = currency.upper()
        self.suffix = suffix

    @upstream_call("yfinance")
    async def fetch_one(self, symbol: str) -> StockQuote:
        return await asyncio.to_thread(self._fetch_sync, symbol)

    def _fetch_sync(self, symbol: str) -> StockQuote:
        ticker_symbol = f"{symbol}{self.suffix}"
        logger.info(f"YFinanceProvider: fetching quote for {ticker_symbol}")
        hist = yf.Ticker(ticker_symbol).history(period="5d")
        if hist.empty:
            raise UpstreamFailure(f"No quote data returned for {ticker_symbol}", provider=self.name)
        return quote_from_history(symbol, hist, self.currency)


def quote_from_history(symbol: str, hist: pd.DataFrame, currency: str = "USD") -> StockQuote:
    """
    Build a quote from a daily OHLCV frame (last row vs. the previous close).

    Args:
        symbol (str): Symbol to report on the quote.
        hist (pd.DataFrame): Daily history with a DatetimeIndex and Close/Volume columns.
        currency (str): Quote currency.

    Returns:
        StockQuote: The latest session as a quote.
    """
    hist = hist.sort_index()
    closes = pd.to_numeric(hist["Close"], errors="coerce").dropna()
    if closes.empty:
        raise UpstreamFailure(f"No close prices for {symbol}", provider="yfinance")

    last_close = float(closes.iloc[-1])
    prev_close = float(closes.iloc[-2]) if len(closes) > 1 else last_close
    change = last_close - prev_close
    change_pct = (change / prev_close * 100.0) if prev_close else 0.0
    volume = pd.to_numeric(hist["Volume"], errors="coerce").fillna(0).astype(int).iloc[-1]

    day = closes.index[-1]
    day_str = day.strftime("%Y-%m-%d") if hasattr(day, "strftime") else str(day)

    return StockQuote(
        symbol=symbol,
        price=round(last_close, 4),
        change=round(change, 4),
        change_pct=round(change_pct, 4),
        volume=int(volume),
        latest_trading_day=day_str,
        currency=currency,
    )
