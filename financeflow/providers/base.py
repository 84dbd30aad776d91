"""Abstract base classes for provider adapters and the insight producer.

Adapters perform one network call and reshape the JSON. They never retry or
throttle; that is the pipeline's job.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from financeflow.models.datatypes import (
    GlobalMetrics, Insight, MarketItem, Opportunity, Provider, Snapshot, StockQuote, TradingPair,
)


class ProviderAdapter(ABC):
    """Common state for every adapter: the provider descriptor it serves."""

    def __init__(self, provider: Provider) -> None:
        self.provider = provider

    @property
    def name(self) -> str:
        return self.provider.name


class QuoteProvider(ProviderAdapter):
    """Abstract interface for fetching one quote per symbol."""

    @abstractmethod
    async def fetch_one(self, symbol: str) -> StockQuote:
        """
        Fetch the latest quote for a symbol.

        Args:
            symbol (str): The ticker symbol.

        Returns:
            StockQuote: The normalized quote.

        Raises:
            UpstreamFailure: On transport, HTTP or payload errors.
        """
        pass


class MarketListingProvider(ProviderAdapter):
    """Abstract interface for market-wide listings and totals."""

    @abstractmethod
    async def fetch_bulk(self, limit: int = 10, currency: str = "USD") -> List[MarketItem]:
        """
        Fetch the top listings by market cap.

        Args:
            limit (int): Number of listings to return.
            currency (str): Fiat currency the prices are quoted in.

        Returns:
            List[MarketItem]: Listings in rank order.
        """
        pass

    @abstractmethod
    async def fetch_global(self, currency: str = "USD") -> GlobalMetrics:
        """
        Fetch market-wide metrics.

        Args:
            currency (str): Fiat currency the totals are quoted in.

        Returns:
            GlobalMetrics: Totals and dominance figures.
        """
        pass

    def reference_listings(self, limit: int = 10, currency: str = "USD") -> Optional[List[MarketItem]]:
        """Deterministic fallback listings, or ``None`` if the provider defines none."""
        return None

    def reference_global(self, currency: str = "USD") -> Optional[GlobalMetrics]:
        """Deterministic fallback metrics, or ``None`` if the provider defines none."""
        return None


class TradingPairProvider(ProviderAdapter):
    """Abstract interface for exchange trading-pair statistics."""

    @abstractmethod
    async def fetch_bulk(self, limit: int = 10) -> List[TradingPair]:
        pass


class OpportunityProvider(ProviderAdapter):
    """Abstract interface for marketplaces listing businesses or domains."""

    @abstractmethod
    async def fetch_bulk(self) -> List[Opportunity]:
        """Return every current listing, unfiltered, in marketplace order."""
        pass


class InsightProducer(ABC):
    """Opaque, potentially slow producer of a narrative over a snapshot."""

    name = "insight"

    @abstractmethod
    async def produce(self, snapshot: Snapshot) -> Insight:
        """
        Produce an insight for a snapshot.

        Args:
            snapshot (Snapshot): The snapshot to describe.

        Returns:
            Insight: The structured insight.

        Raises:
            InsightFailure: When the producer fails or returns an unusable payload.
        """
        pass
