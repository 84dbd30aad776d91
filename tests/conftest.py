"""
Shared fixtures for the FinanceFlow test-suite.

- Provider descriptors built without touching the environment
- A recording stand-in for ``asyncio.sleep`` so chunk delays cost nothing
- ``httpx.MockTransport`` clients so adapters never hit the network
- Sample listings, market items and a fixed clock
"""

from datetime import datetime, timezone
from typing import Callable, List

import httpx
import pytest

from financeflow.core.config import Settings
from financeflow.models.datatypes import (
    Capability, GlobalMetrics, MarketItem, Opportunity, Provider, Snapshot, Tier,
)

FIXED_NOW = datetime(2025, 6, 2, 14, 30, 0, tzinfo=timezone.utc)


class SleepRecorder:
    """Async callable recording every requested delay instead of sleeping."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def make_provider() -> Callable[..., Provider]:
    def _make(
        name: str = "test",
        rate_limit: int = 5,
        window: float = 1.0,
        auth_required: bool = False,
        credential: str = None,
        tier: Tier = Tier.PRODUCTION,
        capability: Capability = Capability.QUOTES,
    ) -> Provider:
        return Provider(
            name=name,
            capability=capability,
            auth_required=auth_required,
            rate_limit=rate_limit,
            rate_window_seconds=window,
            tier=tier,
            credential=credential,
        )
    return _make


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory: ``mock_client(handler)`` → AsyncClient routed through ``handler``."""
    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return _make


@pytest.fixture
def settings() -> Settings:
    """Defaults with no credentials and instant group delays."""
    return Settings.from_config({"fetch": {"group_delay_seconds": 0}}, env={})


@pytest.fixture
def sample_opportunities() -> List[Opportunity]:
    return [
        Opportunity(
            id="flip_001", title="Profitable SaaS Tool - Email Marketing", category="saas",
            price=45000, monthly_revenue=2500, monthly_profit=1800, age_months=24,
            verified=True, marketplace="Flippa",
        ),
        Opportunity(
            id="micro_002", title="E-commerce Store - Pet Supplies", category="ecommerce",
            price=28000, monthly_revenue=3200, monthly_profit=1200, age_months=18,
            verified=True, marketplace="MicroAcquire",
        ),
    ]


def make_item(symbol: str = "BTC", name: str = "Bitcoin", change_24h: float = 1.0, rank: int = 1) -> MarketItem:
    return MarketItem(
        rank=rank, name=name, symbol=symbol, price=100.0, market_cap=1e9,
        volume_24h=1e8, change_24h=change_24h, change_7d=0.0, currency="USD",
    )


def make_global(btc_dominance: float = 56.5) -> GlobalMetrics:
    return GlobalMetrics(
        total_market_cap=2.5e12, total_volume_24h=1.2e11, btc_dominance=btc_dominance,
        eth_dominance=18.2, active_cryptocurrencies=10500, active_exchanges=750,
    )


def make_snapshot(items=(), global_metrics=None, extra=None) -> Snapshot:
    views = {}
    if global_metrics is not None:
        views["global"] = global_metrics
    if items is not None:
        views["items"] = tuple(items)
    views.update(extra or {})
    return Snapshot(generated_at=FIXED_NOW, currency="USD", views=views, sources=("coinmarketcap",))
