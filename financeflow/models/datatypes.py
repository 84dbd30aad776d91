"""Data structures for the aggregation, scoring and reporting pipeline.

Everything handed from one stage to the next is a frozen dataclass holding
tuples, so no stage can mutate what an earlier stage produced.
"""

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Optional, Tuple

from financeflow.core.errors import ValidationFailure


class Capability(str, Enum):
    QUOTES = "quotes"
    LISTINGS = "listings"
    GLOBAL_METRICS = "global_metrics"


class Tier(str, Enum):
    PRODUCTION = "production"
    MOCKED = "mocked"


class AlertKind(str, Enum):
    OPPORTUNITY = "opportunity"
    WARNING = "warning"
    INFO = "info"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Sentiment(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _check_number(owner: str, name: str, value: Any, allow_negative: bool = False) -> None:
    """Reject non-numeric, non-finite and (optionally) negative values."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationFailure(f"{owner}.{name} must be numeric, got {value!r}")
    if not math.isfinite(value):
        raise ValidationFailure(f"{owner}.{name} must be finite, got {value!r}")
    if not allow_negative and value < 0:
        raise ValidationFailure(f"{owner}.{name} must not be negative, got {value!r}")


# ── providers & fetch units ───────────────────────────────────────────────────

@dataclass(frozen=True)
class Provider:
    """
    Identity of an upstream source, resolved once from configuration.
    """
    name: str
    capability: Capability
    auth_required: bool
    rate_limit: int  # requests per window
    rate_window_seconds: float = 1.0
    tier: Tier = Tier.PRODUCTION
    credential: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.rate_limit < 1:
            raise ValidationFailure(f"Provider {self.name}: rate_limit must be >= 1")
        if self.rate_window_seconds < 0:
            raise ValidationFailure(f"Provider {self.name}: rate window must not be negative")

    @property
    def has_credential(self) -> bool:
        return not self.auth_required or bool(self.credential)

    @property
    def is_mocked(self) -> bool:
        return self.tier is Tier.MOCKED


@dataclass(frozen=True)
class FetchUnit:
    """
    One logical request to a provider for one parameter, and how it settled.
    """
    provider: str
    parameter: Optional[str]
    payload: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchResult:
    """Outcome of a chunked fetch: successes and failures kept apart."""
    provider: str
    requested: int
    groups: int
    successes: Tuple[FetchUnit, ...] = ()
    failures: Tuple[FetchUnit, ...] = ()

    @property
    def ok(self) -> bool:
        return bool(self.successes)

    @property
    def success_count(self) -> int:
        return len(self.successes)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def payloads(self) -> Tuple[Any, ...]:
        return tuple(unit.payload for unit in self.successes)


# ── snapshot sub-views ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GlobalMetrics:
    """Market-wide totals for one currency."""
    total_market_cap: float
    total_volume_24h: float
    btc_dominance: float
    eth_dominance: float
    active_cryptocurrencies: int
    active_exchanges: int
    currency: str = "USD"

    def __post_init__(self) -> None:
        for name in ("total_market_cap", "total_volume_24h", "btc_dominance", "eth_dominance"):
            _check_number("GlobalMetrics", name, getattr(self, name))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MarketItem:
    """One ranked listing (e.g. a cryptocurrency) with its 24h movement."""
    rank: int
    name: str
    symbol: str
    price: float
    market_cap: float
    volume_24h: float
    change_24h: float
    change_7d: float
    currency: str = "USD"

    def __post_init__(self) -> None:
        for name in ("price", "market_cap", "volume_24h"):
            _check_number("MarketItem", name, getattr(self, name))
        for name in ("change_24h", "change_7d"):
            _check_number("MarketItem", name, getattr(self, name), allow_negative=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StockQuote:
    """Latest quote for one equity symbol."""
    symbol: str
    price: float
    change: float
    change_pct: float
    volume: int
    latest_trading_day: str
    currency: str = "USD"

    def __post_init__(self) -> None:
        _check_number("StockQuote", "price", self.price)
        _check_number("StockQuote", "volume", self.volume)
        _check_number("StockQuote", "change", self.change, allow_negative=True)
        _check_number("StockQuote", "change_pct", self.change_pct, allow_negative=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TradingPair:
    """24h statistics for one exchange trading pair."""
    symbol: str
    price: float
    change_24h: float
    change_pct_24h: float
    high_24h: float
    low_24h: float
    volume_24h: float
    quote_volume_24h: float
    currency: str = "USD"

    def __post_init__(self) -> None:
        for name in ("price", "high_24h", "low_24h", "volume_24h", "quote_volume_24h"):
            _check_number("TradingPair", name, getattr(self, name))
        for name in ("change_24h", "change_pct_24h"):
            _check_number("TradingPair", name, getattr(self, name), allow_negative=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _view_to_data(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (tuple, list)):
        return [_view_to_data(v) for v in value]
    if isinstance(value, Mapping):
        return {k: _view_to_data(v) for k, v in value.items()}
    return value


@dataclass(frozen=True)
class Snapshot:
    """
    Unified point-in-time view assembled by the aggregator.

    ``views`` maps a sub-view name (``"global"``, ``"items"``, ``"stocks"`` ...)
    to the immutable value produced by a successful provider call.
    """
    generated_at: datetime
    currency: str
    views: Mapping[str, Any]
    sources: Tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.currency or not self.currency.isalpha():
            raise ValidationFailure(f"Snapshot currency must be an ISO code, got {self.currency!r}")
        object.__setattr__(self, "currency", self.currency.upper())
        object.__setattr__(self, "views", MappingProxyType(dict(self.views)))
        object.__setattr__(self, "sources", tuple(self.sources))

    def view(self, name: str) -> Any:
        if name not in self.views:
            raise KeyError(f"Snapshot has no '{name}' view (available: {sorted(self.views)})")
        return self.views[name]

    def has_view(self, name: str) -> bool:
        return name in self.views

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "currency": self.currency,
            "views": {name: _view_to_data(value) for name, value in self.views.items()},
            "sources": list(self.sources),
        }


# ── opportunities ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Opportunity:
    """
    A scoreable, filterable candidate: a business listing or a domain name.

    ``listed_score`` is the score published by the marketplace, if any; the
    ranking engine decides whether to use it.
    """
    id: str
    title: str
    category: str
    price: float
    monthly_revenue: float = 0.0
    monthly_profit: float = 0.0
    age_months: int = 0
    currency: str = "USD"
    marketplace: str = ""
    url: str = ""
    verified: bool = False
    status: Optional[str] = None
    estimated_value: Optional[float] = None
    description: str = ""
    listed_score: Optional[float] = None

    def __post_init__(self) -> None:
        owner = f"Opportunity[{self.id}]"
        _check_number(owner, "price", self.price)
        _check_number(owner, "monthly_revenue", self.monthly_revenue)
        _check_number(owner, "monthly_profit", self.monthly_profit, allow_negative=True)
        _check_number(owner, "age_months", self.age_months)
        if self.estimated_value is not None:
            _check_number(owner, "estimated_value", self.estimated_value)
        if self.listed_score is not None:
            _check_number(owner, "listed_score", self.listed_score)

    @property
    def multiple(self) -> Optional[float]:
        """Price over monthly profit; undefined when the listing is not profitable."""
        if self.monthly_profit > 0:
            return self.price / self.monthly_profit
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["multiple"] = self.multiple
        return data


@dataclass(frozen=True)
class OpportunityMetrics:
    roi_months: Optional[float]
    annual_revenue: float
    annual_profit: float
    profit_margin: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ScoredOpportunity:
    opportunity: Opportunity
    score: float
    position: int
    metrics: OpportunityMetrics

    def to_dict(self) -> Dict[str, Any]:
        data = self.opportunity.to_dict()
        data["score"] = self.score
        data["metrics"] = self.metrics.to_dict()
        return data


@dataclass(frozen=True)
class RankingResult:
    """Ranked opportunities plus the aggregate statistics callers report."""
    items: Tuple[ScoredOpportunity, ...]
    total_value: float
    avg_multiple: float
    currency: str = "USD"

    @property
    def count(self) -> int:
        return len(self.items)

    def opportunities(self) -> Tuple[Opportunity, ...]:
        return tuple(item.opportunity for item in self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "opportunities": [item.to_dict() for item in self.items],
            "count": self.count,
            "total_value": self.total_value,
            "avg_multiple": self.avg_multiple,
        }


# ── derived signals & report ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Alert:
    kind: AlertKind
    title: str
    message: str
    priority: Priority

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
        }


@dataclass(frozen=True)
class Insight:
    """
    Externally produced narrative over a snapshot. Only these fields are read.
    """
    summary: str
    sentiment: Sentiment
    key_points: Tuple[str, ...]
    opportunities: Tuple[str, ...]
    risks: Tuple[str, ...]
    recommendation: str
    confidence: float
    generated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        _check_number("Insight", "confidence", self.confidence)
        if self.confidence > 100:
            raise ValidationFailure(f"Insight.confidence must be within 0-100, got {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "sentiment": self.sentiment.value,
            "key_points": list(self.key_points),
            "opportunities": list(self.opportunities),
            "risks": list(self.risks),
            "recommendation": self.recommendation,
            "confidence": self.confidence,
            "timestamp": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class Report:
    """Snapshot + optional insight + alerts, ready for rendering."""
    report_id: str
    generated_at: datetime
    snapshot: Snapshot
    insight: Optional[Insight]
    alerts: Tuple[Alert, ...]
    data_sources: Tuple[str, ...]
    duration_ms: int
    version: str = "2.0"


# ── entry point envelope ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class CachePolicy:
    """Recommended freshness for an entry point's result (seconds)."""
    max_age: int
    stale_while_revalidate: int

    def header_value(self) -> str:
        return f"public, s-maxage={self.max_age}, stale-while-revalidate={self.stale_while_revalidate}"

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class EntryResult:
    """What every public entry point returns: a payload or a structured failure."""
    ok: bool
    cache: CachePolicy
    payload: Any = None
    failure: Optional[Dict[str, Any]] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            payload = self.payload if isinstance(self.payload, Mapping) else {"data": self.payload}
            body = {key: _view_to_data(value) for key, value in payload.items()}
            body["ok"] = True
        else:
            body = {"ok": False, "error": self.failure["kind"], "message": self.failure["message"]}
        body["cache"] = self.cache.to_dict()
        body["duration_ms"] = self.duration_ms
        return body
