"""Filter, score and rank opportunity listings.

Ranking is fully deterministic: items are ordered by score descending and
equal scores keep their input order. Aggregates (total value, average
multiple) are computed here so callers never recompute them.
"""

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from financeflow.core.config import ScoringWeights
from financeflow.core.logger import logger
from financeflow.models.datatypes import (
    Opportunity, OpportunityMetrics, RankingResult, ScoredOpportunity,
)

SCORE_MIN = 0.0
SCORE_MAX = 10.0

ScoringFunction = Callable[[Opportunity], float]


def round_half_up(value: float, places: int = 1) -> float:
    """Round half away from zero (``2.25 -> 2.3``), unlike Python's banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# ── filtering ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OpportunityFilter:
    """Declarative predicates; ``None``/empty means "no constraint"."""
    category: Optional[str] = None
    max_price: Optional[float] = None
    min_revenue: Optional[float] = None
    keywords: Tuple[str, ...] = ()

    def matches(self, opp: Opportunity) -> bool:
        if self.category is not None and opp.category.lower() != self.category.lower():
            return False
        if self.max_price is not None and opp.price > self.max_price:
            return False
        if self.min_revenue is not None and opp.monthly_revenue < self.min_revenue:
            return False
        keywords = [k.strip().lower() for k in self.keywords if k.strip()]
        if keywords and not any(k in opp.title.lower() for k in keywords):
            return False
        return True


def filter_opportunities(candidates: Iterable[Opportunity], criteria: OpportunityFilter) -> List[Opportunity]:
    """Keep the candidates matching ``criteria``, in input order."""
    return [opp for opp in candidates if criteria.matches(opp)]


# ── scoring ───────────────────────────────────────────────────────────────────

class WeightedScorer:
    """Default scorer: weighted mean of normalised features, scaled to 0–10.

    Features (each in [0, 1]), used only where they apply to the listing:

      - margin       monthly profit / monthly revenue            (revenue-bearing)
      - payback      12 months → 1.0, 60 months or worse → 0.0  (revenue-bearing)
      - revenue      log10(annual revenue) / 6, 1M/yr → 1.0      (revenue-bearing)
      - age          age in months / 36                          (revenue-bearing)
      - verified     1.0 when the marketplace verified the listing
      - value_ratio  estimated value / price, 3x → 1.0           (appraised listings)

    Args:
        weights: Relative feature weights.
        best_payback_months: Payback at or below which the payback feature is 1.0.
        worst_payback_months: Payback at or above which the payback feature is 0.0.
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        best_payback_months: float = 12.0,
        worst_payback_months: float = 60.0,
    ) -> None:
        self.weights = weights or ScoringWeights()
        self.best_payback_months = best_payback_months
        self.worst_payback_months = worst_payback_months

    def features(self, opp: Opportunity) -> List[Tuple[float, float]]:
        """``(weight, value)`` pairs that apply to ``opp``."""
        w = self.weights
        out = [(w.verified, 1.0 if opp.verified else 0.0)]
        if opp.monthly_revenue > 0:
            margin = _clamp(opp.monthly_profit / opp.monthly_revenue)
            multiple = opp.multiple
            if multiple is None:
                payback = 0.0
            else:
                span = self.worst_payback_months - self.best_payback_months
                payback = _clamp((self.worst_payback_months - multiple) / span) if span > 0 else 0.0
            revenue = _clamp(math.log10(1 + opp.monthly_revenue * 12) / 6)
            age = _clamp(opp.age_months / 36)
            out += [(w.margin, margin), (w.payback, payback), (w.revenue, revenue), (w.age, age)]
        if opp.estimated_value is not None and opp.price > 0:
            out.append((w.value_ratio, _clamp((opp.estimated_value / opp.price - 1) / 2)))
        return out

    def __call__(self, opp: Opportunity) -> float:
        pairs = [(weight, value) for weight, value in self.features(opp) if weight > 0]
        total_weight = sum(weight for weight, _ in pairs)
        if total_weight == 0:
            return SCORE_MIN
        raw = SCORE_MAX * sum(weight * value for weight, value in pairs) / total_weight
        return round_half_up(_clamp(raw, SCORE_MIN, SCORE_MAX))


class StaticScorer:
    """Uses the score the marketplace published, clamped to the score range."""

    def __init__(self, default: float = SCORE_MIN) -> None:
        self.default = default

    def __call__(self, opp: Opportunity) -> float:
        score = opp.listed_score if opp.listed_score is not None else self.default
        return round_half_up(_clamp(score, SCORE_MIN, SCORE_MAX))


def business_metrics(opp: Opportunity) -> OpportunityMetrics:
    """Payback period, annualised figures and profit margin for one listing."""
    multiple = opp.multiple
    return OpportunityMetrics(
        roi_months=round_half_up(multiple) if multiple is not None else None,
        annual_revenue=opp.monthly_revenue * 12,
        annual_profit=opp.monthly_profit * 12,
        profit_margin=(
            round_half_up(opp.monthly_profit / opp.monthly_revenue * 100)
            if opp.monthly_revenue > 0 else None
        ),
    )


# ── ranking ───────────────────────────────────────────────────────────────────

class OpportunityRanker:
    """Filter → score → stable sort → truncate, plus aggregate statistics.

    Args:
        scorer: Any callable mapping an :class:`Opportunity` to a score in [0, 10].
    """

    def __init__(self, scorer: Optional[ScoringFunction] = None) -> None:
        self.scorer = scorer or WeightedScorer()

    def score(self, opp: Opportunity) -> float:
        return round_half_up(_clamp(float(self.scorer(opp)), SCORE_MIN, SCORE_MAX))

    def rank(
        self,
        candidates: Sequence[Opportunity],
        criteria: Optional[OpportunityFilter] = None,
        limit: Optional[int] = None,
        currency: str = "USD",
    ) -> RankingResult:
        """
        Rank the candidates matching ``criteria``.

        Args:
            candidates: Listings in provider order; the order breaks score ties.
            criteria: Filter to apply; ``None`` keeps everything.
            limit: Keep at most this many items after ranking.
            currency: Currency of the reported totals.

        Returns:
            RankingResult with items, total value and average multiple over the returned items.
        """
        criteria = criteria or OpportunityFilter()
        scored = [
            ScoredOpportunity(
                opportunity=opp,
                score=self.score(opp),
                position=position,
                metrics=business_metrics(opp),
            )
            for position, opp in enumerate(candidates)
            if criteria.matches(opp)
        ]
        scored.sort(key=lambda s: (-s.score, s.position))
        if limit is not None:
            scored = scored[:max(0, limit)]

        total_value = sum(s.opportunity.price for s in scored)
        multiples = [s.opportunity.multiple for s in scored if s.opportunity.multiple is not None]
        avg_multiple = round_half_up(sum(multiples) / len(multiples)) if multiples else 0

        logger.info(
            f"OpportunityRanker: {len(scored)}/{len(candidates)} candidates kept "
            f"(total_value={total_value}, avg_multiple={avg_multiple})"
        )
        return RankingResult(
            items=tuple(scored),
            total_value=total_value,
            avg_multiple=avg_multiple,
            currency=currency,
        )
