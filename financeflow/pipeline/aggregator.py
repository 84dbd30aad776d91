"""Multi-provider aggregator — merges independent provider calls into one Snapshot.

Every sub-call is mandatory. Sub-calls run concurrently and are correlated by
name, never by completion order. Policy per sub-call:

  - provider without credential + reference data → reference data, tagged
    ``"<provider> (reference)"`` in the snapshot's sources;
  - provider without credential and no reference data → ``ConfigurationMissing``;
  - live call raises or times out → the whole aggregation raises one
    ``UpstreamFailure`` naming every failed sub-call. No partial snapshot.

All currency-bearing values must agree with the snapshot currency (stablecoin
quotes such as USDT count as USD); otherwise ``ValidationFailure``.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from financeflow.core.errors import ConfigurationMissing, UpstreamFailure, ValidationFailure
from financeflow.core.logger import logger
from financeflow.core.timeout import bounded
from financeflow.models.datatypes import Snapshot, utc_now
from financeflow.pipeline.fetcher import ChunkedFetcher
from financeflow.providers.base import MarketListingProvider, TradingPairProvider

# Quote currencies treated as the fiat they are pegged to
CURRENCY_EQUIVALENTS = {"USDT": "USD", "USDC": "USD", "BUSD": "USD", "FDUSD": "USD"}


def normalize_currency(code: str) -> str:
    code = code.upper()
    return CURRENCY_EQUIVALENTS.get(code, code)


@dataclass(frozen=True)
class SubCall:
    """One named, mandatory provider call feeding one snapshot view."""
    name: str
    provider: Any  # financeflow.models.datatypes.Provider
    call: Callable[[], Awaitable[Any]]
    reference: Optional[Callable[[], Any]] = None


class SnapshotAggregator:
    """Runs sub-calls concurrently and assembles an immutable :class:`Snapshot`.

    Args:
        currency: ISO code every monetary value must share.
        timeout: Per sub-call time bound in seconds.
        clock: Returns the snapshot generation time (UTC).
    """

    def __init__(
        self,
        currency: str = "USD",
        timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.currency = currency.upper()
        self.timeout = timeout
        self.clock = clock

    # ── public ────────────────────────────────────────────────────────────────

    async def aggregate(self, sub_calls: Sequence[SubCall]) -> Snapshot:
        """Run ``sub_calls`` and build the snapshot.

        Args:
            sub_calls: Independent sub-calls; names must be unique.

        Returns:
            Snapshot whose views are exactly the sub-call names.
        """
        names = [sub.name for sub in sub_calls]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate sub-call names: {names}")

        views: Dict[str, Any] = {}
        sources: List[str] = []
        live: List[SubCall] = []

        for sub in sub_calls:
            if sub.provider.has_credential:
                live.append(sub)
                continue
            if sub.reference is None:
                raise ConfigurationMissing(
                    f"{sub.provider.name} credential is not configured and no reference data exists "
                    f"for '{sub.name}'",
                    setting=sub.provider.name,
                )
            logger.warning(
                f"SnapshotAggregator: {sub.provider.name} credential not configured, "
                f"using reference data for '{sub.name}'"
            )
            views[sub.name] = _freeze(sub.reference())
            sources.append(f"{sub.provider.name} (reference)")

        results = await asyncio.gather(
            *(bounded(sub.call(), self.timeout, sub.provider.name, sub.name) for sub in live),
            return_exceptions=True,
        )

        failed: List[Tuple[SubCall, BaseException]] = []
        for sub, result in zip(live, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed.append((sub, result))
                continue
            views[sub.name] = _freeze(result)
            sources.append(sub.provider.name)

        if failed:
            detail = "; ".join(f"{sub.name} ({sub.provider.name}): {exc}" for sub, exc in failed)
            logger.error(f"SnapshotAggregator: mandatory sub-call(s) failed — {detail}")
            first_sub, first_exc = failed[0]
            raise UpstreamFailure(
                f"Snapshot aggregation failed: {detail}",
                provider=first_sub.provider.name,
                sub_call=",".join(sub.name for sub, _ in failed),
            ) from first_exc

        # keep view order stable regardless of which branch produced each view
        ordered = {name: views[name] for name in names}
        for name, value in ordered.items():
            self._check_currency(name, value)

        snapshot = Snapshot(
            generated_at=self.clock(),
            currency=self.currency,
            views=ordered,
            sources=tuple(_unique(sources)),
        )
        logger.info(
            f"SnapshotAggregator: built snapshot with views {list(snapshot.views)} "
            f"from {list(snapshot.sources)}"
        )
        return snapshot

    async def market_snapshot(
        self,
        provider: MarketListingProvider,
        limit: int = 10,
        trading: Optional[TradingPairProvider] = None,
        trading_limit: int = 10,
    ) -> Snapshot:
        """Global metrics + top listings (+ trading pairs) for one currency."""
        sub_calls = [
            SubCall(
                name="global",
                provider=provider.provider,
                call=lambda: provider.fetch_global(self.currency),
                reference=_reference(provider.reference_global(self.currency)),
            ),
            SubCall(
                name="items",
                provider=provider.provider,
                call=lambda: provider.fetch_bulk(limit, self.currency),
                reference=_reference(provider.reference_listings(limit, self.currency)),
            ),
        ]
        if trading is not None:
            sub_calls.append(SubCall(
                name="pairs",
                provider=trading.provider,
                call=lambda: trading.fetch_bulk(trading_limit),
            ))
        return await self.aggregate(sub_calls)

    async def trading_snapshot(self, provider: TradingPairProvider, limit: int = 10) -> Snapshot:
        return await self.aggregate([
            SubCall(name="pairs", provider=provider.provider, call=lambda: provider.fetch_bulk(limit)),
        ])

    async def portfolio_snapshot(self, fetcher: ChunkedFetcher, symbols: Sequence[str]) -> Snapshot:
        """Chunked quotes for ``symbols``; failed symbols are reported, not raised.

        Views: ``stocks`` (successful quotes) and ``portfolio`` (totals and
        per-symbol failures).
        """
        batch = await fetcher.run(symbols)
        quotes = batch.payloads()
        summary = MappingProxyType({
            "total_value": sum(q.price for q in quotes),
            "count": batch.success_count,
            "requested": batch.requested,
            "groups": batch.groups,
            "failed": tuple(
                MappingProxyType({"symbol": u.parameter, "reason": u.error}) for u in batch.failures
            ),
        })
        sources = [fetcher.provider.name] if batch.ok else []
        for quote in quotes:
            self._check_currency("stocks", quote)
        snapshot = Snapshot(
            generated_at=self.clock(),
            currency=self.currency,
            views={"stocks": tuple(quotes), "portfolio": summary},
            sources=tuple(sources),
        )
        logger.info(
            f"SnapshotAggregator: portfolio snapshot with {batch.success_count}/{batch.requested} quotes"
        )
        return snapshot

    # ── internal ──────────────────────────────────────────────────────────────

    def _check_currency(self, view: str, value: Any) -> None:
        for currency in _currencies(value):
            if normalize_currency(currency) != normalize_currency(self.currency):
                raise ValidationFailure(
                    f"Currency mismatch in '{view}': expected {self.currency}, got {currency}"
                )


# ── helpers ───────────────────────────────────────────────────────────────────

def _reference(value: Any) -> Optional[Callable[[], Any]]:
    if value is None:
        return None
    return lambda: value


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    return value


def _currencies(value: Any) -> Iterable[str]:
    if isinstance(value, (list, tuple)):
        for item in value:
            yield from _currencies(item)
    elif getattr(value, "currency", None):
        yield value.currency


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
