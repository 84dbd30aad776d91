"""Chunked, rate-limited fan-out over single-item provider calls.

Flow per call:
  1. Split parameters into consecutive groups of at most ``group_size``
     (never more than the provider's per-window rate limit).
  2. Run every unit of a group concurrently and wait for all of them to settle.
  3. Sleep ``group_delay`` before the next group (not after the last one).

A failing unit never fails the batch: it is logged and returned in
``BatchResult.failures`` next to the successes.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from financeflow.core.errors import FinanceFlowError
from financeflow.core.logger import logger
from financeflow.core.timeout import bounded
from financeflow.models.datatypes import BatchResult, FetchUnit, Provider

FetchOne = Callable[[str], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[Any]]


class ChunkedFetcher:
    """Drives many ``fetch_one`` calls under a provider's rate limit.

    Args:
        provider: Provider whose ``rate_limit`` caps the group size.
        fetch: Coroutine function fetching one parameter.
        group_size: Safe sub-limit; clamped to ``provider.rate_limit``.
        group_delay: Seconds between groups; defaults to the provider's window.
        timeout: Per-unit time bound in seconds.
        sleep: Injected sleep coroutine (``asyncio.sleep`` by default).
    """

    def __init__(
        self,
        provider: Provider,
        fetch: FetchOne,
        group_size: Optional[int] = None,
        group_delay: Optional[float] = None,
        timeout: float = 10.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.fetch = fetch
        self.group_size = max(1, min(group_size or provider.rate_limit, provider.rate_limit))
        self.group_delay = provider.rate_window_seconds if group_delay is None else group_delay
        self.timeout = timeout
        self.sleep = sleep

    def partition(self, parameters: Sequence[str]) -> List[List[str]]:
        """Consecutive groups of at most ``group_size`` parameters, input order kept."""
        return [
            list(parameters[i:i + self.group_size])
            for i in range(0, len(parameters), self.group_size)
        ]

    async def run(self, parameters: Sequence[str]) -> BatchResult:
        """Fetch every parameter; return successes and failures side by side."""
        groups = self.partition(list(parameters))
        logger.info(
            f"ChunkedFetcher: {self.provider.name} — {len(parameters)} units in "
            f"{len(groups)} group(s) of ≤{self.group_size}, delay {self.group_delay}s"
        )

        successes: List[FetchUnit] = []
        failures: List[FetchUnit] = []
        for index, group in enumerate(groups):
            if index > 0:
                await self.sleep(self.group_delay)
            units = await asyncio.gather(*(self._fetch_unit(p) for p in group))
            for unit in units:
                (successes if unit.ok else failures).append(unit)

        for unit in failures:
            logger.warning(f"ChunkedFetcher: {self.provider.name} failed for {unit.parameter}: {unit.error}")
        logger.info(
            f"ChunkedFetcher: {self.provider.name} — {len(successes)} ok, {len(failures)} failed"
        )
        return BatchResult(
            provider=self.provider.name,
            requested=len(parameters),
            groups=len(groups),
            successes=tuple(successes),
            failures=tuple(failures),
        )

    async def _fetch_unit(self, parameter: str) -> FetchUnit:
        """Run one unit; the outcome is recorded on the unit, never raised."""
        try:
            payload = await bounded(self.fetch(parameter), self.timeout, self.provider.name, parameter)
        except FinanceFlowError as exc:
            return FetchUnit(provider=self.provider.name, parameter=parameter, error=f"{exc.kind}: {exc.message}")
        except Exception as exc:
            logger.error(f"ChunkedFetcher: unexpected error for {parameter}: {exc}", exc_info=True)
            return FetchUnit(provider=self.provider.name, parameter=parameter, error=f"internal_error: {exc}")
        return FetchUnit(provider=self.provider.name, parameter=parameter, payload=payload)
