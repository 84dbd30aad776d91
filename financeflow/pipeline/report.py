"""Report composition and rendering.

Both renderings derive from one canonical dict (:meth:`ReportRenderer.to_canonical`):

  - ``structured`` — the canonical dict as UTF-8 JSON;
  - ``text``       — a deterministic Markdown document.

Number formatting in text output:
  >= 1e12 → ``$1.23T``, >= 1e9 → ``$1.23B``, >= 1e6 → ``$1.23M``, else ``$1,234.56``.
  Percentages always carry a sign: ``+1.57%`` / ``-3.20%``.
"""

import json
import uuid
from datetime import datetime
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Sequence

from financeflow.core.errors import RenderFailure
from financeflow.core.logger import logger
from financeflow.models.datatypes import Alert, Insight, Report, Snapshot, utc_now

STRUCTURED = "structured"
TEXT = "text"
_FORMAT_ALIASES = {"structured": STRUCTURED, "json": STRUCTURED, "text": TEXT, "markdown": TEXT, "md": TEXT}

CURRENCY_SYMBOLS = {"USD": "$", "USDT": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}

_DISCLAIMER = (
    "This report is generated automatically using AI and real-time market data. It is for "
    "informational purposes only and should not be considered as financial advice. Always "
    "conduct your own research and consult with a qualified financial advisor before making "
    "investment decisions."
)


def format_currency(value: float, symbol: str = "$") -> str:
    """``2_500_000_000 -> "$2.50B"``; ``1234.5 -> "$1,234.50"``."""
    sign = "-" if value < 0 else ""
    magnitude = abs(value)
    if magnitude >= 1e12:
        return f"{sign}{symbol}{magnitude / 1e12:.2f}T"
    if magnitude >= 1e9:
        return f"{sign}{symbol}{magnitude / 1e9:.2f}B"
    if magnitude >= 1e6:
        return f"{sign}{symbol}{magnitude / 1e6:.2f}M"
    return f"{sign}{symbol}{magnitude:,.2f}"


def format_percent(value: float) -> str:
    # -0.0 would otherwise print as "+-0.00%"
    value = float(value) + 0.0
    return f"{'+' if value >= 0 else ''}{value:.2f}%"


def normalize_format(fmt: str) -> str:
    try:
        return _FORMAT_ALIASES[fmt.lower()]
    except (KeyError, AttributeError):
        raise RenderFailure(f"Unsupported report format: {fmt!r} (use 'structured' or 'text')") from None


def new_report_id(now: Optional[datetime] = None) -> str:
    now = now or utc_now()
    return f"rpt_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}"


def compose_report(
    snapshot: Snapshot,
    insight: Optional[Insight],
    alerts: Sequence[Alert],
    duration_ms: int,
    insight_source: Optional[str] = None,
    report_id: Optional[str] = None,
    clock: Callable[[], datetime] = utc_now,
) -> Report:
    """Assemble an immutable :class:`Report`; data sources follow snapshot provenance."""
    generated_at = clock()
    sources = list(snapshot.sources)
    if insight is not None and insight_source:
        sources.append(insight_source)
    return Report(
        report_id=report_id or new_report_id(generated_at),
        generated_at=generated_at,
        snapshot=snapshot,
        insight=insight,
        alerts=tuple(alerts),
        data_sources=tuple(sources),
        duration_ms=int(duration_ms),
    )


# ── canonical access helpers ──────────────────────────────────────────────────

def _require(mapping: Any, key: str, path: str) -> Any:
    if not isinstance(mapping, Mapping) or key not in mapping or mapping[key] is None:
        raise RenderFailure(f"Report is missing required field '{path}.{key}'")
    return mapping[key]


def _number(mapping: Any, key: str, path: str) -> float:
    value = _require(mapping, key, path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RenderFailure(f"Report field '{path}.{key}' must be numeric, got {value!r}")
    return value


class ReportRenderer:
    """Projects a :class:`Report` into the canonical dict, JSON or Markdown."""

    title = "FinanceFlow Market Report"
    max_pairs = 10

    # ── canonical ─────────────────────────────────────────────────────────────

    def to_canonical(self, report: Report) -> Dict[str, Any]:
        if report.snapshot is None:
            raise RenderFailure("Report has no snapshot")
        return {
            "report_id": report.report_id,
            "generated_at": report.generated_at.isoformat(),
            "data": {
                "snapshot": report.snapshot.to_dict(),
                "insight": report.insight.to_dict() if report.insight is not None else None,
                "alerts": [alert.to_dict() for alert in report.alerts],
            },
            "meta": {
                "version": report.version,
                "data_sources": list(report.data_sources),
                "generation_duration_ms": report.duration_ms,
            },
        }

    def render(self, report: Report, fmt: str = STRUCTURED) -> bytes:
        fmt = normalize_format(fmt)
        canonical = self.to_canonical(report)
        if fmt == STRUCTURED:
            body = json.dumps(canonical, indent=2, ensure_ascii=False)
        else:
            body = self.to_markdown(canonical)
        logger.info(f"ReportRenderer: rendered {report.report_id} as {fmt} ({len(body)} chars)")
        return body.encode("utf-8")

    @staticmethod
    def parse_canonical(raw: bytes) -> Dict[str, Any]:
        """Inverse of the structured rendering."""
        return json.loads(raw.decode("utf-8"))

    # ── markdown ──────────────────────────────────────────────────────────────

    def to_markdown(self, canonical: Mapping[str, Any]) -> str:
        data = _require(canonical, "data", "report")
        meta = _require(canonical, "meta", "report")
        snapshot = _require(data, "snapshot", "data")
        views = _require(snapshot, "views", "data.snapshot")
        currency = _require(snapshot, "currency", "data.snapshot")
        symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
        insight = data.get("insight")

        generated = datetime.fromisoformat(_require(canonical, "generated_at", "report"))
        lines: List[str] = [
            f"# {self.title}",
            "",
            f"**Report ID:** {_require(canonical, 'report_id', 'report')}  ",
            f"**Generated:** {generated.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}  ",
            f"**Version:** {_require(meta, 'version', 'meta')}  ",
            f"**Data Sources:** {', '.join(_require(meta, 'data_sources', 'meta'))}  ",
            f"**Generation Time:** {_number(meta, 'generation_duration_ms', 'meta')} ms",
            "",
            "---",
        ]

        if insight is not None:
            lines += [
                "",
                "## Executive Summary",
                "",
                _require(insight, "summary", "insight"),
                "",
                f"**Market Sentiment:** {_require(insight, 'sentiment', 'insight').upper()}  ",
                f"**Confidence Level:** {_number(insight, 'confidence', 'insight'):g}%",
                "",
                "---",
            ]

        if "global" in views:
            lines += self._global_section(views["global"], symbol)
        if "items" in views:
            lines += self._items_section(views["items"], symbol)
        if "pairs" in views:
            lines += self._pairs_section(views["pairs"], symbol)
        if "stocks" in views:
            lines += self._stocks_section(views["stocks"], views.get("portfolio"), symbol)

        lines += self._alerts_section(_require(data, "alerts", "data"))

        if insight is not None:
            lines += self._insight_section(insight)

        lines += [
            "",
            "## Disclaimer",
            "",
            _DISCLAIMER,
            "",
            "---",
            "",
            f"*Report generated by FinanceFlow v{meta['version']}*  ",
            f"*Powered by {', '.join(meta['data_sources'])}*",
            "",
        ]
        return "\n".join(lines)

    def _global_section(self, g: Mapping[str, Any], symbol: str) -> List[str]:
        path = "views.global"
        return [
            "",
            "## Global Market Overview",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Total Market Cap | {format_currency(_number(g, 'total_market_cap', path), symbol)} |",
            f"| 24h Volume | {format_currency(_number(g, 'total_volume_24h', path), symbol)} |",
            f"| BTC Dominance | {format_percent(_number(g, 'btc_dominance', path))} |",
            f"| ETH Dominance | {format_percent(_number(g, 'eth_dominance', path))} |",
            f"| Active Cryptocurrencies | {_number(g, 'active_cryptocurrencies', path):,} |",
            f"| Active Exchanges | {_number(g, 'active_exchanges', path):,} |",
            "",
            "---",
        ]

    def _items_section(self, items: Sequence[Mapping[str, Any]], symbol: str) -> List[str]:
        lines = [
            "",
            "## Top Cryptocurrencies",
            "",
            "| Rank | Name | Symbol | Price | 24h Change | 7d Change | Market Cap |",
            "|------|------|--------|-------|------------|-----------|------------|",
        ]
        for i, c in enumerate(items):
            path = f"views.items[{i}]"
            lines.append(
                f"| {_require(c, 'rank', path)} | {_require(c, 'name', path)} | {_require(c, 'symbol', path)} "
                f"| {format_currency(_number(c, 'price', path), symbol)} "
                f"| {format_percent(_number(c, 'change_24h', path))} "
                f"| {format_percent(_number(c, 'change_7d', path))} "
                f"| {format_currency(_number(c, 'market_cap', path), symbol)} |"
            )
        return lines + ["", "---"]

    def _pairs_section(self, pairs: Sequence[Mapping[str, Any]], symbol: str) -> List[str]:
        lines = [
            "",
            "## Top Trading Pairs",
            "",
            "| Pair | Price | 24h Change | Volume |",
            "|------|-------|------------|--------|",
        ]
        for i, p in enumerate(pairs[:self.max_pairs]):
            path = f"views.pairs[{i}]"
            lines.append(
                f"| {_require(p, 'symbol', path)} "
                f"| {format_currency(_number(p, 'price', path), symbol)} "
                f"| {format_percent(_number(p, 'change_pct_24h', path))} "
                f"| {format_currency(_number(p, 'quote_volume_24h', path), symbol)} |"
            )
        return lines + ["", "---"]

    def _stocks_section(
        self,
        stocks: Sequence[Mapping[str, Any]],
        portfolio: Optional[Mapping[str, Any]],
        symbol: str,
    ) -> List[str]:
        lines = [
            "",
            "## Stock Quotes",
            "",
            "| Symbol | Price | Change | Change % | Volume | Trading Day |",
            "|--------|-------|--------|----------|--------|-------------|",
        ]
        for i, s in enumerate(stocks):
            path = f"views.stocks[{i}]"
            lines.append(
                f"| {_require(s, 'symbol', path)} "
                f"| {format_currency(_number(s, 'price', path), symbol)} "
                f"| {format_currency(_number(s, 'change', path), symbol)} "
                f"| {format_percent(_number(s, 'change_pct', path))} "
                f"| {_number(s, 'volume', path):,} "
                f"| {_require(s, 'latest_trading_day', path)} |"
            )
        if portfolio is not None:
            lines += [
                "",
                f"**Total Value:** {format_currency(_number(portfolio, 'total_value', 'views.portfolio'), symbol)}",
            ]
            for failure in portfolio.get("failed", []):
                lines.append(f"- Unavailable: {failure['symbol']} ({failure['reason']})")
        return lines + ["", "---"]

    def _alerts_section(self, alerts: Sequence[Mapping[str, Any]]) -> List[str]:
        lines = ["", "## Alerts", ""]
        if not alerts:
            lines.append("No alerts triggered.")
        for i, alert in enumerate(alerts):
            path = f"alerts[{i}]"
            lines.append(
                f"- **[{_require(alert, 'priority', path).upper()}] {_require(alert, 'title', path)}** "
                f"({_require(alert, 'type', path)}): {_require(alert, 'message', path)}"
            )
        return lines + ["", "---"]

    def _insight_section(self, insight: Mapping[str, Any]) -> List[str]:
        lines = ["", "## AI Insights"]
        for heading, key in (("Key Points", "key_points"), ("Opportunities", "opportunities"), ("Risks", "risks")):
            lines += ["", f"### {heading}", ""]
            lines += [f"- {point}" for point in insight.get(key, [])] or ["- None noted"]
        lines += ["", "### Recommendation", "", _require(insight, "recommendation", "insight"), "", "---"]
        return lines


def render(report: Report, fmt: str = STRUCTURED) -> bytes:
    """Module-level shortcut for :meth:`ReportRenderer.render`."""
    return ReportRenderer().render(report, fmt)
