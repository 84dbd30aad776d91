"""Generative market insight producer (OpenAI chat completions, JSON mode).

The snapshot → prompt and completion → :class:`Insight` translations are plain
functions so the rest of the pipeline never sees provider request shapes.
"""

import json
from typing import Any, Dict, Optional

import httpx

from financeflow.core.errors import ConfigurationMissing, InsightFailure, ValidationFailure
from financeflow.core.logger import logger
from financeflow.models.datatypes import Insight, Sentiment, Snapshot
from financeflow.providers.base import InsightProducer

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

_SYSTEM_PROMPT = (
    "You are a professional cryptocurrency market analyst providing data-driven insights. "
    "Always respond with valid JSON."
)


class OpenAIInsightProducer(InsightProducer):
    """Calls the chat-completions endpoint once per snapshot."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        client: httpx.AsyncClient,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
    ) -> None:
        if not api_key:
            raise ConfigurationMissing(
                "OpenAI API key is required for insights. Set OPENAI_API_KEY.",
                setting="OPENAI_API_KEY",
            )
        self.api_key = api_key
        self.client = client
        self.model = model
        self.temperature = temperature

    async def produce(self, snapshot: Snapshot) -> Insight:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(snapshot)},
            ],
            "temperature": self.temperature,
            "max_tokens": 1000,
            "response_format": {"type": "json_object"},
        }
        logger.info(f"OpenAIInsightProducer: requesting insight from {self.model}")
        try:
            resp = await self.client.post(
                OPENAI_CHAT_URL,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"]
        except httpx.HTTPError as exc:
            raise InsightFailure(f"OpenAI request failed: {exc}", provider=self.name) from exc
        except (KeyError, IndexError, ValueError) as exc:
            raise InsightFailure(f"Unexpected OpenAI response shape: {exc!r}", provider=self.name) from exc

        if not content:
            raise InsightFailure("No content in OpenAI response", provider=self.name)
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as exc:
            raise InsightFailure(f"OpenAI returned invalid JSON: {exc}", provider=self.name) from exc
        return parse_insight(payload)


# ── translation ───────────────────────────────────────────────────────────────

def _signed(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.2f}%"


def build_prompt(snapshot: Snapshot, top_n: int = 5) -> str:
    """Render the user prompt from a snapshot's ``global`` and ``items`` views."""
    lines = [
        "You are a professional cryptocurrency market analyst. Analyze the following "
        "market data and provide actionable insights.",
        "",
        "Market Data:",
    ]
    if snapshot.has_view("global"):
        g = snapshot.view("global")
        lines += [
            f"- Total Market Cap: ${g.total_market_cap / 1e9:.2f}B",
            f"- 24h Volume: ${g.total_volume_24h / 1e9:.2f}B",
            f"- BTC Dominance: {g.btc_dominance:.1f}%",
            f"- ETH Dominance: {g.eth_dominance:.1f}%",
        ]
    if snapshot.has_view("items"):
        lines += ["", f"Top {top_n} Cryptocurrencies:"]
        for item in snapshot.view("items")[:top_n]:
            lines.append(
                f"- {item.name} ({item.symbol}): ${item.price:.2f}, "
                f"24h: {_signed(item.change_24h)}, 7d: {_signed(item.change_7d)}"
            )
    lines += [
        "",
        "Provide a structured analysis with:",
        "1. Brief market summary (2-3 sentences)",
        "2. Overall sentiment (bullish/bearish/neutral)",
        "3. 3-5 key points",
        "4. 2-3 opportunities",
        "5. 2-3 risks",
        "6. A clear recommendation",
        "7. Confidence level (0-100)",
        "",
        "Format your response as JSON with this structure:",
        '{"summary": "...", "sentiment": "bullish|bearish|neutral", "key_points": ["..."], '
        '"opportunities": ["..."], "risks": ["..."], "recommendation": "...", "confidence": 85}',
    ]
    return "\n".join(lines)


def parse_insight(payload: Dict[str, Any]) -> Insight:
    """
    Validate a decoded completion into an :class:`Insight`.

    Raises:
        InsightFailure: If a documented field is missing or out of range.
    """
    try:
        sentiment = Sentiment(str(payload["sentiment"]).lower())
        return Insight(
            summary=str(payload["summary"]),
            sentiment=sentiment,
            key_points=tuple(str(p) for p in payload.get("key_points", [])),
            opportunities=tuple(str(p) for p in payload.get("opportunities", [])),
            risks=tuple(str(p) for p in payload.get("risks", [])),
            recommendation=str(payload.get("recommendation", "")),
            confidence=float(payload["confidence"]),
        )
    except (KeyError, ValueError, TypeError, ValidationFailure) as exc:
        raise InsightFailure(f"Insight payload rejected: {exc}", provider="openai") from exc
