"""Configuration module for loading project settings and environment variables.

Credentials are read from the environment exactly once, in
:meth:`Settings.from_config`, and threaded into components from there.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from financeflow.core.errors import ConfigurationMissing
from financeflow.models.datatypes import CachePolicy, Capability, Provider, Tier

# Load environment variables from .env file
load_dotenv()

# name -> (capability, auth_required, rate_limit, window_seconds, tier, credential env vars)
PROVIDER_DEFAULTS: Dict[str, tuple] = {
    "alphavantage": (Capability.QUOTES, True, 5, 1.0, Tier.PRODUCTION, ("ALPHAVANTAGE_API_KEY",)),
    "yfinance": (Capability.QUOTES, False, 5, 1.0, Tier.PRODUCTION, ()),
    "coinmarketcap": (Capability.LISTINGS, True, 30, 60.0, Tier.PRODUCTION, ("COINMARKETCAP_API_KEY",)),
    "coingecko": (Capability.LISTINGS, False, 10, 60.0, Tier.PRODUCTION, ()),
    "binance": (Capability.LISTINGS, False, 20, 1.0, Tier.PRODUCTION, ()),
    "business": (Capability.LISTINGS, False, 10, 1.0, Tier.MOCKED, ()),
    "domains": (Capability.LISTINGS, False, 10, 1.0, Tier.MOCKED, ()),
}

# entry point -> (s-maxage, stale-while-revalidate)
CACHE_DEFAULTS: Dict[str, tuple] = {
    "market": (120, 240),
    "trading": (60, 120),
    "portfolio": (60, 120),
    "business": (1800, 3600),
    "domains": (3600, 7200),
    "insights": (300, 600),
    "report": (300, 600),
}


def load_config(config_path: str | Path = "config.yaml") -> Dict[str, Any]:
    """
    Load configuration from the specified YAML file.

    Args:
        config_path (str | Path): Path to the configuration file. Defaults to "config.yaml".

    Returns:
        Dict[str, Any]: A dictionary containing the configuration settings.
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    with open(config_file, "r", encoding="utf-8") as file:
        config_data = yaml.safe_load(file)

    if not config_data:
        raise ValueError(f"Configuration file {config_path} is empty or invalid.")

    return config_data


@dataclass(frozen=True)
class AlertThresholds:
    """Percentages used by the alert rules."""
    move_threshold: float = 10.0
    high_threshold: float = 15.0
    dominance_threshold: float = 50.0


@dataclass(frozen=True)
class ScoringWeights:
    """Relative weights of the default opportunity scorer; normalised on use."""
    margin: float = 3.0
    payback: float = 3.0
    revenue: float = 1.5
    age: float = 1.0
    verified: float = 1.5
    value_ratio: float = 3.0


def build_provider(
    name: str,
    overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Provider:
    """
    Build the immutable descriptor for a known provider.

    Args:
        name (str): Provider key from ``PROVIDER_DEFAULTS``.
        overrides (Optional[Mapping]): ``providers.<name>`` section of config.yaml.
        env (Optional[Mapping]): Environment to resolve credentials from.

    Returns:
        Provider: The resolved provider, credential included when present.
    """
    if name not in PROVIDER_DEFAULTS:
        raise ConfigurationMissing(f"Unknown provider '{name}'", setting=f"providers.{name}")
    capability, auth_required, rate_limit, window, tier, env_vars = PROVIDER_DEFAULTS[name]
    overrides = overrides or {}
    env = os.environ if env is None else env

    credential = overrides.get("api_key")
    for var in env_vars:
        if credential:
            break
        credential = env.get(var) or None

    return Provider(
        name=name,
        capability=capability,
        auth_required=auth_required,
        rate_limit=int(overrides.get("rate_limit", rate_limit)),
        rate_window_seconds=float(overrides.get("window_seconds", window)),
        tier=Tier(overrides.get("tier", tier.value)),
        credential=credential,
    )


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings handed to the engine and its components."""
    providers: Dict[str, Provider]
    currency: str = "USD"
    market_source: str = "coinmarketcap"
    market_limit: int = 10
    quote_source: str = "alphavantage"
    portfolio_symbols: List[str] = field(default_factory=lambda: ["AAPL", "GOOGL", "MSFT"])
    request_timeout: float = 10.0
    insight_timeout: float = 30.0
    fetch_group_size: int = 5
    fetch_group_delay: Optional[float] = None
    alert_thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    scoring_weights: ScoringWeights = field(default_factory=ScoringWeights)
    use_listed_scores: bool = False
    cache_policies: Dict[str, CachePolicy] = field(default_factory=dict)
    insight_model: str = "gpt-4o-mini"
    openai_api_key: Optional[str] = field(default=None, repr=False)
    output_dir: str = "output"
    random_seed: int = 42

    def provider(self, name: str) -> Provider:
        try:
            return self.providers[name]
        except KeyError:
            raise ConfigurationMissing(f"Provider '{name}' is not configured", setting=f"providers.{name}") from None

    def cache_policy(self, entry_point: str) -> CachePolicy:
        if entry_point in self.cache_policies:
            return self.cache_policies[entry_point]
        max_age, swr = CACHE_DEFAULTS.get(entry_point, (60, 120))
        return CachePolicy(max_age=max_age, stale_while_revalidate=swr)

    @classmethod
    def from_config(
        cls,
        config: Optional[Mapping[str, Any]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """
        Build settings from a parsed config.yaml dict and the environment.

        Args:
            config (Optional[Mapping]): Output of :func:`load_config`; ``None`` uses defaults.
            env (Optional[Mapping]): Environment mapping; defaults to ``os.environ``.

        Returns:
            Settings: Fully resolved settings.
        """
        config = config or {}
        env = os.environ if env is None else env

        provider_cfg = config.get("providers", {}) or {}
        providers = {
            name: build_provider(name, provider_cfg.get(name), env)
            for name in PROVIDER_DEFAULTS
        }

        fetch_cfg = config.get("fetch", {}) or {}
        alerts_cfg = config.get("alerts", {}) or {}
        scoring_cfg = config.get("scoring", {}) or {}
        insight_cfg = config.get("insights", {}) or {}
        market_cfg = config.get("market", {}) or {}
        portfolio_cfg = config.get("portfolio", {}) or {}

        cache_policies = {}
        for entry_point, (max_age, swr) in CACHE_DEFAULTS.items():
            section = (config.get("cache", {}) or {}).get(entry_point, {}) or {}
            cache_policies[entry_point] = CachePolicy(
                max_age=int(section.get("max_age", max_age)),
                stale_while_revalidate=int(section.get("stale_while_revalidate", swr)),
            )

        return cls(
            providers=providers,
            currency=str(config.get("currency", "USD")).upper(),
            market_source=market_cfg.get("source", "coinmarketcap"),
            market_limit=int(market_cfg.get("limit", 10)),
            quote_source=portfolio_cfg.get("source", "alphavantage"),
            portfolio_symbols=[
                s.strip().upper()
                for s in portfolio_cfg.get("symbols", ["AAPL", "GOOGL", "MSFT"])
            ],
            request_timeout=float(fetch_cfg.get("timeout_seconds", 10.0)),
            insight_timeout=float(insight_cfg.get("timeout_seconds", 30.0)),
            fetch_group_size=int(fetch_cfg.get("group_size", 5)),
            fetch_group_delay=(
                float(fetch_cfg["group_delay_seconds"])
                if fetch_cfg.get("group_delay_seconds") is not None else None
            ),
            alert_thresholds=AlertThresholds(**alerts_cfg),
            scoring_weights=ScoringWeights(**(scoring_cfg.get("weights") or {})),
            use_listed_scores=bool(scoring_cfg.get("use_listed_scores", False)),
            cache_policies=cache_policies,
            insight_model=insight_cfg.get("model", "gpt-4o-mini"),
            openai_api_key=env.get("OPENAI_API_KEY") or env.get("AGI_OPENAI_KEY") or None,
            output_dir=config.get("output_dir", "output"),
            random_seed=int(config.get("random_seed", 42)),
        )
