"""Configuration loading and settings resolution."""

from pathlib import Path

import pytest

from financeflow.core.config import Settings, build_provider, load_config
from financeflow.core.errors import ConfigurationMissing
from financeflow.models.datatypes import Tier

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config.yaml"


def test_defaults_without_credentials():
    settings = Settings.from_config({}, env={})

    assert set(settings.providers) == {
        "alphavantage", "yfinance", "coinmarketcap", "coingecko", "binance", "business", "domains",
    }
    assert not settings.provider("coinmarketcap").has_credential
    assert settings.provider("coingecko").has_credential
    assert settings.provider("business").tier is Tier.MOCKED
    assert settings.openai_api_key is None
    assert settings.currency == "USD"


def test_credentials_are_threaded_from_env():
    env = {"COINMARKETCAP_API_KEY": "cmc", "ALPHAVANTAGE_API_KEY": "av", "AGI_OPENAI_KEY": "sk"}
    settings = Settings.from_config({}, env=env)

    assert settings.provider("coinmarketcap").credential == "cmc"
    assert settings.provider("alphavantage").has_credential
    assert settings.openai_api_key == "sk"


def test_credential_is_hidden_from_repr():
    provider = build_provider("alphavantage", env={"ALPHAVANTAGE_API_KEY": "secret"})
    assert "secret" not in repr(provider)


def test_provider_overrides():
    provider = build_provider("alphavantage", {"rate_limit": 1, "window_seconds": 12}, env={})
    assert provider.rate_limit == 1
    assert provider.rate_window_seconds == 12.0


def test_unknown_provider():
    with pytest.raises(ConfigurationMissing):
        build_provider("bloomberg", env={})
    with pytest.raises(ConfigurationMissing):
        Settings.from_config({}, env={}).provider("bloomberg")


def test_cache_policies_default_and_override():
    settings = Settings.from_config({"cache": {"market": {"max_age": 30}}}, env={})

    assert settings.cache_policy("market").max_age == 30
    assert settings.cache_policy("market").stale_while_revalidate == 240
    assert settings.cache_policy("domains").header_value() == "public, s-maxage=3600, stale-while-revalidate=7200"


def test_null_sections_fall_back_to_defaults():
    settings = Settings.from_config({"market": None, "portfolio": None, "alerts": None}, env={})
    assert settings.market_source == "coinmarketcap"
    assert settings.portfolio_symbols == ["AAPL", "GOOGL", "MSFT"]
    assert settings.alert_thresholds.move_threshold == 10.0


def test_repository_config_loads():
    settings = Settings.from_config(load_config(REPO_CONFIG), env={})

    assert settings.market_limit == 10
    assert len(settings.portfolio_symbols) == 7
    assert settings.fetch_group_size == 5
    assert settings.fetch_group_delay == 1.0
    assert settings.provider("domains").is_mocked


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_load_config_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)
