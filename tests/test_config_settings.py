from decimal import Decimal

import pytest
from pydantic import ValidationError

from bridgeflow.config import Settings


def test_defaults_cover_the_happy_path(monkeypatch):
    """Out of the box: 0.5% slippage, CHEAPEST, 1% impact ceiling, no signer."""

    monkeypatch.delenv("SIGNER_URL", raising=False)

    settings = Settings(_env_file=None)

    assert settings.default_slippage == Decimal("0.005")
    assert settings.default_order == "CHEAPEST"
    assert settings.default_max_price_impact == Decimal("0.01")
    assert settings.has_signer is False


def test_lifi_api_key_alias(monkeypatch):
    """LI.FI key should load from the header-style alias when present."""

    monkeypatch.delenv("LIFI_API_KEY", raising=False)
    monkeypatch.setenv("X_LIFI_API_KEY", "alias-key")

    settings = Settings(_env_file=None)

    assert settings.lifi_api_key == "alias-key"
    assert settings.has_lifi_key


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SIGNER_URL", "https://signer.internal")
    monkeypatch.setenv("REQUIRED_CONFIRMATIONS", "5")
    monkeypatch.setenv("DEFAULT_ORDER", "FASTEST")

    settings = Settings(_env_file=None)

    assert settings.has_signer
    assert settings.required_confirmations == 5
    assert settings.default_order == "FASTEST"


def test_rejects_unknown_order(monkeypatch):
    monkeypatch.setenv("DEFAULT_ORDER", "RANDOM")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)
