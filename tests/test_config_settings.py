from sedn.config import Settings


def test_environment_alias(monkeypatch):
    """SEDN_ENVIRONMENT takes precedence over the generic ENVIRONMENT."""

    monkeypatch.setenv("SEDN_ENVIRONMENT", "staging")
    monkeypatch.setenv("ENVIRONMENT", "prod")

    settings = Settings()

    assert settings.environment == "staging"


def test_dev_maps_to_staging(monkeypatch):
    """dev deployments use the staging contracts."""

    monkeypatch.delenv("SEDN_ENVIRONMENT", raising=False)
    monkeypatch.setenv("ENVIRONMENT", "Dev")

    settings = Settings()

    assert settings.environment == "staging"


def test_rpc_url_resolution(monkeypatch):
    """Explicit overrides beat the Infura template."""

    monkeypatch.setenv("INFURA_API_KEY", "abc123")
    monkeypatch.setenv("RPC_URL_OVERRIDES", '{"arbitrum": "http://localhost:8545"}')

    settings = Settings()

    assert settings.rpc_url_for("arbitrum", "https://arbitrum-mainnet.infura.io/v3/{key}") == "http://localhost:8545"
    assert settings.rpc_url_for("polygon", "https://polygon-mainnet.infura.io/v3/{key}") == (
        "https://polygon-mainnet.infura.io/v3/abc123"
    )
    assert settings.rpc_url_for("gnosis") == ""
