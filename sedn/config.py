from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Normalise the deployment environment name."""

        super().model_post_init(__context)

        env = (self.environment or "prod").strip().lower()
        # dev deployments share the staging contracts and APIs
        if env in ("dev", "development"):
            env = "staging"
        object.__setattr__(self, "environment", env)

    log_level: str = Field(default="INFO", description="Logging level")
    environment: str = Field(
        default="prod",
        validation_alias=AliasChoices("SEDN_ENVIRONMENT", "ENVIRONMENT"),
        description="Deployment environment: prod or staging (dev maps to staging)",
    )

    # RPC access
    infura_api_key: str = Field(default="", description="Infura project key used for default RPC URLs")
    rpc_url_overrides: Dict[str, str] = Field(
        default_factory=dict,
        description="Per-network RPC URL overrides keyed by network name",
    )

    # Contract addresses (per network name), overlaid on the built-in registry
    sedn_addresses: Dict[str, str] = Field(default_factory=dict, description="Sedn contract per network")
    forwarder_addresses: Dict[str, str] = Field(default_factory=dict, description="Forwarder contract per network")
    relayer_webhooks: Dict[str, str] = Field(
        default_factory=dict,
        description="Relay webhook URL per network name",
    )
    public_config_url: str = Field(
        default="https://storage.googleapis.com/sedn-public-config/v2.config.json",
        description="Public network configuration document (prod)",
    )
    public_config_staging_url: str = Field(
        default="https://storage.googleapis.com/sedn-public-config/v2.staging.config.json",
        description="Public network configuration document (staging)",
    )

    # Execution
    gasless: bool = Field(default=True, description="Submit through the forwarder relay instead of direct txs")
    meta_tx_gas: int = Field(default=1_000_000, description="Gas stamped into every forward request")
    relay_gas_margin: int = Field(default=1_000_000, description="Extra gas the relay adds on execute")
    receipt_timeout_ms: int = Field(default=60_000, description="Max wait for a tx receipt")
    receipt_poll_interval_s: float = Field(default=5.0, description="Receipt polling interval")
    balance_timeout_ms: int = Field(default=60_000, description="Max wait for a balance change")
    balance_poll_interval_s: float = Field(default=10.0, description="Balance polling interval")
    execution_timeout_ms: int = Field(default=600_000, description="Max wait for an execution to finish")
    execution_poll_interval_s: float = Field(default=10.0, description="Execution status polling interval")
    request_timeout_seconds: int = Field(default=30, description="HTTP request timeout")
    http_retry_count: int = Field(default=3, description="Transport-level retries for relay/API calls")

    # Claims
    trusted_verifier_address: str = Field(default="", description="Address of the trusted claim verifier")
    verifier_private_key: str = Field(default="", description="Verifier key (test/staging deployments only)")
    claim_validity_seconds: int = Field(default=1000, description="Lifetime of a claim authorization")

    # Routing (Socket)
    socket_api_key: str = Field(default="", description="Socket API key")
    socket_base_url: str = Field(default="https://api.socket.tech", description="Socket API base URL")
    bridge_testnet_mode: bool = Field(
        default=False,
        description="Quote bridge routes against mainnet substitutes while executing on testnets",
    )
    testnet_route_source_chain_id: int = Field(default=137, description="Mainnet source chain used in testnet mode")
    testnet_route_destination_chain_id: int = Field(
        default=42161, description="Mainnet destination chain used in testnet mode"
    )

    # Execution API
    execution_api_url: str = Field(default="", description="Base URL of the execution API")
    execution_api_token: str = Field(default="", description="Bearer token for the execution API")

    # Native asset prices (transaction cost reporting)
    coingecko_api_key: str = Field(default="", description="Coingecko demo API key (optional)")
    coingecko_base_url: str = Field(default="https://api.coingecko.com/api/v3", description="Coingecko API base URL")
    report_tx_costs: bool = Field(default=False, description="Price every confirmed transaction in USD")

    # Fees
    polygon_gas_station_url: str = Field(
        default="https://gasstation-mainnet.matic.network/v2",
        description="Polygon gas station endpoint",
    )

    def rpc_url_for(self, network: str, default_template: Optional[str] = None) -> str:
        """Resolve the RPC URL for a network, preferring explicit overrides."""
        if network in self.rpc_url_overrides:
            return self.rpc_url_overrides[network]
        if default_template:
            return default_template.format(key=self.infura_api_key)
        return ""


# Global settings instance
settings = Settings()
