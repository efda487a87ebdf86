"""
Tests for the network registry.
"""

import httpx
import pytest

from sedn.config import Settings
from sedn.core.chain_types import ARBITRUM, GNOSIS, OPTIMISM, POLYGON, SEPOLIA, normalize_to_chain_id
from sedn.core.errors import ConfigurationError
from sedn.core.networks import (
    DEFAULT_NETWORKS,
    ForwarderSchema,
    NetworkRegistry,
    load_network_registry,
)

SEDN_OPTIMISM = "0x1111111111111111111111111111111111111111"
FORWARDER_OPTIMISM = "0x2222222222222222222222222222222222222222"

DOCUMENT = {
    "contracts": {"optimism": {"contract": SEDN_OPTIMISM}, "polygon": {"contract": "0x3333333333333333333333333333333333333333"}},
    "usdc": {"optimism": {"contract": "0x7f5c764cbc14f9669b88837ca1490cca17c31607"}},
    "forwarder": {"optimism": FORWARDER_OPTIMISM},
    "relayerWebhooks": {"optimism": "https://relay.test/optimism", "sepolia": "https://relay.test/sepolia"},
    "nativeAssetIds": {"polygon": "polygon-ecosystem-token"},
}


@pytest.fixture
def registry():
    return NetworkRegistry(DEFAULT_NETWORKS)


class TestLookup:
    def test_by_id_name_and_alias(self, registry):
        assert registry.require(137).name == "polygon"
        assert registry.require("Polygon").chain_id == POLYGON
        assert registry.require("matic").chain_id == POLYGON
        assert registry.require("42161").chain_id == ARBITRUM

    def test_unknown(self, registry):
        with pytest.raises(ConfigurationError):
            registry.require(999)
        with pytest.raises(ConfigurationError):
            registry.require("atlantis")

    def test_missing_addresses(self, registry):
        gnosis = registry.require(GNOSIS)
        with pytest.raises(ConfigurationError):
            gnosis.require_sedn()
        with pytest.raises(ConfigurationError):
            gnosis.require_relayer()
        assert gnosis.require_forwarder().startswith("0x")

    def test_overrides_return_new_registry(self, registry):
        updated = registry.with_overrides(POLYGON, relayer_webhook="https://relay.test")
        assert updated.require(POLYGON).require_relayer() == "https://relay.test"
        assert registry.require(POLYGON).relayer_webhook == ""

    def test_chain_names(self):
        assert normalize_to_chain_id("xdai") == GNOSIS
        assert normalize_to_chain_id("11155111") == SEPOLIA
        with pytest.raises(ValueError):
            normalize_to_chain_id("atlantis")


class TestDocument:
    def test_overlay(self, registry):
        updated = NetworkRegistry.from_document(
            DOCUMENT,
            base=registry,
            forwarder_schemas={"optimism": ForwarderSchema.MINIMAL_FORWARDER},
        )
        optimism = updated.require(OPTIMISM)
        assert optimism.require_sedn().lower() == SEDN_OPTIMISM
        assert optimism.require_forwarder().lower() == FORWARDER_OPTIMISM
        assert optimism.forwarder_schema is ForwarderSchema.MINIMAL_FORWARDER
        assert optimism.require_relayer() == "https://relay.test/optimism"
        # networks absent from the base registry are added
        assert updated.require(SEPOLIA).relayer_webhook == "https://relay.test/sepolia"
        assert updated.require(POLYGON).native_asset_id == "polygon-ecosystem-token"
        assert updated.require(OPTIMISM).native_asset_id == "ethereum"

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("INFURA_API_KEY", "k")
        monkeypatch.setenv("RELAYER_WEBHOOKS", '{"polygon": "https://relay.test/polygon"}')
        settings = Settings()

        registry = NetworkRegistry.from_settings(settings)

        polygon = registry.require(POLYGON)
        assert polygon.rpc_url == "https://polygon-mainnet.infura.io/v3/k"
        assert polygon.relayer_webhook == "https://relay.test/polygon"

    @pytest.mark.asyncio
    async def test_load_from_public_config(self, monkeypatch):
        monkeypatch.setenv("SEDN_ENVIRONMENT", "staging")
        settings = Settings()
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=DOCUMENT)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        registry = await load_network_registry(settings, client=client)

        assert registry.require(OPTIMISM).require_relayer() == "https://relay.test/optimism"
        assert seen[0].url.params["avoidTheCaches"] == "1"

    @pytest.mark.asyncio
    async def test_public_config_failure(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        with pytest.raises(ConfigurationError):
            await load_network_registry(Settings(), client=client)
