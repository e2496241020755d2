import pytest

from services.indexer.src.indexer.adapters.liquity_v2 import (
    IndexerConfig,
    LiquityV2Adapter,
    ProtocolConfig,
    get_default_config,
)
from services.indexer.src.indexer.adapters.liquity_v2.config import DeploymentConfig
from services.indexer.src.indexer.adapters.registry import get_adapter
from services.indexer.src.indexer.errors import ConfigurationError
from services.indexer.src.indexer.gateway.base import MockChainReader


class TestDefaultConfig:

    def test_protocols(self):
        config = get_default_config()

        assert [(p.protocol_id, p.name, p.chains) for p in config.protocols] == [
            (1, "liquity", ["ethereum"]),
            (2, "felix", ["hyperliquid"]),
        ]

    def test_unknown_protocol(self):
        assert get_default_config().get_protocol(42) is None

    def test_unknown_deployment(self):
        with pytest.raises(ConfigurationError):
            get_default_config().get_protocol(1).get_deployment("hyperliquid")


class TestGetAdapter:

    def test_builds_liquity_adapter(self):
        adapter = get_adapter(2, MockChainReader())

        assert isinstance(adapter, LiquityV2Adapter)
        assert adapter.protocol_id == 2
        assert adapter.chains == ["hyperliquid"]

    def test_unknown_protocol(self):
        with pytest.raises(ConfigurationError):
            get_adapter(42, MockChainReader())

    def test_unknown_adapter(self):
        config = IndexerConfig(protocols=[
            ProtocolConfig(
                protocol_id=3,
                name="fork",
                adapter="unknown",
                deployments=[DeploymentConfig(chain="base", collateral_registry="0x01")],
            )
        ])

        with pytest.raises(ConfigurationError):
            get_adapter(3, MockChainReader(), config=config)
