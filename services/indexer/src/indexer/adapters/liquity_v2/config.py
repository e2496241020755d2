from pydantic import BaseModel, Field

from services.indexer.src.indexer.errors import ConfigurationError


class DeploymentConfig(BaseModel):
    chain: str
    collateral_registry: str
    # trove manager index -> addresses registry, for trove managers whose
    # creation bytecode does not end with the registry address
    address_registry_overrides: dict[int, str] = Field(default_factory=dict)


class ProtocolConfig(BaseModel):
    protocol_id: int
    name: str
    adapter: str = "liquity_v2"
    deployments: list[DeploymentConfig]

    def get_deployment(self, chain: str) -> DeploymentConfig:
        for deployment in self.deployments:
            if deployment.chain == chain:
                return deployment
        raise ConfigurationError(f"Protocol {self.name} has no deployment on chain: {chain}")

    @property
    def chains(self) -> list[str]:
        return [d.chain for d in self.deployments]


class IndexerConfig(BaseModel):
    protocols: list[ProtocolConfig]

    def get_protocol(self, protocol_id: int) -> ProtocolConfig | None:
        for protocol in self.protocols:
            if protocol.protocol_id == protocol_id:
                return protocol
        return None


def get_default_config() -> IndexerConfig:
    """Liquity V2 on Ethereum and Felix on HyperEVM."""
    return IndexerConfig(
        protocols=[
            ProtocolConfig(
                protocol_id=1,
                name="liquity",
                deployments=[
                    DeploymentConfig(
                        chain="ethereum",
                        collateral_registry="0xd99dE73b95236F69A559117ECD6F519Af780F3f7",
                    ),
                ],
            ),
            ProtocolConfig(
                protocol_id=2,
                name="felix",
                deployments=[
                    DeploymentConfig(
                        chain="hyperliquid",
                        collateral_registry="0x9De1e57049c475736289Cb006212F3E1DCe4711B",
                        address_registry_overrides={
                            0: "0x7201fb5c3ba06f10a858819f62221ae2f473815d",
                            1: "0xfC4e20bd9F0e4F8782beA92a7bd8002367882407",
                        },
                    ),
                ],
            ),
        ],
    )
