"""Per-collateral price configuration, keyed by (protocol id, chain, trove manager index)."""

from typing import Literal

from pydantic import BaseModel, Field

from services.indexer.src.indexer.errors import ConfigurationError

OracleType = Literal["chainlink", "custom"]
OraclePurpose = Literal["colUSDOracle", "underlyingUSDOracle", "LSTUnderlyingMarketRateOracle"]


class OracleConfig(BaseModel):
    address: str
    oracle_type: OracleType = "chainlink"


class CreationCodeHint(BaseModel):
    """Which price feed constructor argument holds an oracle address."""

    arg_index: int = Field(..., ge=0, le=3)
    oracle_type: OracleType = "chainlink"


class CollateralConfig(BaseModel):
    is_lst: bool = False
    rate_provider_address: str | None = None
    lst_underlying: str | None = None
    price_feed_type: Literal["mainnet", "composite", "custom"] | None = None
    price_feed_decimals: int = 18
    # View on the rate provider returning the LST/underlying rate, e.g. "stEthPerToken"
    canonical_rate_function: str | None = None
    deviation_formula: str | None = None
    deviation_threshold: str | None = None
    col_usd_oracle: OracleConfig | None = None
    underlying_usd_oracle: OracleConfig | None = None
    lst_market_rate_oracle: OracleConfig | None = None
    redemption_related_oracles: dict[int, OracleConfig] = Field(default_factory=dict)
    creation_code_mapping: dict[OraclePurpose, CreationCodeHint] = Field(default_factory=dict)

    def configured_oracle(self, purpose: str) -> OracleConfig | None:
        return {
            "colUSDOracle": self.col_usd_oracle,
            "underlyingUSDOracle": self.underlying_usd_oracle,
            "LSTUnderlyingMarketRateOracle": self.lst_market_rate_oracle,
        }.get(purpose)


ETH_USD_CHAINLINK = OracleConfig(address="0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419")

COLLATERAL_CONFIGS: dict[str, dict[int, CollateralConfig]] = {
    "1-ethereum": {
        # WETH
        0: CollateralConfig(
            price_feed_type="mainnet",
            col_usd_oracle=ETH_USD_CHAINLINK,
            creation_code_mapping={"colUSDOracle": CreationCodeHint(arg_index=1)},
        ),
        # wstETH
        1: CollateralConfig(
            price_feed_type="composite",
            is_lst=True,
            lst_underlying="0xae7ab96520DE3A18E5e111B5EaAb095312D7fE84",
            canonical_rate_function="stEthPerToken",
            deviation_formula="underlyingUSDOracle/redemptionRelatedOracle0-1",
            deviation_threshold="10000000000000000",
            creation_code_mapping={"underlyingUSDOracle": CreationCodeHint(arg_index=2)},
            redemption_related_oracles={0: ETH_USD_CHAINLINK},
        ),
        # rETH
        2: CollateralConfig(
            price_feed_type="composite",
            is_lst=True,
            lst_underlying="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
            canonical_rate_function="getExchangeRate",
            deviation_formula="LSTUnderlyingCanonicalRate-LSTUnderlyingMarketRate",
            deviation_threshold="20000000000000000",
            underlying_usd_oracle=ETH_USD_CHAINLINK,
            lst_market_rate_oracle=OracleConfig(address="0x536218f9E9Eb48863970252233c8F271f554C2d0"),
        ),
    },
}


def get_collateral_config(protocol_id: int, chain: str, trove_manager_index: int) -> CollateralConfig:
    config = COLLATERAL_CONFIGS.get(f"{protocol_id}-{chain}", {}).get(trove_manager_index)
    if config is None:
        raise ConfigurationError(
            f"No collateral config for protocol {protocol_id} on {chain}, "
            f"trove manager {trove_manager_index}"
        )
    return config
