"""Collateral prices, LST rates and deviation for each trove manager."""

import asyncio
import logging

from services.indexer.src.indexer.domain.models import (
    CoreColImmutables,
    CoreImmutablesEntry,
    PricesAndRatesEntry,
)
from services.indexer.src.indexer.errors import ConfigurationError, IndexerError, RemoteReadError
from services.indexer.src.indexer.gateway.abi import ContractFunction
from services.indexer.src.indexer.gateway.base import ChainReader
from services.indexer.src.indexer.gateway.explorer import CreationCodeFetcher
from services.indexer.src.indexer.prices.bytecode import resolve_oracle_from_creation_code
from services.indexer.src.indexer.prices.config import (
    CollateralConfig,
    OracleConfig,
    get_collateral_config,
)
from services.indexer.src.indexer.prices.expressions import ExpressionError, evaluate_expression
from services.indexer.src.indexer.utils.decimals import adjust_by_decimals, multiply_18, truncate_18
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword

logger = logging.getLogger(__name__)

LATEST_ANSWER = ContractFunction.parse("latestAnswer()->(int256)")
DECIMALS = ContractFunction.parse("decimals()->(uint8)")
LAST_GOOD_PRICE = ContractFunction.parse("lastGoodPrice()->(uint256)")
RATE_PROVIDER_ADDRESS = ContractFunction.parse("rateProviderAddress()->(address)")


class PriceResolver:
    def __init__(
        self,
        reader: ChainReader,
        creation_code_fetcher: CreationCodeFetcher | None = None,
        error_logger: ErrorLogger | None = None,
    ):
        self.reader = reader
        self.creation_code_fetcher = creation_code_fetcher
        self.error_logger = error_logger or ErrorLogger()

    def _log(self, msg: str, keyword: LogKeyword, chain: str, protocol_id: int | None = None) -> None:
        self.error_logger.error(
            msg, keyword, chain=chain, protocol_id=protocol_id,
            function="resolve_prices", table="prices_and_rates",
        )

    async def get_chainlink_price(self, chain: str, oracle: str, block: int | None) -> str | None:
        """latestAnswer() scaled by decimals(), or None if either read fails."""
        try:
            answer, decimals = await asyncio.gather(
                self.reader.call(chain, oracle, LATEST_ANSWER, (), block),
                self.reader.call(chain, oracle, DECIMALS, (), block),
            )
        except RemoteReadError as e:
            self._log(f"Failed to get Chainlink price from oracle {oracle}: {e}", LogKeyword.CRITICAL, chain)
            return None
        return adjust_by_decimals(answer, int(decimals))

    async def get_oracle_price(self, chain: str, oracle: OracleConfig | None, block: int | None) -> str | None:
        if oracle is None or oracle.oracle_type != "chainlink":
            return None
        return await self.get_chainlink_price(chain, oracle.address, block)

    async def oracle_from_creation_code(
        self, chain: str, price_feed: str | None, config: CollateralConfig, purpose: str
    ) -> OracleConfig | None:
        hint = config.creation_code_mapping.get(purpose)
        if hint is None or not price_feed or self.creation_code_fetcher is None:
            return None
        try:
            bytecode = await self.creation_code_fetcher.fetch_creation_bytecode(chain, price_feed)
            address = resolve_oracle_from_creation_code(bytecode, hint.arg_index)
        except (IndexerError, ValueError) as e:
            self._log(
                f"Failed to get oracle address from creation data for priceFeed {price_feed}: {e}",
                LogKeyword.CRITICAL, chain,
            )
            return None
        return OracleConfig(address=address, oracle_type=hint.oracle_type)

    async def _resolve_oracle(
        self, chain: str, price_feed: str | None, config: CollateralConfig, purpose: str
    ) -> OracleConfig | None:
        return config.configured_oracle(purpose) or await self.oracle_from_creation_code(
            chain, price_feed, config, purpose
        )

    async def _canonical_rate(
        self,
        chain: str,
        protocol_id: int,
        col: CoreColImmutables,
        config: CollateralConfig,
        block: int | None,
    ) -> str | None:
        rate_provider = config.rate_provider_address or col.rate_provider_address
        if not rate_provider and col.price_feed:
            try:
                rate_provider = await self.reader.call(
                    chain, col.price_feed, RATE_PROVIDER_ADDRESS, (), block
                )
            except RemoteReadError as e:
                self._log(
                    f"Failed to get rate provider address from priceFeed {col.price_feed}: {e}",
                    LogKeyword.MISSING_VALUES, chain, protocol_id,
                )

        if not rate_provider or not config.canonical_rate_function:
            self._log(
                f"No LST canonical rate source for trove manager {col.trove_manager_index} "
                f"(rate provider {rate_provider})",
                LogKeyword.MISSING_VALUES, chain, protocol_id,
            )
            return None

        rate_fn = ContractFunction.parse(f"{config.canonical_rate_function}()->(uint256)")
        try:
            rate, decimals = await asyncio.gather(
                self.reader.call(chain, rate_provider, rate_fn, (), block),
                self.reader.call(chain, rate_provider, DECIMALS, (), block),
            )
        except RemoteReadError as e:
            self._log(
                f"Failed to get LST canonical rate from rate provider {rate_provider}: {e}",
                LogKeyword.MISSING_VALUES, chain, protocol_id,
            )
            return None
        return adjust_by_decimals(rate, int(decimals))

    async def resolve(
        self,
        protocol_id: int,
        chain: str,
        col: CoreColImmutables,
        block: int,
        config: CollateralConfig | None = None,
    ) -> PricesAndRatesEntry:
        """
        Resolve every price field of one trove manager at ``block``.

        Fields that cannot be read stay None and are reported to the error
        logger; the deviation formula is evaluated last, over the resolved fields.

        Raises:
            ConfigurationError: If no collateral config exists for the trove manager
        """
        config = config or get_collateral_config(protocol_id, chain, col.trove_manager_index)
        entry = PricesAndRatesEntry(
            chain=chain,
            protocol_id=protocol_id,
            trove_manager_index=col.trove_manager_index,
            block_number=block,
        )

        if config.price_feed_type in ("mainnet", "composite"):
            if col.price_feed:
                try:
                    last_good_price = await self.reader.call(
                        chain, col.price_feed, LAST_GOOD_PRICE, (), block
                    )
                    entry.col_usd_price_feed = adjust_by_decimals(
                        last_good_price, config.price_feed_decimals
                    )
                except RemoteReadError as e:
                    self._log(
                        f"Failed to get last good price for priceFeed {col.price_feed}: {e}",
                        LogKeyword.MISSING_VALUES, chain, protocol_id,
                    )

            col_oracle = await self._resolve_oracle(chain, col.price_feed, config, "colUSDOracle")
            entry.col_usd_oracle = await self.get_oracle_price(chain, col_oracle, block)

            if config.is_lst or col.is_lst:
                entry.lst_underlying_canonical_rate = await self._canonical_rate(
                    chain, protocol_id, col, config, block
                )

                underlying = await self._resolve_oracle(
                    chain, col.price_feed, config, "underlyingUSDOracle"
                )
                if underlying is None:
                    self._log(
                        f"No underlyingUSDOracle address found for price feed {col.price_feed}",
                        LogKeyword.MISSING_VALUES, chain, protocol_id,
                    )
                entry.underlying_usd_oracle = await self.get_oracle_price(chain, underlying, block)

                market = await self._resolve_oracle(
                    chain, col.price_feed, config, "LSTUnderlyingMarketRateOracle"
                )
                entry.lst_underlying_market_rate = await self.get_oracle_price(chain, market, block)

        for key, oracle in sorted(config.redemption_related_oracles.items()):
            entry.redemption_related_oracles[f"redemptionRelatedOracle{key}"] = (
                await self.get_oracle_price(chain, oracle, block)
            )

        if (
            entry.col_usd_oracle is None
            and entry.lst_underlying_canonical_rate is not None
            and entry.underlying_usd_oracle is not None
        ):
            entry.col_usd_oracle = multiply_18(
                entry.lst_underlying_canonical_rate, entry.underlying_usd_oracle
            )

        if config.deviation_formula:
            entry.deviation = self.evaluate_deviation(config.deviation_formula, entry)

        for field_name, value in (
            ("colUSDPriceFeed", entry.col_usd_price_feed),
            ("colUSDOracle", entry.col_usd_oracle),
        ):
            if value is None:
                self._log(
                    f"Missing value: {field_name} is null for troveManagerIndex {col.trove_manager_index}",
                    LogKeyword.MISSING_VALUES, chain, protocol_id,
                )
        return entry

    def evaluate_deviation(self, formula: str, entry: PricesAndRatesEntry) -> str | None:
        variables = {
            "troveManagerIndex": str(entry.trove_manager_index),
            "colUSDPriceFeed": entry.col_usd_price_feed,
            "colUSDOracle": entry.col_usd_oracle,
            "LSTUnderlyingCanonicalRate": entry.lst_underlying_canonical_rate,
            "LSTUnderlyingMarketRate": entry.lst_underlying_market_rate,
            "underlyingUSDOracle": entry.underlying_usd_oracle,
            **entry.redemption_related_oracles,
        }
        try:
            result = evaluate_expression(formula, variables)
        except ExpressionError as e:
            self._log(
                f"Error calculating deviation for troveManagerIndex {entry.trove_manager_index}: {e}",
                LogKeyword.MISSING_VALUES, entry.chain, entry.protocol_id,
            )
            return None
        return truncate_18(result) if result is not None else None

    async def resolve_all(
        self, protocol_id: int, chain: str, immutables: CoreImmutablesEntry, block: int
    ) -> list[PricesAndRatesEntry]:
        """Resolve every trove manager; one without collateral config is logged and skipped."""
        entries = []
        for col in sorted(immutables.col_immutables, key=lambda c: c.trove_manager_index):
            try:
                entries.append(await self.resolve(protocol_id, chain, col, block))
            except ConfigurationError as e:
                self._log(str(e), LogKeyword.CRITICAL, chain, protocol_id)
        return entries
