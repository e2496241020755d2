"""Tests for PriceResolver with an in-memory chain."""

import asyncio

import pytest

from services.indexer.src.indexer.gateway.base import MockChainReader
from services.indexer.src.indexer.gateway.explorer import MockCreationCodeFetcher
from services.indexer.src.indexer.prices.config import ETH_USD_CHAINLINK, CollateralConfig, OracleConfig
from services.indexer.src.indexer.prices.resolver import PriceResolver
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.tests.factories import WAD, make_col_immutables, make_immutables

BLOCK = 100
WETH_FEED = "0x" + "a1" * 20
WSTETH_FEED = "0x" + "a2" * 20
RATE_PROVIDER = "0x" + "b2" * 20
STETH_USD = "0x" + "cd" * 20
ETH_USD = ETH_USD_CHAINLINK.address


def set_chainlink(reader: MockChainReader, oracle: str, answer: int, decimals: int = 8) -> None:
    reader.set_call("ethereum", oracle, "latestAnswer", str(answer))
    reader.set_call("ethereum", oracle, "decimals", str(decimals))


def creation_code(oracle_slot: int, oracle: str) -> str:
    words = ["0" * 64] * 6
    words[oracle_slot] = oracle.removeprefix("0x").rjust(64, "0")
    return "0x6080604052" + "".join(words)


@pytest.fixture
def reader():
    reader = MockChainReader()
    set_chainlink(reader, ETH_USD, 2000 * 10**8)
    set_chainlink(reader, STETH_USD, 2200 * 10**8)
    reader.set_call("ethereum", WETH_FEED, "lastGoodPrice", str(1999 * WAD))
    reader.set_call("ethereum", WSTETH_FEED, "lastGoodPrice", str(2400 * WAD))
    reader.set_call("ethereum", RATE_PROVIDER, "stEthPerToken", str(12 * 10**17))
    reader.set_call("ethereum", RATE_PROVIDER, "decimals", "18")
    return reader


@pytest.fixture
def error_logger():
    return ErrorLogger(name="test")


@pytest.fixture
def resolver(reader, error_logger):
    fetcher = MockCreationCodeFetcher({WSTETH_FEED: creation_code(2, STETH_USD)})
    return PriceResolver(reader, creation_code_fetcher=fetcher, error_logger=error_logger)


class TestResolve:

    def test_mainnet_collateral(self, resolver, error_logger):
        col = make_col_immutables(0, price_feed=WETH_FEED)

        entry = asyncio.run(resolver.resolve(1, "ethereum", col, BLOCK))

        assert entry.col_usd_price_feed == "1999.000000000000000000"
        assert entry.col_usd_oracle == "2000.000000000000000000"
        assert entry.deviation is None
        assert error_logger.count() == 0

    def test_lst_collateral(self, resolver, error_logger):
        col = make_col_immutables(1, price_feed=WSTETH_FEED, is_lst=True, rate_provider_address=RATE_PROVIDER)

        entry = asyncio.run(resolver.resolve(1, "ethereum", col, BLOCK))

        assert entry.col_usd_price_feed == "2400.000000000000000000"
        assert entry.lst_underlying_canonical_rate == "1.200000000000000000"
        assert entry.underlying_usd_oracle == "2200.000000000000000000"
        # no direct oracle: canonical rate times underlying price
        assert entry.col_usd_oracle == "2640.000000000000000000"
        assert entry.redemption_related_oracles == {"redemptionRelatedOracle0": "2000.000000000000000000"}
        assert entry.deviation == "0.100000000000000000"

    def test_reads_at_requested_block(self, resolver, reader):
        asyncio.run(resolver.resolve(1, "ethereum", make_col_immutables(0, price_feed=WETH_FEED), BLOCK))

        blocks = {key[-1] for kind, key in reader.call_history if kind == "call"}
        assert blocks == {BLOCK}

    def test_failed_price_feed_read_is_logged(self, resolver, error_logger):
        col = make_col_immutables(0, price_feed="0x" + "ee" * 20)

        entry = asyncio.run(resolver.resolve(1, "ethereum", col, BLOCK))

        assert entry.col_usd_price_feed is None
        assert entry.col_usd_oracle == "2000.000000000000000000"
        assert error_logger.count(LogKeyword.MISSING_VALUES) == 2

    def test_failed_oracle_read_is_critical(self, reader, error_logger):
        config = CollateralConfig(
            price_feed_type="mainnet",
            col_usd_oracle=OracleConfig(address="0x" + "99" * 20),
        )
        resolver = PriceResolver(reader, error_logger=error_logger)

        entry = asyncio.run(
            resolver.resolve(1, "ethereum", make_col_immutables(0, price_feed=WETH_FEED), BLOCK, config=config)
        )

        assert entry.col_usd_oracle is None
        assert error_logger.count(LogKeyword.CRITICAL) == 1

    def test_missing_creation_code_leaves_oracle_empty(self, reader, error_logger):
        resolver = PriceResolver(reader, creation_code_fetcher=MockCreationCodeFetcher(), error_logger=error_logger)
        col = make_col_immutables(1, price_feed=WSTETH_FEED, is_lst=True, rate_provider_address=RATE_PROVIDER)

        entry = asyncio.run(resolver.resolve(1, "ethereum", col, BLOCK))

        assert entry.underlying_usd_oracle is None
        assert entry.col_usd_oracle is None
        assert entry.deviation is None
        assert error_logger.count(LogKeyword.CRITICAL) == 1


class TestEvaluateDeviation:

    def test_unknown_variable_is_logged(self, resolver, error_logger):
        config = CollateralConfig(price_feed_type="mainnet", deviation_formula="colUSDPriceFeed - unknownOracle")

        entry = asyncio.run(
            resolver.resolve(1, "ethereum", make_col_immutables(0, price_feed=WETH_FEED), BLOCK, config=config)
        )

        assert entry.deviation is None
        assert error_logger.count(LogKeyword.MISSING_VALUES) == 2


class TestResolveAll:

    def test_skips_trove_managers_without_config(self, resolver, error_logger):
        immutables = make_immutables(col_immutables=[
            make_col_immutables(7),
            make_col_immutables(0, price_feed=WETH_FEED),
        ])

        entries = asyncio.run(resolver.resolve_all(1, "ethereum", immutables, BLOCK))

        assert [e.trove_manager_index for e in entries] == [0]
        assert error_logger.count(LogKeyword.CRITICAL) == 1
