"""Tests for the prices and rates job."""

import asyncio

import pytest

from services.indexer.src.indexer.db.prices_repository import PricesRepository
from services.indexer.src.indexer.db.query_repository import QueryRepository
from services.indexer.src.indexer.db.snapshot_repository import SnapshotRepository
from services.indexer.src.indexer.errors import ConfigurationError
from services.indexer.src.indexer.gateway.base import MockChainReader
from services.indexer.src.indexer.jobs.run_prices import run_all_prices, run_prices
from services.indexer.src.indexer.prices.config import ETH_USD_CHAINLINK
from services.indexer.src.indexer.prices.resolver import PriceResolver
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.src.indexer.utils.retry import RetryPolicy
from services.indexer.tests.factories import WAD, make_block, make_col_immutables, make_immutables

NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0)
PRICE_FEED = "0x" + "a1" * 20


@pytest.fixture
def reader():
    reader = MockChainReader()
    reader.set_latest_block("ethereum", 200, 1740787200)
    reader.set_call("ethereum", PRICE_FEED, "lastGoodPrice", str(2000 * WAD))
    reader.set_call("ethereum", ETH_USD_CHAINLINK.address, "latestAnswer", str(2001 * 10**8))
    reader.set_call("ethereum", ETH_USD_CHAINLINK.address, "decimals", "8")
    return reader


@pytest.fixture
def stored_immutables(engine):
    immutables = make_immutables(100, [make_col_immutables(0, price_feed=PRICE_FEED)])
    SnapshotRepository(engine).save_immutables(immutables, make_block(100))


def prices(reader, engine, chain="ethereum"):
    return asyncio.run(run_prices(
        1, chain, reader, PriceResolver(reader), QueryRepository(engine), PricesRepository(engine),
        latest_policy=NO_RETRY,
    ))


class TestRunPrices:

    def test_stores_prices_at_latest_block(self, engine, reader, stored_immutables):
        assert prices(reader, engine) == 1

        entry = PricesRepository(engine).get_prices(1, "ethereum", 0, 200)
        assert entry.col_usd_price_feed == "2000.000000000000000000"
        assert entry.col_usd_oracle == "2001.000000000000000000"

    def test_requires_immutables(self, engine, reader):
        with pytest.raises(ConfigurationError):
            prices(reader, engine)


class TestRunAllPrices:

    def test_chain_without_immutables_fails_alone(self, engine, reader, stored_immutables):
        error_logger = ErrorLogger()

        results = asyncio.run(run_all_prices(
            1, ["ethereum", "hyperliquid"], reader, PriceResolver(reader, error_logger=error_logger),
            QueryRepository(engine), PricesRepository(engine),
            error_logger=error_logger, latest_policy=NO_RETRY, stagger=0,
        ))

        assert results == {"ethereum": 1, "hyperliquid": -1}
        assert error_logger.count(LogKeyword.CRITICAL) == 1
