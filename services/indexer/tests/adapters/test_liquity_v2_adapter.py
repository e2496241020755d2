"""Tests for LiquityV2Adapter against an in-memory chain."""

import asyncio

import pytest
from eth_abi import encode

from services.indexer.src.indexer.adapters.liquity_v2 import LiquityV2Adapter, ProtocolConfig
from services.indexer.src.indexer.adapters.liquity_v2.adapter import addresses_registry_from_creation_code
from services.indexer.src.indexer.adapters.liquity_v2.config import DeploymentConfig
from services.indexer.src.indexer.adapters.liquity_v2.events import EVENTS_BY_NAME, operation_of
from services.indexer.src.indexer.domain.models import RawLog
from services.indexer.src.indexer.errors import ConfigurationError, RemoteReadError
from services.indexer.src.indexer.gateway.base import MockChainReader
from services.indexer.src.indexer.gateway.explorer import MockCreationCodeFetcher
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.tests.factories import WAD, ZERO_ADDRESS

CHAIN = "ethereum"
BLOCK = 100


def address(tag: str) -> str:
    return "0x" + tag * 20


REGISTRY = address("01")
TROVE_MANAGER = address("02")
ACTIVE_POOL = address("03")
TROVE_NFT = address("04")
ADDRESSES_REGISTRY = address("05")
STABILITY_POOL = address("06")
COLL_TOKEN = address("07")
PRICE_FEED = address("08")
BORROWER_OPERATIONS = address("09")
DEFAULT_POOL = address("0a")
OWNER = address("0b")


def trove_row(debt: int, status: int) -> tuple:
    return (str(debt), str(2 * WAD), str(2 * WAD), str(status), "0", "0", "0", str(5 * 10**16), ZERO_ADDRESS, "0")


def make_config(overrides: dict[int, str] | None = None) -> ProtocolConfig:
    return ProtocolConfig(
        protocol_id=1,
        name="liquity",
        deployments=[
            DeploymentConfig(
                chain=CHAIN,
                collateral_registry=REGISTRY,
                address_registry_overrides=overrides or {},
            )
        ],
    )


@pytest.fixture
def reader():
    reader = MockChainReader()
    call = reader.set_call

    call(CHAIN, REGISTRY, "totalCollaterals", "1")
    call(CHAIN, REGISTRY, "getTroveManager", TROVE_MANAGER, args=(0,))
    call(CHAIN, REGISTRY, "boldToken", address("bb"))
    call(CHAIN, REGISTRY, "baseRate", "0")
    call(CHAIN, REGISTRY, "getRedemptionRate", str(5 * 10**15))

    call(CHAIN, TROVE_MANAGER, "getTroveIdsCount", "2")
    call(CHAIN, TROVE_MANAGER, "getTroveFromTroveIdsArray", "11", args=(0,))
    call(CHAIN, TROVE_MANAGER, "getTroveFromTroveIdsArray", "22", args=(1,))
    call(CHAIN, TROVE_MANAGER, "Troves", trove_row(1000 * WAD, 1), args=(11,))
    call(CHAIN, TROVE_MANAGER, "Troves", trove_row(0, 2), args=(22,))
    call(CHAIN, TROVE_MANAGER, "getLatestTroveData", (str(1001 * WAD),) + ("0",) * 9, args=(11,))
    call(CHAIN, TROVE_MANAGER, "getLatestTroveData", ("0",) * 10, args=(22,))
    call(CHAIN, TROVE_MANAGER, "troveNFT", TROVE_NFT)
    call(CHAIN, TROVE_MANAGER, "activePool", ACTIVE_POOL)
    call(CHAIN, TROVE_MANAGER, "sortedTroves", address("0c"))
    call(CHAIN, TROVE_MANAGER, "getEntireSystemColl", str(2 * WAD))
    call(CHAIN, TROVE_MANAGER, "getEntireSystemDebt", str(1001 * WAD))
    call(CHAIN, TROVE_NFT, "ownerOf", OWNER, args=(11,))

    for name, value in [
        ("CCR", str(15 * 10**17)),
        ("SCR", str(11 * 10**17)),
        ("MCR", str(11 * 10**17)),
        ("interestRouter", address("0d")),
        ("collToken", COLL_TOKEN),
        ("stabilityPool", STABILITY_POOL),
        ("sortedTroves", address("0c")),
        ("troveNFT", TROVE_NFT),
        ("priceFeed", PRICE_FEED),
    ]:
        call(CHAIN, ADDRESSES_REGISTRY, name, value)
    call(CHAIN, COLL_TOKEN, "decimals", "18")

    for name, value in [
        ("defaultPoolAddress", DEFAULT_POOL),
        ("borrowerOperationsAddress", BORROWER_OPERATIONS),
        ("collToken", COLL_TOKEN),
        ("stabilityPool", STABILITY_POOL),
        ("interestRouter", address("0d")),
        ("aggWeightedRecordedDebtSum", "0"),
        ("aggRecordedDebt", str(1000 * WAD)),
        ("calcPendingAggInterest", "1"),
        ("calcPendingSPYield", "2"),
        ("lastAggUpdateTime", "1740787200"),
    ]:
        call(CHAIN, ACTIVE_POOL, name, value)
    for name in ("CCR", "SCR", "MCR"):
        call(CHAIN, BORROWER_OPERATIONS, name, str(11 * 10**17))

    for name, value in [
        ("getCollBalance", "0"),
        ("getTotalBoldDeposits", str(500 * WAD)),
        ("getYieldGainsOwed", "3"),
        ("getYieldGainsPending", "4"),
    ]:
        call(CHAIN, STABILITY_POOL, name, value)
    return reader


@pytest.fixture
def adapter(reader):
    return LiquityV2Adapter(make_config({0: ADDRESSES_REGISTRY}), reader)


class TestTroves:

    def test_fetch_troves(self, adapter):
        entries = asyncio.run(adapter.fetch_troves(CHAIN, BLOCK))

        assert len(entries) == 1
        entry = entries[0]
        assert (entry.trove_manager_index, entry.block_number) == (0, BLOCK)
        assert [(t.trove_id, t.status, t.entire_debt) for t in entry.troves] == [
            ("11", 1, str(1001 * WAD)),
            ("22", 2, "0"),
        ]
        assert entry.troves[0].debt == str(1000 * WAD)

    def test_entire_debt_failure_is_logged(self, reader):
        reader.set_call(CHAIN, TROVE_MANAGER, "getLatestTroveData", RemoteReadError("reverted"), args=(22,))
        error_logger = ErrorLogger()
        adapter = LiquityV2Adapter(make_config(), reader, error_logger=error_logger)

        entries = asyncio.run(adapter.fetch_troves(CHAIN, BLOCK))

        assert [t.entire_debt for t in entries[0].troves] == [None, None]
        assert error_logger.count(LogKeyword.MISSING_VALUES) == 1

    def test_owners_only_for_open_troves(self, adapter):
        troves = asyncio.run(adapter.fetch_troves(CHAIN, BLOCK))

        owners = asyncio.run(adapter.fetch_trove_owners(CHAIN, BLOCK, troves))

        assert owners[0].owners == {"11": OWNER}

    def test_reads_pinned_to_block(self, adapter, reader):
        asyncio.run(adapter.fetch_troves(CHAIN, BLOCK))

        assert {key[-1] for kind, key in reader.call_history if kind == "call"} == {BLOCK}

    def test_unknown_chain(self, adapter):
        with pytest.raises(ConfigurationError):
            asyncio.run(adapter.fetch_troves("base", BLOCK))


class TestImmutables:

    def test_from_addresses_registry(self, adapter):
        entry = asyncio.run(adapter.fetch_immutables(CHAIN, BLOCK))

        assert entry.collateral_registry == REGISTRY
        assert entry.interest_router == address("0d")
        col = entry.col_immutables[0]
        assert col.ccr == str(15 * 10**17)
        assert col.price_feed == PRICE_FEED
        assert col.coll_token_decimals == 18
        assert col.default_pool == DEFAULT_POOL
        # price feed without rateProviderAddress()
        assert col.is_lst is False

    def test_registry_from_creation_code(self, reader):
        fetcher = MockCreationCodeFetcher({TROVE_MANAGER: "0x6080" + "00" * 12 + ADDRESSES_REGISTRY[2:]})
        adapter = LiquityV2Adapter(make_config(), reader, creation_code_fetcher=fetcher)

        entry = asyncio.run(adapter.fetch_immutables(CHAIN, BLOCK))

        assert entry.col_immutables[0].price_feed == PRICE_FEED
        assert fetcher.call_history == [(CHAIN, TROVE_MANAGER)]

    def test_falls_back_to_pools_without_registry(self, reader):
        adapter = LiquityV2Adapter(make_config(), reader)

        entry = asyncio.run(adapter.fetch_immutables(CHAIN, BLOCK))

        col = entry.col_immutables[0]
        assert col.ccr == str(11 * 10**17)
        assert col.borrower_operations == BORROWER_OPERATIONS
        assert col.price_feed is None
        assert col.is_lst is None

    def test_lst_detected_from_rate_provider(self, reader, adapter):
        reader.set_call(CHAIN, PRICE_FEED, "rateProviderAddress", address("0e"))

        col = asyncio.run(adapter.fetch_immutables(CHAIN, BLOCK)).col_immutables[0]

        assert col.is_lst is True
        assert col.rate_provider_address == address("0e")


class TestPoolData:

    def test_fetch_pool_data(self, adapter):
        entry = asyncio.run(adapter.fetch_pool_data(CHAIN, BLOCK))

        assert entry.redemption_rate == str(5 * 10**15)
        assert entry.total_collaterals == "1"
        col = entry.col_pool_data[0]
        assert col.entire_system_debt == str(1001 * WAD)
        assert col.trove_ids_count == "2"
        assert col.pending_agg_interest == "1"
        assert col.sp_total_bold_deposits == str(500 * WAD)
        assert col.sp_yield_gains_pending == "4"


class TestEvents:

    def operation_log(self, block: int, log_index: int, trove_id: int, operation: int) -> RawLog:
        spec = EVENTS_BY_NAME["TroveOperation"]
        data = encode(
            ["uint8", "uint256", "uint256", "uint256", "int256", "uint256", "int256"],
            [operation, 5 * 10**16, 0, 0, 1000 * WAD, 0, -WAD],
        )
        return RawLog(
            address=TROVE_MANAGER,
            topics=[spec.topic, "0x" + f"{trove_id:064x}"],
            data="0x" + data.hex(),
            block_number=block,
            tx_hash=f"0x{block:064x}",
            log_index=log_index,
        )

    def test_decodes_and_orders_events(self, adapter, reader):
        topic = EVENTS_BY_NAME["TroveOperation"].topic
        reader.set_logs(CHAIN, TROVE_MANAGER, topic, [
            self.operation_log(90, 3, 11, 0),
            self.operation_log(80, 1, 22, 1),
            self.operation_log(120, 0, 33, 0),
        ])

        events = asyncio.run(adapter.fetch_events(CHAIN, 50, 100))

        assert [(e.block_number, e.log_index) for e in events] == [(80, 1), (90, 3)]
        assert events[0].event_name == "TroveOperation"
        assert events[0].operation == 1
        assert events[0].data["troveId"] == "22"
        assert events[0].data["collChangeFromOperation"] == str(-WAD)

    def test_undecodable_log_is_skipped(self, adapter, reader):
        topic = EVENTS_BY_NAME["TroveOperation"].topic
        broken = RawLog(address=TROVE_MANAGER, topics=[topic], data="0x", block_number=60, tx_hash="0xdead", log_index=0)
        reader.set_logs(CHAIN, TROVE_MANAGER, topic, [broken, self.operation_log(70, 0, 11, 2)])

        events = asyncio.run(adapter.fetch_events(CHAIN, 50, 100))

        assert [e.block_number for e in events] == [70]
        assert adapter.error_logger.count(LogKeyword.MISSING_VALUES) == 1

    def test_operation_of(self):
        assert operation_of("TroveOperation", {"operation": "5"}) == 5
        assert operation_of("TroveUpdated", {}) is None


class TestAddressesRegistryFromCreationCode:

    def test_last_twenty_bytes(self):
        assert addresses_registry_from_creation_code("0x6080" + "AB" * 20) == "0x" + "ab" * 20

    def test_too_short(self):
        with pytest.raises(ValueError):
            addresses_registry_from_creation_code("0x6080")
