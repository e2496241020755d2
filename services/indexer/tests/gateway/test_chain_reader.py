import asyncio

import pytest

from services.indexer.src.indexer.errors import RemoteReadError
from services.indexer.src.indexer.gateway.base import MockChainReader

TROVE_MANAGER = "0x7bcb64b2c9206a5b699ed43363f6f98d4776cf5a"


@pytest.fixture
def reader():
    reader = MockChainReader()
    # one block every 12 seconds
    reader.set_blocks("ethereum", {n: 1000 + 12 * n for n in range(0, 101)})
    reader.set_latest_block("ethereum", 100, 2200)
    return reader


class TestMockChainReader:

    def test_call_returns_configured_value(self, reader):
        reader.set_call("ethereum", TROVE_MANAGER, "getTroveIdsCount", "3")

        result = asyncio.run(reader.call("ethereum", TROVE_MANAGER, "getTroveIdsCount()->(uint256)"))

        assert result == "3"

    def test_unknown_call_reverts(self, reader):
        with pytest.raises(RemoteReadError):
            asyncio.run(reader.call("ethereum", TROVE_MANAGER, "getTroveIdsCount()->(uint256)"))

    def test_configured_exception_is_raised(self, reader):
        reader.set_call("ethereum", TROVE_MANAGER, "getTroveIdsCount", TimeoutError("slow"))

        with pytest.raises(TimeoutError):
            asyncio.run(reader.call("ethereum", TROVE_MANAGER, "getTroveIdsCount()->(uint256)"))

    def test_fetch_list(self, reader):
        reader.set_call("ethereum", TROVE_MANAGER, "getTroveIdsCount", "2")
        reader.set_call("ethereum", TROVE_MANAGER, "getTroveFromTroveIdsArray", "11", args=(0,))
        reader.set_call("ethereum", TROVE_MANAGER, "getTroveFromTroveIdsArray", "22", args=(1,))

        result = asyncio.run(reader.fetch_list(
            "ethereum", TROVE_MANAGER,
            "getTroveIdsCount()->(uint256)",
            "getTroveFromTroveIdsArray(uint256)->(uint256)",
        ))

        assert result == ["11", "22"]

    def test_fetch_list_empty(self, reader):
        reader.set_call("ethereum", TROVE_MANAGER, "getTroveIdsCount", "0")

        result = asyncio.run(reader.fetch_list(
            "ethereum", TROVE_MANAGER,
            "getTroveIdsCount()->(uint256)",
            "getTroveFromTroveIdsArray(uint256)->(uint256)",
        ))

        assert result == []

    def test_unknown_block(self, reader):
        assert asyncio.run(reader.get_block("ethereum", 1000)) is None

    def test_latest_block_unknown_chain(self, reader):
        with pytest.raises(RemoteReadError):
            asyncio.run(reader.latest_block("base"))


class TestBlockForTimestamp:

    def test_exact_match(self, reader):
        block = asyncio.run(reader.block_for_timestamp("ethereum", 1000 + 12 * 40))
        assert block.number == 40

    def test_between_blocks_takes_earlier(self, reader):
        block = asyncio.run(reader.block_for_timestamp("ethereum", 1000 + 12 * 40 + 5))
        assert block.number == 40

    def test_future_timestamp_returns_latest(self, reader):
        block = asyncio.run(reader.block_for_timestamp("ethereum", 10**10))
        assert block.number == 100

    def test_before_first_block(self, reader):
        with pytest.raises(RemoteReadError):
            asyncio.run(reader.block_for_timestamp("ethereum", 999))
