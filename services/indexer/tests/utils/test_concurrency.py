"""Tests for bounded gather and staggering."""

import asyncio

import pytest

from services.indexer.src.indexer.utils.concurrency import gather_with_concurrency, staggered


class TestGatherWithConcurrency:

    def test_preserves_order(self):
        async def value(i):
            await asyncio.sleep(0.001 * (5 - i))
            return i

        result = asyncio.run(gather_with_concurrency((value(i) for i in range(5)), limit=2))

        assert result == [0, 1, 2, 3, 4]

    def test_limits_in_flight(self):
        state = {"running": 0, "peak": 0}

        async def work():
            state["running"] += 1
            state["peak"] = max(state["peak"], state["running"])
            await asyncio.sleep(0.001)
            state["running"] -= 1

        asyncio.run(gather_with_concurrency([work() for _ in range(10)], limit=3))

        assert state["peak"] <= 3

    def test_return_exceptions(self):
        async def fail():
            raise RuntimeError("x")

        async def ok():
            return 1

        result = asyncio.run(gather_with_concurrency([ok(), fail()], return_exceptions=True))

        assert result[0] == 1
        assert isinstance(result[1], RuntimeError)

    def test_raises_without_return_exceptions(self):
        async def fail():
            raise RuntimeError("x")

        with pytest.raises(RuntimeError):
            asyncio.run(gather_with_concurrency([fail()]))


class TestStaggered:

    def test_first_item_starts_immediately(self):
        async def value():
            return "v"

        assert asyncio.run(staggered(0, value(), step=10)) == "v"

    def test_zero_step(self):
        async def value():
            return "v"

        assert asyncio.run(staggered(3, value(), step=0)) == "v"
