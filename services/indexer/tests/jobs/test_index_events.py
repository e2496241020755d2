"""Tests for the event indexing job."""

import asyncio

import pytest

from services.indexer.src.indexer.config import get_max_blocks
from services.indexer.src.indexer.db.events_repository import EventsRepository
from services.indexer.src.indexer.domain.models import RecordedBlocks
from services.indexer.src.indexer.errors import ConfigurationError, RetryExhaustedError
from services.indexer.src.indexer.gateway.base import MockChainReader
from services.indexer.src.indexer.jobs.index_events import (
    backward_windows,
    get_blocks_for_running_adapter,
    run_events_historical,
    run_events_to_current_block,
)
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.src.indexer.utils.retry import RetryPolicy
from services.indexer.tests.factories import FakeAdapter, make_event

NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0)
WINDOW = get_max_blocks("ethereum")


@pytest.fixture
def repo(engine):
    return EventsRepository(engine)


@pytest.fixture
def reader():
    reader = MockChainReader()
    reader.set_latest_block("ethereum", 10 * WINDOW, 1740787200)
    return reader


def historical(adapter, repo, start, end, **kwargs):
    return asyncio.run(run_events_historical(
        adapter, repo, "ethereum", start, end, window_policy=NO_RETRY, **kwargs
    ))


class TestBackwardWindows:

    def test_newest_first(self):
        assert backward_windows(0, 9, 4) == [(6, 9), (2, 5), (0, 1)]

    def test_single_window(self):
        assert backward_windows(5, 5, 4) == [(5, 5)]

    def test_empty_range(self):
        assert backward_windows(6, 5, 4) == []


class TestGetBlocksForRunningAdapter:

    def blocks(self, reader, repo):
        return asyncio.run(get_blocks_for_running_adapter(FakeAdapter(), reader, repo, "ethereum", NO_RETRY))

    def test_first_run_covers_one_window(self, reader, repo):
        assert self.blocks(reader, repo) == (9 * WINDOW + 1, 10 * WINDOW)

    def test_continues_after_watermark(self, reader, repo):
        repo.widen_recorded_blocks(1, "ethereum", 0, 100)

        assert self.blocks(reader, repo) == (101, 100 + WINDOW)

    def test_capped_at_latest(self, reader, repo):
        repo.widen_recorded_blocks(1, "ethereum", 0, 10 * WINDOW - 5)

        assert self.blocks(reader, repo) == (10 * WINDOW - 4, 10 * WINDOW)

    def test_up_to_date(self, reader, repo):
        repo.widen_recorded_blocks(1, "ethereum", 0, 10 * WINDOW)

        assert self.blocks(reader, repo) is None


class TestRunEventsHistorical:

    def test_stores_events_and_watermark(self, repo):
        adapter = FakeAdapter(events=[
            make_event(tx_hash="0xa", block_number=10),
            make_event(tx_hash="0xb", block_number=WINDOW + 10),
        ])

        inserted = historical(adapter, repo, 0, 2 * WINDOW - 1)

        assert inserted == 2
        assert adapter.windows == [(WINDOW, 2 * WINDOW - 1), (0, WINDOW - 1)]
        assert repo.get_recorded_blocks(1, "ethereum") == RecordedBlocks(0, 2 * WINDOW - 1)

    def test_rerun_inserts_nothing(self, repo):
        adapter = FakeAdapter(events=[make_event(tx_hash="0xa", block_number=10)])
        historical(adapter, repo, 0, 100)

        assert historical(adapter, repo, 0, 100) == 0

    def test_invalid_range(self, repo):
        with pytest.raises(ConfigurationError):
            historical(FakeAdapter(), repo, 10, 5)
        with pytest.raises(ConfigurationError):
            historical(FakeAdapter(), repo, -1, 5)

    def test_failed_window_raises_without_best_effort(self, repo):
        adapter = FakeAdapter(failing_windows={0})

        with pytest.raises(RetryExhaustedError):
            historical(adapter, repo, 0, 2 * WINDOW - 1)
        assert repo.get_recorded_blocks(1, "ethereum") is None

    def test_best_effort_keeps_watermark_contiguous(self, repo):
        error_logger = ErrorLogger()
        adapter = FakeAdapter(
            events=[make_event(tx_hash="0xa", block_number=10), make_event(tx_hash="0xb", block_number=2 * WINDOW + 10)],
            failing_windows={WINDOW},
        )

        inserted = historical(adapter, repo, 0, 3 * WINDOW - 1, best_effort=True, error_logger=error_logger)

        assert inserted == 2
        assert repo.get_recorded_blocks(1, "ethereum") == RecordedBlocks(0, WINDOW - 1)
        assert error_logger.count(LogKeyword.MISSING_BLOCKS) == 1

    def test_best_effort_lowest_window_failed(self, repo):
        adapter = FakeAdapter(failing_windows={0})

        historical(adapter, repo, 0, 2 * WINDOW - 1, best_effort=True)

        assert repo.get_recorded_blocks(1, "ethereum") is None

    def test_disjoint_range_leaves_watermark(self, reader, repo):
        error_logger = ErrorLogger()
        repo.widen_recorded_blocks(1, "ethereum", 0, 100)
        adapter = FakeAdapter(events=[make_event(tx_hash="0xa", block_number=550)])

        inserted = historical(adapter, repo, 500, 600, error_logger=error_logger)

        assert inserted == 1
        assert repo.get_recorded_blocks(1, "ethereum") == RecordedBlocks(0, 100)
        assert error_logger.count(LogKeyword.MISSING_BLOCKS) == 1
        assert asyncio.run(
            get_blocks_for_running_adapter(adapter, reader, repo, "ethereum", NO_RETRY)
        ) == (101, 100 + WINDOW)

    def test_overlapping_range_extends_watermark(self, repo):
        repo.widen_recorded_blocks(1, "ethereum", 0, 100)

        historical(FakeAdapter(), repo, 50, 300)

        assert repo.get_recorded_blocks(1, "ethereum") == RecordedBlocks(0, 300)

    def test_adjacent_range_extends_watermark(self, repo):
        repo.widen_recorded_blocks(1, "ethereum", 100, 200)

        historical(FakeAdapter(), repo, 50, 99)

        assert repo.get_recorded_blocks(1, "ethereum") == RecordedBlocks(50, 200)


class TestRunEventsToCurrentBlock:

    def test_failed_chain_reports_minus_one(self, reader, repo):
        error_logger = ErrorLogger()
        adapter = FakeAdapter(
            chains=["ethereum", "hyperliquid"],
            events=[make_event(tx_hash="0xa", block_number=10 * WINDOW)],
        )

        results = asyncio.run(run_events_to_current_block(
            adapter, reader, repo,
            error_logger=error_logger, window_policy=NO_RETRY, latest_policy=NO_RETRY, stagger=0,
        ))

        assert results == {"ethereum": 1, "hyperliquid": -1}
        assert error_logger.count(LogKeyword.MISSING_BLOCKS) == 1

    def test_up_to_date_chain(self, reader, repo):
        repo.widen_recorded_blocks(1, "ethereum", 0, 10 * WINDOW)

        results = asyncio.run(run_events_to_current_block(
            FakeAdapter(), reader, repo, window_policy=NO_RETRY, latest_policy=NO_RETRY, stagger=0,
        ))

        assert results == {"ethereum": 0}
