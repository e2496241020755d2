"""Tests for the trove data summary job."""

import pytest

from services.indexer.src.indexer.db.prices_repository import PricesRepository
from services.indexer.src.indexer.db.snapshot_repository import SnapshotRepository
from services.indexer.src.indexer.db.timeseries_repository import TimeSeriesRepository
from services.indexer.src.indexer.domain.aggregation import DAILY, HOURLY
from services.indexer.src.indexer.domain.models import TimeSamplePoint
from services.indexer.src.indexer.errors import IndexerError
from services.indexer.src.indexer.jobs.summarize_troves import (
    fill_trove_data_summaries,
    fill_trove_data_summary,
)
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.tests.factories import make_block, make_immutables, make_prices, make_trove_entry

DAY = 1740787200  # 2025-03-01 00:00 UTC


@pytest.fixture
def repo(engine):
    snapshots = SnapshotRepository(engine)
    snapshots.save_immutables(make_immutables(100), make_block(100, DAY - 7200))
    snapshots.save_troves([make_trove_entry(510)], make_block(510, DAY + 120))
    PricesRepository(engine).save_prices([make_prices(505)], make_block(505, DAY + 60))
    return TimeSeriesRepository(engine)


@pytest.fixture
def error_logger():
    return ErrorLogger(name="test")


def add_sample_point(repo, target=DAY, price_block=505):
    repo.save_tm_sample_points(1, "ethereum", [TimeSamplePoint(0, 0, target, 510, price_block)])


class TestFillTroveDataSummary:

    def test_hourly_summary(self, repo, error_logger):
        add_sample_point(repo)

        summary = fill_trove_data_summary(repo, 1, "ethereum", 0, DAY + 1800, hourly=True, error_logger=error_logger)

        assert summary.granularity == HOURLY
        assert (summary.hour, summary.target_timestamp) == (0, DAY)
        assert summary.status_counts == {"1": 1}
        assert summary.total_troves == 1
        # 2 coll at 2000 against 1000 debt
        assert summary.avg_col_ratio == "400.000"
        assert error_logger.count() == 0

    def test_daily_summary_uses_day_start(self, repo, error_logger):
        add_sample_point(repo)

        summary = fill_trove_data_summary(repo, 1, "ethereum", 0, DAY + 50000, error_logger=error_logger)

        assert summary.granularity == DAILY
        assert summary.target_timestamp == DAY

    def test_no_sample_point(self, repo, error_logger):
        result = fill_trove_data_summary(repo, 1, "ethereum", 0, DAY, error_logger=error_logger)

        assert result is None
        assert error_logger.count(LogKeyword.MISSING_VALUES) == 1

    def test_stale_sample_point_still_summarized(self, repo, error_logger):
        add_sample_point(repo, target=DAY - 7200)

        summary = fill_trove_data_summary(repo, 1, "ethereum", 0, DAY, hourly=True, error_logger=error_logger)

        assert summary.avg_col_ratio == "400.000"
        assert error_logger.count(LogKeyword.MISSING_VALUES) == 1

    def test_missing_price_leaves_ratio_null(self, repo, error_logger):
        add_sample_point(repo, price_block=999)

        summary = fill_trove_data_summary(repo, 1, "ethereum", 0, DAY, error_logger=error_logger)

        assert summary.avg_col_ratio is None
        assert summary.total_troves == 1
        assert error_logger.count(LogKeyword.MISSING_VALUES) == 1

    def test_no_trove_data_near_target(self, repo, error_logger):
        add_sample_point(repo, target=DAY + 10 * 86400)

        result = fill_trove_data_summary(repo, 1, "ethereum", 0, DAY + 10 * 86400, error_logger=error_logger)

        assert result is None

    def test_unknown_trove_manager(self, repo):
        with pytest.raises(IndexerError):
            fill_trove_data_summary(repo, 1, "ethereum", 5, DAY)

    def test_unknown_protocol(self, repo):
        with pytest.raises(IndexerError):
            fill_trove_data_summary(repo, 9, "ethereum", 0, DAY)


class TestFillTroveDataSummaries:

    def test_first_hour_adds_daily(self, repo):
        add_sample_point(repo)

        assert fill_trove_data_summaries(repo, now=DAY + 1800) == {"1:ethereum": 2}

    def test_later_hours_are_hourly_only(self, repo):
        add_sample_point(repo)

        assert fill_trove_data_summaries(repo, now=DAY + 3600 + 1800) == {"1:ethereum": 1}

    def test_missing_inputs_are_not_failures(self, repo, error_logger):
        assert fill_trove_data_summaries(repo, now=DAY + 3600, error_logger=error_logger) == {"1:ethereum": 0}
        assert error_logger.count(LogKeyword.MISSING_VALUES) == 1
