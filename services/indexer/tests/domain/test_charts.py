"""Tests for day-bucketed chart payloads."""

from services.indexer.src.indexer.domain.charts import (
    build_day_series,
    day_range,
    pool_data_chart,
    prices_chart,
    prune,
    trove_summary_chart,
)

DAY = 86400
# 2025-03-01 00:00 UTC
START = 1740787200


class TestPrune:

    def test_drops_nulls_empty_dicts_and_timestamp(self):
        values = {"a": "1", "b": None, "c": {}, "timestamp": 5, "d": {"x": 1}, "e": 0}

        assert prune(values) == {"a": "1", "d": {"x": 1}, "e": 0}


class TestDayRange:

    def test_empty(self):
        assert day_range([]) == []

    def test_fills_gaps(self):
        assert day_range([START, START + 3 * DAY]) == [START + i * DAY for i in range(4)]


class TestBuildDaySeries:

    def test_placeholder_for_missing_day(self):
        series = {"poolData": {START: {"x": "1"}, START + 2 * DAY: {"x": "3"}}}

        entries = build_day_series(series)

        assert [e["date"] for e in entries] == ["2025-03-01", "2025-03-02", "2025-03-03"]
        assert entries[1]["poolData"] == {}
        assert entries[2]["poolData"] == {"x": "3"}

    def test_series_missing_on_a_day_gets_empty_dict(self):
        series = {
            "poolData": {START: {"x": "1"}},
            "priceData": {START + DAY: {"p": "2"}},
        }

        entries = build_day_series(series)

        assert entries[0]["priceData"] == {}
        assert entries[1]["poolData"] == {}
        assert entries[1]["priceData"] == {"p": "2"}

    def test_hourly_last_point_is_appended(self):
        hourly = START + DAY + 5 * 3600
        series = {"poolData": {START: {"x": "1"}, hourly: {"x": "2"}}}

        entries = build_day_series(series)

        assert [e["timestamp"] for e in entries] == [START, hourly]

    def test_no_data(self):
        assert build_day_series({"poolData": {}}) == []


class TestPayloads:

    def test_pool_data_chart_tags(self):
        payload = pool_data_chart(1, "ethereum", 0, {START: {"x": "1"}}, {START: {"p": "2"}})

        assert payload["protocolId"] == 1
        assert payload["chain"] == "ethereum"
        assert payload["troveManagerIndex"] == 0
        assert payload["poolDataByDay"][0]["priceData"] == {"p": "2"}

    def test_pool_data_chart_without_prices(self):
        payload = pool_data_chart(1, "ethereum", None, {START: {"x": "1"}})

        assert "priceData" not in payload["poolDataByDay"][0]

    def test_prices_chart(self):
        payload = prices_chart(2, "hyperliquid", 3, {START: {"col_usd_oracle": "1", "deviation": None}})

        assert payload["pricesByDay"][0]["priceData"] == {"col_usd_oracle": "1"}

    def test_summary_chart(self):
        payload = trove_summary_chart(1, "ethereum", 0, {START: {"status_counts": {"1": 2}}})

        assert payload["troveDataSummaryByDay"][0]["troveData"] == {"status_counts": {"1": 2}}
