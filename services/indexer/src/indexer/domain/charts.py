"""Day-bucketed chart payloads."""

from typing import Any

from services.indexer.src.indexer.utils.timestamps import SECONDS_PER_DAY, format_date, start_of_day


def prune(values: dict[str, Any]) -> dict[str, Any]:
    """Drop null values, empty dicts and the redundant timestamp key."""
    return {
        k: v
        for k, v in values.items()
        if k != "timestamp" and v is not None and not (isinstance(v, dict) and not v)
    }


def day_range(timestamps: list[int]) -> list[int]:
    """Every 86400s step from the earliest to the latest timestamp."""
    if not timestamps:
        return []
    return list(range(min(timestamps), max(timestamps) + 1, SECONDS_PER_DAY))


def build_day_series(series: dict[str, dict[int, dict[str, Any]]]) -> list[dict[str, Any]]:
    """
    Merge several timestamp-keyed series into one entry per day.

    Args:
        series: field name (e.g. "poolData") -> {timestamp: values}

    Returns:
        One entry per day with ``date``, ``timestamp`` and one pruned dict per
        series; days missing from a series get an empty dict.
    """
    timestamps = sorted({ts for values in series.values() for ts in values})
    days = day_range(timestamps)
    # The last point may be an hourly sample standing in for its day
    if timestamps and timestamps[-1] not in days:
        last = timestamps[-1]
        days = [d for d in days if d < start_of_day(last)] + [last]

    entries = []
    for ts in days:
        entry: dict[str, Any] = {"date": format_date(ts), "timestamp": ts}
        for name, values in series.items():
            entry[name] = prune(values[ts]) if ts in values else {}
        entries.append(entry)
    return entries


def pool_data_chart(
    protocol_id: int,
    chain: str,
    trove_manager_index: int | None,
    pool_data: dict[int, dict[str, Any]],
    price_data: dict[int, dict[str, Any]] | None = None,
) -> dict[str, Any]:
    series = {"poolData": pool_data}
    if price_data is not None:
        series["priceData"] = price_data
    return {
        "protocolId": protocol_id,
        "chain": chain,
        "troveManagerIndex": trove_manager_index,
        "poolDataByDay": build_day_series(series),
    }


def prices_chart(
    protocol_id: int, chain: str, trove_manager_index: int, price_data: dict[int, dict[str, Any]]
) -> dict[str, Any]:
    return {
        "protocolId": protocol_id,
        "chain": chain,
        "troveManagerIndex": trove_manager_index,
        "pricesByDay": build_day_series({"priceData": price_data}),
    }


def trove_summary_chart(
    protocol_id: int, chain: str, trove_manager_index: int, summaries: dict[int, dict[str, Any]]
) -> dict[str, Any]:
    return {
        "protocolId": protocol_id,
        "chain": chain,
        "troveManagerIndex": trove_manager_index,
        "troveDataSummaryByDay": build_day_series({"troveData": summaries}),
    }
