from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.engine import Engine

from services.indexer.src.indexer.config import DEFAULT_START_TIMESTAMP
from services.indexer.src.indexer.db.engine import get_engine
from services.indexer.src.indexer.db.query_repository import QueryRepository
from services.indexer.src.indexer.domain.charts import (
    pool_data_chart,
    prices_chart,
    prune,
    trove_summary_chart,
)

router = APIRouter(prefix="/protocols", tags=["charts"])


def get_db_engine() -> Engine:
    return get_engine()


def by_trove_manager(series: dict[int, dict[int, dict[str, Any]]]) -> dict[int, dict[str, Any]]:
    """Regroup {tm index: {ts: values}} as {ts: {tm index: values}}."""
    merged: dict[int, dict[str, Any]] = {}
    for tm_index, points in sorted(series.items()):
        for ts, values in points.items():
            merged.setdefault(ts, {})[str(tm_index)] = prune(values)
    return merged


@router.get("/{protocol_id}/{chain}/charts/pool-data")
def get_pool_data_chart(
    protocol_id: int,
    chain: str,
    trove_manager_index: int | None = Query(default=None, ge=0),
    start_timestamp: int = Query(default=DEFAULT_START_TIMESTAMP, ge=0),
    end_timestamp: int | None = Query(default=None, ge=0),
    replace_last_with_hourly: bool = Query(default=False),
    engine: Engine = Depends(get_db_engine),
) -> dict[str, Any]:
    """
    Daily pool data, one entry per day.

    With a trove manager index the entries also carry that trove manager's
    prices; without one, pool data is keyed by trove manager index.
    """
    repo = QueryRepository(engine)
    pool_data = repo.get_daily_pool_data(
        protocol_id, chain, trove_manager_index, start_timestamp, end_timestamp, replace_last_with_hourly
    )
    if trove_manager_index is None:
        return pool_data_chart(protocol_id, chain, None, by_trove_manager(pool_data))

    prices = repo.get_daily_prices(
        protocol_id, chain, trove_manager_index, start_timestamp, end_timestamp, replace_last_with_hourly
    )
    return pool_data_chart(
        protocol_id,
        chain,
        trove_manager_index,
        pool_data.get(trove_manager_index, {}),
        prices.get(trove_manager_index, {}),
    )


@router.get("/{protocol_id}/{chain}/charts/prices/{trove_manager_index}")
def get_prices_chart(
    protocol_id: int,
    chain: str,
    trove_manager_index: int,
    start_timestamp: int = Query(default=DEFAULT_START_TIMESTAMP, ge=0),
    end_timestamp: int | None = Query(default=None, ge=0),
    replace_last_with_hourly: bool = Query(default=False),
    engine: Engine = Depends(get_db_engine),
) -> dict[str, Any]:
    prices = QueryRepository(engine).get_daily_prices(
        protocol_id, chain, trove_manager_index, start_timestamp, end_timestamp, replace_last_with_hourly
    )
    return prices_chart(protocol_id, chain, trove_manager_index, prices.get(trove_manager_index, {}))


@router.get("/{protocol_id}/{chain}/charts/summaries/{trove_manager_index}")
def get_summaries_chart(
    protocol_id: int,
    chain: str,
    trove_manager_index: int,
    start_timestamp: int = Query(default=DEFAULT_START_TIMESTAMP, ge=0),
    end_timestamp: int | None = Query(default=None, ge=0),
    replace_last_with_hourly: bool = Query(default=False),
    engine: Engine = Depends(get_db_engine),
) -> dict[str, Any]:
    """Daily trove summaries (status histogram, mean rate, mean collateral ratio)."""
    summaries = QueryRepository(engine).get_daily_summaries(
        protocol_id, chain, trove_manager_index, start_timestamp, end_timestamp, replace_last_with_hourly
    )
    return trove_summary_chart(protocol_id, chain, trove_manager_index, summaries)
