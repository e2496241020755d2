from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.engine import Engine

from services.indexer.src.indexer.db.engine import get_engine
from services.indexer.src.indexer.db.query_repository import QueryRepository
from services.indexer.src.indexer.db.repository import ProtocolRepository
from services.indexer.src.indexer.domain.metrics import (
    PoolPoint,
    PricePoint,
    chain_totals,
    trove_manager_metrics,
)
from services.indexer.src.indexer.schemas.responses import (
    EventResponse,
    EventsResponse,
    ImmutablesResponse,
    OverviewResponse,
    ProtocolResponse,
    TroveManagerOverview,
    TroveManagerTroves,
    TrovesResponse,
)
from services.indexer.src.indexer.utils.timestamps import SECONDS_PER_DAY

router = APIRouter(prefix="/protocols", tags=["protocols"])

POOL_POINT_FIELDS = [
    "entire_system_debt",
    "entire_system_coll",
    "sp_total_bold_deposits",
    "sp_yield_gains_owed",
    "sp_yield_gains_pending",
    "sp_coll_balance",
]


def get_db_engine() -> Engine:
    return get_engine()


def to_pool_points(points: list[tuple[int, dict[str, Any]]]) -> list[PoolPoint]:
    return [PoolPoint(timestamp=ts, **{f: values.get(f) for f in POOL_POINT_FIELDS}) for ts, values in points]


def to_price_points(points: list[tuple[int, dict[str, Any]]]) -> list[PricePoint]:
    return [
        PricePoint(
            timestamp=ts,
            col_usd_price_feed=values.get("col_usd_price_feed"),
            col_usd_oracle=values.get("col_usd_oracle"),
        )
        for ts, values in points
    ]


@router.get("", response_model=list[ProtocolResponse])
def list_protocols(engine: Engine = Depends(get_db_engine)) -> list[ProtocolResponse]:
    """All protocol deployments with the block range their events cover."""
    query = QueryRepository(engine)
    result = []
    for protocol in ProtocolRepository(engine).list_protocols():
        recorded = {
            r["chain"]: r for r in query.get_recorded_blocks_by_protocol(protocol["protocol_id"])
        }.get(protocol["chain"], {})
        result.append(
            ProtocolResponse(
                protocol_id=protocol["protocol_id"],
                chain=protocol["chain"],
                name=protocol["name"],
                start_block=recorded.get("start_block"),
                end_block=recorded.get("end_block"),
            )
        )
    return result


@router.get("/{protocol_id}/{chain}/immutables", response_model=ImmutablesResponse)
def get_immutables(
    protocol_id: int,
    chain: str,
    trove_manager_index: int | None = Query(default=None, ge=0),
    engine: Engine = Depends(get_db_engine),
) -> ImmutablesResponse:
    entry = QueryRepository(engine).get_latest_immutables(protocol_id, chain, trove_manager_index)
    if entry is None:
        raise HTTPException(status_code=404, detail="No immutables found for this protocol/chain")
    return ImmutablesResponse.model_validate(entry)


@router.get("/{protocol_id}/{chain}/troves", response_model=TrovesResponse)
def get_troves(
    protocol_id: int,
    chain: str,
    trove_manager_index: int | None = Query(default=None, ge=0),
    engine: Engine = Depends(get_db_engine),
) -> TrovesResponse:
    """Latest reading of every trove, per trove manager."""
    entries = QueryRepository(engine).get_latest_troves(protocol_id, chain, trove_manager_index)
    return TrovesResponse(
        protocol_id=protocol_id,
        chain=chain,
        trove_managers=[TroveManagerTroves.model_validate(e) for e in entries],
    )


@router.get("/{protocol_id}/{chain}/events", response_model=EventsResponse)
def get_events(
    protocol_id: int,
    chain: str,
    event_name: str | None = Query(default=None),
    trove_manager_index: int | None = Query(default=None, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    engine: Engine = Depends(get_db_engine),
) -> EventsResponse:
    """
    Stored trove manager events, newest first.

    Optionally filter by event name (TroveOperation, TroveUpdated,
    BatchUpdated, ...) and trove manager index.
    """
    events = QueryRepository(engine).get_events(
        protocol_id, chain, event_name=event_name, trove_manager_index=trove_manager_index, limit=limit
    )
    return EventsResponse(
        protocol_id=protocol_id,
        chain=chain,
        count=len(events),
        events=[EventResponse.model_validate(e) for e in events],
    )


@router.get("/{protocol_id}/{chain}/overview", response_model=OverviewResponse)
def get_overview(
    protocol_id: int,
    chain: str,
    engine: Engine = Depends(get_db_engine),
) -> OverviewResponse:
    """
    Current metrics per trove manager with 1-day and 7-day comparisons.

    A previous-period value is null when no sample lies within one hour of
    the comparison time.
    """
    query = QueryRepository(engine)
    immutables = query.get_latest_immutables(protocol_id, chain)
    decimals = {c.trove_manager_index: c.coll_token_decimals for c in immutables.col_immutables} if immutables else {}

    metrics = []
    for tm_index, (pool_points, price_points) in query.get_sampled_points(protocol_id, chain).items():
        pools = to_pool_points(pool_points)
        events = []
        if pools:
            since = max(p.timestamp for p in pools) - 7 * SECONDS_PER_DAY
            events = query.get_operations_since(protocol_id, chain, tm_index, since)
        metrics.append(
            trove_manager_metrics(
                tm_index, pools, to_price_points(price_points),
                coll_token_decimals=decimals.get(tm_index, 18),
                events=events,
            )
        )

    return OverviewResponse(
        protocol_id=protocol_id,
        chain=chain,
        trove_managers=[TroveManagerOverview.model_validate(m) for m in metrics],
        totals=chain_totals(metrics),
    )
