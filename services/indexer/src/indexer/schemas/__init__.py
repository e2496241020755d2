from services.indexer.src.indexer.schemas.responses import (
    ColImmutablesResponse,
    EventResponse,
    EventsResponse,
    ImmutablesResponse,
    OverviewResponse,
    PeriodMetricsResponse,
    ProtocolResponse,
    TroveManagerOverview,
    TroveManagerTroves,
    TroveResponse,
    TrovesResponse,
)

__all__ = [
    "ColImmutablesResponse",
    "EventResponse",
    "EventsResponse",
    "ImmutablesResponse",
    "OverviewResponse",
    "PeriodMetricsResponse",
    "ProtocolResponse",
    "TroveManagerOverview",
    "TroveManagerTroves",
    "TroveResponse",
    "TrovesResponse",
]
