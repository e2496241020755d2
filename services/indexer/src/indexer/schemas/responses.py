from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict


class ProtocolResponse(BaseModel):
    """A protocol deployment known to the database."""

    protocol_id: int
    chain: str
    name: str
    start_block: int | None = None
    end_block: int | None = None


class ColImmutablesResponse(BaseModel):
    """Immutable parameters of one trove manager."""

    model_config = ConfigDict(from_attributes=True)

    trove_manager_index: int
    ccr: str
    scr: str
    mcr: str
    trove_manager: str
    coll_token: str
    coll_token_decimals: int
    active_pool: str
    default_pool: str
    stability_pool: str
    borrower_operations: str
    sorted_troves: str
    trove_nft: str
    price_feed: str | None = None
    is_lst: bool | None = None
    rate_provider_address: str | None = None


class ImmutablesResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    protocol_id: int
    chain: str
    block_number: int
    bold_token: str
    collateral_registry: str
    interest_router: str
    col_immutables: list[ColImmutablesResponse]


class TroveResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trove_id: str
    debt: str
    coll: str
    stake: str
    status: int
    array_index: str
    last_debt_update_time: str
    last_interest_rate_adj_time: str
    annual_interest_rate: str
    interest_batch_manager: str
    batch_debt_shares: str
    entire_debt: str | None = None


class TroveManagerTroves(BaseModel):
    """Latest reading of every trove of one trove manager."""

    model_config = ConfigDict(from_attributes=True)

    trove_manager_index: int
    block_number: int
    troves: list[TroveResponse]


class TrovesResponse(BaseModel):
    protocol_id: int
    chain: str
    trove_managers: list[TroveManagerTroves]


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trove_manager_index: int
    block_number: int
    tx_hash: str
    log_index: int
    event_name: str
    operation: int | None = None
    data: dict[str, Any]


class EventsResponse(BaseModel):
    protocol_id: int
    chain: str
    count: int
    events: list[EventResponse]


class PeriodMetricsResponse(BaseModel):
    """Trove manager metrics at one point in time, in USD / BOLD units."""

    model_config = ConfigDict(from_attributes=True)

    debt_bold: Decimal | None = None
    col_usd: Decimal | None = None
    sp_bold: Decimal | None = None
    sp_col_usd: Decimal | None = None
    col_ratio: Decimal | None = None
    col_usd_oracle: Decimal | None = None


class TroveManagerOverview(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trove_manager_index: int
    current: PeriodMetricsResponse
    prev_day: PeriodMetricsResponse | None = None
    prev_7_day: PeriodMetricsResponse | None = None
    prev_7_day_redemption_total: Decimal
    changes: dict[str, Decimal | None]


class OverviewResponse(BaseModel):
    """Current and previous-period metrics of a protocol on one chain."""

    protocol_id: int
    chain: str
    trove_managers: list[TroveManagerOverview]
    totals: dict[str, Decimal | None]
