from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class TroveStatus(IntEnum):
    NONEXISTENT = 0
    ACTIVE = 1
    CLOSED_BY_OWNER = 2
    CLOSED_BY_LIQUIDATION = 3
    ZOMBIE = 4


@dataclass(frozen=True)
class Block:
    number: int
    timestamp: int


@dataclass(frozen=True)
class RawLog:
    """An undecoded eth_getLogs entry."""

    address: str
    topics: list[str]
    data: str
    block_number: int
    tx_hash: str
    log_index: int


@dataclass
class TroveData:
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


@dataclass
class TroveDataEntry:
    """All troves of one trove manager read at one block."""

    chain: str
    protocol_id: int
    trove_manager_index: int
    block_number: int
    troves: list[TroveData]


@dataclass
class TroveOwnerEntry:
    chain: str
    protocol_id: int
    trove_manager_index: int
    block_number: int
    owners: dict[str, str]


@dataclass
class EventDataEntry:
    chain: str
    protocol_id: int
    trove_manager_index: int
    block_number: int
    tx_hash: str
    log_index: int
    event_name: str
    data: dict[str, Any]
    operation: int | None = None


@dataclass
class CoreColImmutables:
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
    # None when the addresses registry could not be located
    price_feed: str | None = None
    is_lst: bool | None = None
    rate_provider_address: str | None = None


@dataclass
class CoreImmutablesEntry:
    chain: str
    protocol_id: int
    block_number: int
    bold_token: str
    collateral_registry: str
    interest_router: str
    col_immutables: list[CoreColImmutables] = field(default_factory=list)


@dataclass
class ColPoolData:
    trove_manager_index: int
    entire_system_coll: str
    entire_system_debt: str
    trove_ids_count: str
    agg_weighted_recorded_debt_sum: str
    agg_recorded_debt: str
    pending_agg_interest: str
    pending_sp_yield: str
    last_agg_update_time: str
    sp_coll_balance: str
    sp_total_bold_deposits: str
    sp_yield_gains_owed: str
    sp_yield_gains_pending: str


@dataclass
class CorePoolDataEntry:
    chain: str
    protocol_id: int
    block_number: int
    base_rate: str
    redemption_rate: str
    total_collaterals: str
    col_pool_data: list[ColPoolData] = field(default_factory=list)


@dataclass
class PricesAndRatesEntry:
    """Resolved prices for one trove manager.

    Every price is an 18-decimal string; a None field could not be resolved
    at ``block_number``.
    """

    chain: str
    protocol_id: int
    trove_manager_index: int
    block_number: int
    col_usd_price_feed: str | None = None
    col_usd_oracle: str | None = None
    lst_underlying_canonical_rate: str | None = None
    lst_underlying_market_rate: str | None = None
    underlying_usd_oracle: str | None = None
    deviation: str | None = None
    redemption_related_oracles: dict[str, str | None] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordedBlocks:
    start_block: int
    end_block: int


@dataclass
class TimeSamplePoint:
    trove_manager_index: int
    hour: int
    target_timestamp: int
    col_pool_data_block_number: int | None = None
    prices_and_rates_block_number: int | None = None


@dataclass
class TroveDataSummary:
    trove_manager_index: int
    granularity: str
    hour: int
    target_timestamp: int
    avg_interest_rate: str
    avg_col_ratio: str | None
    status_counts: dict[str, int]
    total_troves: int
