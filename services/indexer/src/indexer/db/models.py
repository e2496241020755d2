from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    SmallInteger,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

# On-chain integers (uint256) are kept as decimal strings
UINT = String(80)
ADDRESS = String(42)

protocols = Table(
    "protocols",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("protocol_id", Integer, nullable=False),
    Column("chain", String(32), nullable=False),
    Column("name", String(64), nullable=False),
    UniqueConstraint("protocol_id", "chain", name="uq_protocol_chain"),
)

trove_managers = Table(
    "trove_managers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("protocol_pk", Integer, ForeignKey("protocols.id"), nullable=False),
    Column("trove_manager_index", Integer, nullable=False),
    UniqueConstraint("protocol_pk", "trove_manager_index", name="uq_trove_manager"),
)

core_immutables = Table(
    "core_immutables",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("protocol_pk", Integer, ForeignKey("protocols.id"), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("bold_token", ADDRESS, nullable=False),
    Column("collateral_registry", ADDRESS, nullable=False),
    Column("interest_router", ADDRESS, nullable=False),
    UniqueConstraint("protocol_pk", "block_number", name="uq_core_immutables_key"),
)

core_col_immutables = Table(
    "core_col_immutables",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trove_manager_pk", Integer, ForeignKey("trove_managers.id"), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("ccr", UINT, nullable=False),
    Column("scr", UINT, nullable=False),
    Column("mcr", UINT, nullable=False),
    Column("trove_manager", ADDRESS, nullable=False),
    Column("coll_token", ADDRESS, nullable=False),
    Column("coll_token_decimals", Integer, nullable=False),
    Column("active_pool", ADDRESS, nullable=False),
    Column("default_pool", ADDRESS, nullable=False),
    Column("stability_pool", ADDRESS, nullable=False),
    Column("borrower_operations", ADDRESS, nullable=False),
    Column("sorted_troves", ADDRESS, nullable=False),
    Column("trove_nft", ADDRESS, nullable=False),
    Column("price_feed", ADDRESS, nullable=True),
    Column("is_lst", Boolean, nullable=True),
    Column("rate_provider_address", ADDRESS, nullable=True),
    UniqueConstraint("trove_manager_pk", "block_number", name="uq_core_col_immutables_key"),
)

core_pool_data = Table(
    "core_pool_data",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("protocol_pk", Integer, ForeignKey("protocols.id"), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("base_rate", UINT, nullable=False),
    Column("redemption_rate", UINT, nullable=False),
    Column("total_collaterals", UINT, nullable=False),
    UniqueConstraint("protocol_pk", "block_number", name="uq_core_pool_data_key"),
)

col_pool_data = Table(
    "col_pool_data",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trove_manager_pk", Integer, ForeignKey("trove_managers.id"), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    # Trove manager
    Column("entire_system_coll", UINT, nullable=False),
    Column("entire_system_debt", UINT, nullable=False),
    Column("trove_ids_count", UINT, nullable=False),
    # Active pool
    Column("agg_weighted_recorded_debt_sum", UINT, nullable=False),
    Column("agg_recorded_debt", UINT, nullable=False),
    Column("pending_agg_interest", UINT, nullable=False),
    Column("pending_sp_yield", UINT, nullable=False),
    Column("last_agg_update_time", UINT, nullable=False),
    # Stability pool
    Column("sp_coll_balance", UINT, nullable=False),
    Column("sp_total_bold_deposits", UINT, nullable=False),
    Column("sp_yield_gains_owed", UINT, nullable=False),
    Column("sp_yield_gains_pending", UINT, nullable=False),
    UniqueConstraint("trove_manager_pk", "block_number", name="uq_col_pool_data_key"),
)

trove_data = Table(
    "trove_data",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trove_manager_pk", Integer, ForeignKey("trove_managers.id"), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("trove_id", UINT, nullable=False),
    Column("debt", UINT, nullable=False),
    Column("entire_debt", UINT, nullable=True),
    Column("coll", UINT, nullable=False),
    Column("stake", UINT, nullable=False),
    Column("status", SmallInteger, nullable=False),
    Column("array_index", UINT, nullable=False),
    Column("last_debt_update_time", UINT, nullable=False),
    Column("last_interest_rate_adj_time", UINT, nullable=False),
    Column("annual_interest_rate", UINT, nullable=False),
    Column("interest_batch_manager", ADDRESS, nullable=False),
    Column("batch_debt_shares", UINT, nullable=False),
    CheckConstraint("status >= 0 AND status <= 4", name="ck_trove_status"),
    UniqueConstraint("trove_manager_pk", "trove_id", "block_number", name="uq_trove_data_key"),
    Index("ix_trove_data_block", "trove_manager_pk", "block_number"),
)

trove_owners = Table(
    "trove_owners",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trove_manager_pk", Integer, ForeignKey("trove_managers.id"), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("trove_id", UINT, nullable=False),
    Column("owner_address", ADDRESS, nullable=False),
    UniqueConstraint("trove_manager_pk", "trove_id", "block_number", name="uq_trove_owner_key"),
)

event_data = Table(
    "event_data",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trove_manager_pk", Integer, ForeignKey("trove_managers.id"), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("tx_hash", String(66), nullable=False),
    Column("log_index", Integer, nullable=False),
    Column("event_name", String(128), nullable=False),
    # TroveOperation only (openTrove, adjustTrove, redeemCollateral, ...)
    Column("operation", SmallInteger, nullable=True),
    Column("event_data", JSON, nullable=False),
    UniqueConstraint("tx_hash", "event_name", "log_index", name="uq_event_key"),
    Index("ix_event_data_block", "trove_manager_pk", "block_number"),
)

prices_and_rates = Table(
    "prices_and_rates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trove_manager_pk", Integer, ForeignKey("trove_managers.id"), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("col_usd_price_feed", String(100), nullable=True),
    Column("col_usd_oracle", String(100), nullable=True),
    Column("lst_underlying_canonical_rate", String(100), nullable=True),
    Column("lst_underlying_market_rate", String(100), nullable=True),
    Column("underlying_usd_oracle", String(100), nullable=True),
    Column("deviation", String(100), nullable=True),
    Column("redemption_related_oracles", JSON, nullable=True),
    UniqueConstraint("trove_manager_pk", "block_number", name="uq_prices_and_rates_key"),
)

block_timestamps = Table(
    "block_timestamps",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("chain", String(32), nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("timestamp", BigInteger, nullable=True),
    Column("timestamp_missing", Boolean, nullable=False, default=False),
    UniqueConstraint("chain", "block_number", name="uq_block_timestamp_key"),
    Index("ix_block_timestamps_time", "chain", "timestamp"),
)

# Backfill watermark, one row per protocol/chain
recorded_blocks = Table(
    "recorded_blocks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("protocol_pk", Integer, ForeignKey("protocols.id"), nullable=False),
    Column("start_block", BigInteger, nullable=False),
    Column("end_block", BigInteger, nullable=False),
    UniqueConstraint("protocol_pk", name="uq_recorded_blocks_protocol"),
)

trove_manager_time_sample_points = Table(
    "trove_manager_time_sample_points",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trove_manager_pk", Integer, ForeignKey("trove_managers.id"), nullable=False),
    Column("chain", String(32), nullable=False),
    Column("hour", SmallInteger, nullable=False),
    Column("target_timestamp", BigInteger, nullable=False),
    Column("col_pool_data_block_number", BigInteger, nullable=True),
    Column("prices_and_rates_block_number", BigInteger, nullable=True),
    UniqueConstraint("trove_manager_pk", "target_timestamp", name="uq_tm_sample_point_key"),
)

protocol_time_sample_points = Table(
    "protocol_time_sample_points",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("protocol_pk", Integer, ForeignKey("protocols.id"), nullable=False),
    Column("chain", String(32), nullable=False),
    Column("hour", SmallInteger, nullable=False),
    Column("target_timestamp", BigInteger, nullable=False),
    Column("core_pool_data_block_number", BigInteger, nullable=True),
    UniqueConstraint("protocol_pk", "target_timestamp", name="uq_protocol_sample_point_key"),
)

trove_data_summaries = Table(
    "trove_data_summaries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("trove_manager_pk", Integer, ForeignKey("trove_managers.id"), nullable=False),
    # 'hour' or 'day'
    Column("granularity", String(8), nullable=False),
    Column("hour", SmallInteger, nullable=False),
    Column("target_timestamp", BigInteger, nullable=False),
    Column("avg_interest_rate", String(100), nullable=False),
    Column("avg_col_ratio", String(100), nullable=True),
    Column("status_counts", JSON, nullable=False),
    Column("total_troves", Integer, nullable=False),
    UniqueConstraint(
        "trove_manager_pk", "granularity", "target_timestamp",
        name="uq_trove_data_summary_key"
    ),
)

error_logs = Table(
    "error_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(64), nullable=False),
    Column("level", String(16), nullable=False),
    Column("host_name", String(255), nullable=True),
    Column("keyword", String(32), nullable=False),
    Column("table_name", String(64), nullable=True),
    Column("chain", String(32), nullable=True),
    Column("protocol_id", Integer, nullable=True),
    Column("function", String(128), nullable=True),
    Column("msg", Text, nullable=False),
    Column("pid", Integer, nullable=True),
    Column("time", DateTime(timezone=True), nullable=False),
    CheckConstraint(
        "keyword IN ('timeout', 'missingValues', 'critical', 'missingBlocks')",
        name="ck_error_log_keyword",
    ),
    Index("ix_error_logs_time", "time"),
)
