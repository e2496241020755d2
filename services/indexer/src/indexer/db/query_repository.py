"""Read-side queries backing the API and the chart payloads."""

from typing import Any

from sqlalchemy import Table, and_, func, select

from services.indexer.src.indexer.db.base import BaseRepository
from services.indexer.src.indexer.db.models import (
    block_timestamps,
    col_pool_data,
    core_col_immutables,
    core_immutables,
    core_pool_data,
    event_data,
    prices_and_rates,
    protocols,
    recorded_blocks,
    trove_data,
    trove_data_summaries,
    trove_manager_time_sample_points,
    trove_managers,
)
from services.indexer.src.indexer.db.timeseries_repository import _row_to_trove
from services.indexer.src.indexer.domain.aggregation import DAILY, HOURLY
from services.indexer.src.indexer.domain.models import (
    ColPoolData,
    CoreColImmutables,
    CoreImmutablesEntry,
    CorePoolDataEntry,
    EventDataEntry,
    TroveDataEntry,
)
from services.indexer.src.indexer.utils.timestamps import SECONDS_PER_DAY

POOL_DATA_FIELDS = [
    "entire_system_coll",
    "entire_system_debt",
    "trove_ids_count",
    "agg_weighted_recorded_debt_sum",
    "agg_recorded_debt",
    "pending_agg_interest",
    "pending_sp_yield",
    "last_agg_update_time",
    "sp_coll_balance",
    "sp_total_bold_deposits",
    "sp_yield_gains_owed",
    "sp_yield_gains_pending",
]

PRICE_FIELDS = [
    "col_usd_price_feed",
    "col_usd_oracle",
    "lst_underlying_canonical_rate",
    "lst_underlying_market_rate",
    "underlying_usd_oracle",
    "deviation",
    "redemption_related_oracles",
]

SUMMARY_FIELDS = ["avg_interest_rate", "avg_col_ratio", "status_counts", "total_troves"]


def swap_in_latest_hourly(
    daily: dict[int, dict[str, Any]], latest: tuple[int, dict[str, Any]] | None
) -> dict[int, dict[str, Any]]:
    """Swap the last daily point for a fresher hourly one, if there is one."""
    if latest is None:
        return daily
    latest_ts, values = latest
    if daily and latest_ts <= max(daily):
        return daily
    result = dict(daily)
    if result:
        del result[max(result)]
    result[latest_ts] = values
    return result


class QueryRepository(BaseRepository):
    def _tm_filter(self, protocol_id: int, chain: str, trove_manager_index: int | None):
        conditions = [protocols.c.protocol_id == protocol_id, protocols.c.chain == chain]
        if trove_manager_index is not None:
            conditions.append(trove_managers.c.trove_manager_index == trove_manager_index)
        return and_(*conditions)

    def _trove_manager_rows(self, protocol_id: int, chain: str, trove_manager_index: int | None = None):
        stmt = (
            select(trove_managers.c.id, trove_managers.c.trove_manager_index)
            .join(protocols, protocols.c.id == trove_managers.c.protocol_pk)
            .where(self._tm_filter(protocol_id, chain, trove_manager_index))
            .order_by(trove_managers.c.trove_manager_index)
        )
        with self.engine.connect() as conn:
            return [(r.id, r.trove_manager_index) for r in conn.execute(stmt)]

    def _latest_for_protocol(self, table: Table, protocol_id: int, chain: str):
        stmt = (
            select(table)
            .join(protocols, protocols.c.id == table.c.protocol_pk)
            .where(protocols.c.protocol_id == protocol_id)
            .where(protocols.c.chain == chain)
            .order_by(table.c.block_number.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).fetchone()

    def _latest_for_trove_manager(self, table: Table, trove_manager_pk: int):
        stmt = (
            select(table)
            .where(table.c.trove_manager_pk == trove_manager_pk)
            .order_by(table.c.block_number.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).fetchone()

    def get_latest_immutables(
        self, protocol_id: int, chain: str, trove_manager_index: int | None = None
    ) -> CoreImmutablesEntry | None:
        """Latest core immutables plus the latest collateral immutables of each trove manager."""
        core = self._latest_for_protocol(core_immutables, protocol_id, chain)
        if core is None:
            return None

        entry = CoreImmutablesEntry(
            chain=chain,
            protocol_id=protocol_id,
            block_number=int(core.block_number),
            bold_token=core.bold_token,
            collateral_registry=core.collateral_registry,
            interest_router=core.interest_router,
        )
        for tm_pk, tm_index in self._trove_manager_rows(protocol_id, chain, trove_manager_index):
            row = self._latest_for_trove_manager(core_col_immutables, tm_pk)
            if row is None:
                continue
            entry.col_immutables.append(
                CoreColImmutables(
                    trove_manager_index=tm_index,
                    ccr=row.ccr,
                    scr=row.scr,
                    mcr=row.mcr,
                    trove_manager=row.trove_manager,
                    coll_token=row.coll_token,
                    coll_token_decimals=row.coll_token_decimals,
                    active_pool=row.active_pool,
                    default_pool=row.default_pool,
                    stability_pool=row.stability_pool,
                    borrower_operations=row.borrower_operations,
                    sorted_troves=row.sorted_troves,
                    trove_nft=row.trove_nft,
                    price_feed=row.price_feed,
                    is_lst=row.is_lst,
                    rate_provider_address=row.rate_provider_address,
                )
            )
        return entry

    def get_latest_pool_data(
        self, protocol_id: int, chain: str, trove_manager_index: int | None = None
    ) -> CorePoolDataEntry | None:
        core = self._latest_for_protocol(core_pool_data, protocol_id, chain)
        if core is None:
            return None

        entry = CorePoolDataEntry(
            chain=chain,
            protocol_id=protocol_id,
            block_number=int(core.block_number),
            base_rate=core.base_rate,
            redemption_rate=core.redemption_rate,
            total_collaterals=core.total_collaterals,
        )
        for tm_pk, tm_index in self._trove_manager_rows(protocol_id, chain, trove_manager_index):
            row = self._latest_for_trove_manager(col_pool_data, tm_pk)
            if row is not None:
                entry.col_pool_data.append(
                    ColPoolData(trove_manager_index=tm_index, **{f: getattr(row, f) for f in POOL_DATA_FIELDS})
                )
        return entry

    def get_latest_troves(
        self, protocol_id: int, chain: str, trove_manager_index: int | None = None
    ) -> list[TroveDataEntry]:
        """The most recent reading of every trove, grouped by trove manager.

        ``block_number`` of each entry is the highest block among its troves.
        """
        entries = []
        for tm_pk, tm_index in self._trove_manager_rows(protocol_id, chain, trove_manager_index):
            latest = (
                select(trove_data.c.trove_id, func.max(trove_data.c.block_number).label("max_block"))
                .where(trove_data.c.trove_manager_pk == tm_pk)
                .group_by(trove_data.c.trove_id)
                .subquery()
            )
            stmt = (
                select(trove_data)
                .join(
                    latest,
                    and_(
                        latest.c.trove_id == trove_data.c.trove_id,
                        latest.c.max_block == trove_data.c.block_number,
                    ),
                )
                .where(trove_data.c.trove_manager_pk == tm_pk)
                .order_by(trove_data.c.trove_id)
            )
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
            if not rows:
                continue
            entries.append(
                TroveDataEntry(
                    chain=chain,
                    protocol_id=protocol_id,
                    trove_manager_index=tm_index,
                    block_number=max(int(r.block_number) for r in rows),
                    troves=[_row_to_trove(r) for r in rows],
                )
            )
        return entries

    def get_events(
        self,
        protocol_id: int,
        chain: str,
        event_name: str | None = None,
        trove_manager_index: int | None = None,
        limit: int | None = None,
    ) -> list[EventDataEntry]:
        """Stored events, newest block first."""
        stmt = (
            select(event_data, trove_managers.c.trove_manager_index)
            .join(trove_managers, trove_managers.c.id == event_data.c.trove_manager_pk)
            .join(protocols, protocols.c.id == trove_managers.c.protocol_pk)
            .where(self._tm_filter(protocol_id, chain, trove_manager_index))
            .order_by(event_data.c.block_number.desc(), event_data.c.log_index.desc())
        )
        if event_name is not None:
            stmt = stmt.where(event_data.c.event_name == event_name)
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.engine.connect() as conn:
            return [
                EventDataEntry(
                    chain=chain,
                    protocol_id=protocol_id,
                    trove_manager_index=r.trove_manager_index,
                    block_number=int(r.block_number),
                    tx_hash=r.tx_hash,
                    log_index=r.log_index,
                    event_name=r.event_name,
                    data=r.event_data,
                    operation=r.operation,
                )
                for r in conn.execute(stmt)
            ]

    def get_operations_since(
        self, protocol_id: int, chain: str, trove_manager_index: int, since: int
    ) -> list[dict[str, Any]]:
        """TroveOperation events with their block timestamps, at or after ``since``."""
        stmt = (
            select(event_data.c.operation, event_data.c.event_data, block_timestamps.c.timestamp)
            .join(trove_managers, trove_managers.c.id == event_data.c.trove_manager_pk)
            .join(protocols, protocols.c.id == trove_managers.c.protocol_pk)
            .join(
                block_timestamps,
                and_(
                    block_timestamps.c.block_number == event_data.c.block_number,
                    block_timestamps.c.chain == protocols.c.chain,
                ),
            )
            .where(self._tm_filter(protocol_id, chain, trove_manager_index))
            .where(event_data.c.event_name == "TroveOperation")
            .where(block_timestamps.c.timestamp >= since)
        )
        with self.engine.connect() as conn:
            return [
                {"operation": r.operation, "data": r.event_data, "timestamp": int(r.timestamp)}
                for r in conn.execute(stmt)
            ]

    def get_recorded_blocks_by_protocol(self, protocol_id: int) -> list[dict[str, Any]]:
        stmt = (
            select(protocols.c.protocol_id, protocols.c.chain, recorded_blocks.c.start_block, recorded_blocks.c.end_block)
            .join(protocols, protocols.c.id == recorded_blocks.c.protocol_pk)
            .where(protocols.c.protocol_id == protocol_id)
            .order_by(protocols.c.chain)
        )
        with self.engine.connect() as conn:
            return [dict(r._mapping) for r in conn.execute(stmt)]

    # Daily series

    def _sampled_values(
        self,
        trove_manager_pk: int,
        table: Table,
        block_column: str,
        fields: list[str],
        start: int | None,
        end: int | None,
    ) -> list[tuple[int, dict[str, Any]]]:
        sp = trove_manager_time_sample_points
        stmt = (
            select(sp.c.target_timestamp, *[table.c[f] for f in fields])
            .join(
                table,
                and_(
                    table.c.trove_manager_pk == sp.c.trove_manager_pk,
                    table.c.block_number == sp.c[block_column],
                ),
            )
            .where(sp.c.trove_manager_pk == trove_manager_pk)
            .order_by(sp.c.target_timestamp)
        )
        if start is not None:
            stmt = stmt.where(sp.c.target_timestamp >= start)
        if end is not None:
            stmt = stmt.where(sp.c.target_timestamp <= end)
        with self.engine.connect() as conn:
            return [
                (int(r.target_timestamp), {f: getattr(r, f) for f in fields})
                for r in conn.execute(stmt)
            ]

    def _daily_series(
        self,
        protocol_id: int,
        chain: str,
        trove_manager_index: int | None,
        table: Table,
        block_column: str,
        fields: list[str],
        start: int | None,
        end: int | None,
        replace_last: bool,
    ) -> dict[int, dict[int, dict[str, Any]]]:
        result = {}
        for tm_pk, tm_index in self._trove_manager_rows(protocol_id, chain, trove_manager_index):
            points = self._sampled_values(tm_pk, table, block_column, fields, start, end)
            daily = {ts: values for ts, values in points if ts % SECONDS_PER_DAY == 0}
            if replace_last:
                daily = swap_in_latest_hourly(daily, points[-1] if points else None)
            result[tm_index] = daily
        return result

    def get_daily_pool_data(
        self,
        protocol_id: int,
        chain: str,
        trove_manager_index: int | None = None,
        start: int | None = None,
        end: int | None = None,
        replace_last_with_hourly: bool = False,
    ) -> dict[int, dict[int, dict[str, Any]]]:
        """trove manager index -> {day timestamp: pool data} from the sample points."""
        return self._daily_series(
            protocol_id, chain, trove_manager_index, col_pool_data,
            "col_pool_data_block_number", POOL_DATA_FIELDS, start, end, replace_last_with_hourly,
        )

    def get_daily_prices(
        self,
        protocol_id: int,
        chain: str,
        trove_manager_index: int | None = None,
        start: int | None = None,
        end: int | None = None,
        replace_last_with_hourly: bool = False,
    ) -> dict[int, dict[int, dict[str, Any]]]:
        return self._daily_series(
            protocol_id, chain, trove_manager_index, prices_and_rates,
            "prices_and_rates_block_number", PRICE_FIELDS, start, end, replace_last_with_hourly,
        )

    def get_sampled_points(
        self,
        protocol_id: int,
        chain: str,
        start: int | None = None,
        end: int | None = None,
    ) -> dict[int, tuple[list[tuple[int, dict[str, Any]]], list[tuple[int, dict[str, Any]]]]]:
        """trove manager index -> (pool data points, price points), hourly and daily alike."""
        return {
            tm_index: (
                self._sampled_values(
                    tm_pk, col_pool_data, "col_pool_data_block_number", POOL_DATA_FIELDS, start, end
                ),
                self._sampled_values(
                    tm_pk, prices_and_rates, "prices_and_rates_block_number", PRICE_FIELDS, start, end
                ),
            )
            for tm_pk, tm_index in self._trove_manager_rows(protocol_id, chain)
        }

    def get_daily_summaries(
        self,
        protocol_id: int,
        chain: str,
        trove_manager_index: int,
        start: int | None = None,
        end: int | None = None,
        replace_last_with_hourly: bool = False,
    ) -> dict[int, dict[str, Any]]:
        rows = self._trove_manager_rows(protocol_id, chain, trove_manager_index)
        if not rows:
            return {}
        tm_pk = rows[0][0]

        s = trove_data_summaries
        stmt = (
            select(s.c.granularity, s.c.target_timestamp, *[s.c[f] for f in SUMMARY_FIELDS])
            .where(s.c.trove_manager_pk == tm_pk)
            .order_by(s.c.target_timestamp)
        )
        if start is not None:
            stmt = stmt.where(s.c.target_timestamp >= start)
        if end is not None:
            stmt = stmt.where(s.c.target_timestamp <= end)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()

        daily = {
            int(r.target_timestamp): {f: getattr(r, f) for f in SUMMARY_FIELDS}
            for r in rows
            if r.granularity == DAILY
        }
        if replace_last_with_hourly:
            hourly = [r for r in rows if r.granularity == HOURLY]
            latest = (
                (int(hourly[-1].target_timestamp), {f: getattr(hourly[-1], f) for f in SUMMARY_FIELDS})
                if hourly
                else None
            )
            daily = swap_in_latest_hourly(daily, latest)
        return daily


