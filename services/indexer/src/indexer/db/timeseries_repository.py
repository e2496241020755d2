"""Block timestamps, time sample points and trove summaries."""

from typing import Sequence

from sqlalchemy import Table, and_, select
from sqlalchemy.engine import Engine

from services.indexer.src.indexer.db.base import BaseRepository, ConflictPolicy
from services.indexer.src.indexer.db.models import (
    block_timestamps,
    core_col_immutables,
    prices_and_rates,
    protocol_time_sample_points,
    trove_data,
    trove_data_summaries,
    trove_manager_time_sample_points,
    trove_managers,
)
from services.indexer.src.indexer.db.repository import ProtocolRepository
from services.indexer.src.indexer.domain.models import (
    TimeSamplePoint,
    TroveData,
    TroveDataSummary,
)


class TimeSeriesRepository(BaseRepository):
    def __init__(self, engine: Engine):
        super().__init__(engine)
        self.protocols = ProtocolRepository(engine)

    # Block timestamps

    def get_blocks_missing_timestamps(self, chain: str, limit: int | None = None) -> list[int]:
        stmt = (
            select(block_timestamps.c.block_number)
            .where(block_timestamps.c.chain == chain)
            .where(block_timestamps.c.timestamp.is_(None))
            .order_by(block_timestamps.c.block_number)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.engine.connect() as conn:
            return [int(r.block_number) for r in conn.execute(stmt)]

    def save_block_timestamps(self, chain: str, timestamps: dict[int, int | None]) -> int:
        with self.engine.begin() as conn:
            return self._save_block_timestamps(conn, chain, timestamps)

    def get_block_timestamps_between(self, chain: str, from_ts: int, to_ts: int) -> dict[int, int]:
        """block number -> timestamp for blocks with from_ts <= timestamp <= to_ts."""
        stmt = (
            select(block_timestamps.c.block_number, block_timestamps.c.timestamp)
            .where(block_timestamps.c.chain == chain)
            .where(block_timestamps.c.timestamp >= from_ts)
            .where(block_timestamps.c.timestamp <= to_ts)
        )
        with self.engine.connect() as conn:
            return {int(r.block_number): int(r.timestamp) for r in conn.execute(stmt)}

    # Sample point lookups

    def find_closest_block(
        self,
        table: Table,
        owner_column: str,
        owner_pk: int,
        chain: str,
        key_block: int,
        from_ts: int,
        to_ts: int,
        above: bool,
    ) -> int | None:
        """
        Closest stored block of ``table`` on one side of ``key_block``.

        Only blocks whose timestamp lies in [from_ts, to_ts) qualify. With
        ``above`` the search includes ``key_block`` itself.
        """
        block_col = table.c.block_number
        stmt = (
            select(block_col)
            .join(
                block_timestamps,
                and_(
                    block_timestamps.c.block_number == block_col,
                    block_timestamps.c.chain == chain,
                ),
            )
            .where(table.c[owner_column] == owner_pk)
            .where(block_timestamps.c.timestamp >= from_ts)
            .where(block_timestamps.c.timestamp < to_ts)
        )
        if above:
            stmt = stmt.where(block_col >= key_block).order_by(block_col.asc())
        else:
            stmt = stmt.where(block_col < key_block).order_by(block_col.desc())

        with self.engine.connect() as conn:
            value = conn.execute(stmt.limit(1)).scalar_one_or_none()
            return int(value) if value is not None else None

    def save_tm_sample_points(
        self, protocol_id: int, chain: str, points: Sequence[TimeSamplePoint]
    ) -> int:
        if not points:
            return 0
        with self.engine.begin() as conn:
            protocol_pk = self.protocols.ensure_protocol(conn, protocol_id, chain)
            tm_pks = self.protocols.ensure_trove_managers(
                conn, protocol_pk, {p.trove_manager_index for p in points}
            )
            rows = [
                {
                    "trove_manager_pk": tm_pks[p.trove_manager_index],
                    "chain": chain,
                    "hour": p.hour,
                    "target_timestamp": p.target_timestamp,
                    "col_pool_data_block_number": p.col_pool_data_block_number,
                    "prices_and_rates_block_number": p.prices_and_rates_block_number,
                }
                for p in points
            ]
            return self._insert(
                conn, trove_manager_time_sample_points, rows,
                constraint="uq_tm_sample_point_key",
                index_elements=["trove_manager_pk", "target_timestamp"],
                policy=ConflictPolicy.UPDATE,
            )

    def save_protocol_sample_point(
        self, protocol_id: int, chain: str, hour: int, target_timestamp: int,
        core_pool_data_block_number: int | None,
    ) -> int:
        with self.engine.begin() as conn:
            protocol_pk = self.protocols.ensure_protocol(conn, protocol_id, chain)
            return self._insert(
                conn, protocol_time_sample_points,
                [{
                    "protocol_pk": protocol_pk,
                    "chain": chain,
                    "hour": hour,
                    "target_timestamp": target_timestamp,
                    "core_pool_data_block_number": core_pool_data_block_number,
                }],
                constraint="uq_protocol_sample_point_key",
                index_elements=["protocol_pk", "target_timestamp"],
                policy=ConflictPolicy.UPDATE,
            )

    def get_tm_sample_points(
        self, trove_manager_pk: int, from_ts: int | None = None, to_ts: int | None = None
    ) -> list[TimeSamplePoint]:
        t = trove_manager_time_sample_points
        stmt = (
            select(t, trove_managers.c.trove_manager_index)
            .join(trove_managers, trove_managers.c.id == t.c.trove_manager_pk)
            .where(t.c.trove_manager_pk == trove_manager_pk)
            .order_by(t.c.target_timestamp)
        )
        if from_ts is not None:
            stmt = stmt.where(t.c.target_timestamp >= from_ts)
        if to_ts is not None:
            stmt = stmt.where(t.c.target_timestamp <= to_ts)
        with self.engine.connect() as conn:
            return [
                TimeSamplePoint(
                    trove_manager_index=r.trove_manager_index,
                    hour=r.hour,
                    target_timestamp=int(r.target_timestamp),
                    col_pool_data_block_number=r.col_pool_data_block_number,
                    prices_and_rates_block_number=r.prices_and_rates_block_number,
                )
                for r in conn.execute(stmt)
            ]

    # Summary inputs

    def get_trove_readings(
        self, trove_manager_pk: int, chain: str, from_ts: int, to_ts: int
    ) -> list[tuple[int, TroveData]]:
        """(block number, trove) for every trove row read at a block timestamped in [from_ts, to_ts]."""
        stmt = (
            select(trove_data)
            .join(
                block_timestamps,
                and_(
                    block_timestamps.c.block_number == trove_data.c.block_number,
                    block_timestamps.c.chain == chain,
                ),
            )
            .where(trove_data.c.trove_manager_pk == trove_manager_pk)
            .where(block_timestamps.c.timestamp >= from_ts)
            .where(block_timestamps.c.timestamp <= to_ts)
            .order_by(trove_data.c.block_number, trove_data.c.id)
        )
        with self.engine.connect() as conn:
            return [(int(r.block_number), _row_to_trove(r)) for r in conn.execute(stmt)]

    def get_price_at(self, trove_manager_pk: int, block_number: int) -> str | None:
        """Collateral price stored at a block, preferring the price feed over the oracle."""
        stmt = (
            select(prices_and_rates.c.col_usd_price_feed, prices_and_rates.c.col_usd_oracle)
            .where(prices_and_rates.c.trove_manager_pk == trove_manager_pk)
            .where(prices_and_rates.c.block_number == block_number)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
            if row is None:
                return None
            return row.col_usd_price_feed or row.col_usd_oracle

    def get_coll_token_decimals(self, trove_manager_pk: int) -> int | None:
        stmt = (
            select(core_col_immutables.c.coll_token_decimals)
            .where(core_col_immutables.c.trove_manager_pk == trove_manager_pk)
            .order_by(core_col_immutables.c.block_number.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()

    def save_summaries(
        self, protocol_id: int, chain: str, summaries: Sequence[TroveDataSummary]
    ) -> int:
        if not summaries:
            return 0
        with self.engine.begin() as conn:
            protocol_pk = self.protocols.ensure_protocol(conn, protocol_id, chain)
            tm_pks = self.protocols.ensure_trove_managers(
                conn, protocol_pk, {s.trove_manager_index for s in summaries}
            )
            rows = [
                {
                    "trove_manager_pk": tm_pks[s.trove_manager_index],
                    "granularity": s.granularity,
                    "hour": s.hour,
                    "target_timestamp": s.target_timestamp,
                    "avg_interest_rate": s.avg_interest_rate,
                    "avg_col_ratio": s.avg_col_ratio,
                    "status_counts": s.status_counts,
                    "total_troves": s.total_troves,
                }
                for s in summaries
            ]
            return self._insert(
                conn, trove_data_summaries, rows,
                constraint="uq_trove_data_summary_key",
                index_elements=["trove_manager_pk", "granularity", "target_timestamp"],
                policy=ConflictPolicy.UPDATE,
            )


def _row_to_trove(r) -> TroveData:
    return TroveData(
        trove_id=r.trove_id,
        debt=r.debt,
        entire_debt=r.entire_debt,
        coll=r.coll,
        stake=r.stake,
        status=int(r.status),
        array_index=r.array_index,
        last_debt_update_time=r.last_debt_update_time,
        last_interest_rate_adj_time=r.last_interest_rate_adj_time,
        annual_interest_rate=r.annual_interest_rate,
        interest_batch_manager=r.interest_batch_manager,
        batch_debt_shares=r.batch_debt_shares,
    )

