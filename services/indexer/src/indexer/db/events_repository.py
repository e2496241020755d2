"""Repository for trove manager events and the backfill watermark."""

from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from services.indexer.src.indexer.db.base import BaseRepository, ConflictPolicy
from services.indexer.src.indexer.db.models import (
    event_data,
    protocols,
    recorded_blocks,
    trove_managers,
)
from services.indexer.src.indexer.db.repository import ProtocolRepository
from services.indexer.src.indexer.domain.models import EventDataEntry, RecordedBlocks


class EventsRepository(BaseRepository):
    """Repository for trove manager events database operations."""

    def __init__(self, engine: Engine):
        super().__init__(engine)
        self.protocols = ProtocolRepository(engine)

    def save_event_window(
        self,
        protocol_id: int,
        chain: str,
        events: Sequence[EventDataEntry],
        block_numbers: Sequence[int] = (),
        name: str | None = None,
    ) -> int:
        """
        Persist one event window atomically.

        Uses INSERT ... ON CONFLICT DO NOTHING on (tx_hash, event_name, log_index),
        so re-running a window never duplicates rows. Block numbers are stored
        as timestamp placeholders for the block timestamp backfill.

        Args:
            protocol_id: Protocol identifier
            chain: Chain name (e.g., 'ethereum')
            events: Decoded events of the window
            block_numbers: Blocks to register (the blocks of ``events`` are always added)
            name: Protocol name used when the protocol row does not exist yet

        Returns:
            Number of event rows inserted (may be less than len(events) if duplicates exist)
        """
        blocks = set(block_numbers) | {e.block_number for e in events}
        if not events and not blocks:
            return 0

        with self.engine.begin() as conn:
            protocol_pk = self.protocols.ensure_protocol(conn, protocol_id, chain, name)
            tm_pks = self.protocols.ensure_trove_managers(
                conn, protocol_pk, {e.trove_manager_index for e in events}
            )
            rows = [
                {
                    "trove_manager_pk": tm_pks[e.trove_manager_index],
                    "block_number": e.block_number,
                    "tx_hash": e.tx_hash,
                    "log_index": e.log_index,
                    "event_name": e.event_name,
                    "operation": e.operation,
                    "event_data": e.data,
                }
                for e in events
            ]
            inserted = self._insert(
                conn, event_data, rows,
                constraint="uq_event_key",
                index_elements=["tx_hash", "event_name", "log_index"],
                policy=ConflictPolicy.IGNORE,
            )
            self._save_block_timestamps(conn, chain, {b: None for b in blocks})
        return inserted

    def get_recorded_blocks(self, protocol_id: int, chain: str) -> RecordedBlocks | None:
        stmt = (
            select(recorded_blocks.c.start_block, recorded_blocks.c.end_block)
            .join(protocols, protocols.c.id == recorded_blocks.c.protocol_pk)
            .where(protocols.c.protocol_id == protocol_id)
            .where(protocols.c.chain == chain)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
            if row is None:
                return None
            return RecordedBlocks(start_block=int(row.start_block), end_block=int(row.end_block))

    def widen_recorded_blocks(
        self, protocol_id: int, chain: str, start_block: int, end_block: int,
        name: str | None = None,
    ) -> RecordedBlocks | None:
        """
        Merge [start_block, end_block] into the watermark.

        The stored range only ever grows: start = min(old, new), end = max(old, new).
        A range that neither overlaps nor touches the stored one would claim the
        blocks in between, so it is not merged.

        Returns:
            The stored range after the merge, or None when the range is disjoint
        """
        if start_block > end_block:
            raise ValueError(f"Invalid block range [{start_block}, {end_block}]")

        with self.engine.begin() as conn:
            protocol_pk = self.protocols.ensure_protocol(conn, protocol_id, chain, name)
            current = conn.execute(
                select(recorded_blocks.c.start_block, recorded_blocks.c.end_block)
                .where(recorded_blocks.c.protocol_pk == protocol_pk)
            ).fetchone()
            if current is not None and (
                start_block > current.end_block + 1 or end_block < current.start_block - 1
            ):
                return None

            row = {"protocol_pk": protocol_pk, "start_block": start_block, "end_block": end_block}

            if self._is_sqlite:
                stmt = sqlite_insert(recorded_blocks).values([row])
                stmt = stmt.on_conflict_do_update(
                    index_elements=["protocol_pk"],
                    set_={
                        "start_block": func.min(recorded_blocks.c.start_block, stmt.excluded.start_block),
                        "end_block": func.max(recorded_blocks.c.end_block, stmt.excluded.end_block),
                    },
                )
            else:
                stmt = pg_insert(recorded_blocks).values([row])
                stmt = stmt.on_conflict_do_update(
                    constraint="uq_recorded_blocks_protocol",
                    set_={
                        "start_block": func.least(recorded_blocks.c.start_block, stmt.excluded.start_block),
                        "end_block": func.greatest(recorded_blocks.c.end_block, stmt.excluded.end_block),
                    },
                )
            conn.execute(stmt)

            result = conn.execute(
                select(recorded_blocks.c.start_block, recorded_blocks.c.end_block)
                .where(recorded_blocks.c.protocol_pk == protocol_pk)
            ).one()
        return RecordedBlocks(start_block=int(result.start_block), end_block=int(result.end_block))

    def get_event_counts(self, protocol_id: int, chain: str) -> dict[str, int]:
        """
        Get count of events by name for a protocol/chain (useful for verification).

        Returns:
            Dict mapping event_name to count
        """
        stmt = (
            select(event_data.c.event_name, func.count().label("count"))
            .join(trove_managers, trove_managers.c.id == event_data.c.trove_manager_pk)
            .join(protocols, protocols.c.id == trove_managers.c.protocol_pk)
            .where(protocols.c.protocol_id == protocol_id)
            .where(protocols.c.chain == chain)
            .group_by(event_data.c.event_name)
        )
        with self.engine.connect() as conn:
            return {row.event_name: row.count for row in conn.execute(stmt)}
