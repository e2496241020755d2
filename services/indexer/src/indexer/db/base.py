"""Shared insert helpers for the repositories."""

from enum import Enum
from typing import Sequence

from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine

from services.indexer.src.indexer.db.models import block_timestamps

# Keeps a single statement under SQLite's bound-parameter limit
INSERT_CHUNK_SIZE = 500


class ConflictPolicy(str, Enum):
    """What to do when a row with the same natural key already exists."""

    IGNORE = "ignore"
    UPDATE = "update"
    # Plain INSERT; a duplicate key raises IntegrityError
    ERROR = "error"


class BaseRepository:
    def __init__(self, engine: Engine):
        self.engine = engine
        self._is_sqlite = "sqlite" in str(engine.url)

    def _insert(
        self,
        conn: Connection,
        table: Table,
        rows: Sequence[dict],
        constraint: str,
        index_elements: list[str],
        policy: ConflictPolicy = ConflictPolicy.IGNORE,
    ) -> int:
        """INSERT ... ON CONFLICT for both PostgreSQL and SQLite.

        With ``UPDATE`` every non-key column is overwritten from the new row.
        Returns the number of rows written.
        """
        total = 0
        for i in range(0, len(rows), INSERT_CHUNK_SIZE):
            total += self._insert_chunk(
                conn, table, rows[i:i + INSERT_CHUNK_SIZE], constraint, index_elements, policy
            )
        return total

    def _insert_chunk(
        self,
        conn: Connection,
        table: Table,
        rows: Sequence[dict],
        constraint: str,
        index_elements: list[str],
        policy: ConflictPolicy,
    ) -> int:
        if policy == ConflictPolicy.ERROR:
            return conn.execute(table.insert(), list(rows)).rowcount

        if self._is_sqlite:
            stmt = sqlite_insert(table).values(list(rows))
            target = {"index_elements": index_elements}
        else:
            stmt = pg_insert(table).values(list(rows))
            target = {"constraint": constraint}

        update_columns = [c for c in rows[0].keys() if c not in index_elements and c != "id"]
        if policy == ConflictPolicy.UPDATE and update_columns:
            stmt = stmt.on_conflict_do_update(
                **target,
                set_={c: stmt.excluded[c] for c in update_columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(**target)

        result = conn.execute(stmt)
        return result.rowcount

    def _save_block_timestamps(
        self, conn: Connection, chain: str, timestamps: dict[int, int | None]
    ) -> int:
        """Record block numbers, with ``None`` marking a timestamp still to be fetched.

        A known timestamp overwrites a placeholder; a placeholder never
        overwrites a known timestamp.
        """
        known = [
            {"chain": chain, "block_number": b, "timestamp": ts, "timestamp_missing": False}
            for b, ts in sorted(timestamps.items())
            if ts is not None
        ]
        placeholders = [
            {"chain": chain, "block_number": b, "timestamp": None, "timestamp_missing": True}
            for b, ts in sorted(timestamps.items())
            if ts is None
        ]
        written = self._insert(
            conn, block_timestamps, known,
            constraint="uq_block_timestamp_key",
            index_elements=["chain", "block_number"],
            policy=ConflictPolicy.UPDATE,
        )
        written += self._insert(
            conn, block_timestamps, placeholders,
            constraint="uq_block_timestamp_key",
            index_elements=["chain", "block_number"],
            policy=ConflictPolicy.IGNORE,
        )
        return written
