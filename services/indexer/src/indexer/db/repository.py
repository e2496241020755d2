from sqlalchemy import delete, select
from sqlalchemy.engine import Connection

from services.indexer.src.indexer.db.base import BaseRepository, ConflictPolicy
from services.indexer.src.indexer.db.models import (
    col_pool_data,
    core_col_immutables,
    core_immutables,
    core_pool_data,
    event_data,
    prices_and_rates,
    protocol_time_sample_points,
    protocols,
    recorded_blocks,
    trove_data,
    trove_data_summaries,
    trove_manager_time_sample_points,
    trove_managers,
    trove_owners,
)

# Children first so foreign keys hold at every step
TROVE_MANAGER_TABLES = (
    core_col_immutables,
    col_pool_data,
    trove_data,
    trove_owners,
    event_data,
    prices_and_rates,
    trove_manager_time_sample_points,
    trove_data_summaries,
)
PROTOCOL_TABLES = (core_immutables, core_pool_data, recorded_blocks, protocol_time_sample_points)


class ProtocolRepository(BaseRepository):
    """Identity rows for protocols (per chain) and their trove managers.

    The ``ensure_*`` methods take an open connection so they can share the
    transaction of the batch that needs the keys.
    """

    def ensure_protocol(
        self, conn: Connection, protocol_id: int, chain: str, name: str | None = None
    ) -> int:
        self._insert(
            conn,
            protocols,
            [{"protocol_id": protocol_id, "chain": chain, "name": name or str(protocol_id)}],
            constraint="uq_protocol_chain",
            index_elements=["protocol_id", "chain"],
            policy=ConflictPolicy.IGNORE,
        )
        stmt = (
            select(protocols.c.id)
            .where(protocols.c.protocol_id == protocol_id)
            .where(protocols.c.chain == chain)
        )
        return conn.execute(stmt).scalar_one()

    def ensure_trove_manager(self, conn: Connection, protocol_pk: int, index: int) -> int:
        self._insert(
            conn,
            trove_managers,
            [{"protocol_pk": protocol_pk, "trove_manager_index": index}],
            constraint="uq_trove_manager",
            index_elements=["protocol_pk", "trove_manager_index"],
            policy=ConflictPolicy.IGNORE,
        )
        stmt = (
            select(trove_managers.c.id)
            .where(trove_managers.c.protocol_pk == protocol_pk)
            .where(trove_managers.c.trove_manager_index == index)
        )
        return conn.execute(stmt).scalar_one()

    def ensure_trove_managers(
        self, conn: Connection, protocol_pk: int, indexes: set[int]
    ) -> dict[int, int]:
        return {i: self.ensure_trove_manager(conn, protocol_pk, i) for i in sorted(indexes)}

    def get_protocol_pk(self, protocol_id: int, chain: str) -> int | None:
        stmt = (
            select(protocols.c.id)
            .where(protocols.c.protocol_id == protocol_id)
            .where(protocols.c.chain == chain)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()

    def get_trove_manager_pks(self, protocol_id: int, chain: str) -> dict[int, int]:
        """trove manager index -> primary key for a protocol/chain."""
        stmt = (
            select(trove_managers.c.trove_manager_index, trove_managers.c.id)
            .join(protocols, protocols.c.id == trove_managers.c.protocol_pk)
            .where(protocols.c.protocol_id == protocol_id)
            .where(protocols.c.chain == chain)
            .order_by(trove_managers.c.trove_manager_index)
        )
        with self.engine.connect() as conn:
            return {row.trove_manager_index: row.id for row in conn.execute(stmt)}

    def list_protocols(self) -> list[dict]:
        stmt = select(protocols).order_by(protocols.c.protocol_id, protocols.c.chain)
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    def delete_protocol(self, protocol_id: int, chain: str) -> dict[str, int] | None:
        """
        Delete a protocol on one chain together with every row that references it.

        Block timestamps are shared by all protocols of a chain and are kept.

        Returns:
            Dict mapping table name to rows deleted, or None if the protocol is unknown
        """
        with self.engine.begin() as conn:
            protocol_pk = conn.execute(
                select(protocols.c.id)
                .where(protocols.c.protocol_id == protocol_id)
                .where(protocols.c.chain == chain)
            ).scalar_one_or_none()
            if protocol_pk is None:
                return None

            tm_pks = select(trove_managers.c.id).where(trove_managers.c.protocol_pk == protocol_pk)
            deleted = {}
            for table in TROVE_MANAGER_TABLES:
                result = conn.execute(delete(table).where(table.c.trove_manager_pk.in_(tm_pks)))
                deleted[table.name] = result.rowcount
            for table in PROTOCOL_TABLES:
                result = conn.execute(delete(table).where(table.c.protocol_pk == protocol_pk))
                deleted[table.name] = result.rowcount
            deleted["trove_managers"] = conn.execute(
                delete(trove_managers).where(trove_managers.c.protocol_pk == protocol_pk)
            ).rowcount
            deleted["protocols"] = conn.execute(
                delete(protocols).where(protocols.c.id == protocol_pk)
            ).rowcount
        return deleted
