"""Repository for block-tagged protocol snapshots."""

from sqlalchemy.engine import Engine

from services.indexer.src.indexer.db.base import BaseRepository, ConflictPolicy
from services.indexer.src.indexer.db.models import (
    col_pool_data,
    core_col_immutables,
    core_immutables,
    core_pool_data,
    trove_data,
    trove_owners,
)
from services.indexer.src.indexer.db.repository import ProtocolRepository
from services.indexer.src.indexer.domain.models import (
    Block,
    CoreImmutablesEntry,
    CorePoolDataEntry,
    TroveDataEntry,
    TroveOwnerEntry,
)


class SnapshotRepository(BaseRepository):
    """Writes one snapshot batch per call, inside a single transaction.

    Each batch also records the timestamp of the block it was read at.
    """

    def __init__(self, engine: Engine):
        super().__init__(engine)
        self.protocols = ProtocolRepository(engine)

    def save_troves(
        self,
        entries: list[TroveDataEntry],
        block: Block,
        owners: list[TroveOwnerEntry] | None = None,
        name: str | None = None,
        policy: ConflictPolicy = ConflictPolicy.IGNORE,
    ) -> int:
        """
        Persist trove snapshots (and optionally trove owners) for one chain.

        Args:
            entries: One entry per trove manager, all read at ``block``
            block: The block the entries were read at
            owners: Trove owners read at the same block
            name: Protocol name used when the protocol row does not exist yet
            policy: Conflict policy for rows already stored at this block

        Returns:
            Number of trove rows written
        """
        if not entries:
            return 0

        chain, protocol_id = entries[0].chain, entries[0].protocol_id
        with self.engine.begin() as conn:
            protocol_pk = self.protocols.ensure_protocol(conn, protocol_id, chain, name)
            tm_pks = self.protocols.ensure_trove_managers(
                conn, protocol_pk, {e.trove_manager_index for e in entries}
            )

            rows = []
            for entry in entries:
                for t in entry.troves:
                    rows.append({
                        "trove_manager_pk": tm_pks[entry.trove_manager_index],
                        "block_number": entry.block_number,
                        "trove_id": t.trove_id,
                        "debt": t.debt,
                        "entire_debt": t.entire_debt,
                        "coll": t.coll,
                        "stake": t.stake,
                        "status": int(t.status),
                        "array_index": t.array_index,
                        "last_debt_update_time": t.last_debt_update_time,
                        "last_interest_rate_adj_time": t.last_interest_rate_adj_time,
                        "annual_interest_rate": t.annual_interest_rate,
                        "interest_batch_manager": t.interest_batch_manager,
                        "batch_debt_shares": t.batch_debt_shares,
                    })
            written = self._insert(
                conn, trove_data, rows,
                constraint="uq_trove_data_key",
                index_elements=["trove_manager_pk", "trove_id", "block_number"],
                policy=policy,
            )

            if owners:
                owner_tm_pks = self.protocols.ensure_trove_managers(
                    conn, protocol_pk, {o.trove_manager_index for o in owners}
                )
                owner_rows = [
                    {
                        "trove_manager_pk": owner_tm_pks[o.trove_manager_index],
                        "block_number": o.block_number,
                        "trove_id": trove_id,
                        "owner_address": owner,
                    }
                    for o in owners
                    for trove_id, owner in o.owners.items()
                ]
                self._insert(
                    conn, trove_owners, owner_rows,
                    constraint="uq_trove_owner_key",
                    index_elements=["trove_manager_pk", "trove_id", "block_number"],
                    policy=policy,
                )

            self._save_block_timestamps(conn, chain, {block.number: block.timestamp})
        return written

    def save_immutables(
        self,
        entry: CoreImmutablesEntry,
        block: Block,
        name: str | None = None,
        policy: ConflictPolicy = ConflictPolicy.UPDATE,
    ) -> int:
        with self.engine.begin() as conn:
            protocol_pk = self.protocols.ensure_protocol(conn, entry.protocol_id, entry.chain, name)
            self._insert(
                conn, core_immutables,
                [{
                    "protocol_pk": protocol_pk,
                    "block_number": entry.block_number,
                    "bold_token": entry.bold_token,
                    "collateral_registry": entry.collateral_registry,
                    "interest_router": entry.interest_router,
                }],
                constraint="uq_core_immutables_key",
                index_elements=["protocol_pk", "block_number"],
                policy=policy,
            )

            tm_pks = self.protocols.ensure_trove_managers(
                conn, protocol_pk, {c.trove_manager_index for c in entry.col_immutables}
            )
            rows = [
                {
                    "trove_manager_pk": tm_pks[c.trove_manager_index],
                    "block_number": entry.block_number,
                    "ccr": c.ccr,
                    "scr": c.scr,
                    "mcr": c.mcr,
                    "trove_manager": c.trove_manager,
                    "coll_token": c.coll_token,
                    "coll_token_decimals": c.coll_token_decimals,
                    "active_pool": c.active_pool,
                    "default_pool": c.default_pool,
                    "stability_pool": c.stability_pool,
                    "borrower_operations": c.borrower_operations,
                    "sorted_troves": c.sorted_troves,
                    "trove_nft": c.trove_nft,
                    "price_feed": c.price_feed,
                    "is_lst": c.is_lst,
                    "rate_provider_address": c.rate_provider_address,
                }
                for c in entry.col_immutables
            ]
            written = self._insert(
                conn, core_col_immutables, rows,
                constraint="uq_core_col_immutables_key",
                index_elements=["trove_manager_pk", "block_number"],
                policy=policy,
            )
            self._save_block_timestamps(conn, entry.chain, {block.number: block.timestamp})
        return written

    def save_pool_data(
        self,
        entry: CorePoolDataEntry,
        block: Block,
        name: str | None = None,
        policy: ConflictPolicy = ConflictPolicy.UPDATE,
    ) -> int:
        with self.engine.begin() as conn:
            protocol_pk = self.protocols.ensure_protocol(conn, entry.protocol_id, entry.chain, name)
            self._insert(
                conn, core_pool_data,
                [{
                    "protocol_pk": protocol_pk,
                    "block_number": entry.block_number,
                    "base_rate": entry.base_rate,
                    "redemption_rate": entry.redemption_rate,
                    "total_collaterals": entry.total_collaterals,
                }],
                constraint="uq_core_pool_data_key",
                index_elements=["protocol_pk", "block_number"],
                policy=policy,
            )

            tm_pks = self.protocols.ensure_trove_managers(
                conn, protocol_pk, {c.trove_manager_index for c in entry.col_pool_data}
            )
            rows = [
                {
                    "trove_manager_pk": tm_pks[c.trove_manager_index],
                    "block_number": entry.block_number,
                    "entire_system_coll": c.entire_system_coll,
                    "entire_system_debt": c.entire_system_debt,
                    "trove_ids_count": c.trove_ids_count,
                    "agg_weighted_recorded_debt_sum": c.agg_weighted_recorded_debt_sum,
                    "agg_recorded_debt": c.agg_recorded_debt,
                    "pending_agg_interest": c.pending_agg_interest,
                    "pending_sp_yield": c.pending_sp_yield,
                    "last_agg_update_time": c.last_agg_update_time,
                    "sp_coll_balance": c.sp_coll_balance,
                    "sp_total_bold_deposits": c.sp_total_bold_deposits,
                    "sp_yield_gains_owed": c.sp_yield_gains_owed,
                    "sp_yield_gains_pending": c.sp_yield_gains_pending,
                }
                for c in entry.col_pool_data
            ]
            written = self._insert(
                conn, col_pool_data, rows,
                constraint="uq_col_pool_data_key",
                index_elements=["trove_manager_pk", "block_number"],
                policy=policy,
            )
            self._save_block_timestamps(conn, entry.chain, {block.number: block.timestamp})
        return written
