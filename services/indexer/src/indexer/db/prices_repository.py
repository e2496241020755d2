from typing import Sequence

from sqlalchemy import select
from sqlalchemy.engine import Engine

from services.indexer.src.indexer.db.base import BaseRepository, ConflictPolicy
from services.indexer.src.indexer.db.models import prices_and_rates, protocols, trove_managers
from services.indexer.src.indexer.db.repository import ProtocolRepository
from services.indexer.src.indexer.domain.models import Block, PricesAndRatesEntry


class PricesRepository(BaseRepository):
    def __init__(self, engine: Engine):
        super().__init__(engine)
        self.protocols = ProtocolRepository(engine)

    def save_prices(
        self,
        entries: Sequence[PricesAndRatesEntry],
        block: Block,
        name: str | None = None,
        policy: ConflictPolicy = ConflictPolicy.UPDATE,
    ) -> int:
        """Store all trove managers' prices of one chain in one transaction."""
        if not entries:
            return 0

        chain, protocol_id = entries[0].chain, entries[0].protocol_id
        with self.engine.begin() as conn:
            protocol_pk = self.protocols.ensure_protocol(conn, protocol_id, chain, name)
            tm_pks = self.protocols.ensure_trove_managers(
                conn, protocol_pk, {e.trove_manager_index for e in entries}
            )
            rows = [
                {
                    "trove_manager_pk": tm_pks[e.trove_manager_index],
                    "block_number": e.block_number,
                    "col_usd_price_feed": e.col_usd_price_feed,
                    "col_usd_oracle": e.col_usd_oracle,
                    "lst_underlying_canonical_rate": e.lst_underlying_canonical_rate,
                    "lst_underlying_market_rate": e.lst_underlying_market_rate,
                    "underlying_usd_oracle": e.underlying_usd_oracle,
                    "deviation": e.deviation,
                    "redemption_related_oracles": e.redemption_related_oracles or None,
                }
                for e in entries
            ]
            written = self._insert(
                conn, prices_and_rates, rows,
                constraint="uq_prices_and_rates_key",
                index_elements=["trove_manager_pk", "block_number"],
                policy=policy,
            )
            self._save_block_timestamps(conn, chain, {block.number: block.timestamp})
        return written

    def get_prices(
        self, protocol_id: int, chain: str, trove_manager_index: int, block_number: int
    ) -> PricesAndRatesEntry | None:
        stmt = (
            select(prices_and_rates)
            .join(trove_managers, trove_managers.c.id == prices_and_rates.c.trove_manager_pk)
            .join(protocols, protocols.c.id == trove_managers.c.protocol_pk)
            .where(protocols.c.protocol_id == protocol_id)
            .where(protocols.c.chain == chain)
            .where(trove_managers.c.trove_manager_index == trove_manager_index)
            .where(prices_and_rates.c.block_number == block_number)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
            if row is None:
                return None
            return PricesAndRatesEntry(
                chain=chain,
                protocol_id=protocol_id,
                trove_manager_index=trove_manager_index,
                block_number=int(row.block_number),
                col_usd_price_feed=row.col_usd_price_feed,
                col_usd_oracle=row.col_usd_oracle,
                lst_underlying_canonical_rate=row.lst_underlying_canonical_rate,
                lst_underlying_market_rate=row.lst_underlying_market_rate,
                underlying_usd_oracle=row.underlying_usd_oracle,
                deviation=row.deviation,
                redemption_related_oracles=row.redemption_related_oracles or {},
            )
