"""Tests for SnapshotRepository."""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from services.indexer.src.indexer.db.base import ConflictPolicy
from services.indexer.src.indexer.db.models import (
    block_timestamps,
    col_pool_data,
    core_col_immutables,
    trove_data,
    trove_owners,
)
from services.indexer.src.indexer.db.snapshot_repository import SnapshotRepository
from services.indexer.tests.factories import (
    make_block,
    make_col_immutables,
    make_col_pool_data,
    make_immutables,
    make_owner_entry,
    make_pool_data,
    make_trove,
    make_trove_entry,
)


@pytest.fixture
def repository(engine):
    return SnapshotRepository(engine)


def fetch_all(repository, stmt):
    with repository.engine.connect() as conn:
        return conn.execute(stmt).fetchall()


class TestSaveTroves:

    def test_writes_one_row_per_trove(self, repository):
        entry = make_trove_entry(troves=[make_trove("1"), make_trove("2", status=2)])

        written = repository.save_troves([entry], make_block(100))

        assert written == 2
        rows = fetch_all(repository, select(trove_data.c.trove_id, trove_data.c.status).order_by(trove_data.c.trove_id))
        assert [(r.trove_id, r.status) for r in rows] == [("1", 1), ("2", 2)]

    def test_empty_batch_writes_nothing(self, repository):
        assert repository.save_troves([], make_block(100)) == 0

    def test_same_block_is_ignored_by_default(self, repository):
        entry = make_trove_entry(troves=[make_trove("1")])
        repository.save_troves([entry], make_block(100))

        assert repository.save_troves([entry], make_block(100)) == 0

    def test_update_policy_overwrites(self, repository):
        repository.save_troves([make_trove_entry(troves=[make_trove("1", debt="5")])], make_block(100))

        repository.save_troves(
            [make_trove_entry(troves=[make_trove("1", debt="7")])],
            make_block(100),
            policy=ConflictPolicy.UPDATE,
        )

        rows = fetch_all(repository, select(trove_data.c.debt))
        assert [r.debt for r in rows] == ["7"]

    def test_error_policy_raises_and_rolls_back(self, repository):
        repository.save_troves([make_trove_entry(troves=[make_trove("1")])], make_block(100))

        with pytest.raises(IntegrityError):
            repository.save_troves(
                [make_trove_entry(troves=[make_trove("2"), make_trove("1")])],
                make_block(100),
                policy=ConflictPolicy.ERROR,
            )

        rows = fetch_all(repository, select(trove_data.c.trove_id))
        assert [r.trove_id for r in rows] == ["1"]

    def test_stores_owners_and_block_timestamp(self, repository):
        repository.save_troves(
            [make_trove_entry()],
            make_block(100, timestamp=1740787212),
            owners=[make_owner_entry(owners={"1": "0xabc"})],
        )

        owners = fetch_all(repository, select(trove_owners.c.trove_id, trove_owners.c.owner_address))
        assert [(r.trove_id, r.owner_address) for r in owners] == [("1", "0xabc")]
        blocks = fetch_all(repository, select(block_timestamps.c.block_number, block_timestamps.c.timestamp))
        assert [(r.block_number, r.timestamp) for r in blocks] == [(100, 1740787212)]

    def test_uses_given_protocol_name(self, repository):
        repository.save_troves([make_trove_entry()], make_block(100), name="liquity")

        assert repository.protocols.list_protocols()[0]["name"] == "liquity"


class TestSaveImmutables:

    def test_writes_col_immutables(self, repository):
        entry = make_immutables(col_immutables=[
            make_col_immutables(0),
            make_col_immutables(1, coll_token_decimals=8),
        ])

        assert repository.save_immutables(entry, make_block(100)) == 2

        rows = fetch_all(repository, select(core_col_immutables.c.coll_token_decimals).order_by(core_col_immutables.c.id))
        assert [r.coll_token_decimals for r in rows] == [18, 8]
        assert repository.protocols.get_trove_manager_pks(1, "ethereum").keys() == {0, 1}

    def test_keeps_missing_price_feed_as_null(self, repository):
        entry = make_immutables(col_immutables=[make_col_immutables(0, price_feed=None)])

        repository.save_immutables(entry, make_block(100))

        rows = fetch_all(repository, select(core_col_immutables.c.price_feed))
        assert rows[0].price_feed is None


class TestSavePoolData:

    def test_writes_per_trove_manager_rows(self, repository):
        entry = make_pool_data(col_pool_data=[
            make_col_pool_data(0, debt=1000),
            make_col_pool_data(1, debt=2000),
        ])

        assert repository.save_pool_data(entry, make_block(100)) == 2

        rows = fetch_all(repository, select(col_pool_data.c.entire_system_debt).order_by(col_pool_data.c.id))
        assert [r.entire_system_debt for r in rows] == [str(1000 * 10**18), str(2000 * 10**18)]

    def test_rereading_a_block_replaces_values(self, repository):
        repository.save_pool_data(make_pool_data(col_pool_data=[make_col_pool_data(0, debt=1)]), make_block(100))
        repository.save_pool_data(make_pool_data(col_pool_data=[make_col_pool_data(0, debt=2)]), make_block(100))

        rows = fetch_all(repository, select(col_pool_data.c.entire_system_debt))
        assert [r.entire_system_debt for r in rows] == [str(2 * 10**18)]
