import pytest
from fastapi.testclient import TestClient

from services.indexer.src.indexer.db.prices_repository import PricesRepository
from services.indexer.src.indexer.db.snapshot_repository import SnapshotRepository
from services.indexer.src.indexer.db.timeseries_repository import TimeSeriesRepository
from services.indexer.src.indexer.domain.models import TimeSamplePoint
from services.indexer.src.indexer.main import app
from services.indexer.src.indexer.routes import charts, protocols
from services.indexer.tests.factories import (
    make_block,
    make_col_pool_data,
    make_immutables,
    make_pool_data,
    make_prices,
)

DAY = 1740873600  # 2025-03-02 00:00 UTC
PREV_DAY = DAY - 86400


@pytest.fixture
def client(engine):
    app.dependency_overrides[protocols.get_db_engine] = lambda: engine
    app.dependency_overrides[charts.get_db_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sampled(engine):
    """Two daily samples of trove manager 0: debt 500 then 1000, one unit of collateral at 2000."""
    snapshots = SnapshotRepository(engine)
    prices = PricesRepository(engine)
    snapshots.save_immutables(make_immutables(5), make_block(5, PREV_DAY - 600))
    snapshots.save_pool_data(
        make_pool_data(10, [make_col_pool_data(0, debt=500)]), make_block(10, PREV_DAY + 120)
    )
    prices.save_prices([make_prices(8)], make_block(8, PREV_DAY + 60))
    snapshots.save_pool_data(make_pool_data(510), make_block(510, DAY + 120))
    prices.save_prices([make_prices(505)], make_block(505, DAY + 60))

    TimeSeriesRepository(engine).save_tm_sample_points(1, "ethereum", [
        TimeSamplePoint(0, 0, PREV_DAY, 10, 8),
        TimeSamplePoint(0, 0, DAY, 510, 505),
    ])
    return engine
