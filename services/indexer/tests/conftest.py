import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from services.indexer.src.indexer.db.engine import init_db


@pytest.fixture
def engine():
    # One shared connection so the in-memory database is visible from worker threads
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine
