import logging
import os
import time
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from services.indexer.src.indexer.routes import api_router

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: BackgroundScheduler | None = None


def run_indexing() -> None:
    """Snapshots, events and prices for every configured protocol."""
    from services.indexer.src.indexer.adapters.liquity_v2 import get_default_config
    from services.indexer.src.indexer.jobs.index_events import index_protocol_events
    from services.indexer.src.indexer.jobs.run_prices import store_protocol_prices
    from services.indexer.src.indexer.jobs.sync_snapshots import sync_protocol_snapshots
    from services.indexer.src.indexer.utils.timestamps import hour_of_day

    config = get_default_config()
    # Immutables only change on redeployment; refresh them once a day
    update_immutables = hour_of_day(int(time.time())) == 0

    for protocol in config.protocols:
        logger.info(f"Starting snapshot sync for {protocol.name}...")
        try:
            results = sync_protocol_snapshots(protocol.protocol_id, update_immutables=update_immutables)
            for chain, kinds in results.items():
                logger.info(f"Snapshots {protocol.name} {chain}: {kinds}")
        except Exception as e:
            logger.error(f"Snapshot sync failed for {protocol.name}: {e}")

        logger.info(f"Starting event indexing for {protocol.name}...")
        try:
            results = index_protocol_events(protocol.protocol_id, best_effort=True)
            for chain, count in results.items():
                logger.info(f"Events {protocol.name} {chain}: {count}")
        except Exception as e:
            logger.error(f"Event indexing failed for {protocol.name}: {e}")

        logger.info(f"Starting price resolution for {protocol.name}...")
        try:
            results = store_protocol_prices(protocol.protocol_id)
            for chain, count in results.items():
                logger.info(f"Prices {protocol.name} {chain}: {count}")
        except Exception as e:
            logger.error(f"Price resolution failed for {protocol.name}: {e}")


def run_aggregation() -> None:
    """Block timestamps, sample points and trove summaries for the current hour."""
    import asyncio

    from services.indexer.src.indexer.db.engine import get_engine, init_db
    from services.indexer.src.indexer.db.timeseries_repository import TimeSeriesRepository
    from services.indexer.src.indexer.gateway.rpc import JsonRpcChainReader
    from services.indexer.src.indexer.jobs.fill_block_timestamps import fill_missing_block_timestamps
    from services.indexer.src.indexer.jobs.fill_time_sample_points import fill_time_sample_points
    from services.indexer.src.indexer.jobs.summarize_troves import fill_trove_data_summaries
    from services.indexer.src.indexer.utils.error_log import ErrorLogger
    from services.indexer.src.indexer.utils.timestamps import hour_of_day

    now = int(time.time())
    engine = get_engine()
    init_db(engine)
    repo = TimeSeriesRepository(engine)

    async def fill(error_logger: ErrorLogger) -> None:
        reader = JsonRpcChainReader()
        try:
            await fill_missing_block_timestamps(reader, repo, error_logger=error_logger)
            await fill_time_sample_points(now, reader, repo, hourly=True, error_logger=error_logger)
            if hour_of_day(now) == 0:
                await fill_time_sample_points(now, reader, repo, hourly=False, error_logger=error_logger)
        finally:
            await reader.close()

    with ErrorLogger(engine, name="aggregation") as error_logger:
        try:
            asyncio.run(fill(error_logger))
        except Exception as e:
            logger.error(f"Sample point fill failed: {e}")
        try:
            results = fill_trove_data_summaries(repo, now=now, error_logger=error_logger)
            logger.info(f"Trove summaries: {results}")
        except Exception as e:
            logger.error(f"Trove summaries failed: {e}")


def run_pipeline() -> None:
    run_indexing()
    run_aggregation()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and start the scheduler on startup."""
    global scheduler

    if os.getenv("INIT_DB", "true").lower() == "true":
        from services.indexer.src.indexer.db.engine import get_engine, init_db
        init_db(get_engine())

    # Indexing and aggregation run at the top of each hour
    if os.getenv("ENABLE_SCHEDULER", "true").lower() == "true":
        logger.info("Starting indexing scheduler (every hour at :00)")

        scheduler = BackgroundScheduler()
        scheduler.add_job(
            run_pipeline,
            "cron",
            minute=0,
            id="indexing",
            name="Trove Indexing (Snapshots + Events + Prices + Summaries)",
        )
        # The jobs call asyncio.run, so the startup run goes to a worker thread too
        if os.getenv("RUN_JOBS_ON_STARTUP", "false").lower() == "true":
            logger.info("Scheduling initial indexing...")
            scheduler.add_job(run_pipeline, id="initial_indexing", name="Initial Trove Indexing")
        scheduler.start()

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown complete")


app = FastAPI(title="Trove Indexer API", lifespan=lifespan)

cors_origins = [
    "http://localhost:3000",
    "https://localhost:3000",
]

# Add custom origin from environment (e.g., the dashboard domain)
if os.getenv("CORS_ORIGIN"):
    cors_origins.append(os.getenv("CORS_ORIGIN"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "trove-indexer-api", "docs": "/docs"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
