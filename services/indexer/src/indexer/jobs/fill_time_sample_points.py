"""
Time sample point job.

Links each trove manager (and each protocol) to the stored snapshot blocks
that best represent an hourly or daily target time.

Usage:
    python -m services.indexer.src.indexer.jobs.fill_time_sample_points
    python -m services.indexer.src.indexer.jobs.fill_time_sample_points --hourly --timestamp 1740758400
"""
import argparse
import asyncio
import logging
import sys
import time

from sqlalchemy import Table

from services.indexer.src.indexer.db.engine import get_engine, init_db
from services.indexer.src.indexer.db.models import col_pool_data, core_pool_data, prices_and_rates
from services.indexer.src.indexer.db.timeseries_repository import TimeSeriesRepository
from services.indexer.src.indexer.domain.models import TimeSamplePoint
from services.indexer.src.indexer.gateway.base import ChainReader
from services.indexer.src.indexer.gateway.rpc import JsonRpcChainReader
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.src.indexer.utils.retry import REMOTE_READ_POLICY, RetryPolicy
from services.indexer.src.indexer.utils.timestamps import (
    SECONDS_PER_DAY,
    SECONDS_PER_HOUR,
    hour_of_day,
    normalize_timestamp,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def closest_sampled_block(
    repo: TimeSeriesRepository,
    table: Table,
    owner_column: str,
    owner_pk: int,
    chain: str,
    key_block: int,
    start: int,
    period: int,
) -> int | None:
    """
    Stored block of ``table`` nearest to the key block.

    Prefers the first block at or after the key block timestamped inside
    [start, start + period); falls back to the last block up to the key block
    timestamped inside [start - period, start).
    """
    above = repo.find_closest_block(
        table, owner_column, owner_pk, chain, key_block, start, start + period, above=True
    )
    if above is not None:
        return above
    return repo.find_closest_block(
        table, owner_column, owner_pk, chain, key_block + 1, start - period, start, above=False
    )


async def fill_chain_sample_points(
    protocol_id: int,
    chain: str,
    target_timestamp: int,
    reader: ChainReader,
    repo: TimeSeriesRepository,
    hourly: bool = False,
    policy: RetryPolicy = REMOTE_READ_POLICY,
) -> int:
    """Sample points of one protocol/chain. Returns how many trove manager points were stored."""
    start = normalize_timestamp(target_timestamp, hourly)
    period = SECONDS_PER_HOUR if hourly else SECONDS_PER_DAY
    hour = hour_of_day(start)

    key_block = (await policy.run(reader.block_for_timestamp, chain, start)).number
    logger.info(f"Protocol {protocol_id} on {chain}: key block {key_block} for {start}")

    protocol_pk = repo.protocols.get_protocol_pk(protocol_id, chain)
    if protocol_pk is not None:
        core_block = closest_sampled_block(
            repo, core_pool_data, "protocol_pk", protocol_pk, chain, key_block, start, period
        )
        if core_block is not None:
            repo.save_protocol_sample_point(protocol_id, chain, hour, start, core_block)

    points = []
    for tm_index, tm_pk in repo.protocols.get_trove_manager_pks(protocol_id, chain).items():
        pool_block = closest_sampled_block(
            repo, col_pool_data, "trove_manager_pk", tm_pk, chain, key_block, start, period
        )
        price_block = closest_sampled_block(
            repo, prices_and_rates, "trove_manager_pk", tm_pk, chain, key_block, start, period
        )
        if pool_block is None and price_block is None:
            continue
        points.append(
            TimeSamplePoint(
                trove_manager_index=tm_index,
                hour=hour,
                target_timestamp=start,
                col_pool_data_block_number=pool_block,
                prices_and_rates_block_number=price_block,
            )
        )
    return repo.save_tm_sample_points(protocol_id, chain, points)


async def fill_time_sample_points(
    target_timestamp: int,
    reader: ChainReader,
    repo: TimeSeriesRepository,
    hourly: bool = False,
    error_logger: ErrorLogger | None = None,
    policy: RetryPolicy = REMOTE_READ_POLICY,
) -> dict[str, int]:
    """
    Sample points for every known protocol/chain.

    Returns:
        Dict mapping "<protocol_id>:<chain>" to points stored (-1 on failure)
    """
    error_logger = error_logger or ErrorLogger()
    results: dict[str, int] = {}
    for protocol in repo.protocols.list_protocols():
        protocol_id, chain = protocol["protocol_id"], protocol["chain"]
        key = f"{protocol_id}:{chain}"
        try:
            results[key] = await fill_chain_sample_points(
                protocol_id, chain, target_timestamp, reader, repo, hourly=hourly, policy=policy
            )
        except Exception as e:
            error_logger.error(
                f"Failed to fill sample points for {target_timestamp}: {e}",
                LogKeyword.MISSING_BLOCKS, chain=chain, protocol_id=protocol_id,
                function="fill_time_sample_points", table="trove_manager_time_sample_points",
            )
            results[key] = -1
    return results


def fill_sample_points_now(
    target_timestamp: int | None = None,
    hourly: bool = False,
    database_url: str | None = None,
) -> dict[str, int]:
    """Blocking entry point used by the CLI and the scheduler."""
    engine = get_engine(database_url)
    init_db(engine)
    target_timestamp = target_timestamp if target_timestamp is not None else int(time.time())

    async def run() -> dict[str, int]:
        reader = JsonRpcChainReader()
        with ErrorLogger(engine, name="fill_time_sample_points") as error_logger:
            try:
                return await fill_time_sample_points(
                    target_timestamp, reader, TimeSeriesRepository(engine),
                    hourly=hourly, error_logger=error_logger,
                )
            finally:
                await reader.close()

    return asyncio.run(run())


def main() -> int:
    parser = argparse.ArgumentParser(description="Fill hourly or daily time sample points")
    parser.add_argument("--timestamp", type=int, default=None, help="Target unix timestamp (default: now)")
    parser.add_argument("--hourly", action="store_true", help="Hourly instead of daily sample points")
    parser.add_argument("--database-url", type=str, default=None, help="Database URL (default: from settings)")
    args = parser.parse_args()

    try:
        results = fill_sample_points_now(args.timestamp, hourly=args.hourly, database_url=args.database_url)
    except Exception as e:
        logger.error(f"Sample point job failed: {e}", exc_info=True)
        return 1

    for key, count in results.items():
        status = f"{count} points" if count >= 0 else "FAILED"
        logger.info(f"  {key}: {status}")
    return 0 if all(c >= 0 for c in results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
