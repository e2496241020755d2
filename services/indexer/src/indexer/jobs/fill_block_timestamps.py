"""
Block timestamp backfill job.

Event windows store their block numbers with a null timestamp; this job
reads those blocks from the chain and fills the timestamps in.

Usage:
    python -m services.indexer.src.indexer.jobs.fill_block_timestamps
    python -m services.indexer.src.indexer.jobs.fill_block_timestamps --chain ethereum --limit 500
"""
import argparse
import asyncio
import logging
import sys

from services.indexer.src.indexer.db.engine import get_engine, init_db
from services.indexer.src.indexer.db.timeseries_repository import TimeSeriesRepository
from services.indexer.src.indexer.gateway.base import ChainReader
from services.indexer.src.indexer.gateway.rpc import JsonRpcChainReader
from services.indexer.src.indexer.utils.concurrency import DEFAULT_CONCURRENCY, gather_with_concurrency
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.src.indexer.utils.retry import REMOTE_READ_POLICY, RetryPolicy

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def fill_missing_block_timestamps(
    reader: ChainReader,
    repo: TimeSeriesRepository,
    chains: list[str] | None = None,
    limit: int | None = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    error_logger: ErrorLogger | None = None,
    policy: RetryPolicy = REMOTE_READ_POLICY,
) -> dict[str, int]:
    """
    Fill null block timestamps, oldest blocks first.

    Blocks that cannot be read keep their placeholder and are logged as
    missingBlocks; they are retried on the next run.

    Returns:
        Dict mapping chain to timestamps filled
    """
    error_logger = error_logger or ErrorLogger()
    if chains is None:
        chains = sorted({p["chain"] for p in repo.protocols.list_protocols()})

    results: dict[str, int] = {}
    for chain in chains:
        blocks = repo.get_blocks_missing_timestamps(chain, limit)
        if not blocks:
            results[chain] = 0
            continue

        fetched = await gather_with_concurrency(
            (policy.run(reader.get_block, chain, b) for b in blocks),
            limit=concurrency,
            return_exceptions=True,
        )
        timestamps = {}
        failed = []
        for number, block in zip(blocks, fetched):
            if isinstance(block, Exception) or block is None:
                failed.append(number)
            else:
                timestamps[number] = block.timestamp

        if failed:
            error_logger.error(
                f"Could not read {len(failed)} block(s) on {chain}, first {failed[0]}",
                LogKeyword.MISSING_BLOCKS, chain=chain,
                function="fill_missing_block_timestamps", table="block_timestamps",
            )
        repo.save_block_timestamps(chain, timestamps)
        results[chain] = len(timestamps)
        logger.info(f"Filled {len(timestamps)}/{len(blocks)} block timestamps on {chain}")
    return results


def main() -> int:
    parser = argparse.ArgumentParser(description="Fill missing block timestamps")
    parser.add_argument("--chain", type=str, default=None, help="Only this chain (default: all known)")
    parser.add_argument("--limit", type=int, default=None, help="At most this many blocks per chain")
    parser.add_argument("--database-url", type=str, default=None, help="Database URL (default: from settings)")
    args = parser.parse_args()

    engine = get_engine(args.database_url)
    init_db(engine)

    async def run() -> dict[str, int]:
        reader = JsonRpcChainReader()
        with ErrorLogger(engine, name="fill_block_timestamps") as error_logger:
            try:
                return await fill_missing_block_timestamps(
                    reader, TimeSeriesRepository(engine),
                    chains=[args.chain] if args.chain else None,
                    limit=args.limit,
                    error_logger=error_logger,
                )
            finally:
                await reader.close()

    try:
        results = asyncio.run(run())
    except Exception as e:
        logger.error(f"Block timestamp backfill failed: {e}", exc_info=True)
        return 1

    for chain, count in results.items():
        logger.info(f"  {chain}: {count} timestamps")
    return 0


if __name__ == "__main__":
    sys.exit(main())
