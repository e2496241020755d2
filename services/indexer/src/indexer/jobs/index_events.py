"""
Historical event indexer job.

Walks a block range backward in per-chain windows, storing trove manager
events idempotently, and widens the per-(protocol, chain) watermark of
blocks already covered.

Usage:
    python -m services.indexer.src.indexer.jobs.index_events --protocol 1
    python -m services.indexer.src.indexer.jobs.index_events --protocol 1 --chain ethereum \\
        --start-block 22000000 --end-block 22100000 --best-effort
"""
import argparse
import asyncio
import logging
import sys

from sqlalchemy.engine import Engine

from services.indexer.src.indexer.adapters.base import ProtocolAdapter
from services.indexer.src.indexer.adapters.registry import get_adapter
from services.indexer.src.indexer.config import get_max_blocks, settings
from services.indexer.src.indexer.db.engine import get_engine, init_db
from services.indexer.src.indexer.db.events_repository import EventsRepository
from services.indexer.src.indexer.errors import ConfigurationError
from services.indexer.src.indexer.gateway.base import ChainReader
from services.indexer.src.indexer.gateway.rpc import JsonRpcChainReader
from services.indexer.src.indexer.utils.concurrency import CHAIN_STAGGER_SECONDS, staggered
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.src.indexer.utils.retry import (
    EVENT_WINDOW_POLICY,
    LATEST_BLOCK_POLICY,
    PERSISTENCE_POLICY,
    RetryPolicy,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def backward_windows(start_block: int, end_block: int, window: int) -> list[tuple[int, int]]:
    """Split [start_block, end_block] into windows of at most ``window`` blocks, newest first."""
    windows = []
    hi = end_block
    while hi >= start_block:
        lo = max(start_block, hi - window + 1)
        windows.append((lo, hi))
        hi = lo - 1
    return windows


async def get_blocks_for_running_adapter(
    adapter: ProtocolAdapter,
    reader: ChainReader,
    repo: EventsRepository,
    chain: str,
    latest_policy: RetryPolicy = LATEST_BLOCK_POLICY,
) -> tuple[int, int] | None:
    """
    Next block range to index for ``adapter`` on ``chain``.

    Without a watermark the range is the configured history horizon (one
    window by default) ending at the latest block. Otherwise it continues
    right after the watermark end, capped to one window.

    Returns:
        (start_block, end_block), or None when the watermark is already at
        the latest block
    """
    latest = await latest_policy.run(reader.latest_block, chain)
    window = get_max_blocks(chain)
    recorded = await asyncio.to_thread(repo.get_recorded_blocks, adapter.protocol_id, chain)

    if recorded is None:
        horizon = settings.history_horizon_blocks or window
        return max(0, latest.number - horizon + 1), latest.number

    if recorded.end_block >= latest.number:
        return None
    start = recorded.end_block + 1
    return start, min(latest.number, start + window - 1)


async def run_events_historical(
    adapter: ProtocolAdapter,
    repo: EventsRepository,
    chain: str,
    start_block: int,
    end_block: int,
    best_effort: bool = False,
    window_policy: RetryPolicy = EVENT_WINDOW_POLICY,
    error_logger: ErrorLogger | None = None,
) -> int:
    """
    Index events of [start_block, end_block] on ``chain``, newest window first.

    Each window is read under ``window_policy`` and stored in one transaction.
    A window that still fails raises, unless ``best_effort`` is set: then it
    is logged and skipped, and the watermark only covers the contiguous range
    from ``start_block`` up to just below the lowest failed window. A range
    that does not touch the recorded one leaves the watermark unchanged.

    Returns:
        Number of event rows inserted
    """
    if start_block < 0 or start_block > end_block:
        raise ConfigurationError(f"Invalid block range [{start_block}, {end_block}] for {chain}")

    error_logger = error_logger or ErrorLogger()
    windows = backward_windows(start_block, end_block, get_max_blocks(chain))
    logger.info(
        f"Indexing {adapter.name} events on {chain}: blocks {start_block}-{end_block} "
        f"in {len(windows)} window(s)"
    )

    inserted = 0
    lowest_failed: int | None = None
    for lo, hi in windows:
        try:
            events = await window_policy.run(adapter.fetch_events, chain, lo, hi)
            inserted += await PERSISTENCE_POLICY.run_in_thread(
                repo.save_event_window, adapter.protocol_id, chain, events, name=adapter.name
            )
        except Exception as e:
            if not best_effort:
                raise
            error_logger.error(
                f"Skipping blocks {lo}-{hi} on {chain}: {e}",
                LogKeyword.MISSING_BLOCKS, chain=chain, protocol_id=adapter.protocol_id,
                function="run_events_historical", table="event_data",
            )
            lowest_failed = lo

    covered_end = end_block if lowest_failed is None else lowest_failed - 1
    if covered_end < start_block:
        logger.warning(f"{adapter.name} on {chain}: watermark unchanged, lowest window failed")
        return inserted

    recorded = await PERSISTENCE_POLICY.run_in_thread(
        repo.widen_recorded_blocks, adapter.protocol_id, chain, start_block, covered_end,
        name=adapter.name,
    )
    if recorded is None:
        error_logger.error(
            f"Blocks {start_block}-{covered_end} on {chain} are not adjacent to the recorded "
            f"range; watermark unchanged",
            LogKeyword.MISSING_BLOCKS, chain=chain, protocol_id=adapter.protocol_id,
            function="run_events_historical", table="recorded_blocks",
        )
    else:
        logger.info(
            f"{adapter.name} on {chain}: {inserted} new events, "
            f"recorded blocks now {recorded.start_block}-{recorded.end_block}"
        )
    return inserted


async def run_events_to_current_block(
    adapter: ProtocolAdapter,
    reader: ChainReader,
    repo: EventsRepository,
    chains: list[str] | None = None,
    best_effort: bool = False,
    error_logger: ErrorLogger | None = None,
    window_policy: RetryPolicy = EVENT_WINDOW_POLICY,
    latest_policy: RetryPolicy = LATEST_BLOCK_POLICY,
    stagger: float = CHAIN_STAGGER_SECONDS,
) -> dict[str, int]:
    """
    Advance the watermark of every chain towards the latest block.

    Returns:
        Dict mapping chain to events inserted (-1 on failure)
    """
    error_logger = error_logger or ErrorLogger()
    chains = chains or adapter.chains

    async def run_chain(chain: str) -> int:
        try:
            blocks = await get_blocks_for_running_adapter(adapter, reader, repo, chain, latest_policy)
            if blocks is None:
                logger.info(f"{adapter.name} on {chain} is up to date")
                return 0
            return await run_events_historical(
                adapter, repo, chain, *blocks,
                best_effort=best_effort,
                window_policy=window_policy,
                error_logger=error_logger,
            )
        except Exception as e:
            keyword = LogKeyword.CRITICAL if isinstance(e, ConfigurationError) else LogKeyword.MISSING_BLOCKS
            error_logger.error(
                f"Event indexing failed for {adapter.name} on {chain}: {e}",
                keyword, chain=chain, protocol_id=adapter.protocol_id,
                function="run_events_to_current_block", table="event_data",
            )
            return -1

    outcomes = await asyncio.gather(
        *(staggered(i, run_chain(chain), stagger) for i, chain in enumerate(chains))
    )
    return dict(zip(chains, outcomes))


def index_protocol_events(
    protocol_id: int,
    chains: list[str] | None = None,
    start_block: int | None = None,
    end_block: int | None = None,
    best_effort: bool = False,
    database_url: str | None = None,
    engine: Engine | None = None,
) -> dict[str, int]:
    """Blocking entry point used by the CLI and the scheduler."""
    engine = engine or get_engine(database_url)
    init_db(engine)
    repo = EventsRepository(engine)

    async def run() -> dict[str, int]:
        reader = JsonRpcChainReader()
        with ErrorLogger(engine, name="index_events") as error_logger:
            try:
                adapter = get_adapter(protocol_id, reader, error_logger=error_logger)
                if start_block is None and end_block is None:
                    return await run_events_to_current_block(
                        adapter, reader, repo,
                        chains=chains, best_effort=best_effort, error_logger=error_logger,
                    )

                results = {}
                for chain in chains or adapter.chains:
                    end = end_block
                    if end is None:
                        end = (await LATEST_BLOCK_POLICY.run(reader.latest_block, chain)).number
                    start = start_block if start_block is not None else end - get_max_blocks(chain) + 1
                    results[chain] = await run_events_historical(
                        adapter, repo, chain, start, end,
                        best_effort=best_effort, error_logger=error_logger,
                    )
                return results
            finally:
                await reader.close()

    return asyncio.run(run())


def main() -> int:
    parser = argparse.ArgumentParser(description="Index trove manager events")
    parser.add_argument("--protocol", type=int, required=True, help="Protocol id (e.g. 1 for liquity)")
    parser.add_argument("--chain", type=str, default=None, help="Only this chain (default: all)")
    parser.add_argument("--start-block", type=int, default=None, help="First block of an explicit range")
    parser.add_argument("--end-block", type=int, default=None, help="Last block of an explicit range")
    parser.add_argument("--best-effort", action="store_true", help="Skip windows that keep failing")
    parser.add_argument("--database-url", type=str, default=None, help="Database URL (default: from settings)")
    args = parser.parse_args()

    try:
        results = index_protocol_events(
            protocol_id=args.protocol,
            chains=[args.chain] if args.chain else None,
            start_block=args.start_block,
            end_block=args.end_block,
            best_effort=args.best_effort,
            database_url=args.database_url,
        )
    except Exception as e:
        logger.error(f"Event indexing failed: {e}", exc_info=True)
        return 1

    logger.info("Event indexing complete:")
    for chain, count in results.items():
        status = f"{count} events" if count >= 0 else "FAILED"
        logger.info(f"  {chain}: {status}")
    return 0 if all(c >= 0 for c in results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
