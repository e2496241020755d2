"""
Snapshot sync job.

Reads troves (with owners), immutables and pool data for every chain of a
protocol, all pinned to one latest block per chain, and stores each kind as
one versioned batch.

Usage:
    python -m services.indexer.src.indexer.jobs.sync_snapshots --protocol 1
    python -m services.indexer.src.indexer.jobs.sync_snapshots --protocol 2 --chain hyperliquid --immutables
"""
import argparse
import asyncio
import logging
import sys

from sqlalchemy.engine import Engine

from services.indexer.src.indexer.adapters.base import ProtocolAdapter
from services.indexer.src.indexer.adapters.registry import get_adapter
from services.indexer.src.indexer.db.engine import get_engine, init_db
from services.indexer.src.indexer.db.query_repository import QueryRepository
from services.indexer.src.indexer.db.snapshot_repository import SnapshotRepository
from services.indexer.src.indexer.domain.models import Block, CoreImmutablesEntry
from services.indexer.src.indexer.errors import ConfigurationError
from services.indexer.src.indexer.gateway.base import ChainReader
from services.indexer.src.indexer.gateway.explorer import CreationCodeFetcher
from services.indexer.src.indexer.gateway.rpc import JsonRpcChainReader
from services.indexer.src.indexer.utils.concurrency import CHAIN_STAGGER_SECONDS, staggered
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.src.indexer.utils.retry import (
    LATEST_BLOCK_POLICY,
    PERSISTENCE_POLICY,
    SNAPSHOT_READ_POLICY,
    RetryPolicy,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

KINDS = ("troves", "immutables", "pool_data")


async def _snapshot_troves(
    adapter: ProtocolAdapter, repo: SnapshotRepository, chain: str, block: Block, policy: RetryPolicy
) -> int:
    async def read():
        troves = await adapter.fetch_troves(chain, block.number)
        owners = await adapter.fetch_trove_owners(chain, block.number, troves)
        return troves, owners

    troves, owners = await policy.run(read)
    return await PERSISTENCE_POLICY.run_in_thread(
        repo.save_troves, troves, block, owners=owners, name=adapter.name
    )


async def _snapshot_immutables(
    adapter: ProtocolAdapter, repo: SnapshotRepository, chain: str, block: Block, policy: RetryPolicy
) -> tuple[int, CoreImmutablesEntry]:
    immutables = await policy.run(adapter.fetch_immutables, chain, block.number)
    written = await PERSISTENCE_POLICY.run_in_thread(repo.save_immutables, immutables, block, name=adapter.name)
    return written, immutables


async def _snapshot_pool_data(
    adapter: ProtocolAdapter,
    repo: SnapshotRepository,
    chain: str,
    block: Block,
    policy: RetryPolicy,
    immutables: CoreImmutablesEntry | None = None,
) -> int:
    pool_data = await policy.run(adapter.fetch_pool_data, chain, block.number, immutables)
    return await PERSISTENCE_POLICY.run_in_thread(repo.save_pool_data, pool_data, block, name=adapter.name)


async def snapshot_chain(
    adapter: ProtocolAdapter,
    reader: ChainReader,
    repo: SnapshotRepository,
    chain: str,
    update_immutables: bool = False,
    error_logger: ErrorLogger | None = None,
    policy: RetryPolicy = SNAPSHOT_READ_POLICY,
    latest_policy: RetryPolicy = LATEST_BLOCK_POLICY,
) -> dict[str, int]:
    """
    Snapshot one chain of a protocol.

    Each kind is read and stored independently, so a failure in one is logged
    and reported as -1 without blocking the others. Pool data is built from
    the stored immutables; they are read from chain (and stored) only when
    ``update_immutables`` is set or none are stored yet.

    Returns:
        Dict mapping kind to rows written (-1 on failure)
    """
    error_logger = error_logger or ErrorLogger()
    results: dict[str, int] = {}

    def fail(kind: str, e: Exception) -> None:
        keyword = LogKeyword.CRITICAL if isinstance(e, ConfigurationError) else LogKeyword.MISSING_VALUES
        error_logger.error(
            f"Failed to snapshot {kind} for {adapter.name} on {chain}: {e}",
            keyword, chain=chain, protocol_id=adapter.protocol_id,
            function="run_adapter_snapshot", table=kind,
        )
        results[kind] = -1

    try:
        block = await latest_policy.run(reader.latest_block, chain)
    except Exception as e:
        error_logger.error(
            f"Failed to get latest block for {chain}: {e}",
            LogKeyword.TIMEOUT, chain=chain, protocol_id=adapter.protocol_id,
            function="run_adapter_snapshot",
        )
        return {kind: -1 for kind in KINDS if kind != "immutables" or update_immutables}

    logger.info(f"Snapshotting {adapter.name} on {chain} at block {block.number}")

    immutables = None
    if not update_immutables:
        immutables = await asyncio.to_thread(
            QueryRepository(repo.engine).get_latest_immutables, adapter.protocol_id, chain
        )
        if immutables is None or not immutables.col_immutables:
            logger.info(f"No stored immutables for {adapter.name} on {chain}; reading them from chain")
            immutables = None

    if immutables is None:
        try:
            results["immutables"], immutables = await _snapshot_immutables(adapter, repo, chain, block, policy)
        except Exception as e:
            fail("immutables", e)

    troves_result, pool_result = await asyncio.gather(
        _snapshot_troves(adapter, repo, chain, block, policy),
        _snapshot_pool_data(adapter, repo, chain, block, policy, immutables),
        return_exceptions=True,
    )
    for kind, outcome in (("troves", troves_result), ("pool_data", pool_result)):
        if isinstance(outcome, Exception):
            fail(kind, outcome)
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results[kind] = outcome
    return results


async def run_adapter_snapshot(
    adapter: ProtocolAdapter,
    reader: ChainReader,
    engine: Engine,
    update_immutables: bool = False,
    chains: list[str] | None = None,
    error_logger: ErrorLogger | None = None,
    policy: RetryPolicy = SNAPSHOT_READ_POLICY,
    latest_policy: RetryPolicy = LATEST_BLOCK_POLICY,
    stagger: float = CHAIN_STAGGER_SECONDS,
) -> dict[str, dict[str, int]]:
    """Snapshot every chain of ``adapter`` concurrently, staggering chain starts."""
    repo = SnapshotRepository(engine)
    chains = chains or adapter.chains
    tasks = [
        snapshot_chain(
            adapter, reader, repo, chain,
            update_immutables=update_immutables,
            error_logger=error_logger,
            policy=policy,
            latest_policy=latest_policy,
        )
        for chain in chains
    ]
    outcomes = await asyncio.gather(*(staggered(i, t, stagger) for i, t in enumerate(tasks)))
    return dict(zip(chains, outcomes))


def sync_protocol_snapshots(
    protocol_id: int,
    chains: list[str] | None = None,
    update_immutables: bool = False,
    database_url: str | None = None,
) -> dict[str, dict[str, int]]:
    """Blocking entry point used by the CLI and the scheduler."""
    engine = get_engine(database_url)
    init_db(engine)

    async def run() -> dict[str, dict[str, int]]:
        reader = JsonRpcChainReader()
        with ErrorLogger(engine, name="sync_snapshots") as error_logger:
            try:
                adapter = get_adapter(
                    protocol_id, reader,
                    creation_code_fetcher=CreationCodeFetcher(),
                    error_logger=error_logger,
                )
                return await run_adapter_snapshot(
                    adapter, reader, engine,
                    update_immutables=update_immutables,
                    chains=chains,
                    error_logger=error_logger,
                )
            finally:
                await reader.close()

    return asyncio.run(run())


def main() -> int:
    parser = argparse.ArgumentParser(description="Snapshot troves, immutables and pool data")
    parser.add_argument("--protocol", type=int, required=True, help="Protocol id (e.g. 1 for liquity)")
    parser.add_argument("--chain", type=str, default=None, help="Only this chain (default: all)")
    parser.add_argument("--immutables", action="store_true", help="Also refresh immutables")
    parser.add_argument("--database-url", type=str, default=None, help="Database URL (default: from settings)")
    args = parser.parse_args()

    try:
        results = sync_protocol_snapshots(
            protocol_id=args.protocol,
            chains=[args.chain] if args.chain else None,
            update_immutables=args.immutables,
            database_url=args.database_url,
        )
    except Exception as e:
        logger.error(f"Snapshot sync failed: {e}", exc_info=True)
        return 1

    logger.info("Snapshot sync complete:")
    for chain, kinds in results.items():
        for kind, count in kinds.items():
            status = f"{count} rows" if count >= 0 else "FAILED"
            logger.info(f"  {chain} {kind}: {status}")
    return 0 if all(c >= 0 for kinds in results.values() for c in kinds.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
