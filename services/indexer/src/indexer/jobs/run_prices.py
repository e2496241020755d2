"""
Prices and rates job.

For each chain of a protocol, reads the latest block, takes the trove
managers from the latest stored immutables and stores one prices_and_rates
row per trove manager.

Usage:
    python -m services.indexer.src.indexer.jobs.run_prices --protocol 1
    python -m services.indexer.src.indexer.jobs.run_prices --protocol 2 --chain hyperliquid
"""
import argparse
import asyncio
import logging
import sys

from services.indexer.src.indexer.adapters.liquity_v2 import get_default_config
from services.indexer.src.indexer.db.engine import get_engine, init_db
from services.indexer.src.indexer.db.prices_repository import PricesRepository
from services.indexer.src.indexer.db.query_repository import QueryRepository
from services.indexer.src.indexer.errors import ConfigurationError
from services.indexer.src.indexer.gateway.base import ChainReader
from services.indexer.src.indexer.gateway.explorer import CreationCodeFetcher
from services.indexer.src.indexer.gateway.rpc import JsonRpcChainReader
from services.indexer.src.indexer.prices.resolver import PriceResolver
from services.indexer.src.indexer.utils.concurrency import CHAIN_STAGGER_SECONDS, staggered
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.src.indexer.utils.retry import LATEST_BLOCK_POLICY, PERSISTENCE_POLICY, RetryPolicy

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run_prices(
    protocol_id: int,
    chain: str,
    reader: ChainReader,
    resolver: PriceResolver,
    query_repo: QueryRepository,
    prices_repo: PricesRepository,
    name: str | None = None,
    latest_policy: RetryPolicy = LATEST_BLOCK_POLICY,
) -> int:
    """
    Resolve and store prices for every trove manager of one protocol/chain.

    Returns:
        Number of rows written

    Raises:
        ConfigurationError: If no immutables have been stored yet
    """
    immutables = await asyncio.to_thread(query_repo.get_latest_immutables, protocol_id, chain)
    if immutables is None or not immutables.col_immutables:
        raise ConfigurationError(
            f"No immutables stored for protocol {protocol_id} on {chain}; run the snapshot sync first"
        )

    block = await latest_policy.run(reader.latest_block, chain)
    entries = await resolver.resolve_all(protocol_id, chain, immutables, block.number)
    written = await PERSISTENCE_POLICY.run_in_thread(prices_repo.save_prices, entries, block, name=name)
    logger.info(f"Stored prices for {len(entries)} trove manager(s) of protocol {protocol_id} on {chain}")
    return written


async def run_all_prices(
    protocol_id: int,
    chains: list[str],
    reader: ChainReader,
    resolver: PriceResolver,
    query_repo: QueryRepository,
    prices_repo: PricesRepository,
    name: str | None = None,
    error_logger: ErrorLogger | None = None,
    latest_policy: RetryPolicy = LATEST_BLOCK_POLICY,
    stagger: float = CHAIN_STAGGER_SECONDS,
) -> dict[str, int]:
    """Run every chain concurrently. Returns chain -> rows written (-1 on failure)."""
    error_logger = error_logger or ErrorLogger()

    async def run_chain(chain: str) -> int:
        try:
            return await run_prices(
                protocol_id, chain, reader, resolver, query_repo, prices_repo,
                name=name, latest_policy=latest_policy,
            )
        except Exception as e:
            keyword = LogKeyword.CRITICAL if isinstance(e, ConfigurationError) else LogKeyword.MISSING_VALUES
            error_logger.error(
                f"Failed to store prices on {chain}: {e}",
                keyword, chain=chain, protocol_id=protocol_id,
                function="run_prices", table="prices_and_rates",
            )
            return -1

    outcomes = await asyncio.gather(
        *(staggered(i, run_chain(chain), stagger) for i, chain in enumerate(chains))
    )
    return dict(zip(chains, outcomes))


def store_protocol_prices(
    protocol_id: int,
    chains: list[str] | None = None,
    database_url: str | None = None,
) -> dict[str, int]:
    """Blocking entry point used by the CLI and the scheduler."""
    protocol = get_default_config().get_protocol(protocol_id)
    if protocol is None:
        raise ConfigurationError(f"No protocol configured with id {protocol_id}")

    engine = get_engine(database_url)
    init_db(engine)

    async def run() -> dict[str, int]:
        reader = JsonRpcChainReader()
        with ErrorLogger(engine, name="run_prices") as error_logger:
            try:
                resolver = PriceResolver(reader, CreationCodeFetcher(), error_logger)
                return await run_all_prices(
                    protocol_id, chains or protocol.chains, reader, resolver,
                    QueryRepository(engine), PricesRepository(engine),
                    name=protocol.name, error_logger=error_logger,
                )
            finally:
                await reader.close()

    return asyncio.run(run())


def main() -> int:
    parser = argparse.ArgumentParser(description="Store collateral prices and LST rates")
    parser.add_argument("--protocol", type=int, required=True, help="Protocol id (e.g. 1 for liquity)")
    parser.add_argument("--chain", type=str, default=None, help="Only this chain (default: all)")
    parser.add_argument("--database-url", type=str, default=None, help="Database URL (default: from settings)")
    args = parser.parse_args()

    try:
        results = store_protocol_prices(
            args.protocol,
            chains=[args.chain] if args.chain else None,
            database_url=args.database_url,
        )
    except Exception as e:
        logger.error(f"Price job failed: {e}", exc_info=True)
        return 1

    logger.info("Price job complete:")
    for chain, count in results.items():
        status = f"{count} rows" if count >= 0 else "FAILED"
        logger.info(f"  {chain}: {status}")
    return 0 if all(c >= 0 for c in results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
