"""
Protocol removal script.

Deletes one protocol on one chain and every row that references it
(trove managers, snapshots, events, prices, sample points, summaries and the
recorded block range). Use with caution - this cannot be undone.

Usage:
    python -m services.indexer.src.indexer.jobs.delete_protocol --protocol 1 --chain ethereum
    python -m services.indexer.src.indexer.jobs.delete_protocol --protocol 2 --chain hyperliquid --yes
"""
import argparse
import logging
import sys

from sqlalchemy.engine import Engine

from services.indexer.src.indexer.db.engine import get_engine, init_db
from services.indexer.src.indexer.db.repository import ProtocolRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def delete_protocol(
    protocol_id: int,
    chain: str,
    database_url: str | None = None,
    engine: Engine | None = None,
) -> dict[str, int] | None:
    """
    Delete a protocol on ``chain`` in one transaction.

    Returns:
        Dict mapping table name to rows deleted, or None if the protocol is unknown
    """
    engine = engine or get_engine(database_url)
    init_db(engine)

    deleted = ProtocolRepository(engine).delete_protocol(protocol_id, chain)
    if deleted is None:
        logger.warning(f"No protocol {protocol_id} found on {chain}")
        return None

    logger.info(f"Deleted protocol {protocol_id} on {chain}")
    for table, count in deleted.items():
        if count:
            logger.info(f"  {table}: {count} rows")
    return deleted


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete a protocol and all of its data on one chain")
    parser.add_argument("--protocol", type=int, required=True, help="Protocol id (e.g. 1 for liquity)")
    parser.add_argument("--chain", type=str, required=True, help="Chain name (e.g. ethereum)")
    parser.add_argument("--database-url", type=str, default=None, help="Database URL (default: from settings)")
    parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")
    args = parser.parse_args()

    if args.protocol <= 0:
        parser.error("--protocol must be a positive integer")

    if not args.yes:
        print("")
        print(f"This deletes protocol {args.protocol} on {args.chain} and ALL related data.")
        print("This operation is DESTRUCTIVE and cannot be undone.")
        print("")
        response = input("Type 'yes' to continue: ")
        if response.lower() != "yes":
            print("Aborted.")
            return 0

    try:
        deleted = delete_protocol(args.protocol, args.chain, database_url=args.database_url)
    except Exception as e:
        logger.error(f"Protocol deletion failed: {e}", exc_info=True)
        return 1

    return 0 if deleted is not None else 1


if __name__ == "__main__":
    sys.exit(main())
