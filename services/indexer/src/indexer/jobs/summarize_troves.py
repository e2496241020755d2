"""
Trove data summary job.

Summarizes the troves of each trove manager at an hourly or daily target
time: status histogram, mean interest rate and mean collateral ratio.

Usage:
    python -m services.indexer.src.indexer.jobs.summarize_troves
    python -m services.indexer.src.indexer.jobs.summarize_troves --protocol 1 --chain ethereum \\
        --trove-manager 0 --timestamp 1740758400 --hourly
"""
import argparse
import logging
import sys
import time

from services.indexer.src.indexer.db.engine import get_engine, init_db
from services.indexer.src.indexer.db.timeseries_repository import TimeSeriesRepository
from services.indexer.src.indexer.domain.aggregation import (
    DAILY,
    HOURLY,
    Staleness,
    classify_staleness,
    closest_entries_per_trove,
    compute_summary,
    find_closest_sample_point,
)
from services.indexer.src.indexer.domain.models import TroveDataSummary
from services.indexer.src.indexer.errors import IndexerError
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword
from services.indexer.src.indexer.utils.timestamps import SECONDS_PER_DAY, hour_of_day, normalize_timestamp

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def fill_trove_data_summary(
    repo: TimeSeriesRepository,
    protocol_id: int,
    chain: str,
    trove_manager_index: int,
    target_timestamp: int,
    hourly: bool = False,
    error_logger: ErrorLogger | None = None,
) -> TroveDataSummary | None:
    """
    Compute and store one trove manager summary.

    Returns:
        The stored summary, or None when an input is missing (logged as
        missingValues)

    Raises:
        IndexerError: If the protocol or trove manager is unknown
    """
    error_logger = error_logger or ErrorLogger()

    def missing(msg: str) -> None:
        error_logger.error(
            msg, LogKeyword.MISSING_VALUES, chain=chain, protocol_id=protocol_id,
            function="fill_trove_data_summary", table="trove_data_summaries",
        )

    start = normalize_timestamp(target_timestamp, hourly)
    hour = hour_of_day(start) if hourly else 0

    if repo.protocols.get_protocol_pk(protocol_id, chain) is None:
        raise IndexerError(f"Protocol not found: {protocol_id} on chain {chain}")
    tm_pk = repo.protocols.get_trove_manager_pks(protocol_id, chain).get(trove_manager_index)
    if tm_pk is None:
        raise IndexerError(
            f"Trove manager not found: index {trove_manager_index} for protocol {protocol_id} on chain {chain}"
        )

    sample_point = find_closest_sample_point(repo.get_tm_sample_points(tm_pk), start)
    if sample_point is None:
        missing(
            f"No sample points found for trove manager {trove_manager_index} "
            f"for protocol {protocol_id} on chain {chain}"
        )
        return None

    staleness = classify_staleness(sample_point.target_timestamp - start)
    if staleness != Staleness.FRESH:
        missing(
            f"Closest sample point timestamp ({sample_point.target_timestamp}) is more than 1 hour "
            f"away from target timestamp ({start})"
        )
    if staleness == Staleness.CRITICAL:
        missing(
            f"Closest sample point timestamp ({sample_point.target_timestamp}) is more than 24 hours "
            f"away from target timestamp ({start})"
        )

    timestamp_by_block = repo.get_block_timestamps_between(
        chain, start - SECONDS_PER_DAY, start + SECONDS_PER_DAY - 1
    )
    if not timestamp_by_block:
        missing(f"No blocks found in the timestamp range for protocol {protocol_id}, ts {target_timestamp}")
        return None

    readings = repo.get_trove_readings(tm_pk, chain, start - SECONDS_PER_DAY, start + SECONDS_PER_DAY - 1)
    if not readings:
        missing(
            f"No trove data found for the blocks in the timestamp range for protocol {protocol_id}, "
            f"ts {target_timestamp}"
        )
        return None
    entries = closest_entries_per_trove(readings, timestamp_by_block, start)

    decimals = repo.get_coll_token_decimals(tm_pk)
    if decimals is None:
        missing(
            f"Could not find collateral immutables for trove manager {trove_manager_index} "
            f"for protocol {protocol_id} on chain {chain}"
        )
        return None

    price = None
    if sample_point.prices_and_rates_block_number is not None:
        price = repo.get_price_at(tm_pk, sample_point.prices_and_rates_block_number)
        if price is None:
            missing(f"Could not find prices for block {sample_point.prices_and_rates_block_number}")

    summary = compute_summary(
        trove_manager_index,
        HOURLY if hourly else DAILY,
        hour,
        start,
        entries,
        price,
        int(decimals),
        staleness,
    )
    repo.save_summaries(protocol_id, chain, [summary])
    logger.info(
        f"Stored {summary.granularity} summary for protocol {protocol_id} on {chain}, "
        f"trove manager {trove_manager_index}: {summary.total_troves} troves"
    )
    return summary


def fill_trove_data_summaries(
    repo: TimeSeriesRepository,
    now: int | None = None,
    error_logger: ErrorLogger | None = None,
) -> dict[str, int]:
    """
    Hourly summaries for every trove manager, plus daily ones in the first UTC hour.

    A failing trove manager is logged and skipped.

    Returns:
        Dict mapping "<protocol_id>:<chain>" to summaries stored (-1 if any failed)
    """
    error_logger = error_logger or ErrorLogger()
    now = now if now is not None else int(time.time())
    granularities = [True, False] if hour_of_day(now) == 0 else [True]

    results: dict[str, int] = {}
    for protocol in repo.protocols.list_protocols():
        protocol_id, chain = protocol["protocol_id"], protocol["chain"]
        key = f"{protocol_id}:{chain}"
        tm_indexes = list(repo.protocols.get_trove_manager_pks(protocol_id, chain))
        if not tm_indexes:
            logger.info(f"No trove managers found for protocol {protocol_id} on chain {chain}")
            continue

        stored = 0
        failed = False
        for tm_index in tm_indexes:
            for hourly in granularities:
                try:
                    if fill_trove_data_summary(
                        repo, protocol_id, chain, tm_index, now, hourly=hourly, error_logger=error_logger
                    ) is not None:
                        stored += 1
                except Exception as e:
                    failed = True
                    error_logger.error(
                        f"Error filling trove data summary for protocol {protocol_id}, chain {chain}, "
                        f"trove manager {tm_index}: {e}",
                        LogKeyword.MISSING_VALUES, chain=chain, protocol_id=protocol_id,
                        function="fill_trove_data_summaries", table="trove_data_summaries",
                    )
        results[key] = -1 if failed else stored
    return results


def main() -> int:
    parser = argparse.ArgumentParser(description="Summarize troves per trove manager")
    parser.add_argument("--timestamp", type=int, default=None, help="Target unix timestamp (default: now)")
    parser.add_argument("--protocol", type=int, default=None, help="Single protocol id")
    parser.add_argument("--chain", type=str, default=None, help="Chain of the single trove manager")
    parser.add_argument("--trove-manager", type=int, default=None, help="Single trove manager index")
    parser.add_argument("--hourly", action="store_true", help="Hourly summary (single trove manager mode)")
    parser.add_argument("--database-url", type=str, default=None, help="Database URL (default: from settings)")
    args = parser.parse_args()

    engine = get_engine(args.database_url)
    init_db(engine)
    repo = TimeSeriesRepository(engine)

    with ErrorLogger(engine, name="summarize_troves") as error_logger:
        try:
            if args.protocol is not None and args.chain and args.trove_manager is not None:
                summary = fill_trove_data_summary(
                    repo, args.protocol, args.chain, args.trove_manager,
                    args.timestamp if args.timestamp is not None else int(time.time()),
                    hourly=args.hourly, error_logger=error_logger,
                )
                return 0 if summary is not None else 1
            results = fill_trove_data_summaries(repo, now=args.timestamp, error_logger=error_logger)
        except Exception as e:
            logger.error(f"Summary job failed: {e}", exc_info=True)
            return 1

    for key, count in results.items():
        status = f"{count} summaries" if count >= 0 else "FAILED"
        logger.info(f"  {key}: {status}")
    return 0 if all(c >= 0 for c in results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
