"""Nearest-sample selection and per-trove summary statistics."""

from collections import Counter
from decimal import Decimal, DivisionByZero, InvalidOperation
from enum import Enum
from typing import Sequence

from services.indexer.src.indexer.domain.models import TimeSamplePoint, TroveData, TroveDataSummary
from services.indexer.src.indexer.utils.timestamps import SECONDS_PER_DAY, SECONDS_PER_HOUR

HOURLY = "hour"
DAILY = "day"

PRICE_PRECISION = Decimal(10) ** 18
# Ratios below this are rounding noise from dust positions
MIN_COL_RATIO = Decimal("0.001")
THREE_PLACES = Decimal("0.001")
# annualInterestRate is 1e18-scaled; 1e16 is one percent
RATE_PRECISION = Decimal(10) ** 16


class Staleness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    CRITICAL = "critical"


def find_closest_sample_point(
    points: Sequence[TimeSamplePoint], target_timestamp: int
) -> TimeSamplePoint | None:
    """Sample point whose target timestamp is nearest; ties keep the first one seen."""
    closest = None
    min_diff = None
    for point in points:
        diff = abs(point.target_timestamp - target_timestamp)
        if min_diff is None or diff < min_diff:
            closest, min_diff = point, diff
    return closest


def classify_staleness(distance_seconds: int) -> Staleness:
    distance = abs(distance_seconds)
    if distance <= SECONDS_PER_HOUR:
        return Staleness.FRESH
    if distance <= SECONDS_PER_DAY:
        return Staleness.STALE
    return Staleness.CRITICAL


def closest_entries_per_trove(
    readings: Sequence[tuple[int, TroveData]],
    timestamp_by_block: dict[int, int],
    target_timestamp: int,
) -> list[TroveData]:
    """
    Keep one reading per trove id: the one read closest to ``target_timestamp``.

    Readings at blocks without a known timestamp are ignored. Order follows the
    first appearance of each trove id.
    """
    best: dict[str, tuple[int, TroveData]] = {}
    for block_number, trove in readings:
        ts = timestamp_by_block.get(block_number)
        if ts is None:
            continue
        diff = abs(ts - target_timestamp)
        current = best.get(trove.trove_id)
        if current is None or diff < current[0]:
            best[trove.trove_id] = (diff, trove)
    return [trove for _, trove in best.values()]


def collateral_ratio(
    coll: str, entire_debt: str | None, price: str, coll_token_decimals: int
) -> Decimal | None:
    """
    Collateral ratio in percent, rounded to 3 decimals.

    The collateral value is computed on raw integers: ``coll * price`` scaled
    back by 1e18, over the debt rescaled to the collateral token's decimals.
    Returns None when the debt is zero or missing, or the result is degenerate.
    """
    if entire_debt is None:
        return None
    try:
        debt = int(entire_debt)
        if debt <= 0:
            return None
        price_scaled = int((Decimal(price) * PRICE_PRECISION).to_integral_value())
        col_usd_value = price_scaled * int(coll) // int(PRICE_PRECISION)
        debt_adjusted = Decimal(debt) * Decimal(10) ** (coll_token_decimals - 18)
        ratio = Decimal(col_usd_value) / debt_adjusted * 100
        if not ratio.is_finite() or ratio < MIN_COL_RATIO:
            return None
        return ratio.quantize(THREE_PLACES)
    except (ValueError, InvalidOperation, DivisionByZero):
        return None


def compute_summary(
    trove_manager_index: int,
    granularity: str,
    hour: int,
    target_timestamp: int,
    entries: Sequence[TroveData],
    price: str | None,
    coll_token_decimals: int | None,
    staleness: Staleness,
) -> TroveDataSummary:
    """
    Summarize the troves of one trove manager at one sample time.

    The status histogram and the mean interest rate in percent (over non-zero
    rates, 3 decimals) are always produced. The mean collateral ratio needs a
    price, the collateral token decimals and a sample no more than 24h away;
    otherwise it is None.
    """
    status_counts = Counter(str(int(t.status)) for t in entries)

    rates = [Decimal(t.annual_interest_rate) for t in entries if Decimal(t.annual_interest_rate) > 0]
    avg_interest_rate = (
        str((sum(rates) / len(rates) / RATE_PRECISION).quantize(THREE_PLACES)) if rates else "0.000"
    )

    avg_col_ratio = None
    if price is not None and coll_token_decimals is not None and staleness != Staleness.CRITICAL:
        ratios = [
            r
            for r in (
                collateral_ratio(t.coll, t.entire_debt, price, coll_token_decimals) for t in entries
            )
            if r is not None
        ]
        if ratios:
            avg_col_ratio = str((sum(ratios) / len(ratios)).quantize(THREE_PLACES))

    return TroveDataSummary(
        trove_manager_index=trove_manager_index,
        granularity=granularity,
        hour=hour,
        target_timestamp=target_timestamp,
        avg_interest_rate=avg_interest_rate,
        avg_col_ratio=avg_col_ratio,
        status_counts=dict(status_counts),
        total_troves=len(entries),
    )
