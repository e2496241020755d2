"""Current and previous-period trove manager metrics.

Daily samples are not taken on a fixed clock, so "one day ago" is never the
row N positions back. A previous-period value is only produced when a sample
exists within one hour of ``latest - N days``; otherwise it is None.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Sequence

from services.indexer.src.indexer.utils.timestamps import SECONDS_PER_DAY, SECONDS_PER_HOUR

TOLERANCE_SECONDS = SECONDS_PER_HOUR
WAD = Decimal(10) ** 18
REDEMPTION_OPERATION = 6


@dataclass
class PoolPoint:
    timestamp: int
    entire_system_debt: str | None = None
    entire_system_coll: str | None = None
    sp_total_bold_deposits: str | None = None
    sp_yield_gains_owed: str | None = None
    sp_yield_gains_pending: str | None = None
    sp_coll_balance: str | None = None


@dataclass
class PricePoint:
    timestamp: int
    col_usd_price_feed: str | None = None
    col_usd_oracle: str | None = None


@dataclass
class PeriodMetrics:
    """Metrics of one trove manager at one point in time (USD / BOLD units)."""

    debt_bold: Decimal | None = None
    col_usd: Decimal | None = None
    sp_bold: Decimal | None = None
    sp_col_usd: Decimal | None = None
    col_ratio: Decimal | None = None
    col_usd_oracle: Decimal | None = None


@dataclass
class TroveManagerMetrics:
    trove_manager_index: int
    current: PeriodMetrics
    prev_day: PeriodMetrics | None = None
    prev_7_day: PeriodMetrics | None = None
    prev_7_day_redemption_total: Decimal = Decimal(0)
    changes: dict[str, Decimal | None] = field(default_factory=dict)


def _dec(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def find_point_near(points: Sequence[Any], target: int, tolerance: int = TOLERANCE_SECONDS) -> Any | None:
    """Point closest to ``target`` if it is within ``tolerance`` seconds, else None."""
    closest = None
    min_diff = None
    for point in points:
        diff = abs(point.timestamp - target)
        if min_diff is None or diff < min_diff:
            closest, min_diff = point, diff
    if closest is None or min_diff > tolerance:
        return None
    return closest


def period_metrics(
    pool: PoolPoint | None, price: PricePoint | None, coll_token_decimals: int = 18
) -> PeriodMetrics:
    metrics = PeriodMetrics()
    price_feed = _dec(price.col_usd_price_feed) if price else None
    if price:
        metrics.col_usd_oracle = _dec(price.col_usd_oracle)
    if pool is None:
        return metrics

    coll_scale = Decimal(10) ** coll_token_decimals
    if pool.entire_system_debt is not None:
        metrics.debt_bold = Decimal(pool.entire_system_debt) / WAD
    if pool.entire_system_coll is not None and price_feed is not None:
        metrics.col_usd = Decimal(pool.entire_system_coll) * price_feed / coll_scale

    sp_parts = [
        pool.sp_total_bold_deposits,
        pool.sp_yield_gains_owed,
        pool.sp_yield_gains_pending,
    ]
    if any(p is not None for p in sp_parts):
        metrics.sp_bold = sum(Decimal(p) for p in sp_parts if p is not None) / WAD
    if pool.sp_coll_balance is not None and price_feed is not None:
        metrics.sp_col_usd = Decimal(pool.sp_coll_balance) * price_feed / coll_scale

    if metrics.col_usd is not None and metrics.debt_bold:
        metrics.col_ratio = metrics.col_usd / metrics.debt_bold
    return metrics


def previous_metrics(
    pool_points: Sequence[PoolPoint],
    price_points: Sequence[PricePoint],
    latest_timestamp: int,
    days_ago: int,
    coll_token_decimals: int = 18,
) -> PeriodMetrics | None:
    """Metrics as of ``days_ago`` days before ``latest_timestamp``.

    Pool and price samples are each required to lie within the tolerance of
    the target time. Returns None when no pool sample qualifies; a missing
    price sample leaves the price-dependent fields None.
    """
    target = latest_timestamp - days_ago * SECONDS_PER_DAY
    pool = find_point_near(pool_points, target)
    if pool is None:
        return None
    price = find_point_near(price_points, target)
    return period_metrics(pool, price, coll_token_decimals)


def percent_change(current: Decimal | None, previous: Decimal | None) -> Decimal | None:
    if current is None or previous is None or previous <= 0:
        return None
    return (current - previous) / previous * 100


def redemption_total(events: Iterable[dict[str, Any]], since: int) -> Decimal:
    """Sum of redeemed debt from redemption operations at or after ``since``.

    Each event carries ``timestamp``, ``operation`` and ``data`` (the decoded
    TroveOperation payload).
    """
    total = Decimal(0)
    for event in events:
        if event.get("timestamp") is None or event["timestamp"] < since:
            continue
        if event.get("operation") != REDEMPTION_OPERATION:
            continue
        change = _dec((event.get("data") or {}).get("debtChangeFromOperation"))
        if change is not None and change < 0:
            total += -change
    return total


def trove_manager_metrics(
    trove_manager_index: int,
    pool_points: Sequence[PoolPoint],
    price_points: Sequence[PricePoint],
    coll_token_decimals: int = 18,
    events: Iterable[dict[str, Any]] = (),
) -> TroveManagerMetrics:
    """Current metrics from the latest samples plus 1-day and 7-day lookbacks."""
    pool_points = sorted(pool_points, key=lambda p: p.timestamp)
    price_points = sorted(price_points, key=lambda p: p.timestamp)
    latest_pool = pool_points[-1] if pool_points else None
    latest_price = price_points[-1] if price_points else None

    result = TroveManagerMetrics(
        trove_manager_index=trove_manager_index,
        current=period_metrics(latest_pool, latest_price, coll_token_decimals),
    )
    if latest_pool is None:
        return result

    latest_ts = latest_pool.timestamp
    result.prev_day = previous_metrics(pool_points, price_points, latest_ts, 1, coll_token_decimals)
    result.prev_7_day = previous_metrics(pool_points, price_points, latest_ts, 7, coll_token_decimals)
    result.prev_7_day_redemption_total = redemption_total(events, latest_ts - 7 * SECONDS_PER_DAY)

    for suffix, previous in (("1d", result.prev_day), ("7d", result.prev_7_day)):
        previous = previous or PeriodMetrics()
        result.changes[f"tvl_change_{suffix}"] = percent_change(result.current.col_usd, previous.col_usd)
        result.changes[f"col_ratio_change_{suffix}"] = percent_change(
            result.current.col_ratio, previous.col_ratio
        )
        result.changes[f"col_usd_oracle_change_{suffix}"] = percent_change(
            result.current.col_usd_oracle, previous.col_usd_oracle
        )
    return result


def chain_totals(metrics: Iterable[TroveManagerMetrics]) -> dict[str, Decimal | None]:
    """Sum trove manager metrics into chain-level TVL, debt and stability pool totals."""
    totals: dict[str, Decimal] = {}

    def add(key: str, value: Decimal | None) -> None:
        if value is not None:
            totals[key] = totals.get(key, Decimal(0)) + value

    for m in metrics:
        for prefix, period in (("current", m.current), ("prev_day", m.prev_day), ("prev_7_day", m.prev_7_day)):
            if period is None:
                continue
            add(f"{prefix}_tvl", period.col_usd)
            add(f"{prefix}_debt_bold", period.debt_bold)
            add(f"{prefix}_sp_tvl", period.sp_bold)
        add("prev_7_day_redemption_total", m.prev_7_day_redemption_total)

    result: dict[str, Decimal | None] = dict(totals)
    for prefix in ("current", "prev_day", "prev_7_day"):
        tvl, debt = totals.get(f"{prefix}_tvl"), totals.get(f"{prefix}_debt_bold")
        result[f"{prefix}_col_ratio"] = tvl / debt if tvl is not None and debt else None
    for suffix, prefix in (("1d", "prev_day"), ("7d", "prev_7_day")):
        result[f"tvl_change_{suffix}"] = percent_change(totals.get("current_tvl"), totals.get(f"{prefix}_tvl"))
        result[f"debt_bold_change_{suffix}"] = percent_change(
            totals.get("current_debt_bold"), totals.get(f"{prefix}_debt_bold")
        )
    return result
