"""Group-by, time-bucketing and ranking primitives shared by the dashboards."""

from __future__ import annotations

import math
from bisect import bisect_right
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    TypeVar,
)

import pytz

from .classification import UNKNOWN_LABEL

T = TypeVar("T")

DEFAULT_TOP_N = 10


# ---------------------------------------------------------------------------
# Rounding
# ---------------------------------------------------------------------------
# Half-up rounding (toward positive infinity on a tie), so 0.125 -> 0.13 and
# -0.125 -> -0.12.  The builtin ``round`` rounds half to even.


def round_int(value: float) -> int:
    return int(math.floor(value + 0.5))


def round_money(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


def round_tenth(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


# ---------------------------------------------------------------------------
# Group-by
# ---------------------------------------------------------------------------


def _category_values(categories: Iterable[Any]) -> List[str]:
    return [getattr(category, "value", category) for category in categories]


def count_by(
    records: Iterable[T],
    key: Callable[[T], Any],
    categories: Optional[Iterable[Any]] = None,
    *,
    overflow_label: str = UNKNOWN_LABEL,
) -> Dict[str, int]:
    """Count ``records`` per discriminator value.

    With ``categories`` (a closed enumeration) every member is present in the
    result, zero-filled, in declaration order; values outside the enumeration
    are counted under ``overflow_label``, which only appears when non-zero.
    Without ``categories`` the discriminator is free text and keys appear in
    first-seen order; blank values count under ``overflow_label``.
    """
    if categories is None:
        counts: Dict[str, int] = {}
        for record in records:
            value = key(record)
            label = str(value) if value not in (None, "") else overflow_label
            counts[label] = counts.get(label, 0) + 1
        return counts

    members = _category_values(categories)
    tally: Counter = Counter()
    for record in records:
        value = key(record)
        raw = getattr(value, "value", value)
        tally[str(raw) if raw is not None else None] += 1
    result = {member: tally.pop(member, 0) for member in members}
    leftover = sum(tally.values())
    if leftover:
        result[overflow_label] = result.get(overflow_label, 0) + leftover
    return result


def sum_by(
    records: Iterable[T],
    key: Callable[[T], Any],
    value: Callable[[T], float],
    categories: Optional[Iterable[Any]] = None,
    *,
    overflow_label: str = UNKNOWN_LABEL,
) -> Dict[str, float]:
    members = _category_values(categories) if categories is not None else None
    totals: Dict[str, float] = {member: 0.0 for member in members or []}
    for record in records:
        raw = key(record)
        label = str(raw) if raw not in (None, "") else overflow_label
        if members is not None and label not in totals:
            label = overflow_label
        totals[label] = totals.get(label, 0.0) + value(record)
    return totals


# ---------------------------------------------------------------------------
# Time buckets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Bucket:
    key: str
    start: datetime
    end: datetime

    def contains(self, moment: Optional[datetime]) -> bool:
        return moment is not None and self.start <= moment < self.end


def resolve_timezone(tz: Any) -> tzinfo:
    if tz is None:
        return pytz.utc
    if isinstance(tz, str):
        return pytz.timezone(tz)
    return tz


def local_midnight(day: date, tz: Any) -> datetime:
    zone = resolve_timezone(tz)
    naive = datetime.combine(day, time.min)
    if hasattr(zone, "localize"):
        return zone.localize(naive)
    return naive.replace(tzinfo=zone)


def daily_buckets(now: datetime, days: int = 30, tz: Any = None) -> List[Bucket]:
    """``days`` consecutive local-day buckets ending with the day containing ``now``."""
    zone = resolve_timezone(tz)
    today = now.astimezone(zone).date()
    buckets: List[Bucket] = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        buckets.append(
            Bucket(
                key=day.isoformat(),
                start=local_midnight(day, zone),
                end=local_midnight(day + timedelta(days=1), zone),
            )
        )
    return buckets


def _shift_month(year: int, month: int, delta: int) -> tuple:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def monthly_buckets(now: datetime, months: int = 12, tz: Any = None) -> List[Bucket]:
    """``months`` calendar-month buckets ending with the month containing ``now``."""
    zone = resolve_timezone(tz)
    local_now = now.astimezone(zone)
    buckets: List[Bucket] = []
    for offset in range(months - 1, -1, -1):
        year, month = _shift_month(local_now.year, local_now.month, -offset)
        next_year, next_month = _shift_month(year, month, 1)
        buckets.append(
            Bucket(
                key=f"{year:04d}-{month:02d}",
                start=local_midnight(date(year, month, 1), zone),
                end=local_midnight(date(next_year, next_month, 1), zone),
            )
        )
    return buckets


def _bucket_index(buckets: Sequence[Bucket], starts: Sequence[datetime], moment: Optional[datetime]) -> Optional[int]:
    if moment is None or not buckets:
        return None
    index = bisect_right(starts, moment) - 1
    if index < 0 or not buckets[index].contains(moment):
        return None
    return index


def count_in_buckets(
    buckets: Sequence[Bucket],
    records: Iterable[T],
    timestamp: Callable[[T], Optional[datetime]],
) -> List[int]:
    starts = [bucket.start for bucket in buckets]
    counts = [0] * len(buckets)
    for record in records:
        index = _bucket_index(buckets, starts, timestamp(record))
        if index is not None:
            counts[index] += 1
    return counts


def sum_in_buckets(
    buckets: Sequence[Bucket],
    records: Iterable[T],
    timestamp: Callable[[T], Optional[datetime]],
    value: Callable[[T], float],
) -> List[float]:
    starts = [bucket.start for bucket in buckets]
    totals = [0.0] * len(buckets)
    for record in records:
        index = _bucket_index(buckets, starts, timestamp(record))
        if index is not None:
            totals[index] += value(record)
    return totals


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def top_n(
    rows: Iterable[Dict[str, Any]],
    metric: str,
    limit: int = DEFAULT_TOP_N,
    *,
    tie_key: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Return at most ``limit`` rows ordered by ``metric``, highest first.

    Ties keep input order unless ``tie_key`` is given, in which case tied rows
    are ordered ascending by that field.  Rows whose metric is ``None`` sort
    after every numeric value.
    """
    ordered = list(rows)
    if tie_key is not None:
        ordered.sort(key=lambda row: str(row.get(tie_key) or ""))

    def _metric(row: Dict[str, Any]) -> float:
        value = row.get(metric)
        return float("-inf") if value is None else float(value)

    ordered.sort(key=_metric, reverse=True)
    return ordered[: max(0, limit)]


__all__ = [
    "Bucket",
    "DEFAULT_TOP_N",
    "count_by",
    "count_in_buckets",
    "daily_buckets",
    "local_midnight",
    "monthly_buckets",
    "resolve_timezone",
    "round_int",
    "round_money",
    "round_tenth",
    "sum_by",
    "sum_in_buckets",
    "top_n",
]
