"""Calendar windows used by dashboard and revenue analytics.

All windows are half-open ``[start, next_start)`` and computed in UTC.
"""

import calendar as cal
from datetime import datetime, timedelta

from billing_metrics.models.shared import ensure_utc
from billing_metrics.schemas.metrics import PeriodKind

# How far back revenue analytics look when no start date is given
DEFAULT_LOOKBACK: dict[PeriodKind, int] = {
    PeriodKind.DAILY: 30,
    PeriodKind.WEEKLY: 12,
    PeriodKind.MONTHLY: 12,
    PeriodKind.QUARTERLY: 4,
    PeriodKind.YEARLY: 5,
}


def _add_months(dt: datetime, months: int) -> datetime:
    """Add months to a datetime, clamping to last day of month."""
    month = dt.month - 1 + months
    year = dt.year + month // 12
    month = month % 12 + 1
    max_day = cal.monthrange(year, month)[1]
    day = min(dt.day, max_day)
    return dt.replace(year=year, month=month, day=day)


def add_periods(dt: datetime, kind: PeriodKind, count: int = 1) -> datetime:
    """Shift a datetime by ``count`` periods (negative to go back)."""
    if kind == PeriodKind.DAILY:
        return dt + timedelta(days=count)
    elif kind == PeriodKind.WEEKLY:
        return dt + timedelta(weeks=count)
    elif kind == PeriodKind.MONTHLY:
        return _add_months(dt, count)
    elif kind == PeriodKind.QUARTERLY:
        return _add_months(dt, 3 * count)
    elif kind == PeriodKind.YEARLY:
        return _add_months(dt, 12 * count)
    raise ValueError(f"Unknown period kind: {kind}")


def period_start(reference: datetime, kind: PeriodKind) -> datetime:
    """Get the start of the calendar period containing the reference date."""
    midnight = ensure_utc(reference).replace(hour=0, minute=0, second=0, microsecond=0)
    if kind == PeriodKind.DAILY:
        return midnight
    elif kind == PeriodKind.WEEKLY:
        # Week starts on Monday
        return midnight - timedelta(days=midnight.weekday())
    elif kind == PeriodKind.MONTHLY:
        return midnight.replace(day=1)
    elif kind == PeriodKind.QUARTERLY:
        quarter_start_month = ((midnight.month - 1) // 3) * 3 + 1
        return midnight.replace(month=quarter_start_month, day=1)
    elif kind == PeriodKind.YEARLY:
        return midnight.replace(month=1, day=1)
    raise ValueError(f"Unknown period kind: {kind}")


def period_window(reference: datetime, kind: PeriodKind) -> tuple[datetime, datetime]:
    start = period_start(reference, kind)
    return start, add_periods(start, kind)


def month_window(now: datetime) -> tuple[datetime, datetime]:
    return period_window(now, PeriodKind.MONTHLY)


def previous_month_window(now: datetime) -> tuple[datetime, datetime]:
    start, _ = month_window(now)
    return add_periods(start, PeriodKind.MONTHLY, -1), start


def year_window(now: datetime) -> tuple[datetime, datetime]:
    return period_window(now, PeriodKind.YEARLY)


def period_label(start: datetime, kind: PeriodKind) -> str:
    if kind == PeriodKind.DAILY:
        return start.strftime("%Y-%m-%d")
    elif kind == PeriodKind.WEEKLY:
        iso_year, iso_week, _ = start.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    elif kind == PeriodKind.MONTHLY:
        return start.strftime("%Y-%m")
    elif kind == PeriodKind.QUARTERLY:
        return f"{start.year}-Q{(start.month - 1) // 3 + 1}"
    elif kind == PeriodKind.YEARLY:
        return str(start.year)
    raise ValueError(f"Unknown period kind: {kind}")


def default_range(kind: PeriodKind, now: datetime) -> tuple[datetime, datetime]:
    """Default analytics range: the last N periods up to ``now``, current one included."""
    lookback = DEFAULT_LOOKBACK[kind]
    start = add_periods(period_start(now, kind), kind, -(lookback - 1))
    return start, ensure_utc(now)


def split_range(
    start: datetime, end: datetime, kind: PeriodKind, max_buckets: int
) -> list[tuple[datetime, datetime]]:
    """Calendar-aligned buckets from the one containing ``start`` to the one containing ``end``.

    Raises ValueError when more than ``max_buckets`` buckets would be produced.
    """
    buckets: list[tuple[datetime, datetime]] = []
    current = period_start(start, kind)
    end = ensure_utc(end)
    while current <= end:
        if len(buckets) >= max_buckets:
            raise ValueError(f"Range spans more than {max_buckets} {kind.value} periods")
        following = add_periods(current, kind)
        buckets.append((current, following))
        current = following
    return buckets
