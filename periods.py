from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


@dataclass(frozen=True)
class DateRange:
    """Inclusive date bounds; a missing bound is open."""

    slug: str = "all"
    start: Optional[date] = None
    end: Optional[date] = None

    def contains(self, value: date) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True


def _parse(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value)


def resolve_range(
    preset: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> DateRange:
    today = today or date.today()
    if preset == "7d":
        return DateRange("7d", today - timedelta(days=6), today)
    if preset == "30d":
        return DateRange("30d", today - timedelta(days=29), today)
    if preset == "this_month":
        return DateRange("this_month", today.replace(day=1), today)
    if preset == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return DateRange("last_month", last_month_end.replace(day=1), last_month_end)
    if preset == "custom":
        if not start or not end:
            raise ValueError("Custom range requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            start_date, end_date = end_date, start_date
        return DateRange("custom", start_date, end_date)
    if preset and preset != "all":
        raise ValueError(f"Unknown date range: {preset}")

    # free-form bounds, either side optional
    start_date = _parse(start)
    end_date = _parse(end)
    if start_date is None and end_date is None:
        return DateRange()
    return DateRange("between", start_date, end_date)
