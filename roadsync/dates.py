"""Date-range presets for ``fetch_cards_by_date_range``."""

from datetime import date, timedelta

from roadsync.models import DateField, DateRangeFilter


def _today(today: date | None) -> date:
    return today or date.today()


def last_month_range(today: date | None = None, date_field: DateField = "updated") -> DateRangeFilter:
    """The whole previous calendar month."""
    first_of_this_month = _today(today).replace(day=1)
    end = first_of_this_month - timedelta(days=1)
    return DateRangeFilter(start_date=end.replace(day=1), end_date=end, date_field=date_field)


def last_week_range(today: date | None = None, date_field: DateField = "updated") -> DateRangeFilter:
    """The last seven days, today included."""
    return last_days_range(7, today, date_field)


def last_days_range(days: int, today: date | None = None, date_field: DateField = "updated") -> DateRangeFilter:
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise ValueError(f"days must be a positive integer, got {days!r}")
    end = _today(today)
    return DateRangeFilter(start_date=end - timedelta(days=days - 1), end_date=end, date_field=date_field)


def custom_range(start: date | str, end: date | str, date_field: DateField = "updated") -> DateRangeFilter:
    start_date = date.fromisoformat(start) if isinstance(start, str) else start
    end_date = date.fromisoformat(end) if isinstance(end, str) else end
    if start_date > end_date:
        raise ValueError(f"start date {start_date} is after end date {end_date}")
    return DateRangeFilter(start_date=start_date, end_date=end_date, date_field=date_field)
