"""Tests for roadsync.dates."""

from datetime import date

import pytest

from roadsync.dates import custom_range, last_days_range, last_month_range, last_week_range


def test_last_month_range() -> None:
    date_filter = last_month_range(date(2024, 3, 15))
    assert date_filter.start_date == date(2024, 2, 1)
    assert date_filter.end_date == date(2024, 2, 29)
    assert date_filter.date_field == "updated"


def test_last_month_range_crosses_year() -> None:
    date_filter = last_month_range(date(2024, 1, 1), date_field="created")
    assert date_filter.start_date == date(2023, 12, 1)
    assert date_filter.end_date == date(2023, 12, 31)
    assert date_filter.date_field == "created"


def test_last_week_includes_today() -> None:
    date_filter = last_week_range(date(2024, 5, 10))
    assert date_filter.start_date == date(2024, 5, 4)
    assert date_filter.end_date == date(2024, 5, 10)


def test_last_days_range() -> None:
    date_filter = last_days_range(1, date(2024, 5, 10))
    assert date_filter.start_date == date_filter.end_date == date(2024, 5, 10)


@pytest.mark.parametrize("days", [0, -3, True, 2.5])
def test_last_days_range_rejects_non_positive(days: object) -> None:
    with pytest.raises(ValueError):
        last_days_range(days, date(2024, 5, 10))  # type: ignore[arg-type]


def test_custom_range_parses_strings() -> None:
    date_filter = custom_range("2024-01-01", "2024-01-31")
    assert date_filter.start_date == date(2024, 1, 1)
    assert date_filter.end_date == date(2024, 1, 31)


def test_custom_range_rejects_inverted() -> None:
    with pytest.raises(ValueError, match="after end date"):
        custom_range(date(2024, 2, 1), date(2024, 1, 1))
