import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from dayplanner.errors import ConfigurationError
from dayplanner.recurrence import (
    DailyRecurrence,
    MonthlyRecurrence,
    NoRecurrence,
    WeeklyRecurrence,
    YearlyRecurrence,
    day_of_week,
    iter_pattern_dates,
    parse_recurrence,
    week_of_month,
    week_of_month_from_end,
)
from dayplanner.series import ExceptionAction, build_exception, build_series


@pytest.mark.parametrize(
    "data",
    [
        {"type": "daily", "interval": 0},
        {"type": "weekly", "interval": -2},
        {"type": "weekly", "days_of_week": [7]},
        {"type": "monthly", "days_of_month": [0]},
        {"type": "monthly", "days_of_week": [2]},
        {"type": "monthly", "days_of_week": [2], "by_set_pos": [0]},
        {"type": "yearly", "months_of_year": [13]},
        {"type": "daily", "days_of_week": [1]},
        {"type": "daily", "end_date": "2024-02-01", "count": 3},
        {"type": "fortnightly"},
    ],
)
def test_malformed_patterns_are_rejected(data):
    with pytest.raises(ConfigurationError):
        parse_recurrence(data)


def test_parse_recurrence_builds_the_matching_variant():
    assert parse_recurrence(None) == NoRecurrence()
    assert isinstance(parse_recurrence({"type": "daily", "interval": 3}), DailyRecurrence)
    yearly = parse_recurrence({"type": "yearly", "months_of_year": [7, 1, 7]})
    assert isinstance(yearly, YearlyRecurrence)
    assert yearly.months_of_year == [1, 7]


def test_weekday_sets_are_normalized():
    pattern = parse_recurrence({"type": "weekly", "days_of_week": [3, 1, 3]})
    assert isinstance(pattern, WeeklyRecurrence)
    assert pattern.days_of_week == [1, 3]


def test_weekday_helpers():
    # 2024-01-07 is a Sunday
    assert day_of_week(date(2024, 1, 7)) == 0
    assert day_of_week(date(2024, 1, 6)) == 6
    assert week_of_month(date(2024, 1, 7)) == 1
    assert week_of_month(date(2024, 1, 8)) == 2
    assert week_of_month_from_end(date(2024, 1, 31)) == -1
    assert week_of_month_from_end(date(2024, 1, 24)) == -2


def test_exception_template_required_only_for_modify():
    with pytest.raises(ConfigurationError):
        build_exception(original_date=date(2024, 1, 4), action=ExceptionAction.Modify)
    with pytest.raises(ConfigurationError):
        build_exception(
            original_date=date(2024, 1, 4),
            action=ExceptionAction.Delete,
            modified_template_id=3,
        )
    exc = build_exception(original_date=date(2024, 1, 4), action="modify", modified_template_id=3)
    assert exc.action == ExceptionAction.Modify


def test_series_end_before_start_is_rejected():
    with pytest.raises(ConfigurationError):
        build_series(
            template_id=1,
            owner="alice",
            start_date=date(2024, 1, 10),
            end_date=date(2024, 1, 9),
        )


def test_series_defaults_to_single_day():
    series = build_series(template_id=1, owner="alice", start_date=date(2024, 3, 15))
    assert series.recurrence == NoRecurrence()
    assert series.is_active
    assert series.anchor == date(2024, 3, 15)


def test_iter_monthly_days_of_month():
    pattern = MonthlyRecurrence(days_of_month=[1, 15])
    dates = list(iter_pattern_dates(pattern, date(2024, 1, 1), date(2024, 1, 1), date(2024, 3, 1)))
    assert dates == [
        date(2024, 1, 1),
        date(2024, 1, 15),
        date(2024, 2, 1),
        date(2024, 2, 15),
        date(2024, 3, 1),
    ]


def test_iter_weekly_every_other_week():
    pattern = WeeklyRecurrence(interval=2, days_of_week=[1, 3])
    dates = list(iter_pattern_dates(pattern, date(2024, 1, 1), date(2024, 1, 1), date(2024, 1, 31)))
    assert dates == [
        date(2024, 1, 1),
        date(2024, 1, 3),
        date(2024, 1, 15),
        date(2024, 1, 17),
        date(2024, 1, 29),
        date(2024, 1, 31),
    ]


def test_iter_starting_mid_series():
    pattern = DailyRecurrence(interval=3)
    dates = list(iter_pattern_dates(pattern, date(2024, 1, 1), date(2024, 1, 5), date(2024, 1, 13)))
    assert dates == [date(2024, 1, 7), date(2024, 1, 10), date(2024, 1, 13)]


def test_iter_leap_day_only_in_leap_years():
    pattern = YearlyRecurrence()
    dates = list(
        iter_pattern_dates(pattern, date(2024, 2, 29), date(2024, 1, 1), date(2032, 12, 31))
    )
    assert dates == [date(2024, 2, 29), date(2028, 2, 29), date(2032, 2, 29)]


def test_iter_pattern_that_never_matches_terminates():
    # Every twelve months from February, on the 31st: never exists.
    pattern = MonthlyRecurrence(interval=12, days_of_month=[31])
    assert list(iter_pattern_dates(pattern, date(2024, 2, 1), date(2024, 2, 1), date(2100, 1, 1))) == []
