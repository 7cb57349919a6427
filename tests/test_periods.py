from datetime import date

import pytest

from errors import ValidationError
from periods import (
    AccountingPeriod,
    month_index,
    resolve_period,
    validate_period,
    validate_settlement_day,
)


def test_no_settlement_day_keeps_calendar_month() -> None:
    assert resolve_period(date(2024, 3, 31), None) == AccountingPeriod(3, 2024)
    assert resolve_period(date(2024, 12, 31), None) == AccountingPeriod(12, 2024)


def test_booking_before_settlement_day_stays_in_month() -> None:
    assert resolve_period(date(2024, 3, 17), 18) == AccountingPeriod(3, 2024)


def test_booking_on_settlement_day_rolls_to_next_month() -> None:
    assert resolve_period(date(2024, 3, 18), 18) == AccountingPeriod(4, 2024)
    assert resolve_period(date(2024, 3, 25), 18) == AccountingPeriod(4, 2024)


def test_january_cycle_with_settlement_day_18() -> None:
    assert resolve_period(date(2024, 1, 17), 18) == AccountingPeriod(1, 2024)
    assert resolve_period(date(2024, 1, 18), 18) == AccountingPeriod(2, 2024)


def test_december_rolls_into_january_of_next_year() -> None:
    assert resolve_period(date(2024, 12, 20), 18) == AccountingPeriod(1, 2025)
    assert resolve_period(date(2024, 12, 17), 18) == AccountingPeriod(12, 2024)


def test_late_settlement_day_never_reached_in_short_month() -> None:
    # no 31st in April, so the whole month settles in April
    assert resolve_period(date(2024, 4, 30), 31) == AccountingPeriod(4, 2024)
    assert resolve_period(date(2024, 2, 29), 30) == AccountingPeriod(2, 2024)
    assert resolve_period(date(2024, 5, 31), 31) == AccountingPeriod(6, 2024)


def test_settlement_day_of_one_moves_every_booking_forward() -> None:
    assert resolve_period(date(2024, 1, 1), 1) == AccountingPeriod(2, 2024)
    assert resolve_period(date(2024, 11, 30), 1) == AccountingPeriod(12, 2024)


def test_validate_settlement_day_bounds() -> None:
    assert validate_settlement_day(None) is None
    assert validate_settlement_day(1) == 1
    assert validate_settlement_day(31) == 31
    with pytest.raises(ValidationError):
        validate_settlement_day(0)
    with pytest.raises(ValidationError):
        validate_settlement_day(32)


def test_validate_period_rejects_bad_month_and_year() -> None:
    assert validate_period(12, 2024) == AccountingPeriod(12, 2024)
    with pytest.raises(ValidationError):
        validate_period(13, 2024)
    with pytest.raises(ValidationError):
        validate_period(0, 2024)
    with pytest.raises(ValidationError):
        validate_period(6, 1969)


def test_month_index_is_zero_based() -> None:
    assert month_index(1) == 0
    assert month_index(12) == 11
