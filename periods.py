from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import ValidationError


@dataclass(frozen=True)
class AccountingPeriod:
    month: int
    year: int


def validate_settlement_day(settlement_day: Optional[int]) -> Optional[int]:
    if settlement_day is None:
        return None
    if not 1 <= settlement_day <= 31:
        raise ValidationError("Settlement day must be between 1 and 31")
    return settlement_day


def validate_period(month: int, year: int) -> AccountingPeriod:
    if not 1 <= month <= 12:
        raise ValidationError("Accounting month must be between 1 and 12")
    if not 1970 <= year <= 3000:
        raise ValidationError("Accounting year out of range")
    return AccountingPeriod(month, year)


def resolve_period(
    txn_date: date, settlement_day: Optional[int]
) -> AccountingPeriod:
    """
    Map a booking date onto the accounting month it settles in.

    With settlement_day=18 the cycle runs from the 18th of month N to the 17th
    of month N+1 and is billed in N+1. Days 29-31 are compared against the raw
    day of month, so a settlement day of 31 never rolls a 30-day month forward.
    """
    if settlement_day is None or txn_date.day < settlement_day:
        return AccountingPeriod(txn_date.month, txn_date.year)
    if txn_date.month == 12:
        return AccountingPeriod(1, txn_date.year + 1)
    return AccountingPeriod(txn_date.month + 1, txn_date.year)


def month_index(month: int) -> int:
    return month - 1
