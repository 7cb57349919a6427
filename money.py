from __future__ import annotations

from dataclasses import dataclass
from decimal import Context, Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional, Union

MONEY_CONTEXT = Context(prec=20, rounding=ROUND_HALF_UP)
ZERO = Decimal("0")
CENT = Decimal("0.01")

Numeric = Union[Decimal, int, float, str, None]


def to_decimal(value: Numeric) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return MONEY_CONTEXT.plus(value)
    if isinstance(value, float):
        # str() keeps the shortest repr, so 0.1 stays 0.1 instead of its binary expansion
        return MONEY_CONTEXT.create_decimal(str(value))
    return MONEY_CONTEXT.create_decimal(value)


def add(a: Numeric, b: Numeric) -> Decimal:
    return MONEY_CONTEXT.add(to_decimal(a), to_decimal(b))


def sub(a: Numeric, b: Numeric) -> Decimal:
    return MONEY_CONTEXT.subtract(to_decimal(a), to_decimal(b))


def total(values: Iterable[Numeric]) -> Decimal:
    result = ZERO
    for value in values:
        result = MONEY_CONTEXT.add(result, to_decimal(value))
    return result


def quantize_cents(value: Numeric) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_number(value: Numeric) -> float:
    return float(to_decimal(value))


class Direction(str, Enum):
    income = "income"
    expense = "expense"
    refund = "refund"


@dataclass(frozen=True)
class TaggedAmount:
    magnitude: Decimal
    direction: Direction

    @property
    def balance_delta(self) -> Decimal:
        if self.direction == Direction.expense:
            return MONEY_CONTEXT.minus(self.magnitude)
        return self.magnitude


def tag_amount(amount: Numeric, group_type: Optional[str]) -> TaggedAmount:
    """
    Classify a stored signed amount by the type of the group it is booked on.

    Income groups credit the paying account (a negative income is a clawback
    and debits it). Every other group, including unclassified rows, debits the
    account; a negative amount there is a refund and credits it back.
    """
    value = to_decimal(amount)
    magnitude = MONEY_CONTEXT.abs(value)
    negative = value < ZERO
    if group_type == "income":
        direction = Direction.expense if negative else Direction.income
    else:
        direction = Direction.refund if negative else Direction.expense
    return TaggedAmount(magnitude=magnitude, direction=direction)
