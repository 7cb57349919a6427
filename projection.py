from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from money import ZERO, add, sub, to_decimal

SECTIONS = ("income", "expense", "savings")


@dataclass(frozen=True)
class MonthFigures:
    budget: Decimal = ZERO
    actual: Decimal = ZERO


@dataclass(frozen=True)
class ItemFigures:
    id: int
    name: str
    slug: str
    yearly_budget: Decimal = ZERO
    months: tuple[MonthFigures, ...] = field(
        default_factory=lambda: tuple(MonthFigures() for _ in range(12))
    )
    linked_account_id: Optional[int] = None


@dataclass(frozen=True)
class GroupFigures:
    id: int
    name: str
    slug: str
    type: str
    sort_order: int = 0
    items: tuple[ItemFigures, ...] = ()


@dataclass(frozen=True)
class BudgetFigures:
    year_id: int
    year: int
    initial_balance: Decimal
    groups: tuple[GroupFigures, ...] = ()


@dataclass(frozen=True)
class SectionTotal:
    budget: Decimal = ZERO
    actual: Decimal = ZERO


@dataclass(frozen=True)
class Totals:
    income: SectionTotal = SectionTotal()
    expense: SectionTotal = SectionTotal()
    savings: SectionTotal = SectionTotal()


@dataclass(frozen=True)
class ExpectedTotals:
    income: Decimal = ZERO
    expense: Decimal = ZERO
    savings: Decimal = ZERO


@dataclass(frozen=True)
class Summary:
    initial_balance: Decimal
    totals: Totals
    expected_totals: ExpectedTotals
    remaining_balance: Decimal
    current_month_index: int


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def current_month_index(year: int, today: Optional[date] = None) -> int:
    """0-based index of the last month that counts as settled for ``year``; -1 when none has."""
    today = today or local_today()
    if year < today.year:
        return 11
    if year > today.year:
        return -1
    return today.month - 1


def _section(group_type: object) -> str:
    return str(getattr(group_type, "value", group_type))


def _sections(groups: Iterable[GroupFigures]) -> dict[str, list[ItemFigures]]:
    by_section: dict[str, list[ItemFigures]] = {section: [] for section in SECTIONS}
    for group in groups:
        section = _section(group.type)
        if section in by_section:
            by_section[section].extend(group.items)
    return by_section


def _month(item: ItemFigures, index: int) -> MonthFigures:
    if index < len(item.months):
        return item.months[index]
    return MonthFigures()


def _actual_through(item: ItemFigures, month_index: int) -> Decimal:
    spent = ZERO
    for index in range(min(month_index, 11) + 1):
        spent = add(spent, _month(item, index).actual)
    return spent


def _remaining_yearly(item: ItemFigures, month_index: int) -> Decimal:
    yearly = to_decimal(item.yearly_budget)
    if yearly <= ZERO:
        return ZERO
    return sub(yearly, _actual_through(item, month_index))


def calculate_totals(groups: Iterable[GroupFigures]) -> Totals:
    """Budget is every monthly budget plus the yearly budget; actual is every monthly actual."""
    results: dict[str, SectionTotal] = {}
    for section, items in _sections(groups).items():
        budget = ZERO
        actual = ZERO
        for item in items:
            budget = add(budget, item.yearly_budget)
            for index in range(12):
                month = _month(item, index)
                budget = add(budget, month.budget)
                actual = add(actual, month.actual)
        results[section] = SectionTotal(budget=budget, actual=actual)
    return Totals(**results)


def calculate_expected_totals(
    groups: Iterable[GroupFigures], month_index: int
) -> ExpectedTotals:
    results: dict[str, Decimal] = {}
    for section, items in _sections(groups).items():
        expected = ZERO
        for item in items:
            for index in range(12):
                month = _month(item, index)
                expected = add(expected, month.actual if index <= month_index else month.budget)
            expected = add(expected, _remaining_yearly(item, month_index))
        results[section] = expected
    return ExpectedTotals(**results)


def project_end_of_year(
    groups: Iterable[GroupFigures],
    month_index: int,
    *,
    initial_balance: Decimal,
    account_balance: Optional[Decimal] = None,
) -> Decimal:
    """
    Projected balance at the end of December.

    Settled months contribute what actually happened: the balance of the
    liquid accounts at ``month_index`` when it is known, otherwise the opening
    balance plus income minus expense and savings actuals. Later months
    contribute their budgeted cash flow. Yearly budgets contribute whatever
    is left of them after the actuals booked so far.
    """
    by_section = _sections(groups)
    signs = {"income": 1, "expense": -1, "savings": -1}

    if account_balance is not None and month_index >= 0:
        projected = to_decimal(account_balance)
    else:
        projected = to_decimal(initial_balance)
        for section, items in by_section.items():
            for item in items:
                settled = _actual_through(item, month_index) if month_index >= 0 else ZERO
                projected = add(projected, settled) if signs[section] > 0 else sub(projected, settled)

    for section, items in by_section.items():
        for item in items:
            for index in range(month_index + 1, 12):
                budget = _month(item, index).budget
                projected = add(projected, budget) if signs[section] > 0 else sub(projected, budget)
            remaining = _remaining_yearly(item, month_index)
            projected = add(projected, remaining) if signs[section] > 0 else sub(projected, remaining)

    return projected


def compute_summary(
    budget: BudgetFigures,
    month_index: int,
    *,
    initial_balance: Optional[Decimal] = None,
    account_balance: Optional[Decimal] = None,
) -> Summary:
    opening = to_decimal(
        budget.initial_balance if initial_balance is None else initial_balance
    )
    return Summary(
        initial_balance=opening,
        totals=calculate_totals(budget.groups),
        expected_totals=calculate_expected_totals(budget.groups, month_index),
        remaining_balance=project_end_of_year(
            budget.groups,
            month_index,
            initial_balance=opening,
            account_balance=account_balance,
        ),
        current_month_index=month_index,
    )
