from datetime import date
from decimal import Decimal

from projection import (
    BudgetFigures,
    GroupFigures,
    ItemFigures,
    MonthFigures,
    calculate_expected_totals,
    calculate_totals,
    compute_summary,
    current_month_index,
    project_end_of_year,
)


def item(id, budget, actual_months=0, actual=None, yearly="0", extra=None) -> ItemFigures:
    actual = budget if actual is None else actual
    months = []
    for index in range(12):
        spent = Decimal(actual) if index < actual_months else Decimal("0")
        if extra and index in extra:
            spent += Decimal(extra[index])
        months.append(MonthFigures(budget=Decimal(budget), actual=spent))
    return ItemFigures(
        id=id,
        name=f"item-{id}",
        slug=f"item-{id}",
        yearly_budget=Decimal(yearly),
        months=tuple(months),
    )


def group(id, type_, *items) -> GroupFigures:
    return GroupFigures(id=id, name=type_.title(), slug=type_, type=type_, items=items)


def household(settled_months=3):
    return (
        group(1, "income", item(1, "5000", settled_months)),
        group(
            2,
            "expense",
            item(2, "1500", settled_months),
            item(3, "0", yearly="1200", extra={1: "300"}),
        ),
        group(3, "savings", item(4, "500", settled_months)),
    )


def test_totals_include_yearly_budgets() -> None:
    totals = calculate_totals(household())

    assert totals.income.budget == Decimal("60000")
    assert totals.income.actual == Decimal("15000")
    assert totals.expense.budget == Decimal("19200")
    assert totals.expense.actual == Decimal("4800")
    assert totals.savings.budget == Decimal("6000")
    assert totals.savings.actual == Decimal("1500")


def test_expected_totals_mix_actuals_and_remaining_budget() -> None:
    expected = calculate_expected_totals(household(), 2)

    assert expected.income == Decimal("60000")
    # rent 4500 settled + 9 * 1500, travel 300 spent + 900 still open
    assert expected.expense == Decimal("19200")
    assert expected.savings == Decimal("6000")


def test_yearly_overspend_is_not_added_back() -> None:
    groups = (group(2, "expense", item(3, "0", yearly="200", extra={0: "300"})),)

    expected = calculate_expected_totals(groups, 5)

    # 300 spent against 200 planned leaves -100 open, which offsets the overspend
    assert expected.expense == Decimal("200")


def test_expected_totals_in_december_equal_actuals() -> None:
    groups = (
        group(1, "income", item(1, "5000", 12, actual="5100")),
        group(2, "expense", item(2, "1500", 12, actual="1400")),
        group(3, "savings", item(4, "500", 12)),
    )

    expected = calculate_expected_totals(groups, 11)
    totals = calculate_totals(groups)

    assert expected.income == totals.income.actual
    assert expected.expense == totals.expense.actual
    assert expected.savings == totals.savings.actual


def test_projection_without_account_balance_uses_actual_cash_flow() -> None:
    projected = project_end_of_year(household(), 2, initial_balance=Decimal("1000"))

    # 1000 + 15000 - 4800 - 1500 settled, 9 * (5000 - 1500 - 500) ahead, 900 travel left
    assert projected == Decimal("35800")


def test_projection_starts_from_account_balance_when_known() -> None:
    projected = project_end_of_year(
        household(),
        2,
        initial_balance=Decimal("1000"),
        account_balance=Decimal("9000"),
    )

    assert projected == Decimal("35100")


def test_future_year_projects_the_whole_budget() -> None:
    projected = project_end_of_year(
        household(0),
        -1,
        initial_balance=Decimal("1000"),
        account_balance=Decimal("123"),
    )

    # 12 * 3000 planned cash flow, full 1200 yearly budget
    assert projected == Decimal("35800")


def test_current_month_index() -> None:
    today = date(2024, 5, 10)

    assert current_month_index(2023, today) == 11
    assert current_month_index(2024, today) == 4
    assert current_month_index(2025, today) == -1


def test_summary_falls_back_to_year_opening_balance() -> None:
    figures = BudgetFigures(
        year_id=1, year=2024, initial_balance=Decimal("1000"), groups=household()
    )

    summary = compute_summary(figures, 2)

    assert summary.initial_balance == Decimal("1000")
    assert summary.remaining_balance == Decimal("35800")
    assert summary.current_month_index == 2
    assert summary.totals.expense.budget == Decimal("19200")


def test_summary_with_no_groups_keeps_opening_balance() -> None:
    figures = BudgetFigures(year_id=1, year=2024, initial_balance=Decimal("250"))

    summary = compute_summary(figures, 11, initial_balance=Decimal("400"))

    assert summary.initial_balance == Decimal("400")
    assert summary.remaining_balance == Decimal("400")
    assert summary.expected_totals.income == Decimal("0")
