from decimal import Decimal

from balances import (
    balance_at_month,
    compute_account_balances,
    initial_balance_total,
    resolve_roots,
    transaction_deltas,
    transfer_deltas,
)
from money import ZERO, total
from repository import (
    AccountRow,
    BalanceRow,
    ItemRow,
    TransactionRow,
    TransferRow,
    YearSnapshot,
)


def account(
    id: int,
    name: str = "Checking",
    linked: int = None,
    sort_order: int = 0,
    is_account: bool = True,
    is_savings: bool = False,
    institution: str = None,
) -> AccountRow:
    return AccountRow(
        id=id,
        name=name,
        institution=institution,
        sort_order=sort_order,
        is_account=is_account,
        is_savings_account=is_savings,
        linked_payment_method_id=linked,
    )


def opening(account_id: int, amount: str) -> BalanceRow:
    return BalanceRow("payment_method", account_id, Decimal(amount))


def txn(id: int, account_id: int, item_id, amount: str, month: int) -> TransactionRow:
    return TransactionRow(
        id=id,
        account_id=account_id,
        item_id=item_id,
        amount=Decimal(amount),
        accounting_month=month,
    )


def transfer(id, amount, source, destination, month) -> TransferRow:
    return TransferRow(
        id=id,
        amount=Decimal(amount),
        source_account_type=source[0],
        source_account_id=source[1],
        destination_account_type=destination[0],
        destination_account_id=destination[1],
        accounting_month=month,
    )


def by_id(result):
    return {view.id: view for view in result.accounts}


def test_single_expense_lowers_balance_from_its_month_on() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(account(1),),
        balances=(opening(1, "1000"),),
        transactions=(txn(1, 1, 10, "200", 3),),
        items=(ItemRow(10, "expense"),),
    )

    result = compute_account_balances(snapshot)

    checking = result.accounts[0]
    assert checking.initial_balance == Decimal("1000")
    assert checking.monthly_balances[:2] == (Decimal("1000"), Decimal("1000"))
    assert checking.monthly_balances[2:] == tuple(Decimal("800") for _ in range(10))
    assert result.last_active_month == 3


def test_december_balance_is_opening_plus_every_booking() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(account(1),),
        balances=(opening(1, "1000"),),
        transactions=(
            txn(1, 1, 20, "2500", 1),
            txn(2, 1, 10, "100.10", 2),
            txn(3, 1, 10, "-20.05", 2),
            txn(4, 1, None, "10", 5),
            txn(5, 1, 10, "0.1", 7),
            txn(6, 1, 10, "0.2", 7),
        ),
        items=(ItemRow(10, "expense"), ItemRow(20, "income")),
    )

    result = compute_account_balances(snapshot)

    december = result.accounts[0].monthly_balances[11]
    assert december == Decimal("3409.65")
    assert result.accounts[0].monthly_balances[6] == december


def test_transfers_between_accounts_sum_to_zero_every_month() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(account(1), account(2, "Card"), account(3, "Savings", is_savings=True)),
        transfers=(
            transfer(1, "100", ("payment_method", 1), ("payment_method", 2), 4),
            transfer(2, "50", ("payment_method", 2), ("savings_item", 20), 4),
            transfer(3, "30", ("savings_item", 21), ("payment_method", 1), 6),
        ),
        items=(ItemRow(20, "savings", linked_account_id=3), ItemRow(21, "savings")),
    )

    deltas = transfer_deltas(snapshot)

    for month in range(12):
        assert total(values[month] for values in deltas.values()) == ZERO
    assert deltas[("payment_method", 1)][3] == Decimal("-100")
    assert deltas[("payment_method", 2)][3] == Decimal("50")
    # a savings item linked to an account moves that account
    assert deltas[("payment_method", 3)][3] == Decimal("50")
    # an unlinked savings item keeps its own bucket
    assert deltas[("savings_item", 21)][5] == Decimal("-30")
    assert deltas[("payment_method", 1)][5] == Decimal("30")


def test_transfer_moves_balance_between_accounts() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(account(1), account(2, "Savings")),
        balances=(opening(1, "1000"), opening(2, "0")),
        transfers=(transfer(1, "250", ("payment_method", 1), ("payment_method", 2), 2),),
    )

    views = by_id(compute_account_balances(snapshot))

    assert views[1].monthly_balances[0] == Decimal("1000")
    assert views[1].monthly_balances[1] == Decimal("750")
    assert views[2].monthly_balances[1] == Decimal("250")
    assert views[1].monthly_balances[11] + views[2].monthly_balances[11] == Decimal("1000")


def test_linked_payment_methods_roll_up_into_their_account() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(
            account(1),
            account(2, "Twint", linked=1, is_account=False),
            account(3, "Debit card", linked=2, is_account=False),
        ),
        balances=(opening(1, "500"), opening(2, "999")),
        transactions=(txn(1, 2, 10, "40", 2), txn(2, 3, 10, "10", 3)),
        items=(ItemRow(10, "expense"),),
    )

    result = compute_account_balances(snapshot)

    assert [view.id for view in result.accounts] == [1]
    balances = result.accounts[0].monthly_balances
    assert result.accounts[0].initial_balance == Decimal("500")
    assert balances[1] == Decimal("460")
    assert balances[11] == Decimal("450")


def test_link_cycles_are_left_out() -> None:
    accounts = (
        account(1),
        account(4, "Loop A", linked=5),
        account(5, "Loop B", linked=4),
        account(6, "Into loop", linked=4),
    )

    roots = resolve_roots(accounts)

    assert roots == {1: 1}

    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=accounts,
        balances=(opening(1, "100"),),
        transactions=(txn(1, 4, 10, "70", 1), txn(2, 1, 10, "30", 1)),
        items=(ItemRow(10, "expense"),),
    )
    result = compute_account_balances(snapshot)
    assert [view.id for view in result.accounts] == [1]
    assert result.accounts[0].monthly_balances[0] == Decimal("70")


def test_dangling_link_shows_account_on_its_own() -> None:
    roots = resolve_roots((account(1), account(6, "Old card", linked=99)))

    assert roots == {1: 1, 6: 6}


def test_savings_booking_from_another_account_funds_the_savings_account() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(account(1), account(3, "Savings", is_savings=True)),
        balances=(opening(1, "1000"), opening(3, "5000")),
        transactions=(txn(1, 1, 30, "200", 5),),
        items=(ItemRow(30, "savings", linked_account_id=3),),
    )

    deltas = transaction_deltas(snapshot)
    views = by_id(compute_account_balances(snapshot))

    assert deltas[("payment_method", 1)][4] == Decimal("-200")
    assert deltas[("payment_method", 3)][4] == Decimal("200")
    assert views[1].monthly_balances[11] == Decimal("800")
    assert views[3].monthly_balances[11] == Decimal("5200")


def test_rows_with_unknown_accounts_or_months_are_skipped() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(account(1),),
        balances=(opening(1, "100"),),
        transactions=(txn(1, 42, 10, "50", 2), txn(2, 1, 10, "50", 13)),
        items=(ItemRow(10, "expense"),),
    )

    result = compute_account_balances(snapshot)

    assert result.accounts[0].monthly_balances[11] == Decimal("100")


def test_transfer_with_a_missing_endpoint_is_skipped_whole() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(account(1), account(2, "Card")),
        balances=(opening(1, "1000"), opening(2, "0")),
        transfers=(
            transfer(1, "300", ("payment_method", 99), ("payment_method", 1), 2),
            transfer(2, "40", ("payment_method", 1), ("savings_item", 77), 3),
            transfer(3, "25", ("payment_method", 1), ("payment_method", 2), 4),
        ),
    )

    deltas = transfer_deltas(snapshot)
    views = by_id(compute_account_balances(snapshot))

    assert ("payment_method", 99) not in deltas
    assert ("savings_item", 77) not in deltas
    assert [views[1].monthly_balances[m] for m in (0, 1, 2)] == [Decimal("1000")] * 3
    assert views[1].monthly_balances[11] == Decimal("975")
    assert views[2].monthly_balances[11] == Decimal("25")


def test_accounts_are_ordered_by_sort_order_then_id() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(
            account(3, "C", sort_order=0),
            account(1, "A", sort_order=2),
            account(2, "B", sort_order=0, institution="Bank"),
        ),
    )

    result = compute_account_balances(snapshot)

    assert [view.id for view in result.accounts] == [2, 3, 1]
    assert result.accounts[0].display_name == "B (Bank)"
    assert result.last_active_month == 0


def test_missing_year_yields_empty_result() -> None:
    result = compute_account_balances(None)

    assert result.accounts == ()
    assert result.last_active_month == 0
    assert balance_at_month(result, 5) is None


def test_balance_at_month_sums_liquid_accounts_only() -> None:
    snapshot = YearSnapshot(
        year_id=1,
        year=2024,
        accounts=(
            account(1),
            account(2, "Credit card", is_account=False),
            account(3, "Savings", is_savings=True),
            account(4, "Cash"),
        ),
        balances=(opening(1, "1000"), opening(3, "5000"), opening(4, "50")),
        transactions=(txn(1, 1, 10, "200", 3), txn(2, 2, 10, "80", 3)),
        items=(ItemRow(10, "expense"),),
    )

    result = compute_account_balances(snapshot)

    assert balance_at_month(result, 1) == Decimal("1050")
    assert balance_at_month(result, 2) == Decimal("850")
    assert balance_at_month(result, -1) is None
    assert balance_at_month(result, 2, liquid_only=False) == Decimal("5770")
    assert initial_balance_total(result) == Decimal("1050")
