from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from models import AccountType, GroupType
from money import ZERO, add, tag_amount, to_decimal
from repository import AccountRow, ItemRow, YearSnapshot

logger = logging.getLogger(__name__)

PAYMENT_METHOD = AccountType.payment_method.value
SAVINGS_ITEM = AccountType.savings_item.value

AccountKey = tuple[str, int]
MonthlyDeltas = dict[AccountKey, list[Decimal]]


@dataclass(frozen=True)
class AccountView:
    id: int
    name: str
    institution: Optional[str]
    sort_order: int
    is_account: bool
    is_savings_account: bool
    initial_balance: Decimal
    monthly_balances: tuple[Decimal, ...]

    @property
    def display_name(self) -> str:
        return display_name(self.name, self.institution)


@dataclass(frozen=True)
class AccountsResult:
    accounts: tuple[AccountView, ...] = ()
    last_active_month: int = 0


def display_name(name: str, institution: Optional[str]) -> str:
    return f"{name} ({institution})" if institution else name


def resolve_roots(accounts: tuple[AccountRow, ...]) -> dict[int, int]:
    """
    Map every account id to the display account its balance rolls up to.

    Links are followed transitively. A link pointing at an account that is not
    in the set ends the chain, so the linking account is shown on its own.
    Accounts that sit on a cycle, or whose chain runs into one, have no root
    and are left out of the mapping.
    """
    by_id = {account.id: account for account in accounts}
    roots: dict[int, Optional[int]] = {}
    for account in accounts:
        chain: list[int] = []
        current = account
        while True:
            if current.id in roots:
                root = roots[current.id]
                break
            if current.id in chain:
                root = None
                break
            chain.append(current.id)
            parent_id = current.linked_payment_method_id
            if parent_id is None or parent_id not in by_id:
                root = current.id
                break
            current = by_id[parent_id]
        for account_id in chain:
            roots[account_id] = root
        if root is None:
            logger.warning(f"account_link_cycle: account_id={account.id}")
    return {account_id: root for account_id, root in roots.items() if root is not None}


def _empty_months() -> list[Decimal]:
    return [ZERO] * 12


def _bump(deltas: MonthlyDeltas, key: AccountKey, month: int, amount: Decimal) -> None:
    months = deltas.setdefault(key, _empty_months())
    months[month - 1] = add(months[month - 1], amount)


def _resolve_endpoint(
    account_type: str,
    account_id: int,
    roots: dict[int, int],
    items: dict[int, ItemRow],
) -> Optional[AccountKey]:
    if account_type == SAVINGS_ITEM:
        item = items.get(account_id)
        if item is None:
            return None
        if item.linked_account_id is None:
            return (SAVINGS_ITEM, account_id)
        account_id = item.linked_account_id
    root = roots.get(account_id)
    if root is None:
        return None
    return (PAYMENT_METHOD, root)


def transfer_deltas(
    snapshot: YearSnapshot, roots: Optional[dict[int, int]] = None
) -> MonthlyDeltas:
    """Per-endpoint monthly transfer effect; the values of every month sum to zero."""
    if roots is None:
        roots = resolve_roots(snapshot.accounts)
    items = {item.id: item for item in snapshot.items}
    deltas: MonthlyDeltas = {}
    for transfer in snapshot.transfers:
        source = _resolve_endpoint(
            transfer.source_account_type, transfer.source_account_id, roots, items
        )
        destination = _resolve_endpoint(
            transfer.destination_account_type,
            transfer.destination_account_id,
            roots,
            items,
        )
        # both legs or neither
        if source is None or destination is None or not 1 <= transfer.accounting_month <= 12:
            logger.debug(
                f"transfer_skipped: transfer_id={transfer.id} "
                f"source={transfer.source_account_type}:{transfer.source_account_id} "
                f"destination={transfer.destination_account_type}:{transfer.destination_account_id} "
                f"month={transfer.accounting_month}"
            )
            continue
        amount = to_decimal(transfer.amount)
        _bump(deltas, source, transfer.accounting_month, -amount)
        _bump(deltas, destination, transfer.accounting_month, amount)
    return deltas


def transaction_deltas(
    snapshot: YearSnapshot, roots: Optional[dict[int, int]] = None
) -> MonthlyDeltas:
    if roots is None:
        roots = resolve_roots(snapshot.accounts)
    items = {item.id: item for item in snapshot.items}
    deltas: MonthlyDeltas = {}
    for txn in snapshot.transactions:
        month = txn.accounting_month
        root = roots.get(txn.account_id)
        if root is None or not 1 <= month <= 12:
            logger.debug(
                f"transaction_skipped: transaction_id={txn.id} account_id={txn.account_id} month={month}"
            )
            continue
        item = items.get(txn.item_id) if txn.item_id is not None else None
        group_type = item.group_type if item else None
        _bump(deltas, (PAYMENT_METHOD, root), month, tag_amount(txn.amount, group_type).balance_delta)

        # savings bookings paid from another account also fund the savings account
        if (
            item is not None
            and group_type == GroupType.savings.value
            and item.linked_account_id is not None
            and item.linked_account_id != txn.account_id
        ):
            target = roots.get(item.linked_account_id)
            if target is not None:
                _bump(deltas, (PAYMENT_METHOD, target), month, to_decimal(txn.amount))
    return deltas


def last_active_month(snapshot: YearSnapshot) -> int:
    months = [txn.accounting_month for txn in snapshot.transactions]
    months.extend(transfer.accounting_month for transfer in snapshot.transfers)
    return max((month for month in months if 1 <= month <= 12), default=0)


def compute_account_balances(snapshot: Optional[YearSnapshot]) -> AccountsResult:
    if snapshot is None:
        return AccountsResult()

    roots = resolve_roots(snapshot.accounts)
    initial = {
        row.account_id: to_decimal(row.initial_balance)
        for row in snapshot.balances
        if row.account_type == PAYMENT_METHOD
    }
    changes = transaction_deltas(snapshot, roots)
    transfers = transfer_deltas(snapshot, roots)

    display_accounts = sorted(
        (account for account in snapshot.accounts if roots.get(account.id) == account.id),
        key=lambda account: (account.sort_order, account.id),
    )

    views: list[AccountView] = []
    for account in display_accounts:
        key = (PAYMENT_METHOD, account.id)
        change = changes.get(key, _empty_months())
        moved = transfers.get(key, _empty_months())
        opening = initial.get(account.id, ZERO)
        running = opening
        balances: list[Decimal] = []
        for month in range(12):
            running = add(add(running, change[month]), moved[month])
            balances.append(running)
        views.append(
            AccountView(
                id=account.id,
                name=account.name,
                institution=account.institution,
                sort_order=account.sort_order,
                is_account=account.is_account,
                is_savings_account=account.is_savings_account,
                initial_balance=opening,
                monthly_balances=tuple(balances),
            )
        )

    return AccountsResult(
        accounts=tuple(views), last_active_month=last_active_month(snapshot)
    )


def balance_at_month(
    result: AccountsResult, month_index: int, *, liquid_only: bool = True
) -> Optional[Decimal]:
    """Sum of account balances at the end of the given 0-based month, or None when there is nothing to sum."""
    if month_index < 0:
        return None
    accounts = [
        account
        for account in result.accounts
        if not liquid_only or (account.is_account and not account.is_savings_account)
    ]
    if not accounts:
        return None
    balance = ZERO
    for account in accounts:
        balance = add(balance, account.monthly_balances[min(month_index, 11)])
    return balance


def initial_balance_total(result: AccountsResult) -> Decimal:
    balance = ZERO
    for account in result.accounts:
        if account.is_account and not account.is_savings_account:
            balance = add(balance, account.initial_balance)
    return balance


