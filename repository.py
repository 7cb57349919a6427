from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy import select

from models import (
    AccountBalance,
    AccountType,
    BudgetGroup,
    BudgetItem,
    BudgetYear,
    PaymentMethod,
    Transaction,
    Transfer,
)
from tenancy import TenantSession


@dataclass(frozen=True)
class AccountRow:
    id: int
    name: str
    institution: Optional[str]
    sort_order: int
    is_account: bool
    is_savings_account: bool
    linked_payment_method_id: Optional[int] = None


@dataclass(frozen=True)
class BalanceRow:
    account_type: str
    account_id: int
    initial_balance: Decimal


@dataclass(frozen=True)
class TransactionRow:
    id: int
    account_id: int
    item_id: Optional[int]
    amount: Decimal
    accounting_month: int


@dataclass(frozen=True)
class TransferRow:
    id: int
    amount: Decimal
    source_account_type: str
    source_account_id: int
    destination_account_type: str
    destination_account_id: int
    accounting_month: int


@dataclass(frozen=True)
class ItemRow:
    id: int
    group_type: Optional[str]
    linked_account_id: Optional[int] = None


@dataclass(frozen=True)
class YearSnapshot:
    """Everything the balance aggregator reads for one fiscal year, detached from the session."""

    year_id: int
    year: int
    accounts: tuple[AccountRow, ...] = ()
    balances: tuple[BalanceRow, ...] = ()
    transactions: tuple[TransactionRow, ...] = ()
    transfers: tuple[TransferRow, ...] = ()
    items: tuple[ItemRow, ...] = ()


class LedgerRepository(Protocol):
    def load_year_snapshot(self, fiscal_year: int) -> Optional[YearSnapshot]: ...


def _enum_value(value: object) -> str:
    return getattr(value, "value", value)  # type: ignore[return-value]


class SqlLedgerRepository:
    def __init__(self, db: TenantSession) -> None:
        self.db = db

    def find_year(self, year: int) -> Optional[BudgetYear]:
        budget_id = self.db.require_budget()
        return self.db.scalar(
            select(BudgetYear).where(
                BudgetYear.budget_id == budget_id, BudgetYear.year == year
            )
        )

    def load_year_snapshot(self, fiscal_year: int) -> Optional[YearSnapshot]:
        budget_id = self.db.require_budget()
        budget_year = self.find_year(fiscal_year)
        if not budget_year:
            return None

        accounts = tuple(
            AccountRow(
                id=pm.id,
                name=pm.name,
                institution=pm.institution,
                sort_order=pm.sort_order,
                is_account=pm.is_account,
                is_savings_account=pm.is_savings_account,
                linked_payment_method_id=pm.linked_payment_method_id,
            )
            for pm in self.db.scalars(
                select(PaymentMethod)
                .where(PaymentMethod.user_id == self.db.user_id)
                .order_by(PaymentMethod.sort_order, PaymentMethod.id)
            )
        )

        balances = tuple(
            BalanceRow(
                account_type=_enum_value(row.account_type),
                account_id=row.account_id,
                initial_balance=row.initial_balance,
            )
            for row in self.db.scalars(
                select(AccountBalance)
                .where(AccountBalance.year_id == budget_year.id)
                .execution_options(populate_existing=True)
            )
        )

        # accounting_year rather than year_id: a December booking on a card
        # with a settlement day lands in January of the following year
        transactions = tuple(
            TransactionRow(
                id=txn.id,
                account_id=txn.account_id,
                item_id=txn.item_id,
                amount=txn.amount,
                accounting_month=txn.accounting_month,
            )
            for txn in self.db.scalars(
                select(Transaction)
                .join(BudgetYear, Transaction.year_id == BudgetYear.id)
                .where(
                    BudgetYear.budget_id == budget_id,
                    Transaction.accounting_year == fiscal_year,
                )
                .order_by(Transaction.id)
            )
        )

        transfers = tuple(
            TransferRow(
                id=transfer.id,
                amount=transfer.amount,
                source_account_type=_enum_value(transfer.source_account_type),
                source_account_id=transfer.source_account_id,
                destination_account_type=_enum_value(transfer.destination_account_type),
                destination_account_id=transfer.destination_account_id,
                accounting_month=transfer.accounting_month,
            )
            for transfer in self.db.scalars(
                select(Transfer)
                .join(BudgetYear, Transfer.year_id == BudgetYear.id)
                .where(
                    BudgetYear.budget_id == budget_id,
                    Transfer.accounting_year == fiscal_year,
                )
                .order_by(Transfer.id)
            )
        )

        item_ids = {txn.item_id for txn in transactions if txn.item_id is not None}
        for transfer in transfers:
            if transfer.source_account_type == AccountType.savings_item.value:
                item_ids.add(transfer.source_account_id)
            if transfer.destination_account_type == AccountType.savings_item.value:
                item_ids.add(transfer.destination_account_id)

        items: tuple[ItemRow, ...] = ()
        if item_ids:
            rows = self.db.execute(
                select(BudgetItem.id, BudgetGroup.type, BudgetItem.linked_account_id)
                .join(BudgetYear, BudgetItem.year_id == BudgetYear.id)
                .outerjoin(BudgetGroup, BudgetItem.group_id == BudgetGroup.id)
                .where(BudgetYear.budget_id == budget_id, BudgetItem.id.in_(item_ids))
            ).all()
            items = tuple(
                ItemRow(
                    id=item_id,
                    group_type=_enum_value(group_type) if group_type else None,
                    linked_account_id=linked_account_id,
                )
                for item_id, group_type, linked_account_id in rows
            )

        return YearSnapshot(
            year_id=budget_year.id,
            year=budget_year.year,
            accounts=accounts,
            balances=balances,
            transactions=transactions,
            transfers=transfers,
            items=items,
        )
