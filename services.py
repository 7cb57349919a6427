from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from balances import (
    AccountsResult,
    balance_at_month,
    compute_account_balances,
    display_name,
    initial_balance_total,
)
from errors import (
    AlreadyExists,
    ConstraintViolation,
    DuplicatePaymentMethod,
    NotFound,
    ValidationError,
)
from models import (
    AccountBalance,
    AccountType,
    Budget,
    BudgetGroup,
    BudgetItem,
    BudgetYear,
    GroupType,
    MonthlyValue,
    PaymentMethod,
    Transaction,
    Transfer,
)
from money import ZERO, quantize_cents, to_decimal, to_number
from periods import (
    AccountingPeriod,
    resolve_period,
    validate_period,
    validate_settlement_day,
)
from projection import (
    BudgetFigures,
    GroupFigures,
    ItemFigures,
    MonthFigures,
    Summary,
    compute_summary,
    current_month_index,
)
from repository import LedgerRepository, SqlLedgerRepository
from schemas import (
    AccountOut,
    AccountRef,
    AccountsResponse,
    AnnualTotals,
    BudgetDataOut,
    BudgetGroupOut,
    BudgetItemOut,
    ExpectedTotals,
    GroupIn,
    GroupUpdate,
    ItemIn,
    ItemUpdate,
    MonthlyAmounts,
    MonthlyValueIn,
    PaymentMethodIn,
    PaymentMethodUpdate,
    ReorderEntry,
    SectionTotals,
    SummaryOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    TransferIn,
    TransferOut,
    TransferUpdate,
)
from tenancy import TenantSession

logger = logging.getLogger(__name__)

UNCLASSIFIED_GROUP_NAME = "Unclassified"
UNCLASSIFIED_GROUP_SLUG = "unclassified"
UNCLASSIFIED_ITEM_NAME = "Unclassified"
UNCLASSIFIED_ITEM_SLUG = "unclassified"
UNCLASSIFIED_SORT_ORDER = 9999

SAVINGS_GROUP_NAME = "Savings"
SAVINGS_GROUP_SLUG = "savings"

UNKNOWN_ACCOUNT_NAME = "Unknown"


def upsert(
    db: TenantSession,
    model: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_fields: Iterable[str],
) -> None:
    """INSERT ... ON CONFLICT (index_elements) DO UPDATE for SQLite and PostgreSQL."""
    dialect = db.dialect_name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise RuntimeError(f"Upsert is not supported on {dialect}")
    stmt = stmt.values(**values)
    set_ = {name: stmt.excluded[name] for name in update_fields}
    # on_conflict_do_update skips Python-side onupdate hooks
    set_["updated_at"] = datetime.utcnow()
    db.execute(stmt.on_conflict_do_update(index_elements=index_elements, set_=set_))


def _blank(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _new_monthly_values() -> list[MonthlyValue]:
    return [MonthlyValue(month=month, budget=ZERO, actual=ZERO) for month in range(1, 13)]


def resolve_budget_id(db: TenantSession, requested: Optional[int] = None) -> int:
    """Budget the user works in: the requested one if they own it, else their first, created on demand."""
    if requested is not None:
        budget = db.get(Budget, requested)
        if not budget or budget.user_id != db.user_id:
            raise NotFound("Budget not found")
        return budget.id
    budget = db.scalar(
        select(Budget).where(Budget.user_id == db.user_id).order_by(Budget.id).limit(1)
    )
    if not budget:
        budget = Budget(user_id=db.user_id, description="Default budget")
        db.add(budget)
        db.flush()
        logger.info(f"budget_created: user_id={db.user_id} budget_id={budget.id}")
    return budget.id


class YearService:
    def __init__(self, db: TenantSession) -> None:
        self.db = db

    def list_all(self) -> list[BudgetYear]:
        budget_id = self.db.require_budget()
        return list(
            self.db.scalars(
                select(BudgetYear)
                .where(BudgetYear.budget_id == budget_id)
                .order_by(BudgetYear.year)
            )
        )

    def find(self, year: int) -> Optional[BudgetYear]:
        budget_id = self.db.require_budget()
        return self.db.scalar(
            select(BudgetYear).where(
                BudgetYear.budget_id == budget_id, BudgetYear.year == year
            )
        )

    def get(self, year: int) -> BudgetYear:
        budget_year = self.find(year)
        if not budget_year:
            raise NotFound("Year not found")
        return budget_year

    def get_by_id(self, year_id: int) -> BudgetYear:
        budget_id = self.db.require_budget()
        budget_year = self.db.get(BudgetYear, year_id)
        if not budget_year or budget_year.budget_id != budget_id:
            raise NotFound("Year not found")
        return budget_year

    def get_or_create(self, year: int) -> BudgetYear:
        return self.find(year) or self.create(year)

    def create(self, year: int, initial_balance: Optional[Decimal] = None) -> BudgetYear:
        budget_id = self.db.require_budget()
        validate_period(1, year)
        if self.find(year):
            raise AlreadyExists(f"Year {year} already exists")
        budget_year = BudgetYear(
            budget_id=budget_id,
            year=year,
            initial_balance=quantize_cents(initial_balance),
        )
        self.db.add(budget_year)
        try:
            self.db.flush()
        except IntegrityError as exc:
            # a concurrent request created the same year between the check and the insert
            raise AlreadyExists(f"Year {year} already exists") from exc
        logger.info(f"year_created: budget_id={budget_id} year={year}")
        return budget_year

    def update_initial_balance(self, year_id: int, initial_balance: Decimal) -> BudgetYear:
        budget_year = self.get_by_id(year_id)
        budget_year.initial_balance = quantize_cents(initial_balance)
        self.db.flush()
        logger.info(
            f"year_updated: year_id={year_id} initial_balance={budget_year.initial_balance}"
        )
        return budget_year


class GroupService:
    def __init__(self, db: TenantSession) -> None:
        self.db = db

    def list_all(self) -> list[BudgetGroup]:
        budget_id = self.db.require_budget()
        return list(
            self.db.scalars(
                select(BudgetGroup)
                .where(BudgetGroup.budget_id == budget_id)
                .order_by(BudgetGroup.sort_order, BudgetGroup.id)
            )
        )

    def get(self, group_id: int) -> BudgetGroup:
        budget_id = self.db.require_budget()
        group = self.db.get(BudgetGroup, group_id)
        if not group or group.budget_id != budget_id:
            raise NotFound("Group not found")
        return group

    def find_by_slug(self, slug: str) -> Optional[BudgetGroup]:
        budget_id = self.db.require_budget()
        return self.db.scalar(
            select(BudgetGroup).where(
                BudgetGroup.budget_id == budget_id, BudgetGroup.slug == slug
            )
        )

    def create(self, data: GroupIn) -> BudgetGroup:
        budget_id = self.db.require_budget()
        if self.find_by_slug(data.slug):
            raise AlreadyExists(f'Group "{data.slug}" already exists')
        group = BudgetGroup(
            budget_id=budget_id,
            name=data.name,
            slug=data.slug,
            type=data.type,
            sort_order=data.sort_order,
        )
        self.db.add(group)
        self.db.flush()
        logger.info(f"group_created: group_id={group.id} slug={group.slug} type={group.type.value}")
        return group

    def update(self, group_id: int, data: GroupUpdate) -> BudgetGroup:
        group = self.get(group_id)
        if data.slug is not None and data.slug != group.slug:
            if self.find_by_slug(data.slug):
                raise AlreadyExists(f'Group "{data.slug}" already exists')
            group.slug = data.slug
        if data.name is not None:
            group.name = data.name
        if data.type is not None:
            group.type = data.type
        if data.sort_order is not None:
            group.sort_order = data.sort_order
        self.db.flush()
        logger.info(f"group_updated: group_id={group.id}")
        return group

    def delete(self, group_id: int) -> None:
        group = self.get(group_id)
        # items of every year go with the group; monthly values cascade from the items
        for item in self.db.scalars(
            select(BudgetItem).where(BudgetItem.group_id == group.id)
        ):
            self.db.delete(item)
        self.db.delete(group)
        self.db.flush()
        logger.info(f"group_deleted: group_id={group_id}")

    def reorder(self, entries: list[ReorderEntry]) -> None:
        budget_id = self.db.require_budget()
        ids = {entry.id for entry in entries}
        owned = set(
            self.db.scalars(
                select(BudgetGroup.id).where(
                    BudgetGroup.budget_id == budget_id, BudgetGroup.id.in_(ids)
                )
            )
        )
        missing = sorted(ids - owned)
        if missing:
            raise NotFound(f"Groups not found: {', '.join(str(i) for i in missing)}")
        for entry in entries:
            self.db.execute(
                update(BudgetGroup)
                .where(BudgetGroup.id == entry.id)
                .values(sort_order=entry.sort_order, updated_at=datetime.utcnow())
            )
        logger.info(f"groups_reordered: budget_id={budget_id} count={len(entries)}")


class ItemService:
    def __init__(self, db: TenantSession) -> None:
        self.db = db

    def get(self, item_id: int) -> BudgetItem:
        budget_id = self.db.require_budget()
        item = self.db.scalar(
            select(BudgetItem)
            .join(BudgetYear, BudgetItem.year_id == BudgetYear.id)
            .where(BudgetItem.id == item_id, BudgetYear.budget_id == budget_id)
        )
        if not item:
            raise NotFound("Item not found")
        return item

    def create(self, data: ItemIn) -> BudgetItem:
        budget_year = YearService(self.db).get_by_id(data.year_id)
        if data.group_id is not None:
            GroupService(self.db).get(data.group_id)
        item = BudgetItem(
            year_id=budget_year.id,
            group_id=data.group_id,
            name=data.name,
            slug=data.slug,
            sort_order=data.sort_order,
            yearly_budget=quantize_cents(data.yearly_budget),
            monthly_values=_new_monthly_values(),
        )
        self.db.add(item)
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise AlreadyExists(f'Item "{data.slug}" already exists') from exc
        logger.info(f"item_created: item_id={item.id} year_id={item.year_id} group_id={item.group_id}")
        return item

    def update(self, item_id: int, data: ItemUpdate) -> BudgetItem:
        item = self.get(item_id)
        if data.name is not None:
            item.name = data.name
        if data.slug is not None:
            item.slug = data.slug
        if data.sort_order is not None:
            item.sort_order = data.sort_order
        if data.yearly_budget is not None:
            if data.yearly_budget < 0:
                raise ValidationError("Yearly budget cannot be negative")
            item.yearly_budget = quantize_cents(data.yearly_budget)
        self.db.flush()
        logger.info(f"item_updated: item_id={item.id}")
        return item

    def move(self, item_id: int, group_id: Optional[int]) -> BudgetItem:
        item = self.get(item_id)
        if group_id is not None:
            GroupService(self.db).get(group_id)
        item.group_id = group_id
        self.db.flush()
        logger.info(f"item_moved: item_id={item.id} group_id={group_id}")
        return item

    def delete(self, item_id: int) -> None:
        item = self.get(item_id)
        self.db.delete(item)
        self.db.flush()
        logger.info(f"item_deleted: item_id={item_id}")

    def reorder(self, entries: list[ReorderEntry]) -> None:
        budget_id = self.db.require_budget()
        ids = {entry.id for entry in entries}
        owned = set(
            self.db.scalars(
                select(BudgetItem.id)
                .join(BudgetYear, BudgetItem.year_id == BudgetYear.id)
                .where(BudgetYear.budget_id == budget_id, BudgetItem.id.in_(ids))
            )
        )
        missing = sorted(ids - owned)
        if missing:
            raise NotFound(f"Items not found: {', '.join(str(i) for i in missing)}")
        for entry in entries:
            self.db.execute(
                update(BudgetItem)
                .where(BudgetItem.id == entry.id)
                .values(sort_order=entry.sort_order, updated_at=datetime.utcnow())
            )
        logger.info(f"items_reordered: budget_id={budget_id} count={len(entries)}")

    def set_monthly_value(
        self, item_id: int, month: int, data: MonthlyValueIn
    ) -> MonthlyValue:
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")
        item = self.get(item_id)
        values: dict[str, Any] = {
            "item_id": item.id,
            "month": month,
            "budget": quantize_cents(data.budget),
            "actual": quantize_cents(data.actual),
        }
        fields = [name for name in ("budget", "actual") if getattr(data, name) is not None]
        upsert(self.db, MonthlyValue, values, ["item_id", "month"], fields)
        logger.info(f"monthly_value_set: item_id={item.id} month={month} fields={','.join(fields) or '-'}")
        return self.db.scalar(
            select(MonthlyValue)
            .where(MonthlyValue.item_id == item.id, MonthlyValue.month == month)
            .execution_options(populate_existing=True)
        )

    def get_or_create_unclassified(self, year_id: int) -> BudgetItem:
        budget_id = self.db.require_budget()
        groups = GroupService(self.db)
        group = groups.find_by_slug(UNCLASSIFIED_GROUP_SLUG)
        if not group:
            group = BudgetGroup(
                budget_id=budget_id,
                name=UNCLASSIFIED_GROUP_NAME,
                slug=UNCLASSIFIED_GROUP_SLUG,
                type=GroupType.expense,
                sort_order=UNCLASSIFIED_SORT_ORDER,
            )
            self.db.add(group)
            self.db.flush()

        item = self.db.scalar(
            select(BudgetItem).where(
                BudgetItem.year_id == year_id,
                BudgetItem.group_id == group.id,
                BudgetItem.slug == UNCLASSIFIED_ITEM_SLUG,
            )
        )
        if not item:
            item = BudgetItem(
                year_id=year_id,
                group_id=group.id,
                name=UNCLASSIFIED_ITEM_NAME,
                slug=UNCLASSIFIED_ITEM_SLUG,
                sort_order=0,
                monthly_values=_new_monthly_values(),
            )
            self.db.add(item)
            self.db.flush()
            logger.info(f"unclassified_item_created: year_id={year_id} item_id={item.id}")
        return item


class PaymentMethodService:
    def __init__(self, db: TenantSession) -> None:
        self.db = db

    def list_all(self) -> list[PaymentMethod]:
        return list(
            self.db.scalars(
                select(PaymentMethod)
                .where(PaymentMethod.user_id == self.db.user_id)
                .order_by(PaymentMethod.sort_order, PaymentMethod.id)
            )
        )

    def get(self, method_id: int) -> PaymentMethod:
        method = self.db.get(PaymentMethod, method_id)
        if not method or method.user_id != self.db.user_id:
            raise NotFound("Payment method not found")
        return method

    def _is_duplicate(
        self, name: str, institution: Optional[str], exclude_id: Optional[int] = None
    ) -> bool:
        institution = _blank(institution)
        for method in self.list_all():
            if exclude_id is not None and method.id == exclude_id:
                continue
            if (
                method.name.lower() == name.lower()
                and _blank(method.institution) == institution
            ):
                return True
        return False

    def create(self, data: PaymentMethodIn) -> PaymentMethod:
        institution = _blank(data.institution)
        if self._is_duplicate(data.name, institution):
            raise DuplicatePaymentMethod(data.name, institution)
        method = PaymentMethod(
            user_id=self.db.user_id,
            name=data.name,
            institution=institution,
            sort_order=data.sort_order,
            is_account=data.is_account,
        )
        self.db.add(method)
        self.db.flush()
        logger.info(f"payment_method_created: payment_method_id={method.id}")
        return method

    def _check_link(self, method: PaymentMethod, target_id: int) -> None:
        if target_id == method.id:
            raise ValidationError("A payment method cannot be linked to itself")
        by_id = {m.id: m for m in self.list_all()}
        if target_id not in by_id:
            raise ValidationError("Linked payment method not found")
        seen: set[int] = set()
        current: Optional[int] = target_id
        while current is not None and current not in seen:
            if current == method.id:
                raise ValidationError("Linking these payment methods would create a cycle")
            seen.add(current)
            parent = by_id.get(current)
            current = parent.linked_payment_method_id if parent else None

    def update(self, method_id: int, data: PaymentMethodUpdate) -> PaymentMethod:
        method = self.get(method_id)
        fields = data.model_fields_set

        renamed = "name" in fields or "institution" in fields
        if renamed:
            name = data.name if data.name is not None else method.name
            institution = (
                _blank(data.institution) if "institution" in fields else method.institution
            )
            if self._is_duplicate(name, institution, exclude_id=method.id):
                raise DuplicatePaymentMethod(name, institution)
            method.name = name
            method.institution = institution

        if data.sort_order is not None:
            method.sort_order = data.sort_order
        if data.is_account is not None:
            method.is_account = data.is_account
        if "settlement_day" in fields:
            method.settlement_day = validate_settlement_day(data.settlement_day)
        if "linked_payment_method_id" in fields:
            if data.linked_payment_method_id is not None:
                self._check_link(method, data.linked_payment_method_id)
            method.linked_payment_method_id = data.linked_payment_method_id

        if renamed and method.is_savings_account:
            self.db.execute(
                update(BudgetItem)
                .where(BudgetItem.linked_account_id == method.id)
                .values(
                    name=display_name(method.name, method.institution),
                    updated_at=datetime.utcnow(),
                )
            )
        self.db.flush()
        logger.info(f"payment_method_updated: payment_method_id={method.id} fields={','.join(sorted(fields))}")
        return method

    def reorder(self, entries: list[ReorderEntry]) -> None:
        owned = {method.id for method in self.list_all()}
        foreign = sorted({entry.id for entry in entries} - owned)
        if foreign:
            raise NotFound(
                f"Payment methods not found: {', '.join(str(i) for i in foreign)}"
            )
        for entry in entries:
            self.db.execute(
                update(PaymentMethod)
                .where(
                    PaymentMethod.id == entry.id,
                    PaymentMethod.user_id == self.db.user_id,
                )
                .values(sort_order=entry.sort_order, updated_at=datetime.utcnow())
            )
        logger.info(f"payment_methods_reordered: user_id={self.db.user_id} count={len(entries)}")

    def delete(self, method_id: int) -> None:
        method = self.get(method_id)
        in_use = self.db.scalar(
            select(func.count(Transaction.id)).where(Transaction.account_id == method.id)
        )
        if in_use:
            raise ConstraintViolation(
                f"Payment method is used by {in_use} transaction(s)"
            )
        # transfer endpoints carry no foreign key
        endpoint = AccountType.payment_method
        transfers = self.db.scalar(
            select(func.count(Transfer.id)).where(
                (
                    (Transfer.source_account_type == endpoint)
                    & (Transfer.source_account_id == method.id)
                )
                | (
                    (Transfer.destination_account_type == endpoint)
                    & (Transfer.destination_account_id == method.id)
                )
            )
        )
        if transfers:
            raise ConstraintViolation(
                f"Payment method is used by {transfers} transfer(s)"
            )
        self.db.delete(method)
        self.db.flush()
        logger.info(f"payment_method_deleted: payment_method_id={method_id}")

    def set_savings_account(self, method_id: int, is_savings_account: bool) -> PaymentMethod:
        """
        Toggle the savings flag.

        Enabling also marks the method as an account and gives it a budget
        item in the "Savings" group of every year of the budget. Disabling
        keeps those items so existing bookings stay categorised.
        """
        method = self.get(method_id)
        method.is_savings_account = is_savings_account
        if is_savings_account:
            method.is_account = True
            self._create_savings_items(method)
        self.db.flush()
        logger.info(
            f"savings_account_set: payment_method_id={method.id} enabled={is_savings_account}"
        )
        return method

    def _create_savings_items(self, method: PaymentMethod) -> None:
        budget_id = self.db.require_budget()
        groups = GroupService(self.db)
        group = groups.find_by_slug(SAVINGS_GROUP_SLUG)
        if not group:
            group = BudgetGroup(
                budget_id=budget_id,
                name=SAVINGS_GROUP_NAME,
                slug=SAVINGS_GROUP_SLUG,
                type=GroupType.savings,
                sort_order=len(groups.list_all()),
            )
            self.db.add(group)
            self.db.flush()

        slug = f"account-{method.id}"
        for budget_year in YearService(self.db).list_all():
            existing = self.db.scalar(
                select(BudgetItem.id).where(
                    BudgetItem.year_id == budget_year.id,
                    BudgetItem.linked_account_id == method.id,
                )
            )
            if existing:
                continue
            self.db.add(
                BudgetItem(
                    year_id=budget_year.id,
                    group_id=group.id,
                    name=display_name(method.name, method.institution),
                    slug=slug,
                    sort_order=method.sort_order,
                    linked_account_id=method.id,
                    monthly_values=_new_monthly_values(),
                )
            )


class TransactionService:
    def __init__(self, db: TenantSession) -> None:
        self.db = db

    def _period(
        self,
        txn_date: date,
        account: PaymentMethod,
        month: Optional[int],
        year: Optional[int],
    ) -> AccountingPeriod:
        if month is not None and year is not None:
            return validate_period(month, year)
        resolved = resolve_period(txn_date, account.settlement_day)
        return validate_period(
            month if month is not None else resolved.month,
            year if year is not None else resolved.year,
        )

    def _item_id(self, budget_year: BudgetYear, item_id: Optional[int]) -> int:
        if item_id is None:
            return ItemService(self.db).get_or_create_unclassified(budget_year.id).id
        return ItemService(self.db).get(item_id).id

    def get(self, transaction_id: int) -> Transaction:
        budget_id = self.db.require_budget()
        txn = self.db.scalar(
            select(Transaction)
            .join(BudgetYear, Transaction.year_id == BudgetYear.id)
            .where(Transaction.id == transaction_id, BudgetYear.budget_id == budget_id)
        )
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def list_for_year(self, year: int) -> list[Transaction]:
        budget_year = YearService(self.db).find(year)
        if not budget_year:
            return []
        return list(
            self.db.scalars(
                select(Transaction)
                .options(joinedload(Transaction.item).joinedload(BudgetItem.group))
                .where(Transaction.year_id == budget_year.id)
                .order_by(Transaction.date.desc(), Transaction.id.desc())
            )
        )

    def _build(self, budget_year: BudgetYear, data: TransactionIn) -> Transaction:
        account = PaymentMethodService(self.db).get(data.account_id)
        period = self._period(
            data.date, account, data.accounting_month, data.accounting_year
        )
        return Transaction(
            year_id=budget_year.id,
            item_id=self._item_id(budget_year, data.item_id),
            account_id=account.id,
            date=data.date,
            description=_blank(data.description),
            comment=_blank(data.comment),
            third_party=_blank(data.third_party),
            amount=quantize_cents(data.amount),
            accounting_month=period.month,
            accounting_year=period.year,
        )

    def create(self, year: int, data: TransactionIn) -> Transaction:
        budget_year = YearService(self.db).get(year)
        txn = self._build(budget_year, data)
        self.db.add(txn)
        self.db.flush()
        logger.info(
            f"transaction_created: transaction_id={txn.id} account_id={txn.account_id} "
            f"period={txn.accounting_year}-{txn.accounting_month:02d}"
        )
        return txn

    def bulk_create(self, year: int, rows: list[TransactionIn]) -> list[Transaction]:
        if not rows:
            return []
        budget_year = YearService(self.db).get(year)
        created = [self._build(budget_year, data) for data in rows]
        self.db.add_all(created)
        self.db.flush()
        logger.info(f"transactions_bulk_created: year={year} count={len(created)}")
        return created

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        fields = data.model_fields_set

        if data.date is not None:
            txn.date = data.date
        if data.amount is not None:
            txn.amount = quantize_cents(data.amount)
        if data.account_id is not None:
            txn.account_id = PaymentMethodService(self.db).get(data.account_id).id
        if "item_id" in fields:
            budget_year = self.db.get(BudgetYear, txn.year_id)
            txn.item_id = self._item_id(budget_year, data.item_id)
        for name in ("description", "comment", "third_party"):
            if name in fields:
                setattr(txn, name, _blank(getattr(data, name)))

        if data.accounting_month is not None or data.accounting_year is not None:
            period = validate_period(
                data.accounting_month if data.accounting_month is not None else txn.accounting_month,
                data.accounting_year if data.accounting_year is not None else txn.accounting_year,
            )
            txn.accounting_month, txn.accounting_year = period.month, period.year
        elif data.recalculate_period or "date" in fields or "account_id" in fields:
            account = PaymentMethodService(self.db).get(txn.account_id)
            period = resolve_period(txn.date, account.settlement_day)
            txn.accounting_month, txn.accounting_year = period.month, period.year

        self.db.flush()
        logger.info(
            f"transaction_updated: transaction_id={txn.id} "
            f"period={txn.accounting_year}-{txn.accounting_month:02d}"
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.db.delete(txn)
        self.db.flush()
        logger.info(f"transaction_deleted: transaction_id={transaction_id}")

    def bulk_delete(self, ids: list[int]) -> int:
        if not ids:
            return 0
        budget_id = self.db.require_budget()
        owned = list(
            self.db.scalars(
                select(Transaction.id)
                .join(BudgetYear, Transaction.year_id == BudgetYear.id)
                .where(BudgetYear.budget_id == budget_id, Transaction.id.in_(ids))
            )
        )
        if owned:
            self.db.execute(delete(Transaction).where(Transaction.id.in_(owned)))
        logger.info(f"transactions_bulk_deleted: requested={len(ids)} deleted={len(owned)}")
        return len(owned)

    def third_parties(self, search: Optional[str] = None) -> list[str]:
        budget_id = self.db.require_budget()
        usage = func.count(Transaction.id)
        stmt = (
            select(Transaction.third_party)
            .join(BudgetYear, Transaction.year_id == BudgetYear.id)
            .where(BudgetYear.budget_id == budget_id, Transaction.third_party.is_not(None))
            .group_by(Transaction.third_party)
            .order_by(usage.desc(), Transaction.third_party)
        )
        search = _blank(search)
        if search:
            stmt = stmt.where(Transaction.third_party.ilike(f"%{search}%")).limit(20)
        else:
            stmt = stmt.limit(50)
        return list(self.db.scalars(stmt))


def transaction_out(txn: Transaction) -> TransactionOut:
    group = txn.item.group if txn.item else None
    return TransactionOut(
        id=txn.id,
        date=txn.date,
        amount=to_number(txn.amount),
        account_id=txn.account_id,
        item_id=txn.item_id,
        item_name=txn.item.name if txn.item else None,
        group_name=group.name if group else None,
        group_type=group.type if group else GroupType.expense,
        description=txn.description,
        comment=txn.comment,
        third_party=txn.third_party,
        accounting_month=txn.accounting_month,
        accounting_year=txn.accounting_year,
    )


class TransferService:
    def __init__(self, db: TenantSession) -> None:
        self.db = db

    def get(self, transfer_id: int) -> Transfer:
        budget_id = self.db.require_budget()
        transfer = self.db.scalar(
            select(Transfer)
            .join(BudgetYear, Transfer.year_id == BudgetYear.id)
            .where(Transfer.id == transfer_id, BudgetYear.budget_id == budget_id)
        )
        if not transfer:
            raise NotFound("Transfer not found")
        return transfer

    def _check_endpoint(self, account_type: AccountType, account_id: int) -> None:
        if account_type == AccountType.payment_method:
            PaymentMethodService(self.db).get(account_id)
        else:
            ItemService(self.db).get(account_id)

    def _validate(
        self,
        source: tuple[AccountType, int],
        destination: tuple[AccountType, int],
        amount: Decimal,
    ) -> None:
        if to_decimal(amount) <= ZERO:
            raise ValidationError("Transfer amount must be positive")
        if source == destination:
            raise ValidationError("Source and destination accounts must differ")
        self._check_endpoint(*source)
        self._check_endpoint(*destination)

    @staticmethod
    def _savings_item_id(transfer: Transfer) -> Optional[int]:
        if transfer.destination_account_type == AccountType.savings_item:
            return transfer.destination_account_id
        if transfer.source_account_type == AccountType.savings_item:
            return transfer.source_account_id
        return None

    @staticmethod
    def _calendar_period(
        transfer_date: date, month: Optional[int], year: Optional[int]
    ) -> AccountingPeriod:
        resolved = resolve_period(transfer_date, None)
        return validate_period(
            month if month is not None else resolved.month,
            year if year is not None else resolved.year,
        )

    def list_for_year(self, year: int) -> list[TransferOut]:
        budget_year = YearService(self.db).find(year)
        if not budget_year:
            return []
        transfers = list(
            self.db.scalars(
                select(Transfer)
                .where(Transfer.year_id == budget_year.id)
                .order_by(Transfer.date.desc(), Transfer.id.desc())
            )
        )
        return self._to_out(transfers)

    def create(self, year: int, data: TransferIn) -> Transfer:
        budget_year = YearService(self.db).get(year)
        source = (data.source_account_type, data.source_account_id)
        destination = (data.destination_account_type, data.destination_account_id)
        self._validate(source, destination, data.amount)
        period = self._calendar_period(data.date, data.accounting_month, data.accounting_year)
        transfer = Transfer(
            year_id=budget_year.id,
            date=data.date,
            amount=quantize_cents(data.amount),
            description=_blank(data.description),
            source_account_type=data.source_account_type,
            source_account_id=data.source_account_id,
            destination_account_type=data.destination_account_type,
            destination_account_id=data.destination_account_id,
            accounting_month=period.month,
            accounting_year=period.year,
        )
        transfer.linked_savings_item_id = self._savings_item_id(transfer)
        self.db.add(transfer)
        self.db.flush()
        logger.info(
            f"transfer_created: transfer_id={transfer.id} "
            f"source={transfer.source_account_type.value}:{transfer.source_account_id} "
            f"destination={transfer.destination_account_type.value}:{transfer.destination_account_id}"
        )
        return transfer

    def update(self, transfer_id: int, data: TransferUpdate) -> Transfer:
        transfer = self.get(transfer_id)
        fields = data.model_fields_set
        for name in (
            "source_account_type",
            "source_account_id",
            "destination_account_type",
            "destination_account_id",
        ):
            value = getattr(data, name)
            if value is not None:
                setattr(transfer, name, value)
        if data.amount is not None:
            transfer.amount = quantize_cents(data.amount)
        if "description" in fields:
            transfer.description = _blank(data.description)
        self._validate(
            (transfer.source_account_type, transfer.source_account_id),
            (transfer.destination_account_type, transfer.destination_account_id),
            transfer.amount,
        )

        if data.accounting_month is not None or data.accounting_year is not None:
            period = validate_period(
                data.accounting_month if data.accounting_month is not None else transfer.accounting_month,
                data.accounting_year if data.accounting_year is not None else transfer.accounting_year,
            )
            transfer.accounting_month, transfer.accounting_year = period.month, period.year
        elif data.date is not None:
            period = resolve_period(data.date, None)
            transfer.accounting_month, transfer.accounting_year = period.month, period.year
        if data.date is not None:
            transfer.date = data.date

        transfer.linked_savings_item_id = self._savings_item_id(transfer)
        self.db.flush()
        logger.info(f"transfer_updated: transfer_id={transfer.id}")
        return transfer

    def delete(self, transfer_id: int) -> None:
        transfer = self.get(transfer_id)
        self.db.delete(transfer)
        self.db.flush()
        logger.info(f"transfer_deleted: transfer_id={transfer_id}")

    def _item_names(self, item_ids: set[int]) -> dict[int, str]:
        if not item_ids:
            return {}
        rows = self.db.execute(
            select(BudgetItem.id, BudgetItem.name, BudgetGroup.name)
            .outerjoin(BudgetGroup, BudgetItem.group_id == BudgetGroup.id)
            .where(BudgetItem.id.in_(item_ids))
        ).all()
        return {
            item_id: f"{group_name} → {name}" if group_name else name
            for item_id, name, group_name in rows
        }

    def _to_out(self, transfers: list[Transfer]) -> list[TransferOut]:
        methods = {method.id: method.name for method in PaymentMethodService(self.db).list_all()}
        item_ids: set[int] = set()
        for transfer in transfers:
            for account_type, account_id in (
                (transfer.source_account_type, transfer.source_account_id),
                (transfer.destination_account_type, transfer.destination_account_id),
            ):
                if account_type == AccountType.savings_item:
                    item_ids.add(account_id)
        items = self._item_names(item_ids)

        def ref(account_type: AccountType, account_id: int) -> AccountRef:
            names = methods if account_type == AccountType.payment_method else items
            return AccountRef(
                type=account_type,
                id=account_id,
                name=names.get(account_id, UNKNOWN_ACCOUNT_NAME),
            )

        return [
            TransferOut(
                id=transfer.id,
                date=transfer.date,
                amount=to_number(transfer.amount),
                description=transfer.description,
                source_account=ref(transfer.source_account_type, transfer.source_account_id),
                destination_account=ref(
                    transfer.destination_account_type, transfer.destination_account_id
                ),
                linked_savings_item_id=transfer.linked_savings_item_id,
                accounting_month=transfer.accounting_month,
                accounting_year=transfer.accounting_year,
            )
            for transfer in transfers
        ]

    def to_out(self, transfer: Transfer) -> TransferOut:
        return self._to_out([transfer])[0]

    def available_accounts(self, year: int) -> list[AccountRef]:
        budget_year = YearService(self.db).find(year)
        if not budget_year:
            return []
        accounts = [
            AccountRef(type=AccountType.payment_method, id=method.id, name=method.name)
            for method in PaymentMethodService(self.db).list_all()
            if method.is_account
        ]
        rows = self.db.execute(
            select(BudgetItem.id, BudgetItem.name, BudgetGroup.name)
            .join(BudgetGroup, BudgetItem.group_id == BudgetGroup.id)
            .where(
                BudgetItem.year_id == budget_year.id,
                BudgetGroup.type == GroupType.savings,
            )
            .order_by(BudgetGroup.sort_order, BudgetItem.sort_order, BudgetItem.id)
        ).all()
        accounts.extend(
            AccountRef(
                type=AccountType.savings_item,
                id=item_id,
                name=f"{group_name} → {name}",
            )
            for item_id, name, group_name in rows
        )
        return accounts


def accounts_response(result: AccountsResult) -> AccountsResponse:
    return AccountsResponse(
        accounts=[
            AccountOut(
                id=account.id,
                name=account.display_name,
                institution=account.institution,
                sort_order=account.sort_order,
                is_account=account.is_account,
                is_savings_account=account.is_savings_account,
                initial_balance=to_number(account.initial_balance),
                monthly_balances=[to_number(value) for value in account.monthly_balances],
            )
            for account in result.accounts
        ],
        last_active_month=result.last_active_month,
    )


class AccountService:
    def __init__(
        self, db: TenantSession, repository: Optional[LedgerRepository] = None
    ) -> None:
        self.db = db
        self.repository = repository or SqlLedgerRepository(db)

    def balances_for_year(self, year: int) -> AccountsResult:
        snapshot = self.repository.load_year_snapshot(year)
        return compute_account_balances(snapshot)

    def accounts_for_year(self, year: int) -> AccountsResponse:
        return accounts_response(self.balances_for_year(year))

    def set_balance(self, year: int, account_id: int, initial_balance: Decimal) -> None:
        method = PaymentMethodService(self.db).get(account_id)
        budget_year = YearService(self.db).get(year)
        upsert(
            self.db,
            AccountBalance,
            {
                "year_id": budget_year.id,
                "account_type": AccountType.payment_method,
                "account_id": method.id,
                "initial_balance": quantize_cents(initial_balance),
            },
            ["year_id", "account_type", "account_id"],
            ["initial_balance"],
        )
        logger.info(
            f"balance_set: year={year} account_id={method.id} initial_balance={quantize_cents(initial_balance)}"
        )


class BudgetService:
    def __init__(self, db: TenantSession) -> None:
        self.db = db

    def _actuals(self, budget_year: BudgetYear) -> dict[tuple[int, int], Decimal]:
        # accounting_year keeps late-December card bookings out of this year's actuals
        rows = self.db.execute(
            select(
                Transaction.item_id,
                Transaction.accounting_month,
                func.sum(Transaction.amount),
            )
            .where(
                Transaction.year_id == budget_year.id,
                Transaction.accounting_year == budget_year.year,
                Transaction.item_id.is_not(None),
            )
            .group_by(Transaction.item_id, Transaction.accounting_month)
        ).all()
        return {(item_id, month): to_decimal(amount) for item_id, month, amount in rows}

    def figures(self, year: int) -> BudgetFigures:
        budget_year = YearService(self.db).get_or_create(year)
        actuals = self._actuals(budget_year)
        items_by_group: dict[int, list[BudgetItem]] = {}
        for item in self.db.scalars(
            select(BudgetItem)
            .options(joinedload(BudgetItem.monthly_values))
            .where(BudgetItem.year_id == budget_year.id, BudgetItem.group_id.is_not(None))
            .order_by(BudgetItem.sort_order, BudgetItem.id)
            .execution_options(populate_existing=True)
        ).unique():
            items_by_group.setdefault(item.group_id, []).append(item)

        groups = []
        for group in GroupService(self.db).list_all():
            items = []
            for item in items_by_group.get(group.id, []):
                budgets = {value.month: value.budget for value in item.monthly_values}
                items.append(
                    ItemFigures(
                        id=item.id,
                        name=item.name,
                        slug=item.slug,
                        yearly_budget=to_decimal(item.yearly_budget),
                        months=tuple(
                            MonthFigures(
                                budget=to_decimal(budgets.get(month)),
                                actual=actuals.get((item.id, month), ZERO),
                            )
                            for month in range(1, 13)
                        ),
                        linked_account_id=item.linked_account_id,
                    )
                )
            groups.append(
                GroupFigures(
                    id=group.id,
                    name=group.name,
                    slug=group.slug,
                    type=group.type.value,
                    sort_order=group.sort_order,
                    items=tuple(items),
                )
            )
        return BudgetFigures(
            year_id=budget_year.id,
            year=budget_year.year,
            initial_balance=to_decimal(budget_year.initial_balance),
            groups=tuple(groups),
        )

    def budget_data(self, year: int) -> BudgetDataOut:
        figures = self.figures(year)
        return BudgetDataOut(
            year_id=figures.year_id,
            year=figures.year,
            initial_balance=to_number(figures.initial_balance),
            groups=[
                BudgetGroupOut(
                    id=group.id,
                    name=group.name,
                    slug=group.slug,
                    type=GroupType(group.type),
                    sort_order=group.sort_order,
                    items=[
                        BudgetItemOut(
                            id=item.id,
                            name=item.name,
                            slug=item.slug,
                            yearly_budget=to_number(item.yearly_budget),
                            linked_account_id=item.linked_account_id,
                            months=[
                                MonthlyAmounts(
                                    budget=to_number(month.budget),
                                    actual=to_number(month.actual),
                                )
                                for month in item.months
                            ],
                        )
                        for item in group.items
                    ],
                )
                for group in figures.groups
            ],
        )

    def compute(self, year: int, today: Optional[date] = None) -> Summary:
        figures = self.figures(year)
        month_index = current_month_index(year, today)
        accounts = AccountService(self.db).balances_for_year(year)
        liquid = [
            account
            for account in accounts.accounts
            if account.is_account and not account.is_savings_account
        ]
        if liquid:
            initial_balance = initial_balance_total(accounts)
            account_balance = balance_at_month(accounts, month_index)
        else:
            initial_balance = figures.initial_balance
            account_balance = None
        return compute_summary(
            figures,
            month_index,
            initial_balance=initial_balance,
            account_balance=account_balance,
        )

    def summary(self, year: int, today: Optional[date] = None) -> SummaryOut:
        result = self.compute(year, today)
        totals = result.totals
        expected = result.expected_totals
        return SummaryOut(
            initial_balance=to_number(result.initial_balance),
            totals=SectionTotals(
                income=AnnualTotals(
                    budget=to_number(totals.income.budget),
                    actual=to_number(totals.income.actual),
                ),
                expense=AnnualTotals(
                    budget=to_number(totals.expense.budget),
                    actual=to_number(totals.expense.actual),
                ),
                savings=AnnualTotals(
                    budget=to_number(totals.savings.budget),
                    actual=to_number(totals.savings.actual),
                ),
            ),
            expected_totals=ExpectedTotals(
                income=to_number(expected.income),
                expense=to_number(expected.expense),
                savings=to_number(expected.savings),
            ),
            remaining_balance=to_number(result.remaining_balance),
            current_month_index=result.current_month_index,
        )
