import datetime as dt
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

MONEY = Numeric(12, 2)


class GroupType(str, Enum):
    income = "income"
    expense = "expense"
    savings = "savings"


class AccountType(str, Enum):
    payment_method = "payment_method"
    savings_item = "savings_item"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(500))

    years: Mapped[list["BudgetYear"]] = relationship(
        "BudgetYear", back_populates="budget"
    )


class BudgetYear(Base, TimestampMixin):
    __tablename__ = "budget_years"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    initial_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )

    budget: Mapped["Budget"] = relationship("Budget", back_populates="years")
    items: Mapped[list["BudgetItem"]] = relationship(
        "BudgetItem", back_populates="year"
    )

    __table_args__ = (
        UniqueConstraint("budget_id", "year", name="uq_budget_year_budget_year"),
    )


class BudgetGroup(Base, TimestampMixin):
    __tablename__ = "budget_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[GroupType] = mapped_column(
        SAEnum(GroupType), nullable=False, default=GroupType.expense
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    items: Mapped[list["BudgetItem"]] = relationship(
        "BudgetItem", back_populates="group"
    )

    __table_args__ = (
        UniqueConstraint("budget_id", "slug", name="uq_budget_group_budget_slug"),
    )


class BudgetItem(Base, TimestampMixin):
    __tablename__ = "budget_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year_id: Mapped[int] = mapped_column(
        ForeignKey("budget_years.id", ondelete="CASCADE"), nullable=False
    )
    group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budget_groups.id", ondelete="SET NULL")
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # irregular spending not tied to a month, on top of the monthly budgets
    yearly_budget: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )
    linked_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payment_methods.id", ondelete="CASCADE")
    )

    year: Mapped["BudgetYear"] = relationship("BudgetYear", back_populates="items")
    group: Mapped[Optional["BudgetGroup"]] = relationship(
        "BudgetGroup", back_populates="items"
    )
    monthly_values: Mapped[list["MonthlyValue"]] = relationship(
        "MonthlyValue",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="MonthlyValue.month",
    )

    __table_args__ = (
        UniqueConstraint(
            "year_id", "group_id", "slug", name="uq_budget_item_year_group_slug"
        ),
        Index("ix_budget_items_linked_account", "linked_account_id"),
        CheckConstraint("yearly_budget >= 0", name="ck_budget_item_yearly_positive"),
    )


class MonthlyValue(Base, TimestampMixin):
    __tablename__ = "monthly_values"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("budget_items.id", ondelete="CASCADE"), nullable=False
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    budget: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    actual: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    item: Mapped["BudgetItem"] = relationship(
        "BudgetItem", back_populates="monthly_values"
    )

    __table_args__ = (
        UniqueConstraint("item_id", "month", name="uq_monthly_value_item_month"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_monthly_value_month"),
    )


class PaymentMethod(Base, TimestampMixin):
    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    institution: Mapped[Optional[str]] = mapped_column(String(100))
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_savings_account: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    # day of month the billing cycle starts; NULL keeps the calendar month
    settlement_day: Mapped[Optional[int]] = mapped_column(Integer)
    linked_payment_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payment_methods.id", ondelete="SET NULL")
    )

    __table_args__ = (
        CheckConstraint(
            "settlement_day IS NULL OR (settlement_day >= 1 AND settlement_day <= 31)",
            name="ck_payment_method_settlement_day",
        ),
        Index("ix_payment_methods_linked", "linked_payment_method_id"),
    )


class AccountBalance(Base, TimestampMixin):
    __tablename__ = "account_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year_id: Mapped[int] = mapped_column(
        ForeignKey("budget_years.id", ondelete="CASCADE"), nullable=False
    )
    account_type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType), nullable=False, default=AccountType.payment_method
    )
    account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    initial_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )

    __table_args__ = (
        UniqueConstraint(
            "year_id",
            "account_type",
            "account_id",
            name="uq_account_balance_year_account",
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year_id: Mapped[int] = mapped_column(
        ForeignKey("budget_years.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budget_items.id", ondelete="SET NULL")
    )
    account_id: Mapped[int] = mapped_column(
        ForeignKey("payment_methods.id", ondelete="RESTRICT"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    comment: Mapped[Optional[str]] = mapped_column(String(500))
    third_party: Mapped[Optional[str]] = mapped_column(String(200))
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    accounting_month: Mapped[int] = mapped_column(Integer, nullable=False)
    accounting_year: Mapped[int] = mapped_column(Integer, nullable=False)

    item: Mapped[Optional["BudgetItem"]] = relationship("BudgetItem")
    account: Mapped["PaymentMethod"] = relationship("PaymentMethod")

    __table_args__ = (
        Index(
            "ix_transactions_accounting_period", "accounting_year", "accounting_month"
        ),
        Index("ix_transactions_year_date", "year_id", "date"),
        CheckConstraint(
            "accounting_month >= 1 AND accounting_month <= 12",
            name="ck_transactions_accounting_month",
        ),
    )


class Transfer(Base, TimestampMixin):
    __tablename__ = "transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year_id: Mapped[int] = mapped_column(
        ForeignKey("budget_years.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    source_account_type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType), nullable=False
    )
    source_account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    destination_account_type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType), nullable=False
    )
    destination_account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    linked_savings_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budget_items.id", ondelete="SET NULL")
    )
    accounting_month: Mapped[int] = mapped_column(Integer, nullable=False)
    accounting_year: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_transfers_accounting_period", "accounting_year", "accounting_month"),
        CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
        CheckConstraint(
            "accounting_month >= 1 AND accounting_month <= 12",
            name="ck_transfers_accounting_month",
        ),
    )
