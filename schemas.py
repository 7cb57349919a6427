import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import AccountType, GroupType


class YearIn(BaseModel):
    year: int = Field(..., ge=1970, le=3000)
    initial_balance: Decimal = Decimal("0")


class GroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100)
    type: GroupType = GroupType.expense
    sort_order: int = 0


class GroupUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[GroupType] = None
    sort_order: Optional[int] = None


class ItemIn(BaseModel):
    year_id: int
    group_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, max_length=200)
    sort_order: int = 0
    yearly_budget: Decimal = Field(default=Decimal("0"), ge=0)


class ItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    slug: Optional[str] = Field(default=None, min_length=1, max_length=200)
    sort_order: Optional[int] = None
    yearly_budget: Optional[Decimal] = Field(default=None, ge=0)


class MonthlyValueIn(BaseModel):
    budget: Optional[Decimal] = None
    actual: Optional[Decimal] = None


class ReorderEntry(BaseModel):
    id: int
    sort_order: int


class PaymentMethodIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    institution: Optional[str] = Field(default=None, max_length=100)
    sort_order: int = 0
    is_account: bool = False


class PaymentMethodUpdate(BaseModel):
    """Fields left out of the payload are untouched; explicit nulls clear them."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    institution: Optional[str] = Field(default=None, max_length=100)
    sort_order: Optional[int] = None
    is_account: Optional[bool] = None
    settlement_day: Optional[int] = None
    linked_payment_method_id: Optional[int] = None


class TransactionIn(BaseModel):
    date: dt.date
    amount: Decimal
    account_id: int
    item_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)
    comment: Optional[str] = Field(default=None, max_length=500)
    third_party: Optional[str] = Field(default=None, max_length=200)
    accounting_month: Optional[int] = None
    accounting_year: Optional[int] = None


class TransactionUpdate(BaseModel):
    date: Optional[dt.date] = None
    amount: Optional[Decimal] = None
    account_id: Optional[int] = None
    item_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)
    comment: Optional[str] = Field(default=None, max_length=500)
    third_party: Optional[str] = Field(default=None, max_length=200)
    accounting_month: Optional[int] = None
    accounting_year: Optional[int] = None
    recalculate_period: bool = False


class TransferIn(BaseModel):
    date: dt.date
    amount: Decimal = Field(..., gt=0)
    description: Optional[str] = Field(default=None, max_length=500)
    source_account_type: AccountType = AccountType.payment_method
    source_account_id: int
    destination_account_type: AccountType = AccountType.payment_method
    destination_account_id: int
    accounting_month: Optional[int] = None
    accounting_year: Optional[int] = None


class TransferUpdate(BaseModel):
    date: Optional[dt.date] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=500)
    source_account_type: Optional[AccountType] = None
    source_account_id: Optional[int] = None
    destination_account_type: Optional[AccountType] = None
    destination_account_id: Optional[int] = None
    accounting_month: Optional[int] = None
    accounting_year: Optional[int] = None


class AccountBalanceIn(BaseModel):
    initial_balance: Decimal


# Read models. Amounts are plain floats here and nowhere earlier.


class PeriodOut(BaseModel):
    month: int
    year: int


class YearOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    year: int
    initial_balance: float


class MonthlyAmounts(BaseModel):
    budget: float
    actual: float


class BudgetItemOut(BaseModel):
    id: int
    name: str
    slug: str
    yearly_budget: float
    linked_account_id: Optional[int] = None
    months: list[MonthlyAmounts]


class BudgetGroupOut(BaseModel):
    id: int
    name: str
    slug: str
    type: GroupType
    sort_order: int
    items: list[BudgetItemOut]


class BudgetDataOut(BaseModel):
    year_id: int
    year: int
    initial_balance: float
    groups: list[BudgetGroupOut]


class AnnualTotals(BaseModel):
    budget: float
    actual: float


class SectionTotals(BaseModel):
    income: AnnualTotals
    expense: AnnualTotals
    savings: AnnualTotals


class ExpectedTotals(BaseModel):
    income: float
    expense: float
    savings: float


class SummaryOut(BaseModel):
    initial_balance: float
    totals: SectionTotals
    expected_totals: ExpectedTotals
    remaining_balance: float
    current_month_index: int


class AccountOut(BaseModel):
    id: int
    name: str
    institution: Optional[str] = None
    sort_order: int
    is_account: bool
    is_savings_account: bool
    initial_balance: float
    monthly_balances: list[float]


class AccountsResponse(BaseModel):
    accounts: list[AccountOut]
    last_active_month: int


class AccountRef(BaseModel):
    type: AccountType
    id: int
    name: str


class PaymentMethodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    institution: Optional[str] = None
    sort_order: int
    is_account: bool
    is_savings_account: bool
    settlement_day: Optional[int] = None
    linked_payment_method_id: Optional[int] = None


class TransactionOut(BaseModel):
    id: int
    date: dt.date
    amount: float
    account_id: int
    item_id: Optional[int] = None
    item_name: Optional[str] = None
    group_name: Optional[str] = None
    group_type: GroupType
    description: Optional[str] = None
    comment: Optional[str] = None
    third_party: Optional[str] = None
    accounting_month: int
    accounting_year: int


class TransferOut(BaseModel):
    id: int
    date: dt.date
    amount: float
    description: Optional[str] = None
    source_account: AccountRef
    destination_account: AccountRef
    linked_savings_item_id: Optional[int] = None
    accounting_month: int
    accounting_year: int


class YearUpdate(BaseModel):
    initial_balance: Decimal


class ItemMove(BaseModel):
    group_id: Optional[int] = None


class SavingsAccountIn(BaseModel):
    is_savings_account: bool


class BulkDeleteIn(BaseModel):
    ids: list[int]


class BulkDeleteOut(BaseModel):
    deleted: int
