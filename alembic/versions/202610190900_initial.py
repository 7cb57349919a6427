"""initial budget ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)
GROUP_TYPES = ("income", "expense", "savings")
ACCOUNT_TYPES = ("payment_method", "savings_item")


def _enum(values, name):
    # the type is created once up front; columns only reference it on PostgreSQL
    return sa.Enum(*values, name=name).with_variant(
        postgresql.ENUM(*values, name=name, create_type=False), "postgresql"
    )


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    sa.Enum(*GROUP_TYPES, name="grouptype").create(bind, checkfirst=True)
    sa.Enum(*ACCOUNT_TYPES, name="accounttype").create(bind, checkfirst=True)

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("description", sa.String(length=500)),
        *_timestamps(),
    )
    op.create_index("ix_budgets_user_id", "budgets", ["user_id"])

    op.create_table(
        "budget_years",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id",
            sa.Integer(),
            sa.ForeignKey("budgets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("initial_balance", MONEY, nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("budget_id", "year", name="uq_budget_year_budget_year"),
    )

    op.create_table(
        "budget_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "budget_id",
            sa.Integer(),
            sa.ForeignKey("budgets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            _enum(GROUP_TYPES, "grouptype"),
            nullable=False,
        ),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("budget_id", "slug", name="uq_budget_group_budget_slug"),
    )

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("institution", sa.String(length=100)),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_account", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "is_savings_account", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("settlement_day", sa.Integer()),
        sa.Column(
            "linked_payment_method_id",
            sa.Integer(),
            sa.ForeignKey("payment_methods.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "settlement_day IS NULL OR (settlement_day >= 1 AND settlement_day <= 31)",
            name="ck_payment_method_settlement_day",
        ),
    )
    op.create_index("ix_payment_methods_user_id", "payment_methods", ["user_id"])
    op.create_index(
        "ix_payment_methods_linked", "payment_methods", ["linked_payment_method_id"]
    )

    op.create_table(
        "budget_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "year_id",
            sa.Integer(),
            sa.ForeignKey("budget_years.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("budget_groups.id", ondelete="SET NULL"),
        ),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("yearly_budget", MONEY, nullable=False, server_default="0"),
        sa.Column(
            "linked_account_id",
            sa.Integer(),
            sa.ForeignKey("payment_methods.id", ondelete="CASCADE"),
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "year_id", "group_id", "slug", name="uq_budget_item_year_group_slug"
        ),
        sa.CheckConstraint("yearly_budget >= 0", name="ck_budget_item_yearly_positive"),
    )
    op.create_index("ix_budget_items_linked_account", "budget_items", ["linked_account_id"])

    op.create_table(
        "monthly_values",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("budget_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("budget", MONEY, nullable=False, server_default="0"),
        sa.Column("actual", MONEY, nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("item_id", "month", name="uq_monthly_value_item_month"),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_monthly_value_month"),
    )

    op.create_table(
        "account_balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "year_id",
            sa.Integer(),
            sa.ForeignKey("budget_years.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "account_type",
            _enum(ACCOUNT_TYPES, "accounttype"),
            nullable=False,
        ),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("initial_balance", MONEY, nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint(
            "year_id",
            "account_type",
            "account_id",
            name="uq_account_balance_year_account",
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "year_id",
            sa.Integer(),
            sa.ForeignKey("budget_years.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("budget_items.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("payment_methods.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=500)),
        sa.Column("comment", sa.String(length=500)),
        sa.Column("third_party", sa.String(length=200)),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("accounting_month", sa.Integer(), nullable=False),
        sa.Column("accounting_year", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "accounting_month >= 1 AND accounting_month <= 12",
            name="ck_transactions_accounting_month",
        ),
    )
    op.create_index(
        "ix_transactions_accounting_period",
        "transactions",
        ["accounting_year", "accounting_month"],
    )
    op.create_index("ix_transactions_year_date", "transactions", ["year_id", "date"])

    op.create_table(
        "transfers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "year_id",
            sa.Integer(),
            sa.ForeignKey("budget_years.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("description", sa.String(length=500)),
        sa.Column(
            "source_account_type",
            _enum(ACCOUNT_TYPES, "accounttype"),
            nullable=False,
        ),
        sa.Column("source_account_id", sa.Integer(), nullable=False),
        sa.Column(
            "destination_account_type",
            _enum(ACCOUNT_TYPES, "accounttype"),
            nullable=False,
        ),
        sa.Column("destination_account_id", sa.Integer(), nullable=False),
        sa.Column(
            "linked_savings_item_id",
            sa.Integer(),
            sa.ForeignKey("budget_items.id", ondelete="SET NULL"),
        ),
        sa.Column("accounting_month", sa.Integer(), nullable=False),
        sa.Column("accounting_year", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
        sa.CheckConstraint(
            "accounting_month >= 1 AND accounting_month <= 12",
            name="ck_transfers_accounting_month",
        ),
    )
    op.create_index(
        "ix_transfers_accounting_period",
        "transfers",
        ["accounting_year", "accounting_month"],
    )


def downgrade():
    op.drop_index("ix_transfers_accounting_period", table_name="transfers")
    op.drop_table("transfers")
    op.drop_index("ix_transactions_year_date", table_name="transactions")
    op.drop_index("ix_transactions_accounting_period", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("account_balances")
    op.drop_table("monthly_values")
    op.drop_index("ix_budget_items_linked_account", table_name="budget_items")
    op.drop_table("budget_items")
    op.drop_index("ix_payment_methods_linked", table_name="payment_methods")
    op.drop_index("ix_payment_methods_user_id", table_name="payment_methods")
    op.drop_table("payment_methods")
    op.drop_table("budget_groups")
    op.drop_table("budget_years")
    op.drop_index("ix_budgets_user_id", table_name="budgets")
    op.drop_table("budgets")
    bind = op.get_bind()
    sa.Enum(*ACCOUNT_TYPES, name="accounttype").drop(bind, checkfirst=True)
    sa.Enum(*GROUP_TYPES, name="grouptype").drop(bind, checkfirst=True)
