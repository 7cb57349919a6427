from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import NotFound, ValidationError
from models import Budget, GroupType
from schemas import (
    GroupIn,
    ItemIn,
    PaymentMethodIn,
    PaymentMethodUpdate,
    TransactionIn,
    TransactionUpdate,
)
from services import (
    UNCLASSIFIED_GROUP_SLUG,
    GroupService,
    ItemService,
    PaymentMethodService,
    TransactionService,
    YearService,
    transaction_out,
)
from tenancy import TenantContext, TenantSession


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_db(session=None, user_id: str = "alice") -> TenantSession:
    session = session or make_session()
    budget = Budget(user_id=user_id)
    session.add(budget)
    session.flush()
    return TenantSession(session, TenantContext(user_id, budget.id))


def setup_ledger(db: TenantSession):
    year = YearService(db).create(2024)
    methods = PaymentMethodService(db)
    card = methods.create(PaymentMethodIn(name="Visa", is_account=True))
    methods.update(card.id, PaymentMethodUpdate(settlement_day=18))
    group = GroupService(db).create(GroupIn(name="Living", slug="living", type=GroupType.expense))
    item = ItemService(db).create(
        ItemIn(year_id=year.id, group_id=group.id, name="Groceries", slug="groceries")
    )
    return year, card, item


def test_create_resolves_period_from_settlement_day() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)
    service = TransactionService(db)

    before = service.create(
        2024, TransactionIn(date=date(2024, 3, 17), amount=Decimal("10"), account_id=card.id, item_id=item.id)
    )
    after = service.create(
        2024, TransactionIn(date=date(2024, 3, 18), amount=Decimal("10"), account_id=card.id, item_id=item.id)
    )

    assert (before.accounting_month, before.accounting_year) == (3, 2024)
    assert (after.accounting_month, after.accounting_year) == (4, 2024)


def test_explicit_period_overrides_settlement_day() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)

    txn = TransactionService(db).create(
        2024,
        TransactionIn(
            date=date(2024, 12, 20),
            amount=Decimal("10"),
            account_id=card.id,
            item_id=item.id,
            accounting_month=12,
            accounting_year=2024,
        ),
    )

    assert (txn.accounting_month, txn.accounting_year) == (12, 2024)


def test_partial_override_is_completed_from_resolved_period() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)

    txn = TransactionService(db).create(
        2024,
        TransactionIn(
            date=date(2024, 12, 20),
            amount=Decimal("10"),
            account_id=card.id,
            item_id=item.id,
            accounting_month=2,
        ),
    )

    assert (txn.accounting_month, txn.accounting_year) == (2, 2025)


def test_invalid_override_is_rejected() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)

    with pytest.raises(ValidationError):
        TransactionService(db).create(
            2024,
            TransactionIn(
                date=date(2024, 5, 1),
                amount=Decimal("10"),
                account_id=card.id,
                item_id=item.id,
                accounting_month=13,
            ),
        )


def test_missing_item_falls_back_to_unclassified() -> None:
    db = make_db()
    year, card, _ = setup_ledger(db)
    service = TransactionService(db)

    first = service.create(2024, TransactionIn(date=date(2024, 1, 2), amount=Decimal("5"), account_id=card.id))
    second = service.create(2024, TransactionIn(date=date(2024, 1, 3), amount=Decimal("6"), account_id=card.id))

    assert first.item_id == second.item_id
    unclassified = ItemService(db).get(first.item_id)
    assert unclassified.year_id == year.id
    assert GroupService(db).find_by_slug(UNCLASSIFIED_GROUP_SLUG).id == unclassified.group_id
    assert len(unclassified.monthly_values) == 12


def test_date_or_account_edit_moves_the_period() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)
    cash = PaymentMethodService(db).create(PaymentMethodIn(name="Cash"))
    service = TransactionService(db)
    txn = service.create(
        2024, TransactionIn(date=date(2024, 1, 5), amount=Decimal("10"), account_id=card.id, item_id=item.id)
    )

    service.update(txn.id, TransactionUpdate(date=date(2024, 6, 5)))
    assert (txn.accounting_month, txn.accounting_year) == (6, 2024)

    service.update(txn.id, TransactionUpdate(date=date(2024, 12, 20)))
    assert (txn.accounting_month, txn.accounting_year) == (1, 2025)

    service.update(txn.id, TransactionUpdate(account_id=cash.id))
    assert (txn.accounting_month, txn.accounting_year) == (12, 2024)


def test_explicit_period_wins_over_date_edit() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)
    service = TransactionService(db)
    txn = service.create(
        2024, TransactionIn(date=date(2024, 3, 5), amount=Decimal("10"), account_id=card.id, item_id=item.id)
    )

    service.update(
        txn.id,
        TransactionUpdate(date=date(2024, 6, 1), accounting_month=9, recalculate_period=True),
    )
    assert (txn.accounting_month, txn.accounting_year) == (9, 2024)

    service.update(txn.id, TransactionUpdate(amount=Decimal("12")))
    assert (txn.accounting_month, txn.accounting_year) == (9, 2024)

    service.update(txn.id, TransactionUpdate(recalculate_period=True))
    assert (txn.accounting_month, txn.accounting_year) == (6, 2024)


def test_update_clears_text_fields_and_moves_to_unclassified() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)
    service = TransactionService(db)
    txn = service.create(
        2024,
        TransactionIn(
            date=date(2024, 3, 5),
            amount=Decimal("10"),
            account_id=card.id,
            item_id=item.id,
            description="Weekly shop",
            third_party="Migros",
        ),
    )

    service.update(
        txn.id,
        TransactionUpdate(description=None, item_id=None, amount=Decimal("12.345")),
    )

    assert txn.description is None
    assert txn.third_party == "Migros"
    assert txn.item_id != item.id
    assert txn.amount == Decimal("12.35")


def test_bulk_create_and_bulk_delete() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)
    service = TransactionService(db)

    created = service.bulk_create(
        2024,
        [
            TransactionIn(date=date(2024, 1, day), amount=Decimal("1"), account_id=card.id, item_id=item.id)
            for day in (1, 2, 3)
        ],
    )

    assert len(created) == 3
    assert service.bulk_create(2024, []) == []
    deleted = service.bulk_delete([created[0].id, created[1].id, 9999])
    assert deleted == 2
    assert [txn.id for txn in service.list_for_year(2024)] == [created[2].id]
    assert service.bulk_delete([]) == 0


def test_transactions_of_other_budgets_are_invisible() -> None:
    session = make_session()
    alice = make_db(session, "alice")
    _, card, item = setup_ledger(alice)
    txn = TransactionService(alice).create(
        2024, TransactionIn(date=date(2024, 1, 5), amount=Decimal("10"), account_id=card.id, item_id=item.id)
    )
    bob = make_db(session, "bob")
    YearService(bob).create(2024)

    with pytest.raises(NotFound):
        TransactionService(bob).get(txn.id)
    with pytest.raises(NotFound):
        TransactionService(bob).delete(txn.id)
    assert TransactionService(bob).bulk_delete([txn.id]) == 0
    assert TransactionService(bob).list_for_year(2024) == []
    with pytest.raises(NotFound):
        TransactionService(bob).create(
            2024, TransactionIn(date=date(2024, 1, 5), amount=Decimal("1"), account_id=card.id)
        )


def test_third_parties_are_ranked_by_use() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)
    service = TransactionService(db)
    for name in ("Migros", "Coop", "Migros", "  ", "Migrolino"):
        service.create(
            2024,
            TransactionIn(
                date=date(2024, 2, 1),
                amount=Decimal("1"),
                account_id=card.id,
                item_id=item.id,
                third_party=name,
            ),
        )

    assert service.third_parties() == ["Migros", "Coop", "Migrolino"]
    assert service.third_parties("migr") == ["Migros", "Migrolino"]


def test_list_for_year_includes_group_details() -> None:
    db = make_db()
    _, card, item = setup_ledger(db)
    service = TransactionService(db)
    service.create(
        2024, TransactionIn(date=date(2024, 2, 1), amount=Decimal("9.90"), account_id=card.id, item_id=item.id)
    )

    out = transaction_out(service.list_for_year(2024)[0])

    assert out.item_name == "Groceries"
    assert out.group_name == "Living"
    assert out.group_type == GroupType.expense
    assert out.amount == 9.9
    assert service.list_for_year(2030) == []
