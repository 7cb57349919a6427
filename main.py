import logging
from datetime import date
from typing import Callable, Iterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, tenant_scope, user_scope
from errors import ConstraintViolation, NotFound
from money import to_number
from periods import resolve_period
from schemas import (
    AccountBalanceIn,
    AccountRef,
    AccountsResponse,
    BudgetDataOut,
    BulkDeleteIn,
    BulkDeleteOut,
    GroupIn,
    GroupUpdate,
    ItemIn,
    ItemMove,
    ItemUpdate,
    MonthlyAmounts,
    MonthlyValueIn,
    PaymentMethodIn,
    PaymentMethodOut,
    PaymentMethodUpdate,
    PeriodOut,
    ReorderEntry,
    SavingsAccountIn,
    SummaryOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    TransferIn,
    TransferOut,
    TransferUpdate,
    YearIn,
    YearOut,
    YearUpdate,
)
from services import (
    AccountService,
    BudgetService,
    GroupService,
    ItemService,
    PaymentMethodService,
    TransactionService,
    TransferService,
    YearService,
    resolve_budget_id,
    transaction_out,
)
from tenancy import TenantContext, TenantSession

logging.basicConfig(level=get_settings().log_level)

app = FastAPI(title="Household Budget")


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConstraintViolation):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_tenant(
    x_user_id: Optional[str] = Header(default=None),
    x_budget_id: Optional[int] = Header(default=None),
    factory: Callable[[], Session] = Depends(get_session_factory),
) -> TenantContext:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        with user_scope(x_user_id, factory) as db:
            budget_id = resolve_budget_id(db, x_budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return TenantContext(user_id=x_user_id, budget_id=budget_id)


def get_db(
    context: TenantContext = Depends(get_tenant),
    factory: Callable[[], Session] = Depends(get_session_factory),
) -> Iterator[TenantSession]:
    with tenant_scope(context, factory, rejected=(ValueError, HTTPException)) as db:
        yield db


@app.get("/api/period", response_model=PeriodOut)
def accounting_period(
    on: date,
    account_id: Optional[int] = None,
    db: TenantSession = Depends(get_db),
):
    settlement_day = None
    if account_id is not None:
        try:
            settlement_day = PaymentMethodService(db).get(account_id).settlement_day
        except ValueError as exc:
            raise http_error(exc) from exc
    period = resolve_period(on, settlement_day)
    return PeriodOut(month=period.month, year=period.year)


@app.get("/api/years", response_model=list[YearOut])
def list_years(db: TenantSession = Depends(get_db)):
    return [YearOut.model_validate(year) for year in YearService(db).list_all()]


@app.post("/api/years", response_model=YearOut, status_code=201)
def create_year(data: YearIn, db: TenantSession = Depends(get_db)):
    try:
        year = YearService(db).create(data.year, data.initial_balance)
    except ValueError as exc:
        raise http_error(exc) from exc
    return YearOut.model_validate(year)


@app.patch("/api/years/{year_id}", response_model=YearOut)
def update_year(year_id: int, data: YearUpdate, db: TenantSession = Depends(get_db)):
    try:
        year = YearService(db).update_initial_balance(year_id, data.initial_balance)
    except ValueError as exc:
        raise http_error(exc) from exc
    return YearOut.model_validate(year)


@app.get("/api/years/{year}/accounts", response_model=AccountsResponse)
def year_accounts(year: int, db: TenantSession = Depends(get_db)):
    return AccountService(db).accounts_for_year(year)


@app.put("/api/years/{year}/accounts/{account_id}/balance", response_model=AccountsResponse)
def set_account_balance(
    year: int,
    account_id: int,
    data: AccountBalanceIn,
    db: TenantSession = Depends(get_db),
):
    service = AccountService(db)
    try:
        service.set_balance(year, account_id, data.initial_balance)
    except ValueError as exc:
        raise http_error(exc) from exc
    return service.accounts_for_year(year)


@app.get("/api/years/{year}/budget", response_model=BudgetDataOut)
def budget_data(year: int, db: TenantSession = Depends(get_db)):
    try:
        return BudgetService(db).budget_data(year)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/years/{year}/summary", response_model=SummaryOut)
def budget_summary(year: int, db: TenantSession = Depends(get_db)):
    try:
        return BudgetService(db).summary(year)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/groups")
def list_groups(db: TenantSession = Depends(get_db)):
    return [
        {
            "id": group.id,
            "name": group.name,
            "slug": group.slug,
            "type": group.type.value,
            "sort_order": group.sort_order,
        }
        for group in GroupService(db).list_all()
    ]


@app.post("/api/groups", status_code=201)
def create_group(data: GroupIn, db: TenantSession = Depends(get_db)):
    try:
        group = GroupService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"id": group.id, "slug": group.slug}


@app.put("/api/groups/order", status_code=204)
def reorder_groups(entries: list[ReorderEntry], db: TenantSession = Depends(get_db)):
    try:
        GroupService(db).reorder(entries)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.patch("/api/groups/{group_id}")
def update_group(group_id: int, data: GroupUpdate, db: TenantSession = Depends(get_db)):
    try:
        group = GroupService(db).update(group_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"id": group.id, "slug": group.slug}


@app.delete("/api/groups/{group_id}", status_code=204)
def delete_group(group_id: int, db: TenantSession = Depends(get_db)):
    try:
        GroupService(db).delete(group_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/items", status_code=201)
def create_item(data: ItemIn, db: TenantSession = Depends(get_db)):
    try:
        item = ItemService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"id": item.id, "slug": item.slug}


@app.put("/api/items/order", status_code=204)
def reorder_items(entries: list[ReorderEntry], db: TenantSession = Depends(get_db)):
    try:
        ItemService(db).reorder(entries)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.patch("/api/items/{item_id}")
def update_item(item_id: int, data: ItemUpdate, db: TenantSession = Depends(get_db)):
    try:
        item = ItemService(db).update(item_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"id": item.id, "slug": item.slug}


@app.put("/api/items/{item_id}/group")
def move_item(item_id: int, data: ItemMove, db: TenantSession = Depends(get_db)):
    try:
        item = ItemService(db).move(item_id, data.group_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"id": item.id, "group_id": item.group_id}


@app.delete("/api/items/{item_id}", status_code=204)
def delete_item(item_id: int, db: TenantSession = Depends(get_db)):
    try:
        ItemService(db).delete(item_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.put("/api/items/{item_id}/months/{month}", response_model=MonthlyAmounts)
def set_monthly_value(
    item_id: int,
    month: int,
    data: MonthlyValueIn,
    db: TenantSession = Depends(get_db),
):
    try:
        value = ItemService(db).set_monthly_value(item_id, month, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return MonthlyAmounts(budget=to_number(value.budget), actual=to_number(value.actual))


@app.get("/api/payment-methods", response_model=list[PaymentMethodOut])
def list_payment_methods(db: TenantSession = Depends(get_db)):
    return [PaymentMethodOut.model_validate(m) for m in PaymentMethodService(db).list_all()]


@app.post("/api/payment-methods", response_model=PaymentMethodOut, status_code=201)
def create_payment_method(data: PaymentMethodIn, db: TenantSession = Depends(get_db)):
    try:
        method = PaymentMethodService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return PaymentMethodOut.model_validate(method)


@app.put("/api/payment-methods/order", status_code=204)
def reorder_payment_methods(
    entries: list[ReorderEntry], db: TenantSession = Depends(get_db)
):
    try:
        PaymentMethodService(db).reorder(entries)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.patch("/api/payment-methods/{method_id}", response_model=PaymentMethodOut)
def update_payment_method(
    method_id: int, data: PaymentMethodUpdate, db: TenantSession = Depends(get_db)
):
    try:
        method = PaymentMethodService(db).update(method_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return PaymentMethodOut.model_validate(method)


@app.put("/api/payment-methods/{method_id}/savings", response_model=PaymentMethodOut)
def set_savings_account(
    method_id: int, data: SavingsAccountIn, db: TenantSession = Depends(get_db)
):
    try:
        method = PaymentMethodService(db).set_savings_account(
            method_id, data.is_savings_account
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return PaymentMethodOut.model_validate(method)


@app.delete("/api/payment-methods/{method_id}", status_code=204)
def delete_payment_method(method_id: int, db: TenantSession = Depends(get_db)):
    try:
        PaymentMethodService(db).delete(method_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/years/{year}/transactions", response_model=list[TransactionOut])
def list_transactions(year: int, db: TenantSession = Depends(get_db)):
    return [transaction_out(txn) for txn in TransactionService(db).list_for_year(year)]


@app.post(
    "/api/years/{year}/transactions", response_model=TransactionOut, status_code=201
)
def create_transaction(
    year: int, data: TransactionIn, db: TenantSession = Depends(get_db)
):
    service = TransactionService(db)
    try:
        txn = service.create(year, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.post(
    "/api/years/{year}/transactions/bulk",
    response_model=list[TransactionOut],
    status_code=201,
)
def bulk_create_transactions(
    year: int, rows: list[TransactionIn], db: TenantSession = Depends(get_db)
):
    service = TransactionService(db)
    try:
        created = service.bulk_create(year, rows)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [transaction_out(txn) for txn in created]


@app.post("/api/transactions/bulk-delete", response_model=BulkDeleteOut)
def bulk_delete_transactions(data: BulkDeleteIn, db: TenantSession = Depends(get_db)):
    return BulkDeleteOut(deleted=TransactionService(db).bulk_delete(data.ids))


@app.get("/api/third-parties", response_model=list[str])
def third_parties(search: Optional[str] = None, db: TenantSession = Depends(get_db)):
    return TransactionService(db).third_parties(search)


@app.patch("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int, data: TransactionUpdate, db: TenantSession = Depends(get_db)
):
    service = TransactionService(db)
    try:
        txn = service.update(transaction_id, data)
        db.refresh(txn)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: TenantSession = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/years/{year}/transfers", response_model=list[TransferOut])
def list_transfers(year: int, db: TenantSession = Depends(get_db)):
    return TransferService(db).list_for_year(year)


@app.get("/api/years/{year}/transfer-accounts", response_model=list[AccountRef])
def transfer_accounts(year: int, db: TenantSession = Depends(get_db)):
    return TransferService(db).available_accounts(year)


@app.post("/api/years/{year}/transfers", response_model=TransferOut, status_code=201)
def create_transfer(year: int, data: TransferIn, db: TenantSession = Depends(get_db)):
    service = TransferService(db)
    try:
        transfer = service.create(year, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return service.to_out(transfer)


@app.patch("/api/transfers/{transfer_id}", response_model=TransferOut)
def update_transfer(
    transfer_id: int, data: TransferUpdate, db: TenantSession = Depends(get_db)
):
    service = TransferService(db)
    try:
        transfer = service.update(transfer_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return service.to_out(transfer)


@app.delete("/api/transfers/{transfer_id}", status_code=204)
def delete_transfer(transfer_id: int, db: TenantSession = Depends(get_db)):
    try:
        TransferService(db).delete(transfer_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
