import logging
import math
from datetime import date, datetime
from typing import Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from advisor import Advisor, build_financial_context
from database import SessionLocal
from dates import local_today, month_key
from errors import InvoiceTransactionLocked, NotFoundError, RateLimitExceeded
from invoices import InvoiceSummary
from models import (
    Account,
    BankAccount,
    Category,
    CreditCard,
    CreditCardTransaction,
    EditScope,
    InvoicePayment,
    Transaction,
)
from periods import Period, resolve_period
from rate_limit import ai_chat_rate_limiter
from recurrence import LedgerEntry
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountPatch,
    BankAccountIn,
    CardImportIn,
    CategoryIn,
    CategoryPatch,
    ChatIn,
    CreditCardIn,
    CreditCardPatch,
    CreditCardTransactionIn,
    CreditCardTransactionPatch,
    GroupRef,
    InvoicePaymentIn,
    TransactionIn,
    TransactionUpdateIn,
)
from services import (
    AccountService,
    BankAccountService,
    CategoryService,
    CreditCardService,
    CreditCardTransactionService,
    ImportService,
    StatsService,
    TransactionService,
    invoice_aggregator,
)


app = FastAPI(title="Finance Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_advisor() -> Optional[Advisor]:
    # Deployments plug a model-backed advisor in via dependency_overrides.
    return None


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvoiceTransactionLocked):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    month = request.query_params.get("month")
    try:
        return resolve_period(period_slug, start, end, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def month_from_request(month: Optional[str]) -> str:
    return month or month_key(local_today())


def _money(value) -> str:
    return f"{value:.2f}"


def _iso(value: Optional[Union[date, datetime]]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_account(account: Account) -> dict:
    return {"id": account.id, "name": account.name, "type": account.type.value}


def serialize_category(category: Category) -> dict:
    return {
        "id": category.id,
        "account_id": category.account_id,
        "name": category.name,
        "color": category.color,
        "icon": category.icon,
        "type": category.type.value,
    }


def serialize_bank_account(bank_account: BankAccount) -> dict:
    return {
        "id": bank_account.id,
        "account_id": bank_account.account_id,
        "name": bank_account.name,
        "initial_balance": _money(bank_account.initial_balance),
        "pix": bank_account.pix,
    }


def serialize_transaction(txn: Union[Transaction, LedgerEntry]) -> dict:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "description": txn.description,
        "amount": _money(txn.amount),
        "type": txn.type.value,
        "date": txn.date.isoformat(),
        "category_id": txn.category_id,
        "bank_account_id": txn.bank_account_id,
        "payment_method": txn.payment_method,
        "client_name": txn.client_name,
        "project_name": txn.project_name,
        "cost_center": txn.cost_center,
        "installments": txn.installments,
        "current_installment": txn.current_installment,
        "installments_group_id": txn.installments_group_id,
        "launch_type": txn.launch_type.value if txn.launch_type else None,
        "recurrence_frequency": txn.recurrence_frequency,
        "recurrence_end_date": _iso(txn.recurrence_end_date),
        "recurrence_group_id": txn.recurrence_group_id,
        "is_exception": txn.is_exception,
        "exception_for_date": _iso(txn.exception_for_date),
        "credit_card_id": txn.credit_card_id,
        "credit_card_invoice_id": txn.credit_card_invoice_id,
        "is_invoice_transaction": txn.is_invoice_transaction,
        "paid": txn.paid,
        "virtual_date": _iso(getattr(txn, "virtual_date", None)),
        "is_virtual": getattr(txn, "is_virtual", False),
    }


def serialize_credit_card(card: CreditCard) -> dict:
    return {
        "id": card.id,
        "account_id": card.account_id,
        "name": card.name,
        "brand": card.brand,
        "credit_limit": _money(card.credit_limit),
        "due_date": card.due_date,
        "closing_day": card.closing_day,
    }


def serialize_card_transaction(row: CreditCardTransaction) -> dict:
    return {
        "id": row.id,
        "account_id": row.account_id,
        "credit_card_id": row.credit_card_id,
        "category_id": row.category_id,
        "description": row.description,
        "amount": _money(row.amount),
        "date": row.date.isoformat(),
        "installments": row.installments,
        "current_installment": row.current_installment,
        "installments_group_id": row.installments_group_id,
        "invoice_month": row.invoice_month,
        "client_name": row.client_name,
        "project_name": row.project_name,
        "cost_center": row.cost_center,
    }


def serialize_invoice(summary: InvoiceSummary) -> dict:
    return {
        "invoice_id": summary.invoice_id,
        "credit_card_id": summary.credit_card_id,
        "card_name": summary.card_name,
        "invoice_month": summary.invoice_month,
        "label": summary.label,
        "total": _money(summary.total),
        "period_start": summary.period_start.isoformat(),
        "period_end": summary.period_end.isoformat(),
        "due_date": summary.due_date.isoformat(),
        "status": summary.status.value,
        "paid_at": _iso(summary.paid_at),
        "transaction_id": summary.transaction_id,
        "transactions": [serialize_card_transaction(t) for t in summary.transactions],
    }


def serialize_payment(payment: InvoicePayment) -> dict:
    return {
        "id": payment.id,
        "credit_card_id": payment.credit_card_id,
        "invoice_month": payment.invoice_month,
        "total_amount": _money(payment.total_amount),
        "due_date": payment.due_date.isoformat(),
        "status": payment.status.value,
        "paid_at": _iso(payment.paid_at),
        "transaction_id": payment.transaction_id,
    }


# Accounts


@app.get("/api/accounts")
def api_list_accounts(db: Session = Depends(get_db)):
    return [serialize_account(a) for a in AccountService(db).list_all()]


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    account = AccountService(db).create(data)
    return serialize_account(account)


@app.get("/api/accounts/{account_id}")
def api_get_account(account_id: int, db: Session = Depends(get_db)):
    try:
        return serialize_account(AccountService(db).get(account_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/api/accounts/{account_id}")
def api_update_account(
    account_id: int, data: AccountPatch, db: Session = Depends(get_db)
):
    try:
        return serialize_account(AccountService(db).update(account_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/accounts/{account_id}", status_code=204)
def api_delete_account(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/accounts/{account_id}/stats")
def api_account_stats(
    account_id: int, month: Optional[str] = None, db: Session = Depends(get_db)
):
    try:
        AccountService(db).get(account_id)
        stats = StatsService(db).account_stats(account_id, month_from_request(month))
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "month": stats.month,
        "monthly_income": _money(stats.monthly_income),
        "monthly_expenses": _money(stats.monthly_expenses),
        "monthly_result": _money(stats.monthly_result),
        "total_balance": _money(stats.total_balance),
        "transaction_count": stats.transaction_count,
    }


# Categories


@app.get("/api/accounts/{account_id}/categories")
def api_list_categories(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).get(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [serialize_category(c) for c in CategoryService(db).list_all(account_id)]


@app.post("/api/accounts/{account_id}/categories", status_code=201)
def api_create_category(
    account_id: int, data: CategoryIn, db: Session = Depends(get_db)
):
    try:
        return serialize_category(CategoryService(db).create(account_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/accounts/{account_id}/categories/stats")
def api_category_stats(
    account_id: int, month: Optional[str] = None, db: Session = Depends(get_db)
):
    try:
        AccountService(db).get(account_id)
        stats = StatsService(db).category_stats(account_id, month_from_request(month))
    except ValueError as exc:
        raise http_error(exc) from exc
    return [
        {
            "category_id": item.category_id,
            "name": item.name,
            "color": item.color,
            "icon": item.icon,
            "total": _money(item.total),
            "count": item.count,
        }
        for item in stats
    ]


@app.patch("/api/categories/{category_id}")
def api_update_category(
    category_id: int, data: CategoryPatch, db: Session = Depends(get_db)
):
    try:
        return serialize_category(CategoryService(db).update(category_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def api_delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc


# Bank accounts


@app.get("/api/accounts/{account_id}/bank-accounts")
def api_list_bank_accounts(account_id: int, db: Session = Depends(get_db)):
    return [
        serialize_bank_account(b) for b in BankAccountService(db).list_all(account_id)
    ]


@app.post("/api/accounts/{account_id}/bank-accounts", status_code=201)
def api_create_bank_account(
    account_id: int, data: BankAccountIn, db: Session = Depends(get_db)
):
    try:
        return serialize_bank_account(BankAccountService(db).create(account_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


# Transactions


@app.get("/api/accounts/{account_id}/transactions")
def api_list_transactions(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    period = period_from_request(request)
    try:
        entries = TransactionService(db).list_range(account_id, period.start, period.end)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "period": {
            "slug": period.slug,
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
        },
        "items": [serialize_transaction(entry) for entry in entries],
    }


@app.post("/api/accounts/{account_id}/transactions", status_code=201)
def api_create_transaction(
    account_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    try:
        rows = TransactionService(db).create(account_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [serialize_transaction(row) for row in rows]


@app.get("/api/accounts/{account_id}/transactions/export.csv")
def api_export_transactions(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    period = period_from_request(request)
    try:
        csv_text = TransactionService(db).export_csv(
            account_id, period.start, period.end
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    filename = f"transactions_{period.start}_{period.end}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/transactions/{transaction_id}")
def api_get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return serialize_transaction(TransactionService(db).get(transaction_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: int, data: TransactionUpdateIn, db: Session = Depends(get_db)
):
    try:
        row = TransactionService(db).update(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return serialize_transaction(row)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(
    transaction_id: int,
    edit_scope: Optional[EditScope] = None,
    installments_group_id: Optional[str] = None,
    recurrence_group_id: Optional[str] = None,
    exception_for_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    ref = GroupRef(
        installments_group_id=installments_group_id,
        recurrence_group_id=recurrence_group_id,
        exception_for_date=exception_for_date,
    )
    try:
        TransactionService(db).delete(transaction_id, edit_scope, ref)
    except ValueError as exc:
        raise http_error(exc) from exc


# Credit cards


@app.get("/api/accounts/{account_id}/credit-cards")
def api_list_credit_cards(account_id: int, db: Session = Depends(get_db)):
    return [serialize_credit_card(c) for c in CreditCardService(db).list_all(account_id)]


@app.post("/api/accounts/{account_id}/credit-cards", status_code=201)
def api_create_credit_card(
    account_id: int, data: CreditCardIn, db: Session = Depends(get_db)
):
    try:
        return serialize_credit_card(CreditCardService(db).create(account_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/api/credit-cards/{card_id}")
def api_update_credit_card(
    card_id: int, data: CreditCardPatch, db: Session = Depends(get_db)
):
    try:
        return serialize_credit_card(CreditCardService(db).update(card_id, data))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/credit-cards/{card_id}", status_code=204)
def api_delete_credit_card(card_id: int, db: Session = Depends(get_db)):
    try:
        CreditCardService(db).delete(card_id)
    except ValueError as exc:
        raise http_error(exc) from exc


# Credit card transactions


@app.get("/api/accounts/{account_id}/credit-card-transactions")
def api_list_card_transactions(
    account_id: int,
    credit_card_id: Optional[int] = None,
    invoice_month: Optional[str] = None,
    db: Session = Depends(get_db),
):
    rows = CreditCardTransactionService(db).list_all(
        account_id, credit_card_id, invoice_month
    )
    return [serialize_card_transaction(row) for row in rows]


@app.post("/api/accounts/{account_id}/credit-card-transactions", status_code=201)
def api_create_card_transaction(
    account_id: int, data: CreditCardTransactionIn, db: Session = Depends(get_db)
):
    try:
        rows = CreditCardTransactionService(db).create(account_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [serialize_card_transaction(row) for row in rows]


@app.post("/api/accounts/{account_id}/credit-card-transactions/import", status_code=201)
def api_import_card_transactions(
    account_id: int, data: CardImportIn, db: Session = Depends(get_db)
):
    try:
        rows = ImportService(db).import_card_candidates(account_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    logging.info(f"card_import_request: account_id={account_id} rows={len(rows)}")
    return {
        "transactions_count": len(rows),
        "items": [serialize_card_transaction(row) for row in rows],
    }


@app.patch("/api/credit-card-transactions/{transaction_id}")
def api_update_card_transaction(
    transaction_id: int,
    data: CreditCardTransactionPatch,
    edit_scope: Optional[EditScope] = None,
    db: Session = Depends(get_db),
):
    try:
        row = CreditCardTransactionService(db).update(transaction_id, data, edit_scope)
    except ValueError as exc:
        raise http_error(exc) from exc
    return serialize_card_transaction(row)


@app.delete("/api/credit-card-transactions/{transaction_id}", status_code=204)
def api_delete_card_transaction(
    transaction_id: int,
    edit_scope: Optional[EditScope] = None,
    db: Session = Depends(get_db),
):
    try:
        CreditCardTransactionService(db).delete(transaction_id, edit_scope)
    except ValueError as exc:
        raise http_error(exc) from exc


# Invoices


@app.get("/api/accounts/{account_id}/credit-card-invoices")
def api_list_invoices(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).get(account_id)
        summaries = invoice_aggregator(db).list_invoices(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [serialize_invoice(summary) for summary in summaries]


@app.post("/api/accounts/{account_id}/credit-card-invoices/resync")
def api_resync_invoices(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).get(account_id)
        result = invoice_aggregator(db).resync(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "created": result.created,
        "updated": result.updated,
        "removed": result.removed,
        "repaired": result.repaired,
    }


@app.post("/api/accounts/{account_id}/credit-card-invoices/{card_id}/{month}/pay")
def api_pay_invoice(
    account_id: int,
    card_id: int,
    month: str,
    data: Optional[InvoicePaymentIn] = None,
    db: Session = Depends(get_db),
):
    paid_at = data.paid_at if data else None
    try:
        payment = invoice_aggregator(db).set_paid(
            account_id, card_id, month, True, paid_at
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return serialize_payment(payment)


@app.post("/api/accounts/{account_id}/credit-card-invoices/{card_id}/{month}/reopen")
def api_reopen_invoice(
    account_id: int, card_id: int, month: str, db: Session = Depends(get_db)
):
    try:
        payment = invoice_aggregator(db).set_paid(account_id, card_id, month, False)
    except ValueError as exc:
        raise http_error(exc) from exc
    return serialize_payment(payment)


# Chat


@app.post("/api/accounts/{account_id}/chat")
def api_chat(
    account_id: int,
    data: ChatIn,
    db: Session = Depends(get_db),
    advisor: Optional[Advisor] = Depends(get_advisor),
):
    try:
        ai_chat_rate_limiter.check(f"ai-chat:{account_id}")
    except RateLimitExceeded as exc:
        seconds = max(1, math.ceil((exc.reset_at - datetime.utcnow()).total_seconds()))
        raise HTTPException(
            status_code=429,
            detail={
                "message": f"Too many requests. Try again in {seconds} seconds.",
                "reset_at": exc.reset_at.isoformat(),
            },
        ) from exc
    if advisor is None:
        raise HTTPException(status_code=503, detail="Chat advisor is not configured")
    try:
        context = build_financial_context(db, account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    reply = advisor.reply(data.message, context)
    return {"reply": reply}
