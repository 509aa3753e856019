"""Financial context handed to the chat advisor.

The advisor itself (a language model behind some API) is not part of this
service; anything implementing :class:`Advisor` can be plugged into the chat
endpoint.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from dates import local_today, month_bounds, month_key
from invoices import summarize_invoices
from models import CreditCardTransaction, InvoicePayment, InvoiceStatus, TransactionType
from services import (
    AccountService,
    CategoryService,
    CreditCardService,
    StatsService,
    TransactionService,
)


logger = logging.getLogger(__name__)


class Advisor(Protocol):
    def reply(self, message: str, context: dict) -> str: ...


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


def _open_card_balances(session: Session, account_id: int) -> dict[int, Decimal]:
    paid = {
        (payment.credit_card_id, payment.invoice_month)
        for payment in session.scalars(
            select(InvoicePayment).where(
                InvoicePayment.account_id == account_id,
                InvoicePayment.status == InvoiceStatus.paid,
            )
        ).all()
    }
    rows = session.scalars(
        select(CreditCardTransaction).where(
            CreditCardTransaction.account_id == account_id
        )
    ).all()
    balances: dict[int, Decimal] = {}
    for key, group in summarize_invoices(rows).items():
        if key in paid:
            continue
        balances[group.credit_card_id] = (
            balances.get(group.credit_card_id, Decimal("0.00")) + group.total
        )
    return balances


def build_financial_context(
    session: Session, account_id: int, today: Optional[date] = None
) -> dict:
    today = today or local_today()
    month = month_key(today)
    account = AccountService(session).get(account_id)
    stats_service = StatsService(session)
    stats = stats_service.account_stats(account_id, month)
    current_balance = stats_service.balance_as_of(account_id, today)

    start, end = month_bounds(month)
    income = stats_service.category_totals(
        account_id, start, end, TransactionType.income
    )
    expense = stats_service.category_stats(account_id, month)

    names = {c.id: c.name for c in CategoryService(session).list_all(account_id)}
    recent = TransactionService(session).recent(account_id, today, limit=10)
    card_balances = _open_card_balances(session, account_id)

    context = {
        "account": {"id": account.id, "name": account.name, "type": account.type.value},
        "current_month": month,
        "stats": {
            "total_balance": _money(current_balance),
            "monthly_income": _money(stats.monthly_income),
            "monthly_expenses": _money(stats.monthly_expenses),
            "projected_balance": _money(stats.monthly_result),
        },
        "categories": {
            "income": [
                {"name": item.name, "total": _money(item.total), "color": item.color}
                for item in income
                if item.total > 0
            ],
            "expense": [
                {"name": item.name, "total": _money(item.total), "color": item.color}
                for item in expense
            ],
        },
        "recent_transactions": [
            {
                "description": entry.description,
                "amount": _money(entry.amount),
                "type": entry.type.value,
                "category_name": names.get(entry.category_id, "Sem categoria"),
                "date": entry.date.isoformat(),
            }
            for entry in recent
        ],
        "credit_cards": [
            {
                "name": card.name,
                "current_balance": _money(card_balances.get(card.id, Decimal("0.00"))),
                "credit_limit": _money(card.credit_limit),
                "due_date": card.due_date,
            }
            for card in CreditCardService(session).list_all(account_id)
        ],
        "bank_accounts": [
            {"name": bank_account.name, "balance": _money(balance)}
            for bank_account, balance in stats_service.bank_balances(account_id, today)
        ],
    }
    logger.info(
        f"advisor_context: account_id={account_id} month={month} "
        f"recent={len(context['recent_transactions'])}"
    )
    return context
