"""Credit-card invoices as derived ledger rows.

Card purchases live in ``credit_card_transactions``. Each ``(card, invoice
month)`` with a positive total is projected into exactly one synthetic
``Transaction`` (``is_invoice_transaction``) dated on the invoice due date, so
the cash ledger shows the bill rather than every purchase. ``resync`` rebuilds
that projection from scratch and can be called any number of times.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import rollback_on_error
from dates import compute_invoice_due_date, format_month_label, local_today
from errors import NotFoundError
from models import (
    CreditCard,
    CreditCardTransaction,
    InvoicePayment,
    InvoiceStatus,
    LaunchType,
    Transaction,
    TransactionType,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategorySpec:
    name: str
    color: str
    icon: str
    type: TransactionType = TransactionType.expense


INVOICE_CATEGORY = CategorySpec(
    name="Faturas de Cartão", color="#DC2626", icon="fas fa-credit-card"
)

EnsureCategory = Callable[[int, CategorySpec], int]
RepairHook = Callable[[str, int], None]


@dataclass
class InvoiceGroup:
    credit_card_id: int
    invoice_month: str
    total: Decimal
    period_start: date
    period_end: date
    transactions: list[CreditCardTransaction] = field(default_factory=list)


@dataclass
class InvoiceSummary:
    invoice_id: str
    credit_card_id: int
    card_name: str
    invoice_month: str
    label: str
    total: Decimal
    period_start: date
    period_end: date
    due_date: date
    status: InvoiceStatus
    paid_at: Optional[datetime]
    transaction_id: Optional[int]
    transactions: list[CreditCardTransaction]


@dataclass(frozen=True)
class ResyncResult:
    created: int = 0
    updated: int = 0
    removed: int = 0
    repaired: int = 0


def invoice_id(credit_card_id: int, invoice_month: str) -> str:
    return f"{credit_card_id}-{invoice_month}"


def split_invoice_id(value: str) -> tuple[int, str]:
    card_raw, _, month = value.partition("-")
    try:
        return int(card_raw), month
    except ValueError as exc:
        raise ValueError(f"Invalid invoice id '{value}'") from exc


def summarize_invoices(
    rows: Iterable[CreditCardTransaction],
) -> dict[tuple[int, str], InvoiceGroup]:
    buckets: dict[tuple[int, str], list[CreditCardTransaction]] = defaultdict(list)
    for row in rows:
        buckets[(row.credit_card_id, row.invoice_month)].append(row)

    groups = {}
    for (card_id, month), members in buckets.items():
        dates = [row.date for row in members]
        groups[(card_id, month)] = InvoiceGroup(
            credit_card_id=card_id,
            invoice_month=month,
            total=sum((Decimal(row.amount) for row in members), Decimal("0.00")),
            period_start=min(dates),
            period_end=max(dates),
            transactions=members,
        )
    return groups


class InvoiceAggregator:
    def __init__(
        self,
        session: Session,
        ensure_category: EnsureCategory,
        repair_hook: Optional[RepairHook] = None,
    ) -> None:
        self.session = session
        self.ensure_category = ensure_category
        self.repair_hook = repair_hook

    def _cards(self, account_id: int) -> dict[int, CreditCard]:
        stmt = select(CreditCard).where(CreditCard.account_id == account_id)
        return {card.id: card for card in self.session.scalars(stmt).all()}

    def _groups(self, account_id: int) -> dict[tuple[int, str], InvoiceGroup]:
        stmt = (
            select(CreditCardTransaction)
            .where(CreditCardTransaction.account_id == account_id)
            .order_by(CreditCardTransaction.date, CreditCardTransaction.id)
        )
        return summarize_invoices(self.session.scalars(stmt).all())

    def _payments(self, account_id: int) -> dict[tuple[int, str], InvoicePayment]:
        stmt = select(InvoicePayment).where(InvoicePayment.account_id == account_id)
        return {
            (payment.credit_card_id, payment.invoice_month): payment
            for payment in self.session.scalars(stmt).all()
        }

    def _remove(self, rows: list[Transaction]) -> None:
        if not rows:
            return
        ids = [row.id for row in rows]
        linked = self.session.scalars(
            select(InvoicePayment).where(InvoicePayment.transaction_id.in_(ids))
        ).all()
        for payment in linked:
            payment.transaction_id = None
            payment.status = InvoiceStatus.pending
            payment.paid_at = None
        self.session.flush()
        for row in rows:
            self.session.delete(row)
        self.session.flush()

    def resync(self, account_id: int, *, commit: bool = True) -> ResyncResult:
        cards = self._cards(account_id)
        groups = self._groups(account_id)
        category_id = self.ensure_category(account_id, INVOICE_CATEGORY)

        existing = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.account_id == account_id,
                Transaction.is_invoice_transaction.is_(True),
            )
            .order_by(Transaction.id)
        ).all()
        by_invoice: dict[str, Transaction] = {}
        offenders = []
        for txn in existing:
            key = txn.credit_card_invoice_id
            if not key or key in by_invoice:
                offenders.append(txn)
            else:
                by_invoice[key] = txn
        if offenders:
            self._remove(offenders)
            logger.warning(
                f"invoice_resync_repair: account_id={account_id} "
                f"removed_rows={len(offenders)}"
            )
            if self.repair_hook:
                self.repair_hook("duplicate_or_orphan_invoice_rows", len(offenders))

        payments = self._payments(account_id)
        current: dict[str, tuple[Transaction, InvoiceGroup, date]] = {}
        created = updated = 0
        for (card_id, month), group in groups.items():
            card = cards.get(card_id)
            if group.total <= 0 or card is None:
                continue
            key = invoice_id(card_id, month)
            payment = payments.get((card_id, month))
            due = compute_invoice_due_date(month, card.due_date)
            values = {
                "description": f"Fatura {card.name} - {format_month_label(month)}",
                "amount": group.total,
                "type": TransactionType.expense,
                "date": due,
                "category_id": category_id,
                "credit_card_id": card_id,
                "paid": payment is not None and payment.status == InvoiceStatus.paid,
            }
            txn = by_invoice.get(key)
            if txn is None:
                txn = Transaction(
                    account_id=account_id,
                    credit_card_invoice_id=key,
                    is_invoice_transaction=True,
                    launch_type=LaunchType.unica,
                    installments=1,
                    current_installment=1,
                    **values,
                )
                self.session.add(txn)
                created += 1
            elif any(getattr(txn, name) != value for name, value in values.items()):
                for name, value in values.items():
                    setattr(txn, name, value)
                updated += 1
            current[key] = (txn, group, due)

        stale = [txn for key, txn in by_invoice.items() if key not in current]
        self._remove(stale)
        self.session.flush()

        for (card_id, month), payment in payments.items():
            entry = current.get(invoice_id(card_id, month))
            if entry is None:
                continue
            txn, group, due = entry
            if payment.transaction_id != txn.id:
                payment.transaction_id = txn.id
            payment.total_amount = group.total
            payment.due_date = due

        result = ResyncResult(
            created=created,
            updated=updated,
            removed=len(stale),
            repaired=len(offenders),
        )
        logger.info(
            f"invoice_resync: account_id={account_id} created={result.created} "
            f"updated={result.updated} removed={result.removed} "
            f"repaired={result.repaired}"
        )
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        return result

    def _sync_payments(self, account_id: int, today: date) -> None:
        cards = self._cards(account_id)
        payments = self._payments(account_id)
        for (card_id, month), group in self._groups(account_id).items():
            card = cards.get(card_id)
            if group.total <= 0 or card is None:
                continue
            due = compute_invoice_due_date(month, card.due_date)
            payment = payments.get((card_id, month))
            if payment is None:
                payment = InvoicePayment(
                    account_id=account_id,
                    credit_card_id=card_id,
                    invoice_month=month,
                    total_amount=group.total,
                    due_date=due,
                    status=InvoiceStatus.pending,
                )
                self.session.add(payment)
            payment.total_amount = group.total
            payment.due_date = due
            if payment.status != InvoiceStatus.paid:
                payment.status = (
                    InvoiceStatus.overdue if due < today else InvoiceStatus.pending
                )
        self.session.flush()

    def list_invoices(
        self, account_id: int, today: Optional[date] = None
    ) -> list[InvoiceSummary]:
        today = today or local_today()
        self._sync_payments(account_id, today)
        self.resync(account_id, commit=False)
        self.session.commit()

        cards = self._cards(account_id)
        payments = self._payments(account_id)
        summaries = []
        for (card_id, month), group in self._groups(account_id).items():
            card = cards.get(card_id)
            if group.total <= 0 or card is None:
                continue
            payment = payments[(card_id, month)]
            summaries.append(
                InvoiceSummary(
                    invoice_id=invoice_id(card_id, month),
                    credit_card_id=card_id,
                    card_name=card.name,
                    invoice_month=month,
                    label=format_month_label(month),
                    total=group.total,
                    period_start=group.period_start,
                    period_end=group.period_end,
                    due_date=payment.due_date,
                    status=payment.status,
                    paid_at=payment.paid_at,
                    transaction_id=payment.transaction_id,
                    transactions=group.transactions,
                )
            )
        summaries.sort(key=lambda item: item.card_name)
        summaries.sort(key=lambda item: item.invoice_month, reverse=True)
        return summaries

    def set_paid(
        self,
        account_id: int,
        credit_card_id: int,
        invoice_month: str,
        paid: bool,
        paid_at: Optional[datetime] = None,
        today: Optional[date] = None,
    ) -> InvoicePayment:
        today = today or local_today()
        with rollback_on_error(self.session):
            self._sync_payments(account_id, today)
            payment = self.session.scalars(
                select(InvoicePayment).where(
                    InvoicePayment.account_id == account_id,
                    InvoicePayment.credit_card_id == credit_card_id,
                    InvoicePayment.invoice_month == invoice_month,
                )
            ).first()
            if not payment:
                raise NotFoundError("Invoice not found")

            if paid:
                payment.status = InvoiceStatus.paid
                payment.paid_at = paid_at or datetime.utcnow()
            else:
                payment.status = (
                    InvoiceStatus.overdue
                    if payment.due_date < today
                    else InvoiceStatus.pending
                )
                payment.paid_at = None
            self.resync(account_id, commit=False)
            self.session.commit()
        self.session.refresh(payment)
        logger.info(
            f"invoice_payment: account_id={account_id} card_id={credit_card_id} "
            f"month={invoice_month} status={payment.status.value}"
        )
        return payment
