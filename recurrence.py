from dataclasses import dataclass, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from dates import add_months_preserve_day, months_between
from models import LaunchType, RecurrenceFrequency, Transaction, TransactionType


# Ten years of monthly occurrences.
MAX_OCCURRENCES = 120


@dataclass(frozen=True)
class LedgerEntry:
    """A transaction as it appears in a listing.

    Physical rows and exception rows are snapshots of stored transactions.
    Virtual occurrences are copies of their recurrence definition moved to
    ``virtual_date``; they keep the definition's id so edits can be routed
    back to it.
    """

    id: int
    account_id: int
    description: str
    amount: Decimal
    type: TransactionType
    date: date
    category_id: int
    bank_account_id: Optional[int]
    payment_method: Optional[str]
    client_name: Optional[str]
    project_name: Optional[str]
    cost_center: Optional[str]
    installments: int
    current_installment: int
    installments_group_id: Optional[str]
    launch_type: Optional[LaunchType]
    recurrence_frequency: Optional[str]
    recurrence_end_date: Optional[date]
    recurrence_group_id: Optional[str]
    is_exception: bool
    exception_for_date: Optional[date]
    credit_card_id: Optional[int]
    credit_card_invoice_id: Optional[str]
    is_invoice_transaction: bool
    paid: bool
    created_at: Optional[datetime]
    virtual_date: Optional[date] = None
    is_virtual: bool = False

    @classmethod
    def from_row(cls, row: Transaction, **overrides: object) -> "LedgerEntry":
        values = {
            f.name: getattr(row, f.name)
            for f in fields(cls)
            if f.name not in ("virtual_date", "is_virtual")
        }
        values.update(overrides)
        return cls(**values)


def _occurrences(definition: Transaction, start: date, end: date) -> Iterable[date]:
    for offset in range(MAX_OCCURRENCES):
        occurrence = add_months_preserve_day(definition.date, offset)
        if occurrence > end:
            break
        if definition.recurrence_end_date and occurrence > definition.recurrence_end_date:
            break
        if occurrence < start:
            continue
        yield occurrence


def is_occurrence(definition: Transaction, day: date) -> bool:
    """Whether ``day`` is one of the dates the definition materializes on."""
    if day < definition.date:
        return False
    if definition.recurrence_end_date and day > definition.recurrence_end_date:
        return False
    offset = months_between(definition.date, day)
    if offset >= MAX_OCCURRENCES:
        return False
    return add_months_preserve_day(definition.date, offset) == day


def materialize(
    definitions: Iterable[Transaction],
    exceptions: Iterable[Transaction],
    physical_rows: Iterable[Transaction],
    start: date,
    end: date,
) -> list[LedgerEntry]:
    """Merge stored rows with the monthly occurrences of each definition.

    An exception suppresses the virtual occurrence it overrides, keyed by
    ``(recurrence_group_id, exception_for_date)`` rather than by its own date,
    and is listed on its real date when that falls inside ``start..end``.
    Virtual occurrences are always unpaid. The result is sorted by date,
    stable with respect to physical rows, then exceptions, then virtual
    occurrences.
    """
    exceptions = list(exceptions)
    suppressed = {
        (row.recurrence_group_id, row.exception_for_date) for row in exceptions
    }

    entries = [LedgerEntry.from_row(row) for row in physical_rows]
    entries.extend(
        LedgerEntry.from_row(row, virtual_date=row.exception_for_date)
        for row in exceptions
        if start <= row.date <= end
    )
    for definition in definitions:
        for occurrence in _occurrences(definition, start, end):
            if (definition.recurrence_group_id, occurrence) in suppressed:
                continue
            entries.append(
                LedgerEntry.from_row(
                    definition,
                    date=occurrence,
                    paid=False,
                    virtual_date=occurrence,
                    is_virtual=True,
                )
            )
    entries.sort(key=lambda entry: entry.date)
    return entries


class TransactionMaterializer:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_range(self, account_id: int, start: date, end: date) -> list[LedgerEntry]:
        physical_stmt = (
            select(Transaction)
            .where(
                Transaction.account_id == account_id,
                Transaction.is_exception.is_(False),
                Transaction.date.between(start, end),
                or_(
                    Transaction.launch_type.is_(None),
                    Transaction.launch_type.in_(
                        [LaunchType.unica, LaunchType.parcelada]
                    ),
                    and_(
                        Transaction.launch_type == LaunchType.recorrente,
                        or_(
                            Transaction.recurrence_frequency.is_(None),
                            Transaction.recurrence_frequency == "",
                        ),
                    ),
                ),
            )
            .order_by(Transaction.date, Transaction.created_at, Transaction.id)
        )
        exception_stmt = (
            select(Transaction)
            .where(
                Transaction.account_id == account_id,
                Transaction.is_exception.is_(True),
            )
            .order_by(Transaction.date, Transaction.created_at, Transaction.id)
        )
        definition_stmt = (
            select(Transaction)
            .where(
                Transaction.account_id == account_id,
                Transaction.launch_type == LaunchType.recorrente,
                Transaction.recurrence_frequency == RecurrenceFrequency.mensal.value,
                Transaction.is_exception.is_(False),
                Transaction.date <= end,
            )
            .order_by(Transaction.date, Transaction.created_at, Transaction.id)
        )
        return materialize(
            self.session.scalars(definition_stmt).all(),
            self.session.scalars(exception_stmt).all(),
            self.session.scalars(physical_stmt).all(),
            start,
            end,
        )
