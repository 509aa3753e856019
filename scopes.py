"""Single / future / all edits and deletes over transaction groups.

A transaction belongs to at most one group: an installment series (rows
sharing ``installments_group_id``) or a recurrence (one definition row plus
its exception rows, sharing ``recurrence_group_id``). Every public call
commits once, so a failed edit never leaves a half-updated group behind.
"""

import logging
from datetime import date
from typing import Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from dates import add_days, add_months_preserve_day, difference_in_days, months_between
from database import rollback_on_error
from errors import NotFoundError
from models import EditScope, LaunchType, Transaction
from recurrence import is_occurrence
from schemas import EXCEPTION_FIELDS, GroupRef, TransactionPatch


logger = logging.getLogger(__name__)

# Copied from a definition onto a new exception row.
IDENTITY_FIELDS = (
    "account_id",
    "description",
    "amount",
    "type",
    "category_id",
    "bank_account_id",
    "payment_method",
    "client_name",
    "project_name",
    "cost_center",
)


def is_recurring(row: Transaction) -> bool:
    return (
        row.launch_type == LaunchType.recorrente
        or bool(row.recurrence_frequency)
        or bool(row.recurrence_group_id)
    )


def _apply(row: Transaction, changes: dict[str, object]) -> None:
    for name, value in changes.items():
        setattr(row, name, value)


def _exception_changes(changes: dict[str, object]) -> dict[str, object]:
    return {name: value for name, value in changes.items() if name in EXCEPTION_FIELDS}


def _check_definition_dates(start: date, end: Optional[date]) -> None:
    if end is not None and end < start:
        raise ValueError("Recurrence end date must not precede the start date")


def _check_occurrence(definition: Transaction, day: date) -> None:
    if not is_occurrence(definition, day):
        raise ValueError(
            f"{day.isoformat()} is not an occurrence of this recurrence"
        )


class EditScopeResolver:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, transaction_id: int) -> Transaction:
        row = self.session.get(Transaction, transaction_id)
        if not row:
            raise NotFoundError("Transaction not found")
        return row

    def update(
        self,
        transaction_id: int,
        patch: TransactionPatch,
        scope: Optional[EditScope] = None,
        ref: Optional[GroupRef] = None,
    ) -> Transaction:
        ref = ref or GroupRef()
        target = self.get(transaction_id)
        changes = patch.changes()

        with rollback_on_error(self.session):
            if scope in (None, EditScope.single):
                if is_recurring(target):
                    row = self._upsert_exception(target, changes, ref)
                else:
                    _apply(target, changes)
                    row = target
            elif ref.installments_group_id or (
                target.installments_group_id and not is_recurring(target)
            ):
                self._update_installments(target, changes, scope, ref)
                row = target
            elif ref.recurrence_group_id or is_recurring(target):
                row = self._update_recurrence(target, changes, scope, ref)
            else:
                _apply(target, changes)
                row = target

            self.session.commit()
        self.session.refresh(row)
        return row

    def delete(
        self,
        transaction_id: int,
        scope: Optional[EditScope] = None,
        ref: Optional[GroupRef] = None,
    ) -> None:
        ref = ref or GroupRef()
        target = self.get(transaction_id)

        with rollback_on_error(self.session):
            if scope in (None, EditScope.single):
                if is_recurring(target) and not target.is_exception:
                    # A definition takes its exceptions with it.
                    for row in self._exceptions(target):
                        self.session.delete(row)
                self.session.delete(target)
            elif ref.installments_group_id or (
                target.installments_group_id and not is_recurring(target)
            ):
                for row in self._installment_members(target, scope, ref):
                    self.session.delete(row)
            elif ref.recurrence_group_id or is_recurring(target):
                self._delete_recurrence(target, scope, ref)
            else:
                self.session.delete(target)

            self.session.commit()

    def _upsert_exception(
        self, target: Transaction, changes: dict[str, object], ref: GroupRef
    ) -> Transaction:
        if target.is_exception:
            _apply(target, _exception_changes(changes))
            return target

        definition = target
        original_date = ref.exception_for_date or definition.date
        _check_occurrence(definition, original_date)
        self._ensure_group_id(definition)

        existing = self.session.scalars(
            select(Transaction).where(
                Transaction.recurrence_group_id == definition.recurrence_group_id,
                Transaction.is_exception.is_(True),
                Transaction.exception_for_date == original_date,
            )
        ).first()
        if existing:
            _apply(existing, _exception_changes(changes))
            return existing

        exception = Transaction(
            **{name: getattr(definition, name) for name in IDENTITY_FIELDS},
            date=original_date,
            installments=1,
            current_installment=1,
            installments_group_id=None,
            launch_type=LaunchType.unica,
            recurrence_frequency=None,
            recurrence_end_date=None,
            recurrence_group_id=definition.recurrence_group_id,
            is_exception=True,
            exception_for_date=original_date,
            paid=False,
        )
        _apply(exception, _exception_changes(changes))
        self.session.add(exception)
        return exception

    def _ensure_group_id(self, definition: Transaction) -> str:
        if not definition.recurrence_group_id:
            definition.recurrence_group_id = str(uuid4())
            self.session.flush()
        return definition.recurrence_group_id

    def _installment_members(
        self, target: Transaction, scope: EditScope, ref: GroupRef
    ) -> list[Transaction]:
        group_id = ref.installments_group_id or target.installments_group_id
        stmt = (
            select(Transaction)
            .where(
                Transaction.account_id == target.account_id,
                Transaction.installments_group_id == group_id,
            )
            .order_by(Transaction.current_installment)
        )
        if scope == EditScope.future:
            stmt = stmt.where(
                Transaction.current_installment >= target.current_installment
            )
        members = self.session.scalars(stmt).all()
        if not members:
            raise NotFoundError("Transaction group not found")
        return list(members)

    def _update_installments(
        self,
        target: Transaction,
        changes: dict[str, object],
        scope: EditScope,
        ref: GroupRef,
    ) -> None:
        members = self._installment_members(target, scope, ref)
        new_date = changes.pop("date", None)
        for member in members:
            if new_date is not None:
                member.date = add_months_preserve_day(
                    new_date, member.current_installment - target.current_installment
                )
            _apply(member, changes)

    def _recurrence_anchor(
        self, target: Transaction, ref: GroupRef
    ) -> tuple[Transaction, date]:
        """Return the definition and the occurrence date the edit starts from."""
        if target.is_exception:
            definition = self.session.scalars(
                select(Transaction).where(
                    Transaction.recurrence_group_id == target.recurrence_group_id,
                    Transaction.is_exception.is_(False),
                )
            ).first()
            if not definition:
                raise NotFoundError("Recurrence definition not found")
            return definition, target.exception_for_date

        if ref.recurrence_group_id and ref.recurrence_group_id != target.recurrence_group_id:
            definition = self.session.scalars(
                select(Transaction).where(
                    Transaction.account_id == target.account_id,
                    Transaction.recurrence_group_id == ref.recurrence_group_id,
                    Transaction.is_exception.is_(False),
                )
            ).first()
            if not definition:
                raise NotFoundError("Transaction group not found")
        else:
            definition = target
        pivot = ref.exception_for_date or definition.date
        _check_occurrence(definition, pivot)
        self._ensure_group_id(definition)
        return definition, pivot

    def _exceptions(self, definition: Transaction) -> list[Transaction]:
        if not definition.recurrence_group_id:
            return []
        stmt = (
            select(Transaction)
            .where(
                Transaction.recurrence_group_id == definition.recurrence_group_id,
                Transaction.is_exception.is_(True),
            )
            .order_by(Transaction.exception_for_date)
        )
        return list(self.session.scalars(stmt).all())

    def _rekey(
        self,
        exceptions: list[Transaction],
        old_start: date,
        new_start: date,
        group_id: str,
    ) -> None:
        # Each exception keeps pointing at the same occurrence number of the
        # shifted series. Keys are cleared first so that no intermediate
        # flush trips the (group, exception_for_date) unique index.
        offsets = [months_between(old_start, row.exception_for_date) for row in exceptions]
        for row in exceptions:
            row.exception_for_date = None
        self.session.flush()
        for row, offset in zip(exceptions, offsets):
            row.recurrence_group_id = group_id
            row.exception_for_date = add_months_preserve_day(new_start, offset)

    def _update_recurrence(
        self,
        target: Transaction,
        changes: dict[str, object],
        scope: EditScope,
        ref: GroupRef,
    ) -> Transaction:
        definition, pivot = self._recurrence_anchor(target, ref)
        exceptions = self._exceptions(definition)
        new_date = changes.pop("date", None)
        delta = difference_in_days(new_date, pivot) if new_date is not None else 0
        end = changes.get("recurrence_end_date", definition.recurrence_end_date)

        if scope == EditScope.future and pivot > definition.date:
            _check_definition_dates(add_days(pivot, delta), end)
            return self._split(definition, exceptions, pivot, delta, changes)

        # The whole series moves by the edited occurrence's day delta, not by
        # an offset from the first occurrence, so the occurrence the user
        # edited lands on the date they picked.
        _check_definition_dates(add_days(definition.date, delta), end)
        if delta:
            old_start = definition.date
            definition.date = add_days(definition.date, delta)
            for row in exceptions:
                row.date = add_days(row.date, delta)
            self._rekey(
                exceptions, old_start, definition.date, definition.recurrence_group_id
            )
        _apply(definition, changes)
        for row in exceptions:
            _apply(row, _exception_changes(changes))
        return target

    def _split(
        self,
        definition: Transaction,
        exceptions: list[Transaction],
        pivot: date,
        delta: int,
        changes: dict[str, object],
    ) -> Transaction:
        successor = Transaction(
            **{name: getattr(definition, name) for name in IDENTITY_FIELDS},
            date=add_days(pivot, delta),
            installments=1,
            current_installment=1,
            launch_type=LaunchType.recorrente,
            recurrence_frequency=definition.recurrence_frequency,
            recurrence_end_date=definition.recurrence_end_date,
            recurrence_group_id=str(uuid4()),
            is_exception=False,
            paid=definition.paid,
        )
        _apply(successor, changes)
        definition.recurrence_end_date = add_days(pivot, -1)
        self.session.add(successor)

        moved = [row for row in exceptions if row.exception_for_date >= pivot]
        for row in moved:
            row.date = add_days(row.date, delta)
            _apply(row, _exception_changes(changes))
        self._rekey(moved, pivot, successor.date, successor.recurrence_group_id)

        logger.info(
            f"recurrence_split: group={definition.recurrence_group_id} "
            f"new_group={successor.recurrence_group_id} pivot={pivot.isoformat()} "
            f"moved_exceptions={len(moved)}"
        )
        return successor

    def _delete_recurrence(
        self, target: Transaction, scope: EditScope, ref: GroupRef
    ) -> None:
        definition, pivot = self._recurrence_anchor(target, ref)
        exceptions = self._exceptions(definition)

        if scope == EditScope.future and pivot > definition.date:
            definition.recurrence_end_date = add_days(pivot, -1)
            for row in exceptions:
                if row.exception_for_date >= pivot:
                    self.session.delete(row)
            return

        for row in exceptions:
            self.session.delete(row)
        self.session.delete(definition)
