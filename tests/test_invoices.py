from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import InvoiceTransactionLocked, NotFoundError
from invoices import INVOICE_CATEGORY, invoice_id, split_invoice_id
from models import (
    AccountType,
    Category,
    CreditCardTransaction,
    EditScope,
    InvoicePayment,
    InvoiceStatus,
    Transaction,
    TransactionType,
)
from schemas import (
    AccountIn,
    CreditCardIn,
    CreditCardPatch,
    CreditCardTransactionIn,
    CreditCardTransactionPatch,
    TransactionUpdateIn,
)
from services import (
    AccountService,
    CategoryService,
    CreditCardService,
    CreditCardTransactionService,
    TransactionService,
    invoice_aggregator,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _setup(session: Session, closing_day: int = 3, due_day: int = 10):
    account = AccountService(session).create(
        AccountIn(name="Casa", type=AccountType.personal)
    )
    category = CategoryService(session).list_all(account.id)[0]
    card = CreditCardService(session).create(
        account.id,
        CreditCardIn(
            name="Nubank",
            brand="Mastercard",
            credit_limit=Decimal("5000.00"),
            due_date=due_day,
            closing_day=closing_day,
        ),
    )
    return account.id, category.id, card.id


def _purchase(session, account_id, category_id, card_id, **overrides):
    values = dict(
        description="Mercado",
        amount=Decimal("100.00"),
        date=date(2024, 1, 2),
        category_id=category_id,
        credit_card_id=card_id,
    )
    values.update(overrides)
    return CreditCardTransactionService(session).create(
        account_id, CreditCardTransactionIn(**values)
    )


def _invoice_rows(session, account_id):
    return session.scalars(
        select(Transaction)
        .where(
            Transaction.account_id == account_id,
            Transaction.is_invoice_transaction.is_(True),
        )
        .order_by(Transaction.date)
    ).all()


def test_invoice_id_round_trip():
    assert invoice_id(7, "2024-03") == "7-2024-03"
    assert split_invoice_id("7-2024-03") == (7, "2024-03")
    with pytest.raises(ValueError):
        split_invoice_id("card-2024-03")


def test_purchases_project_one_row_per_card_and_month():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        _purchase(session, account_id, category_id, card_id)
        _purchase(
            session, account_id, category_id, card_id, amount=Decimal("20.50"),
            date=date(2024, 1, 3),
        )
        _purchase(
            session, account_id, category_id, card_id, amount=Decimal("50.00"),
            date=date(2024, 1, 20),
        )

        rows = _invoice_rows(session, account_id)
        assert [(r.credit_card_invoice_id, r.amount, r.date) for r in rows] == [
            (f"{card_id}-2024-01", Decimal("120.50"), date(2024, 1, 10)),
            (f"{card_id}-2024-02", Decimal("50.00"), date(2024, 2, 10)),
        ]
        assert rows[0].description == "Fatura Nubank - Janeiro 2024"
        assert rows[0].type == TransactionType.expense
        assert rows[0].paid is False

        category = session.get(Category, rows[0].category_id)
        assert category.name == INVOICE_CATEGORY.name
        assert category.account_id == account_id


def test_resync_is_idempotent():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        _purchase(session, account_id, category_id, card_id)
        before = [r.id for r in _invoice_rows(session, account_id)]

        result = invoice_aggregator(session).resync(account_id)

        assert (result.created, result.updated, result.removed, result.repaired) == (
            0,
            0,
            0,
            0,
        )
        assert [r.id for r in _invoice_rows(session, account_id)] == before
        invoice_categories = session.scalars(
            select(Category).where(Category.name == INVOICE_CATEGORY.name)
        ).all()
        assert len(invoice_categories) == 1


def test_deleting_last_purchase_removes_row_and_unlinks_payment():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        purchase = _purchase(session, account_id, category_id, card_id)[0]
        payment = invoice_aggregator(session).set_paid(
            account_id, card_id, "2024-01", True, today=date(2024, 1, 5)
        )
        assert payment.transaction_id == _invoice_rows(session, account_id)[0].id

        CreditCardTransactionService(session).delete(purchase.id)

        assert _invoice_rows(session, account_id) == []
        payment = session.scalars(select(InvoicePayment)).one()
        assert payment.transaction_id is None
        assert payment.status == InvoiceStatus.pending
        assert payment.paid_at is None


def test_resync_repairs_duplicate_and_orphan_rows():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        _purchase(session, account_id, category_id, card_id)
        original = _invoice_rows(session, account_id)[0]
        for key in (original.credit_card_invoice_id, None):
            session.add(
                Transaction(
                    account_id=account_id,
                    description="Stray invoice",
                    amount=Decimal("1.00"),
                    type=TransactionType.expense,
                    date=date(2024, 1, 10),
                    category_id=original.category_id,
                    credit_card_invoice_id=key,
                    is_invoice_transaction=True,
                )
            )
        session.commit()

        calls = []
        result = invoice_aggregator(
            session, repair_hook=lambda reason, count: calls.append((reason, count))
        ).resync(account_id)

        assert result.repaired == 2
        assert calls == [("duplicate_or_orphan_invoice_rows", 2)]
        rows = _invoice_rows(session, account_id)
        assert [r.id for r in rows] == [original.id]
        assert rows[0].amount == Decimal("100.00")


def test_pay_and_reopen_invoice():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        _purchase(session, account_id, category_id, card_id)
        aggregator = invoice_aggregator(session)

        paid_at = datetime(2024, 1, 8, 12, 0)
        payment = aggregator.set_paid(
            account_id, card_id, "2024-01", True, paid_at=paid_at, today=date(2024, 1, 8)
        )
        assert payment.status == InvoiceStatus.paid
        assert payment.paid_at == paid_at
        assert payment.total_amount == Decimal("100.00")
        assert _invoice_rows(session, account_id)[0].paid is True

        payment = aggregator.set_paid(
            account_id, card_id, "2024-01", False, today=date(2024, 2, 1)
        )
        assert payment.status == InvoiceStatus.overdue
        assert payment.paid_at is None
        assert _invoice_rows(session, account_id)[0].paid is False


def test_paying_unknown_invoice_raises_not_found():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        _purchase(session, account_id, category_id, card_id)
        with pytest.raises(NotFoundError):
            invoice_aggregator(session).set_paid(
                account_id, card_id, "2030-01", True, today=date(2024, 1, 1)
            )

        # Payment rows synced before the lookup failed are discarded too.
        session.commit()
        assert session.scalars(select(InvoicePayment)).all() == []


def test_list_invoices_marks_overdue_and_sorts_newest_first():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        _purchase(session, account_id, category_id, card_id)
        _purchase(session, account_id, category_id, card_id, date=date(2024, 1, 20))

        summaries = invoice_aggregator(session).list_invoices(
            account_id, today=date(2024, 1, 15)
        )

        assert [s.invoice_month for s in summaries] == ["2024-02", "2024-01"]
        assert [s.status for s in summaries] == [
            InvoiceStatus.pending,
            InvoiceStatus.overdue,
        ]
        january = summaries[1]
        assert january.label == "Janeiro 2024"
        assert january.card_name == "Nubank"
        assert january.due_date == date(2024, 1, 10)
        assert january.transaction_id == _invoice_rows(session, account_id)[0].id
        assert [t.description for t in january.transactions] == ["Mercado"]


def test_installment_purchase_spreads_over_invoices():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        rows = _purchase(
            session,
            account_id,
            category_id,
            card_id,
            description="TV",
            amount=Decimal("300.00"),
            date=date(2024, 1, 15),
            installments=3,
        )

        assert [r.invoice_month for r in rows] == ["2024-02", "2024-03", "2024-04"]
        assert [r.current_installment for r in rows] == [1, 2, 3]
        assert [r.date for r in rows] == [
            date(2024, 1, 15),
            date(2024, 2, 15),
            date(2024, 3, 15),
        ]
        assert len({r.installments_group_id for r in rows}) == 1
        assert [r.date for r in _invoice_rows(session, account_id)] == [
            date(2024, 2, 10),
            date(2024, 3, 10),
            date(2024, 4, 10),
        ]


def test_late_closing_card_bills_following_month():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session, closing_day=28, due_day=5)
        rows = _purchase(session, account_id, category_id, card_id, date=date(2024, 1, 10))
        assert rows[0].invoice_month == "2024-02"


def test_future_edit_moves_remaining_installments():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        rows = _purchase(
            session,
            account_id,
            category_id,
            card_id,
            amount=Decimal("50.00"),
            date=date(2024, 1, 2),
            installments=3,
        )
        CreditCardTransactionService(session).update(
            rows[1].id,
            CreditCardTransactionPatch(amount=Decimal("60.00")),
            EditScope.future,
        )
        amounts = [
            r.amount for r in CreditCardTransactionService(session).list_all(account_id)
        ]
        assert amounts == [Decimal("50.00"), Decimal("60.00"), Decimal("60.00")]
        assert [r.amount for r in _invoice_rows(session, account_id)] == amounts


def test_changing_purchase_date_recomputes_invoice_month():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        purchase = _purchase(session, account_id, category_id, card_id)[0]
        updated = CreditCardTransactionService(session).update(
            purchase.id, CreditCardTransactionPatch(date=date(2024, 1, 20))
        )
        assert updated.invoice_month == "2024-02"
        assert [r.credit_card_invoice_id for r in _invoice_rows(session, account_id)] == [
            f"{card_id}-2024-02"
        ]


def test_card_rename_updates_invoice_description():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        _purchase(session, account_id, category_id, card_id)
        CreditCardService(session).update(card_id, CreditCardPatch(name="Roxinho"))
        assert _invoice_rows(session, account_id)[0].description == (
            "Fatura Roxinho - Janeiro 2024"
        )


def test_deleting_card_removes_purchases_payments_and_rows():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        _purchase(session, account_id, category_id, card_id)
        invoice_aggregator(session).list_invoices(account_id, today=date(2024, 1, 5))

        CreditCardService(session).delete(card_id)

        assert _invoice_rows(session, account_id) == []
        assert session.scalars(select(CreditCardTransaction)).all() == []
        assert session.scalars(select(InvoicePayment)).all() == []


def test_invoice_rows_are_locked_except_paid():
    with make_session() as session:
        account_id, category_id, card_id = _setup(session)
        _purchase(session, account_id, category_id, card_id)
        row = _invoice_rows(session, account_id)[0]
        service = TransactionService(session)

        with pytest.raises(InvoiceTransactionLocked):
            service.update(row.id, TransactionUpdateIn(amount=Decimal("1.00")))
        with pytest.raises(InvoiceTransactionLocked):
            service.delete(row.id)

        updated = service.update(row.id, TransactionUpdateIn(paid=True))
        assert updated.paid is True
        payment = session.scalars(select(InvoicePayment)).one()
        assert payment.status == InvoiceStatus.paid
        assert payment.transaction_id == row.id
