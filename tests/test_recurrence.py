from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Account, AccountType, Category, LaunchType, Transaction, TransactionType
from recurrence import MAX_OCCURRENCES, TransactionMaterializer, materialize


GROUP = "group-rent"


def _definition(**overrides) -> Transaction:
    values = dict(
        id=1,
        account_id=1,
        description="Rent",
        amount=Decimal("1500.00"),
        type=TransactionType.expense,
        date=date(2024, 1, 15),
        category_id=1,
        installments=1,
        current_installment=1,
        launch_type=LaunchType.recorrente,
        recurrence_frequency="mensal",
        recurrence_group_id=GROUP,
        is_exception=False,
        is_invoice_transaction=False,
        paid=True,
    )
    values.update(overrides)
    return Transaction(**values)


def _exception(original: date, actual: date, amount: str, txn_id: int = 2) -> Transaction:
    return Transaction(
        id=txn_id,
        account_id=1,
        description="Rent",
        amount=Decimal(amount),
        type=TransactionType.expense,
        date=actual,
        category_id=1,
        installments=1,
        current_installment=1,
        launch_type=LaunchType.unica,
        recurrence_group_id=GROUP,
        is_exception=True,
        exception_for_date=original,
        is_invoice_transaction=False,
        paid=False,
    )


def test_monthly_definition_yields_one_virtual_entry_per_month():
    entries = materialize(
        [_definition()], [], [], date(2024, 1, 1), date(2024, 6, 30)
    )
    assert [e.date for e in entries] == [date(2024, m, 15) for m in range(1, 7)]
    assert all(e.is_virtual for e in entries)
    # The definition is stored as paid, its occurrences are not.
    assert all(e.paid is False for e in entries)
    assert all(e.virtual_date == e.date for e in entries)
    assert {e.id for e in entries} == {1}


def test_exception_replaces_exactly_one_occurrence():
    exception = _exception(date(2024, 3, 15), date(2024, 3, 15), "999.00")
    entries = materialize(
        [_definition()], [exception], [], date(2024, 1, 1), date(2024, 6, 30)
    )
    assert len(entries) == 6
    march = [e for e in entries if e.date.month == 3]
    assert len(march) == 1
    assert march[0].is_exception
    assert march[0].amount == Decimal("999.00")
    assert march[0].virtual_date == date(2024, 3, 15)
    others = [e for e in entries if e.date.month != 3]
    assert all(e.is_virtual and e.amount == Decimal("1500.00") for e in others)


def test_moved_exception_suppresses_original_date_and_lists_on_new_date():
    exception = _exception(date(2024, 3, 15), date(2024, 4, 2), "1500.00")
    entries = materialize(
        [_definition()], [exception], [], date(2024, 3, 1), date(2024, 3, 31)
    )
    assert entries == []

    entries = materialize(
        [_definition()], [exception], [], date(2024, 4, 1), date(2024, 4, 30)
    )
    assert [(e.date, e.is_exception) for e in entries] == [
        (date(2024, 4, 2), True),
        (date(2024, 4, 15), False),
    ]


def test_end_date_and_range_start_bound_the_walk():
    definition = _definition(recurrence_end_date=date(2024, 4, 14))
    entries = materialize([definition], [], [], date(2024, 2, 1), date(2024, 12, 31))
    assert [e.date for e in entries] == [date(2024, 2, 15), date(2024, 3, 15)]


def test_walk_keeps_the_original_day_after_short_months():
    definition = _definition(date=date(2024, 1, 31))
    entries = materialize([definition], [], [], date(2024, 1, 1), date(2024, 4, 30))
    assert [e.date for e in entries] == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


def test_walk_stops_after_ten_years():
    entries = materialize(
        [_definition(date=date(2000, 1, 1))], [], [], date(2000, 1, 1), date(2100, 1, 1)
    )
    assert len(entries) == MAX_OCCURRENCES
    assert entries[-1].date == date(2009, 12, 1)


def test_merge_sorts_by_date_and_keeps_physical_rows_first_on_ties():
    physical = Transaction(
        id=10,
        account_id=1,
        description="Groceries",
        amount=Decimal("80.00"),
        type=TransactionType.expense,
        date=date(2024, 2, 15),
        category_id=1,
        installments=1,
        current_installment=1,
        launch_type=LaunchType.unica,
        is_exception=False,
        is_invoice_transaction=False,
        paid=True,
    )
    entries = materialize(
        [_definition()], [], [physical], date(2024, 2, 1), date(2024, 2, 29)
    )
    assert [(e.id, e.is_virtual) for e in entries] == [(10, False), (1, True)]
    assert entries[0].paid is True


def test_materializer_reads_rows_by_kind():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        account = Account(name="Home", type=AccountType.personal)
        session.add(account)
        session.flush()
        category = Category(
            account_id=account.id, name="Casa", color="#06B6D4", icon="fas fa-home"
        )
        session.add(category)
        session.flush()

        common = dict(
            account_id=account.id,
            type=TransactionType.expense,
            category_id=category.id,
            amount=Decimal("10.00"),
        )
        session.add_all(
            [
                Transaction(description="One-off", date=date(2024, 5, 3), **common),
                Transaction(
                    description="Legacy",
                    date=date(2024, 5, 4),
                    launch_type=LaunchType.recorrente,
                    recurrence_frequency=None,
                    **common,
                ),
                Transaction(
                    description="Gym",
                    date=date(2024, 1, 10),
                    launch_type=LaunchType.recorrente,
                    recurrence_frequency="mensal",
                    recurrence_group_id="gym",
                    **common,
                ),
                Transaction(
                    description="Gym (moved)",
                    date=date(2024, 5, 12),
                    launch_type=LaunchType.unica,
                    recurrence_group_id="gym",
                    is_exception=True,
                    exception_for_date=date(2024, 5, 10),
                    **common,
                ),
            ]
        )
        session.commit()

        entries = TransactionMaterializer(session).list_range(
            account.id, date(2024, 5, 1), date(2024, 5, 31)
        )
        assert [e.description for e in entries] == ["One-off", "Legacy", "Gym (moved)"]
        assert entries[2].virtual_date == date(2024, 5, 10)
