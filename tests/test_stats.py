from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import AccountType, EditScope, LaunchType, TransactionType
from schemas import (
    AccountIn,
    BankAccountIn,
    CategoryIn,
    TransactionIn,
    TransactionUpdateIn,
)
from services import (
    AccountService,
    BankAccountService,
    CategoryService,
    StatsService,
    TransactionService,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _seed(session: Session) -> dict:
    account = AccountService(session).create(
        AccountIn(name="Casa", type=AccountType.personal)
    )
    categories = {c.name: c.id for c in CategoryService(session).list_all(account.id)}
    salary = CategoryService(session).create(
        account.id, CategoryIn(name="Salário", type=TransactionType.income)
    )
    bank = BankAccountService(session).create(
        account.id, BankAccountIn(name="Conta corrente", initial_balance=Decimal("1000.00"))
    )
    service = TransactionService(session)
    service.create(
        account.id,
        TransactionIn(
            description="Salary",
            amount=Decimal("5000.00"),
            type=TransactionType.income,
            date=date(2024, 1, 5),
            category_id=salary.id,
            bank_account_id=bank.id,
            paid=True,
        ),
    )
    service.create(
        account.id,
        TransactionIn(
            description="Groceries",
            amount=Decimal("200.00"),
            type=TransactionType.expense,
            date=date(2024, 1, 10),
            category_id=categories["Alimentação"],
            bank_account_id=bank.id,
            paid=True,
        ),
    )
    rent = service.create(
        account.id,
        TransactionIn(
            description="Rent",
            amount=Decimal("1500.00"),
            type=TransactionType.expense,
            date=date(2024, 1, 15),
            category_id=categories["Casa"],
            bank_account_id=bank.id,
            launch_type=LaunchType.recorrente,
        ),
    )[0]
    return {"account_id": account.id, "rent": rent, "bank_id": bank.id}


def test_month_stats_count_virtual_occurrences_but_balance_only_paid():
    with make_session() as session:
        seeded = _seed(session)
        stats = StatsService(session).account_stats(seeded["account_id"], "2024-01")

        assert stats.monthly_income == Decimal("5000.00")
        assert stats.monthly_expenses == Decimal("1700.00")
        assert stats.monthly_result == Decimal("3300.00")
        assert stats.total_balance == Decimal("5800.00")
        assert stats.transaction_count == 3


def test_paying_an_occurrence_moves_the_balance():
    with make_session() as session:
        seeded = _seed(session)
        account_id = seeded["account_id"]
        stats_service = StatsService(session)

        february = stats_service.account_stats(account_id, "2024-02")
        assert february.monthly_income == Decimal("0.00")
        assert february.monthly_expenses == Decimal("1500.00")
        assert february.total_balance == Decimal("5800.00")

        TransactionService(session).update(
            seeded["rent"].id,
            TransactionUpdateIn(
                paid=True,
                edit_scope=EditScope.single,
                exception_for_date=date(2024, 2, 15),
            ),
        )
        assert stats_service.balance_as_of(account_id, date(2024, 2, 29)) == Decimal(
            "4300.00"
        )
        assert stats_service.balance_as_of(account_id, date(2024, 2, 14)) == Decimal(
            "5800.00"
        )
        balances = stats_service.bank_balances(account_id, date(2024, 2, 29))
        assert [(bank.name, total) for bank, total in balances] == [
            ("Conta corrente", Decimal("4300.00"))
        ]


def test_category_stats_rank_by_total():
    with make_session() as session:
        seeded = _seed(session)
        stats = StatsService(session).category_stats(seeded["account_id"], "2024-01")

        assert [(s.name, s.total, s.count) for s in stats[:2]] == [
            ("Casa", Decimal("1500.00"), 1),
            ("Alimentação", Decimal("200.00"), 1),
        ]
        assert all(s.total == Decimal("0.00") for s in stats[2:])
        assert "Salário" not in {s.name for s in stats}


def test_income_category_totals():
    with make_session() as session:
        seeded = _seed(session)
        totals = StatsService(session).category_totals(
            seeded["account_id"],
            date(2024, 1, 1),
            date(2024, 1, 31),
            TransactionType.income,
        )
        assert [(s.name, s.total) for s in totals] == [("Salário", Decimal("5000.00"))]
