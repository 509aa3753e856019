import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


MONEY = Numeric(12, 2)


class AccountType(str, Enum):
    personal = "personal"
    business = "business"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class LaunchType(str, Enum):
    unica = "unica"
    parcelada = "parcelada"
    recorrente = "recorrente"


class RecurrenceFrequency(str, Enum):
    mensal = "mensal"


class InvoiceStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    overdue = "overdue"


class EditScope(str, Enum):
    single = "single"
    future = "future"
    all = "all"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)

    categories: Mapped[list["Category"]] = relationship(
        "Category", back_populates="account"
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str] = mapped_column(String(9), nullable=False)
    icon: Mapped[str] = mapped_column(String(60), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False, default=TransactionType.expense
    )

    account: Mapped["Account"] = relationship("Account", back_populates="categories")

    __table_args__ = (Index("ix_categories_account", "account_id"),)


class BankAccount(Base, TimestampMixin):
    __tablename__ = "bank_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    initial_balance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0.00")
    )
    pix: Mapped[Optional[str]] = mapped_column(String(120), default="")


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    bank_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("bank_accounts.id")
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(40))
    client_name: Mapped[Optional[str]] = mapped_column(String(120))
    project_name: Mapped[Optional[str]] = mapped_column(String(120))
    cost_center: Mapped[Optional[str]] = mapped_column(String(120))

    installments: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_installment: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    installments_group_id: Mapped[Optional[str]] = mapped_column(String(36))

    launch_type: Mapped[Optional[LaunchType]] = mapped_column(SAEnum(LaunchType))
    # Kept as free text: only "mensal" is materialized, other values are inert.
    recurrence_frequency: Mapped[Optional[str]] = mapped_column(String(20))
    recurrence_end_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    recurrence_group_id: Mapped[Optional[str]] = mapped_column(String(36))
    is_exception: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    exception_for_date: Mapped[Optional[dt.date]] = mapped_column(Date)

    credit_card_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("credit_cards.id")
    )
    credit_card_invoice_id: Mapped[Optional[str]] = mapped_column(String(40))
    is_invoice_transaction: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        Index("ix_transactions_account_date", "account_id", "date"),
        Index("ix_transactions_installments_group", "installments_group_id"),
        Index(
            "uq_transactions_recurrence_definition",
            "recurrence_group_id",
            unique=True,
            sqlite_where=text("is_exception = 0 AND recurrence_group_id IS NOT NULL"),
            postgresql_where=text(
                "is_exception = false AND recurrence_group_id IS NOT NULL"
            ),
        ),
        Index(
            "uq_transactions_recurrence_exception",
            "recurrence_group_id",
            "exception_for_date",
            unique=True,
            sqlite_where=text("is_exception = 1"),
            postgresql_where=text("is_exception = true"),
        ),
        CheckConstraint("installments >= 1", name="ck_transactions_installments"),
        CheckConstraint(
            "current_installment >= 1 AND current_installment <= installments",
            name="ck_transactions_current_installment",
        ),
    )


class CreditCard(Base, TimestampMixin):
    __tablename__ = "credit_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    brand: Mapped[str] = mapped_column(String(40), nullable=False)
    credit_limit: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    due_date: Mapped[int] = mapped_column(Integer, nullable=False)
    closing_day: Mapped[int] = mapped_column(Integer, nullable=False)

    transactions: Mapped[list["CreditCardTransaction"]] = relationship(
        "CreditCardTransaction", back_populates="credit_card"
    )

    __table_args__ = (
        CheckConstraint("due_date BETWEEN 1 AND 31", name="ck_credit_cards_due_day"),
        CheckConstraint(
            "closing_day BETWEEN 1 AND 31", name="ck_credit_cards_closing_day"
        ),
    )


class CreditCardTransaction(Base, TimestampMixin):
    __tablename__ = "credit_card_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    credit_card_id: Mapped[int] = mapped_column(
        ForeignKey("credit_cards.id"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    installments: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_installment: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    installments_group_id: Mapped[Optional[str]] = mapped_column(String(36))
    invoice_month: Mapped[str] = mapped_column(String(7), nullable=False)
    client_name: Mapped[Optional[str]] = mapped_column(String(120))
    project_name: Mapped[Optional[str]] = mapped_column(String(120))
    cost_center: Mapped[Optional[str]] = mapped_column(String(120))
    credit_card: Mapped["CreditCard"] = relationship(
        "CreditCard", back_populates="transactions"
    )
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        Index(
            "ix_cc_transactions_account_card_month",
            "account_id",
            "credit_card_id",
            "invoice_month",
        ),
        CheckConstraint("installments >= 1", name="ck_cc_transactions_installments"),
    )


class InvoicePayment(Base, TimestampMixin):
    __tablename__ = "invoice_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    credit_card_id: Mapped[int] = mapped_column(
        ForeignKey("credit_cards.id"), nullable=False
    )
    invoice_month: Mapped[str] = mapped_column(String(7), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )
    status: Mapped[InvoiceStatus] = mapped_column(
        SAEnum(InvoiceStatus), nullable=False, default=InvoiceStatus.pending
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint(
            "credit_card_id", "invoice_month", name="uq_invoice_payment_card_month"
        ),
    )
