import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    AccountType,
    EditScope,
    LaunchType,
    RecurrenceFrequency,
    TransactionType,
)


MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"

# Fields an exception row (one edited occurrence of a recurrence) may carry.
EXCEPTION_FIELDS = frozenset(
    {"description", "amount", "type", "date", "category_id", "bank_account_id", "paid"}
)


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AccountType


class AccountPatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    type: Optional[AccountType] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(default="#6B7280", max_length=9)
    icon: str = Field(default="fas fa-tag", max_length=60)
    type: TransactionType = TransactionType.expense


class CategoryPatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=60)
    type: Optional[TransactionType] = None


class BankAccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    initial_balance: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    pix: Optional[str] = Field(default="", max_length=120)


class TransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    type: TransactionType
    date: date
    category_id: int
    bank_account_id: Optional[int] = None
    payment_method: Optional[str] = Field(default=None, max_length=40)
    client_name: Optional[str] = Field(default=None, max_length=120)
    project_name: Optional[str] = Field(default=None, max_length=120)
    cost_center: Optional[str] = Field(default=None, max_length=120)
    launch_type: LaunchType = LaunchType.unica
    installments: int = Field(default=1, ge=1, le=360)
    recurrence_frequency: Optional[RecurrenceFrequency] = None
    recurrence_end_date: Optional[dt.date] = None
    paid: bool = False

    @model_validator(mode="after")
    def check_launch(self) -> "TransactionIn":
        if self.launch_type == LaunchType.parcelada:
            if self.installments < 2:
                raise ValueError("Installment launches need at least 2 installments")
        elif self.installments != 1:
            raise ValueError("Only installment launches may have installments > 1")
        if self.launch_type == LaunchType.recorrente:
            if self.recurrence_frequency is None:
                self.recurrence_frequency = RecurrenceFrequency.mensal
            if self.recurrence_end_date and self.recurrence_end_date < self.date:
                raise ValueError("Recurrence end date must not precede the start date")
        return self


class TransactionPatch(BaseModel):
    """Partial update; only the fields the caller actually set are applied."""

    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    type: Optional[TransactionType] = None
    date: Optional[dt.date] = None
    category_id: Optional[int] = None
    bank_account_id: Optional[int] = None
    payment_method: Optional[str] = Field(default=None, max_length=40)
    client_name: Optional[str] = Field(default=None, max_length=120)
    project_name: Optional[str] = Field(default=None, max_length=120)
    cost_center: Optional[str] = Field(default=None, max_length=120)
    recurrence_end_date: Optional[dt.date] = None
    paid: Optional[bool] = None

    @model_validator(mode="after")
    def check_required_values(self) -> "TransactionPatch":
        for name in ("description", "amount", "type", "date", "category_id", "paid"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)


class GroupRef(BaseModel):
    installments_group_id: Optional[str] = None
    recurrence_group_id: Optional[str] = None
    exception_for_date: Optional[dt.date] = None


class TransactionUpdateIn(TransactionPatch):
    edit_scope: Optional[EditScope] = None
    installments_group_id: Optional[str] = None
    recurrence_group_id: Optional[str] = None
    exception_for_date: Optional[dt.date] = None

    def patch(self) -> TransactionPatch:
        fields = set(TransactionPatch.model_fields) & self.model_fields_set
        return TransactionPatch(**{name: getattr(self, name) for name in fields})

    def group_ref(self) -> GroupRef:
        return GroupRef(
            installments_group_id=self.installments_group_id,
            recurrence_group_id=self.recurrence_group_id,
            exception_for_date=self.exception_for_date,
        )


class CreditCardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    brand: str = Field(..., min_length=1, max_length=40)
    credit_limit: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    due_date: int = Field(..., ge=1, le=31)
    closing_day: int = Field(..., ge=1, le=31)


class CreditCardPatch(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    brand: Optional[str] = Field(default=None, min_length=1, max_length=40)
    credit_limit: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    due_date: Optional[int] = Field(default=None, ge=1, le=31)
    closing_day: Optional[int] = Field(default=None, ge=1, le=31)


class CreditCardTransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    date: date
    category_id: int
    credit_card_id: int
    installments: int = Field(default=1, ge=1, le=360)
    current_installment: int = Field(default=1, ge=1)
    invoice_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    client_name: Optional[str] = Field(default=None, max_length=120)
    project_name: Optional[str] = Field(default=None, max_length=120)
    cost_center: Optional[str] = Field(default=None, max_length=120)

    @model_validator(mode="after")
    def check_installment(self) -> "CreditCardTransactionIn":
        if self.current_installment > self.installments:
            raise ValueError("current_installment cannot exceed installments")
        return self


class CreditCardTransactionPatch(BaseModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    date: Optional[dt.date] = None
    category_id: Optional[int] = None
    invoice_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    client_name: Optional[str] = Field(default=None, max_length=120)
    project_name: Optional[str] = Field(default=None, max_length=120)
    cost_center: Optional[str] = Field(default=None, max_length=120)

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)


class CardImportCandidate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = Field(..., min_length=1)
    amount: Union[Decimal, str]
    date: date
    category: Optional[str] = Field(default=None, max_length=100)
    installments: int = Field(default=1, ge=1)
    current_installment: int = Field(default=1, ge=1)


class CardImportIn(BaseModel):
    credit_card_id: int
    invoice_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    transactions: list[CardImportCandidate] = Field(..., min_length=1)


class InvoicePaymentIn(BaseModel):
    paid_at: Optional[datetime] = None


class ChatIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)
