from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from rapidfuzz.distance import Levenshtein

from csv_utils import export_entries, parse_amount
from database import rollback_on_error
from dates import (
    add_months_preserve_day,
    invoice_month_for_purchase,
    local_today,
    month_bounds,
    shift_month,
)
from errors import InvoiceTransactionLocked, NotFoundError
from invoices import (
    CategorySpec,
    InvoiceAggregator,
    RepairHook,
    split_invoice_id,
)
from models import (
    Account,
    AccountType,
    BankAccount,
    Category,
    CreditCard,
    CreditCardTransaction,
    EditScope,
    InvoicePayment,
    LaunchType,
    Transaction,
    TransactionType,
)
from recurrence import LedgerEntry, TransactionMaterializer
from schemas import (
    AccountIn,
    AccountPatch,
    BankAccountIn,
    CardImportIn,
    CategoryIn,
    CategoryPatch,
    CreditCardIn,
    CreditCardPatch,
    CreditCardTransactionIn,
    CreditCardTransactionPatch,
    GroupRef,
    TransactionIn,
    TransactionUpdateIn,
)
from scopes import EditScopeResolver


logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    CategorySpec("Alimentação", "#3B82F6", "fas fa-utensils"),
    CategorySpec("Transporte", "#10B981", "fas fa-car"),
    CategorySpec("Saúde", "#EF4444", "fas fa-heart"),
    CategorySpec("Lazer", "#8B5CF6", "fas fa-gamepad"),
    CategorySpec("Educação", "#F59E0B", "fas fa-graduation-cap"),
    CategorySpec("Casa", "#06B6D4", "fas fa-home"),
    CategorySpec("Outros", "#6B7280", "fas fa-ellipsis-h"),
)

BUSINESS_CATEGORIES = (
    CategorySpec("Escritório", "#1F2937", "fas fa-building"),
    CategorySpec("Marketing", "#EC4899", "fas fa-bullhorn"),
    CategorySpec("Tecnologia", "#3B82F6", "fas fa-laptop"),
    CategorySpec("Fornecedores", "#059669", "fas fa-truck"),
)

# Merchant keywords for card imports whose category label did not match.
CATEGORY_KEYWORDS = {
    "alimentacao": (
        "supermercado",
        "mercado",
        "carrefour",
        "assai",
        "atacadao",
        "ifood",
        "rappi",
        "restaurante",
        "lanchonete",
        "pizzaria",
        "padaria",
        "cafe",
    ),
    "transporte": (
        "posto",
        "combustivel",
        "gasolina",
        "ipiranga",
        "uber",
        "taxi",
        "estacionamento",
        "pedagio",
        "metro",
    ),
    "saude": ("farmacia", "drogaria", "drogasil", "hospital", "clinica", "laboratorio"),
    "lazer": ("cinema", "netflix", "spotify", "steam", "ingresso", "teatro"),
    "educacao": ("escola", "faculdade", "curso", "livraria", "udemy"),
    "casa": ("leroy", "tok&stok", "condominio", "aluguel", "energia", "agua"),
}


def _fold(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value.strip().lower())
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def _require_account(session: Session, account_id: int) -> Account:
    account = session.get(Account, account_id)
    if not account:
        raise NotFoundError("Account not found")
    return account


def _check_category(session: Session, account_id: int, category_id: int) -> Category:
    category = session.get(Category, category_id)
    if not category or category.account_id != account_id:
        raise ValueError("Category not found in this account")
    return category


def _check_bank_account(
    session: Session, account_id: int, bank_account_id: Optional[int]
) -> None:
    if bank_account_id is None:
        return
    bank_account = session.get(BankAccount, bank_account_id)
    if not bank_account or bank_account.account_id != account_id:
        raise ValueError("Bank account not found in this account")


def _require_card(session: Session, account_id: int, card_id: int) -> CreditCard:
    card = session.get(CreditCard, card_id)
    if not card or card.account_id != account_id:
        raise NotFoundError("Credit card not found")
    return card


def invoice_aggregator(
    session: Session, repair_hook: Optional[RepairHook] = None
) -> InvoiceAggregator:
    return InvoiceAggregator(session, CategoryService(session).ensure, repair_hook)


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Account]:
        return list(self.session.scalars(select(Account).order_by(Account.name)).all())

    def get(self, account_id: int) -> Account:
        return _require_account(self.session, account_id)

    def create(self, data: AccountIn) -> Account:
        account = Account(name=data.name.strip(), type=data.type)
        self.session.add(account)
        self.session.flush()

        presets = DEFAULT_CATEGORIES
        if data.type == AccountType.business:
            presets = presets + BUSINESS_CATEGORIES
        for preset in presets:
            self.session.add(
                Category(
                    account_id=account.id,
                    name=preset.name,
                    color=preset.color,
                    icon=preset.icon,
                    type=preset.type,
                )
            )
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountPatch) -> Account:
        account = self.get(account_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            account.name = changes["name"].strip()
        if "type" in changes:
            account.type = changes["type"]
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        self.get(account_id)
        for model in (
            InvoicePayment,
            Transaction,
            CreditCardTransaction,
            CreditCard,
            BankAccount,
            Category,
        ):
            self.session.execute(delete(model).where(model.account_id == account_id))
        self.session.execute(delete(Account).where(Account.id == account_id))
        self.session.commit()
        logger.info(f"account_deleted: account_id={account_id}")


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, account_id: int) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.account_id == account_id)
            .order_by(Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        return category

    def _find_by_name(self, account_id: int, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.account_id == account_id,
                func.lower(Category.name) == name.strip().lower(),
            )
        )

    def create(self, account_id: int, data: CategoryIn) -> Category:
        _require_account(self.session, account_id)
        name = data.name.strip()
        if self._find_by_name(account_id, name):
            raise ValueError("Category with this name already exists")
        category = Category(
            account_id=account_id,
            name=name,
            color=data.color,
            icon=data.icon,
            type=data.type,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryPatch) -> Category:
        category = self.get(category_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            name = changes.pop("name").strip()
            existing = self._find_by_name(category.account_id, name)
            if existing and existing.id != category.id:
                raise ValueError("Category with this name already exists")
            category.name = name
        for field_name, value in changes.items():
            setattr(category, field_name, value)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        in_use = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category_id
            )
        ) or self.session.scalar(
            select(func.count(CreditCardTransaction.id)).where(
                CreditCardTransaction.category_id == category_id
            )
        )
        if in_use:
            raise ValueError("Category is in use by transactions")
        self.session.delete(category)
        self.session.commit()

    def ensure(self, account_id: int, preset: CategorySpec) -> int:
        """Return the id of the account's category named ``preset.name``, creating it once."""
        existing = self._find_by_name(account_id, preset.name)
        if existing:
            return existing.id
        category = Category(
            account_id=account_id,
            name=preset.name,
            color=preset.color,
            icon=preset.icon,
            type=preset.type,
        )
        self.session.add(category)
        self.session.flush()
        logger.info(f"category_ensured: account_id={account_id} name={preset.name}")
        return category.id


class BankAccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, account_id: int) -> list[BankAccount]:
        stmt = (
            select(BankAccount)
            .where(BankAccount.account_id == account_id)
            .order_by(BankAccount.name)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, account_id: int, data: BankAccountIn) -> BankAccount:
        _require_account(self.session, account_id)
        bank_account = BankAccount(
            account_id=account_id,
            name=data.name.strip(),
            initial_balance=data.initial_balance,
            pix=data.pix or "",
        )
        self.session.add(bank_account)
        self.session.commit()
        self.session.refresh(bank_account)
        return bank_account


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.resolver = EditScopeResolver(session)
        self.materializer = TransactionMaterializer(session)

    def create(self, account_id: int, data: TransactionIn) -> list[Transaction]:
        _require_account(self.session, account_id)
        _check_category(self.session, account_id, data.category_id)
        _check_bank_account(self.session, account_id, data.bank_account_id)

        base = {
            "account_id": account_id,
            "description": data.description.strip(),
            "amount": data.amount,
            "type": data.type,
            "category_id": data.category_id,
            "bank_account_id": data.bank_account_id,
            "payment_method": data.payment_method,
            "client_name": data.client_name,
            "project_name": data.project_name,
            "cost_center": data.cost_center,
            "launch_type": data.launch_type,
        }
        if data.launch_type == LaunchType.parcelada:
            group_id = str(uuid4())
            rows = [
                Transaction(
                    **base,
                    date=add_months_preserve_day(data.date, index),
                    installments=data.installments,
                    current_installment=index + 1,
                    installments_group_id=group_id,
                    # Only the first installment can already be settled.
                    paid=data.paid and index == 0,
                )
                for index in range(data.installments)
            ]
        elif data.launch_type == LaunchType.recorrente:
            rows = [
                Transaction(
                    **base,
                    date=data.date,
                    installments=1,
                    current_installment=1,
                    recurrence_frequency=data.recurrence_frequency.value,
                    recurrence_end_date=data.recurrence_end_date,
                    recurrence_group_id=str(uuid4()),
                    paid=data.paid,
                )
            ]
        else:
            rows = [
                Transaction(
                    **base,
                    date=data.date,
                    installments=1,
                    current_installment=1,
                    paid=data.paid,
                )
            ]

        self.session.add_all(rows)
        self.session.commit()
        for row in rows:
            self.session.refresh(row)
        return rows

    def get(self, transaction_id: int) -> Transaction:
        return self.resolver.get(transaction_id)

    def list_range(self, account_id: int, start: date, end: date) -> list[LedgerEntry]:
        _require_account(self.session, account_id)
        return self.materializer.list_range(account_id, start, end)

    def recent(
        self, account_id: int, today: Optional[date] = None, limit: int = 10
    ) -> list[LedgerEntry]:
        today = today or local_today()
        entries = self.list_range(account_id, date(1970, 1, 1), today)
        return list(reversed(entries))[:limit]

    def export_csv(self, account_id: int, start: date, end: date) -> str:
        entries = self.list_range(account_id, start, end)
        names = {
            category.id: category.name
            for category in CategoryService(self.session).list_all(account_id)
        }
        return export_entries(entries, names)

    def update(self, transaction_id: int, data: TransactionUpdateIn) -> Transaction:
        row = self.get(transaction_id)
        patch = data.patch()
        changes = patch.changes()

        if row.is_invoice_transaction:
            if set(changes) != {"paid"}:
                raise InvoiceTransactionLocked(
                    "Invoice transactions are derived from card purchases; "
                    "only 'paid' can be changed"
                )
            card_id, month = split_invoice_id(row.credit_card_invoice_id or "")
            with rollback_on_error(self.session):
                invoice_aggregator(self.session).set_paid(
                    row.account_id, card_id, month, bool(changes["paid"])
                )
            self.session.refresh(row)
            return row

        if "category_id" in changes:
            _check_category(self.session, row.account_id, changes["category_id"])
        if "bank_account_id" in changes:
            _check_bank_account(self.session, row.account_id, changes["bank_account_id"])
        return self.resolver.update(
            transaction_id, patch, data.edit_scope, data.group_ref()
        )

    def delete(
        self,
        transaction_id: int,
        scope: Optional[EditScope] = None,
        ref: Optional[GroupRef] = None,
    ) -> None:
        row = self.get(transaction_id)
        if row.is_invoice_transaction:
            raise InvoiceTransactionLocked(
                "Invoice transactions are removed by deleting their card purchases"
            )
        self.resolver.delete(transaction_id, scope, ref)


class CreditCardService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, account_id: int) -> list[CreditCard]:
        stmt = (
            select(CreditCard)
            .where(CreditCard.account_id == account_id)
            .order_by(CreditCard.name)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, card_id: int) -> CreditCard:
        card = self.session.get(CreditCard, card_id)
        if not card:
            raise NotFoundError("Credit card not found")
        return card

    def create(self, account_id: int, data: CreditCardIn) -> CreditCard:
        _require_account(self.session, account_id)
        card = CreditCard(
            account_id=account_id,
            name=data.name.strip(),
            brand=data.brand.strip(),
            credit_limit=data.credit_limit,
            due_date=data.due_date,
            closing_day=data.closing_day,
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def update(self, card_id: int, data: CreditCardPatch) -> CreditCard:
        card = self.get(card_id)
        for field_name, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(card, field_name, value)
        # Name and due day feed the synthetic invoice rows.
        invoice_aggregator(self.session).resync(card.account_id, commit=False)
        self.session.commit()
        self.session.refresh(card)
        return card

    def delete(self, card_id: int) -> None:
        card = self.get(card_id)
        account_id = card.account_id
        self.session.execute(
            delete(InvoicePayment).where(InvoicePayment.credit_card_id == card_id)
        )
        self.session.execute(
            delete(Transaction).where(
                Transaction.credit_card_id == card_id,
                Transaction.is_invoice_transaction.is_(True),
            )
        )
        self.session.execute(
            delete(CreditCardTransaction).where(
                CreditCardTransaction.credit_card_id == card_id
            )
        )
        self.session.delete(card)
        self.session.flush()
        invoice_aggregator(self.session).resync(account_id, commit=False)
        self.session.commit()
        logger.info(f"credit_card_deleted: account_id={account_id} card_id={card_id}")


class CreditCardTransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(
        self,
        account_id: int,
        credit_card_id: Optional[int] = None,
        invoice_month: Optional[str] = None,
    ) -> list[CreditCardTransaction]:
        stmt = select(CreditCardTransaction).where(
            CreditCardTransaction.account_id == account_id
        )
        if credit_card_id is not None:
            stmt = stmt.where(CreditCardTransaction.credit_card_id == credit_card_id)
        if invoice_month:
            stmt = stmt.where(CreditCardTransaction.invoice_month == invoice_month)
        stmt = stmt.order_by(CreditCardTransaction.date, CreditCardTransaction.id)
        return list(self.session.scalars(stmt).all())

    def get(self, transaction_id: int) -> CreditCardTransaction:
        row = self.session.get(CreditCardTransaction, transaction_id)
        if not row:
            raise NotFoundError("Credit card transaction not found")
        return row

    def create(
        self, account_id: int, data: CreditCardTransactionIn
    ) -> list[CreditCardTransaction]:
        card = _require_card(self.session, account_id, data.credit_card_id)
        _check_category(self.session, account_id, data.category_id)
        first_month = data.invoice_month or invoice_month_for_purchase(
            data.date, card.closing_day
        )
        base = {
            "account_id": account_id,
            "credit_card_id": card.id,
            "category_id": data.category_id,
            "description": data.description.strip(),
            "amount": data.amount,
            "installments": data.installments,
            "client_name": data.client_name,
            "project_name": data.project_name,
            "cost_center": data.cost_center,
        }
        if data.installments > 1 and data.current_installment == 1:
            # A new installment purchase bills one installment per invoice.
            group_id = str(uuid4())
            rows = [
                CreditCardTransaction(
                    **base,
                    date=add_months_preserve_day(data.date, index),
                    current_installment=index + 1,
                    installments_group_id=group_id,
                    invoice_month=shift_month(first_month, index),
                )
                for index in range(data.installments)
            ]
        else:
            rows = [
                CreditCardTransaction(
                    **base,
                    date=data.date,
                    current_installment=data.current_installment,
                    invoice_month=first_month,
                )
            ]
        self.session.add_all(rows)
        self.session.flush()
        invoice_aggregator(self.session).resync(account_id, commit=False)
        self.session.commit()
        for row in rows:
            self.session.refresh(row)
        return rows

    def _members(
        self, row: CreditCardTransaction, scope: Optional[EditScope]
    ) -> list[CreditCardTransaction]:
        if scope in (None, EditScope.single) or not row.installments_group_id:
            return [row]
        stmt = (
            select(CreditCardTransaction)
            .where(
                CreditCardTransaction.account_id == row.account_id,
                CreditCardTransaction.installments_group_id
                == row.installments_group_id,
            )
            .order_by(CreditCardTransaction.current_installment)
        )
        if scope == EditScope.future:
            stmt = stmt.where(
                CreditCardTransaction.current_installment >= row.current_installment
            )
        members = list(self.session.scalars(stmt).all())
        if not members:
            raise NotFoundError("Transaction group not found")
        return members

    def update(
        self,
        transaction_id: int,
        data: CreditCardTransactionPatch,
        scope: Optional[EditScope] = None,
    ) -> CreditCardTransaction:
        row = self.get(transaction_id)
        card = _require_card(self.session, row.account_id, row.credit_card_id)
        changes = data.changes()
        if changes.get("category_id") is not None:
            _check_category(self.session, row.account_id, changes["category_id"])

        new_date = changes.pop("date", None)
        new_month = changes.pop("invoice_month", None)
        if new_date is not None and new_month is None:
            new_month = invoice_month_for_purchase(new_date, card.closing_day)

        with rollback_on_error(self.session):
            for member in self._members(row, scope):
                offset = member.current_installment - row.current_installment
                if new_date is not None:
                    member.date = add_months_preserve_day(new_date, offset)
                if new_month is not None:
                    member.invoice_month = shift_month(new_month, offset)
                for field_name, value in changes.items():
                    if value is not None or field_name in (
                        "client_name",
                        "project_name",
                        "cost_center",
                    ):
                        setattr(member, field_name, value)

            self.session.flush()
            invoice_aggregator(self.session).resync(row.account_id, commit=False)
            self.session.commit()
        self.session.refresh(row)
        return row

    def delete(self, transaction_id: int, scope: Optional[EditScope] = None) -> None:
        row = self.get(transaction_id)
        account_id = row.account_id
        with rollback_on_error(self.session):
            for member in self._members(row, scope):
                self.session.delete(member)
            self.session.flush()
            invoice_aggregator(self.session).resync(account_id, commit=False)
            self.session.commit()


class ImportService:
    """Stores card purchases extracted from an invoice image or PDF upstream."""

    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def match_category(
        name: Optional[str], description: str, categories: list[Category]
    ) -> Category:
        needle = (name or "").strip().lower()
        if needle:
            for category in categories:
                if category.name.strip().lower() == needle:
                    return category
            for category in categories:
                existing = category.name.strip().lower()
                if needle in existing or existing in needle:
                    return category

            best_distance: Optional[int] = None
            best: Optional[Category] = None
            for category in categories:
                dist = int(
                    Levenshtein.distance(needle, category.name.strip().lower())
                )
                if best_distance is None or dist < best_distance:
                    best_distance = dist
                    best = category
            if best is not None and best_distance is not None and best_distance <= 1:
                return best

        text = _fold(f"{needle} {description}")
        by_folded_name = {_fold(category.name): category for category in categories}
        for folded_name, keywords in CATEGORY_KEYWORDS.items():
            category = by_folded_name.get(folded_name)
            if category and any(keyword in text for keyword in keywords):
                return category

        return categories[0]

    def import_card_candidates(
        self, account_id: int, data: CardImportIn
    ) -> list[CreditCardTransaction]:
        card = _require_card(self.session, account_id, data.credit_card_id)
        categories = list(
            self.session.scalars(
                select(Category)
                .where(Category.account_id == account_id)
                .order_by(Category.id)
            ).all()
        )
        if not categories:
            raise ValueError("Account has no categories")

        rows = []
        for index, candidate in enumerate(data.transactions, start=1):
            try:
                amount = parse_amount(candidate.amount)
            except ValueError as exc:
                raise ValueError(f"Row {index}: {exc}") from exc
            if amount <= 0:
                raise ValueError(f"Row {index}: Amount must be positive")
            category = self.match_category(
                candidate.category, candidate.description, categories
            )
            rows.append(
                CreditCardTransaction(
                    account_id=account_id,
                    credit_card_id=card.id,
                    category_id=category.id,
                    description=candidate.description.strip()[:255],
                    amount=amount,
                    date=candidate.date,
                    installments=max(
                        candidate.installments, candidate.current_installment
                    ),
                    current_installment=candidate.current_installment,
                    invoice_month=data.invoice_month
                    or invoice_month_for_purchase(candidate.date, card.closing_day),
                )
            )

        self.session.add_all(rows)
        self.session.flush()
        invoice_aggregator(self.session).resync(account_id, commit=False)
        self.session.commit()
        logger.info(
            f"card_import: account_id={account_id} card_id={card.id} imported={len(rows)}"
        )
        return rows


@dataclass
class AccountStats:
    month: str
    monthly_income: Decimal
    monthly_expenses: Decimal
    monthly_result: Decimal
    total_balance: Decimal
    transaction_count: int


@dataclass
class CategoryStat:
    category_id: int
    name: str
    color: str
    icon: str
    total: Decimal
    count: int


def _signed(entry: LedgerEntry) -> Decimal:
    amount = Decimal(entry.amount)
    return amount if entry.type == TransactionType.income else -amount


class StatsService:
    """Aggregations over the materialized ledger; nothing here writes."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.transactions = TransactionService(session)

    def balance_as_of(self, account_id: int, as_of: date) -> Decimal:
        initial = self.session.scalar(
            select(func.coalesce(func.sum(BankAccount.initial_balance), 0)).where(
                BankAccount.account_id == account_id
            )
        )
        entries = self.transactions.list_range(account_id, date(1970, 1, 1), as_of)
        settled = sum((_signed(entry) for entry in entries if entry.paid), Decimal("0"))
        return (Decimal(initial or 0) + settled).quantize(Decimal("0.01"))

    def bank_balances(
        self, account_id: int, as_of: date
    ) -> list[tuple[BankAccount, Decimal]]:
        entries = [
            entry
            for entry in self.transactions.list_range(
                account_id, date(1970, 1, 1), as_of
            )
            if entry.paid and entry.bank_account_id is not None
        ]
        balances = []
        for bank_account in BankAccountService(self.session).list_all(account_id):
            moved = sum(
                (
                    _signed(entry)
                    for entry in entries
                    if entry.bank_account_id == bank_account.id
                ),
                Decimal("0"),
            )
            balances.append(
                (
                    bank_account,
                    (Decimal(bank_account.initial_balance) + moved).quantize(
                        Decimal("0.01")
                    ),
                )
            )
        return balances

    def account_stats(self, account_id: int, month: str) -> AccountStats:
        start, end = month_bounds(month)
        entries = self.transactions.list_range(account_id, start, end)
        income = sum(
            (Decimal(e.amount) for e in entries if e.type == TransactionType.income),
            Decimal("0.00"),
        )
        expenses = sum(
            (Decimal(e.amount) for e in entries if e.type == TransactionType.expense),
            Decimal("0.00"),
        )
        return AccountStats(
            month=month,
            monthly_income=income,
            monthly_expenses=expenses,
            monthly_result=income - expenses,
            total_balance=self.balance_as_of(account_id, end),
            transaction_count=len(entries),
        )

    def category_totals(
        self,
        account_id: int,
        start: date,
        end: date,
        txn_type: TransactionType = TransactionType.expense,
    ) -> list[CategoryStat]:
        entries = [
            entry
            for entry in self.transactions.list_range(account_id, start, end)
            if entry.type == txn_type
        ]
        totals: dict[int, Decimal] = {}
        counts: dict[int, int] = {}
        for entry in entries:
            totals[entry.category_id] = totals.get(
                entry.category_id, Decimal("0.00")
            ) + Decimal(entry.amount)
            counts[entry.category_id] = counts.get(entry.category_id, 0) + 1

        stats = [
            CategoryStat(
                category_id=category.id,
                name=category.name,
                color=category.color,
                icon=category.icon,
                total=totals.get(category.id, Decimal("0.00")),
                count=counts.get(category.id, 0),
            )
            for category in CategoryService(self.session).list_all(account_id)
            if category.type == txn_type or category.id in totals
        ]
        stats.sort(key=lambda item: (-item.total, item.name))
        return stats

    def category_stats(self, account_id: int, month: str) -> list[CategoryStat]:
        start, end = month_bounds(month)
        return self.category_totals(account_id, start, end, TransactionType.expense)
