"""initial ledger schema

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type", sa.Enum("personal", "business", name="accounttype"), nullable=False
        ),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("color", sa.String(length=9), nullable=False),
        sa.Column("icon", sa.String(length=60), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_categories_account", "categories", ["account_id"])

    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("initial_balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("pix", sa.String(length=120)),
        *_timestamps(),
    )

    op.create_table(
        "credit_cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("brand", sa.String(length=40), nullable=False),
        sa.Column("credit_limit", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_date", sa.Integer(), nullable=False),
        sa.Column("closing_day", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("due_date BETWEEN 1 AND 31", name="ck_credit_cards_due_day"),
        sa.CheckConstraint(
            "closing_day BETWEEN 1 AND 31", name="ck_credit_cards_closing_day"
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("bank_account_id", sa.Integer(), sa.ForeignKey("bank_accounts.id")),
        sa.Column("payment_method", sa.String(length=40)),
        sa.Column("client_name", sa.String(length=120)),
        sa.Column("project_name", sa.String(length=120)),
        sa.Column("cost_center", sa.String(length=120)),
        sa.Column("installments", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "current_installment", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("installments_group_id", sa.String(length=36)),
        sa.Column(
            "launch_type",
            sa.Enum("unica", "parcelada", "recorrente", name="launchtype"),
        ),
        sa.Column("recurrence_frequency", sa.String(length=20)),
        sa.Column("recurrence_end_date", sa.Date()),
        sa.Column("recurrence_group_id", sa.String(length=36)),
        sa.Column(
            "is_exception", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("exception_for_date", sa.Date()),
        sa.Column("credit_card_id", sa.Integer(), sa.ForeignKey("credit_cards.id")),
        sa.Column("credit_card_invoice_id", sa.String(length=40)),
        sa.Column(
            "is_invoice_transaction",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("installments >= 1", name="ck_transactions_installments"),
        sa.CheckConstraint(
            "current_installment >= 1 AND current_installment <= installments",
            name="ck_transactions_current_installment",
        ),
    )
    op.create_index(
        "ix_transactions_account_date", "transactions", ["account_id", "date"]
    )
    op.create_index(
        "ix_transactions_installments_group", "transactions", ["installments_group_id"]
    )
    op.create_index(
        "uq_transactions_recurrence_definition",
        "transactions",
        ["recurrence_group_id"],
        unique=True,
        sqlite_where=sa.text("is_exception = 0 AND recurrence_group_id IS NOT NULL"),
        postgresql_where=sa.text(
            "is_exception = false AND recurrence_group_id IS NOT NULL"
        ),
    )
    op.create_index(
        "uq_transactions_recurrence_exception",
        "transactions",
        ["recurrence_group_id", "exception_for_date"],
        unique=True,
        sqlite_where=sa.text("is_exception = 1"),
        postgresql_where=sa.text("is_exception = true"),
    )

    op.create_table(
        "credit_card_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "credit_card_id",
            sa.Integer(),
            sa.ForeignKey("credit_cards.id"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("installments", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "current_installment", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("installments_group_id", sa.String(length=36)),
        sa.Column("invoice_month", sa.String(length=7), nullable=False),
        sa.Column("client_name", sa.String(length=120)),
        sa.Column("project_name", sa.String(length=120)),
        sa.Column("cost_center", sa.String(length=120)),
        *_timestamps(),
        sa.CheckConstraint(
            "installments >= 1", name="ck_cc_transactions_installments"
        ),
    )
    op.create_index(
        "ix_cc_transactions_account_card_month",
        "credit_card_transactions",
        ["account_id", "credit_card_id", "invoice_month"],
    )

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "credit_card_id",
            sa.Integer(),
            sa.ForeignKey("credit_cards.id"),
            nullable=False,
        ),
        sa.Column("invoice_month", sa.String(length=7), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id")),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", "overdue", name="invoicestatus"),
            nullable=False,
        ),
        sa.Column("paid_at", sa.DateTime()),
        *_timestamps(),
        sa.UniqueConstraint(
            "credit_card_id", "invoice_month", name="uq_invoice_payment_card_month"
        ),
    )


def downgrade():
    op.drop_table("invoice_payments")
    op.drop_index(
        "ix_cc_transactions_account_card_month", table_name="credit_card_transactions"
    )
    op.drop_table("credit_card_transactions")
    op.drop_index("uq_transactions_recurrence_exception", table_name="transactions")
    op.drop_index("uq_transactions_recurrence_definition", table_name="transactions")
    op.drop_index("ix_transactions_installments_group", table_name="transactions")
    op.drop_index("ix_transactions_account_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("credit_cards")
    op.drop_table("bank_accounts")
    op.drop_index("ix_categories_account", table_name="categories")
    op.drop_table("categories")
    op.drop_table("accounts")
