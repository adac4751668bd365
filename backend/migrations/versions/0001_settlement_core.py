"""Settlement core: sales, payment legs, AR ledger, shifts, audit, inventory queue

Revision ID: 0001_settlement_core
Revises:
Create Date: 2026-10-18 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_settlement_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Customer accounts (AR)
    op.create_table(
        "customer_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_code", sa.String(length=32), nullable=False),
        sa.Column("customer_name", sa.String(length=128), nullable=False),
        sa.Column("contact_person", sa.String(length=128), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("credit_limit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("opening_balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id", name="pk_customer_accounts"),
        sa.UniqueConstraint("customer_code", name="uq_customer_accounts_code"),
        sa.CheckConstraint("credit_limit_cents >= 0", name="ck_customer_accounts_credit_limit_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customer_accounts_is_active", "customer_accounts", ["is_active"], unique=False)

    # Shifts
    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cashier_id", sa.Integer(), nullable=False),
        sa.Column("cashier_name", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ACTIVE"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("starting_cash_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_sales_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cash_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_card_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_mobile_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_check_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_ar_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cash_refunds_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transaction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=True),
        sa.Column("ending_cash_cents", sa.Integer(), nullable=True),
        sa.Column("cash_difference_cents", sa.Integer(), nullable=True),
        sa.Column("closed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id", name="pk_shifts"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shifts_status", "shifts", ["status"], unique=False)
    op.create_index("ix_shifts_cashier_started", "shifts", ["cashier_id", "started_at"], unique=False)
    op.create_index(
        "uq_shifts_active_cashier",
        "shifts",
        ["cashier_id"],
        unique=True,
        sqlite_where=sa.text("status = 'ACTIVE'"),
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    # Sales
    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_number", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="COMPLETED"),
        sa.Column("tax_mode", sa.String(length=16), nullable=False, server_default="VAT"),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("withholding_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("amount_due_cents", sa.Integer(), nullable=False),
        sa.Column("amount_tendered_cents", sa.Integer(), nullable=False),
        sa.Column("change_due_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("customer_account_id", sa.Integer(), nullable=True),
        sa.Column("cashier_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("voided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(length=255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id", name="pk_sales"),
        sa.ForeignKeyConstraint(
            ["customer_account_id"], ["customer_accounts.id"],
            name="fk_sales_customer_account_id_customer_accounts",
        ),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], name="fk_sales_shift_id_shifts"),
        sa.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_status", "sales", ["status"], unique=False)
    op.create_index("ix_sales_cashier_id", "sales", ["cashier_id"], unique=False)
    op.create_index("ix_sales_created_at", "sales", ["created_at"], unique=False)
    op.create_index("ix_sales_shift_created", "sales", ["shift_id", "created_at"], unique=False)
    op.create_index("ix_sales_customer_created", "sales", ["customer_account_id", "created_at"], unique=False)

    op.create_table(
        "sale_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_bps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_sale_lines"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_sale_lines_sale_id_sales"),
        sa.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sale_lines_sale_id", "sale_lines", ["sale_id"], unique=False)
    op.create_index("ix_sale_lines_product_id", "sale_lines", ["product_id"], unique=False)

    op.create_table(
        "sale_payment_legs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("leg_number", sa.Integer(), nullable=False),
        sa.Column("method_code", sa.String(length=32), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("reference_number", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_sale_payment_legs"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_sale_payment_legs_sale_id_sales"),
        sa.CheckConstraint("amount_cents > 0", name="ck_sale_payment_legs_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sale_payment_legs_sale_id", "sale_payment_legs", ["sale_id"], unique=False)
    op.create_index("ix_sale_payment_legs_method", "sale_payment_legs", ["method_code"], unique=False)

    # AR ledger
    op.create_table(
        "ar_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_account_id", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(length=16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("balance_after_cents", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        sa.Column("reverses_transaction_id", sa.Integer(), nullable=True),
        sa.Column("unapplied_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("reference_number", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.Column("processed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id", name="pk_ar_transactions"),
        sa.ForeignKeyConstraint(
            ["customer_account_id"], ["customer_accounts.id"],
            name="fk_ar_transactions_customer_account_id_customer_accounts",
        ),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_ar_transactions_sale_id_sales"),
        sa.ForeignKeyConstraint(
            ["reverses_transaction_id"], ["ar_transactions.id"],
            name="fk_ar_transactions_reverses_transaction_id_ar_transactions",
        ),
        sa.UniqueConstraint("customer_account_id", "sequence", name="uq_ar_transactions_customer_sequence"),
        sa.UniqueConstraint("reverses_transaction_id", name="uq_ar_transactions_reverses_transaction_id"),
        sa.CheckConstraint("amount_cents > 0", name="ck_ar_transactions_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ar_transactions_customer_account_id", "ar_transactions", ["customer_account_id"], unique=False)
    op.create_index("ix_ar_transactions_transaction_type", "ar_transactions", ["transaction_type"], unique=False)
    op.create_index("ix_ar_transactions_sale_id", "ar_transactions", ["sale_id"], unique=False)
    op.create_index(
        "ix_ar_transactions_customer_occurred",
        "ar_transactions",
        ["customer_account_id", "occurred_at"],
        unique=False,
    )

    # Document sequences
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_code", sa.String(length=32), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id", name="pk_document_sequences"),
        sa.UniqueConstraint("store_code", "document_type", name="uq_document_sequences_store_type"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_document_sequences_store_code", "document_sequences", ["store_code"], unique=False)
    op.create_index("ix_document_sequences_document_type", "document_sequences", ["document_type"], unique=False)

    # Audit events
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("event_category", sa.String(length=32), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("customer_account_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_audit_events"),
        sqlite_autoincrement=True,
    )
    for column in ("event_type", "event_category", "actor_user_id", "sale_id", "shift_id", "customer_account_id", "occurred_at"):
        op.create_index(f"ix_audit_events_{column}", "audit_events", [column], unique=False)
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"], unique=False)

    # Inventory retry queue
    op.create_table(
        "pending_inventory_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("operation", sa.String(length=16), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason_tag", sa.String(length=128), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_error", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_pending_inventory_requests"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_pending_inventory_requests_sale_id_sales"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_pending_inventory_requests_sale_id", "pending_inventory_requests", ["sale_id"], unique=False)
    op.create_index("ix_pending_inventory_requests_status", "pending_inventory_requests", ["status"], unique=False)


def downgrade():
    op.drop_table("pending_inventory_requests")
    op.drop_table("audit_events")
    op.drop_table("document_sequences")
    op.drop_table("ar_transactions")
    op.drop_table("sale_payment_legs")
    op.drop_table("sale_lines")
    op.drop_table("sales")
    op.drop_table("shifts")
    op.drop_table("customer_accounts")
