"""Initial billing schema: products, customers, invoices and both ledgers

Revision ID: 20261018_initial_billing
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial_billing"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("hsn_code", sa.String(32), nullable=False),
        sa.Column("manufacturer", sa.String(255), nullable=True),
        sa.Column("batch_no", sa.String(64), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("unit", sa.String(32), nullable=False, server_default="Pieces"),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("mrp", sa.Numeric(12, 2), nullable=False),
        sa.Column("gst_percentage", sa.Integer(), nullable=False, server_default=sa.text("12")),
        sa.Column("current_stock_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("current_stock_qty >= 0", name="ck_products_stock_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_name", ["name"], unique=False)
        batch_op.create_index("ix_products_active_stock", ["is_active", "current_stock_qty"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("address", sa.String(512), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("gstin", sa.String(32), nullable=True),
        sa.Column("dl_no", sa.String(64), nullable=True),
        sa.Column("payment_type", sa.String(16), nullable=False, server_default="CREDIT"),
        sa.Column("outstanding_balance", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_purchases", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("invoice_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_invoice_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("phone", name="uq_customers_phone"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("customers", schema=None) as batch_op:
        batch_op.create_index("ix_customers_name", ["name"], unique=False)
        batch_op.create_index("ix_customers_active", ["is_active"], unique=False)

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_number", sa.String(64), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(32), nullable=True),
        sa.Column("customer_gstin", sa.String(32), nullable=True),
        sa.Column("payment_type", sa.String(16), nullable=False, server_default="CREDIT"),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("base_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_discount", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("sub_total", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_gst", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_cgst", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_sgst", sa.Numeric(14, 2), nullable=False),
        sa.Column("net_total", sa.Numeric(14, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="UNPAID"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(128), nullable=True),
        sa.Column("printed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(128), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("invoices", schema=None) as batch_op:
        batch_op.create_index("ix_invoices_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_invoices_status", ["status"], unique=False)
        batch_op.create_index("ix_invoices_payment_status", ["payment_status"], unique=False)
        batch_op.create_index("ix_invoices_customer_created", ["customer_id", "created_at"], unique=False)
        batch_op.create_index("ix_invoices_status_created", ["status", "created_at"], unique=False)

    op.create_table(
        "invoice_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("hsn_code", sa.String(32), nullable=True),
        sa.Column("batch_no", sa.String(64), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("quantity_sold", sa.Integer(), nullable=False),
        sa.Column("free_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("rate_per_unit", sa.Numeric(12, 2), nullable=False),
        sa.Column("scheme_discount", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("gst_percentage", sa.Integer(), nullable=False),
        sa.Column("base_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("taxable_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("gst_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(14, 2), nullable=False),
        sa.CheckConstraint("quantity_sold > 0", name="ck_invoice_lines_quantity_positive"),
        sa.CheckConstraint("free_quantity >= 0", name="ck_invoice_lines_free_non_negative"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("invoice_lines", schema=None) as batch_op:
        batch_op.create_index("ix_invoice_lines_invoice_id", ["invoice_id"], unique=False)
        batch_op.create_index("ix_invoice_lines_product_id", ["product_id"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_date", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=False, server_default="Cash"),
        sa.Column("reference_number", sa.String(64), nullable=True),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="COMPLETED"),
        sa.Column("voided_by", sa.String(128), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        sa.Column("created_by", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_invoice_id", ["invoice_id"], unique=False)
        batch_op.create_index("ix_payments_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_payments_status", ["status"], unique=False)
        batch_op.create_index("ix_payments_customer_date", ["customer_id", "payment_date"], unique=False)

    op.create_table(
        "manual_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("entry_type", sa.String(32), nullable=False, server_default="OPENING_BALANCE"),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("entry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("voided_by", sa.String(128), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("outstanding_before", sa.Numeric(14, 2), nullable=True),
        sa.Column("created_by", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("manual_entries", schema=None) as batch_op:
        batch_op.create_index("ix_manual_entries_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_manual_entries_status", ["status"], unique=False)
        batch_op.create_index("ix_manual_entries_customer_date", ["customer_id", "entry_date"], unique=False)

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column("quantity_delta", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("invoice_line_id", sa.Integer(), nullable=True),
        sa.Column("reversal_of_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("actor", sa.String(128), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["invoice_line_id"], ["invoice_lines.id"]),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["stock_movements.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reversal_of_id", name="uq_stock_movements_reversal_of"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_stock_movements_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_stock_movements_reason", ["reason"], unique=False)
        batch_op.create_index("ix_stock_movements_invoice_id", ["invoice_id"], unique=False)
        batch_op.create_index("ix_stock_movements_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_stock_movements_product_occurred", ["product_id", "occurred_at"], unique=False)

    op.create_table(
        "balance_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("manual_entry_id", sa.Integer(), nullable=True),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("reversal_of_id", sa.Integer(), nullable=True),
        sa.Column("exclude_from_analytics", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("actor", sa.String(128), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["manual_entry_id"], ["manual_entries.id"]),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["balance_entries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reversal_of_id", name="uq_balance_entries_reversal_of"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("balance_entries", schema=None) as batch_op:
        batch_op.create_index("ix_balance_entries_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_balance_entries_kind", ["kind"], unique=False)
        batch_op.create_index("ix_balance_entries_invoice_id", ["invoice_id"], unique=False)
        batch_op.create_index("ix_balance_entries_manual_entry_id", ["manual_entry_id"], unique=False)
        batch_op.create_index("ix_balance_entries_payment_id", ["payment_id"], unique=False)
        batch_op.create_index("ix_balance_entries_exclude_from_analytics", ["exclude_from_analytics"], unique=False)
        batch_op.create_index("ix_balance_entries_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_balance_entries_customer_occurred", ["customer_id", "occurred_at"], unique=False)

    op.create_table(
        "activity_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("event_category", sa.String(32), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor", sa.String(128), nullable=True),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("activity_events", schema=None) as batch_op:
        batch_op.create_index("ix_activity_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_activity_events_event_category", ["event_category"], unique=False)
        batch_op.create_index("ix_activity_events_actor", ["actor"], unique=False)
        batch_op.create_index("ix_activity_events_invoice_id", ["invoice_id"], unique=False)
        batch_op.create_index("ix_activity_events_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_activity_events_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_activity_events_occurred", ["occurred_at"], unique=False)
        batch_op.create_index("ix_activity_events_entity", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("period", sa.String(16), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", "period", name="uq_doc_sequences_type_period"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("document_sequences", schema=None) as batch_op:
        batch_op.create_index("ix_document_sequences_document_type", ["document_type"], unique=False)


def downgrade():
    op.drop_table("document_sequences")
    op.drop_table("activity_events")
    op.drop_table("balance_entries")
    op.drop_table("stock_movements")
    op.drop_table("manual_entries")
    op.drop_table("payments")
    op.drop_table("invoice_lines")
    op.drop_table("invoices")
    op.drop_table("customers")
    op.drop_table("products")
