from __future__ import annotations

from ..extensions import db
from billing.money import money_str
from billing.time_utils import to_utc_z, to_iso_date


class Invoice(db.Model):
    """
    Invoice document.

    The totals columns are a snapshot taken at creation and are never
    recomputed; later price or tax changes on the product do not touch
    them. Current stock and balance are read from the ledgers, not from
    here: the invoice only records history and links to the movements and
    entries it caused (StockMovement.invoice_id, BalanceEntry.invoice_id).

    Cancelled invoices are retained with status CANCELLED so their
    reversals stay queryable.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        db.Index("ix_invoices_customer_created", "customer_id", "created_at"),
        db.Index("ix_invoices_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "INV-2026-0001")
    invoice_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_gstin = db.Column(db.String(32), nullable=True)

    payment_type = db.Column(db.String(16), nullable=False, default="CREDIT")

    # Lifecycle status (DRAFT -> PRINTED -> CANCELLED)
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    # Totals snapshot
    base_amount = db.Column(db.Numeric(14, 2), nullable=False)
    total_discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    sub_total = db.Column(db.Numeric(14, 2), nullable=False)
    total_gst = db.Column(db.Numeric(14, 2), nullable=False)
    total_cgst = db.Column(db.Numeric(14, 2), nullable=False)
    total_sgst = db.Column(db.Numeric(14, 2), nullable=False)
    net_total = db.Column(db.Numeric(14, 2), nullable=False)

    # Payment tracking (credit invoices only)
    paid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID", index=True)  # UNPAID, PARTIAL, PAID

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(128), nullable=True)

    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cancellation audit trail
    cancelled_by = db.Column(db.String(128), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy="dynamic"))
    lines = db.relationship(
        "InvoiceLine",
        back_populates="invoice",
        order_by="InvoiceLine.line_number",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def totals_dict(self) -> dict:
        return {
            "base_amount": money_str(self.base_amount),
            "total_discount": money_str(self.total_discount),
            "sub_total": money_str(self.sub_total),
            "total_gst": money_str(self.total_gst),
            "total_cgst": money_str(self.total_cgst),
            "total_sgst": money_str(self.total_sgst),
            "net_total": money_str(self.net_total),
        }

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_gstin": self.customer_gstin,
            "payment_type": self.payment_type,
            "status": self.status,
            "totals": self.totals_dict(),
            "paid_amount": money_str(self.paid_amount),
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_by": self.created_by,
            "printed_at": to_utc_z(self.printed_at) if self.printed_at else None,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """
    Line item embedded in an invoice, with a snapshot of the product.

    quantity_sold is the number of units leaving stock; free_quantity of
    those units carry no charge.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_number"),
        db.CheckConstraint("quantity_sold > 0", name="ck_invoice_lines_quantity_positive"),
        db.CheckConstraint("free_quantity >= 0", name="ck_invoice_lines_free_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    hsn_code = db.Column(db.String(32), nullable=True)
    batch_no = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    quantity_sold = db.Column(db.Integer, nullable=False)
    free_quantity = db.Column(db.Integer, nullable=False, default=0)
    rate_per_unit = db.Column(db.Numeric(12, 2), nullable=False)
    scheme_discount = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    gst_percentage = db.Column(db.Integer, nullable=False)

    # Per-line display amounts (invoice totals are rounded from unrounded sums)
    base_amount = db.Column(db.Numeric(14, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    taxable_amount = db.Column(db.Numeric(14, 2), nullable=False)
    gst_amount = db.Column(db.Numeric(14, 2), nullable=False)
    line_total = db.Column(db.Numeric(14, 2), nullable=False)

    invoice = db.relationship("Invoice", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "hsn_code": self.hsn_code,
            "batch_no": self.batch_no,
            "expiry_date": to_iso_date(self.expiry_date),
            "quantity_sold": self.quantity_sold,
            "free_quantity": self.free_quantity,
            "rate_per_unit": money_str(self.rate_per_unit),
            "scheme_discount": str(self.scheme_discount),
            "gst_percentage": self.gst_percentage,
            "base_amount": money_str(self.base_amount),
            "discount_amount": money_str(self.discount_amount),
            "taxable_amount": money_str(self.taxable_amount),
            "gst_amount": money_str(self.gst_amount),
            "line_total": money_str(self.line_total),
        }


class Payment(db.Model):
    """
    Payment received against a credit invoice.

    STATUS:
    - COMPLETED: Counted in Invoice.paid_amount, credit entry posted
    - VOIDED: Reversed (explicit void or invoice cancellation)
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_customer_date", "customer_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    payment_method = db.Column(db.String(32), nullable=False, default="Cash")
    reference_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)
    voided_by = db.Column(db.String(128), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "amount": money_str(self.amount),
            "payment_date": to_utc_z(self.payment_date),
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "status": self.status,
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
