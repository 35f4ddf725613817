from __future__ import annotations

from ..extensions import db
from billing.money import money_str
from billing.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data with a running outstanding balance.

    outstanding_balance is positive when the customer owes the firm. Like
    Product.current_stock_qty it is a cached value: the BalanceEntry rows
    for the customer must always sum to it, and only
    services/balance_service.py writes either side.

    total_purchases / invoice_count / last_invoice_at are denormalized
    statistics maintained by the invoice service.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("phone", name="uq_customers_phone"),
        db.Index("ix_customers_name", "name"),
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    address = db.Column(db.String(512), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    gstin = db.Column(db.String(32), nullable=True)
    dl_no = db.Column(db.String(64), nullable=True)

    # Default payment type offered when invoicing this customer
    payment_type = db.Column(db.String(16), nullable=False, default="CREDIT")

    outstanding_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    total_purchases = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    invoice_count = db.Column(db.Integer, nullable=False, default=0)
    last_invoice_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r} balance={self.outstanding_balance}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "email": self.email,
            "gstin": self.gstin,
            "dl_no": self.dl_no,
            "payment_type": self.payment_type,
            "outstanding_balance": money_str(self.outstanding_balance),
            "total_purchases": money_str(self.total_purchases),
            "invoice_count": self.invoice_count,
            "last_invoice_at": to_utc_z(self.last_invoice_at) if self.last_invoice_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class BalanceEntry(db.Model):
    """
    Append-only ledger of customer balance events.

    KINDS:
    - INVOICE: Debit for a credit invoice (positive)
    - PAYMENT: Money received against an invoice or opening balance (negative)
    - MANUAL_OPENING_BALANCE: Pre-system balance seeded by an operator
    - REVERSAL: Negates exactly one earlier entry (reversal_of_id)

    exclude_from_analytics entries still move outstanding_balance but must
    be filtered out of any revenue/sales aggregation.
    """
    __tablename__ = "balance_entries"
    __table_args__ = (
        db.Index("ix_balance_entries_customer_occurred", "customer_id", "occurred_at"),
        db.UniqueConstraint("reversal_of_id", name="uq_balance_entries_reversal_of"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    kind = db.Column(db.String(32), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    manual_entry_id = db.Column(db.Integer, db.ForeignKey("manual_entries.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)
    reversal_of_id = db.Column(db.Integer, db.ForeignKey("balance_entries.id"), nullable=True)

    exclude_from_analytics = db.Column(db.Boolean, nullable=False, default=False, index=True)

    note = db.Column(db.String(255), nullable=True)
    actor = db.Column(db.String(128), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("balance_entries", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "kind": self.kind,
            "amount": money_str(self.amount),
            "invoice_id": self.invoice_id,
            "manual_entry_id": self.manual_entry_id,
            "payment_id": self.payment_id,
            "reversal_of_id": self.reversal_of_id,
            "exclude_from_analytics": self.exclude_from_analytics,
            "note": self.note,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
