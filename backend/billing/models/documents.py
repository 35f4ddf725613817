from __future__ import annotations

from ..extensions import db
from billing.money import money_str
from billing.time_utils import to_utc_z


class ManualEntry(db.Model):
    """
    Operator-posted opening balance for a customer onboarding from a paper
    ledger.

    Never touches stock. The balance effect lives in BalanceEntry rows
    (manual_entry_id) flagged exclude_from_analytics, so dashboards never
    count it as a sale.

    paid_amount tracks payments recorded against this entry.
    """
    __tablename__ = "manual_entries"
    __table_args__ = (
        db.Index("ix_manual_entries_customer_date", "customer_id", "entry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(32), nullable=False, default="OPENING_BALANCE")
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    paid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    entry_date = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # ACTIVE or VOIDED
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)
    voided_by = db.Column(db.String(128), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Customer snapshot at time of entry
    customer_name = db.Column(db.String(255), nullable=True)
    outstanding_before = db.Column(db.Numeric(14, 2), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("manual_entries", lazy="dynamic"))

    @property
    def remaining_amount(self):
        return (self.amount or 0) - (self.paid_amount or 0)

    @property
    def payment_status(self) -> str:
        if self.remaining_amount <= 0:
            return "PAID"
        if (self.paid_amount or 0) > 0:
            return "PARTIAL"
        return "UNPAID"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "entry_type": self.entry_type,
            "amount": money_str(self.amount),
            "paid_amount": money_str(self.paid_amount),
            "remaining_amount": money_str(self.remaining_amount),
            "payment_status": self.payment_status,
            "entry_date": to_utc_z(self.entry_date),
            "description": self.description,
            "notes": self.notes,
            "status": self.status,
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "customer_name": self.customer_name,
            "outstanding_before": money_str(self.outstanding_before),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class ActivityEvent(db.Model):
    """Append-only activity/audit log. Written in the same DB transaction as the change it records."""
    __tablename__ = "activity_events"
    __table_args__ = (
        db.Index("ix_activity_events_occurred", "occurred_at"),
        db.Index("ix_activity_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., invoice.created, stock.adjusted
    event_category = db.Column(db.String(32), nullable=False, index=True)  # invoice, inventory, customer, payment, manual_entry

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    # Who did it (free-form; authentication lives outside this service)
    actor = db.Column(db.String(128), nullable=True, index=True)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Optional structured metadata (keep small; do not denormalize domain state)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor": self.actor,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-period document sequences.

    WHY: Two invoices created at the same moment must never share a number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_doc_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    period = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "period": self.period,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
