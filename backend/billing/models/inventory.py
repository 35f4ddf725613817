from __future__ import annotations

from ..extensions import db
from billing.money import money_str
from billing.time_utils import to_utc_z, to_iso_date


class Product(db.Model):
    """
    Product master data.

    current_stock_qty is a cached value. The StockMovement rows for the
    product are the ground truth and must always sum to it; only the stock
    ledger (services/inventory_service.py) writes either side.

    Batch and expiry metadata is informational and never enforced when
    selling.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("current_stock_qty >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active_stock", "is_active", "current_stock_qty"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    hsn_code = db.Column(db.String(32), nullable=False)
    manufacturer = db.Column(db.String(255), nullable=True)
    batch_no = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    unit = db.Column(db.String(32), nullable=False, default="Pieces")

    rate = db.Column(db.Numeric(12, 2), nullable=False)
    mrp = db.Column(db.Numeric(12, 2), nullable=False)
    gst_percentage = db.Column(db.Integer, nullable=False, default=12)

    current_stock_qty = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.current_stock_qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "hsn_code": self.hsn_code,
            "manufacturer": self.manufacturer,
            "batch_no": self.batch_no,
            "expiry_date": to_iso_date(self.expiry_date),
            "unit": self.unit,
            "rate": money_str(self.rate),
            "mrp": money_str(self.mrp),
            "gst_percentage": self.gst_percentage,
            "current_stock_qty": self.current_stock_qty,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    REASONS:
    - OPENING: Stock on hand when the product was registered
    - SALE: Deducted by an invoice line
    - MANUAL_IN / MANUAL_OUT: Administrative correction (physical recount)
    - REVERSAL: Compensates exactly one earlier movement (reversal_of_id)

    reversal_of_id is unique, so a movement can be compensated at most once.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.UniqueConstraint("reversal_of_id", name="uq_stock_movements_reversal_of"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    reason = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    invoice_line_id = db.Column(db.Integer, db.ForeignKey("invoice_lines.id"), nullable=True)
    reversal_of_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    actor = db.Column(db.String(128), nullable=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "reason": self.reason,
            "quantity_delta": self.quantity_delta,
            "invoice_id": self.invoice_id,
            "invoice_line_id": self.invoice_line_id,
            "reversal_of_id": self.reversal_of_id,
            "note": self.note,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
