# backend/billing/services/products_service.py
"""
Products Service

Master data only. Stock is never written here except through the stock
ledger: a product created with opening_stock_qty gets an OPENING movement,
and current_stock_qty is not a writable field.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Product
from billing.validation import NotFoundError
from .activity_service import append_activity_event
from .concurrency import run_with_retry
from .inventory_service import record_opening_stock
from .query_utils import paginate

PRODUCT_MUTABLE_FIELDS = {
    "name", "hsn_code", "manufacturer", "batch_no", "expiry_date",
    "unit", "rate", "mrp", "gst_percentage", "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_products(
    *,
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = 1,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Product.name.ilike(like), Product.hsn_code.ilike(like)))
    q = q.order_by(Product.name.asc(), Product.id.asc())
    return paginate(q, page=page, per_page=per_page)


def create_product(*, patch: dict, opening_stock_qty: int = 0, actor: str | None = None) -> Product:
    """Create a product; opening stock is posted as an OPENING movement."""
    def _op() -> Product:
        p = Product(current_stock_qty=0)
        apply_product_patch(p, patch)
        db.session.add(p)
        db.session.flush()

        record_opening_stock(p, opening_stock_qty, actor=actor)

        append_activity_event(
            event_type="product.created",
            event_category="inventory",
            entity_type="product",
            entity_id=p.id,
            actor=actor,
            product_id=p.id,
            payload={"name": p.name, "opening_stock_qty": opening_stock_qty},
        )
        db.session.commit()
        return p

    return run_with_retry(_op)


def update_product(product_id: int, *, patch: dict, actor: str | None = None) -> Product:
    """Update master data. Rate/GST changes never touch past invoices."""
    def _op() -> Product:
        p = get_product(product_id)
        apply_product_patch(p, patch)
        append_activity_event(
            event_type="product.updated",
            event_category="inventory",
            entity_type="product",
            entity_id=p.id,
            actor=actor,
            product_id=p.id,
            payload={"fields": sorted(patch.keys())},
        )
        db.session.commit()
        return p

    return run_with_retry(_op)


def deactivate_product(product_id: int, *, actor: str | None = None) -> Product:
    """Products referenced by invoices and movements are deactivated, never deleted."""
    def _op() -> Product:
        p = get_product(product_id)
        p.is_active = False
        append_activity_event(
            event_type="product.deactivated",
            event_category="inventory",
            entity_type="product",
            entity_id=p.id,
            actor=actor,
            product_id=p.id,
        )
        db.session.commit()
        return p

    return run_with_retry(_op)
