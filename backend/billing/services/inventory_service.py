# Overview: Product stock ledger; append-only movements with a cached current_stock_qty.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, StockMovement
from billing.validation import NotFoundError, ValidationError
from .activity_service import append_activity_event
from .concurrency import lock_for_update, run_with_retry
from .reconciliation_service import verify_product_stock
"""
Stock Ledger Invariants (authoritative)

- StockMovement rows are append-only: never updated, never deleted.
- Product.current_stock_qty == SUM(quantity_delta) for the product, always.
  Both sides are written here and nowhere else, in the same flush.
- Stock never goes negative through a sale or a manual OUT adjustment.
- A reversal is a new movement with the opposite sign, pointing at the
  movement it compensates (reversal_of_id, unique). Reversing a reference
  whose movements are already compensated is a no-op.
- reserve_and_deduct, reverse and manual_adjust join the caller's unit of work and never commit;
  adjust_stock is the public operation that owns its transaction.
"""

REASONS = ("OPENING", "SALE", "MANUAL_IN", "MANUAL_OUT", "REVERSAL")


class InsufficientStockError(ValueError):
    """Raised when a deduction would take current_stock_qty below zero."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _get_product(product_id: int, *, lock: bool = False, require_active: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise ValidationError(f"Product {product.name} is inactive")
    return product


def _append_movement(
    product: Product,
    delta: int,
    reason: str,
    *,
    invoice_id: int | None = None,
    invoice_line_id: int | None = None,
    reversal_of_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
) -> StockMovement:
    if reason not in REASONS:
        raise ValidationError(f"Unknown stock movement reason: {reason}")

    movement = StockMovement(
        product_id=product.id,
        reason=reason,
        quantity_delta=delta,
        invoice_id=invoice_id,
        invoice_line_id=invoice_line_id,
        reversal_of_id=reversal_of_id,
        note=note[:255] if note else None,
        actor=actor,
    )
    db.session.add(movement)
    product.current_stock_qty = (product.current_stock_qty or 0) + delta
    db.session.flush()

    verify_product_stock(product)
    return movement


def _check_available(product: Product, quantity: int) -> None:
    available = product.current_stock_qty or 0
    if available < quantity:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}. Available: {available}, Required: {quantity}",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "available": available,
                "required": quantity,
            },
        )


def reserve_and_deduct(
    product_id: int,
    quantity: int,
    reason: str = "SALE",
    invoice_id: int | None = None,
    *,
    invoice_line_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
) -> StockMovement:
    """
    Check availability and deduct `quantity` as one step under the row lock.

    Joins the caller's transaction; on InsufficientStockError the caller
    rolls back everything it has already written.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    product = _get_product(product_id, lock=True)
    _check_available(product, quantity)

    return _append_movement(
        product,
        -quantity,
        reason,
        invoice_id=invoice_id,
        invoice_line_id=invoice_line_id,
        note=note,
        actor=actor,
    )


def reverse(
    *,
    invoice_id: int | None = None,
    movement_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
) -> list[StockMovement]:
    """
    Compensate every not-yet-reversed movement of an invoice (or a single
    movement). Returns the new REVERSAL movements; an empty list means the
    reference was already fully reversed.
    """
    if (invoice_id is None) == (movement_id is None):
        raise ValidationError("exactly one of invoice_id or movement_id is required")

    q = db.session.query(StockMovement).filter(StockMovement.reason != "REVERSAL")
    if invoice_id is not None:
        q = q.filter(StockMovement.invoice_id == invoice_id)
    else:
        q = q.filter(StockMovement.id == movement_id)
    originals = q.order_by(StockMovement.product_id, StockMovement.id).all()

    if movement_id is not None and not originals:
        raise NotFoundError(f"Stock movement {movement_id} not found")

    reversed_ids = {
        row.reversal_of_id
        for row in db.session.query(StockMovement.reversal_of_id)
        .filter(StockMovement.reversal_of_id.in_([m.id for m in originals]))
        .all()
    } if originals else set()

    created: list[StockMovement] = []
    for original in originals:
        if original.id in reversed_ids:
            continue
        product = _get_product(original.product_id, lock=True)
        if original.quantity_delta > 0:
            # Undoing an inbound movement removes stock
            _check_available(product, original.quantity_delta)
        created.append(_append_movement(
            product,
            -original.quantity_delta,
            "REVERSAL",
            invoice_id=original.invoice_id,
            invoice_line_id=original.invoice_line_id,
            reversal_of_id=original.id,
            note=note or f"Reversal of movement {original.id}",
            actor=actor,
        ))

    if not created:
        current_app.logger.info(
            "Stock reversal for %s is a no-op (already reversed)",
            f"invoice {invoice_id}" if invoice_id is not None else f"movement {movement_id}",
        )
    return created


def manual_adjust(
    product_id: int,
    delta: int,
    reason: str | None = None,
    *,
    actor: str | None = None,
) -> StockMovement:
    """Administrative correction (physical recount). Same non-negative guard as a sale."""
    if delta == 0:
        raise ValidationError("delta must be non-zero")

    product = _get_product(product_id, lock=True)
    if delta < 0:
        _check_available(product, -delta)

    return _append_movement(
        product,
        delta,
        "MANUAL_IN" if delta > 0 else "MANUAL_OUT",
        note=reason,
        actor=actor,
    )


def record_opening_stock(product: Product, quantity: int, *, actor: str | None = None) -> StockMovement | None:
    """Post the stock on hand when a product is registered."""
    if quantity <= 0:
        return None
    return _append_movement(product, quantity, "OPENING", note="Opening stock", actor=actor)


def adjust_stock(
    product_id: int,
    quantity: int,
    adjust_type: str,
    reason: str | None = None,
    *,
    actor: str | None = None,
) -> Product:
    """
    Public stock adjustment: quantity > 0, adjust_type 'in' or 'out'.

    Owns its transaction (retry on contention, commit) and records an
    activity event with the before/after quantities.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    if adjust_type not in ("in", "out"):
        raise ValidationError("type must be 'in' or 'out'")

    delta = quantity if adjust_type == "in" else -quantity

    def _op() -> Product:
        product = _get_product(product_id, lock=True)
        before = product.current_stock_qty
        movement = manual_adjust(product_id, delta, reason, actor=actor)
        append_activity_event(
            event_type="stock.adjusted",
            event_category="inventory",
            entity_type="product",
            entity_id=product.id,
            actor=actor,
            product_id=product.id,
            note=reason,
            payload={
                "movement_id": movement.id,
                "type": adjust_type,
                "quantity": quantity,
                "before": before,
                "after": product.current_stock_qty,
            },
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


def list_movements(product_id: int, *, limit: int = 200) -> list[StockMovement]:
    _get_product(product_id)
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def get_low_stock_products(threshold: int | None = None) -> list[Product]:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.current_stock_qty <= threshold)
        .order_by(Product.current_stock_qty.asc(), Product.name.asc())
        .all()
    )
