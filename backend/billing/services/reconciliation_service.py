# Overview: Ledger reconciliation; compares cached stock/balance values against their ledgers.

"""
Ledger Reconciliation

The movement and entry logs are the ground truth; Product.current_stock_qty
and Customer.outstanding_balance are caches kept for fast reads. Under
correct concurrency control the two never diverge. If they do, the
divergence is logged for manual reconciliation and the operation that
detected it fails. Nothing here ever rewrites a cached value to "fix" it.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockMovement, Customer, BalanceEntry
from billing.money import round_money


class ConsistencyError(Exception):
    """Raised when a cached aggregate disagrees with the sum of its ledger."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def product_ledger_quantity(product_id: int) -> int:
    q = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).filter(StockMovement.product_id == product_id)
    return int(q.scalar() or 0)


def customer_ledger_balance(customer_id: int) -> Decimal:
    q = db.session.query(
        func.coalesce(func.sum(BalanceEntry.amount), 0)
    ).filter(BalanceEntry.customer_id == customer_id)
    return round_money(Decimal(str(q.scalar() or 0)))


def reconcile_product(product: Product) -> dict | None:
    ledger_qty = product_ledger_quantity(product.id)
    if ledger_qty == product.current_stock_qty:
        return None
    return {
        "entity_type": "product",
        "entity_id": product.id,
        "cached": product.current_stock_qty,
        "ledger": ledger_qty,
    }


def reconcile_customer(customer: Customer) -> dict | None:
    ledger_balance = customer_ledger_balance(customer.id)
    cached = round_money(Decimal(customer.outstanding_balance or 0))
    if ledger_balance == cached:
        return None
    return {
        "entity_type": "customer",
        "entity_id": customer.id,
        "cached": str(cached),
        "ledger": str(ledger_balance),
    }


def verify_product_stock(product: Product) -> None:
    """Raise ConsistencyError if the product's movements do not sum to its stock."""
    db.session.flush()
    divergence = reconcile_product(product)
    if divergence is not None:
        current_app.logger.error(
            "Stock ledger divergence for product %s: cached=%s ledger=%s",
            product.id, divergence["cached"], divergence["ledger"],
        )
        raise ConsistencyError(
            f"Stock ledger for product {product.id} does not match current stock",
            details=divergence,
        )


def verify_customer_balance(customer: Customer) -> None:
    """Raise ConsistencyError if the customer's entries do not sum to the balance."""
    db.session.flush()
    divergence = reconcile_customer(customer)
    if divergence is not None:
        current_app.logger.error(
            "Balance ledger divergence for customer %s: cached=%s ledger=%s",
            customer.id, divergence["cached"], divergence["ledger"],
        )
        raise ConsistencyError(
            f"Balance ledger for customer {customer.id} does not match outstanding balance",
            details=divergence,
        )


def reconcile_all(
    *,
    product_id: int | None = None,
    customer_id: int | None = None,
) -> list[dict]:
    """
    Report every divergence without raising.

    Used by the `flask ledger reconcile` command. With neither id given,
    every product and customer is checked.
    """
    divergences: list[dict] = []

    check_products = customer_id is None or product_id is not None
    check_customers = product_id is None or customer_id is not None

    if check_products:
        pq = db.session.query(Product)
        if product_id is not None:
            pq = pq.filter(Product.id == product_id)
        for product in pq.order_by(Product.id).all():
            divergence = reconcile_product(product)
            if divergence is not None:
                divergences.append(divergence)

    if check_customers:
        cq = db.session.query(Customer)
        if customer_id is not None:
            cq = cq.filter(Customer.id == customer_id)
        for customer in cq.order_by(Customer.id).all():
            divergence = reconcile_customer(customer)
            if divergence is not None:
                divergences.append(divergence)

    for divergence in divergences:
        current_app.logger.error(
            "Ledger divergence: %s %s cached=%s ledger=%s",
            divergence["entity_type"], divergence["entity_id"],
            divergence["cached"], divergence["ledger"],
        )

    return divergences
