# Overview: Flask API routes for products and stock; parses input and returns JSON responses.

# backend/billing/routes/products.py
from flask import Blueprint, request

from ..models import Product
from ..services import products_service, inventory_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    enforce_rules_opening_stock,
    enforce_rules_stock_adjust,
)
from ..decorators import current_actor, handle_domain_errors

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "hsn_code", "manufacturer", "batch_no", "expiry_date",
        "unit", "rate", "mrp", "gst_percentage", "is_active",
    },
    required_on_create={"name", "hsn_code", "rate", "mrp"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@handle_domain_errors("list products")
def list_products():
    """
    Query params:
    - search: matches name or HSN code
    - include_inactive: "true" to include deactivated products
    - page / per_page
    """
    return products_service.list_products(
        search=request.args.get("search"),
        include_inactive=request.args.get("include_inactive") == "true",
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/low-stock")
@handle_domain_errors("list low stock products")
def low_stock():
    threshold = request.args.get("threshold", type=int)
    products = inventory_service.get_low_stock_products(threshold)
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.post("")
@handle_domain_errors("create product")
def create_product_route():
    """Create a product. Optional opening_stock_qty is posted to the stock ledger."""
    payload = dict(request.get_json(silent=True) or {})
    opening = payload.pop("opening_stock_qty", None)

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    opening_qty = enforce_rules_opening_stock(opening) if opening is not None else 0

    product = products_service.create_product(patch=patch, opening_stock_qty=opening_qty, actor=current_actor())
    return product.to_dict(), 201


@products_bp.get("/<int:product_id>")
@handle_domain_errors("get product")
def get_product_route(product_id: int):
    return products_service.get_product(product_id).to_dict()


@products_bp.put("/<int:product_id>")
@handle_domain_errors("update product")
def update_product_route(product_id: int):
    """current_stock_qty is not writable here; use PUT /<id>/stock."""
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    product = products_service.update_product(product_id, patch=patch, actor=current_actor())
    return product.to_dict()


@products_bp.delete("/<int:product_id>")
@handle_domain_errors("deactivate product")
def deactivate_product_route(product_id: int):
    product = products_service.deactivate_product(product_id, actor=current_actor())
    return {"ok": True, "product": product.to_dict()}


@products_bp.put("/<int:product_id>/stock")
@handle_domain_errors("adjust stock")
def adjust_stock_route(product_id: int):
    """
    Body: {"quantity": int > 0, "type": "in" | "out", "reason": str}
    """
    payload = request.get_json(silent=True) or {}
    quantity, adjust_type, reason = enforce_rules_stock_adjust(payload)
    product = inventory_service.adjust_stock(
        product_id, quantity, adjust_type, reason, actor=current_actor()
    )
    return product.to_dict()


@products_bp.get("/<int:product_id>/movements")
@handle_domain_errors("list stock movements")
def list_movements_route(product_id: int):
    limit = min(request.args.get("limit", 200, type=int), 1000)
    movements = inventory_service.list_movements(product_id, limit=limit)
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}
