# Overview: Flask API routes for customers and their balance ledger.

# backend/billing/routes/customers.py
from flask import Blueprint, request

from ..models import Customer
from ..services import customers_service, balance_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
)
from ..decorators import current_actor, handle_domain_errors

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "address", "email", "gstin", "dl_no", "payment_type", "is_active"},
    required_on_create={"name", "phone"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@handle_domain_errors("list customers")
def list_customers():
    return customers_service.list_customers(
        search=request.args.get("search"),
        include_inactive=request.args.get("include_inactive") == "true",
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", type=int),
    )


@customers_bp.post("")
@handle_domain_errors("create customer")
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    enforce_rules_customer(patch)
    customer = customers_service.create_customer(patch=patch, actor=current_actor())
    return customer.to_dict(), 201


@customers_bp.get("/<int:customer_id>")
@handle_domain_errors("get customer")
def get_customer_route(customer_id: int):
    return customers_service.get_customer(customer_id).to_dict()


@customers_bp.put("/<int:customer_id>")
@handle_domain_errors("update customer")
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    enforce_rules_customer(patch)
    customer = customers_service.update_customer(customer_id, patch=patch, actor=current_actor())
    return customer.to_dict()


@customers_bp.get("/<int:customer_id>/ledger")
@handle_domain_errors("get customer ledger")
def customer_ledger_route(customer_id: int):
    """
    Balance entries for a customer, newest first.

    include_excluded=false drops opening balances and their payments, the
    view revenue reporting uses.
    """
    include_excluded = request.args.get("include_excluded", "true") != "false"
    limit = min(request.args.get("limit", 200, type=int), 1000)
    customer = customers_service.get_customer(customer_id)
    entries = balance_service.list_balance_entries(
        customer_id, include_excluded=include_excluded, limit=limit
    )
    return {
        "customer": customer.to_dict(),
        "entries": [e.to_dict() for e in entries],
        "count": len(entries),
    }
