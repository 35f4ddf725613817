# Overview: Flask API routes for manual (opening balance) entries.

# backend/billing/routes/manual_entries.py
from flask import Blueprint, request

from ..services import customers_service, manual_entry_service
from ..validation import ValidationError, to_int
from ..decorators import current_actor, handle_domain_errors


manual_entries_bp = Blueprint("manual_entries", __name__, url_prefix="/api/manual-entries")


@manual_entries_bp.post("")
@handle_domain_errors("create manual entry")
def create_manual_entry_route():
    """
    Body: {"customer_id": int, "amount": number > 0, "entry_date": "YYYY-MM-DD",
           "description": str, "notes": str}

    Returns the balance entry that was posted.
    """
    data = request.get_json(silent=True) or {}
    customer_id = data.get("customer_id", data.get("customerId"))
    if customer_id is None:
        raise ValidationError("customer_id is required")
    if data.get("amount") is None:
        raise ValidationError("amount is required")

    entry = manual_entry_service.create_manual_entry(
        to_int(customer_id, "customer_id"),
        data["amount"],
        data.get("entry_date", data.get("entryDate")),
        data.get("description"),
        data.get("notes"),
        actor=current_actor(),
    )
    return {"balance_entry": entry.to_dict()}, 201


@manual_entries_bp.get("")
@handle_domain_errors("list manual entries")
def list_manual_entries_route():
    entries = manual_entry_service.list_manual_entries(
        customer_id=request.args.get("customer_id", type=int),
        include_voided=request.args.get("include_voided") == "true",
        unpaid_only=request.args.get("unpaid_only") == "true",
    )
    return {"items": [e.to_dict() for e in entries], "count": len(entries)}


@manual_entries_bp.get("/customer/<int:customer_id>/unpaid")
@handle_domain_errors("list unpaid opening balances")
def list_unpaid_route(customer_id: int):
    """Opening balances the customer still owes something on, newest first."""
    customers_service.get_customer(customer_id)
    entries = manual_entry_service.list_manual_entries(customer_id=customer_id, unpaid_only=True)
    return {"items": [e.to_dict() for e in entries], "count": len(entries)}


@manual_entries_bp.get("/<int:manual_entry_id>")
@handle_domain_errors("get manual entry")
def get_manual_entry_route(manual_entry_id: int):
    return {"manual_entry": manual_entry_service.get_manual_entry(manual_entry_id).to_dict()}


@manual_entries_bp.post("/<int:manual_entry_id>/payments")
@handle_domain_errors("record manual entry payment")
def record_manual_entry_payment_route(manual_entry_id: int):
    data = request.get_json(silent=True) or {}
    if data.get("amount") is None:
        raise ValidationError("amount is required")
    manual = manual_entry_service.record_manual_entry_payment(
        manual_entry_id, data["amount"], data.get("notes"), actor=current_actor()
    )
    return {"manual_entry": manual.to_dict()}, 201


@manual_entries_bp.delete("/<int:manual_entry_id>")
@handle_domain_errors("void manual entry")
def void_manual_entry_route(manual_entry_id: int):
    data = request.get_json(silent=True) or {}
    manual = manual_entry_service.void_manual_entry(manual_entry_id, data.get("reason"), actor=current_actor())
    return {"ok": True, "manual_entry": manual.to_dict()}
