# Overview: Flask API routes for invoice payments.

# backend/billing/routes/payments.py
from flask import Blueprint, request

from ..services import payment_service
from ..validation import ValidationError, to_int
from ..decorators import current_actor, handle_domain_errors


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
@handle_domain_errors("record payment")
def record_payment_route():
    """
    Body: {"invoice_id": int, "amount": number, "payment_method": str,
           "reference_number": str, "notes": str}
    """
    data = request.get_json(silent=True) or {}
    invoice_id = data.get("invoice_id", data.get("invoiceId"))
    if invoice_id is None:
        raise ValidationError("invoice_id is required")
    if data.get("amount") is None:
        raise ValidationError("amount is required")

    payment = payment_service.record_payment(
        to_int(invoice_id, "invoice_id"),
        data["amount"],
        data.get("payment_method", data.get("paymentMethod")),
        data.get("reference_number", data.get("referenceNumber")),
        data.get("notes"),
        actor=current_actor(),
    )
    return {"payment": payment.to_dict()}, 201


@payments_bp.get("")
@handle_domain_errors("list payments")
def list_payments_route():
    payments = payment_service.list_payments(
        invoice_id=request.args.get("invoice_id", type=int),
        customer_id=request.args.get("customer_id", type=int),
        include_voided=request.args.get("include_voided", "true") != "false",
    )
    return {"items": [p.to_dict() for p in payments], "count": len(payments)}


@payments_bp.post("/<int:payment_id>/void")
@handle_domain_errors("void payment")
def void_payment_route(payment_id: int):
    data = request.get_json(silent=True) or {}
    payment = payment_service.void_payment(payment_id, data.get("reason"), actor=current_actor())
    return {"payment": payment.to_dict()}
