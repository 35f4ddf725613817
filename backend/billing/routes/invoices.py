# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/billing/routes/invoices.py
"""
Invoice API.

Deleting an invoice is a soft cancel: stock and balance effects are
reversed and the record stays with status CANCELLED.
"""

from flask import Blueprint, request

from ..services import invoice_service
from ..validation import ValidationError
from ..decorators import current_actor, handle_domain_errors


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _pick(data: dict, *keys):
    for key in keys:
        if key in data:
            return data[key]
    return None


@invoices_bp.post("")
@handle_domain_errors("create invoice")
def create_invoice_route():
    """
    Body:
        customerId / customer_id: int
        items: [{productId, quantitySold, freeQuantity, ratePerUnit, schemeDiscount}]
        paymentType / payment_type: "Cash" | "Credit" (defaults to the customer's)
        notes: str
    """
    data = request.get_json(silent=True) or {}
    customer_id = _pick(data, "customer_id", "customerId")
    if customer_id is None:
        raise ValidationError("customer_id is required")
    if not isinstance(customer_id, int) or isinstance(customer_id, bool):
        raise ValidationError("customer_id must be an integer")

    invoice = invoice_service.create_invoice(
        customer_id,
        data.get("items"),
        _pick(data, "payment_type", "paymentType"),
        data.get("notes"),
        actor=current_actor(),
    )
    return {"invoice": invoice.to_dict()}, 201


@invoices_bp.post("/preview")
@handle_domain_errors("preview invoice")
def preview_invoice_route():
    """Totals for a prospective invoice; nothing is written."""
    data = request.get_json(silent=True) or {}
    totals = invoice_service.preview_invoice(data.get("items"))
    return {"totals": totals.to_dict()}


@invoices_bp.get("")
@handle_domain_errors("list invoices")
def list_invoices_route():
    return invoice_service.list_invoices(
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
        payment_type=request.args.get("payment_type"),
        search=request.args.get("search"),
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", type=int),
    )


@invoices_bp.get("/customer/<int:customer_id>")
@handle_domain_errors("list customer invoices")
def list_customer_invoices_route(customer_id: int):
    return invoice_service.list_customer_invoices(
        customer_id,
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", type=int),
    )


@invoices_bp.get("/<int:invoice_id>")
@handle_domain_errors("get invoice")
def get_invoice_route(invoice_id: int):
    invoice = invoice_service.get_invoice(invoice_id)
    data = invoice.to_dict()
    data["payments"] = [p.to_dict() for p in invoice.payments]
    return {"invoice": data}


@invoices_bp.put("/<int:invoice_id>/status")
@handle_domain_errors("update invoice status")
def update_status_route(invoice_id: int):
    """Body: {"status": "Printed" | "Cancelled", "reason": str}"""
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.update_invoice_status(
        invoice_id,
        data.get("status"),
        reason=data.get("reason"),
        actor=current_actor(),
    )
    return {"invoice": invoice.to_dict()}


@invoices_bp.post("/<int:invoice_id>/cancel")
@handle_domain_errors("cancel invoice")
def cancel_invoice_route(invoice_id: int):
    data = request.get_json(silent=True) or {}
    invoice = invoice_service.cancel_invoice(invoice_id, data.get("reason"), actor=current_actor())
    return {"invoice": invoice.to_dict()}


@invoices_bp.delete("/<int:invoice_id>")
@handle_domain_errors("delete invoice")
def delete_invoice_route(invoice_id: int):
    invoice = invoice_service.delete_invoice(invoice_id, actor=current_actor())
    return {"ok": True, "invoice": invoice.to_dict(include_lines=False)}
