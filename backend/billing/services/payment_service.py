# Overview: Payments received against credit invoices; each payment is a credit entry in the balance ledger.

"""
Invoice Payments

DESIGN PRINCIPLES:
- Only CREDIT invoices that are not cancelled accept payments
- A payment can never exceed what remains due on the invoice
- Each payment posts one negative PAYMENT balance entry tied to both the
  payment and the invoice; voiding reverses that entry
- Cancelling the invoice voids its payments (see invoice_service)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import Invoice, Payment
from billing.money import ZERO, round_money
from billing.time_utils import utcnow
from billing.validation import NotFoundError, ValidationError, require_positive_amount
from . import balance_service
from .activity_service import append_activity_event
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import LifecycleError


PAYMENT_METHODS = ("Cash", "UPI", "Bank Transfer", "Cheque", "NEFT/RTGS")

PAYMENT_STATUS_UNPAID = "UNPAID"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"


def _payment_status(paid: Decimal, total: Decimal) -> str:
    if paid <= ZERO:
        return PAYMENT_STATUS_UNPAID
    if paid >= total:
        return PAYMENT_STATUS_PAID
    return PAYMENT_STATUS_PARTIAL


def _clean(value, max_length: int) -> str | None:
    if value is None:
        return None
    return str(value).strip()[:max_length] or None


def _normalize_method(method) -> str:
    if method is None:
        return "Cash"
    for known in PAYMENT_METHODS:
        if str(method).strip().lower() == known.lower():
            return known
    raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")


def record_payment(
    invoice_id: int,
    amount,
    payment_method: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    *,
    payment_date: datetime | None = None,
    actor: str | None = None,
) -> Payment:
    """
    Record money received against a credit invoice.

    Raises:
        ValidationError: bad amount/method, cash invoice, or amount above remaining
        NotFoundError: invoice missing
        LifecycleError: invoice cancelled
    """
    amount = round_money(require_positive_amount(amount))
    method = _normalize_method(payment_method)

    def _op() -> Payment:
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if invoice.status == "CANCELLED":
            raise LifecycleError("Cannot record a payment against a cancelled invoice")
        if invoice.payment_type != "CREDIT":
            raise ValidationError("Payments can only be recorded against credit invoices")

        net_total = round_money(Decimal(invoice.net_total))
        paid = round_money(Decimal(invoice.paid_amount or 0))
        remaining = net_total - paid
        if amount > remaining:
            raise ValidationError(
                f"Payment amount ({amount}) exceeds remaining balance ({remaining})"
            )

        payment = Payment(
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            amount=amount,
            payment_date=payment_date,  # if None, db default applies
            payment_method=method,
            reference_number=_clean(reference_number, 64),
            notes=_clean(notes, 255),
            status="COMPLETED",
            created_by=actor,
        )
        db.session.add(payment)
        db.session.flush()

        balance_service.post(
            invoice.customer_id,
            -amount,
            "PAYMENT",
            invoice_id=invoice.id,
            payment_id=payment.id,
            note=f"Payment for {invoice.invoice_number}",
            actor=actor,
        )

        invoice.paid_amount = paid + amount
        invoice.payment_status = _payment_status(invoice.paid_amount, net_total)

        append_activity_event(
            event_type="payment.recorded",
            event_category="payment",
            entity_type="payment",
            entity_id=payment.id,
            actor=actor,
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            payload={
                "amount": str(amount),
                "payment_method": method,
                "invoice_number": invoice.invoice_number,
            },
        )
        db.session.commit()
        return payment

    return run_with_retry(_op)


def void_payment(payment_id: int, reason: str | None = None, *, actor: str | None = None) -> Payment:
    """Reverse a completed payment; the customer owes that amount again."""
    def _op() -> Payment:
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        if payment.status == "VOIDED":
            raise LifecycleError("Payment is already voided")

        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=payment.invoice_id)).first()

        balance_service.reverse(
            payment_id=payment.id,
            note=f"Void payment {payment.id}",
            actor=actor,
        )

        payment.status = "VOIDED"
        payment.voided_by = actor
        payment.voided_at = utcnow()
        payment.void_reason = reason[:255] if reason else None

        paid = max(round_money(Decimal(invoice.paid_amount or 0) - Decimal(payment.amount)), ZERO)
        invoice.paid_amount = paid
        invoice.payment_status = _payment_status(paid, round_money(Decimal(invoice.net_total)))

        append_activity_event(
            event_type="payment.voided",
            event_category="payment",
            entity_type="payment",
            entity_id=payment.id,
            actor=actor,
            invoice_id=invoice.id,
            customer_id=payment.customer_id,
            note=reason,
            payload={"amount": str(round_money(Decimal(payment.amount)))},
        )
        db.session.commit()
        return payment

    return run_with_retry(_op)


def list_payments(
    *,
    invoice_id: int | None = None,
    customer_id: int | None = None,
    include_voided: bool = True,
) -> list[Payment]:
    q = db.session.query(Payment)
    if invoice_id is not None:
        q = q.filter(Payment.invoice_id == invoice_id)
    if customer_id is not None:
        q = q.filter(Payment.customer_id == customer_id)
    if not include_voided:
        q = q.filter(Payment.status == "COMPLETED")
    return q.order_by(Payment.id.desc()).all()
