# Overview: Invoice lifecycle engine; creates, transitions and cancels invoices across both ledgers.

"""
Invoice Lifecycle Engine

One invoice operation is one database transaction. Creation runs the
calculator, deducts stock for every line, posts the credit debit and writes
the invoice with its totals snapshot, all before a single commit. If any
step raises, run_with_retry rolls the session back, so no movement or entry
of a failed attempt survives.

Cancellation (and delete, which is a soft cancel) reverses exactly the
movements and entries tied to the invoice in the ledgers. A failure while
reversing is rolled back and surfaced as ReversalError: the invoice keeps
its previous status and the operator can retry. The reversal requirement
is never dropped.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Invoice, InvoiceLine, Payment, Product
from billing.money import ZERO, round_money
from billing.time_utils import utcnow
from billing.validation import NotFoundError, ValidationError, normalize_payment_type
from . import balance_service, inventory_service
from .activity_service import append_activity_event
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .document_service import next_document_number
from .inventory_service import InsufficientStockError
from .invoice_calculator import Totals, compute_totals, parse_line_items
from .lifecycle_service import LifecycleError, normalize_status, require_transition
from .query_utils import paginate
from .reconciliation_service import ConsistencyError


DELETE_REASON = "Deleted by operator"


class ReversalError(Exception):
    """
    Raised when cancelling an invoice could not reverse its ledger effects.

    Nothing was committed; the invoice keeps its previous status and the
    operation can be retried.
    """
    def __init__(self, message: str, details: dict | None = None, retryable: bool = True):
        super().__init__(message)
        self.details = details or {}
        self.retryable = retryable


def _load_catalog(product_ids, *, lock: bool) -> dict[int, Product]:
    # Lock in id order so concurrent invoices sharing products cannot deadlock
    q = db.session.query(Product).filter(Product.id.in_(sorted(product_ids))).order_by(Product.id)
    if lock:
        q = lock_for_update(q)
    return {p.id: p for p in q.all()}


def preview_invoice(items) -> Totals:
    """Totals for a prospective invoice. Reads only; touches no ledger."""
    parsed = parse_line_items(items)
    catalog = _load_catalog({i.product_id for i in parsed}, lock=False)
    return compute_totals(parsed, catalog)


def _check_availability(parsed, catalog: dict[int, Product]) -> None:
    # Lines may repeat a product; check the summed demand before deducting anything
    required: dict[int, int] = defaultdict(int)
    for item in parsed:
        required[item.product_id] += item.quantity_sold

    for product_id, quantity in required.items():
        product = catalog[product_id]
        if not product.is_active:
            raise ValidationError(f"Product {product.name} is inactive")
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


def create_invoice(
    customer_id: int,
    items,
    payment_type: str | None = None,
    notes: str | None = None,
    *,
    actor: str | None = None,
) -> Invoice:
    """
    Create an invoice: compute totals, deduct stock, post the credit debit.

    Raises ValidationError, NotFoundError or InsufficientStockError; in every
    failure case nothing is persisted.
    """
    if customer_id is None:
        raise ValidationError("customer_id is required")
    parsed = parse_line_items(items)
    if notes is not None:
        notes = str(notes).strip() or None

    def _op() -> Invoice:
        begin_write_transaction()

        customer = balance_service.get_customer(customer_id, lock=True, require_active=True)
        ptype = normalize_payment_type(payment_type if payment_type is not None else customer.payment_type)

        catalog = _load_catalog({i.product_id for i in parsed}, lock=True)
        totals = compute_totals(parsed, catalog)
        _check_availability(parsed, catalog)

        invoice_number = next_document_number(
            document_type="INVOICE",
            prefix=current_app.config.get("INVOICE_NUMBER_PREFIX", "INV"),
        )

        invoice = Invoice(
            invoice_number=invoice_number,
            customer_id=customer.id,
            customer_name=customer.name,
            customer_phone=customer.phone,
            customer_gstin=customer.gstin,
            payment_type=ptype,
            status="DRAFT",
            base_amount=totals.base_amount,
            total_discount=totals.total_discount,
            sub_total=totals.sub_total,
            total_gst=totals.total_gst,
            total_cgst=totals.total_cgst,
            total_sgst=totals.total_sgst,
            net_total=totals.net_total,
            # Cash is settled at the counter
            paid_amount=totals.net_total if ptype == "CASH" else ZERO,
            payment_status="PAID" if ptype == "CASH" else "UNPAID",
            notes=notes,
            created_by=actor,
        )
        db.session.add(invoice)
        db.session.flush()

        for line_number, amounts in enumerate(totals.lines, start=1):
            product = catalog[amounts.product_id]
            line = InvoiceLine(
                invoice_id=invoice.id,
                line_number=line_number,
                product_id=product.id,
                product_name=product.name,
                hsn_code=product.hsn_code,
                batch_no=product.batch_no,
                expiry_date=product.expiry_date,
                quantity_sold=amounts.quantity_sold,
                free_quantity=amounts.free_quantity,
                rate_per_unit=round_money(amounts.rate_per_unit),
                scheme_discount=amounts.scheme_discount,
                gst_percentage=amounts.gst_percentage,
                base_amount=round_money(amounts.base_amount),
                discount_amount=round_money(amounts.discount_amount),
                taxable_amount=round_money(amounts.taxable_amount),
                gst_amount=round_money(amounts.gst_amount),
                line_total=round_money(amounts.line_total),
            )
            db.session.add(line)
            db.session.flush()

            inventory_service.reserve_and_deduct(
                product.id,
                amounts.quantity_sold,
                "SALE",
                invoice.id,
                invoice_line_id=line.id,
                note=f"Invoice {invoice_number}",
                actor=actor,
            )

        if ptype == "CREDIT" and totals.net_total > ZERO:
            balance_service.post(
                customer.id,
                totals.net_total,
                "INVOICE",
                invoice_id=invoice.id,
                note=f"Invoice {invoice_number}",
                actor=actor,
            )

        customer.total_purchases = round_money(Decimal(customer.total_purchases or 0) + totals.net_total)
        customer.invoice_count = (customer.invoice_count or 0) + 1
        customer.last_invoice_at = utcnow()

        append_activity_event(
            event_type="invoice.created",
            event_category="invoice",
            entity_type="invoice",
            entity_id=invoice.id,
            actor=actor,
            invoice_id=invoice.id,
            customer_id=customer.id,
            note=f"Invoice {invoice_number} created",
            payload={
                "invoice_number": invoice_number,
                "payment_type": ptype,
                "net_total": str(totals.net_total),
                "line_count": len(totals.lines),
            },
        )

        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info(
        "Created invoice %s for customer %s (net %s)",
        invoice.invoice_number, invoice.customer_id, invoice.net_total,
    )
    return invoice


def get_invoice(invoice_id: int, *, lock: bool = False) -> Invoice:
    q = db.session.query(Invoice).filter_by(id=invoice_id)
    if lock:
        q = lock_for_update(q)
    invoice = q.first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _rollback_customer_stats(invoice: Invoice) -> None:
    customer = balance_service.get_customer(invoice.customer_id, lock=True)
    customer.total_purchases = max(
        round_money(Decimal(customer.total_purchases or 0) - Decimal(invoice.net_total)),
        ZERO,
    )
    customer.invoice_count = max((customer.invoice_count or 0) - 1, 0)
    latest = (
        db.session.query(Invoice.created_at)
        .filter(
            Invoice.customer_id == customer.id,
            Invoice.id != invoice.id,
            Invoice.status != "CANCELLED",
        )
        .order_by(Invoice.created_at.desc())
        .first()
    )
    customer.last_invoice_at = latest[0] if latest else None


def _cancel_locked(invoice: Invoice, *, reason: str | None, actor: str | None) -> Invoice:
    previous_status = invoice.status
    require_transition(previous_status, "CANCELLED")

    note = f"Cancel invoice {invoice.invoice_number}"
    stock_reversals = inventory_service.reverse(invoice_id=invoice.id, note=note, actor=actor)
    # Payment entries carry invoice_id, so this also credits back any payments
    balance_reversals = balance_service.reverse(invoice_id=invoice.id, note=note, actor=actor)

    now = utcnow()
    voided_payments = 0
    for payment in db.session.query(Payment).filter_by(invoice_id=invoice.id, status="COMPLETED").all():
        payment.status = "VOIDED"
        payment.voided_by = actor
        payment.voided_at = now
        payment.void_reason = "Invoice cancelled"
        voided_payments += 1

    invoice.paid_amount = ZERO
    invoice.payment_status = "VOIDED"
    invoice.status = "CANCELLED"
    invoice.cancelled_by = actor
    invoice.cancelled_at = now
    invoice.cancel_reason = reason[:255] if reason else None

    _rollback_customer_stats(invoice)

    append_activity_event(
        event_type="invoice.cancelled",
        event_category="invoice",
        entity_type="invoice",
        entity_id=invoice.id,
        actor=actor,
        invoice_id=invoice.id,
        customer_id=invoice.customer_id,
        note=reason or f"Invoice {invoice.invoice_number} cancelled",
        payload={
            "previous_status": previous_status,
            "stock_reversals": len(stock_reversals),
            "balance_reversals": len(balance_reversals),
            "voided_payments": voided_payments,
        },
    )
    return invoice


def cancel_invoice(invoice_id: int, reason: str | None = None, *, actor: str | None = None) -> Invoice:
    """
    Cancel an invoice and reverse its stock and balance effects.

    LifecycleError if it is already cancelled, NotFoundError if missing.
    Any failure while reversing raises ReversalError (retryable).
    """
    def _op() -> Invoice:
        begin_write_transaction()
        invoice = get_invoice(invoice_id, lock=True)
        _cancel_locked(invoice, reason=reason, actor=actor)
        db.session.commit()
        return invoice

    try:
        invoice = run_with_retry(_op)
    except (LifecycleError, NotFoundError):
        raise
    except (ValueError, ConsistencyError, SQLAlchemyError) as exc:
        current_app.logger.error(
            "Reversal failed for invoice %s: %s", invoice_id, exc,
        )
        raise ReversalError(
            f"Could not reverse invoice {invoice_id}; nothing was changed, retry the cancellation",
            details={
                "invoice_id": invoice_id,
                "cause": type(exc).__name__,
                "message": str(exc),
            },
        ) from exc

    current_app.logger.info("Cancelled invoice %s", invoice.invoice_number)
    return invoice


def delete_invoice(invoice_id: int, *, actor: str | None = None) -> Invoice:
    """Soft delete: identical ledger reversal to cancel, record retained as CANCELLED."""
    return cancel_invoice(invoice_id, DELETE_REASON, actor=actor)


def update_invoice_status(
    invoice_id: int,
    status,
    *,
    reason: str | None = None,
    actor: str | None = None,
) -> Invoice:
    """
    Move an invoice through the state machine.

    DRAFT -> PRINTED is metadata only. Any move into CANCELLED goes through
    cancel_invoice so the ledgers are reversed.
    """
    target = normalize_status(status)

    if target == "CANCELLED":
        return cancel_invoice(invoice_id, reason, actor=actor)

    def _op() -> Invoice:
        invoice = get_invoice(invoice_id, lock=True)
        if invoice.status == target:
            # Nothing to write; release the lock
            db.session.rollback()
            return invoice
        require_transition(invoice.status, target)

        previous_status = invoice.status
        invoice.status = target
        if target == "PRINTED":
            invoice.printed_at = utcnow()

        append_activity_event(
            event_type="invoice.status_changed",
            event_category="invoice",
            entity_type="invoice",
            entity_id=invoice.id,
            actor=actor,
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            payload={"from": previous_status, "to": target},
        )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def list_invoices(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    payment_type: str | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(Invoice)
    if status:
        q = q.filter(Invoice.status == normalize_status(status))
    if customer_id is not None:
        q = q.filter(Invoice.customer_id == customer_id)
    if payment_type:
        q = q.filter(Invoice.payment_type == normalize_payment_type(payment_type))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Invoice.invoice_number.ilike(like), Invoice.customer_name.ilike(like)))

    q = q.order_by(Invoice.created_at.desc(), Invoice.id.desc())
    return paginate(q, page=page, per_page=per_page, serializer=lambda inv: inv.to_dict(include_lines=False))


def list_customer_invoices(customer_id: int, *, page: int = 1, per_page: int | None = None) -> dict:
    balance_service.get_customer(customer_id)
    return list_invoices(customer_id=customer_id, page=page, per_page=per_page)
