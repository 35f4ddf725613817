# Overview: Customer balance ledger; append-only entries with a cached outstanding_balance.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Customer, BalanceEntry
from billing.money import ZERO, round_money
from billing.validation import NotFoundError, ValidationError
from .concurrency import lock_for_update
from .reconciliation_service import verify_customer_balance
"""
Balance Ledger Invariants (authoritative)

- BalanceEntry rows are append-only. Debits are positive (customer owes
  more), credits negative.
- Customer.outstanding_balance == SUM(amount) for the customer, always.
- A reversal negates exactly one earlier entry (reversal_of_id, unique)
  and copies its exclude_from_analytics flag, so excluded postings net
  to zero in analytics as well as in the balance.
- Everything here joins the caller's unit of work and never commits.
"""

KINDS = ("INVOICE", "PAYMENT", "MANUAL_OPENING_BALANCE", "REVERSAL")


def get_customer(customer_id: int, *, lock: bool = False, require_active: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    if require_active and not customer.is_active:
        raise ValidationError(f"Customer {customer.name} is inactive")
    return customer


def _append_entry(
    customer: Customer,
    amount: Decimal,
    kind: str,
    *,
    invoice_id: int | None = None,
    manual_entry_id: int | None = None,
    payment_id: int | None = None,
    reversal_of_id: int | None = None,
    exclude_from_analytics: bool = False,
    note: str | None = None,
    actor: str | None = None,
    occurred_at: datetime | None = None,
) -> BalanceEntry:
    entry = BalanceEntry(
        customer_id=customer.id,
        kind=kind,
        amount=amount,
        invoice_id=invoice_id,
        manual_entry_id=manual_entry_id,
        payment_id=payment_id,
        reversal_of_id=reversal_of_id,
        exclude_from_analytics=exclude_from_analytics,
        note=note[:255] if note else None,
        actor=actor,
        occurred_at=occurred_at,  # if None, db default applies
    )
    db.session.add(entry)
    customer.outstanding_balance = round_money(Decimal(customer.outstanding_balance or 0) + amount)
    db.session.flush()

    verify_customer_balance(customer)
    return entry


def post(
    customer_id: int,
    amount: Decimal,
    kind: str,
    *,
    invoice_id: int | None = None,
    manual_entry_id: int | None = None,
    payment_id: int | None = None,
    exclude_from_analytics: bool = False,
    note: str | None = None,
    actor: str | None = None,
    occurred_at: datetime | None = None,
) -> BalanceEntry:
    """Append a signed entry and move outstanding_balance by the same amount."""
    if kind not in KINDS or kind == "REVERSAL":
        raise ValidationError(f"Cannot post balance entry of kind {kind}")
    amount = round_money(Decimal(amount))
    if amount == ZERO:
        raise ValidationError("amount must be non-zero")

    customer = get_customer(customer_id, lock=True)
    return _append_entry(
        customer,
        amount,
        kind,
        invoice_id=invoice_id,
        manual_entry_id=manual_entry_id,
        payment_id=payment_id,
        exclude_from_analytics=exclude_from_analytics,
        note=note,
        actor=actor,
        occurred_at=occurred_at,
    )


def reverse(
    *,
    invoice_id: int | None = None,
    manual_entry_id: int | None = None,
    payment_id: int | None = None,
    entry_id: int | None = None,
    note: str | None = None,
    actor: str | None = None,
) -> list[BalanceEntry]:
    """
    Negate every not-yet-reversed entry of exactly one reference.

    Returns the new REVERSAL entries; an empty list means there was nothing
    left to reverse (already reversed, or a cash invoice that never posted).
    """
    refs = {
        "invoice_id": invoice_id,
        "manual_entry_id": manual_entry_id,
        "payment_id": payment_id,
        "entry_id": entry_id,
    }
    given = {k: v for k, v in refs.items() if v is not None}
    if len(given) != 1:
        raise ValidationError("exactly one reference is required to reverse balance entries")

    q = db.session.query(BalanceEntry).filter(BalanceEntry.kind != "REVERSAL")
    if invoice_id is not None:
        q = q.filter(BalanceEntry.invoice_id == invoice_id)
    elif manual_entry_id is not None:
        q = q.filter(BalanceEntry.manual_entry_id == manual_entry_id)
    elif payment_id is not None:
        q = q.filter(BalanceEntry.payment_id == payment_id)
    else:
        q = q.filter(BalanceEntry.id == entry_id)
    originals = q.order_by(BalanceEntry.id).all()

    if entry_id is not None and not originals:
        raise NotFoundError(f"Balance entry {entry_id} not found")

    reversed_ids = set()
    if originals:
        reversed_ids = {
            row.reversal_of_id
            for row in db.session.query(BalanceEntry.reversal_of_id)
            .filter(BalanceEntry.reversal_of_id.in_([e.id for e in originals]))
            .all()
        }

    created: list[BalanceEntry] = []
    for original in originals:
        if original.id in reversed_ids:
            continue
        customer = get_customer(original.customer_id, lock=True)
        created.append(_append_entry(
            customer,
            -round_money(Decimal(original.amount)),
            "REVERSAL",
            invoice_id=original.invoice_id,
            manual_entry_id=original.manual_entry_id,
            payment_id=original.payment_id,
            reversal_of_id=original.id,
            exclude_from_analytics=original.exclude_from_analytics,
            note=note or f"Reversal of entry {original.id}",
            actor=actor,
        ))

    if not created:
        current_app.logger.info("Balance reversal for %s is a no-op", given)
    return created


def list_balance_entries(
    customer_id: int,
    *,
    include_excluded: bool = True,
    limit: int = 200,
) -> list[BalanceEntry]:
    get_customer(customer_id)
    q = db.session.query(BalanceEntry).filter(BalanceEntry.customer_id == customer_id)
    if not include_excluded:
        q = q.filter(BalanceEntry.exclude_from_analytics.is_(False))
    return q.order_by(BalanceEntry.id.desc()).limit(limit).all()


def analytics_entries_query():
    """Balance entries that count toward revenue/sales reporting."""
    return db.session.query(BalanceEntry).filter(BalanceEntry.exclude_from_analytics.is_(False))

