# Overview: Operator-posted opening balances; ledger-only corrections that never touch stock.

"""
Manual Entry Adapter

Firms onboarding from a paper ledger seed each customer's historical
balance here instead of inventing sales.

RULES:
- amount > 0 and a non-empty description, else ValidationError
- Posts MANUAL_OPENING_BALANCE with exclude_from_analytics=True
- Never calls the stock ledger
- Payments against an entry are bounded by what remains and are excluded
  from analytics too
- Voiding reverses every balance entry tied to the manual entry and keeps
  the record with status VOIDED
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from ..extensions import db
from ..models import BalanceEntry, ManualEntry
from billing.money import round_money
from billing.time_utils import parse_iso_datetime, utcnow
from billing.validation import NotFoundError, ValidationError, require_positive_amount, require_text
from . import balance_service
from .activity_service import append_activity_event
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import LifecycleError


# Allow small client/server clock skew on entry dates
FUTURE_TOLERANCE = timedelta(minutes=2)


def _parse_entry_date(value) -> datetime:
    if value is None or value == "":
        return utcnow()
    if isinstance(value, datetime):
        entry_date = value
    elif isinstance(value, str):
        try:
            entry_date = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError("entry_date must be an ISO-8601 date")
        if entry_date is None:
            raise ValidationError("entry_date must be an ISO-8601 date")
    else:
        raise ValidationError("entry_date must be an ISO-8601 date")

    if entry_date > utcnow() + FUTURE_TOLERANCE:
        raise ValidationError("entry_date cannot be in the future")
    return entry_date


def get_manual_entry(manual_entry_id: int, *, lock: bool = False) -> ManualEntry:
    q = db.session.query(ManualEntry).filter_by(id=manual_entry_id)
    if lock:
        q = lock_for_update(q)
    entry = q.first()
    if entry is None:
        raise NotFoundError(f"Manual entry {manual_entry_id} not found")
    return entry


def create_manual_entry(
    customer_id: int,
    amount,
    entry_date=None,
    description: str | None = None,
    notes: str | None = None,
    *,
    actor: str | None = None,
) -> BalanceEntry:
    """Post an opening balance for a customer and return the balance entry."""
    if customer_id is None:
        raise ValidationError("customer_id is required")
    amount = round_money(require_positive_amount(amount))
    description = require_text(description, "description")
    entry_dt = _parse_entry_date(entry_date)
    if notes is not None:
        notes = str(notes).strip() or None

    def _op() -> BalanceEntry:
        customer = balance_service.get_customer(customer_id, lock=True, require_active=True)

        manual = ManualEntry(
            customer_id=customer.id,
            entry_type="OPENING_BALANCE",
            amount=amount,
            paid_amount=0,
            entry_date=entry_dt,
            description=description,
            notes=notes,
            status="ACTIVE",
            customer_name=customer.name,
            outstanding_before=round_money(Decimal(customer.outstanding_balance or 0)),
            created_by=actor,
        )
        db.session.add(manual)
        db.session.flush()

        entry = balance_service.post(
            customer.id,
            amount,
            "MANUAL_OPENING_BALANCE",
            manual_entry_id=manual.id,
            exclude_from_analytics=True,
            note=description,
            actor=actor,
            occurred_at=entry_dt,
        )

        append_activity_event(
            event_type="manual_entry.created",
            event_category="manual_entry",
            entity_type="manual_entry",
            entity_id=manual.id,
            actor=actor,
            customer_id=customer.id,
            note=description,
            payload={"amount": str(amount), "balance_entry_id": entry.id},
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def record_manual_entry_payment(
    manual_entry_id: int,
    amount,
    notes: str | None = None,
    *,
    actor: str | None = None,
) -> ManualEntry:
    """Record money received against an opening balance."""
    amount = round_money(require_positive_amount(amount))

    def _op() -> ManualEntry:
        manual = get_manual_entry(manual_entry_id, lock=True)
        if manual.status != "ACTIVE":
            raise LifecycleError("Cannot record a payment against a voided manual entry")

        remaining = round_money(Decimal(manual.remaining_amount))
        if amount > remaining:
            raise ValidationError(
                f"Payment amount ({amount}) exceeds remaining balance ({remaining})"
            )

        balance_service.post(
            manual.customer_id,
            -amount,
            "PAYMENT",
            manual_entry_id=manual.id,
            exclude_from_analytics=True,
            note=notes or f"Payment against opening balance {manual.id}",
            actor=actor,
        )
        manual.paid_amount = round_money(Decimal(manual.paid_amount or 0) + amount)

        append_activity_event(
            event_type="manual_entry.payment_recorded",
            event_category="manual_entry",
            entity_type="manual_entry",
            entity_id=manual.id,
            actor=actor,
            customer_id=manual.customer_id,
            payload={"amount": str(amount)},
        )
        db.session.commit()
        return manual

    return run_with_retry(_op)


def void_manual_entry(manual_entry_id: int, reason: str | None = None, *, actor: str | None = None) -> ManualEntry:
    """Reverse every balance effect of a manual entry, including its payments."""
    def _op() -> ManualEntry:
        manual = get_manual_entry(manual_entry_id, lock=True)
        if manual.status == "VOIDED":
            raise LifecycleError("Manual entry is already voided")

        reversals = balance_service.reverse(
            manual_entry_id=manual.id,
            note=reason or f"Void manual entry {manual.id}",
            actor=actor,
        )
        manual.status = "VOIDED"
        manual.voided_by = actor
        manual.voided_at = utcnow()

        append_activity_event(
            event_type="manual_entry.voided",
            event_category="manual_entry",
            entity_type="manual_entry",
            entity_id=manual.id,
            actor=actor,
            customer_id=manual.customer_id,
            note=reason,
            payload={"balance_reversals": len(reversals)},
        )
        db.session.commit()
        return manual

    return run_with_retry(_op)


def list_manual_entries(
    *,
    customer_id: int | None = None,
    include_voided: bool = False,
    unpaid_only: bool = False,
) -> list[ManualEntry]:
    """unpaid_only keeps active entries with something still owed on them."""
    q = db.session.query(ManualEntry)
    if customer_id is not None:
        q = q.filter(ManualEntry.customer_id == customer_id)
    if not include_voided or unpaid_only:
        q = q.filter(ManualEntry.status == "ACTIVE")
    if unpaid_only:
        q = q.filter(ManualEntry.amount > ManualEntry.paid_amount)
    return q.order_by(ManualEntry.entry_date.desc(), ManualEntry.id.desc()).all()
