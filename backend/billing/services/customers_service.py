# backend/billing/services/customers_service.py
"""
Customers Service

Master data only. outstanding_balance and the purchase statistics are not
writable here; the balance moves only through the balance ledger.
"""
from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer
from billing.validation import ConflictError, NotFoundError
from .activity_service import append_activity_event
from .concurrency import run_with_retry
from .query_utils import paginate

CUSTOMER_MUTABLE_FIELDS = {
    "name", "phone", "address", "email", "gstin", "dl_no", "payment_type", "is_active",
}


def apply_customer_patch(c: Customer, patch: dict) -> None:
    for k, v in patch.items():
        if k not in CUSTOMER_MUTABLE_FIELDS:
            continue
        setattr(c, k, v)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def _ensure_phone_available(phone: str | None, *, exclude_id: int | None = None) -> None:
    if not phone:
        return
    q = db.session.query(Customer.id).filter(Customer.phone == phone)
    if exclude_id is not None:
        q = q.filter(Customer.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Customer with this phone number already exists")


def list_customers(
    *,
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = 1,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(Customer)
    if not include_inactive:
        q = q.filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(Customer.name.ilike(like), Customer.phone.ilike(like)))
    q = q.order_by(Customer.name.asc(), Customer.id.asc())
    return paginate(q, page=page, per_page=per_page)


def create_customer(*, patch: dict, actor: str | None = None) -> Customer:
    def _op() -> Customer:
        _ensure_phone_available(patch.get("phone"))
        c = Customer(outstanding_balance=0)
        apply_customer_patch(c, patch)
        db.session.add(c)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError("Customer with this phone number already exists")

        append_activity_event(
            event_type="customer.created",
            event_category="customer",
            entity_type="customer",
            entity_id=c.id,
            actor=actor,
            customer_id=c.id,
            payload={"name": c.name},
        )
        db.session.commit()
        return c

    return run_with_retry(_op)


def update_customer(customer_id: int, *, patch: dict, actor: str | None = None) -> Customer:
    def _op() -> Customer:
        c = get_customer(customer_id)
        if "phone" in patch:
            _ensure_phone_available(patch["phone"], exclude_id=c.id)
        apply_customer_patch(c, patch)
        append_activity_event(
            event_type="customer.updated",
            event_category="customer",
            entity_type="customer",
            entity_id=c.id,
            actor=actor,
            customer_id=c.id,
            payload={"fields": sorted(patch.keys())},
        )
        db.session.commit()
        return c

    return run_with_retry(_op)
