# Overview: Append-only activity/audit log written alongside every ledger-affecting operation.

from __future__ import annotations

import json
from typing import Any, Optional
from datetime import datetime

from ..extensions import db
from ..models import ActivityEvent
"""
Activity Log Invariants (authoritative)

- Append-only audit log for invoice, stock, balance and manual-entry events.
- No domain/business logic in the log itself.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back operation leaves no activity behind.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_activity_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor: str | None = None,
    invoice_id: int | None = None,
    customer_id: int | None = None,
    product_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> ActivityEvent:
    """
    Append-only activity event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - payload is stored as JSON text.
    """
    ev = ActivityEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor=actor,
        invoice_id=invoice_id,
        customer_id=customer_id,
        product_id=product_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note[:255] if note else None,
        payload=json.dumps(payload, default=str, sort_keys=True) if payload else None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_activity_events(
    *,
    event_category: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    actor: str | None = None,
    limit: int = 200,
) -> list[ActivityEvent]:
    q = ActivityEvent.query
    if event_category:
        q = q.filter(ActivityEvent.event_category == event_category)
    if entity_type:
        q = q.filter(ActivityEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(ActivityEvent.entity_id == entity_id)
    if actor:
        q = q.filter(ActivityEvent.actor == actor)

    return q.order_by(ActivityEvent.id.desc()).limit(limit).all()
