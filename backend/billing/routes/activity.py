# Overview: Read-only activity log API.

# backend/billing/routes/activity.py
from flask import Blueprint, request

from ..services.activity_service import list_activity_events
from ..decorators import handle_domain_errors


activity_bp = Blueprint("activity", __name__, url_prefix="/api/activity")


@activity_bp.get("")
@handle_domain_errors("list activity")
def list_activity():
    """
    Query params: event_category, entity_type, entity_id, actor, limit (max 1000).
    """
    limit = min(request.args.get("limit", 200, type=int), 1000)
    events = list_activity_events(
        event_category=request.args.get("event_category"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        actor=request.args.get("actor"),
        limit=limit,
    )
    return {"items": [e.to_dict() for e in events], "count": len(events)}
