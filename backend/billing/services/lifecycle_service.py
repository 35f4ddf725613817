# Overview: Invoice status state machine; closed status set with an explicit transition table.

"""
Invoice Lifecycle

STATE MACHINE:
    DRAFT -> PRINTED -> CANCELLED
    DRAFT -> CANCELLED

    DRAFT:     Created; stock deducted and (credit) balance posted
    PRINTED:   Handed to the customer; metadata-only change
    CANCELLED: Terminal. Every stock movement and balance entry of the
               invoice has been reversed; the record stays for history

RULES:
1. Only the transitions in ALLOWED_TRANSITIONS are legal
2. CANCELLED is terminal (nothing leaves it, including CANCELLED itself)
3. Setting a non-terminal invoice to its current status is a no-op
4. Only the transition into CANCELLED touches the ledgers
"""

from __future__ import annotations
from typing import Literal

from billing.validation import ValidationError


VALID_STATUSES = ("DRAFT", "PRINTED", "CANCELLED")
InvoiceStatus = Literal["DRAFT", "PRINTED", "CANCELLED"]

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "DRAFT": frozenset({"PRINTED", "CANCELLED"}),
    "PRINTED": frozenset({"CANCELLED"}),
    "CANCELLED": frozenset(),
}


class LifecycleError(ValueError):
    """
    Raised when an invalid lifecycle transition is attempted.

    A domain error, not a technical one: the operator asked for something
    the state machine does not allow.
    """
    pass


def normalize_status(status) -> str:
    """Accept any casing ("Printed", "printed"); reject unknown statuses."""
    if not isinstance(status, str) or not status.strip():
        raise ValidationError("status is required")
    normalized = status.strip().upper()
    if normalized not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(VALID_STATUSES)}"
        )
    return normalized


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def require_transition(current: str, target: str) -> None:
    if current == "CANCELLED":
        raise LifecycleError("Invoice is already cancelled")
    if not can_transition(current, target):
        raise LifecycleError(f"Cannot change invoice status from {current} to {target}")
