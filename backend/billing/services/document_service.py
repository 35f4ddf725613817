# Overview: Atomic document numbering (invoice numbers) backed by DocumentSequence rows.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from billing.time_utils import utcnow


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(document_type: str, period: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    period: str | None = None,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for a type within a period.

    Runs inside the caller's unit of work: the UPDATE takes the row lock,
    so the number is only consumed if the caller commits. Numbers restart
    at 1 every period (calendar year by default), e.g. INV-2026-0001.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if period is None:
        period = str(utcnow().year)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        next_num = _current_number(document_type, period) - 1
    else:
        seq = DocumentSequence(document_type=document_type, period=period, next_number=2)
        try:
            # Savepoint so a lost insert race does not discard the caller's work
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(
                    f"could not allocate {document_type} number for {period}"
                )
            db.session.flush()
            next_num = _current_number(document_type, period) - 1

    return f"{prefix}-{period}-{str(next_num).zfill(pad)}"
