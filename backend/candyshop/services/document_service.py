# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from candyshop.time_utils import utcnow


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _ensure_sequence(document_type: str, period: str) -> None:
    """
    Create the (type, period) sequence row if missing, in its own commit.

    Must run before any other work in the caller's transaction: losing the
    insert race to a concurrent request rolls back only this insert.
    """
    exists = (
        db.session.query(DocumentSequence.id)
        .filter_by(document_type=document_type, period=period)
        .first()
    )
    if exists:
        return

    db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=1))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 3,
    period: str | None = None,
) -> str:
    """
    Atomically allocate the next document number for a type and day.

    Format: <prefix>-<YYYYMMDD>-<NNN>, e.g. "QUE-20261019-007".
    The increment is a single UPDATE, so concurrent callers serialize on
    the sequence row and never share a number.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not prefix:
        raise DocumentSequenceError("prefix is required")

    period = period or utcnow().strftime("%Y%m%d")
    _ensure_sequence(document_type, period)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        raise DocumentSequenceError(f"Sequence {document_type}/{period} missing")

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )
    return f"{prefix}-{period}-{str(current - 1).zfill(pad)}"
