# Overview: Service-layer operations for the audit trail; encapsulates business logic and database work.

from __future__ import annotations

from ..extensions import db
from ..models import AuditLog
from candyshop.time_utils import utcnow
"""
Audit Trail Invariants (authoritative)

- Append-only: rows are never updated or deleted.
- No domain/business logic here; callers pass before/after snapshots.
- Entries are written inside the same DB transaction as the mutation they
  record, so rollbacks discard both together.
"""


def record(
    *,
    actor,
    action: str,
    entity_type: str,
    entity_id: int,
    before: dict | None = None,
    after: dict | None = None,
) -> AuditLog:
    """
    Append an audit entry for a mutating operation.

    `actor` is a permissions.Actor (guests have id None).
    Flushes but does not commit.
    """
    entry = AuditLog(
        actor_id=actor.id,
        actor_role=actor.role,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before=before,
        after=after,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def entries_for(entity_type: str, entity_id: int, limit: int = 200) -> list[AuditLog]:
    return (
        db.session.query(AuditLog)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditLog.occurred_at.asc(), AuditLog.id.asc())
        .limit(limit)
        .all()
    )
