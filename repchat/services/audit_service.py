from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from repchat.clock import utc_now
from repchat.models import AuditEntry
from repchat.services.errors import store_errors

SYSTEM_ACTOR = {"uid": "system", "name": "System", "role": "system"}


def record(
    db: Session,
    subject_id,
    actor: Optional[dict],
    action: str,
    reason: Optional[str] = None,
    previous_value: Optional[dict] = None,
    new_value: Optional[dict] = None,
) -> AuditEntry:
    """Append an audit entry. Entries are never updated or deleted."""
    entry = AuditEntry(
        subject_id=str(subject_id),
        actor=actor or SYSTEM_ACTOR,
        action=action,
        reason=reason,
        previous_value=previous_value,
        new_value=new_value,
        timestamp=utc_now(),
    )
    with store_errors("audit_record"):
        db.add(entry)
        db.flush()
    return entry


def list_entries(db: Session, subject_id: UUID) -> list[AuditEntry]:
    with store_errors("audit_list"):
        return (
            db.query(AuditEntry)
            .filter(AuditEntry.subject_id == str(subject_id))
            .order_by(AuditEntry.timestamp.desc())
            .all()
        )
