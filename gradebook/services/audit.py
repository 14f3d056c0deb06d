"""
Append-only audit trail for grade workflow actions.

The recorder writes one entry per grade per action through a sink. Writes
happen after the grade change has been committed: a failed audit write is
retried, then logged at ERROR level, and never undoes the grade change.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gradebook.config import settings
from gradebook.models.all_models import AuditAction, GradeAuditLog
from gradebook.schemas.workflow_schemas import Actor, AuditLogEntry

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def write(self, entries: List[AuditLogEntry]) -> None:
        ...


class DatabaseAuditSink:
    """Stores entries in grade_audit_logs using the caller's session."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def write(self, entries: List[AuditLogEntry]) -> None:
        try:
            self.db.add_all([
                GradeAuditLog(**entry.model_dump(exclude={"id", "created_at"}))
                for entry in entries
            ])
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class AuditRecorder:
    def __init__(self, sink: AuditSink, retries: Optional[int] = None):
        self.sink = sink
        self.retries = settings.AUDIT_WRITE_RETRIES if retries is None else retries

    def record(
        self,
        grade_ids: Iterable[UUID],
        actor: Actor,
        action: AuditAction,
        old_values: Mapping[UUID, Dict[str, Any]],
        new_values: Dict[str, Any],
        reason: Optional[str] = None,
        school_id: Optional[UUID] = None,
    ) -> List[AuditLogEntry]:
        """Write one entry per grade. Returns the entries written, or [] if the write gave up."""
        encoded_new = jsonable_encoder(new_values)
        entries = [
            AuditLogEntry(
                grade_id=grade_id,
                school_id=school_id or actor.school_id,
                actor_id=actor.id,
                actor_role=actor.role.value,
                action=action,
                old_values=jsonable_encoder(old_values.get(grade_id, {})),
                new_values=encoded_new,
                reason=reason,
            )
            for grade_id in grade_ids
        ]
        if not entries:
            return []

        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self.sink.write(entries)
                return entries
            except Exception as e:
                logger.warning("Audit write for %s attempt %d/%d failed: %s",
                               action.value, attempt, attempts, e)

        logger.error(
            "Audit entries lost for action %s by %s on grades %s",
            action.value, actor.id, ", ".join(str(entry.grade_id) for entry in entries),
        )
        return []


def get_audit_history(db: Session, grade_id: UUID) -> List[AuditLogEntry]:
    rows = (
        db.query(GradeAuditLog)
        .filter(GradeAuditLog.grade_id == grade_id)
        .order_by(GradeAuditLog.created_at.desc())
        .all()
    )
    return [AuditLogEntry.model_validate(row) for row in rows]
