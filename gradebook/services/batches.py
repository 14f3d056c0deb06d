"""
Submission batches: one per school/class/term/exam/submitter, tracking the
combined workflow state of the grades saved under it.

Batch status is the least advanced status among its grades, using the order

    draft < rejected < submitted < approved < released

so a batch is "approved" only once every grade in it is approved or
released, and a single rejected grade pulls the batch back to "rejected"
until it is reworked. A batch without grades is "draft".
"""

import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gradebook.exceptions import NotFoundError
from gradebook.models.all_models import CurriculumType, Grade, GradeStatus, GradeSubmissionBatch, Student
from gradebook.schemas.workflow_schemas import Actor, BatchResponse
from gradebook.utils.system_utils import now

logger = logging.getLogger(__name__)

BATCH_STATUS_ORDER = [
    GradeStatus.DRAFT,
    GradeStatus.REJECTED,
    GradeStatus.SUBMITTED,
    GradeStatus.APPROVED,
    GradeStatus.RELEASED,
]
STATUS_RANK = {status: rank for rank, status in enumerate(BATCH_STATUS_ORDER)}


def batch_status_for(statuses: Iterable[GradeStatus]) -> GradeStatus:
    statuses = [GradeStatus(s) for s in statuses]
    if not statuses:
        return GradeStatus.DRAFT
    return min(statuses, key=lambda s: STATUS_RANK[s])


def upsert_batch(db: Session, school_id: UUID, class_id: UUID, term: str, exam_type: str,
                 submitter_id: UUID, curriculum_type: CurriculumType = CurriculumType.STANDARD) -> UUID:
    """Batch id for the tuple, creating the batch on first use."""
    key = dict(school_id=school_id, class_id=class_id, term=term, exam_type=exam_type,
               submitted_by=submitter_id)
    batch = db.query(GradeSubmissionBatch).filter_by(**key).first()
    if batch:
        return batch.id

    batch = GradeSubmissionBatch(curriculum_type=curriculum_type, status=GradeStatus.DRAFT, **key)
    db.add(batch)
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently by another request
        db.rollback()
        batch = db.query(GradeSubmissionBatch).filter_by(**key).one()
        return batch.id
    logger.info("Created grade submission batch %s for class %s %s/%s", batch.id, class_id, term, exam_type)
    return batch.id


def get_batch_row(db: Session, batch_id: UUID) -> GradeSubmissionBatch:
    batch = db.query(GradeSubmissionBatch).filter(GradeSubmissionBatch.id == batch_id).first()
    if not batch:
        raise NotFoundError(f"Grade submission batch {batch_id} not found")
    return batch


def batch_progress(db: Session, batch: GradeSubmissionBatch) -> float:
    """Share of the class's students with at least one grade in the batch."""
    if not batch.total_students:
        return 0.0
    graded = (
        db.query(func.count(func.distinct(Grade.student_id)))
        .filter(Grade.batch_id == batch.id)
        .scalar()
    ) or 0
    return round(min(graded, batch.total_students) / batch.total_students * 100, 2)


def recompute_batch_status(db: Session, batch_id: UUID, reviewer: Optional[Actor] = None,
                           notes: Optional[str] = None) -> GradeSubmissionBatch:
    batch = get_batch_row(db, batch_id)
    statuses = [row.status for row in db.query(Grade.status).filter(Grade.batch_id == batch_id).all()]

    batch.grades_entered = len(statuses)
    batch.total_students = (
        db.query(Student)
        .filter(Student.class_id == batch.class_id, Student.is_active.is_(True))
        .count()
    )
    status = batch_status_for(statuses)
    if STATUS_RANK[status] >= STATUS_RANK[GradeStatus.SUBMITTED] and batch.submitted_at is None:
        batch.submitted_at = now()
    if reviewer is not None:
        batch.reviewed_by = reviewer.id
        batch.reviewed_at = now()
        if notes:
            batch.principal_notes = notes

    if batch.status != status:
        logger.info("Batch %s status %s -> %s", batch_id, GradeStatus(batch.status).value, status.value)
    batch.status = status
    db.commit()
    db.refresh(batch)
    return batch


def recompute_batches(db: Session, batch_ids: Iterable[Optional[UUID]], reviewer: Optional[Actor] = None,
                      notes: Optional[str] = None) -> None:
    for batch_id in {b for b in batch_ids if b is not None}:
        recompute_batch_status(db, batch_id, reviewer=reviewer, notes=notes)


def get_batch(db: Session, batch_id: UUID) -> BatchResponse:
    batch = get_batch_row(db, batch_id)
    response = BatchResponse.model_validate(batch)
    response.progress = batch_progress(db, batch)
    return response
