# routers/grades.py

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from gradebook.crud.grades import (
    fetch_grade_sheet,
    grade_from_row,
    grade_statistics,
    list_grades,
    list_released_grades,
)
from gradebook.database import get_db
from gradebook.models.all_models import AuditAction, Grade as GradeRow, GradeStatus, Student
from gradebook.schemas.curriculum_schemas import CurriculumResolution
from gradebook.schemas.grades_schemas import (
    ClassStatistics,
    Grade,
    GradeOverrideInput,
    GradePage,
    GradeStatistics,
    StudentSummary,
)
from gradebook.schemas.workflow_schemas import (
    Actor,
    ApproveRequest,
    AuditLogEntry,
    GradeIdsRequest,
    RejectRequest,
    TransitionResult,
)
from gradebook.services.aggregator import build_grade_map, class_statistics, summarize_class
from gradebook.services.audit import get_audit_history
from gradebook.services.curriculum import ensure_class_in_school, resolve_curriculum
from gradebook.services.workflow import GradeWorkflowService
from gradebook.utils.auth import get_current_actor


router = APIRouter(prefix="/api/grades", tags=["Grades"])


class TransitionRequest(BaseModel):
    action: AuditAction
    reason: Optional[str] = None


class GradeSheetResponse(BaseModel):
    curriculum: CurriculumResolution
    grades: List[Grade]
    statistics: ClassStatistics


# Helper Functions
def get_school_id(actor: Actor) -> UUID:
    if actor.school_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No school associated with this account")
    return actor.school_id


# Grade entry
@router.post("/drafts", response_model=List[Grade])
def save_drafts(grades: List[Grade], db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return GradeWorkflowService(db).save_drafts(actor, grades)


@router.post("/submit", response_model=TransitionResult)
def submit_grades(data: GradeIdsRequest, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return GradeWorkflowService(db).submit(actor, data.grade_ids)


# Principal review
@router.post("/approve", response_model=TransitionResult)
def approve_grades(data: ApproveRequest, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return GradeWorkflowService(db).approve(actor, data.grade_ids, data.principal_notes)


@router.post("/reject", response_model=TransitionResult)
def reject_grades(data: RejectRequest, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return GradeWorkflowService(db).reject(actor, data.grade_ids, data.reason)


@router.post("/release", response_model=TransitionResult)
def release_grades(data: GradeIdsRequest, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return GradeWorkflowService(db).release(actor, data.grade_ids)


@router.post("/{grade_id}/transition", response_model=TransitionResult)
def transition_grade(grade_id: UUID, data: TransitionRequest, db: Session = Depends(get_db),
                     actor: Actor = Depends(get_current_actor)):
    return GradeWorkflowService(db).transition(actor, grade_id, data.action, data.reason)


@router.post("/{grade_id}/override", response_model=Grade)
def override_grade(grade_id: UUID, data: GradeOverrideInput, db: Session = Depends(get_db),
                   actor: Actor = Depends(get_current_actor)):
    return GradeWorkflowService(db).override(actor, grade_id, data)


@router.post("/{grade_id}/override-released", response_model=Grade)
def override_released_grade(grade_id: UUID, data: GradeOverrideInput, db: Session = Depends(get_db),
                            actor: Actor = Depends(get_current_actor)):
    """Correct a grade parents can already see; it returns to approved until released again."""
    return GradeWorkflowService(db).override(actor, grade_id, data, allow_released=True)


# Queries
@router.get("/sheet", response_model=GradeSheetResponse)
def get_grade_sheet(
    class_id: UUID,
    term: str,
    exam_type: str,
    subject_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    school_id = get_school_id(actor)
    ensure_class_in_school(db, class_id, school_id)
    rows = fetch_grade_sheet(db, school_id, class_id, subject_id, term, exam_type)
    grades = [grade_from_row(row) for row in rows]
    return {
        "curriculum": resolve_curriculum(db, class_id),
        "grades": grades,
        "statistics": class_statistics(grades),
    }


@router.get("/pending", response_model=GradePage)
def get_pending_grades(
    class_id: Optional[UUID] = None,
    subject_id: Optional[UUID] = None,
    term: Optional[str] = None,
    exam_type: Optional[str] = None,
    grade_status: GradeStatus = Query(GradeStatus.SUBMITTED, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    rows, total = list_grades(
        db, get_school_id(actor), page=page, page_size=page_size,
        class_id=class_id, subject_id=subject_id, status=grade_status, term=term, exam_type=exam_type,
    )
    return {"grades": [grade_from_row(row) for row in rows], "total": total, "page": page, "page_size": page_size}


@router.get("/released/{student_id}", response_model=List[Grade])
def get_released_grades(student_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return [grade_from_row(row) for row in list_released_grades(db, get_school_id(actor), student_id)]


@router.get("/statistics", response_model=GradeStatistics)
def get_grade_statistics(
    class_id: Optional[UUID] = None,
    term: Optional[str] = None,
    exam_type: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return grade_statistics(db, get_school_id(actor), class_id=class_id, term=term, exam_type=exam_type)


@router.get("/class-summary", response_model=List[StudentSummary])
def get_class_summary(
    class_id: UUID,
    term: str,
    exam_type: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    school_id = get_school_id(actor)
    ensure_class_in_school(db, class_id, school_id)
    rows = sorted(
        fetch_grade_sheet(db, school_id, class_id, None, term, exam_type),
        key=lambda row: row.updated_at or row.created_at,
    )
    grades = build_grade_map(grade_from_row(row) for row in rows)
    student_ids = [
        s.id for s in db.query(Student.id).filter(
            Student.school_id == school_id, Student.class_id == class_id, Student.is_active.is_(True),
        )
    ]
    subject_ids = list(dict.fromkeys(row.subject_id for row in rows))
    return summarize_class(student_ids, subject_ids, grades)


@router.get("/{grade_id}/audit", response_model=List[AuditLogEntry])
def get_grade_audit(grade_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    grade = db.query(GradeRow).filter(GradeRow.id == grade_id, GradeRow.school_id == get_school_id(actor)).first()
    if not grade:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Grade not found")
    return get_audit_history(db, grade_id)
