# crud/grades.py

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gradebook.exceptions import ConflictError
from gradebook.models.all_models import CurriculumType, Grade, GradeStatus, PerformanceLevel
from gradebook.schemas.grades_schemas import GradeAdapter, GradeStatistics
from gradebook.services.calculators import effective_score

logger = logging.getLogger(__name__)

COMMON_FIELDS = (
    "id", "school_id", "student_id", "subject_id", "class_id", "term", "exam_type",
    "status", "comments", "submitted_by", "submitted_at", "approved_by", "approved_at",
    "rejected_reason", "released_by", "released_at", "principal_notes",
    "overridden_by", "overridden_at", "override_reason", "batch_id",
)

# schema field -> column, per curriculum
VARIANT_COLUMNS = {
    CurriculumType.STANDARD: {
        "score": "score",
        "max_score": "max_score",
        "is_absent": "is_absent",
        "percentage": "percentage",
        "letter_grade": "letter_grade",
        "overridden_score": "overridden_score",
        "overridden_percentage": "overridden_percentage",
        "overridden_letter_grade": "overridden_letter_grade",
    },
    CurriculumType.CBC: {
        "strand_scores": "strand_scores",
        "performance_level": "cbc_performance_level",
        "teacher_remarks": "teacher_remarks",
        "overridden_strand_scores": "overridden_strand_scores",
        "overridden_performance_level": "overridden_performance_level",
    },
    CurriculumType.IGCSE: {
        "coursework_score": "coursework_score",
        "exam_score": "exam_score",
        "coursework_weight": "coursework_weight",
        "exam_weight": "exam_weight",
        "total_score": "total_score",
        "percentage": "percentage",
        "letter_grade": "letter_grade",
        "overridden_coursework_score": "overridden_coursework_score",
        "overridden_exam_score": "overridden_exam_score",
        "overridden_total_score": "overridden_total_score",
        "overridden_percentage": "overridden_percentage",
        "overridden_letter_grade": "overridden_letter_grade",
    },
}

CONFLICT_TARGET = ("school_id", "student_id", "subject_id", "class_id", "term", "exam_type", "submitted_by")


def _level_value(level):
    return PerformanceLevel(level).value if level is not None else None


def _strands_value(strands):
    if strands is None:
        return None
    return {strand: PerformanceLevel(level).value for strand, level in strands.items()}


def grade_to_row_values(grade) -> Dict[str, Any]:
    """Flatten a grade schema into column values for the wide grades table."""
    curriculum = CurriculumType(grade.curriculum_type)
    data = grade.model_dump()
    values = {field: data[field] for field in COMMON_FIELDS if data.get(field) is not None}
    values["curriculum_type"] = curriculum
    for field, column in VARIANT_COLUMNS[curriculum].items():
        value = data[field]
        if field in ("strand_scores", "overridden_strand_scores"):
            value = _strands_value(value)
        elif field in ("performance_level", "overridden_performance_level"):
            value = _level_value(value)
        values[column] = value
    return values


def grade_from_row(row: Grade):
    """Rebuild the tagged grade schema from a stored row."""
    curriculum = CurriculumType(row.curriculum_type)
    data = {field: getattr(row, field) for field in COMMON_FIELDS}
    data["curriculum_type"] = curriculum.value
    for field, column in VARIANT_COLUMNS[curriculum].items():
        value = getattr(row, column)
        if value is None and field in ("coursework_weight", "exam_weight", "max_score", "is_absent"):
            continue
        if value is None and field == "strand_scores":
            value = {}
        data[field] = value
    return GradeAdapter.validate_python(data)


def row_snapshot(row: Grade) -> Dict[str, Any]:
    """JSON-safe copy of every column, used as audit old_values."""
    return jsonable_encoder({column.name: getattr(row, column.name) for column in Grade.__table__.columns})


def get_grade_row(db: Session, grade_id: UUID) -> Optional[Grade]:
    return db.query(Grade).filter(Grade.id == grade_id).first()


def get_grade_rows(db: Session, grade_ids: Iterable[UUID]) -> Dict[UUID, Grade]:
    grade_ids = list(grade_ids)
    if not grade_ids:
        return {}
    rows = db.query(Grade).filter(Grade.id.in_(grade_ids)).all()
    return {row.id: row for row in rows}


def find_grade_row(db: Session, values: Dict[str, Any]) -> Optional[Grade]:
    return db.query(Grade).filter_by(**{key: values[key] for key in CONFLICT_TARGET}).first()


def upsert_grade(db: Session, values: Dict[str, Any]) -> Grade:
    """Insert or update on the per-submission conflict target; last write wins."""
    row = find_grade_row(db, values)
    if row:
        for key, value in values.items():
            if key != "id":
                setattr(row, key, value)
    else:
        row = Grade(**values)
        db.add(row)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.error("Grade upsert conflict for student %s subject %s: %s",
                     values.get("student_id"), values.get("subject_id"), e)
        raise ConflictError("Grade could not be saved because of a conflicting record")
    db.refresh(row)
    return row


def update_grade_if_status(db: Session, grade_id: UUID, statuses: Iterable[GradeStatus],
                           patch: Dict[str, Any], **filters) -> int:
    """Apply ``patch`` only while the row is still in one of ``statuses``. Returns rows affected."""
    query = db.query(Grade).filter(Grade.id == grade_id, Grade.status.in_(list(statuses)))
    for column, value in filters.items():
        query = query.filter(getattr(Grade, column) == value)
    affected = query.update(patch, synchronize_session=False)
    db.commit()
    return affected


def _filtered(db: Session, school_id: UUID, class_id=None, subject_id=None, status=None,
              term=None, exam_type=None, student_id=None):
    query = db.query(Grade).filter(Grade.school_id == school_id)
    if class_id:
        query = query.filter(Grade.class_id == class_id)
    if subject_id:
        query = query.filter(Grade.subject_id == subject_id)
    if student_id:
        query = query.filter(Grade.student_id == student_id)
    if status:
        query = query.filter(Grade.status == status)
    if term:
        query = query.filter(Grade.term == term)
    if exam_type:
        query = query.filter(Grade.exam_type == exam_type)
    return query


def list_grades(db: Session, school_id: UUID, page: int = 1, page_size: int = 50,
                **filters) -> Tuple[List[Grade], int]:
    """Principal review queue: filtered, newest submissions first, paginated."""
    query = _filtered(db, school_id, **filters)
    total = query.count()
    rows = (
        query.order_by(Grade.submitted_at.desc(), Grade.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return rows, total


def fetch_grade_sheet(db: Session, school_id: UUID, class_id: UUID, subject_id: Optional[UUID],
                      term: str, exam_type: str) -> List[Grade]:
    return _filtered(db, school_id, class_id=class_id, subject_id=subject_id,
                     term=term, exam_type=exam_type).all()


def list_released_grades(db: Session, school_id: UUID, student_id: UUID) -> List[Grade]:
    """Parent-facing view: only released grades are ever returned."""
    return (
        _filtered(db, school_id, student_id=student_id, status=GradeStatus.RELEASED)
        .order_by(Grade.created_at.desc())
        .all()
    )


def grade_statistics(db: Session, school_id: UUID, class_id=None, term=None, exam_type=None) -> GradeStatistics:
    rows = _filtered(db, school_id, class_id=class_id, term=term, exam_type=exam_type).all()
    stats = GradeStatistics(total=len(rows), status_counts={s.value: 0 for s in GradeStatus})

    scores = []
    for row in rows:
        stats.status_counts[GradeStatus(row.status).value] += 1
        curriculum = CurriculumType(row.curriculum_type).value
        stats.curriculum_distribution[curriculum] = stats.curriculum_distribution.get(curriculum, 0) + 1
        score = effective_score(grade_from_row(row))
        if score is not None:
            scores.append(score)

    if scores:
        stats.average_score = round(sum(scores) / len(scores), 2)
    return stats
