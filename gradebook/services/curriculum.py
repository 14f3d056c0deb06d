"""
Curriculum resolution for classes, plus the CBC competency and IGCSE
boundary configuration that grading depends on.

Every fallback to Standard happens here; callers use the resolved type and
surface the warning instead of re-deciding.
"""

import logging
from typing import Dict, List, Mapping, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gradebook.exceptions import NotFoundError
from gradebook.models.all_models import Class, Competency, CurriculumType, GradeBoundary
from gradebook.schemas.curriculum_schemas import CompetencyDefinition, CurriculumResolution, GradeBoundarySet
from gradebook.services.calculators import DEFAULT_IGCSE_BOUNDARIES, validate_grade_boundaries

logger = logging.getLogger(__name__)

DEFAULT_COMPETENCY_NAME = "General Competency"
DEFAULT_STRANDS = ["Communication", "Problem Solving", "Application", "Understanding"]

WARNING_CLASS_NOT_FOUND = "class not found"
WARNING_NO_CURRICULUM = "no curriculum assigned"


def normalize_curriculum(value: Optional[str]) -> Optional[CurriculumType]:
    """Map a stored value such as ' CBC ' to its curriculum type; None if unrecognised."""
    if value is None:
        return None
    try:
        return CurriculumType(str(value).strip().lower())
    except ValueError:
        return None


def _expected_types() -> str:
    return "{" + ", ".join(c.value for c in CurriculumType) + "}"


def resolve_curriculum(db: Session, class_id: Optional[UUID]) -> CurriculumResolution:
    """
    Curriculum type for a class. Never raises: every problem degrades to
    Standard with a warning the caller can show.
    """
    if class_id is None:
        return CurriculumResolution()

    try:
        class_ = db.query(Class).filter(Class.id == class_id).first()
    except SQLAlchemyError as e:
        logger.error("Curriculum lookup failed for class %s: %s", class_id, e)
        db.rollback()
        return CurriculumResolution(class_id=class_id, warning=f"curriculum lookup failed: {e}")

    if class_ is None:
        logger.warning("Class %s not found, grading as standard", class_id)
        return CurriculumResolution(class_id=class_id, warning=WARNING_CLASS_NOT_FOUND)

    # Newer rows use curriculum_type, older ones curriculum
    raw = class_.curriculum_type if (class_.curriculum_type or "").strip() else class_.curriculum
    if raw is None or not str(raw).strip():
        logger.warning("Class %s has no curriculum assigned, grading as standard", class_id)
        return CurriculumResolution(class_id=class_id, warning=WARNING_NO_CURRICULUM)

    curriculum = normalize_curriculum(raw)
    if curriculum is None:
        warning = f"invalid curriculum type: got {raw!r}, expected one of {_expected_types()}"
        logger.warning("Class %s: %s", class_id, warning)
        return CurriculumResolution(class_id=class_id, warning=warning)

    return CurriculumResolution(class_id=class_id, curriculum_type=curriculum)


def ensure_class_in_school(db: Session, class_id: UUID, school_id: Optional[UUID]) -> None:
    """Hide classes of other schools; unknown classes are left to the resolver's fallback."""
    if school_id is None:
        return
    class_school = db.query(Class.school_id).filter(Class.id == class_id).scalar()
    if class_school is not None and class_school != school_id:
        raise NotFoundError(f"Class {class_id} not found")


def get_competencies(db: Session, subject_id: UUID, class_id: Optional[UUID] = None) -> List[CompetencyDefinition]:
    """Configured competencies for a subject, or the synthesized default one."""
    query = db.query(Competency).filter(Competency.subject_id == subject_id)
    if class_id is not None:
        # Class-specific definitions first, subject-wide ones as fallback
        rows = query.filter(Competency.class_id == class_id).order_by(Competency.created_at).all()
        if not rows:
            rows = query.filter(Competency.class_id.is_(None)).order_by(Competency.created_at).all()
    else:
        rows = query.order_by(Competency.created_at).all()

    if rows:
        return [
            CompetencyDefinition(
                subject_id=row.subject_id,
                class_id=row.class_id,
                competency_name=row.competency_name,
                strands=list(row.strands or []),
                assessment_types=list(row.assessment_types or []),
            )
            for row in rows
        ]

    return [CompetencyDefinition(
        subject_id=subject_id,
        class_id=class_id,
        competency_name=DEFAULT_COMPETENCY_NAME,
        strands=list(DEFAULT_STRANDS),
        is_default=True,
    )]


def required_strands(db: Session, subject_id: UUID, class_id: Optional[UUID] = None) -> List[str]:
    """Every strand a CBC grade must carry to be complete, in configured order."""
    strands: List[str] = []
    for competency in get_competencies(db, subject_id, class_id):
        for strand in competency.strands:
            if strand not in strands:
                strands.append(strand)
    return strands


def load_grade_boundaries(db: Session, subject_id: Optional[UUID]) -> GradeBoundarySet:
    if subject_id is not None:
        row = db.query(GradeBoundary).filter(GradeBoundary.subject_id == subject_id).first()
        if row:
            return GradeBoundarySet(subject_id=subject_id, boundaries=validate_grade_boundaries(row.boundaries))
    return GradeBoundarySet(subject_id=subject_id, boundaries=dict(DEFAULT_IGCSE_BOUNDARIES), is_default=True)


def save_grade_boundaries(db: Session, subject_id: UUID, boundaries: Mapping[str, float]) -> GradeBoundarySet:
    """Validate and store a subject's boundary table."""
    normalized: Dict[str, float] = validate_grade_boundaries(boundaries)
    row = db.query(GradeBoundary).filter(GradeBoundary.subject_id == subject_id).first()
    if row:
        row.boundaries = normalized
    else:
        row = GradeBoundary(subject_id=subject_id, boundaries=normalized)
        db.add(row)
    db.commit()
    logger.info("Grade boundaries saved for subject %s", subject_id)
    return GradeBoundarySet(subject_id=subject_id, boundaries=normalized)
