# routers/curriculum.py

from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from gradebook.database import get_db
from gradebook.exceptions import PermissionDenied
from gradebook.schemas.curriculum_schemas import CompetencyDefinition, CurriculumResolution, GradeBoundarySet
from gradebook.schemas.workflow_schemas import Actor
from gradebook.services.curriculum import (
    ensure_class_in_school,
    get_competencies,
    load_grade_boundaries,
    resolve_curriculum,
    save_grade_boundaries,
)
from gradebook.services.workflow import reviewer_roles
from gradebook.utils.auth import get_current_actor


router = APIRouter(prefix="/api/curriculum", tags=["Curriculum"])


class GradeBoundaryUpdate(BaseModel):
    boundaries: Dict[str, float]


@router.get("/classes/{class_id}", response_model=CurriculumResolution)
def get_class_curriculum(class_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    ensure_class_in_school(db, class_id, actor.school_id)
    return resolve_curriculum(db, class_id)


@router.get("/competencies", response_model=List[CompetencyDefinition])
def list_competencies(
    subject_id: UUID,
    class_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return get_competencies(db, subject_id, class_id)


@router.get("/boundaries/{subject_id}", response_model=GradeBoundarySet)
def get_boundaries(subject_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return load_grade_boundaries(db, subject_id)


@router.put("/boundaries/{subject_id}", response_model=GradeBoundarySet)
def update_boundaries(subject_id: UUID, data: GradeBoundaryUpdate, db: Session = Depends(get_db),
                      actor: Actor = Depends(get_current_actor)):
    if actor.role not in reviewer_roles():
        raise PermissionDenied("Only principals can change grade boundaries")
    return save_grade_boundaries(db, subject_id, data.boundaries)
