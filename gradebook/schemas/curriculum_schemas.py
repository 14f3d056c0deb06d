from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from gradebook.models.all_models import CurriculumType


class CurriculumResolution(BaseModel):
    class_id: Optional[UUID] = None
    curriculum_type: CurriculumType = CurriculumType.STANDARD
    warning: Optional[str] = None


class CompetencyDefinition(BaseModel):
    subject_id: UUID
    class_id: Optional[UUID] = None
    competency_name: str
    strands: List[str]
    assessment_types: List[str] = Field(default_factory=list)
    is_default: bool = False

    class Config:
        from_attributes = True


class GradeBoundarySet(BaseModel):
    subject_id: Optional[UUID] = None
    boundaries: Dict[str, float]
    is_default: bool = False
