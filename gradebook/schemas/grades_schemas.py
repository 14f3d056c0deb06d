# schemas/grades_schemas.py

from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from gradebook.config import settings
from gradebook.models.all_models import CurriculumType, GradeStatus, PerformanceLevel

IGCSE_LETTERS = ("A*", "A", "B", "C", "D", "E", "F", "G", "U")


def _clean_strand_scores(value):
    """Drop unset strands and normalize level codes ("pr " -> "PR")."""
    if not isinstance(value, dict):
        return value
    cleaned = {}
    for strand, level in value.items():
        if level is None:
            continue
        if isinstance(level, str):
            level = level.strip().upper()
            if not level:
                continue
        cleaned[str(strand).strip()] = level
    return cleaned


class GradeBase(BaseModel):
    id: Optional[UUID] = None
    school_id: Optional[UUID] = None
    student_id: UUID
    subject_id: UUID
    class_id: UUID
    term: str
    exam_type: str
    status: GradeStatus = GradeStatus.DRAFT
    comments: Optional[str] = None

    submitted_by: Optional[UUID] = None
    submitted_at: Optional[datetime] = None
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    released_by: Optional[UUID] = None
    released_at: Optional[datetime] = None
    principal_notes: Optional[str] = None
    overridden_by: Optional[UUID] = None
    overridden_at: Optional[datetime] = None
    override_reason: Optional[str] = None
    batch_id: Optional[UUID] = None

    class Config:
        from_attributes = True
        extra = "forbid"

    @field_validator('term', 'exam_type')
    def validate_not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('must not be blank')
        return v

    @property
    def key(self):
        return (self.student_id, self.subject_id)

    @property
    def is_overridden(self) -> bool:
        return self.overridden_by is not None


class StandardGrade(GradeBase):
    curriculum_type: Literal["standard"] = "standard"
    score: Optional[float] = None
    max_score: float = 100
    is_absent: bool = False
    percentage: Optional[float] = None
    letter_grade: Optional[str] = None

    overridden_score: Optional[float] = None
    overridden_percentage: Optional[float] = None
    overridden_letter_grade: Optional[str] = None

    @field_validator('max_score')
    def validate_max_score(cls, v):
        if v <= 0:
            raise ValueError('Maximum score must be greater than 0')
        return v

    @model_validator(mode='after')
    def validate_score_range(self):
        for name in ('score', 'overridden_score'):
            value = getattr(self, name)
            if value is not None and not 0 <= value <= self.max_score:
                raise ValueError(f'{name} must be between 0 and {self.max_score:g}')
        return self


class CBCGrade(GradeBase):
    curriculum_type: Literal["cbc"] = "cbc"
    strand_scores: Dict[str, PerformanceLevel] = Field(default_factory=dict)
    performance_level: Optional[PerformanceLevel] = None
    teacher_remarks: Optional[str] = None

    overridden_strand_scores: Optional[Dict[str, PerformanceLevel]] = None
    overridden_performance_level: Optional[PerformanceLevel] = None

    @field_validator('strand_scores', 'overridden_strand_scores', mode='before')
    def clean_strand_scores(cls, v):
        return _clean_strand_scores(v)


class IGCSEGrade(GradeBase):
    curriculum_type: Literal["igcse"] = "igcse"
    coursework_score: Optional[float] = Field(default=None, ge=0, le=100)
    exam_score: Optional[float] = Field(default=None, ge=0, le=100)
    coursework_weight: float = Field(default_factory=lambda: settings.DEFAULT_COURSEWORK_WEIGHT, ge=0, le=100)
    exam_weight: float = Field(default_factory=lambda: settings.DEFAULT_EXAM_WEIGHT, ge=0, le=100)
    total_score: Optional[float] = None
    percentage: Optional[float] = None
    letter_grade: Optional[str] = None

    overridden_coursework_score: Optional[float] = Field(default=None, ge=0, le=100)
    overridden_exam_score: Optional[float] = Field(default=None, ge=0, le=100)
    overridden_total_score: Optional[float] = None
    overridden_percentage: Optional[float] = None
    overridden_letter_grade: Optional[str] = None

    @field_validator('letter_grade', 'overridden_letter_grade')
    def validate_letter(cls, v):
        if v is not None and v not in IGCSE_LETTERS:
            raise ValueError(f'Invalid IGCSE letter grade. Must be one of: {", ".join(IGCSE_LETTERS)}')
        return v

    @model_validator(mode='after')
    def validate_weights(self):
        if abs(self.coursework_weight + self.exam_weight - 100) > 1e-9:
            raise ValueError('Coursework and exam weights must sum to 100')
        return self


Grade = Annotated[Union[StandardGrade, CBCGrade, IGCSEGrade], Field(discriminator="curriculum_type")]
GradeAdapter = TypeAdapter(Grade)

GRADE_MODELS = {
    CurriculumType.STANDARD: StandardGrade,
    CurriculumType.CBC: CBCGrade,
    CurriculumType.IGCSE: IGCSEGrade,
}


class GradeOverrideInput(BaseModel):
    """Principal-supplied values; which fields apply depends on the grade's curriculum."""
    reason: str
    score: Optional[float] = None
    strand_scores: Optional[Dict[str, PerformanceLevel]] = None
    performance_level: Optional[PerformanceLevel] = None
    coursework_score: Optional[float] = Field(default=None, ge=0, le=100)
    exam_score: Optional[float] = Field(default=None, ge=0, le=100)

    @field_validator('strand_scores', mode='before')
    def clean_strand_scores(cls, v):
        return _clean_strand_scores(v)


class StudentSummary(BaseModel):
    student_id: UUID
    total_score: float = 0
    total_possible: float = 0
    percentage: float = 0
    average_score: float = 0
    subject_count: int = 0
    position: int = 0
    letter_grade: Optional[str] = None


class ClassStatistics(BaseModel):
    count: int = 0
    average: float = 0
    highest: float = 0
    lowest: float = 0
    pass_rate: float = 0


class GradeStatistics(BaseModel):
    total: int = 0
    status_counts: Dict[str, int] = Field(default_factory=dict)
    average_score: float = 0
    curriculum_distribution: Dict[str, int] = Field(default_factory=dict)


class GradePage(BaseModel):
    grades: List[Grade]
    total: int
    page: int
    page_size: int
