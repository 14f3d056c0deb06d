# schemas/workflow_schemas.py

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from gradebook.models.all_models import AuditAction, CurriculumType, GradeStatus, UserRole


class Actor(BaseModel):
    """Whoever is performing a workflow action, as handed over by the identity provider."""
    id: UUID
    role: UserRole
    school_id: Optional[UUID] = None


class GradeIdsRequest(BaseModel):
    grade_ids: List[UUID]


class ApproveRequest(GradeIdsRequest):
    principal_notes: Optional[str] = None


class RejectRequest(GradeIdsRequest):
    reason: Optional[str] = None


class TransitionResult(BaseModel):
    """
    Outcome of a bulk workflow action.

    Rows that do not meet the action's status precondition are skipped, not
    failed; rows whose update raised are failed. A result with fewer affected
    rows than requested is a partial failure the caller reports to the user.
    """
    action: AuditAction
    requested: int = 0
    affected_ids: List[UUID] = Field(default_factory=list)
    skipped_ids: List[UUID] = Field(default_factory=list)
    failed_ids: List[UUID] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)

    @computed_field
    @property
    def affected(self) -> int:
        return len(self.affected_ids)

    @computed_field
    @property
    def failed(self) -> int:
        return len(self.failed_ids)

    @computed_field
    @property
    def is_partial(self) -> bool:
        return self.affected < self.requested

    @computed_field
    @property
    def message(self) -> str:
        return f"{self.affected} of {self.requested} succeeded"


class AuditLogEntry(BaseModel):
    id: Optional[UUID] = None
    grade_id: UUID
    school_id: Optional[UUID] = None
    actor_id: UUID
    actor_role: str
    action: AuditAction
    old_values: Dict[str, Any] = Field(default_factory=dict)
    new_values: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BatchResponse(BaseModel):
    id: UUID
    school_id: UUID
    class_id: UUID
    term: str
    exam_type: str
    curriculum_type: CurriculumType
    submitted_by: UUID
    total_students: int
    grades_entered: int
    status: GradeStatus
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[UUID] = None
    principal_notes: Optional[str] = None
    progress: float = 0

    class Config:
        from_attributes = True
