"""
Grade approval workflow.

    draft -> submitted -> approved -> released
    submitted | approved -> rejected -> draft   (teacher edits and resubmits)
    submitted | approved -> approved   (principal override)

Reopening a rejected grade drops any earlier principal override, so the
next review sees only the values entered in this round.

Role policy lives in ``can_transition``; the service asks it before reading
or writing anything. Bulk actions filter on the current status row by row:
rows that are not in a source state are skipped, and every row commits on
its own, so the returned TransitionResult says how many of the requested
grades actually moved.
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gradebook.config import settings
from gradebook.crud.grades import (
    VARIANT_COLUMNS,
    find_grade_row,
    get_grade_row,
    get_grade_rows,
    grade_from_row,
    grade_to_row_values,
    row_snapshot,
    update_grade_if_status,
    upsert_grade,
)
from gradebook.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from gradebook.models.all_models import AuditAction, CurriculumType, GradeStatus, UserRole
from gradebook.schemas.grades_schemas import GradeAdapter, GradeOverrideInput
from gradebook.schemas.workflow_schemas import Actor, TransitionResult
from gradebook.services.audit import AuditRecorder, DatabaseAuditSink
from gradebook.services.batches import recompute_batch_status, recompute_batches, upsert_batch
from gradebook.services.calculators import compute_grade, missing_fields
from gradebook.services.curriculum import load_grade_boundaries, required_strands, resolve_curriculum
from gradebook.utils.system_utils import now

logger = logging.getLogger(__name__)

# action -> (statuses it may start from, status it leads to)
TRANSITIONS: Dict[AuditAction, Tuple[FrozenSet[GradeStatus], GradeStatus]] = {
    AuditAction.REOPEN: (frozenset({GradeStatus.REJECTED}), GradeStatus.DRAFT),
    AuditAction.SUBMIT: (frozenset({GradeStatus.DRAFT}), GradeStatus.SUBMITTED),
    AuditAction.APPROVE: (frozenset({GradeStatus.SUBMITTED}), GradeStatus.APPROVED),
    AuditAction.REJECT: (frozenset({GradeStatus.SUBMITTED, GradeStatus.APPROVED}), GradeStatus.REJECTED),
    AuditAction.RELEASE: (frozenset({GradeStatus.APPROVED}), GradeStatus.RELEASED),
    AuditAction.OVERRIDE: (frozenset({GradeStatus.SUBMITTED, GradeStatus.APPROVED}), GradeStatus.APPROVED),
}

EDITABLE_STATUSES = frozenset({GradeStatus.DRAFT, GradeStatus.REJECTED})
ENTRY_ROLES = frozenset({UserRole.TEACHER, UserRole.PRINCIPAL, UserRole.ADMIN})
ENTRY_ACTIONS = frozenset({AuditAction.SUBMIT, AuditAction.REOPEN})

# Columns a teacher's draft save may never write
STAMP_COLUMNS = (
    "approved_by", "approved_at", "rejected_reason", "released_by", "released_at",
    "principal_notes", "overridden_by", "overridden_at", "override_reason",
    "submitted_at",
)
OVERRIDE_STAMP_COLUMNS = ("overridden_by", "overridden_at", "override_reason")


def reviewer_roles() -> FrozenSet[UserRole]:
    roles = set()
    for name in settings.reviewer_roles:
        try:
            roles.add(UserRole(name))
        except ValueError:
            logger.warning("Ignoring unknown reviewer role %r in settings", name)
    return frozenset(roles)


def can_transition(actor: Actor, action: AuditAction, from_status: Optional[GradeStatus] = None) -> bool:
    """Whether ``actor`` may perform ``action``, optionally on a grade currently in ``from_status``."""
    allowed_roles = ENTRY_ROLES if action in ENTRY_ACTIONS else reviewer_roles()
    if actor.role not in allowed_roles:
        return False
    if from_status is not None:
        return GradeStatus(from_status) in TRANSITIONS[action][0]
    return True


def ensure_can(actor: Actor, action: AuditAction) -> None:
    if not can_transition(actor, action):
        raise PermissionDenied(f"Role '{actor.role.value}' is not allowed to {action.value} grades")


def ensure_can_edit(actor: Actor) -> None:
    if actor.role not in ENTRY_ROLES:
        raise PermissionDenied(f"Role '{actor.role.value}' is not allowed to enter grades")


def _schema_errors(error: SchemaValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"][1:] or item["loc"]) or "grade"
        errors.setdefault(field, []).append(item["msg"])
    return errors


def _override_columns(curriculum: CurriculumType) -> List[str]:
    return [column for column in VARIANT_COLUMNS[curriculum].values() if column.startswith("overridden_")]


class GradeWorkflowService:
    """Service class for grade entry and approval"""

    def __init__(self, db_session: Session, audit: Optional[AuditRecorder] = None):
        self.db = db_session
        self.audit = audit or AuditRecorder(DatabaseAuditSink(db_session))

    # ------------------------------------------------------------------
    # Teacher side
    # ------------------------------------------------------------------

    def save_draft(self, actor: Actor, grade):
        """
        Create or update the actor's draft for one student/subject/term/exam.
        Saving over a rejected grade reopens it as a draft.
        """
        ensure_can_edit(actor)

        school_id = actor.school_id or grade.school_id
        if school_id is None:
            raise ValidationError("A school is required to save grades", errors={"school_id": ["missing"]})

        resolution = resolve_curriculum(self.db, grade.class_id)
        if CurriculumType(grade.curriculum_type) != resolution.curriculum_type:
            message = (f"Class {grade.class_id} is graded as {resolution.curriculum_type.value}, "
                       f"got a {grade.curriculum_type} grade")
            if resolution.warning:
                message += f" ({resolution.warning})"
            raise ValidationError(message, errors={"curriculum_type": [message]})

        boundaries = None
        if resolution.curriculum_type == CurriculumType.IGCSE:
            boundaries = load_grade_boundaries(self.db, grade.subject_id).boundaries

        grade = compute_grade(
            grade.model_copy(update={"school_id": school_id, "submitted_by": actor.id, "status": GradeStatus.DRAFT}),
            boundaries,
        )
        values = grade_to_row_values(grade)
        for column in STAMP_COLUMNS + tuple(_override_columns(resolution.curriculum_type)):
            values.pop(column, None)
        values.pop("id", None)

        existing = find_grade_row(self.db, values)
        if existing is not None and existing.status not in EDITABLE_STATUSES:
            raise ValidationError(
                f"Grade is {GradeStatus(existing.status).value} and can no longer be edited",
                errors={str(existing.id): [f"status is {GradeStatus(existing.status).value}"]},
            )
        reopened = {existing.id: row_snapshot(existing)} if (
            existing is not None and existing.status == GradeStatus.REJECTED) else {}
        cleared = {}
        if reopened:
            cleared = {column: None for column in
                       OVERRIDE_STAMP_COLUMNS + tuple(_override_columns(resolution.curriculum_type))}
            values.update(cleared)

        values["batch_id"] = upsert_batch(
            self.db, school_id, grade.class_id, grade.term, grade.exam_type, actor.id,
            resolution.curriculum_type,
        )
        values["status"] = GradeStatus.DRAFT
        row = upsert_grade(self.db, values)

        if reopened:
            self.audit.record([row.id], actor, AuditAction.REOPEN, reopened,
                              {"status": GradeStatus.DRAFT.value, **cleared}, school_id=school_id)
        recompute_batch_status(self.db, row.batch_id)
        return grade_from_row(row)

    def save_drafts(self, actor: Actor, grades: Iterable) -> List:
        return [self.save_draft(actor, grade) for grade in grades]

    def submit(self, actor: Actor, grade_ids: Iterable[UUID]) -> TransitionResult:
        """Submit drafts for approval. Incomplete grades reject the whole call."""
        ensure_can(actor, AuditAction.SUBMIT)
        grade_ids = list(dict.fromkeys(grade_ids))
        rows = get_grade_rows(self.db, grade_ids)

        own_filter = self._owner_filter(actor)
        errors: Dict[str, List[str]] = {}
        for grade_id, row in rows.items():
            if row.status != GradeStatus.DRAFT or not self._matches(row, own_filter):
                continue
            grade = grade_from_row(row)
            strands = required_strands(self.db, row.subject_id, row.class_id) \
                if row.curriculum_type == CurriculumType.CBC else ()
            missing = missing_fields(grade, strands)
            if missing:
                errors[str(grade_id)] = missing
        if errors:
            details = "; ".join(f"grade {gid}: missing {', '.join(fields)}" for gid, fields in errors.items())
            raise ValidationError(f"Incomplete grades cannot be submitted ({details})", errors=errors)

        patch = {"status": GradeStatus.SUBMITTED, "submitted_at": now()}
        return self._apply(actor, AuditAction.SUBMIT, grade_ids, rows, patch, filters=own_filter)

    # ------------------------------------------------------------------
    # Principal side
    # ------------------------------------------------------------------

    def approve(self, actor: Actor, grade_ids: Iterable[UUID], principal_notes: Optional[str] = None) -> TransitionResult:
        ensure_can(actor, AuditAction.APPROVE)
        grade_ids = list(dict.fromkeys(grade_ids))
        patch: Dict[str, Any] = {"status": GradeStatus.APPROVED, "approved_by": actor.id, "approved_at": now()}
        if principal_notes:
            patch["principal_notes"] = principal_notes
        rows = get_grade_rows(self.db, grade_ids)
        return self._apply(actor, AuditAction.APPROVE, grade_ids, rows, patch,
                           reason=principal_notes, reviewed=True, notes=principal_notes)

    def reject(self, actor: Actor, grade_ids: Iterable[UUID], reason: Optional[str]) -> TransitionResult:
        ensure_can(actor, AuditAction.REJECT)
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reject grades", errors={"reason": ["required"]})
        reason = reason.strip()
        grade_ids = list(dict.fromkeys(grade_ids))
        patch = {"status": GradeStatus.REJECTED, "rejected_reason": reason}
        rows = get_grade_rows(self.db, grade_ids)
        return self._apply(actor, AuditAction.REJECT, grade_ids, rows, patch,
                           reason=reason, reviewed=True, notes=reason)

    def release(self, actor: Actor, grade_ids: Iterable[UUID]) -> TransitionResult:
        ensure_can(actor, AuditAction.RELEASE)
        grade_ids = list(dict.fromkeys(grade_ids))
        patch = {"status": GradeStatus.RELEASED, "released_by": actor.id, "released_at": now()}
        rows = get_grade_rows(self.db, grade_ids)
        return self._apply(actor, AuditAction.RELEASE, grade_ids, rows, patch,
                           reason="Grades released to parents", reviewed=True)

    def override(self, actor: Actor, grade_id: UUID, values: GradeOverrideInput, allow_released: bool = False):
        """
        Replace the grade's values with principal-supplied ones and approve it.

        Released grades are only accepted with ``allow_released``; they come
        back as approved and have to be released again.
        """
        ensure_can(actor, AuditAction.OVERRIDE)
        reason = (values.reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to override a grade", errors={"reason": ["required"]})

        row = get_grade_row(self.db, grade_id)
        if row is None or not self._matches(row, self._school_filter(actor)):
            raise NotFoundError(f"Grade {grade_id} not found")

        sources = set(TRANSITIONS[AuditAction.OVERRIDE][0])
        if allow_released:
            sources.add(GradeStatus.RELEASED)
        status = GradeStatus(row.status)
        if status not in sources:
            if status == GradeStatus.RELEASED:
                message = "Released grades can only be changed through the released-grade override"
            else:
                message = f"Cannot override a {status.value} grade; only submitted or approved grades can be overridden"
            raise ValidationError(message, errors={str(grade_id): [f"status is {status.value}"]})

        curriculum = CurriculumType(row.curriculum_type)
        grade = grade_from_row(row)
        stamped_at = now()
        data = grade.model_dump()
        data.update(self._override_values(curriculum, values))
        if curriculum == CurriculumType.CBC and values.strand_scores:
            data["overridden_strand_scores"] = {**(grade.overridden_strand_scores or {}), **values.strand_scores}
        data.update({
            "overridden_by": actor.id,
            "overridden_at": stamped_at,
            "override_reason": reason,
            "status": GradeStatus.APPROVED,
            "approved_by": actor.id,
            "approved_at": stamped_at,
        })
        try:
            updated = GradeAdapter.validate_python(data)
        except SchemaValidationError as e:
            raise ValidationError("Override values are out of range", errors=_schema_errors(e))

        boundaries = load_grade_boundaries(self.db, row.subject_id).boundaries \
            if curriculum == CurriculumType.IGCSE else None
        updated = compute_grade(updated, boundaries)
        if curriculum == CurriculumType.CBC and values.performance_level is not None:
            updated = updated.model_copy(update={"overridden_performance_level": values.performance_level})

        row_values = grade_to_row_values(updated)
        patch = {column: row_values.get(column) for column in _override_columns(curriculum)}
        patch.update({column: row_values[column] for column in OVERRIDE_STAMP_COLUMNS})
        patch.update({"status": GradeStatus.APPROVED, "approved_by": actor.id, "approved_at": stamped_at})

        old_values = {row.id: row_snapshot(row)}
        batch_id = row.batch_id
        affected = update_grade_if_status(self.db, grade_id, sources, patch)
        if not affected:
            raise ConflictError(f"Grade {grade_id} changed status while it was being overridden")

        self.audit.record([grade_id], actor, AuditAction.OVERRIDE, old_values, patch,
                          reason=reason, school_id=row.school_id)
        if batch_id is not None:
            recompute_batch_status(self.db, batch_id, reviewer=actor)
        logger.info("Grade %s overridden by %s (was %s)", grade_id, actor.id, status.value)
        return grade_from_row(get_grade_row(self.db, grade_id))

    def transition(self, actor: Actor, grade_id: UUID, action: AuditAction,
                   reason: Optional[str] = None) -> TransitionResult:
        """
        Move a single grade. Unlike the bulk actions, a grade that is not in
        a state the action can start from is an error, not a skip.
        """
        handlers = {
            AuditAction.SUBMIT: lambda ids: self.submit(actor, ids),
            AuditAction.APPROVE: lambda ids: self.approve(actor, ids, principal_notes=reason),
            AuditAction.REJECT: lambda ids: self.reject(actor, ids, reason),
            AuditAction.RELEASE: lambda ids: self.release(actor, ids),
        }
        if action not in handlers:
            raise ValidationError(f"'{action.value}' is not a single-step transition")
        ensure_can(actor, action)

        row = get_grade_row(self.db, grade_id)
        if row is None or not self._matches(row, self._school_filter(actor)):
            raise NotFoundError(f"Grade {grade_id} not found")
        status = GradeStatus(row.status)
        if not can_transition(actor, action, status):
            allowed = ", ".join(sorted(s.value for s in TRANSITIONS[action][0]))
            raise ValidationError(
                f"Cannot {action.value} a {status.value} grade; it must be {allowed}",
                errors={str(grade_id): [f"status is {status.value}"]},
            )
        return handlers[action]([grade_id])

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _override_values(curriculum: CurriculumType, values: GradeOverrideInput) -> Dict[str, Any]:
        supplied = {name for name in ("score", "strand_scores", "performance_level", "coursework_score", "exam_score")
                    if getattr(values, name) is not None}
        accepted = {
            CurriculumType.STANDARD: {"score"},
            CurriculumType.CBC: {"strand_scores", "performance_level"},
            CurriculumType.IGCSE: {"coursework_score", "exam_score"},
        }[curriculum]

        foreign = supplied - accepted
        if foreign:
            raise ValidationError(
                f"{', '.join(sorted(foreign))} cannot be used to override a {curriculum.value} grade",
                errors={name: ["not applicable"] for name in foreign},
            )
        if not supplied:
            raise ValidationError(
                f"Override of a {curriculum.value} grade needs one of: {', '.join(sorted(accepted))}",
                errors={name: ["missing"] for name in accepted},
            )
        return {f"overridden_{name}": getattr(values, name) for name in supplied}

    @staticmethod
    def _school_filter(actor: Actor) -> Dict[str, Any]:
        return {"school_id": actor.school_id} if actor.school_id is not None else {}

    def _owner_filter(self, actor: Actor) -> Dict[str, Any]:
        filters = self._school_filter(actor)
        if actor.role == UserRole.TEACHER:
            filters["submitted_by"] = actor.id
        return filters

    @staticmethod
    def _matches(row, filters: Dict[str, Any]) -> bool:
        return all(getattr(row, column) == value for column, value in filters.items())

    def _apply(self, actor: Actor, action: AuditAction, grade_ids: List[UUID], rows: Dict[UUID, Any],
               patch: Dict[str, Any], reason: Optional[str] = None, filters: Optional[Dict[str, Any]] = None,
               reviewed: bool = False, notes: Optional[str] = None) -> TransitionResult:
        sources, _ = TRANSITIONS[action]
        filters = filters if filters is not None else self._school_filter(actor)
        result = TransitionResult(action=action, requested=len(grade_ids))

        snapshots = {grade_id: row_snapshot(row) for grade_id, row in rows.items()}
        batch_ids = {grade_id: row.batch_id for grade_id, row in rows.items()}
        school_ids = {grade_id: row.school_id for grade_id, row in rows.items()}

        for grade_id in grade_ids:
            row = rows.get(grade_id)
            if row is None or row.status not in sources or not self._matches(row, filters):
                result.skipped_ids.append(grade_id)
                continue
            try:
                affected = update_grade_if_status(self.db, grade_id, sources, patch, **filters)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Failed to %s grade %s: %s", action.value, grade_id, e)
                result.failed_ids.append(grade_id)
                result.errors[str(grade_id)] = str(e)
                continue
            if affected:
                result.affected_ids.append(grade_id)
            else:
                result.skipped_ids.append(grade_id)

        # One entry per grade, grouped by school so entries carry the grade's tenant
        by_school: Dict[Any, List[UUID]] = {}
        for grade_id in result.affected_ids:
            by_school.setdefault(school_ids[grade_id], []).append(grade_id)
        for school_id, ids in by_school.items():
            self.audit.record(ids, actor, action, snapshots, patch, reason=reason, school_id=school_id)

        recompute_batches(
            self.db,
            [batch_ids[grade_id] for grade_id in result.affected_ids],
            reviewer=actor if reviewed else None,
            notes=notes,
        )

        if result.is_partial:
            logger.warning("%s by %s: %s (skipped %d, failed %d)", action.value, actor.id,
                           result.message, len(result.skipped_ids), result.failed)
        else:
            logger.info("%s by %s: %s", action.value, actor.id, result.message)
        return result
