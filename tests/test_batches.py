"""
Tests for services/batches.py: batch upsert, derived status and progress.
"""

import uuid

import pytest

from gradebook.exceptions import NotFoundError
from gradebook.models.all_models import CurriculumType, GradeStatus
from gradebook.services.batches import (
    batch_status_for,
    get_batch,
    get_batch_row,
    recompute_batch_status,
    upsert_batch,
)

D, S, A, R, X = (GradeStatus.DRAFT, GradeStatus.SUBMITTED, GradeStatus.APPROVED,
                 GradeStatus.REJECTED, GradeStatus.RELEASED)


class TestBatchStatusFor:

    @pytest.mark.parametrize("statuses,expected", [
        ([], D),
        ([S, S], S),
        ([A, S], S),
        ([A, A], A),
        ([A, X], A),
        ([X, X], X),
        ([A, R], R),
        ([R, D], D),
        ([S, R, X], R),
    ])
    def test_least_advanced_status(self, statuses, expected):
        assert batch_status_for(statuses) == expected

    def test_accepts_raw_values(self):
        assert batch_status_for(["approved", "submitted"]) == S


class TestUpsertBatch:

    def test_idempotent(self, db, school, teacher):
        args = (db, school.id, school.classes["standard"], "term1", "midterm", teacher.id)
        assert upsert_batch(*args) == upsert_batch(*args)

    def test_one_batch_per_submitter(self, db, school, teacher, other_teacher):
        first = upsert_batch(db, school.id, school.classes["standard"], "term1", "midterm", teacher.id)
        second = upsert_batch(db, school.id, school.classes["standard"], "term1", "midterm", other_teacher.id)
        assert first != second

    def test_empty_batch_is_draft(self, db, school, teacher):
        batch_id = upsert_batch(db, school.id, school.classes["cbc"], "term1", "midterm", teacher.id,
                                CurriculumType.CBC)
        batch = recompute_batch_status(db, batch_id)
        assert GradeStatus(batch.status) == D
        assert batch.total_students == 3
        assert batch.grades_entered == 0

    def test_unknown_batch(self, db):
        with pytest.raises(NotFoundError):
            get_batch_row(db, uuid.uuid4())


class TestBatchLifecycle:

    def test_status_follows_grades(self, db, service, teacher, principal, standard_grade):
        first = service.save_draft(teacher, standard_grade(student=0, score=65))
        second = service.save_draft(teacher, standard_grade(student=1, score=55))
        batch_id = first.batch_id
        assert second.batch_id == batch_id

        service.submit(teacher, [first.id, second.id])
        batch = get_batch_row(db, batch_id)
        assert GradeStatus(batch.status) == S
        assert batch.submitted_at is not None

        service.approve(principal, [first.id])
        assert GradeStatus(get_batch_row(db, batch_id).status) == S

        service.approve(principal, [second.id], principal_notes="All good")
        batch = get_batch_row(db, batch_id)
        assert GradeStatus(batch.status) == A
        assert batch.reviewed_by == principal.id
        assert batch.principal_notes == "All good"

        service.reject(principal, [second.id], "Recount")
        assert GradeStatus(get_batch_row(db, batch_id).status) == R

    def test_progress(self, db, service, teacher, standard_grade):
        first = service.save_draft(teacher, standard_grade(student=0, subject="math", score=65))
        service.save_draft(teacher, standard_grade(student=0, subject="english", score=70))
        service.save_draft(teacher, standard_grade(student=1, subject="math", score=40))

        response = get_batch(db, first.batch_id)
        assert response.grades_entered == 3
        assert response.total_students == 3
        assert response.progress == 66.67
        assert response.curriculum_type == CurriculumType.STANDARD
