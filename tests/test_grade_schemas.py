"""
Tests for the tagged grade schemas and their mapping onto grade rows.
"""

import uuid

import pytest
from pydantic import ValidationError as SchemaError

from gradebook.crud.grades import grade_from_row, grade_to_row_values
from gradebook.models.all_models import CurriculumType, Grade as GradeRow, GradeStatus, PerformanceLevel
from gradebook.schemas.grades_schemas import CBCGrade, GradeAdapter, IGCSEGrade, StandardGrade


def _ids(**extra):
    return dict(student_id=uuid.uuid4(), subject_id=uuid.uuid4(), class_id=uuid.uuid4(),
                term="term1", exam_type="endterm", **extra)


class TestStandardGradeSchema:

    def test_score_above_max_rejected(self):
        with pytest.raises(SchemaError):
            StandardGrade(score=120, **_ids())

    def test_score_against_custom_max(self):
        assert StandardGrade(score=40, max_score=40, **_ids()).score == 40
        with pytest.raises(SchemaError):
            StandardGrade(score=41, max_score=40, **_ids())

    def test_max_score_must_be_positive(self):
        with pytest.raises(SchemaError):
            StandardGrade(max_score=0, **_ids())

    def test_blank_term_rejected(self):
        data = _ids()
        data["term"] = "   "
        with pytest.raises(SchemaError):
            StandardGrade(**data)


class TestIGCSEGradeSchema:

    def test_exam_score_out_of_range(self):
        with pytest.raises(SchemaError):
            IGCSEGrade(exam_score=101, **_ids())

    def test_weights_must_sum_to_100(self):
        with pytest.raises(SchemaError):
            IGCSEGrade(coursework_weight=40, exam_weight=70, **_ids())

    def test_default_weights(self):
        grade = IGCSEGrade(**_ids())
        assert (grade.coursework_weight, grade.exam_weight) == (30.0, 70.0)

    def test_letter_must_be_igcse_letter(self):
        with pytest.raises(SchemaError):
            IGCSEGrade(letter_grade="A+", **_ids())


class TestCBCGradeSchema:

    def test_strand_levels_are_normalized(self):
        grade = CBCGrade(strand_scores={"Reading": "pr ", "Writing": "", "Speaking": None}, **_ids())
        assert grade.strand_scores == {"Reading": PerformanceLevel.PR}

    def test_unknown_level_rejected(self):
        with pytest.raises(SchemaError):
            CBCGrade(strand_scores={"Reading": "XX"}, **_ids())


class TestDiscriminatedUnion:

    def test_tag_selects_variant(self):
        grade = GradeAdapter.validate_python({"curriculum_type": "igcse", "coursework_score": 50, **_ids()})
        assert isinstance(grade, IGCSEGrade)

    def test_fields_of_other_variants_rejected(self):
        with pytest.raises(SchemaError):
            GradeAdapter.validate_python({"curriculum_type": "cbc", "score": 80, **_ids()})

    def test_unknown_tag_rejected(self):
        with pytest.raises(SchemaError):
            GradeAdapter.validate_python({"curriculum_type": "british", **_ids()})

    def test_cbc_override_provenance_survives_serialization(self):
        grade = CBCGrade(
            strand_scores={"Reading": "AP", "Writing": "EM"},
            performance_level="EM",
            overridden_strand_scores={"Reading": "EX"},
            overridden_performance_level="EX",
            overridden_by=uuid.uuid4(),
            override_reason="Moderated",
            **_ids(),
        )
        restored = GradeAdapter.validate_json(GradeAdapter.dump_json(grade))
        assert restored.model_dump() == grade.model_dump()
        assert restored.strand_scores["Reading"] == PerformanceLevel.AP
        assert restored.overridden_strand_scores["Reading"] == PerformanceLevel.EX
        assert restored.is_overridden


class TestRowMapping:

    def test_cbc_columns(self):
        grade = CBCGrade(
            strand_scores={"Reading": "PR"}, performance_level="PR",
            overridden_strand_scores={"Reading": "EX"}, overridden_performance_level="EX",
            status=GradeStatus.APPROVED, **_ids(school_id=uuid.uuid4(), submitted_by=uuid.uuid4()),
        )
        values = grade_to_row_values(grade)
        assert values["curriculum_type"] == CurriculumType.CBC
        assert values["strand_scores"] == {"Reading": "PR"}
        assert values["cbc_performance_level"] == "PR"
        assert values["overridden_strand_scores"] == {"Reading": "EX"}
        assert "score" not in values

        restored = grade_from_row(GradeRow(**values))
        assert restored.model_dump() == grade.model_dump()

    def test_igcse_row_without_weights_uses_defaults(self):
        values = grade_to_row_values(IGCSEGrade(coursework_score=70, exam_score=65, **_ids()))
        values.update(coursework_weight=None, exam_weight=None)
        restored = grade_from_row(GradeRow(**values))
        assert (restored.coursework_weight, restored.exam_weight) == (30.0, 70.0)
        assert restored.exam_score == 65

    def test_standard_override_kept_beside_original(self):
        grade = StandardGrade(score=48, percentage=48.0, letter_grade="C",
                              overridden_score=52, overridden_percentage=52.0,
                              overridden_letter_grade="C+", **_ids())
        restored = grade_from_row(GradeRow(**grade_to_row_values(grade)))
        assert restored.score == 48
        assert restored.overridden_score == 52
        assert restored.letter_grade == "C"
        assert restored.overridden_letter_grade == "C+"
