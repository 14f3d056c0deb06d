"""
Tests for services/calculators.py: letter grades, IGCSE weighting, CBC levels.
"""

import itertools
import uuid

import pytest

from gradebook.exceptions import ValidationError
from gradebook.models.all_models import PerformanceLevel
from gradebook.schemas.grades_schemas import CBCGrade, IGCSEGrade, StandardGrade
from gradebook.services.calculators import (
    DEFAULT_IGCSE_BOUNDARIES,
    STANDARD_GRADE_BANDS,
    cbc_aggregate_level,
    cbc_average,
    compute_grade,
    effective_score,
    igcse_letter_grade,
    igcse_total,
    is_complete,
    missing_fields,
    standard_letter_grade,
    validate_grade_boundaries,
    validate_weights,
)

EM, AP, PR, EX = PerformanceLevel.EM, PerformanceLevel.AP, PerformanceLevel.PR, PerformanceLevel.EX


def _ids():
    return dict(student_id=uuid.uuid4(), subject_id=uuid.uuid4(), class_id=uuid.uuid4(),
                term="term1", exam_type="endterm")


class TestStandardLetterGrade:

    @pytest.mark.parametrize("score,letter", [
        (100, "A+"), (90, "A+"), (89.99, "A"), (80, "A"), (70, "B+"), (60, "B"),
        (50, "C+"), (40, "C"), (30, "D+"), (20, "D"), (19.99, "E"), (0, "E"),
    ])
    def test_ladder(self, score, letter):
        assert standard_letter_grade(score) == letter

    def test_non_increasing_as_score_drops(self):
        order = [letter for _, letter in STANDARD_GRADE_BANDS]
        previous_rank = 0
        for tenths in range(1000, -1, -1):
            rank = order.index(standard_letter_grade(tenths / 10))
            assert rank >= previous_rank
            previous_rank = rank

    def test_total_over_range(self):
        letters = {letter for _, letter in STANDARD_GRADE_BANDS}
        for score in range(0, 101):
            assert standard_letter_grade(score) in letters


class TestIGCSE:

    def test_weighted_total_example(self):
        total = igcse_total(80, 60, 30, 70)
        assert total == 66.0
        assert igcse_letter_grade(total) == "C"

    @pytest.mark.parametrize("coursework,exam,weights", [
        (0, 0, (30, 70)), (100, 100, (30, 70)), (55, 72, (40, 60)), (13, 99, (0, 100)),
    ])
    def test_total_matches_formula(self, coursework, exam, weights):
        w1, w2 = weights
        assert igcse_total(coursework, exam, w1, w2) == coursework * w1 / 100 + exam * w2 / 100

    def test_default_table_letters(self):
        assert igcse_letter_grade(95) == "A*"
        assert igcse_letter_grade(90) == "A*"
        assert igcse_letter_grade(89.5) == "A"
        assert igcse_letter_grade(20) == "G"
        assert igcse_letter_grade(19) == "U"

    def test_below_every_boundary_is_u(self):
        assert igcse_letter_grade(50, {"A": 80, "B": 70}) == "U"

    def test_boundaries_are_scanned_highest_first(self):
        unsorted = {"C": 40, "A*": 85, "B": 55, "A": 70}
        assert igcse_letter_grade(72, unsorted) == "A"
        assert igcse_letter_grade(56, unsorted) == "B"

    def test_weights_must_sum_to_100(self):
        validate_weights(30, 70)
        with pytest.raises(ValidationError):
            validate_weights(40, 70)

    def test_validate_boundaries_accepts_default(self):
        assert validate_grade_boundaries(DEFAULT_IGCSE_BOUNDARIES) == DEFAULT_IGCSE_BOUNDARIES

    def test_validate_boundaries_rejects_non_decreasing(self):
        with pytest.raises(ValidationError) as exc:
            validate_grade_boundaries({"A*": 90, "A": 92, "B": 70})
        assert any("A (92)" in message for message in exc.value.errors["boundaries"])

    def test_validate_boundaries_rejects_unknown_letters_and_range(self):
        with pytest.raises(ValidationError) as exc:
            validate_grade_boundaries({"A+": 95, "A": 120})
        messages = " ".join(exc.value.errors["boundaries"])
        assert "A+" in messages
        assert "outside 0-100" in messages

    def test_partial_entry_has_no_total(self):
        grade = compute_grade(IGCSEGrade(coursework_score=80, **_ids()))
        assert grade.total_score is None
        assert grade.letter_grade is None
        assert missing_fields(grade) == ["exam_score"]

    def test_compute_uses_subject_boundaries(self):
        grade = compute_grade(IGCSEGrade(coursework_score=80, exam_score=60, **_ids()),
                              {"A*": 95, "A": 85, "B": 65, "C": 50, "U": 0})
        assert grade.total_score == 66.0
        assert grade.percentage == 66.0
        assert grade.letter_grade == "B"


class TestCBC:

    def test_average_then_bucket(self):
        assert cbc_average({"S1": PR, "S2": EX}) == 3.5
        assert cbc_aggregate_level({"S1": PR, "S2": EX}) == EX

    @pytest.mark.parametrize("levels,expected", [
        ([EM], EM), ([AP], AP), ([PR], PR), ([EX], EX),
        ([EM, AP], AP), ([AP, AP, PR], AP), ([PR, PR, EX], PR), ([EM, EM, EM, AP], EM),
    ])
    def test_buckets(self, levels, expected):
        strands = {f"S{i}": level for i, level in enumerate(levels)}
        assert cbc_aggregate_level(strands) == expected

    def test_order_does_not_matter(self):
        entries = [("Reading", AP), ("Writing", EX), ("Speaking", PR), ("Grammar", EM)]
        results = {cbc_aggregate_level(dict(p)) for p in itertools.permutations(entries)}
        assert len(results) == 1

    def test_empty_is_emerging(self):
        assert cbc_aggregate_level({}) == EM

    def test_empty_values_are_ignored(self):
        assert cbc_aggregate_level({"S1": EX, "S2": None}) == EX

    def test_completeness_uses_required_strands(self):
        grade = compute_grade(CBCGrade(strand_scores={"Communication": "EX", "Application": "PR"}, **_ids()))
        required = ["Communication", "Problem Solving", "Application", "Understanding"]
        assert grade.performance_level == EX
        assert missing_fields(grade, required) == ["strand_scores.Problem Solving", "strand_scores.Understanding"]
        assert not is_complete(grade, required)

    def test_single_strand_override_keeps_other_strands(self):
        strands = {"Communication": "AP", "Problem Solving": "AP", "Application": "EM", "Understanding": "AP"}
        grade = compute_grade(CBCGrade(strand_scores=strands, overridden_strand_scores={"Application": "EX"},
                                       **_ids()))
        assert grade.performance_level == AP
        assert grade.overridden_performance_level == PR


class TestStandardCompute:

    def test_percentage_from_max_score(self):
        grade = compute_grade(StandardGrade(score=45, max_score=50, **_ids()))
        assert grade.percentage == 90.0
        assert grade.letter_grade == "A+"

    def test_missing_score_is_incomplete_not_zero(self):
        grade = compute_grade(StandardGrade(**_ids()))
        assert grade.percentage is None
        assert grade.letter_grade is None
        assert missing_fields(grade) == ["score"]

    def test_absent_is_complete_without_score(self):
        grade = compute_grade(StandardGrade(is_absent=True, **_ids()))
        assert is_complete(grade)
        assert effective_score(grade) is None

    def test_override_fields_are_derived_separately(self):
        grade = compute_grade(StandardGrade(score=55, overridden_score=82, **_ids()))
        assert grade.letter_grade == "C+"
        assert grade.overridden_letter_grade == "A"
        assert effective_score(grade) == 82

