"""
Tests for services/curriculum.py: class curriculum resolution, competencies and boundaries.
"""

import uuid

import pytest

from gradebook.exceptions import ValidationError
from gradebook.models.all_models import Competency, CurriculumType
from gradebook.services.calculators import DEFAULT_IGCSE_BOUNDARIES
from gradebook.services.curriculum import (
    DEFAULT_STRANDS,
    get_competencies,
    load_grade_boundaries,
    normalize_curriculum,
    required_strands,
    resolve_curriculum,
    save_grade_boundaries,
)


class TestNormalize:

    @pytest.mark.parametrize("raw,expected", [
        ("cbc", CurriculumType.CBC), (" CBC ", CurriculumType.CBC), ("IGCSE", CurriculumType.IGCSE),
        ("Standard", CurriculumType.STANDARD), ("british", None), (None, None), ("", None),
    ])
    def test_values(self, raw, expected):
        assert normalize_curriculum(raw) == expected


class TestResolveCurriculum:

    def test_configured_types(self, db, school):
        assert resolve_curriculum(db, school.classes["standard"]).curriculum_type == CurriculumType.STANDARD
        cbc = resolve_curriculum(db, school.classes["cbc"])
        assert cbc.curriculum_type == CurriculumType.CBC
        assert cbc.warning is None

    def test_legacy_column_is_read(self, db, school):
        assert resolve_curriculum(db, school.classes["igcse"]).curriculum_type == CurriculumType.IGCSE

    def test_no_class_id(self, db):
        resolution = resolve_curriculum(db, None)
        assert resolution.curriculum_type == CurriculumType.STANDARD
        assert resolution.warning is None

    def test_unknown_class(self, db, school):
        resolution = resolve_curriculum(db, uuid.uuid4())
        assert resolution.curriculum_type == CurriculumType.STANDARD
        assert resolution.warning == "class not found"

    def test_unassigned_class(self, db, school):
        resolution = resolve_curriculum(db, school.classes["unset"])
        assert resolution.curriculum_type == CurriculumType.STANDARD
        assert resolution.warning == "no curriculum assigned"

    def test_invalid_value_names_what_was_found(self, db, school):
        resolution = resolve_curriculum(db, school.classes["invalid"])
        assert resolution.curriculum_type == CurriculumType.STANDARD
        assert resolution.warning.startswith("invalid curriculum type: got 'british'")
        assert "standard, cbc, igcse" in resolution.warning


class TestCompetencies:

    def test_default_competency(self, db, school):
        competencies = get_competencies(db, school.subjects["science"], school.classes["cbc"])
        assert len(competencies) == 1
        assert competencies[0].is_default
        assert competencies[0].strands == DEFAULT_STRANDS

    def test_class_specific_before_subject_wide(self, db, school):
        subject_id = school.subjects["english"]
        db.add_all([
            Competency(school_id=school.id, subject_id=subject_id, competency_name="Literacy",
                       strands=["Reading", "Writing"]),
            Competency(school_id=school.id, subject_id=subject_id, class_id=school.classes["cbc"],
                       competency_name="Oral Skills", strands=["Listening", "Speaking"]),
        ])
        db.commit()

        assert required_strands(db, subject_id, school.classes["cbc"]) == ["Listening", "Speaking"]
        assert required_strands(db, subject_id, school.classes["standard"]) == ["Reading", "Writing"]

    def test_strands_deduplicated_in_order(self, db, school):
        subject_id = school.subjects["math"]
        db.add(Competency(school_id=school.id, subject_id=subject_id, competency_name="Numbers",
                          strands=["Counting", "Estimation"]))
        db.commit()
        db.add(Competency(school_id=school.id, subject_id=subject_id, competency_name="Measurement",
                          strands=["Estimation", "Units"]))
        db.commit()
        assert required_strands(db, subject_id) == ["Counting", "Estimation", "Units"]


class TestGradeBoundaries:

    def test_default_table(self, db, school):
        boundary_set = load_grade_boundaries(db, school.subjects["math"])
        assert boundary_set.is_default
        assert boundary_set.boundaries == DEFAULT_IGCSE_BOUNDARIES

    def test_save_and_load(self, db, school):
        table = {"A*": 85, "A": 75, "B": 65, "C": 55, "D": 45, "E": 35, "F": 25, "G": 15, "U": 0}
        save_grade_boundaries(db, school.subjects["math"], table)
        boundary_set = load_grade_boundaries(db, school.subjects["math"])
        assert not boundary_set.is_default
        assert boundary_set.boundaries["A*"] == 85.0

    def test_invalid_table_not_stored(self, db, school):
        with pytest.raises(ValidationError):
            save_grade_boundaries(db, school.subjects["math"], {"A*": 70, "A": 80})
        assert load_grade_boundaries(db, school.subjects["math"]).is_default
