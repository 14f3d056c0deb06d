"""
calculators.py - Curriculum-aware score calculators.

Pure, synchronous helpers that derive percentages, letter grades and CBC
performance levels from teacher- or principal-entered values. Input ranges
are enforced by the grade schemas before values get here.

  Standard  numeric score -> A+ ... E ladder
  IGCSE     coursework + exam, weighted -> A* ... U via boundary table
  CBC       strand levels EM/AP/PR/EX -> averaged -> one overall level
"""

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from gradebook.exceptions import ValidationError
from gradebook.models.all_models import PerformanceLevel
from gradebook.schemas.grades_schemas import CBCGrade, IGCSEGrade, IGCSE_LETTERS, StandardGrade


# Standard ladder (min_score, letter), ordered high to low.
STANDARD_GRADE_BANDS: List[Tuple[float, str]] = [
    (90.0, "A+"),
    (80.0, "A"),
    (70.0, "B+"),
    (60.0, "B"),
    (50.0, "C+"),
    (40.0, "C"),
    (30.0, "D+"),
    (20.0, "D"),
    (0.0, "E"),
]

DEFAULT_IGCSE_BOUNDARIES: Dict[str, float] = {
    "A*": 90.0,
    "A": 80.0,
    "B": 70.0,
    "C": 60.0,
    "D": 50.0,
    "E": 40.0,
    "F": 30.0,
    "G": 20.0,
    "U": 0.0,
}

PERFORMANCE_LEVEL_VALUES: Dict[PerformanceLevel, int] = {
    PerformanceLevel.EM: 1,
    PerformanceLevel.AP: 2,
    PerformanceLevel.PR: 3,
    PerformanceLevel.EX: 4,
}

# (min_average, level), ordered high to low.
CBC_LEVEL_BANDS: List[Tuple[float, PerformanceLevel]] = [
    (3.5, PerformanceLevel.EX),
    (2.5, PerformanceLevel.PR),
    (1.5, PerformanceLevel.AP),
]


# ---------------------------------------------------------------------------
# Standard
# ---------------------------------------------------------------------------

def standard_letter_grade(score: float) -> str:
    """Letter grade for a 0-100 score."""
    for min_score, letter in STANDARD_GRADE_BANDS:
        if score >= min_score:
            return letter
    return STANDARD_GRADE_BANDS[-1][1]


def calculate_percentage(score: Optional[float], max_score: float = 100) -> Optional[float]:
    if score is None or max_score <= 0:
        return None
    return round(score / max_score * 100, 2)


# ---------------------------------------------------------------------------
# IGCSE
# ---------------------------------------------------------------------------

def validate_weights(coursework_weight: float, exam_weight: float) -> None:
    if coursework_weight < 0 or exam_weight < 0:
        raise ValidationError("Coursework and exam weights must not be negative")
    if abs(coursework_weight + exam_weight - 100) > 1e-9:
        raise ValidationError(
            f"Coursework and exam weights must sum to 100 (got {coursework_weight:g} + {exam_weight:g})"
        )


def validate_grade_boundaries(boundaries: Mapping[str, float]) -> Dict[str, float]:
    """
    Check a boundary table before it is stored or used.

    Letters must be IGCSE letters, thresholds must lie in [0, 100] and must
    strictly decrease from A* towards U. Returns a normalized copy.
    """
    if not boundaries:
        raise ValidationError("Grade boundaries must not be empty")

    errors: List[str] = []
    unknown = [letter for letter in boundaries if letter not in IGCSE_LETTERS]
    if unknown:
        errors.append(f"Unknown letter grades: {', '.join(sorted(unknown))}")

    normalized: Dict[str, float] = {}
    for letter in IGCSE_LETTERS:
        if letter not in boundaries:
            continue
        try:
            value = float(boundaries[letter])
        except (TypeError, ValueError):
            errors.append(f"{letter}: threshold must be a number")
            continue
        if not 0 <= value <= 100:
            errors.append(f"{letter}: threshold {value:g} outside 0-100")
        normalized[letter] = value

    ordered = list(normalized.items())
    for (higher, high_value), (lower, low_value) in zip(ordered, ordered[1:]):
        if low_value >= high_value:
            errors.append(f"{lower} ({low_value:g}) must be below {higher} ({high_value:g})")

    if errors:
        raise ValidationError("Invalid grade boundaries", errors={"boundaries": errors})
    return normalized


def igcse_total(coursework: float, exam: float,
                coursework_weight: float = 30.0, exam_weight: float = 70.0) -> float:
    return coursework * coursework_weight / 100 + exam * exam_weight / 100


def igcse_letter_grade(percentage: float, boundaries: Optional[Mapping[str, float]] = None) -> str:
    """Highest letter whose threshold the percentage meets; U when none does."""
    table = boundaries or DEFAULT_IGCSE_BOUNDARIES
    for letter, minimum in sorted(table.items(), key=lambda item: item[1], reverse=True):
        if percentage >= minimum:
            return letter
    return "U"


# ---------------------------------------------------------------------------
# CBC
# ---------------------------------------------------------------------------

def cbc_average(strand_scores: Mapping[str, Optional[PerformanceLevel]]) -> float:
    values = [PERFORMANCE_LEVEL_VALUES[PerformanceLevel(level)]
              for level in strand_scores.values() if level]
    if not values:
        return 0.0
    return sum(values) / len(values)


def cbc_aggregate_level(strand_scores: Mapping[str, Optional[PerformanceLevel]]) -> PerformanceLevel:
    average = cbc_average(strand_scores)
    for min_average, level in CBC_LEVEL_BANDS:
        if average >= min_average:
            return level
    return PerformanceLevel.EM


# ---------------------------------------------------------------------------
# Whole-grade helpers
# ---------------------------------------------------------------------------

def _igcse_fields(coursework, exam, coursework_weight, exam_weight, boundaries):
    if coursework is None or exam is None:
        return None, None, None
    total = igcse_total(coursework, exam, coursework_weight, exam_weight)
    return total, total, igcse_letter_grade(total, boundaries)


def compute_grade(grade, boundaries: Optional[Mapping[str, float]] = None):
    """Return a copy of ``grade`` with every derived field recomputed."""
    if isinstance(grade, StandardGrade):
        update = {"percentage": None, "letter_grade": None,
                  "overridden_percentage": None, "overridden_letter_grade": None}
        if grade.score is not None and not grade.is_absent:
            update["percentage"] = calculate_percentage(grade.score, grade.max_score)
            update["letter_grade"] = standard_letter_grade(update["percentage"])
        if grade.overridden_score is not None:
            update["overridden_percentage"] = calculate_percentage(grade.overridden_score, grade.max_score)
            update["overridden_letter_grade"] = standard_letter_grade(update["overridden_percentage"])
        return grade.model_copy(update=update)

    if isinstance(grade, CBCGrade):
        update = {"performance_level": cbc_aggregate_level(grade.strand_scores)}
        if grade.overridden_strand_scores:
            # Partial overrides sit on top of the teacher's strands
            update["overridden_performance_level"] = cbc_aggregate_level(effective_strand_scores(grade))
        return grade.model_copy(update=update)

    if isinstance(grade, IGCSEGrade):
        validate_weights(grade.coursework_weight, grade.exam_weight)
        total, percentage, letter = _igcse_fields(
            grade.coursework_score, grade.exam_score,
            grade.coursework_weight, grade.exam_weight, boundaries,
        )
        update = {"total_score": total, "percentage": percentage, "letter_grade": letter,
                  "overridden_total_score": None, "overridden_percentage": None,
                  "overridden_letter_grade": None}
        if grade.overridden_coursework_score is not None or grade.overridden_exam_score is not None:
            coursework = _first_set(grade.overridden_coursework_score, grade.coursework_score)
            exam = _first_set(grade.overridden_exam_score, grade.exam_score)
            total, percentage, letter = _igcse_fields(
                coursework, exam, grade.coursework_weight, grade.exam_weight, boundaries,
            )
            update.update({"overridden_total_score": total, "overridden_percentage": percentage,
                           "overridden_letter_grade": letter})
        return grade.model_copy(update=update)

    raise TypeError(f"Unsupported grade type: {type(grade).__name__}")


def _first_set(*values):
    for value in values:
        if value is not None:
            return value
    return None


def missing_fields(grade, required_strands: Iterable[str] = ()) -> List[str]:
    """Names of the fields that keep ``grade`` from being complete."""
    if isinstance(grade, StandardGrade):
        if grade.is_absent or _first_set(grade.overridden_score, grade.score) is not None:
            return []
        return ["score"]

    if isinstance(grade, CBCGrade):
        present = set(effective_strand_scores(grade))
        required = list(required_strands)
        if not required:
            return [] if present else ["strand_scores"]
        return [f"strand_scores.{strand}" for strand in required if strand not in present]

    if isinstance(grade, IGCSEGrade):
        missing = []
        if _first_set(grade.overridden_coursework_score, grade.coursework_score) is None:
            missing.append("coursework_score")
        if _first_set(grade.overridden_exam_score, grade.exam_score) is None:
            missing.append("exam_score")
        return missing

    raise TypeError(f"Unsupported grade type: {type(grade).__name__}")


def is_complete(grade, required_strands: Iterable[str] = ()) -> bool:
    return not missing_fields(grade, required_strands)


# Effective values: principal overrides win over teacher entries

def effective_score(grade) -> Optional[float]:
    if isinstance(grade, StandardGrade):
        if grade.is_absent:
            return None
        return _first_set(grade.overridden_score, grade.score)
    if isinstance(grade, IGCSEGrade):
        return _first_set(grade.overridden_total_score, grade.total_score)
    return None


def effective_letter_grade(grade) -> Optional[str]:
    if isinstance(grade, (StandardGrade, IGCSEGrade)):
        return _first_set(grade.overridden_letter_grade, grade.letter_grade)
    return None


def effective_strand_scores(grade: CBCGrade) -> Dict[str, PerformanceLevel]:
    merged = dict(grade.strand_scores)
    merged.update(grade.overridden_strand_scores or {})
    return merged


def effective_performance_level(grade: CBCGrade) -> Optional[PerformanceLevel]:
    return _first_set(grade.overridden_performance_level, grade.performance_level)
