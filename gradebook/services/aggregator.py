"""
Per-student roll-ups and class ranking for Standard grade sheets.
"""

from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from gradebook.config import settings
from gradebook.schemas.grades_schemas import ClassStatistics, StandardGrade, IGCSEGrade, StudentSummary
from gradebook.services.calculators import calculate_percentage, effective_score, standard_letter_grade

GradeKey = Tuple[UUID, UUID]
GradeMap = Dict[GradeKey, object]

POINTS_PER_SUBJECT = 100


# Grade maps keyed by (student_id, subject_id). Updates return new maps.

def build_grade_map(grades: Iterable) -> GradeMap:
    return {grade.key: grade for grade in grades}


def with_grade(grades: Mapping[GradeKey, object], grade) -> GradeMap:
    updated = dict(grades)
    updated[grade.key] = grade
    return updated


def without_grade(grades: Mapping[GradeKey, object], student_id: UUID, subject_id: UUID) -> GradeMap:
    return {key: grade for key, grade in grades.items() if key != (student_id, subject_id)}


def aggregate_student(student_id: UUID, subject_ids: Iterable[UUID], grades: Mapping[GradeKey, object]) -> StudentSummary:
    """
    Totals for one student on a 100-point scale per subject. Scores are taken
    as percentages of each grade's max_score; absent and empty subjects are
    left out rather than counted as zero.
    """
    total_score = 0.0
    subject_count = 0
    for subject_id in subject_ids:
        grade = grades.get((student_id, subject_id))
        if grade is None:
            continue
        score = _effective_percentage(grade)
        if score is None or score <= 0:
            continue
        total_score += score
        subject_count += 1

    total_possible = POINTS_PER_SUBJECT * subject_count
    percentage = total_score / total_possible * 100 if total_possible else 0.0
    average_score = total_score / subject_count if subject_count else 0.0

    return StudentSummary(
        student_id=student_id,
        total_score=total_score,
        total_possible=total_possible,
        percentage=round(percentage, 2),
        average_score=round(average_score, 2),
        subject_count=subject_count,
        letter_grade=standard_letter_grade(average_score) if average_score > 0 else None,
    )


def rank_students(totals: Mapping[Hashable, float]) -> Dict[Hashable, int]:
    """
    Competition ranking on total score: ties share a position and the next
    distinct score takes its 1-indexed place in the sorted order
    (90, 90, 80 -> 1, 1, 3). Students with no score get position 0.
    """
    positions = {student: 0 for student in totals}
    ranked = sorted(
        ((student, total) for student, total in totals.items() if total > 0),
        key=lambda item: item[1],
        reverse=True,
    )
    previous_total = None
    previous_position = 0
    for index, (student, total) in enumerate(ranked, start=1):
        position = previous_position if total == previous_total else index
        positions[student] = position
        previous_total, previous_position = total, position
    return positions


def summarize_class(student_ids: Iterable[UUID], subject_ids: Iterable[UUID],
                    grades: Mapping[GradeKey, object]) -> List[StudentSummary]:
    """Summaries for every student, ranked first and unranked students last."""
    subject_ids = list(subject_ids)
    summaries = [aggregate_student(student_id, subject_ids, grades) for student_id in student_ids]
    positions = rank_students({s.student_id: s.total_score for s in summaries})
    for summary in summaries:
        summary.position = positions[summary.student_id]
    return sorted(summaries, key=lambda s: (s.position == 0, s.position))


def _effective_percentage(grade) -> Optional[float]:
    if isinstance(grade, StandardGrade):
        return calculate_percentage(effective_score(grade), grade.max_score)
    if isinstance(grade, IGCSEGrade):
        if grade.overridden_percentage is not None:
            return grade.overridden_percentage
        return grade.percentage
    return None


def class_statistics(grades: Iterable, pass_mark: Optional[float] = None) -> ClassStatistics:
    """Average, spread and pass rate over the numeric grades of a sheet."""
    pass_mark = settings.PASS_MARK if pass_mark is None else pass_mark
    percentages = [p for p in (_effective_percentage(g) for g in grades) if p is not None]
    if not percentages:
        return ClassStatistics()

    passed = len([p for p in percentages if p >= pass_mark])
    return ClassStatistics(
        count=len(percentages),
        average=round(sum(percentages) / len(percentages), 2),
        highest=round(max(percentages), 2),
        lowest=round(min(percentages), 2),
        pass_rate=round(passed / len(percentages) * 100, 2),
    )
