"""
Shared fixtures: an in-memory SQLite store seeded with one school, classes
for each curriculum, subjects, students and the actors that act on them.
"""

import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gradebook.models.all_models import Base, Class, Student, Subject, UserRole
from gradebook.schemas.grades_schemas import CBCGrade, IGCSEGrade, StandardGrade
from gradebook.schemas.workflow_schemas import Actor
from gradebook.services.workflow import GradeWorkflowService

TERM = "term1"
EXAM = "midterm"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def school(db):
    school_id = uuid.uuid4()
    classes = {
        "standard": Class(school_id=school_id, name="Grade 8 East", curriculum_type="Standard"),
        "cbc": Class(school_id=school_id, name="Grade 4 West", curriculum_type=" CBC "),
        "igcse": Class(school_id=school_id, name="Year 10", curriculum="IGCSE"),
        "unset": Class(school_id=school_id, name="Unassigned"),
        "invalid": Class(school_id=school_id, name="Legacy", curriculum_type="british"),
    }
    subjects = {
        "math": Subject(school_id=school_id, name="Mathematics", code="MAT"),
        "english": Subject(school_id=school_id, name="English", code="ENG"),
        "science": Subject(school_id=school_id, name="Science", code="SCI"),
    }
    db.add_all(list(classes.values()) + list(subjects.values()))
    db.flush()

    students = [
        Student(school_id=school_id, class_id=class_.id, name=f"{key} student {n}", admission_number=f"{key[:2]}{n}")
        for key, class_ in classes.items() if key in ("standard", "cbc", "igcse")
        for n in range(1, 4)
    ]
    db.add_all(students)
    db.commit()

    by_class = {}
    for student in students:
        by_class.setdefault(student.class_id, []).append(student.id)

    return SimpleNamespace(
        id=school_id,
        classes={key: class_.id for key, class_ in classes.items()},
        subjects={key: subject.id for key, subject in subjects.items()},
        students={key: by_class.get(class_.id, []) for key, class_ in classes.items()},
    )


@pytest.fixture
def teacher(school):
    return Actor(id=uuid.uuid4(), role=UserRole.TEACHER, school_id=school.id)


@pytest.fixture
def other_teacher(school):
    return Actor(id=uuid.uuid4(), role=UserRole.TEACHER, school_id=school.id)


@pytest.fixture
def principal(school):
    return Actor(id=uuid.uuid4(), role=UserRole.PRINCIPAL, school_id=school.id)


@pytest.fixture
def parent(school):
    return Actor(id=uuid.uuid4(), role=UserRole.PARENT, school_id=school.id)


@pytest.fixture
def service(db):
    return GradeWorkflowService(db)


@pytest.fixture
def standard_grade(school):
    """Factory for Standard grades in the standard class."""
    def make(student=0, subject="math", **values):
        return StandardGrade(
            student_id=school.students["standard"][student],
            subject_id=school.subjects[subject],
            class_id=school.classes["standard"],
            term=TERM,
            exam_type=EXAM,
            **values,
        )
    return make


@pytest.fixture
def cbc_grade(school):
    def make(student=0, subject="science", **values):
        return CBCGrade(
            student_id=school.students["cbc"][student],
            subject_id=school.subjects[subject],
            class_id=school.classes["cbc"],
            term=TERM,
            exam_type=EXAM,
            **values,
        )
    return make


@pytest.fixture
def igcse_grade(school):
    def make(student=0, subject="math", **values):
        return IGCSEGrade(
            student_id=school.students["igcse"][student],
            subject_id=school.subjects[subject],
            class_id=school.classes["igcse"],
            term=TERM,
            exam_type=EXAM,
            **values,
        )
    return make
