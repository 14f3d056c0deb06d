from sqlalchemy import Column, String, Integer, Float, DateTime, Boolean, Text, ForeignKey, Enum as SQLEnum, JSON, UniqueConstraint, Uuid
from sqlalchemy.orm import declarative_base, relationship
from enum import Enum
import uuid

from gradebook.utils.system_utils import now

Base = declarative_base()


def _enum_column_type(enum_cls):
    # Store the lowercase values the hosted backend uses, not the member names
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


# Enum Classes
class UserRole(str, Enum):
    ADMIN = "admin"
    PRINCIPAL = "principal"
    TEACHER = "teacher"
    SCHOOL_OWNER = "school_owner"
    PARENT = "parent"

class CurriculumType(str, Enum):
    STANDARD = "standard"
    CBC = "cbc"
    IGCSE = "igcse"

class GradeStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    RELEASED = "released"

class PerformanceLevel(str, Enum):
    EM = "EM"  # Emerging
    AP = "AP"  # Approaching Proficiency
    PR = "PR"  # Proficient
    EX = "EX"  # Exemplary

class AuditAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    OVERRIDE = "override"
    RELEASE = "release"
    REOPEN = "reopen"


# Model Classes
class Class(Base):
    __tablename__ = "classes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    name = Column(String(50), nullable=False)
    academic_year = Column(String(9))
    # Free text on purpose: legacy rows hold values such as "CBC " or "british"
    curriculum_type = Column(String(50))
    curriculum = Column(String(50))
    is_active = Column(Boolean, default=True)

    students = relationship("Student", back_populates="class_")


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    code = Column(String(10))


class Student(Base):
    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    class_id = Column(Uuid, ForeignKey("classes.id"))
    name = Column(String(100), nullable=False)
    admission_number = Column(String(20))
    is_active = Column(Boolean, default=True)

    class_ = relationship("Class", back_populates="students")


class Competency(Base):
    """CBC competency with its ordered strands for one subject/class."""
    __tablename__ = "competencies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, index=True)
    subject_id = Column(Uuid, ForeignKey("subjects.id"), nullable=False)
    class_id = Column(Uuid, ForeignKey("classes.id"))
    competency_name = Column(String(100), nullable=False)
    strands = Column(JSON, nullable=False, default=list)
    assessment_types = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), default=now)


class GradeBoundary(Base):
    """Per-subject IGCSE boundary table, stored as {letter: minimum percentage}."""
    __tablename__ = "grade_boundaries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_id = Column(Uuid, ForeignKey("subjects.id"), unique=True, nullable=False)
    boundaries = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=now, onupdate=now)


class GradeSubmissionBatch(Base):
    __tablename__ = "grade_submission_batches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False)
    class_id = Column(Uuid, ForeignKey("classes.id"), nullable=False)
    term = Column(String(20), nullable=False)
    exam_type = Column(String(30), nullable=False)
    curriculum_type = Column(_enum_column_type(CurriculumType), nullable=False, default=CurriculumType.STANDARD)
    submitted_by = Column(Uuid, nullable=False)
    total_students = Column(Integer, default=0)
    grades_entered = Column(Integer, default=0)
    status = Column(_enum_column_type(GradeStatus), nullable=False, default=GradeStatus.DRAFT)
    submitted_at = Column(DateTime(timezone=True))
    reviewed_at = Column(DateTime(timezone=True))
    reviewed_by = Column(Uuid)
    principal_notes = Column(Text)
    created_at = Column(DateTime(timezone=True), default=now)
    updated_at = Column(DateTime(timezone=True), default=now, onupdate=now)

    __table_args__ = (
        UniqueConstraint('school_id', 'class_id', 'term', 'exam_type', 'submitted_by',
                         name='unique_grade_submission_batch'),
    )
    grades = relationship("Grade", back_populates="batch")


class Grade(Base):
    """
    One student/subject/term/exam grade.

    The table is wide: the columns of every curriculum variant live side by side
    and ``curriculum_type`` says which of them are meaningful. The overridden_*
    columns are written only by principal overrides and are never merged back
    into the teacher-entered ones.
    """
    __tablename__ = "grades"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_id = Column(Uuid, nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=False)
    subject_id = Column(Uuid, ForeignKey("subjects.id"), nullable=False)
    class_id = Column(Uuid, ForeignKey("classes.id"), nullable=False)
    term = Column(String(20), nullable=False)
    exam_type = Column(String(30), nullable=False)
    curriculum_type = Column(_enum_column_type(CurriculumType), nullable=False)
    status = Column(_enum_column_type(GradeStatus), nullable=False, default=GradeStatus.DRAFT, index=True)
    comments = Column(Text)

    # Standard
    score = Column(Float)
    max_score = Column(Float, default=100)
    is_absent = Column(Boolean, default=False)
    # Standard and IGCSE
    percentage = Column(Float)
    letter_grade = Column(String(3))

    # CBC
    strand_scores = Column(JSON)
    cbc_performance_level = Column(String(2))
    teacher_remarks = Column(Text)

    # IGCSE
    coursework_score = Column(Float)
    exam_score = Column(Float)
    coursework_weight = Column(Float)
    exam_weight = Column(Float)
    total_score = Column(Float)

    # Principal overrides
    overridden_score = Column(Float)
    overridden_percentage = Column(Float)
    overridden_letter_grade = Column(String(3))
    overridden_strand_scores = Column(JSON)
    overridden_performance_level = Column(String(2))
    overridden_coursework_score = Column(Float)
    overridden_exam_score = Column(Float)
    overridden_total_score = Column(Float)
    overridden_by = Column(Uuid)
    overridden_at = Column(DateTime(timezone=True))
    override_reason = Column(Text)

    # Workflow stamps
    submitted_by = Column(Uuid, nullable=False)
    submitted_at = Column(DateTime(timezone=True))
    approved_by = Column(Uuid)
    approved_at = Column(DateTime(timezone=True))
    rejected_reason = Column(Text)
    released_by = Column(Uuid)
    released_at = Column(DateTime(timezone=True))
    principal_notes = Column(Text)

    batch_id = Column(Uuid, ForeignKey("grade_submission_batches.id"))
    created_at = Column(DateTime(timezone=True), default=now)
    updated_at = Column(DateTime(timezone=True), default=now, onupdate=now)

    # Conflict target for per-submission upserts
    __table_args__ = (
        UniqueConstraint('school_id', 'student_id', 'subject_id', 'class_id', 'term', 'exam_type',
                         'submitted_by', name='unique_grade_submission'),
    )
    batch = relationship("GradeSubmissionBatch", back_populates="grades")
    audit_logs = relationship("GradeAuditLog", back_populates="grade")


class GradeAuditLog(Base):
    """Append-only trail; one row per grade per workflow action."""
    __tablename__ = "grade_audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    grade_id = Column(Uuid, ForeignKey("grades.id"), nullable=False, index=True)
    school_id = Column(Uuid)
    actor_id = Column(Uuid, nullable=False)
    actor_role = Column(String(20), nullable=False)
    action = Column(_enum_column_type(AuditAction), nullable=False)
    old_values = Column(JSON)
    new_values = Column(JSON)
    reason = Column(Text)
    created_at = Column(DateTime(timezone=True), default=now)

    grade = relationship("Grade", back_populates="audit_logs")
