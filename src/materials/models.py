"""Read models for courses and their materials.

Cassandra table definitions for:
- Materials: content items belonging to a course
- Courses: course header with the owning lecturer
- Course students: enrollment set per course
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

MATERIALS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.materials (
    id UUID PRIMARY KEY,
    course_id UUID,
    title TEXT,
    material_type TEXT,
    created_at TIMESTAMP
)
"""

COURSES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.courses (
    id UUID PRIMARY KEY,
    title TEXT,
    lecturer_id UUID,
    created_at TIMESTAMP
)
"""

# Enrollment set - partitioned by course for "is X enrolled in C?" lookups
COURSE_STUDENTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_students (
    course_id UUID,
    student_id UUID,
    enrolled_at TIMESTAMP,
    PRIMARY KEY ((course_id), student_id)
)
"""

MATERIALS_TABLES_CQL = [
    MATERIALS_TABLE_CQL,
    COURSES_TABLE_CQL,
    COURSE_STUDENTS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Material:
    """Course material (document, video, ...). Content is stored elsewhere."""

    def __init__(
        self,
        id: UUID,
        course_id: UUID,
        title: str = "",
        material_type: str | None = None,
        created_at: datetime | None = None,
    ):
        self.id = id
        self.course_id = course_id
        self.title = title
        self.material_type = material_type
        self.created_at = ensure_utc_aware(created_at)

    @classmethod
    def from_row(cls, row: Any) -> "Material":
        """Create Material instance from Cassandra row."""
        return cls(
            id=row.id,
            course_id=row.course_id,
            title=row.title or "",
            material_type=row.material_type,
            created_at=row.created_at,
        )

    def __repr__(self) -> str:
        return f"<Material {self.id} course={self.course_id}>"


class Course:
    """Course header: who lectures it."""

    def __init__(
        self,
        id: UUID,
        lecturer_id: UUID | None,
        title: str = "",
        created_at: datetime | None = None,
    ):
        self.id = id
        self.lecturer_id = lecturer_id
        self.title = title
        self.created_at = ensure_utc_aware(created_at)

    @classmethod
    def from_row(cls, row: Any) -> "Course":
        """Create Course instance from Cassandra row."""
        return cls(
            id=row.id,
            lecturer_id=row.lecturer_id,
            title=row.title or "",
            created_at=row.created_at,
        )

    def is_lecturer(self, user_id: UUID) -> bool:
        return self.lecturer_id is not None and str(self.lecturer_id) == str(user_id)

    def __repr__(self) -> str:
        return f"<Course {self.id} lecturer={self.lecturer_id}>"
