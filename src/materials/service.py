"""Material lookup service.

Answers the two questions the reading endpoints need before touching
progress: does this material exist, and may this caller read it.
"""

from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from src.auth.permissions import is_admin

from .models import Course, Material


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)


class MaterialService:
    """Read-only access to materials, courses and enrollments."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_material = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.materials WHERE id = ?"
        )
        self._get_course = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.courses WHERE id = ?"
        )
        self._get_enrollment = self.session.prepare(f"""
            SELECT student_id FROM {self.keyspace}.course_students
            WHERE course_id = ? AND student_id = ?
        """)

    async def get_material(self, material_id: UUID) -> Material | None:
        """Get material by ID."""
        result = await self.session.aexecute(self._get_material, [material_id])
        row = result.one()
        return Material.from_row(row) if row else None

    async def get_course(self, course_id: UUID) -> Course | None:
        """Get course header by ID."""
        result = await self.session.aexecute(self._get_course, [course_id])
        row = result.one()
        return Course.from_row(row) if row else None

    async def is_enrolled(self, course_id: UUID, student_id: UUID) -> bool:
        """Check whether a student is enrolled in a course."""
        result = await self.session.aexecute(
            self._get_enrollment, [course_id, student_id]
        )
        return result.one() is not None

    async def can_access_course(
        self, course_id: UUID, user_id: UUID, role: str
    ) -> bool:
        """Check if a caller may read a course's materials.

        Access hierarchy:
        1. Admin: Always has access
        2. Lecturer of the course
        3. Student enrolled in the course
        """
        if is_admin(role):
            return True

        course = await self.get_course(course_id)
        if course is None:
            logger.warning("course_missing", course_id=str(course_id))
            return False

        if course.is_lecturer(user_id):
            return True

        return await self.is_enrolled(course.id, user_id)

    async def can_access(self, material: Material, user_id: UUID, role: str) -> bool:
        """Check if a caller may read a material of its owning course."""
        return await self.can_access_course(material.course_id, user_id, role)
