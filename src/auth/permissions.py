"""Role model for EduBridge callers.

- ADMIN: Full system access, bypasses course membership checks
- LECTURER: Owns courses and their materials
- STUDENT: Reads materials of courses they are enrolled in
"""

from enum import Enum


class UserRole(str, Enum):
    """Caller roles carried in the access token."""

    STUDENT = "student"
    LECTURER = "lecturer"
    ADMIN = "admin"


def is_admin(role: UserRole | str) -> bool:
    """Check if role is ADMIN."""
    return UserRole.ADMIN.value == (role.value if isinstance(role, UserRole) else role)
