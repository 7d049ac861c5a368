"""Course/material lookup used to authorize reading.

Course and material records are owned by the course subsystem; this
module only reads them.
"""

from .models import MATERIALS_TABLES_CQL, Course, Material


__all__ = ["MATERIALS_TABLES_CQL", "Course", "Material"]
