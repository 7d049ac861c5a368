"""Shared test fixtures."""

import os
import tempfile


# Settings are cached on first import, so the environment must be set first
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="edubridge-logs-"))
os.environ.setdefault("LOG_REQUESTS", "false")

from collections.abc import Iterator  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.auth.security import create_access_token  # noqa: E402
from src.main import app  # noqa: E402


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Test client without lifespan (no database connection)."""
    yield TestClient(app)
    for name in ("material_service", "reading_service"):
        if hasattr(app.state, name):
            delattr(app.state, name)


@pytest.fixture
def student_id() -> UUID:
    return uuid4()


@pytest.fixture
def material_id() -> UUID:
    return uuid4()


@pytest.fixture
def course_id() -> UUID:
    return uuid4()


def make_token(user_id: UUID, role: str = "student") -> str:
    """Issue an access token the way the identity service does."""
    return create_access_token({"sub": str(user_id), "role": role})


@pytest.fixture
def student_headers(student_id: UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(student_id)}"}
