"""Pydantic schemas for the authenticated caller."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AuthenticatedUser(BaseModel):
    """Caller identity extracted from a validated access token."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    role: str
    email: str | None = None
    issued_at: datetime | None = None
