"""Pydantic schemas for gated sequential reading.

Request and response models for:
- Progress initialization
- Page start, time update and completion
- Navigation and download eligibility checks
- Aggregate and per-page progress queries
"""

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import (
    DEFAULT_MAX_PAGE_SECONDS,
    DEFAULT_MIN_PAGE_SECONDS,
    PageState,
    ReadingProgress,
    ReadingSession,
    ReadingSummary,
)


# ==============================================================================
# Request Schemas
# ==============================================================================


class InitializeReadingRequest(BaseModel):
    """Request to initialize reading progress for a material.

    A missing or non-positive page count is treated as 1.
    """

    total_pages: int | None = Field(None, description="Number of pages")


class UpdatePageTimeRequest(BaseModel):
    """Client-reported time on the current page (sent periodically)."""

    time_spent: float = Field(
        ..., ge=0, allow_inf_nan=False, description="Seconds spent on the page"
    )


# ==============================================================================
# Page Schemas
# ==============================================================================


class PageProgressResponse(BaseModel):
    """Reading state of one page."""

    model_config = ConfigDict(from_attributes=True)

    page_number: int
    time_spent: float = 0
    is_completed: bool = False
    can_proceed: bool = False
    min_time_required: int = DEFAULT_MIN_PAGE_SECONDS
    max_time_allowed: int = DEFAULT_MAX_PAGE_SECONDS
    start_time: datetime | None = None
    end_time: datetime | None = None

    @classmethod
    def from_entity(cls, page: PageState) -> "PageProgressResponse":
        return cls(
            page_number=page.page_number,
            time_spent=page.time_spent,
            is_completed=page.is_completed,
            can_proceed=page.can_proceed,
            min_time_required=page.min_time_required,
            max_time_allowed=page.max_time_allowed,
            start_time=page.start_time,
            end_time=page.end_time,
        )

    @classmethod
    def default(
        cls,
        page_number: int,
        min_time_required: int = DEFAULT_MIN_PAGE_SECONDS,
        max_time_allowed: int = DEFAULT_MAX_PAGE_SECONDS,
    ) -> "PageProgressResponse":
        """Placeholder for a page that has not been opened yet."""
        return cls(
            page_number=page_number,
            min_time_required=min_time_required,
            max_time_allowed=max_time_allowed,
        )


class NavigationResponse(BaseModel):
    """Whether the student may open a page."""

    page_number: int
    can_navigate: bool


# ==============================================================================
# Progress Schemas
# ==============================================================================


class ReadingSessionResponse(BaseModel):
    """One reading session from the audit log."""

    start_time: datetime
    end_time: datetime | None = None
    pages_viewed: list[int] = []
    total_time_spent: float | None = None

    @classmethod
    def from_entity(cls, session: ReadingSession) -> "ReadingSessionResponse":
        return cls(
            start_time=session.start_time,
            end_time=session.end_time,
            pages_viewed=session.pages_viewed,
            total_time_spent=session.total_time_spent,
        )


class ReadingProgressResponse(BaseModel):
    """Full reading progress record."""

    student_id: UUID
    material_id: UUID
    course_id: UUID
    total_pages: int
    current_page: int
    completed_pages: int
    can_download: bool
    pages: list[PageProgressResponse] = []
    session_start_time: datetime | None = None
    last_activity: datetime | None = None
    reading_sessions: list[ReadingSessionResponse] = []

    @classmethod
    def from_entity(cls, progress: ReadingProgress) -> "ReadingProgressResponse":
        """Create response from entity."""
        return cls(
            student_id=progress.student_id,
            material_id=progress.material_id,
            course_id=progress.course_id,
            total_pages=progress.total_pages,
            current_page=progress.current_page,
            completed_pages=progress.completed_pages,
            can_download=progress.can_download,
            pages=[PageProgressResponse.from_entity(p) for p in progress.ordered_pages],
            session_start_time=progress.session_start_time,
            last_activity=progress.last_activity,
            reading_sessions=[
                ReadingSessionResponse.from_entity(s)
                for s in progress.reading_sessions
            ],
        )


class ReadingSummaryResponse(BaseModel):
    """Aggregate progress of a started material."""

    status: Literal["found"] = "found"
    completed_pages: int
    total_pages: int
    progress_percentage: int = Field(description="0-100, rounded half up")
    total_time_spent: float
    can_download: bool
    current_page: int

    @classmethod
    def from_summary(cls, summary: ReadingSummary) -> "ReadingSummaryResponse":
        return cls(
            completed_pages=summary.completed_pages,
            total_pages=summary.total_pages,
            progress_percentage=summary.progress_percentage,
            total_time_spent=summary.total_time_spent,
            can_download=summary.can_download,
            current_page=summary.current_page,
        )


class NotStartedResponse(BaseModel):
    """Progress view for a material the student has not opened yet."""

    status: Literal["not_started"] = "not_started"
    completed_pages: int = 0
    total_pages: int = 1
    progress_percentage: int = 0
    total_time_spent: float = 0
    can_download: bool = False
    current_page: int = 1


ReadingProgressView = Annotated[
    ReadingSummaryResponse | NotStartedResponse,
    Field(discriminator="status"),
]


class DownloadEligibilityResponse(BaseModel):
    """Download gate decision with a human-readable reason."""

    can_download: bool
    reason: str
    progress: ReadingSummaryResponse | None = None


# ==============================================================================
# Course Summary Schemas
# ==============================================================================


class MaterialReadingSummary(BaseModel):
    """Per-material row of a student's course reading overview."""

    material_id: UUID
    total_pages: int
    completed_pages: int
    current_page: int
    can_download: bool
    total_time_spent: float = 0
    last_activity: datetime | None = None


class CourseReadingProgressResponse(BaseModel):
    """A student's reading progress across one course."""

    course_id: UUID
    items: list[MaterialReadingSummary]
    total: int
