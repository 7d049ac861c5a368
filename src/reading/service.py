"""Gated sequential reading service layer.

Business logic for:
- Progress initialization (idempotent per student and material)
- Page start, time tracking and completion with the minimum-time gate
- Strict linear navigation (page N needs pages 1..N-1 completed)
- Download eligibility and progress aggregation

Every mutation is a read-modify-write of one progress record guarded by a
conditional update on its version, retried on conflict.
"""

import math
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from .models import (
    DEFAULT_MAX_PAGE_SECONDS,
    DEFAULT_MIN_PAGE_SECONDS,
    ReadingProgress,
)
from .schemas import (
    DownloadEligibilityResponse,
    MaterialReadingSummary,
    NotStartedResponse,
    PageProgressResponse,
    ReadingSummaryResponse,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session

logger = structlog.get_logger(__name__)

DEFAULT_MAX_WRITE_RETRIES = 5


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class ReadingError(Exception):
    """Base reading progress error."""

    def __init__(self, message: str, code: str = "reading_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class ProgressNotFoundError(ReadingError):
    """No progress record for this student and material."""

    def __init__(self, message: str = "Reading progress not found"):
        super().__init__(message, "progress_not_found")


class PageNotStartedError(ReadingError):
    """Page has no state yet (never started)."""

    def __init__(self, page_number: int):
        super().__init__(f"Page {page_number} has not been started", "page_not_started")


class InvalidPageNumberError(ReadingError):
    """Page number outside 1..total_pages."""

    def __init__(self, page_number: int, total_pages: int):
        super().__init__(
            f"Page {page_number} is out of range (1-{total_pages})", "invalid_page"
        )


class PageLockedError(ReadingError):
    """Previous pages are not all completed."""

    def __init__(self, message: str = "You must complete previous pages first"):
        super().__init__(message, "page_locked")


class MinimumTimeNotMetError(ReadingError):
    """Page completed before its minimum dwell time."""

    def __init__(self, min_time_required: int):
        self.min_time_required = min_time_required
        super().__init__(
            f"Minimum time of {math.ceil(min_time_required / 60)} minutes required",
            "min_time_not_met",
        )


class ConcurrentUpdateError(ReadingError):
    """Conditional write kept losing to concurrent writers."""

    def __init__(
        self, message: str = "Reading progress was modified concurrently, retry"
    ):
        super().__init__(message, "concurrent_update")


# A transition mutates the loaded record and returns whether it must be saved
Transition = Callable[[ReadingProgress], bool]


# ==============================================================================
# Reading Progress Service
# ==============================================================================


class ReadingProgressService:
    """Service for gated sequential reading progress."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        min_page_seconds: int = DEFAULT_MIN_PAGE_SECONDS,
        max_page_seconds: int = DEFAULT_MAX_PAGE_SECONDS,
        max_write_retries: int = DEFAULT_MAX_WRITE_RETRIES,
    ):
        """Initialize with Cassandra session and dwell window settings."""
        self.session = session
        self.keyspace = keyspace
        self.min_page_seconds = min_page_seconds
        self.max_page_seconds = max_page_seconds
        self.max_write_retries = max_write_retries
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        self._get_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.material_reading_progress
            WHERE student_id = ? AND material_id = ?
        """)

        self._insert_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.material_reading_progress
            (student_id, material_id, course_id, total_pages, current_page,
             completed_pages, can_download, pages, reading_sessions,
             session_start_time, last_activity, created_at, updated_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._update_progress = self.session.prepare(f"""
            UPDATE {self.keyspace}.material_reading_progress
            SET current_page = ?, completed_pages = ?, can_download = ?,
                pages = ?, reading_sessions = ?, session_start_time = ?,
                last_activity = ?, updated_at = ?, version = ?
            WHERE student_id = ? AND material_id = ?
            IF version = ?
        """)

        # Course lookup
        self._upsert_course_summary = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.material_reading_progress_by_course
            (student_id, course_id, material_id, total_pages, completed_pages,
             current_page, can_download, total_time_spent, last_activity)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            USING TIMESTAMP ?
        """)

        self._get_course_summaries = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.material_reading_progress_by_course
            WHERE student_id = ? AND course_id = ?
        """)

    # ==========================================================================
    # Persistence
    # ==========================================================================

    async def get_progress(
        self, student_id: UUID, material_id: UUID
    ) -> ReadingProgress | None:
        """Load the progress record, or None if the material was never opened."""
        result = await self.session.aexecute(
            self._get_progress, [student_id, material_id]
        )
        row = result.one()
        return ReadingProgress.from_row(row) if row else None

    async def _save(self, progress: ReadingProgress, expected_version: int) -> bool:
        """Conditionally write the record. Returns False on version mismatch."""
        now = datetime.now(UTC)
        result = await self.session.aexecute(
            self._update_progress,
            [
                progress.current_page,
                progress.completed_pages,
                progress.can_download,
                progress.pages_to_cql(),
                progress.sessions_to_cql(),
                progress.session_start_time,
                progress.last_activity,
                now,
                expected_version + 1,
                progress.student_id,
                progress.material_id,
                expected_version,
            ],
        )
        if not result.was_applied:
            return False

        progress.version = expected_version + 1
        progress.updated_at = now
        await self._save_course_summary(progress)
        return True

    async def _save_course_summary(self, progress: ReadingProgress) -> None:
        """Upsert the course lookup row.

        The write timestamp is the record version, so a summary built from an
        older version never replaces a newer one.
        """
        await self.session.aexecute(
            self._upsert_course_summary,
            [
                progress.student_id,
                progress.course_id,
                progress.material_id,
                progress.total_pages,
                progress.completed_pages,
                progress.current_page,
                progress.can_download,
                progress.total_time_spent,
                progress.last_activity,
                progress.version,
            ],
        )

    async def _mutate(
        self, student_id: UUID, material_id: UUID, transition: Transition
    ) -> ReadingProgress:
        """Apply a transition with optimistic concurrency.

        The record is reloaded and the transition re-run on every attempt, so
        checks inside the transition always see the latest state.

        Raises:
            ProgressNotFoundError: If the record does not exist
            ConcurrentUpdateError: If every attempt lost the version race
        """
        for attempt in range(1, self.max_write_retries + 1):
            progress = await self.get_progress(student_id, material_id)
            if progress is None:
                raise ProgressNotFoundError()

            expected_version = progress.version
            if not transition(progress):
                # Resync the lookup in case an earlier summary write failed
                await self._save_course_summary(progress)
                return progress

            if await self._save(progress, expected_version):
                return progress

            logger.warning(
                "reading_write_conflict",
                student_id=str(student_id),
                material_id=str(material_id),
                attempt=attempt,
                expected_version=expected_version,
            )

        raise ConcurrentUpdateError()

    # ==========================================================================
    # Initialization
    # ==========================================================================

    async def initialize(
        self,
        student_id: UUID,
        material_id: UUID,
        course_id: UUID,
        total_pages: int | None = None,
    ) -> ReadingProgress:
        """Create the progress record, or return the existing one unchanged."""
        existing = await self.get_progress(student_id, material_id)
        if existing:
            return existing

        progress = ReadingProgress.create(
            student_id=student_id,
            material_id=material_id,
            course_id=course_id,
            total_pages=total_pages,
        )
        result = await self.session.aexecute(
            self._insert_progress,
            [
                progress.student_id,
                progress.material_id,
                progress.course_id,
                progress.total_pages,
                progress.current_page,
                progress.completed_pages,
                progress.can_download,
                progress.pages_to_cql(),
                progress.sessions_to_cql(),
                progress.session_start_time,
                progress.last_activity,
                progress.created_at,
                progress.created_at,
                progress.version,
            ],
        )

        if not result.was_applied:
            # Lost the race to a concurrent initialize; the stored record wins
            existing = await self.get_progress(student_id, material_id)
            if existing is None:
                raise ConcurrentUpdateError()
            return existing

        progress.updated_at = progress.created_at
        await self._save_course_summary(progress)

        logger.info(
            "reading_initialized",
            student_id=str(student_id),
            material_id=str(material_id),
            total_pages=progress.total_pages,
        )
        return progress

    # ==========================================================================
    # Page Operations
    # ==========================================================================

    @staticmethod
    def _check_page_number(progress: ReadingProgress, page_number: int) -> None:
        if not 1 <= page_number <= progress.total_pages:
            raise InvalidPageNumberError(page_number, progress.total_pages)

    async def start_page(
        self, student_id: UUID, material_id: UUID, page_number: int
    ) -> ReadingProgress:
        """Open a page after checking range and navigation.

        Raises:
            ProgressNotFoundError: If progress was not initialized
            InvalidPageNumberError: If page is outside 1..total_pages
            PageLockedError: If a previous page is not completed
        """

        def transition(progress: ReadingProgress) -> bool:
            self._check_page_number(progress, page_number)
            if not progress.can_navigate_to_page(page_number):
                raise PageLockedError()
            progress.start_page(
                page_number,
                min_time_required=self.min_page_seconds,
                max_time_allowed=self.max_page_seconds,
            )
            return True

        progress = await self._mutate(student_id, material_id, transition)

        logger.info(
            "page_started",
            student_id=str(student_id),
            material_id=str(material_id),
            page_number=page_number,
        )
        return progress

    async def update_page_time(
        self,
        student_id: UUID,
        material_id: UUID,
        page_number: int,
        time_spent: float,
    ) -> ReadingProgress:
        """Record client-reported time on a started page.

        Raises:
            ProgressNotFoundError: If progress was not initialized
            PageNotStartedError: If the page was never started
        """

        def transition(progress: ReadingProgress) -> bool:
            if not progress.update_page_time(page_number, time_spent):
                raise PageNotStartedError(page_number)
            return True

        progress = await self._mutate(student_id, material_id, transition)

        page = progress.get_page(page_number)
        logger.debug(
            "page_time_updated",
            student_id=str(student_id),
            material_id=str(material_id),
            page_number=page_number,
            time_spent=time_spent,
            can_proceed=page.can_proceed if page else False,
        )
        return progress

    async def complete_page(
        self, student_id: UUID, material_id: UUID, page_number: int
    ) -> ReadingProgress:
        """Complete a started page once its minimum time is met.

        Completing an already completed page is a no-op.

        Raises:
            ProgressNotFoundError: If progress was not initialized
            PageNotStartedError: If the page was never started
            PageLockedError: If a previous page is not completed
            MinimumTimeNotMetError: If time_spent is below min_time_required
        """
        unlocked = False

        def transition(progress: ReadingProgress) -> bool:
            nonlocal unlocked
            page = progress.get_page(page_number)
            if page is None:
                raise PageNotStartedError(page_number)
            if page.is_completed:
                return False
            if not progress.can_navigate_to_page(page_number):
                raise PageLockedError()
            if not page.meets_minimum_time:
                raise MinimumTimeNotMetError(page.min_time_required)

            was_downloadable = progress.can_download
            progress.complete_page(page_number)
            unlocked = progress.can_download and not was_downloadable
            return True

        progress = await self._mutate(student_id, material_id, transition)

        logger.info(
            "page_completed",
            student_id=str(student_id),
            material_id=str(material_id),
            page_number=page_number,
            completed_pages=progress.completed_pages,
            total_pages=progress.total_pages,
        )
        if unlocked:
            logger.info(
                "material_download_unlocked",
                student_id=str(student_id),
                material_id=str(material_id),
            )
        return progress

    async def end_session(self, student_id: UUID, material_id: UUID) -> ReadingProgress:
        """Close the open reading session. No-op when none is open."""
        closed = None

        def transition(progress: ReadingProgress) -> bool:
            nonlocal closed
            closed = progress.end_session()
            return closed is not None

        progress = await self._mutate(student_id, material_id, transition)

        if closed is not None:
            logger.info(
                "reading_session_ended",
                student_id=str(student_id),
                material_id=str(material_id),
                pages_viewed=len(closed.pages_viewed),
                total_time_spent=closed.total_time_spent,
            )
        return progress

    # ==========================================================================
    # Queries
    # ==========================================================================

    async def can_navigate(
        self, student_id: UUID, material_id: UUID, page_number: int
    ) -> bool:
        """Check whether a page is unlocked.

        Without a progress record only page 1 is reachable.
        """
        progress = await self.get_progress(student_id, material_id)
        if progress is None:
            return page_number <= 1
        return progress.can_navigate_to_page(page_number)

    async def get_progress_view(
        self, student_id: UUID, material_id: UUID
    ) -> ReadingSummaryResponse | NotStartedResponse:
        """Aggregate view; a never-opened material reports a not-started view."""
        progress = await self.get_progress(student_id, material_id)
        if progress is None:
            return NotStartedResponse()
        return ReadingSummaryResponse.from_summary(progress.get_reading_progress())

    async def get_page_progress(
        self, student_id: UUID, material_id: UUID, page_number: int
    ) -> PageProgressResponse:
        """State of one page, or defaults for a page not yet opened."""
        progress = await self.get_progress(student_id, material_id)
        page = progress.get_page(page_number) if progress else None
        if page is None:
            return PageProgressResponse.default(
                page_number,
                min_time_required=self.min_page_seconds,
                max_time_allowed=self.max_page_seconds,
            )
        return PageProgressResponse.from_entity(page)

    async def check_download(
        self, student_id: UUID, material_id: UUID
    ) -> DownloadEligibilityResponse:
        """Decide whether the material may be downloaded, with a reason."""
        progress = await self.get_progress(student_id, material_id)
        if progress is None:
            return DownloadEligibilityResponse(
                can_download=False, reason="Reading progress not found"
            )

        summary = ReadingSummaryResponse.from_summary(progress.get_reading_progress())
        if progress.can_download:
            reason = "All pages completed successfully"
        else:
            reason = f"{progress.completed_pages}/{progress.total_pages} pages completed"

        return DownloadEligibilityResponse(
            can_download=progress.can_download,
            reason=reason,
            progress=summary,
        )

    async def list_course_progress(
        self, student_id: UUID, course_id: UUID
    ) -> list[MaterialReadingSummary]:
        """Reading summaries for every material of a course the student opened."""
        result = await self.session.aexecute(
            self._get_course_summaries, [student_id, course_id]
        )
        return [
            MaterialReadingSummary(
                material_id=row.material_id,
                total_pages=row.total_pages or 1,
                completed_pages=row.completed_pages or 0,
                current_page=row.current_page or 1,
                can_download=bool(row.can_download),
                total_time_spent=row.total_time_spent or 0,
                last_activity=row.last_activity,
            )
            for row in result
        ]
