"""Database models for gated sequential reading.

Cassandra table definitions for:
- Reading progress: one record per (student, material) with the visited
  pages embedded as an ordered map keyed by page number
- Course lookup: per-student summaries for every material of a course

The ReadingProgress entity owns every page-level state transition. It never
touches the database; ReadingProgressService loads, mutates and persists it.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID


# Dwell window per page, in seconds
DEFAULT_MIN_PAGE_SECONDS = 360  # 6 minutes
DEFAULT_MAX_PAGE_SECONDS = 720  # 12 minutes


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _dt_to_text(dt: datetime | None) -> str:
    return dt.isoformat() if dt is not None else ""


def _text_to_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc_aware(datetime.fromisoformat(value))


def _text_to_bool(value: str | None) -> bool:
    return value == "true"


def _bool_to_text(value: bool) -> str:
    return "true" if value else "false"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Reading progress - one partition per (student, material), which is also the
# uniqueness constraint. Pages live in the record (Cassandra keeps map keys
# sorted, so page order comes for free). `version` backs the conditional
# updates that serialize concurrent writes to the same record.
READING_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.material_reading_progress (
    student_id UUID,
    material_id UUID,
    course_id UUID,
    total_pages INT,
    current_page INT,
    completed_pages INT,
    can_download BOOLEAN,
    pages MAP<INT, FROZEN<MAP<TEXT, TEXT>>>,
    reading_sessions LIST<FROZEN<MAP<TEXT, TEXT>>>,
    session_start_time TIMESTAMP,
    last_activity TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    version INT,
    PRIMARY KEY ((student_id, material_id))
)
"""

# Lookup: a student's reading progress across one course
READING_PROGRESS_BY_COURSE_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.material_reading_progress_by_course (
    student_id UUID,
    course_id UUID,
    material_id UUID,
    total_pages INT,
    completed_pages INT,
    current_page INT,
    can_download BOOLEAN,
    total_time_spent DOUBLE,
    last_activity TIMESTAMP,
    PRIMARY KEY ((student_id, course_id), material_id)
)
"""

# Index for finding every reader of a material (cascade on material deletion)
READING_PROGRESS_MATERIAL_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS material_reading_progress_material_idx
ON {keyspace}.material_reading_progress (material_id)
"""

READING_TABLES_CQL = [
    READING_PROGRESS_TABLE_CQL,
    READING_PROGRESS_BY_COURSE_TABLE_CQL,
    READING_PROGRESS_MATERIAL_INDEX_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class PageState:
    """Reading state of one visited page.

    Attributes:
        page_number: 1-based page number, unique within the progress record
        time_spent: Seconds reported by the client (latest value wins)
        is_completed: One-way flag, set by completing the page
        start_time: Last time the page was opened
        end_time: Time the page was completed
        min_time_required: Dwell time needed before the page can be completed
        max_time_allowed: Dwell time after which can_proceed is revoked
        can_proceed: Whether time_spent currently sits inside the dwell window
    """

    def __init__(
        self,
        page_number: int,
        time_spent: float = 0,
        is_completed: bool = False,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        min_time_required: int = DEFAULT_MIN_PAGE_SECONDS,
        max_time_allowed: int = DEFAULT_MAX_PAGE_SECONDS,
        can_proceed: bool = False,
    ):
        self.page_number = page_number
        self.time_spent = time_spent
        self.is_completed = is_completed
        self.start_time = ensure_utc_aware(start_time)
        self.end_time = ensure_utc_aware(end_time)
        self.min_time_required = min_time_required
        self.max_time_allowed = max_time_allowed
        self.can_proceed = can_proceed

    def record_time(self, time_spent: float) -> None:
        """Overwrite time spent and re-evaluate the dwell window.

        Reaching the minimum grants can_proceed; going over the maximum
        revokes it. Between the two the previous value is kept.
        """
        self.time_spent = time_spent
        if time_spent >= self.min_time_required:
            self.can_proceed = True
        if time_spent > self.max_time_allowed:
            self.can_proceed = False

    @property
    def meets_minimum_time(self) -> bool:
        return self.time_spent >= self.min_time_required

    @classmethod
    def from_cql(cls, page_number: int, data: dict[str, str]) -> "PageState":
        """Create PageState from its Cassandra map value."""
        return cls(
            page_number=page_number,
            time_spent=float(data.get("time_spent") or 0),
            is_completed=_text_to_bool(data.get("is_completed")),
            start_time=_text_to_dt(data.get("start_time")),
            end_time=_text_to_dt(data.get("end_time")),
            min_time_required=int(
                data.get("min_time_required") or DEFAULT_MIN_PAGE_SECONDS
            ),
            max_time_allowed=int(
                data.get("max_time_allowed") or DEFAULT_MAX_PAGE_SECONDS
            ),
            can_proceed=_text_to_bool(data.get("can_proceed")),
        )

    def to_cql(self) -> dict[str, str]:
        """Convert to Cassandra map value (TEXT -> TEXT)."""
        return {
            "time_spent": repr(float(self.time_spent)),
            "is_completed": _bool_to_text(self.is_completed),
            "start_time": _dt_to_text(self.start_time),
            "end_time": _dt_to_text(self.end_time),
            "min_time_required": str(self.min_time_required),
            "max_time_allowed": str(self.max_time_allowed),
            "can_proceed": _bool_to_text(self.can_proceed),
        }

    def __repr__(self) -> str:
        state = "completed" if self.is_completed else "in_progress"
        return f"<PageState {self.page_number} {state} {self.time_spent}s>"


class ReadingSession:
    """Audit window of one sitting: pages opened and the time they took."""

    def __init__(
        self,
        start_time: datetime,
        end_time: datetime | None = None,
        pages_viewed: list[int] | None = None,
        total_time_spent: float | None = None,
    ):
        self.start_time = ensure_utc_aware(start_time)
        self.end_time = ensure_utc_aware(end_time)
        self.pages_viewed = list(pages_viewed or [])
        self.total_time_spent = total_time_spent

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @classmethod
    def from_cql(cls, data: dict[str, str]) -> "ReadingSession":
        pages = data.get("pages_viewed") or ""
        total = data.get("total_time_spent")
        return cls(
            start_time=_text_to_dt(data.get("start_time")) or datetime.now(UTC),
            end_time=_text_to_dt(data.get("end_time")),
            pages_viewed=[int(p) for p in pages.split(",") if p],
            total_time_spent=float(total) if total else None,
        )

    def to_cql(self) -> dict[str, str]:
        return {
            "start_time": _dt_to_text(self.start_time),
            "end_time": _dt_to_text(self.end_time),
            "pages_viewed": ",".join(str(p) for p in self.pages_viewed),
            "total_time_spent": ""
            if self.total_time_spent is None
            else repr(float(self.total_time_spent)),
        }


@dataclass(frozen=True)
class ReadingSummary:
    """Aggregate read view of a progress record."""

    completed_pages: int
    total_pages: int
    progress_percentage: int
    total_time_spent: float
    can_download: bool
    current_page: int


class ReadingProgress:
    """Gated reading progress of one student through one material.

    completed_pages and can_download are derived from the pages on every
    access, so they cannot drift from the page states.

    Attributes:
        student_id: Reader UUID
        material_id: Material UUID
        course_id: Course owning the material
        total_pages: Page count, fixed at initialization
        current_page: Page the student is positioned on
        pages: Visited pages keyed by page number
        session_start_time: Start of the current reading session
        last_activity: Last mutation timestamp
        reading_sessions: Append-only session audit log
        version: Write counter for conditional updates
    """

    def __init__(
        self,
        student_id: UUID,
        material_id: UUID,
        course_id: UUID,
        total_pages: int = 1,
        current_page: int = 1,
        pages: dict[int, PageState] | None = None,
        session_start_time: datetime | None = None,
        last_activity: datetime | None = None,
        reading_sessions: list[ReadingSession] | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        version: int = 0,
    ):
        now = datetime.now(UTC)
        self.student_id = student_id
        self.material_id = material_id
        self.course_id = course_id
        self.total_pages = total_pages
        self.current_page = current_page
        self.pages: dict[int, PageState] = dict(pages or {})
        self.session_start_time = ensure_utc_aware(session_start_time) or now
        self.last_activity = ensure_utc_aware(last_activity) or now
        self.reading_sessions = list(reading_sessions or [])
        self.created_at = ensure_utc_aware(created_at) or now
        self.updated_at = ensure_utc_aware(updated_at)
        self.version = version

    @classmethod
    def create(
        cls,
        student_id: UUID,
        material_id: UUID,
        course_id: UUID,
        total_pages: int | None = None,
        now: datetime | None = None,
    ) -> "ReadingProgress":
        """Create a fresh record positioned on page 1.

        A missing or non-positive page count falls back to 1.
        """
        now = now or datetime.now(UTC)
        return cls(
            student_id=student_id,
            material_id=material_id,
            course_id=course_id,
            total_pages=total_pages if total_pages and total_pages > 0 else 1,
            current_page=1,
            session_start_time=now,
            last_activity=now,
            created_at=now,
        )

    # ==========================================================================
    # Derived State
    # ==========================================================================

    @property
    def completed_pages(self) -> int:
        return sum(1 for page in self.pages.values() if page.is_completed)

    @property
    def can_download(self) -> bool:
        return self.completed_pages == self.total_pages

    @property
    def total_time_spent(self) -> float:
        return sum(page.time_spent for page in self.pages.values())

    @property
    def ordered_pages(self) -> list[PageState]:
        return [self.pages[number] for number in sorted(self.pages)]

    @property
    def open_session(self) -> ReadingSession | None:
        if self.reading_sessions and self.reading_sessions[-1].is_open:
            return self.reading_sessions[-1]
        return None

    def get_page(self, page_number: int) -> PageState | None:
        return self.pages.get(page_number)

    # ==========================================================================
    # State Transitions
    # ==========================================================================

    def can_navigate_to_page(self, page_number: int) -> bool:
        """Strict linear unlock: every page before page_number must be completed.

        Page 1 is always reachable.
        """
        if page_number <= 1:
            return True
        for number in range(1, page_number):
            page = self.pages.get(number)
            if page is None or not page.is_completed:
                return False
        return True

    def start_page(
        self,
        page_number: int,
        min_time_required: int = DEFAULT_MIN_PAGE_SECONDS,
        max_time_allowed: int = DEFAULT_MAX_PAGE_SECONDS,
        now: datetime | None = None,
    ) -> PageState:
        """Open a page, creating its state on first visit.

        Navigation is not checked here; callers gate with
        can_navigate_to_page first. Re-opening a page only restarts its
        timer; the dwell window is fixed when the page is first created.
        """
        now = now or datetime.now(UTC)
        page = self.pages.get(page_number)
        if page is None:
            page = PageState(
                page_number=page_number,
                start_time=now,
                min_time_required=min_time_required,
                max_time_allowed=max_time_allowed,
                can_proceed=False,
            )
            self.pages[page_number] = page
        else:
            page.start_time = now

        self.current_page = page_number
        self.last_activity = now
        self._record_page_view(page_number, now)
        return page

    def update_page_time(
        self,
        page_number: int,
        time_spent: float,
        now: datetime | None = None,
    ) -> bool:
        """Record the client-reported time on a page.

        Returns False (and changes nothing) when the page was never started.
        """
        page = self.pages.get(page_number)
        if page is None:
            return False

        page.record_time(time_spent)
        self.last_activity = now or datetime.now(UTC)
        return True

    def complete_page(self, page_number: int, now: datetime | None = None) -> bool:
        """Mark a page as completed.

        The minimum-time gate is enforced by the service before calling this.
        Returns False (and changes nothing) when the page was never started.
        """
        page = self.pages.get(page_number)
        if page is None:
            return False

        now = now or datetime.now(UTC)
        page.is_completed = True
        page.end_time = now
        self.last_activity = now
        return True

    def end_session(self, now: datetime | None = None) -> ReadingSession | None:
        """Close the open reading session, if any."""
        session = self.open_session
        if session is None:
            return None

        now = now or datetime.now(UTC)
        session.end_time = now
        session.total_time_spent = sum(
            self.pages[number].time_spent
            for number in session.pages_viewed
            if number in self.pages
        )
        self.last_activity = now
        return session

    def _record_page_view(self, page_number: int, now: datetime) -> None:
        session = self.open_session
        if session is None:
            session = ReadingSession(start_time=now)
            self.reading_sessions.append(session)
            self.session_start_time = now
        if page_number not in session.pages_viewed:
            session.pages_viewed.append(page_number)

    # ==========================================================================
    # Read Projection
    # ==========================================================================

    def get_reading_progress(self) -> ReadingSummary:
        """Aggregate view: page counts, rounded percentage and total time."""
        percentage = (Decimal(100) * self.completed_pages / self.total_pages).quantize(
            Decimal(1), rounding=ROUND_HALF_UP
        )
        return ReadingSummary(
            completed_pages=self.completed_pages,
            total_pages=self.total_pages,
            progress_percentage=int(percentage),
            total_time_spent=self.total_time_spent,
            can_download=self.can_download,
            current_page=self.current_page,
        )

    # ==========================================================================
    # Persistence Mapping
    # ==========================================================================

    @classmethod
    def from_row(cls, row: Any) -> "ReadingProgress":
        """Create ReadingProgress instance from Cassandra row."""
        pages = {
            int(number): PageState.from_cql(int(number), dict(data))
            for number, data in (row.pages or {}).items()
        }
        sessions = [
            ReadingSession.from_cql(dict(data)) for data in (row.reading_sessions or [])
        ]
        return cls(
            student_id=row.student_id,
            material_id=row.material_id,
            course_id=row.course_id,
            total_pages=row.total_pages or 1,
            current_page=row.current_page or 1,
            pages=pages,
            session_start_time=row.session_start_time,
            last_activity=row.last_activity,
            reading_sessions=sessions,
            created_at=row.created_at,
            updated_at=row.updated_at,
            version=row.version or 0,
        )

    def pages_to_cql(self) -> dict[int, dict[str, str]]:
        return {page.page_number: page.to_cql() for page in self.ordered_pages}

    def sessions_to_cql(self) -> list[dict[str, str]]:
        return [session.to_cql() for session in self.reading_sessions]

    def __repr__(self) -> str:
        return (
            f"<ReadingProgress student={self.student_id} "
            f"material={self.material_id} "
            f"{self.completed_pages}/{self.total_pages}>"
        )
