"""Tests for ReadingProgressService.

Uses an in-memory stand-in for the Cassandra session that honours the
conditional writes (IF NOT EXISTS / IF version = ?) the service relies on.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from cassandra.cluster import Session

from src.reading.schemas import NotStartedResponse, ReadingSummaryResponse
from src.reading.service import (
    ConcurrentUpdateError,
    InvalidPageNumberError,
    MinimumTimeNotMetError,
    PageLockedError,
    PageNotStartedError,
    ProgressNotFoundError,
    ReadingProgressService,
)


PROGRESS_COLUMNS = (
    "student_id",
    "material_id",
    "course_id",
    "total_pages",
    "current_page",
    "completed_pages",
    "can_download",
    "pages",
    "reading_sessions",
    "session_start_time",
    "last_activity",
    "created_at",
    "updated_at",
    "version",
)

UPDATE_COLUMNS = (
    "current_page",
    "completed_pages",
    "can_download",
    "pages",
    "reading_sessions",
    "session_start_time",
    "last_activity",
    "updated_at",
    "version",
)

SUMMARY_COLUMNS = (
    "student_id",
    "course_id",
    "material_id",
    "total_pages",
    "completed_pages",
    "current_page",
    "can_download",
    "total_time_spent",
    "last_activity",
)


class FakeResult:
    """Result set with the parts of the driver API the service uses."""

    def __init__(self, rows=None, was_applied: bool = True):
        self._rows = list(rows or [])
        self.was_applied = was_applied

    def one(self):
        return self._rows[0] if self._rows else None

    def __iter__(self):
        return iter(self._rows)


class FakeCassandra:
    """In-memory tables keyed like the real ones."""

    def __init__(self):
        self.progress: dict[tuple[UUID, UUID], SimpleNamespace] = {}
        self.summaries: dict[tuple[UUID, UUID, UUID], SimpleNamespace] = {}
        self.pending_conflicts = 0
        self.fail_summary_inserts = 0
        self.updates = 0

    async def aexecute(self, statement, params):
        query = " ".join(statement.query.split())

        if query.startswith("SELECT") and "_by_course" in query:
            student_id, course_id = params
            return FakeResult(
                row
                for (sid, cid, _), row in sorted(
                    self.summaries.items(), key=lambda item: str(item[0][2])
                )
                if sid == student_id and cid == course_id
            )

        if query.startswith("SELECT"):
            row = self.progress.get((params[0], params[1]))
            return FakeResult([row] if row else [])

        if query.startswith("INSERT") and "_by_course" in query:
            if self.fail_summary_inserts:
                self.fail_summary_inserts -= 1
                msg = "summary write timed out"
                raise RuntimeError(msg)
            *values, timestamp = params
            row = SimpleNamespace(**dict(zip(SUMMARY_COLUMNS, values, strict=True)))
            key = (row.student_id, row.course_id, row.material_id)
            existing = self.summaries.get(key)
            # Last write wins by write timestamp
            if existing is None or timestamp >= existing.write_timestamp:
                row.write_timestamp = timestamp
                self.summaries[key] = row
            return FakeResult()

        if query.startswith("INSERT"):
            row = SimpleNamespace(**dict(zip(PROGRESS_COLUMNS, params, strict=True)))
            key = (row.student_id, row.material_id)
            if key in self.progress:
                return FakeResult(was_applied=False)
            self.progress[key] = row
            return FakeResult()

        if query.startswith("UPDATE"):
            *values, student_id, material_id, expected_version = params
            row = self.progress.get((student_id, material_id))
            if self.pending_conflicts:
                self.pending_conflicts -= 1
                return FakeResult(was_applied=False)
            if row is None or row.version != expected_version:
                return FakeResult(was_applied=False)
            for column, value in zip(UPDATE_COLUMNS, values, strict=True):
                setattr(row, column, value)
            self.updates += 1
            return FakeResult()

        msg = f"Unexpected statement: {query}"
        raise AssertionError(msg)


@pytest.fixture
def store() -> FakeCassandra:
    return FakeCassandra()


@pytest.fixture
def mock_session(store: FakeCassandra):
    """Mock Cassandra session backed by the in-memory store."""
    session = Mock(spec=Session)
    session.prepare = Mock(side_effect=lambda query: SimpleNamespace(query=query))
    session.aexecute = AsyncMock(side_effect=store.aexecute)
    return session


@pytest.fixture
def reading_service(mock_session) -> ReadingProgressService:
    return ReadingProgressService(
        session=mock_session, keyspace="test_keyspace", max_write_retries=3
    )


@pytest.fixture
def student_id() -> UUID:
    return uuid4()


@pytest.fixture
def material_id() -> UUID:
    return uuid4()


@pytest.fixture
def course_id() -> UUID:
    return uuid4()


@pytest_asyncio.fixture
async def initialized(reading_service, student_id, material_id, course_id):
    """Three-page record already initialized."""
    return await reading_service.initialize(
        student_id, material_id, course_id, total_pages=3
    )


async def read_page(service, student_id, material_id, page_number, seconds=400):
    await service.start_page(student_id, material_id, page_number)
    await service.update_page_time(student_id, material_id, page_number, seconds)
    return await service.complete_page(student_id, material_id, page_number)


# ==============================================================================
# Initialization
# ==============================================================================


class TestInitialize:
    """Tests for initialize."""

    @pytest.mark.asyncio
    async def test_creates_record(
        self, reading_service, store, student_id, material_id, course_id
    ) -> None:
        progress = await reading_service.initialize(
            student_id, material_id, course_id, total_pages=5
        )

        assert progress.total_pages == 5
        assert progress.current_page == 1
        assert progress.completed_pages == 0
        assert (student_id, material_id) in store.progress
        assert (student_id, course_id, material_id) in store.summaries

    @pytest.mark.asyncio
    async def test_is_idempotent(
        self, reading_service, store, student_id, material_id, course_id
    ) -> None:
        first = await reading_service.initialize(
            student_id, material_id, course_id, total_pages=5
        )
        second = await reading_service.initialize(
            student_id, material_id, course_id, total_pages=9
        )

        assert second.total_pages == 5
        assert second.created_at == first.created_at
        assert len(store.progress) == 1

    @pytest.mark.asyncio
    async def test_missing_page_count_defaults_to_one(
        self, reading_service, student_id, material_id, course_id
    ) -> None:
        progress = await reading_service.initialize(student_id, material_id, course_id)
        assert progress.total_pages == 1

    @pytest.mark.asyncio
    async def test_lost_race_returns_stored_record(
        self, reading_service, mock_session, store, student_id, material_id, course_id
    ) -> None:
        """A concurrent initialize that wins the insert is returned as-is."""
        winner = SimpleNamespace(
            student_id=student_id,
            material_id=material_id,
            course_id=course_id,
            total_pages=7,
            current_page=1,
            completed_pages=0,
            can_download=False,
            pages={},
            reading_sessions=[],
            session_start_time=None,
            last_activity=None,
            created_at=None,
            updated_at=None,
            version=0,
        )
        lookups = iter([FakeResult(), FakeResult(was_applied=False), FakeResult([winner])])
        mock_session.aexecute = AsyncMock(side_effect=lambda *_: next(lookups))

        progress = await reading_service.initialize(
            student_id, material_id, course_id, total_pages=3
        )

        assert progress.total_pages == 7


# ==============================================================================
# Page Operations
# ==============================================================================


class TestStartPage:
    """Tests for start_page."""

    @pytest.mark.asyncio
    async def test_requires_initialized_progress(
        self, reading_service, student_id, material_id
    ) -> None:
        with pytest.raises(ProgressNotFoundError):
            await reading_service.start_page(student_id, material_id, 1)

    @pytest.mark.asyncio
    async def test_first_page_starts(
        self, reading_service, store, initialized, student_id, material_id
    ) -> None:
        progress = await reading_service.start_page(student_id, material_id, 1)

        assert progress.current_page == 1
        assert progress.pages[1].min_time_required == 360
        assert progress.pages[1].max_time_allowed == 720
        assert progress.version == 1
        assert store.progress[(student_id, material_id)].version == 1

    @pytest.mark.asyncio
    async def test_locked_page_rejected(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        with pytest.raises(PageLockedError) as exc_info:
            await reading_service.start_page(student_id, material_id, 2)
        assert exc_info.value.code == "page_locked"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page_number", [0, 4])
    async def test_out_of_range_rejected(
        self, reading_service, initialized, student_id, material_id, page_number
    ) -> None:
        with pytest.raises(InvalidPageNumberError):
            await reading_service.start_page(student_id, material_id, page_number)

    @pytest.mark.asyncio
    async def test_uses_configured_window(
        self, mock_session, student_id, material_id, course_id
    ) -> None:
        service = ReadingProgressService(
            session=mock_session,
            keyspace="test_keyspace",
            min_page_seconds=10,
            max_page_seconds=20,
        )
        await service.initialize(student_id, material_id, course_id, total_pages=2)

        progress = await service.start_page(student_id, material_id, 1)

        assert progress.pages[1].min_time_required == 10
        assert progress.pages[1].max_time_allowed == 20


class TestUpdatePageTime:
    """Tests for update_page_time."""

    @pytest.mark.asyncio
    async def test_page_not_started(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        with pytest.raises(PageNotStartedError):
            await reading_service.update_page_time(student_id, material_id, 1, 100)

    @pytest.mark.asyncio
    async def test_records_time(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        await reading_service.start_page(student_id, material_id, 1)

        progress = await reading_service.update_page_time(
            student_id, material_id, 1, 365
        )

        assert progress.pages[1].time_spent == 365
        assert progress.pages[1].can_proceed is True


class TestCompletePage:
    """Tests for complete_page."""

    @pytest.mark.asyncio
    async def test_page_not_started(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        with pytest.raises(PageNotStartedError):
            await reading_service.complete_page(student_id, material_id, 1)

    @pytest.mark.asyncio
    async def test_minimum_time_not_met(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        await reading_service.start_page(student_id, material_id, 1)
        await reading_service.update_page_time(student_id, material_id, 1, 359)

        with pytest.raises(MinimumTimeNotMetError) as exc_info:
            await reading_service.complete_page(student_id, material_id, 1)

        assert exc_info.value.min_time_required == 360
        assert "6 minutes" in exc_info.value.message

    def test_minimum_time_message_rounds_up(self) -> None:
        error = MinimumTimeNotMetError(400)
        assert error.message == "Minimum time of 7 minutes required"
        assert error.code == "min_time_not_met"

    @pytest.mark.asyncio
    async def test_completes_page(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        progress = await read_page(reading_service, student_id, material_id, 1)

        assert progress.pages[1].is_completed is True
        assert progress.pages[1].end_time is not None
        assert progress.completed_pages == 1
        assert progress.can_download is False

    @pytest.mark.asyncio
    async def test_second_completion_is_noop(
        self, reading_service, store, initialized, student_id, material_id
    ) -> None:
        await read_page(reading_service, student_id, material_id, 1)
        updates = store.updates

        progress = await reading_service.complete_page(student_id, material_id, 1)

        assert progress.completed_pages == 1
        assert store.updates == updates

    @pytest.mark.asyncio
    async def test_full_read_unlocks_download(
        self, reading_service, store, initialized, student_id, material_id, course_id
    ) -> None:
        for page_number in (1, 2, 3):
            progress = await read_page(
                reading_service, student_id, material_id, page_number
            )

        assert progress.completed_pages == 3
        assert progress.can_download is True

        stored = store.progress[(student_id, material_id)]
        assert stored.completed_pages == 3
        assert stored.can_download is True
        assert store.summaries[(student_id, course_id, material_id)].can_download


# ==============================================================================
# Concurrency
# ==============================================================================


class TestConcurrentWrites:
    """Tests for version-conditional writes."""

    @pytest.mark.asyncio
    async def test_retries_after_conflict(
        self, reading_service, store, initialized, student_id, material_id
    ) -> None:
        store.pending_conflicts = 2

        progress = await reading_service.start_page(student_id, material_id, 1)

        assert progress.version == 1
        assert store.pending_conflicts == 0

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(
        self, reading_service, store, initialized, student_id, material_id
    ) -> None:
        store.pending_conflicts = 3

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            await reading_service.start_page(student_id, material_id, 1)

        assert exc_info.value.code == "concurrent_update"
        assert store.progress[(student_id, material_id)].version == 0


class TestCourseSummarySync:
    """Tests for keeping the by-course lookup in step with the record."""

    @pytest.mark.asyncio
    async def test_retry_after_failed_summary_write_resyncs(
        self, reading_service, store, initialized, student_id, material_id, course_id
    ) -> None:
        await reading_service.start_page(student_id, material_id, 1)
        await reading_service.update_page_time(student_id, material_id, 1, 400)
        store.fail_summary_inserts = 1

        with pytest.raises(RuntimeError):
            await reading_service.complete_page(student_id, material_id, 1)

        assert store.progress[(student_id, material_id)].completed_pages == 1
        assert store.summaries[(student_id, course_id, material_id)].completed_pages == 0

        progress = await reading_service.complete_page(student_id, material_id, 1)

        assert progress.completed_pages == 1
        summary = store.summaries[(student_id, course_id, material_id)]
        assert summary.completed_pages == 1
        assert summary.write_timestamp == progress.version

    @pytest.mark.asyncio
    async def test_older_version_does_not_overwrite_summary(
        self, reading_service, store, initialized, student_id, material_id, course_id
    ) -> None:
        stale = await reading_service.get_progress(student_id, material_id)
        await read_page(reading_service, student_id, material_id, 1)

        await reading_service._save_course_summary(stale)

        summary = store.summaries[(student_id, course_id, material_id)]
        assert summary.completed_pages == 1
        assert summary.current_page == 1

    @pytest.mark.asyncio
    async def test_course_listing_after_resync(
        self, reading_service, store, initialized, student_id, material_id, course_id
    ) -> None:
        await reading_service.start_page(student_id, material_id, 1)
        await reading_service.update_page_time(student_id, material_id, 1, 400)
        store.fail_summary_inserts = 1
        with pytest.raises(RuntimeError):
            await reading_service.complete_page(student_id, material_id, 1)

        await reading_service.complete_page(student_id, material_id, 1)
        items = await reading_service.list_course_progress(student_id, course_id)

        assert [item.completed_pages for item in items] == [1]


# ==============================================================================
# Queries
# ==============================================================================


class TestQueries:
    """Tests for read-only operations."""

    @pytest.mark.asyncio
    async def test_can_navigate_without_progress(
        self, reading_service, student_id, material_id
    ) -> None:
        assert await reading_service.can_navigate(student_id, material_id, 1) is True
        assert await reading_service.can_navigate(student_id, material_id, 2) is False

    @pytest.mark.asyncio
    async def test_can_navigate(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        assert await reading_service.can_navigate(student_id, material_id, 1) is True
        assert await reading_service.can_navigate(student_id, material_id, 2) is False

        await read_page(reading_service, student_id, material_id, 1)

        assert await reading_service.can_navigate(student_id, material_id, 2) is True

    @pytest.mark.asyncio
    async def test_progress_view_not_started(
        self, reading_service, student_id, material_id
    ) -> None:
        view = await reading_service.get_progress_view(student_id, material_id)

        assert isinstance(view, NotStartedResponse)
        assert view.status == "not_started"
        assert view.total_pages == 1
        assert view.progress_percentage == 0
        assert view.current_page == 1

    @pytest.mark.asyncio
    async def test_progress_view_found(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        await read_page(reading_service, student_id, material_id, 1)

        view = await reading_service.get_progress_view(student_id, material_id)

        assert isinstance(view, ReadingSummaryResponse)
        assert view.status == "found"
        assert view.completed_pages == 1
        assert view.progress_percentage == 33
        assert view.total_time_spent == 400

    @pytest.mark.asyncio
    async def test_page_progress_defaults(
        self, reading_service, student_id, material_id
    ) -> None:
        page = await reading_service.get_page_progress(student_id, material_id, 4)

        assert page.page_number == 4
        assert page.time_spent == 0
        assert page.is_completed is False
        assert page.can_proceed is False
        assert page.min_time_required == 360
        assert page.max_time_allowed == 720

    @pytest.mark.asyncio
    async def test_page_progress_found(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        await reading_service.start_page(student_id, material_id, 1)
        await reading_service.update_page_time(student_id, material_id, 1, 42.5)

        page = await reading_service.get_page_progress(student_id, material_id, 1)

        assert page.time_spent == 42.5
        assert page.start_time is not None

    @pytest.mark.asyncio
    async def test_check_download_without_progress(
        self, reading_service, student_id, material_id
    ) -> None:
        result = await reading_service.check_download(student_id, material_id)

        assert result.can_download is False
        assert result.reason == "Reading progress not found"
        assert result.progress is None

    @pytest.mark.asyncio
    async def test_check_download_partial(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        await read_page(reading_service, student_id, material_id, 1)

        result = await reading_service.check_download(student_id, material_id)

        assert result.can_download is False
        assert result.reason == "1/3 pages completed"
        assert result.progress.completed_pages == 1

    @pytest.mark.asyncio
    async def test_check_download_complete(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        for page_number in (1, 2, 3):
            await read_page(reading_service, student_id, material_id, page_number)

        result = await reading_service.check_download(student_id, material_id)

        assert result.can_download is True
        assert result.reason == "All pages completed successfully"

    @pytest.mark.asyncio
    async def test_list_course_progress(
        self, reading_service, student_id, course_id
    ) -> None:
        first, second = uuid4(), uuid4()
        await reading_service.initialize(student_id, first, course_id, total_pages=2)
        await reading_service.initialize(student_id, second, course_id, total_pages=4)
        await read_page(reading_service, student_id, first, 1)

        items = await reading_service.list_course_progress(student_id, course_id)

        by_material = {item.material_id: item for item in items}
        assert len(items) == 2
        assert by_material[first].completed_pages == 1
        assert by_material[first].total_time_spent == 400
        assert by_material[second].total_pages == 4
        assert by_material[second].completed_pages == 0

    @pytest.mark.asyncio
    async def test_list_course_progress_other_course_empty(
        self, reading_service, initialized, student_id
    ) -> None:
        assert await reading_service.list_course_progress(student_id, uuid4()) == []


# ==============================================================================
# Reading Sessions
# ==============================================================================


class TestEndSession:
    """Tests for end_session."""

    @pytest.mark.asyncio
    async def test_closes_open_session(
        self, reading_service, initialized, student_id, material_id
    ) -> None:
        await read_page(reading_service, student_id, material_id, 1)

        progress = await reading_service.end_session(student_id, material_id)

        session = progress.reading_sessions[-1]
        assert session.end_time is not None
        assert session.pages_viewed == [1]
        assert session.total_time_spent == 400

    @pytest.mark.asyncio
    async def test_without_open_session_is_noop(
        self, reading_service, store, initialized, student_id, material_id
    ) -> None:
        progress = await reading_service.end_session(student_id, material_id)

        assert progress.reading_sessions == []
        assert store.updates == 0

    @pytest.mark.asyncio
    async def test_requires_progress(
        self, reading_service, student_id, material_id
    ) -> None:
        with pytest.raises(ProgressNotFoundError):
            await reading_service.end_session(student_id, material_id)
