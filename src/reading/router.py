"""Gated sequential reading API endpoints.

Provides routes for:
- Progress initialization
- Page start, time updates and completion
- Navigation and download checks
- Progress queries (per material, per page and per course)

Every route acts on the authenticated caller's own progress.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status

from src.auth.dependencies import CurrentUser
from src.core.context import set_material_id
from src.materials.dependencies import MaterialServiceDep
from src.materials.models import Material

from .dependencies import ReadingServiceDep, handle_reading_error
from .schemas import (
    CourseReadingProgressResponse,
    DownloadEligibilityResponse,
    InitializeReadingRequest,
    NavigationResponse,
    PageProgressResponse,
    ReadingProgressResponse,
    ReadingProgressView,
    UpdatePageTimeRequest,
)
from .service import ReadingError


router = APIRouter(prefix="/v1/reading", tags=["reading"])

PageNumber = Annotated[int, Path(ge=1, description="1-based page number")]


# ==============================================================================
# Access Validation Helper
# ==============================================================================


async def validate_material_access(
    material_id: UUID,
    user: CurrentUser,
    material_service: MaterialServiceDep,
) -> Material:
    """Validate the material exists and the caller may read it.

    Raises:
        HTTPException 404: If material does not exist
        HTTPException 403: If caller is not enrolled in (or lecturing) the course
    """
    set_material_id(material_id)

    material = await material_service.get_material(material_id)
    if material is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Material not found",
        )

    if not await material_service.can_access(material, user.id, user.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this material",
        )

    return material


# ==============================================================================
# Initialization
# ==============================================================================


@router.post(
    "/{material_id}/initialize",
    response_model=ReadingProgressResponse,
    summary="Initialize reading progress",
)
async def initialize_reading(
    material_id: UUID,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
    data: InitializeReadingRequest | None = None,
) -> ReadingProgressResponse:
    """Create the caller's progress record for a material.

    Idempotent: an existing record is returned unchanged.
    """
    material = await validate_material_access(material_id, user, material_service)

    try:
        progress = await reading_service.initialize(
            student_id=user.id,
            material_id=material.id,
            course_id=material.course_id,
            total_pages=data.total_pages if data else None,
        )
        return ReadingProgressResponse.from_entity(progress)
    except ReadingError as e:
        raise handle_reading_error(e) from e


# ==============================================================================
# Page Endpoints
# ==============================================================================


@router.post(
    "/{material_id}/pages/{page_number}/start",
    response_model=ReadingProgressResponse,
    summary="Start reading a page",
)
async def start_page(
    material_id: UUID,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
    page_number: PageNumber,
) -> ReadingProgressResponse:
    """Open a page. Requires every previous page to be completed."""
    await validate_material_access(material_id, user, material_service)

    try:
        progress = await reading_service.start_page(user.id, material_id, page_number)
        return ReadingProgressResponse.from_entity(progress)
    except ReadingError as e:
        raise handle_reading_error(e) from e


@router.put(
    "/{material_id}/pages/{page_number}/time",
    response_model=ReadingProgressResponse,
    summary="Update time spent on a page",
)
async def update_page_time(
    material_id: UUID,
    data: UpdatePageTimeRequest,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
    page_number: PageNumber,
) -> ReadingProgressResponse:
    """Record client-reported time on a started page.

    Called periodically by the reader while the page is open.
    """
    await validate_material_access(material_id, user, material_service)

    try:
        progress = await reading_service.update_page_time(
            user.id, material_id, page_number, data.time_spent
        )
        return ReadingProgressResponse.from_entity(progress)
    except ReadingError as e:
        raise handle_reading_error(e) from e


@router.post(
    "/{material_id}/pages/{page_number}/complete",
    response_model=ReadingProgressResponse,
    summary="Complete a page",
)
async def complete_page(
    material_id: UUID,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
    page_number: PageNumber,
) -> ReadingProgressResponse:
    """Complete a page once its minimum reading time is met."""
    await validate_material_access(material_id, user, material_service)

    try:
        progress = await reading_service.complete_page(
            user.id, material_id, page_number
        )
        return ReadingProgressResponse.from_entity(progress)
    except ReadingError as e:
        raise handle_reading_error(e) from e


@router.get(
    "/{material_id}/pages/{page_number}/navigation",
    response_model=NavigationResponse,
    summary="Check page navigation",
)
async def check_navigation(
    material_id: UUID,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
    page_number: PageNumber,
) -> NavigationResponse:
    """Check whether a page is unlocked for the caller."""
    await validate_material_access(material_id, user, material_service)

    can_navigate = await reading_service.can_navigate(user.id, material_id, page_number)
    return NavigationResponse(page_number=page_number, can_navigate=can_navigate)


@router.get(
    "/{material_id}/pages/{page_number}/progress",
    response_model=PageProgressResponse,
    summary="Get page progress",
)
async def get_page_progress(
    material_id: UUID,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
    page_number: PageNumber,
) -> PageProgressResponse:
    """Get one page's state (defaults if the page was never opened)."""
    await validate_material_access(material_id, user, material_service)
    return await reading_service.get_page_progress(user.id, material_id, page_number)


# ==============================================================================
# Material Progress Endpoints
# ==============================================================================


@router.get(
    "/{material_id}/progress",
    response_model=ReadingProgressView,
    summary="Get reading progress",
)
async def get_reading_progress(
    material_id: UUID,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
) -> ReadingProgressView:
    """Get aggregate reading progress.

    Returns status "not_started" when the caller never opened the material.
    """
    await validate_material_access(material_id, user, material_service)
    return await reading_service.get_progress_view(user.id, material_id)


@router.get(
    "/{material_id}/can-download",
    response_model=DownloadEligibilityResponse,
    summary="Check download eligibility",
)
async def check_download(
    material_id: UUID,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
) -> DownloadEligibilityResponse:
    """Check whether every page is completed and the material can be downloaded."""
    await validate_material_access(material_id, user, material_service)
    return await reading_service.check_download(user.id, material_id)


@router.post(
    "/{material_id}/session/end",
    response_model=ReadingProgressResponse,
    summary="End reading session",
)
async def end_session(
    material_id: UUID,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
) -> ReadingProgressResponse:
    """Close the caller's open reading session."""
    await validate_material_access(material_id, user, material_service)

    try:
        progress = await reading_service.end_session(user.id, material_id)
        return ReadingProgressResponse.from_entity(progress)
    except ReadingError as e:
        raise handle_reading_error(e) from e


# ==============================================================================
# Course Endpoints
# ==============================================================================


@router.get(
    "/course/{course_id}",
    response_model=CourseReadingProgressResponse,
    summary="Get reading progress for a course",
)
async def get_course_reading_progress(
    course_id: UUID,
    reading_service: ReadingServiceDep,
    material_service: MaterialServiceDep,
    user: CurrentUser,
) -> CourseReadingProgressResponse:
    """List the caller's reading progress for every opened material of a course."""
    if not await material_service.can_access_course(course_id, user.id, user.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this course",
        )

    items = await reading_service.list_course_progress(user.id, course_id)
    return CourseReadingProgressResponse(
        course_id=course_id, items=items, total=len(items)
    )
