"""FastAPI dependencies for reading progress.

Provides dependency injection for:
- Reading progress service
- Error handlers
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import ReadingError, ReadingProgressService


async def get_reading_service(request: Request) -> ReadingProgressService:
    """Get reading progress service from app state."""
    app_state = request.app.state
    if not getattr(app_state, "reading_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reading service not available",
        )
    return app_state.reading_service


# Type alias for dependency injection
ReadingServiceDep = Annotated[ReadingProgressService, Depends(get_reading_service)]


def handle_reading_error(error: ReadingError) -> HTTPException:
    """Convert reading errors to HTTP exceptions.

    Args:
        error: Reading error

    Returns:
        HTTPException with appropriate status code
    """
    status_map = {
        "progress_not_found": status.HTTP_404_NOT_FOUND,
        "page_not_started": status.HTTP_404_NOT_FOUND,
        "invalid_page": status.HTTP_400_BAD_REQUEST,
        "page_locked": status.HTTP_403_FORBIDDEN,
        "min_time_not_met": status.HTTP_400_BAD_REQUEST,
        "concurrent_update": status.HTTP_409_CONFLICT,
    }

    status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=error.message,
    )
