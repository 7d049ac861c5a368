"""FastAPI dependencies for material lookup."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .service import MaterialService


async def get_material_service(request: Request) -> MaterialService:
    """Get material service from app state."""
    app_state = request.app.state
    if not getattr(app_state, "material_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Material service not available",
        )
    return app_state.material_service


MaterialServiceDep = Annotated[MaterialService, Depends(get_material_service)]
