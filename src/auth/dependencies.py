"""FastAPI dependencies for authentication.

Provides dependency injection for:
- Bearer token extraction
- Current caller (id + role) from the JWT
"""

from datetime import UTC, datetime
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from src.auth.schemas import AuthenticatedUser
from src.auth.security import decode_access_token
from src.core.context import set_user_id


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


async def get_current_user(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> AuthenticatedUser:
    """Get current authenticated caller from JWT token.

    Raises:
        HTTPException(401): If token is missing, invalid, or expired
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token not provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(token)
        user_id = UUID(str(payload["sub"]))
    except (JWTError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    # Set user_id in context for logging
    set_user_id(user_id)

    issued_at = payload.get("iat")
    return AuthenticatedUser(
        id=user_id,
        role=payload["role"],
        email=payload.get("email"),
        issued_at=datetime.fromtimestamp(issued_at, tz=UTC) if issued_at else None,
    )


# Basic authenticated caller
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
