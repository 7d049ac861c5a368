"""Caller authentication (token validation only)."""

from src.auth.dependencies import CurrentUser, get_current_user
from src.auth.permissions import UserRole
from src.auth.schemas import AuthenticatedUser


__all__ = ["AuthenticatedUser", "CurrentUser", "UserRole", "get_current_user"]
