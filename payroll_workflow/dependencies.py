"""
Payroll Workflow - FastAPI Dependencies

Shared dependencies for authentication and the acting user's capabilities.
"""

import uuid
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_workflow.database import get_async_session
from payroll_workflow.models.department import Department
from payroll_workflow.models.user import User
from payroll_workflow.utils.error_handling import (
    AuthenticationException,
    AuthorizationException,
    ErrorCode,
    TokenInvalidException,
)
from payroll_workflow.utils.permissions import ActorContext
from payroll_workflow.utils.security import verify_access_token


# HTTP Bearer token security
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_async_session),
) -> User:
    """
    Get the current authenticated user from the bearer token.

    Raises:
        AuthenticationException: If the token is missing
        TokenInvalidException: If the token is invalid or names no user
    """
    if not credentials:
        raise AuthenticationException("Not authenticated")

    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise TokenInvalidException("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise TokenInvalidException("Invalid token payload")

    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        raise TokenInvalidException("Invalid user ID in token")

    user = await db.get(User, user_uuid)
    if not user:
        raise TokenInvalidException("User not found")

    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Get current user and verify they are active."""
    if not current_user.is_active:
        raise AuthorizationException(
            message="User account is deactivated",
            code=ErrorCode.ACCOUNT_DISABLED,
        )
    return current_user


async def get_current_actor(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_async_session),
) -> ActorContext:
    """Acting user's department and resolved approval capabilities."""
    department = None
    if current_user.department_id is not None:
        department = await db.get(Department, current_user.department_id)
    return ActorContext.from_user(current_user, department)
