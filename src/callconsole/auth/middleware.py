"""
Authentication dependency for JWT-protected routes.

This module exposes:
- CurrentUser
- get_current_user
- CurrentUserDep (FastAPI dependency alias)
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from callconsole.auth.jwt import JWTHandler
from callconsole.config import Settings, get_settings
from callconsole.shared.exceptions import InvalidTokenError, TokenExpiredError
from callconsole.shared.logging import get_logger

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Current authenticated caller identity."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(..., description="User ID")
    email: str = Field(default="", description="User email")
    name: str = Field(default="", description="User display name")
    role: str = Field(default="user", description="User role")


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    """Extract and validate the current user from the bearer token."""
    if credentials is None:
        logger.warning(
            "Missing authentication credentials",
            extra={
                "endpoint": str(request.url.path),
                "method": request.method,
                "client_ip": request.client.host if request.client else "unknown",
            },
        )
        raise _unauthorized("MISSING_CREDENTIALS", "Authentication credentials required")

    try:
        payload = JWTHandler(settings).validate_access_token(credentials.credentials)

        raw_user_id = payload.get("user_id") or payload.get("sub")
        if not raw_user_id:
            raise InvalidTokenError(
                message="Token missing user id",
                details={"payload_keys": sorted(payload.keys())},
            )
        try:
            user_id = UUID(str(raw_user_id))
        except ValueError as e:
            raise InvalidTokenError(message="Token user id is not a UUID") from e

        return CurrentUser(
            id=user_id,
            email=payload.get("email", "") or "",
            name=payload.get("name", "") or "",
            role=payload.get("role", "user") or "user",
        )

    except TokenExpiredError:
        logger.info(
            "Token expired",
            extra={"endpoint": str(request.url.path), "method": request.method},
        )
        raise _unauthorized("TOKEN_EXPIRED", "Token has expired")
    except InvalidTokenError as e:
        logger.warning(
            "Invalid token",
            extra={
                "endpoint": str(request.url.path),
                "method": request.method,
                "error": e.message,
            },
        )
        raise _unauthorized(e.code, e.message)


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
