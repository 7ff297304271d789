"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from patientflow.core.context import RequestContext
from patientflow.core.security import decode_access_token
from patientflow.database import get_db

# Security
security = HTTPBearer(auto_error=False)


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_request_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> RequestContext:
    """
    Build the request context from the bearer token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Acting user and structure

    Raises:
        HTTPException: If the token is invalid, expired or not scoped to a structure
    """
    if credentials is None:
        raise _credentials_error("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    user_id_str = payload.get("sub")
    structure_id_str = payload.get("structure_id")
    if not isinstance(user_id_str, str) or not isinstance(structure_id_str, str):
        raise _credentials_error()

    try:
        context = RequestContext(user_id=UUID(user_id_str), structure_id=UUID(structure_id_str))
    except ValueError:
        raise _credentials_error("Invalid identifier format")

    structlog.contextvars.bind_contextvars(
        user_id=str(context.user_id),
        structure_id=str(context.structure_id),
    )
    return context


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentContext = Annotated[RequestContext, Depends(get_request_context)]
