from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from enrollment_service.db.engine import async_session_factory
from enrollment_service.models.principal import Principal
from enrollment_service.repos.catalog_repo import (
    InMemoryCatalogRepo,
    seed_sample_catalog,
)
from enrollment_service.repos.enrollment_repo import InMemoryEnrollmentRepo
from enrollment_service.repos.pg_enrollment_repo import PgEnrollmentRepo
from enrollment_service.services import token_service
from enrollment_service.services.enrollment_service import EnrollmentService

logger = logging.getLogger(__name__)

# Tokens are issued by the identity service; the URL is informational.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")

# --- In-memory stores, used when DATABASE_URL is not configured ---
catalog_repo = InMemoryCatalogRepo()
seed_sample_catalog(catalog_repo)
enrollment_repo = InMemoryEnrollmentRepo()


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    return Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("instructor"))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.user_id,
                role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


async def get_enrollment_service() -> AsyncGenerator[EnrollmentService, None]:
    """Request-scoped service.

    With a database, each request gets its own session: committed when the
    handler succeeds, rolled back when it raises.
    """
    if async_session_factory is None:
        yield EnrollmentService(enrollment_repo, catalog_repo)
        return

    async with async_session_factory() as session:
        try:
            yield EnrollmentService(PgEnrollmentRepo(session), catalog_repo)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
