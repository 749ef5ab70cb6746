from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.core.logging import request_id_var
from app.db import engine as db_engine
from app.models.principal import Principal
from app.repos.repositories import Repositories
from app.services import token_service
from app.services.context import ServiceContext

logger = logging.getLogger(__name__)

# Tokens are issued by the platform identity service.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Validate the bearer token and return the caller's Principal."""
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

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s",
        principal.user_id,
        principal.roles,
        extra={"user_id": principal.user_id},
    )
    return principal


def require_role(role: str):
    """Dependency factory: demand a platform role.

    Usage: Depends(require_role("admin"))
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


@asynccontextmanager
async def open_context(principal: Principal) -> AsyncIterator[ServiceContext]:
    """Yield a ServiceContext whose writes form one unit.

    With a database: one session per request, committed when the
    handler returns and rolled back when it raises.  Deferred actions
    (notifications, cache invalidation) run only after the commit.
    """
    factory = db_engine.async_session_factory
    if factory is None:
        ctx = ServiceContext(
            principal=principal,
            repos=Repositories.in_memory(),
            request_id=request_id_var.get(),
        )
        yield ctx
        await ctx.run_post_commit()
        return

    async with factory() as session:
        ctx = ServiceContext(
            principal=principal,
            repos=Repositories.for_session(session),
            request_id=request_id_var.get(),
        )
        try:
            yield ctx
            await session.commit()
        except Exception:
            await session.rollback()
            raise
    await ctx.run_post_commit()


async def get_context(
    principal: Annotated[Principal, Depends(require_user)],
) -> AsyncGenerator[ServiceContext, None]:
    async with open_context(principal) as ctx:
        yield ctx
