"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the caller's identity, and services wired to the capabilities the app
factory placed on `app.state` (oracle adapter, verifier, task runner).
Tests replace those capabilities on `app.state` to substitute doubles.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from lending_marketplace.domain.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ServiceUnavailableError,
)
from lending_marketplace.domain.identity import IdentityVerifier, Principal
from lending_marketplace.infrastructure.database.engine import session_scope
from lending_marketplace.infrastructure.redis_client import IdempotencyStore
from lending_marketplace.services.asset_service import AssetService
from lending_marketplace.services.escrow_service import EscrowService
from lending_marketplace.services.loan_service import LoanService
from lending_marketplace.services.verification_service import VerificationService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from lending_marketplace.domain.enums import UserRole

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session for the request, committed on success, rolled back on error."""
    factory = request.app.state.session_factory
    if factory is None:
        raise ServiceUnavailableError("database")
    async with session_scope(factory) as session:
        yield session


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def get_identity_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.identity_verifier


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> Principal:
    """Authenticate the bearer token on the request."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("No authorization token provided")
    return verifier.verify(credentials.credentials)


def require_roles(*roles: UserRole) -> Callable[..., Awaitable[Principal]]:
    """Return a dependency that admits only callers holding one of `roles`."""

    async def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.has_role(*roles):
            allowed = ", ".join(role.value for role in roles)
            raise AccessDeniedError(f"This endpoint requires one of the roles: {allowed}")
        return principal

    return _check


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def get_idempotency_store(request: Request) -> IdempotencyStore | None:
    """Idempotency store over Redis, or None when Redis is not connected."""
    client = getattr(request.app.state, "redis", None)
    if client is None:
        return None
    settings = request.app.state.settings
    return IdempotencyStore(client, ttl_seconds=settings.redis_idempotency_ttl_seconds)


async def get_escrow_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    idempotency: IdempotencyStore | None = Depends(get_idempotency_store),
) -> EscrowService:
    settings = request.app.state.settings
    return EscrowService(
        session,
        idempotency=idempotency,
        frontend_url=settings.frontend_url,
        recent_activity_limit=settings.recent_activity_limit,
    )


async def get_asset_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> AssetService:
    state = request.app.state
    return AssetService(session, state.oracle, state.task_runner, state.session_factory)


async def get_loan_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> LoanService:
    state = request.app.state
    return LoanService(
        session,
        state.oracle,
        state.task_runner,
        state.session_factory,
        default_interest_rate=state.settings.default_interest_rate,
    )


async def get_verification_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> VerificationService:
    return VerificationService(session, request.app.state.verifier)
