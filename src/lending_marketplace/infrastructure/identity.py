"""Bearer-token verification against the identity provider's signing secret.

The provider issues HS256 JWTs shaped like:
    {"sub": "<uuid>", "email": "...", "user_metadata": {"role": "lender"}, "exp": ...}

Only verification happens here; issuing tokens belongs to the provider.
`create_access_token` exists for local tooling and tests.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from lending_marketplace.domain.enums import UserRole
from lending_marketplace.domain.exceptions import AuthenticationError, ServiceUnavailableError
from lending_marketplace.domain.identity import Principal
from lending_marketplace.logging_config import get_logger

logger = get_logger(__name__)

_ROLE_VALUES = {role.value for role in UserRole}


def _extract_role(claims: dict) -> UserRole:
    """Pick the application role from metadata claims, defaulting to SME."""
    for container in (claims.get("app_metadata"), claims.get("user_metadata"), claims):
        if isinstance(container, dict):
            role = container.get("role")
            if role in _ROLE_VALUES:
                return UserRole(role)
    return UserRole.SME


class JwtIdentityVerifier:
    """Validates provider-issued JWTs and turns their claims into a Principal."""

    def __init__(self, secret: str, algorithm: str = "HS256", audience: str | None = None) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience

    def verify(self, token: str) -> Principal:
        if not self._secret:
            raise ServiceUnavailableError("identity provider")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                options={"verify_aud": self._audience is not None},
            )
        except JWTError as err:
            logger.warning("auth.invalid_token", error=str(err))
            raise AuthenticationError("Invalid or expired token") from err

        subject = claims.get("sub")
        email = claims.get("email")
        if not subject or not email:
            raise AuthenticationError("Token is missing subject or email")
        try:
            user_id = uuid.UUID(str(subject))
        except ValueError as err:
            raise AuthenticationError("Invalid token subject") from err

        return Principal(id=user_id, email=str(email).lower(), role=_extract_role(claims))


def create_access_token(
    principal: Principal,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
    audience: str | None = None,
) -> str:
    """Mint a token in the provider's claim layout."""
    claims: dict = {
        "sub": str(principal.id),
        "email": principal.email,
        "user_metadata": {"role": principal.role.value},
        "exp": datetime.now(UTC) + (expires_delta or timedelta(hours=1)),
    }
    if audience is not None:
        claims["aud"] = audience
    return jwt.encode(claims, secret, algorithm=algorithm)
