"""Caller identity as seen by the domain layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from lending_marketplace.domain.enums import UserRole


@dataclass(frozen=True)
class Principal:
    """A verified caller: who they are, how to reach them, what they may do."""

    id: uuid.UUID
    email: str
    role: UserRole = UserRole.SME

    def has_role(self, *roles: UserRole) -> bool:
        return self.role in roles


@runtime_checkable
class IdentityVerifier(Protocol):
    """Validates a bearer credential issued by the identity provider."""

    def verify(self, token: str) -> Principal:
        """Return the principal, or raise AuthenticationError."""
        ...
