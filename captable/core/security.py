"""Bearer credential handling.

Tokens are issued by the upstream identity provider; this service only forwards
them to the persistence service and reads the subject for audit records.
"""
from __future__ import annotations

from dataclasses import dataclass

from jose import JWTError, jwt

from captable.domain.errors import NotAuthenticatedError


@dataclass(slots=True, frozen=True)
class BearerCredential:
    token: str

    def __repr__(self) -> str:
        return "BearerCredential(token='***')"


def require_credential(token: str | None) -> BearerCredential:
    """Return a credential for ``token`` or fail before any network call."""

    if token is None or not token.strip():
        raise NotAuthenticatedError("Not authenticated")
    return BearerCredential(token=token.strip())


def actor_from_credential(credential: BearerCredential | None) -> str | None:
    """Best-effort subject lookup; opaque tokens have no readable actor."""

    if credential is None:
        return None
    try:
        claims = jwt.get_unverified_claims(credential.token)
    except JWTError:
        return None
    for claim in ("email", "preferred_username", "sub"):
        value = claims.get(claim)
        if value:
            return str(value)
    return None


__all__ = ["BearerCredential", "actor_from_credential", "require_credential"]
