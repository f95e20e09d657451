"""Identity resolution and session handling."""

from .identity import (
    Credential,
    CredentialSource,
    IdentityProvider,
    IdentityResolver,
    IssuedSession,
    JWTIdentityProvider,
    UserIdentity,
)

__all__ = [
    "Credential",
    "CredentialSource",
    "IdentityProvider",
    "IdentityResolver",
    "IssuedSession",
    "JWTIdentityProvider",
    "UserIdentity",
]
