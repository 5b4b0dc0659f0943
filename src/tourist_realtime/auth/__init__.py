# Realtime Auth
"""
Credential verification for realtime connections.
"""

from .verifier import (
    AuthError,
    Identity,
    IdentityVerifier,
    InvalidCredential,
    MissingCredential,
    issue_token,
)

__all__ = [
    "AuthError",
    "Identity",
    "IdentityVerifier",
    "InvalidCredential",
    "MissingCredential",
    "issue_token",
]
