"""
Identity Verifier
-----------------
Validates the bearer credential presented when a realtime connection opens.

Credentials are HS256 JWTs issued by the platform's auth service. The
subject is carried in the "userId" claim (or the standard "sub" claim) and
the role in "role". Tokens without a role are treated as plain users.

verify() is side-effect free: it never touches rooms or sessions.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt


DEFAULT_ROLE = "user"
SUBJECT_CLAIMS = ("userId", "sub")


class AuthError(Exception):
    """Base class for credential rejections."""


class MissingCredential(AuthError):
    """No credential was presented."""


class InvalidCredential(AuthError):
    """Credential failed signature, expiry or claim checks."""


@dataclass(frozen=True)
class Identity:
    """Verified identity of a connection."""
    subject_id: str
    role: str = DEFAULT_ROLE


class IdentityVerifier:
    """
    Verifies bearer JWTs against a shared secret.

    Usage:
        verifier = IdentityVerifier(secret="...")
        identity = verifier.verify(token)   # raises AuthError on rejection
    """

    def __init__(self, secret: str, algorithm: str = "HS256", leeway_sec: float = 0.0):
        """
        Args:
            secret: Shared HMAC secret.
            algorithm: Accepted signing algorithm.
            leeway_sec: Clock skew tolerated on expiry checks.
        """
        if not secret:
            raise ValueError("secret is required")
        self._secret = secret
        self._algorithm = algorithm
        self._leeway = leeway_sec

    def verify(self, credential: Optional[str]) -> Identity:
        """
        Verify a credential.

        Args:
            credential: Raw bearer token, or None.

        Returns:
            Identity encoded in the token.

        Raises:
            MissingCredential: If no credential was presented.
            InvalidCredential: If the token is malformed, tampered, expired,
                or carries no subject.
        """
        if credential is None or not str(credential).strip():
            raise MissingCredential("no credential presented")

        try:
            claims = jwt.decode(
                str(credential).strip(),
                self._secret,
                algorithms=[self._algorithm],
                leeway=self._leeway,
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidCredential("credential expired") from exc
        except jwt.PyJWTError as exc:
            raise InvalidCredential(f"credential rejected: {exc}") from exc

        subject = None
        for claim in SUBJECT_CLAIMS:
            if claims.get(claim) not in (None, ""):
                subject = claims[claim]
                break

        if subject is None:
            raise InvalidCredential("credential has no subject claim")

        role = claims.get("role") or DEFAULT_ROLE
        return Identity(subject_id=str(subject), role=str(role))


def issue_token(
    secret: str,
    subject_id: Any,
    role: Optional[str] = None,
    expires_in_sec: int = 7 * 24 * 3600,
    algorithm: str = "HS256",
) -> str:
    """
    Issue a signed bearer token.

    Mirrors the auth service's token layout so local tools and tests can mint
    credentials without it.

    Args:
        secret: Shared HMAC secret.
        subject_id: Value for the "userId" claim.
        role: Optional role claim.
        expires_in_sec: Lifetime in seconds (negative values mint expired tokens).
        algorithm: Signing algorithm.
    """
    now = int(time.time())
    claims: Dict[str, Any] = {
        "userId": subject_id,
        "iat": now,
        "exp": now + int(expires_in_sec),
    }
    if role:
        claims["role"] = role
    return jwt.encode(claims, secret, algorithm=algorithm)
