# auth.py
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi.requests import HTTPConnection
from jose import JWTError, jwt
from pydantic import BaseModel

from gateway.routes import RouteEntry

logger = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid or expired token"
MISSING_TOKEN_MESSAGE = "Authorization token required"


class AuthClaims(BaseModel):
    subject_id: str
    email: Optional[str] = None
    expiry: datetime


class AuthenticationError(Exception):
    """Raised when a request must be answered with 401 and go no further."""

    def __init__(self, message: str = INVALID_TOKEN_MESSAGE):
        super().__init__(message)
        self.message = message


def extract_bearer_token(authorization: str) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header value."""
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError()
    return parts[1]


def decode_token(token: str, secret: str, algorithm: str = "HS256") -> AuthClaims:
    """
    Verify signature and expiry of a token and turn its payload into claims.

    Tokens issued by the user service carry the user id in both ``sub`` and
    ``id``; either one is accepted as the subject.
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm], options={"require_exp": True})
    except JWTError as exc:
        logger.info(f"Rejected token: {exc}")
        raise AuthenticationError()

    subject = payload.get("sub") or payload.get("id")
    if subject is None:
        raise AuthenticationError()

    return AuthClaims(
        subject_id=str(subject),
        email=payload.get("email"),
        expiry=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def authenticate(request: HTTPConnection, secret: str, algorithm: str = "HS256") -> Optional[AuthClaims]:
    """
    Non-blocking gate: requests without an Authorization header pass with no
    claims, a header that does not verify aborts the request.
    """
    authorization = request.headers.get("authorization")
    if authorization is None:
        request.state.claims = None
        return None

    claims = decode_token(extract_bearer_token(authorization), secret, algorithm)
    request.state.claims = claims
    return claims


def require_claims(route: RouteEntry, claims: Optional[AuthClaims]) -> None:
    """Hard gate in front of protected routes."""
    if route.requires_auth and claims is None:
        raise AuthenticationError(MISSING_TOKEN_MESSAGE)
