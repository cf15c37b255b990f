"""
Tests for the bearer token gate
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Request
from jose import jwt

from gateway.auth import (
    AuthenticationError,
    authenticate,
    decode_token,
    extract_bearer_token,
    require_claims,
)
from gateway.routes import RouteEntry

SECRET = "auth-secret"


def make_request(authorization=None):
    headers = []
    if authorization is not None:
        headers.append((b"authorization", authorization.encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


def sign(payload, secret=SECRET):
    return jwt.encode(payload, secret, algorithm="HS256")


def future(hours=1):
    return datetime.now(timezone.utc) + timedelta(hours=hours)


class TestExtractBearerToken:

    def test_bearer_scheme(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_scheme_is_case_insensitive(self):
        assert extract_bearer_token("bearer abc") == "abc"

    @pytest.mark.parametrize("value", ["abc", "Basic dXNlcjpwYXNz", "Bearer a b", ""])
    def test_malformed_header(self, value):
        with pytest.raises(AuthenticationError):
            extract_bearer_token(value)


class TestDecodeToken:

    def test_claims_from_user_service_token(self):
        expiry = future()
        claims = decode_token(sign({"sub": "u1", "id": "u1", "email": "a@x.com", "exp": expiry}), SECRET)

        assert claims.subject_id == "u1"
        assert claims.email == "a@x.com"
        assert claims.expiry == expiry.replace(microsecond=0)

    def test_id_claim_is_accepted_as_subject(self):
        claims = decode_token(sign({"id": "legacy", "email": "a@x.com", "exp": future()}), SECRET)

        assert claims.subject_id == "legacy"

    def test_expired_token(self):
        with pytest.raises(AuthenticationError) as exc_info:
            decode_token(sign({"sub": "u1", "exp": future(hours=-1)}), SECRET)

        assert exc_info.value.message == "Invalid or expired token"

    def test_wrong_secret(self):
        with pytest.raises(AuthenticationError):
            decode_token(sign({"sub": "u1", "exp": future()}, secret="other"), SECRET)

    def test_token_without_expiry(self):
        with pytest.raises(AuthenticationError):
            decode_token(sign({"sub": "u1"}), SECRET)

    def test_token_without_subject(self):
        with pytest.raises(AuthenticationError):
            decode_token(sign({"email": "a@x.com", "exp": future()}), SECRET)


class TestAuthenticate:

    def test_no_header_passes_without_claims(self):
        request = make_request()

        assert authenticate(request, SECRET) is None
        assert request.state.claims is None

    def test_valid_header_attaches_claims(self):
        request = make_request(f"Bearer {sign({'sub': 'u1', 'email': 'a@x.com', 'exp': future()})}")

        claims = authenticate(request, SECRET)

        assert claims.subject_id == "u1"
        assert request.state.claims is claims

    def test_invalid_header_aborts(self):
        with pytest.raises(AuthenticationError):
            authenticate(make_request("Bearer garbage"), SECRET)


class TestRequireClaims:

    public = RouteEntry(prefix="/api/auth", service="user", upstream_url="http://u", rewrite_to="/auth",
                        requires_auth=False)
    protected = RouteEntry(prefix="/api/orders", service="order", upstream_url="http://o", rewrite_to="/orders")

    def test_public_route_allows_anonymous(self):
        require_claims(self.public, None)

    def test_protected_route_rejects_anonymous(self):
        with pytest.raises(AuthenticationError) as exc_info:
            require_claims(self.protected, None)

        assert exc_info.value.message == "Authorization token required"

    def test_protected_route_accepts_claims(self):
        claims = decode_token(sign({"sub": "u1", "exp": future()}), SECRET)
        require_claims(self.protected, claims)
