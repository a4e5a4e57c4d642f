from datetime import timedelta

import pytest
from src.core import auth
from src.core.auth import AccessClaims, TokenError, create_access_token, decode_access_token
from src.core.config import Settings


def test_create_and_decode_token_roundtrip() -> None:
    token = create_access_token("user-123", roles=["learner"], email="user@example.com")

    claims = decode_access_token(token)

    assert claims == AccessClaims(subject="user-123", roles=("learner",), email="user@example.com")


def test_unknown_role_cannot_be_issued() -> None:
    with pytest.raises(TokenError):
        create_access_token("user-123", roles=["superuser"])


def test_tampered_token_is_rejected() -> None:
    token = create_access_token("user-123", roles=["admin"])

    with pytest.raises(TokenError):
        decode_access_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB"))


def test_expired_token_is_rejected() -> None:
    token = create_access_token("user-123", roles=["learner"], expires_delta=timedelta(seconds=-5))

    with pytest.raises(TokenError, match="expired"):
        decode_access_token(token)


def test_issuer_and_audience_are_enforced_when_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    minted_by_other = Settings(JWT_ISSUER="https://other-idp", JWT_AUDIENCE="lms")
    expected = Settings(JWT_ISSUER="https://idp", JWT_AUDIENCE="lms")

    monkeypatch.setattr(auth, "get_settings", lambda: minted_by_other)
    token = create_access_token("user-123", roles=["learner"])
    monkeypatch.setattr(auth, "get_settings", lambda: expected)

    with pytest.raises(TokenError):
        decode_access_token(token)

    token = create_access_token("user-123", roles=["learner"])
    assert decode_access_token(token).subject == "user-123"
