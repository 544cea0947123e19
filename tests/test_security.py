# tests/test_security.py
import time
import uuid
from types import SimpleNamespace

import pytest
from jose import jwt

from app.core.config import settings
from app.core.errors import HashingError, TokenExpiredError, TokenInvalidError
from app.core.security import (
    decode_token,
    hash_password,
    issue_token,
    password_policy_violation,
    verify_password,
)

SECRET = settings.JWT_SECRET


def _snapshot(token_version: int = 0):
    return SimpleNamespace(id=uuid.uuid4(), username="janedoe", token_version=token_version)


# --- Credential hasher ---
def test_hash_then_verify():
    h = hash_password("Valid1Pass!")
    assert h.startswith("$argon2")
    assert verify_password("Valid1Pass!", h) is True
    assert verify_password("Valid1Pass?", h) is False


def test_same_password_gets_fresh_salt():
    h1 = hash_password("same-password")
    h2 = hash_password("same-password")
    assert h1 != h2
    assert verify_password("same-password", h1)
    assert verify_password("same-password", h2)


@pytest.mark.parametrize("bad_hash", ["", "not-a-hash", "$argon2id$v=19$garbage"])
def test_verify_malformed_hash_raises(bad_hash):
    with pytest.raises(HashingError):
        verify_password("whatever", bad_hash)


# --- Token codec ---
def test_issue_and_decode_token():
    user = _snapshot(token_version=42)
    token = issue_token(user, SECRET, ttl_seconds=120)

    claims = decode_token(token, SECRET)
    assert claims.sub == user.id
    assert claims.username == "janedoe"
    assert claims.token_version == 42
    assert claims.exp - int(time.time()) <= 120


def test_default_ttl_from_settings():
    token = issue_token(_snapshot(), SECRET)
    claims = decode_token(token, SECRET)
    assert claims.exp - claims.iat == settings.JWT_EXPIRE_SECONDS


def test_expiry_is_inclusive():
    # ttl=0 -> exp == now，視為已過期
    token = issue_token(_snapshot(), SECRET, ttl_seconds=0)
    with pytest.raises(TokenExpiredError):
        decode_token(token, SECRET)


def test_expired_token():
    token = issue_token(_snapshot(), SECRET, ttl_seconds=-10)
    with pytest.raises(TokenExpiredError):
        decode_token(token, SECRET)


def test_wrong_secret_is_invalid():
    token = issue_token(_snapshot(), SECRET, ttl_seconds=60)
    with pytest.raises(TokenInvalidError):
        decode_token(token, "another-secret")


def test_tampered_token_is_invalid():
    token = issue_token(_snapshot(), SECRET, ttl_seconds=60)
    header, payload, sig = token.split(".")
    tampered = ".".join([header, payload[:-2] + ("AA" if payload[-2:] != "AA" else "BB"), sig])
    with pytest.raises(TokenInvalidError):
        decode_token(tampered, SECRET)


@pytest.mark.parametrize("garbage", ["", "not.a.jwt", "abc"])
def test_garbage_token_is_invalid(garbage):
    with pytest.raises(TokenInvalidError):
        decode_token(garbage, SECRET)


def test_signed_token_missing_claims_is_invalid():
    now = int(time.time())
    token = jwt.encode({"sub": str(uuid.uuid4()), "exp": now + 60}, SECRET, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(TokenInvalidError):
        decode_token(token, SECRET)


def test_signed_token_with_non_uuid_subject_is_invalid():
    now = int(time.time())
    payload = {"sub": "1", "username": "x", "token_version": 0, "exp": now + 60}
    token = jwt.encode(payload, SECRET, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(TokenInvalidError):
        decode_token(token, SECRET)


# --- Password policy ---
@pytest.mark.parametrize(
    "password, fragment",
    [
        ("Ab1!", "at least 8 characters"),
        ("alllowercase1!", "uppercase"),
        ("ALLUPPER1!", "lowercase"),
        ("NoDigits!", "digit"),
        ("NoSpecial1", "special character"),
    ],
)
def test_password_policy_rejects(password, fragment):
    violation = password_policy_violation(password)
    assert violation is not None
    assert fragment in violation


def test_password_policy_accepts():
    assert password_policy_violation("Valid1Pass!") is None
