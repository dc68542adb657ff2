"""Security primitives for password hashing and token signing."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import time
from typing import Any

PBKDF2_ALGORITHM = "pbkdf2_sha256"


class ExpiredTokenError(ValueError):
    """Raised when a correctly signed token is past its ``exp`` claim."""


def _b64url_encode(raw: bytes) -> str:
    """Return URL-safe base64 string without padding."""
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    """Decode URL-safe base64 string with optional missing padding."""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def hash_password(password: str, rounds: int) -> str:
    """Hash password using PBKDF2-HMAC-SHA256 with a fresh random salt."""
    salt = os.urandom(16)
    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return (
        f"{PBKDF2_ALGORITHM}${rounds}$"
        f"{_b64url_encode(salt)}${_b64url_encode(derived)}"
    )


def verify_password(password: str, stored_hash: str) -> bool:
    """Verify password against a stored PBKDF2 hash."""
    try:
        algo, rounds_raw, salt_b64, digest_b64 = stored_hash.split("$", 3)
        if algo != PBKDF2_ALGORITHM:
            return False
        rounds = int(rounds_raw)
        if rounds < 1:
            return False
        salt = _b64url_decode(salt_b64)
        expected = _b64url_decode(digest_b64)
    except (AttributeError, TypeError, ValueError):
        return False

    derived = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(derived, expected)


def build_signed_token(payload: dict[str, Any], secret_key: str) -> str:
    """Create compact HS256 JWT."""
    header = {"alg": "HS256", "typ": "JWT"}
    header_part = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_part = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    signature = hmac.new(secret_key.encode("utf-8"), signing_input, hashlib.sha256).digest()
    signature_part = _b64url_encode(signature)
    return f"{header_part}.{payload_part}.{signature_part}"


def decode_unverified_token(token: str) -> dict[str, Any]:
    """Return token claims without checking the signature.

    Raises ``ValueError`` when the token is not a three-part JWT with a JSON
    object payload.
    """
    parts = token.split(".") if isinstance(token, str) else []
    if len(parts) != 3:
        raise ValueError("Malformed token")
    try:
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("Invalid token payload") from exc
    if not isinstance(payload, dict):
        raise ValueError("Invalid token payload")
    return payload


def decode_signed_token(
    token: str, secret_key: str, *, now: float | None = None
) -> dict[str, Any]:
    """Decode and verify compact signed token.

    Raises ``ExpiredTokenError`` when the signature is valid but ``exp`` has
    passed, and ``ValueError`` for every other failure.
    """
    try:
        header_part, payload_part, signature_part = token.split(".")
    except (AttributeError, ValueError) as exc:
        raise ValueError("Malformed token") from exc

    try:
        header = json.loads(_b64url_decode(header_part).decode("utf-8"))
        got_sig = _b64url_decode(signature_part)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("Malformed token") from exc
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        raise ValueError("Unsupported token algorithm")

    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    expected_sig = hmac.new(secret_key.encode("utf-8"), signing_input, hashlib.sha256).digest()
    if not hmac.compare_digest(expected_sig, got_sig):
        raise ValueError("Invalid token signature")

    payload = decode_unverified_token(token)

    exp = payload.get("exp")
    if not isinstance(exp, int) or isinstance(exp, bool):
        raise ValueError("Token has no expiry")
    current = int(time.time() if now is None else now)
    if exp <= current:
        raise ExpiredTokenError("Token expired")

    return payload
