"""Password hashing, session cookies, the admin gate and response headers."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from typing import Any, Mapping

from .config import Settings

PBKDF2_ITERATIONS = 120_000
PBKDF2_KEY_LENGTH = 32
PBKDF2_DIGEST = "sha256"

SESSION_COOKIE_NAME = "mbd_session"
SESSION_MAX_AGE_SECONDS = 60 * 60 * 24 * 30

ADMIN_COOKIE_NAME = "ft_admin"
ADMIN_HEADER_NAME = "x-admin-passphrase"
ADMIN_MAX_AGE_SECONDS = 60 * 60 * 24 * 7


def hash_password(password: str) -> str:
    """Return ``iterations:salt:hash`` for the supplied password."""

    salt = secrets.token_hex(16)
    derived = hashlib.pbkdf2_hmac(
        PBKDF2_DIGEST,
        password.encode("utf-8"),
        salt.encode("utf-8"),
        PBKDF2_ITERATIONS,
        dklen=PBKDF2_KEY_LENGTH,
    )
    return f"{PBKDF2_ITERATIONS}:{salt}:{derived.hex()}"


def verify_password(password: str, stored: str) -> bool:
    """Check ``password`` against a value produced by :func:`hash_password`."""

    parts = (stored or "").split(":")
    if len(parts) != 3:
        return False
    iterations_raw, salt, expected_hex = parts
    try:
        iterations = int(iterations_raw)
        expected = bytes.fromhex(expected_hex)
    except ValueError:
        return False
    if iterations <= 0 or not salt or not expected:
        return False

    derived = hashlib.pbkdf2_hmac(
        PBKDF2_DIGEST,
        password.encode("utf-8"),
        salt.encode("utf-8"),
        iterations,
        dklen=PBKDF2_KEY_LENGTH,
    )
    if len(derived) != len(expected):
        return False
    return hmac.compare_digest(derived, expected)


@dataclass(slots=True)
class SessionPayload:
    """Identity carried inside the session cookie."""

    id: str
    email: str


def encode_session(payload: SessionPayload) -> str:
    raw = json.dumps({"id": payload.id, "email": payload.email}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_session(value: str | None) -> SessionPayload | None:
    """Decode a session cookie, returning ``None`` for anything malformed."""

    if not value:
        return None
    padded = value + "=" * (-len(value) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    user_id = data.get("id")
    email = data.get("email")
    if not isinstance(user_id, str) or not user_id:
        return None
    if not isinstance(email, str):
        return None
    return SessionPayload(id=user_id, email=email)


def session_cookie_options(settings: Settings) -> dict[str, Any]:
    return {
        "httponly": True,
        "samesite": "lax",
        "secure": settings.is_production,
        "path": "/",
        "max_age": SESSION_MAX_AGE_SECONDS,
    }


def admin_cookie_options(settings: Settings) -> dict[str, Any]:
    return {
        "httponly": True,
        "samesite": "lax",
        "secure": settings.is_production,
        "path": "/",
        "max_age": ADMIN_MAX_AGE_SECONDS,
    }


def is_admin_request(
    settings: Settings,
    headers: Mapping[str, str],
    cookies: Mapping[str, str],
) -> bool:
    """Return whether a request passes the shared-passphrase write gate."""

    if not settings.public_readonly:
        return True
    expected = settings.admin_passphrase
    if not expected:
        return False
    supplied = headers.get(ADMIN_HEADER_NAME) or cookies.get(ADMIN_COOKIE_NAME)
    if not supplied:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def passphrase_matches(settings: Settings, passphrase: str) -> bool:
    expected = settings.admin_passphrase
    if not expected or not passphrase:
        return False
    return hmac.compare_digest(passphrase.encode("utf-8"), expected.encode("utf-8"))


def security_headers(settings: Settings) -> dict[str, str]:
    headers = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    }
    if settings.is_production:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers
