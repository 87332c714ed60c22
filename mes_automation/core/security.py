"""
Credentials for the MES automation backend.

Two unrelated kinds live here:

* operator credentials: PBKDF2 password hashes and HS256 bearer tokens
  for the admin API;
* webhook credentials: the random endpoint key and shared secret issued
  per registration, plus the masked form shown on every read after
  creation.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any


PASSWORD_SCHEME = "pbkdf2_sha256"
DEFAULT_HASH_ROUNDS = 120000
DEV_JWT_SECRET = "dev-jwt-secret-change-me"
DEFAULT_TOKEN_TTL_MIN = 720

# 32 random bytes -> 64 hex chars; 16 -> 32.
SECRET_KEY_BYTES = 32
ENDPOINT_KEY_BYTES = 16
MASK_PREFIX = "********"
MASK_VISIBLE_CHARS = 4


def _pbkdf2(password: str, salt: str, rounds: int) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), rounds).hex()


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password cannot be empty")
    rounds = int(os.getenv("MES_PASSWORD_HASH_ROUNDS", str(DEFAULT_HASH_ROUNDS)))
    salt = secrets.token_hex(16)
    return "$".join([PASSWORD_SCHEME, str(rounds), salt, _pbkdf2(password, salt, rounds)])


def verify_password(password: str, encoded: str) -> bool:
    parts = (encoded or "").split("$", 3)
    if len(parts) != 4 or parts[0] != PASSWORD_SCHEME or not parts[1].isdigit():
        return False
    _, rounds, salt, expected = parts
    return hmac.compare_digest(_pbkdf2(password, salt, int(rounds)), expected)


def _token_secret() -> str:
    configured = (os.getenv("MES_JWT_SECRET") or "").strip()
    if configured:
        return configured
    env = (os.getenv("MES_ENV") or os.getenv("APP_ENV") or "dev").strip().lower()
    return "" if env == "prod" else DEV_JWT_SECRET


def _token_ttl() -> timedelta:
    raw = os.getenv("MES_JWT_EXP_MIN", str(DEFAULT_TOKEN_TTL_MIN))
    minutes = int(raw) if raw.strip().isdigit() else DEFAULT_TOKEN_TTL_MIN
    return timedelta(minutes=max(1, minutes))


def _segment(obj: dict) -> str:
    raw = json.dumps(obj, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _unsegment(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _sign(signing_input: str, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256).digest()


def create_access_token(*, sub: str, user_id: str) -> str:
    secret = _token_secret()
    if not secret:
        raise RuntimeError("MES_JWT_SECRET is required when auth is enabled")
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": sub,
        "user_id": user_id,
        "iat": int(issued.timestamp()),
        "exp": int((issued + _token_ttl()).timestamp()),
    }
    signing_input = f"{_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_segment(claims)}"
    signature = base64.urlsafe_b64encode(_sign(signing_input, secret)).rstrip(b"=").decode("ascii")
    return f"{signing_input}.{signature}"


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry; raise ValueError on any defect."""
    secret = _token_secret()
    if not secret:
        raise ValueError("JWT secret not configured")
    try:
        header_b64, claims_b64, signature_b64 = token.split(".")
    except ValueError:
        raise ValueError("Malformed token")
    if not hmac.compare_digest(_sign(f"{header_b64}.{claims_b64}", secret), _unsegment(signature_b64)):
        raise ValueError("Invalid signature")
    claims = json.loads(_unsegment(claims_b64).decode("utf-8"))
    if not isinstance(claims, dict):
        raise ValueError("Invalid payload")
    expires = int(claims.get("exp") or 0)
    if expires <= 0:
        raise ValueError("Missing exp")
    if datetime.now(timezone.utc).timestamp() >= expires:
        raise ValueError("Token expired")
    return claims


def generate_secret_key() -> str:
    return secrets.token_hex(SECRET_KEY_BYTES)


def generate_endpoint_key() -> str:
    return secrets.token_hex(ENDPOINT_KEY_BYTES)


def mask_secret(secret: str | None) -> str:
    """Display form of a webhook secret: only the last 4 characters survive."""
    if not secret:
        return MASK_PREFIX
    return MASK_PREFIX + secret[-MASK_VISIBLE_CHARS:]


def secrets_match(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison of the caller's secret header with the stored one."""
    if provided is None or not expected:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
