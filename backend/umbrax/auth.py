from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
import secrets
import time
from typing import Any

import jwt

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
WS_TOKEN_TTL_SECONDS = 24 * 60 * 60

PBKDF2_ITERS = int(os.environ.get("PBKDF2_ITERS", "200000"))


def _b64(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("utf-8").rstrip("=")


def _b64d(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("utf-8"))


def hash_password(pw: str) -> str:
    # Format: pbkdf2_sha256$iters$salt$hash
    salt = secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", pw.encode("utf-8"), salt, PBKDF2_ITERS, dklen=32)
    return f"pbkdf2_sha256${PBKDF2_ITERS}${_b64(salt)}${_b64(dk)}"


def verify_password(pw: str, pw_hash: str) -> bool:
    try:
        algo, iters_s, salt_s, hash_s = pw_hash.split("$", 3)
        if algo != "pbkdf2_sha256":
            return False
        iters = int(iters_s)
        salt = _b64d(salt_s)
        expected = _b64d(hash_s)
    except ValueError:
        return False
    dk = hashlib.pbkdf2_hmac("sha256", pw.encode("utf-8"), salt, iters, dklen=len(expected))
    return hmac.compare_digest(dk, expected)


def _jwt_secret() -> str:
    secret = os.environ.get("JWT_SECRET", "")
    if not secret:
        raise RuntimeError("JWT_SECRET is not configured")
    return secret


def make_ws_token(user_id: str, habbo_name: str) -> str:
    """Sign a token the WebSocket server accepts for 24 hours."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "userId": user_id,
        "habboName": habbo_name,
        "iat": now,
        "exp": now + WS_TOKEN_TTL_SECONDS,
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALG)


def decode_ws_token(token: str) -> dict[str, str] | None:
    try:
        data = jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALG])
    except jwt.PyJWTError as exc:
        logger.info("ws token rejected: %s", exc)
        return None
    return {"userId": data["userId"], "habboName": data["habboName"]}
