from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import threading
import time
from typing import Any


SESSION_TTL_SECONDS = 60 * 60 * 12

_LOCK = threading.Lock()
_REVOKED_TOKENS: dict[str, float] = {}


def _require_session_secret() -> bytes:
    raw = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
    if len(raw) < 32:
        raise RuntimeError("SESSION_SIGNING_SECRET must be set and at least 32 characters long.")
    return raw.encode("utf-8")


_SESSION_SECRET = _require_session_secret()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(encoded: str) -> bytes:
    return base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))


def _prune_revoked_unlocked(now: float) -> None:
    for token, expires_at in list(_REVOKED_TOKENS.items()):
        if now >= expires_at:
            _REVOKED_TOKENS.pop(token, None)


def create_session(payload: dict[str, Any]) -> str:
    session_payload = dict(payload)
    session_payload["expiresAt"] = time.time() + SESSION_TTL_SECONDS
    body = json.dumps(session_payload, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    encoded = _b64encode(body)
    signature = hmac.new(_SESSION_SECRET, encoded.encode("ascii"), hashlib.sha256).digest()
    return f"{encoded}.{_b64encode(signature)}"


def get_session(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    now = time.time()
    try:
        encoded, encoded_sig = token.split(".", 1)
        expected_sig = hmac.new(_SESSION_SECRET, encoded.encode("ascii"), hashlib.sha256).digest()
        if not hmac.compare_digest(expected_sig, _b64decode(encoded_sig)):
            return None
        decoded_session = json.loads(_b64decode(encoded).decode("utf-8"))
    except (ValueError, UnicodeError):
        return None

    if not isinstance(decoded_session, dict):
        return None
    if now >= float(decoded_session.get("expiresAt") or 0.0):
        return None

    with _LOCK:
        _prune_revoked_unlocked(now)
        if token in _REVOKED_TOKENS:
            return None
    return decoded_session


def remove_session(token: str | None) -> None:
    session = get_session(token)
    if not session:
        return
    with _LOCK:
        _REVOKED_TOKENS[str(token)] = float(session.get("expiresAt") or time.time() + SESSION_TTL_SECONDS)


def session_user_id(session: dict[str, Any] | None) -> int | None:
    """The ``userID`` a cookie or token session was issued for, if it parses."""
    if not session:
        return None
    try:
        user_id = int(session.get("userID") or 0)
    except (TypeError, ValueError):
        return None
    return user_id if user_id > 0 else None
