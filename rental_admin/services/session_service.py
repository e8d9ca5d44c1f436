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


class SessionRequiredError(RuntimeError):
    pass


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


def _sign(encoded: str) -> bytes:
    return hmac.new(_SESSION_SECRET, encoded.encode("ascii"), hashlib.sha256).digest()


def normalize_session(payload: dict[str, Any]) -> dict[str, Any] | None:
    """Return the session fields the app relies on, or None when unusable."""
    user_id = str(payload.get("roqUserId") or "").strip()
    tenant_id = str(payload.get("tenantId") or "").strip()
    if not user_id or not tenant_id:
        return None
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    try:
        expires_at = float(payload.get("expiresAt") or 0.0)
    except (TypeError, ValueError):
        return None
    return {
        "roqUserId": user_id,
        "tenantId": tenant_id,
        "roles": [str(role) for role in roles if str(role).strip()],
        "expiresAt": expires_at,
    }


def is_expired(session: dict[str, Any], now: float | None = None) -> bool:
    current = time.time() if now is None else now
    return current >= float(session.get("expiresAt") or 0.0)


def create_session(payload: dict[str, Any], ttl_seconds: int = SESSION_TTL_SECONDS) -> str:
    """Mint a token the way the identity service does (local tooling and tests)."""
    session_payload = dict(payload)
    session_payload["expiresAt"] = time.time() + ttl_seconds
    body = json.dumps(session_payload, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    encoded = _b64encode(body)
    return f"{encoded}.{_b64encode(_sign(encoded))}"


def get_session(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    now = time.time()
    try:
        encoded, encoded_sig = token.split(".", 1)
        if not hmac.compare_digest(_sign(encoded), _b64decode(encoded_sig)):
            return None
        decoded_session = json.loads(_b64decode(encoded).decode("utf-8"))
    except ValueError:
        return None

    if not isinstance(decoded_session, dict):
        return None
    session = normalize_session(decoded_session)
    if not session or is_expired(session, now):
        return None

    with _LOCK:
        for revoked_token, revoked_exp in list(_REVOKED_TOKENS.items()):
            if now >= revoked_exp:
                _REVOKED_TOKENS.pop(revoked_token, None)
        if token in _REVOKED_TOKENS:
            return None
    return session


def remove_session(token: str | None) -> None:
    session = get_session(token)
    if not session:
        return
    with _LOCK:
        _REVOKED_TOKENS[token] = float(session["expiresAt"])
