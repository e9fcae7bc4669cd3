"""Signed access/refresh credentials with refresh rotation."""
import uuid
from typing import Any, Dict

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from utils.security import hash_value

ACCESS_SALT = "civicconnect-access"
REFRESH_SALT = "civicconnect-refresh"


class TokenError(Exception):
    """Raised when a credential is missing, tampered with or expired."""


def _serializer(secret_key: str, salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key, salt=salt)


def _issue(secret_key: str, salt: str, user_id: str) -> str:
    return _serializer(secret_key, salt).dumps({"uid": user_id, "jti": uuid.uuid4().hex})


def _verify(token: str | None, secret_key: str, salt: str, max_age: int) -> Dict[str, Any]:
    if not token:
        raise TokenError("Token missing")
    try:
        payload = _serializer(secret_key, salt).loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise TokenError("Token expired") from exc
    except BadSignature as exc:
        raise TokenError("Token invalid") from exc
    if not isinstance(payload, dict) or not payload.get("uid"):
        raise TokenError("Token payload invalid")
    return payload


def issue_tokens(user) -> tuple[str, str]:
    """Return a fresh (access, refresh) pair and record the refresh hash on the user.

    The caller owns the commit. Overwriting the stored hash revokes any refresh
    token issued before this call.
    """
    cfg = current_app.config
    access = _issue(cfg["JWT_ACCESS_SECRET"], ACCESS_SALT, user.id)
    refresh = _issue(cfg["JWT_REFRESH_SECRET"], REFRESH_SALT, user.id)
    user.refresh_token_hash = hash_value(refresh)
    return access, refresh


def verify_access_token(token: str | None) -> Dict[str, Any]:
    cfg = current_app.config
    return _verify(token, cfg["JWT_ACCESS_SECRET"], ACCESS_SALT, cfg["ACCESS_TOKEN_TTL_SECONDS"])


def verify_refresh_token(token: str | None) -> Dict[str, Any]:
    cfg = current_app.config
    return _verify(token, cfg["JWT_REFRESH_SECRET"], REFRESH_SALT, cfg["REFRESH_TOKEN_TTL_SECONDS"])


def refresh_matches(user, token: str) -> bool:
    return bool(user.refresh_token_hash) and user.refresh_token_hash == hash_value(token)


def set_refresh_cookie(response, token: str):
    cfg = current_app.config
    response.set_cookie(
        cfg["REFRESH_COOKIE_NAME"],
        token,
        max_age=cfg["REFRESH_TOKEN_TTL_SECONDS"],
        httponly=True,
        secure=cfg.get("REFRESH_COOKIE_SECURE", False),
        samesite="Strict",
    )
    return response


def clear_refresh_cookie(response):
    response.delete_cookie(current_app.config["REFRESH_COOKIE_NAME"], httponly=True, samesite="Strict")
    return response
