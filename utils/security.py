"""Security helpers for headers, CORS, input sanitation and auth throttling."""
import hashlib
import html
import threading
from typing import Iterable, Mapping

from flask import request


def sanitize_input(data: Mapping) -> dict:
    """Return a sanitized copy of incoming data to reduce injection risk."""
    sanitized = {}
    for key, value in data.items():
        sanitized[html.escape(str(key))] = html.escape(str(value))
    return sanitized


def apply_security_headers(response, force_https: bool = False):
    """Apply headers suitable for a JSON API that also serves uploaded files."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; img-src 'self'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Cross-Origin-Resource-Policy", "cross-origin")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains")
    return response


def apply_cors_headers(response, allowed_origins: Iterable[str]):
    origin = request.headers.get("Origin")
    if origin and origin in set(allowed_origins):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Request-ID"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
        response.headers.add("Vary", "Origin")
    return response


def hash_value(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def password_meets_policy(password: str) -> tuple[bool, str | None]:
    if len(password) < 6:
        return False, "Password must be at least 6 characters."
    if password.lower() == password or password.upper() == password:
        return False, "Password must contain at least one uppercase letter, one lowercase letter, and one number."
    if not any(c.isdigit() for c in password):
        return False, "Password must contain at least one uppercase letter, one lowercase letter, and one number."
    return True, None


# In-process counters, per worker.
_attempts: dict[str, int] = {}
_attempts_lock = threading.Lock()


def track_attempt(key: str, limit: int = 10) -> bool:
    """Count an attempt for ``key`` and report whether it is still within ``limit``."""
    with _attempts_lock:
        count = _attempts.get(key, 0) + 1
        _attempts[key] = count
    return count <= limit


def reset_attempts() -> None:
    with _attempts_lock:
        _attempts.clear()
