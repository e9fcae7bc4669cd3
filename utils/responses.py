"""JSON envelope helpers shared by every API blueprint."""
from typing import Any, Optional

from flask import jsonify


def success_response(data: Any = None, message: Optional[str] = None, status: int = 200, **extra):
    body: dict = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status


def error_response(message: str, status: int = 400, errors: Any = None, error: Optional[str] = None, **extra):
    body: dict = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    if error:
        body["error"] = error
    body.update(extra)
    return jsonify(body), status


def pagination_meta(page: int, limit: int, total: int) -> dict:
    return {
        "currentPage": page,
        "totalPages": (total + limit - 1) // limit if limit else 0,
        "total": total,
        "limit": limit,
    }


def page_args(args, default_limit: int = 10, max_limit: int = 100) -> tuple[int, int]:
    """Read ``page``/``limit`` from sanitized query args, clamped to sane bounds."""
    try:
        page = max(int(args.get("page", 1)), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = min(max(int(args.get("limit", default_limit)), 1), max_limit)
    except (TypeError, ValueError):
        limit = default_limit
    return page, limit
