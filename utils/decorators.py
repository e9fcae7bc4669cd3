"""Role gates layered on top of flask_login.login_required."""
from functools import wraps

from flask import abort, current_app, request
from flask_login import current_user, login_required


def has_role(user, *roles) -> bool:
    return bool(user and user.is_authenticated) and (user.role or "").lower() in {r.lower() for r in roles}


def roles_required(*roles):
    def decorator(view_func):
        @wraps(view_func)
        @login_required
        def guarded(*args, **kwargs):
            if not has_role(current_user, *roles):
                current_app.logger.warning(
                    "Role %s denied on %s %s", current_user.role, request.method, request.path,
                    extra={"user_id": current_user.id},
                )
                abort(403, description=f"User role '{current_user.role}' is not authorized to access this route.")
            return view_func(*args, **kwargs)

        return guarded

    return decorator


admin_required = roles_required("admin")
