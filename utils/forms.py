"""Flask-WTF base form for JSON and multipart API payloads."""
from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from wtforms.validators import ValidationError

from utils.responses import error_response


class ApiForm(FlaskForm):
    """Token-authenticated API forms; the bearer token replaces CSRF protection."""

    class Meta:
        csrf = False

    def __init__(self, *args, **kwargs):
        if "formdata" not in kwargs and request.is_json:
            payload = request.get_json(silent=True)
            if isinstance(payload, dict):
                # JSON null is treated as an omitted field.
                kwargs["formdata"] = ImmutableMultiDict({k: v for k, v in payload.items() if v is not None})
        super().__init__(*args, **kwargs)

    def error_map(self) -> dict:
        return {field.name: list(field.errors) for field in self if field.errors}

    def submitted_keys(self) -> set[str]:
        payload = request.get_json(silent=True) if request.is_json else None
        if isinstance(payload, dict):
            return set(payload.keys())
        return set(request.form.keys()) | set(request.files.keys())


def validation_failed(form: ApiForm, message: str = "Validation failed"):
    return error_response(message, 400, errors=form.error_map())


def json_list(key: str) -> list[str]:
    """Read a list of strings from the JSON body (or repeated/CSV form fields)."""
    payload = request.get_json(silent=True) if request.is_json else None
    if isinstance(payload, dict):
        value = payload.get(key)
    else:
        values = request.form.getlist(key)
        value = values if len(values) != 1 else values[0].split(",")
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    return [str(item).strip() for item in value if str(item).strip()]


def json_object(key: str) -> dict:
    payload = request.get_json(silent=True) if request.is_json else None
    value = payload.get(key) if isinstance(payload, dict) else None
    return value if isinstance(value, dict) else {}


def whole_number(form, field):
    """Reject fractional amounts; money is stored in the smallest currency unit."""
    if field.data is not None and field.data != int(field.data):
        raise ValidationError("Must be a whole number")
