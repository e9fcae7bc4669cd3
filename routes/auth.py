"""Registration, login, token refresh and profile endpoints."""
from datetime import datetime

from flask import Blueprint, current_app, request
from flask_login import current_user, login_required
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from wtforms import PasswordField, SelectField, StringField
from wtforms.validators import DataRequired, Email, Length, Optional, Regexp, ValidationError

from extensions import db
from models import USER_ROLES, User
from utils.forms import ApiForm, validation_failed
from utils.responses import error_response, success_response
from utils.security import password_meets_policy, track_attempt
from utils.tokens import (
    TokenError,
    clear_refresh_cookie,
    issue_tokens,
    refresh_matches,
    set_refresh_cookie,
    verify_refresh_token,
)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


class RegistrationForm(ApiForm):
    name = StringField("Name", validators=[DataRequired(message="Name is required"), Length(min=2, max=50)])
    email = StringField("Email", validators=[DataRequired(message="Email is required"), Email(message="Please provide a valid email"), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired(message="Password is required"), Length(min=6)])
    role = SelectField("Role", choices=[(r, r) for r in USER_ROLES], validators=[Optional()], default="citizen")

    def validate_password(self, field):
        ok, reason = password_meets_policy(field.data or "")
        if not ok:
            raise ValidationError(reason)


class LoginForm(ApiForm):
    email = StringField("Email", validators=[DataRequired(message="Email is required"), Email(message="Please provide a valid email")])
    password = PasswordField("Password", validators=[DataRequired(message="Password is required")])


class ProfileForm(ApiForm):
    name = StringField("Name", validators=[Optional(), Length(min=2, max=50)])
    avatar = StringField("Avatar", validators=[Optional(), Length(max=500)])
    aadhar_number = StringField("Aadhar number", name="aadharNumber", validators=[Optional(), Regexp(r"^\d{12}$", message="Aadhar number must be 12 digits")])
    pan_number = StringField("PAN number", name="panNumber", validators=[Optional(), Regexp(r"^[A-Z]{5}\d{4}[A-Z]$", message="Invalid PAN format")])
    phone_number = StringField("Phone number", name="phoneNumber", validators=[Optional(), Regexp(r"^\d{10}$", message="Phone number must be 10 digits")])
    address = StringField("Address", validators=[Optional(), Length(max=200)])


def _rate_limited() -> bool:
    limit = current_app.config.get("AUTH_RATE_LIMIT", 100)
    return not track_attempt(f"auth:{request.remote_addr}", limit=limit)


def _session_payload(user: User, access_token: str) -> dict:
    return {"user": user.to_dict(), "accessToken": access_token}


@auth_bp.route("/register", methods=["POST"])
def register():
    if _rate_limited():
        return error_response("Too many requests, please try again later.", 429)

    form = RegistrationForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    email = form.email.data.lower().strip()
    if User.query.filter_by(email=email).first():
        return error_response("An account with this email already exists.", 400)

    try:
        user = User(name=form.name.data.strip(), email=email, role=form.role.data or "citizen", is_active=True)
        user.set_password(form.password.data)
        user.ensure_avatar()
        db.session.add(user)
        db.session.flush()
        access_token, refresh_token = issue_tokens(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response("An account with this email already exists.", 400)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Registration failed")
        return error_response("Registration failed. Please try again.", 500)

    current_app.logger.info("User registered", extra={"user_id": user.id, "role": user.role})
    response, status = success_response(
        _session_payload(user, access_token),
        message="Registration successful! Welcome to CivicConnect.",
        status=201,
    )
    return set_refresh_cookie(response, refresh_token), status


@auth_bp.route("/login", methods=["POST"])
def login():
    if _rate_limited():
        return error_response("Too many requests, please try again later.", 429)

    form = LoginForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    user = User.query.filter_by(email=form.email.data.lower().strip()).first()
    if not user or not user.check_password(form.password.data):
        current_app.logger.warning("Failed login attempt", extra={"remote_addr": request.remote_addr})
        return error_response("Invalid email or password.", 401)
    if not user.is_active:
        return error_response("Your account has been deactivated. Please contact support.", 401)

    try:
        user.last_login_at = datetime.utcnow()
        access_token, refresh_token = issue_tokens(user)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Login failed")
        return error_response("Login failed. Please try again.", 500)

    response, status = success_response(_session_payload(user, access_token), message=f"Welcome back, {user.name}!")
    return set_refresh_cookie(response, refresh_token), status


@auth_bp.route("/refresh-token", methods=["POST"])
def refresh_token():
    body = request.get_json(silent=True) or {}
    token = request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"]) or body.get("refreshToken")
    if not token:
        return error_response("Refresh token not found.", 401)

    try:
        payload = verify_refresh_token(token)
    except TokenError:
        return error_response("Invalid or expired refresh token.", 401)

    user = db.session.get(User, payload["uid"])
    if not user or not user.is_active or not refresh_matches(user, token):
        # A rotated-out token is treated like a forged one.
        current_app.logger.warning("Refresh token rejected", extra={"user_id": payload["uid"]})
        return error_response("Invalid refresh token.", 401)

    try:
        access_token, new_refresh = issue_tokens(user)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Token refresh failed")
        return error_response("Failed to refresh token.", 500)

    response, status = success_response({"accessToken": access_token})
    return set_refresh_cookie(response, new_refresh), status


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    try:
        current_user.refresh_token_hash = None
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Logout failed")
        return error_response("Logout failed.", 500)
    response, status = success_response(message="Logged out successfully.")
    return clear_refresh_cookie(response), status


@auth_bp.route("/profile", methods=["GET"])
@login_required
def get_profile():
    return success_response({"user": current_user.to_dict()})


@auth_bp.route("/profile", methods=["PUT"])
@login_required
def update_profile():
    form = ProfileForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    submitted = form.submitted_keys()
    user = current_user._get_current_object()
    try:
        if form.name.data:
            user.name = form.name.data.strip()
        if form.avatar.data:
            user.avatar = form.avatar.data.strip()
        # Empty strings clear the optional profile fields.
        if "aadharNumber" in submitted:
            user.aadhar_number = form.aadhar_number.data or None
        if "panNumber" in submitted:
            user.pan_number = (form.pan_number.data or "").upper() or None
        if "phoneNumber" in submitted:
            user.phone_number = form.phone_number.data or None
        if "address" in submitted:
            user.address = (form.address.data or "").strip() or None
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Profile update failed", extra={"user_id": user.id})
        return error_response("Failed to update profile.", 500)

    return success_response({"user": user.to_dict()}, message="Profile updated successfully.")
