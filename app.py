"""Flask application factory for the CivicConnect civic-engagement API."""
import os
import traceback
import uuid
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, current_app, g, make_response, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from extensions import csrf, db, login_manager, migrate
from utils.logger import init_logging
from utils.responses import error_response
from utils.security import apply_cors_headers, apply_security_headers, sanitize_input


def register_error_handlers(app: Flask) -> None:
    def _description(error, fallback: str) -> str:
        description = getattr(error, "description", None)
        # Stock werkzeug descriptions give way to the API fallback.
        if not description or description == type(error).description:
            return fallback
        return description

    @app.errorhandler(400)
    def bad_request(error):
        return error_response(_description(error, "Bad request"), 400)

    @app.errorhandler(401)
    def unauthorized(error):
        return error_response(_description(error, "Not authorized, no token"), 401)

    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning("403 Forbidden", extra={"path": request.path, "method": request.method})
        return error_response(_description(error, "Forbidden"), 403)

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning("404 Not Found", extra={"path": request.path, "method": request.method})
        return error_response(_description(error, f"Route {request.path} not found."), 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response(f"Method {request.method} not allowed on {request.path}.", 405)

    @app.errorhandler(413)
    def payload_too_large(error):
        return error_response("File exceeds the 10MB size limit", 413)

    @app.errorhandler(429)
    def too_many_requests(error):
        return error_response("Too many requests, please try again later.", 429)

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        return error_response("Server Error", 500)

    @app.errorhandler(Exception)
    def unhandled_exception(error):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        app.logger.exception("Unhandled exception", extra={"path": request.path, "method": request.method})
        if app.debug:
            return error_response(
                "Server Error",
                500,
                error=str(error),
                stack=traceback.format_exc(),
            )
        return error_response("Server Error", 500)


def ensure_default_admin(app: Flask) -> None:
    """Create (or re-activate) the configured administrator account."""
    from models import User  # Local import to avoid circular dependency

    admin_email = (app.config.get("DEFAULT_ADMIN_EMAIL") or "").lower().strip()
    admin_password = app.config.get("DEFAULT_ADMIN_PASSWORD") or ""
    if not admin_email or not admin_password:
        return

    admin_user = User.query.filter_by(email=admin_email).first()
    if admin_user:
        updates = False
        if admin_user.role != "admin":
            admin_user.role = "admin"
            updates = True
        if not admin_user.is_active:
            admin_user.is_active = True
            updates = True
        if updates:
            db.session.commit()
        return

    admin_user = User(name="System Administrator", email=admin_email, role="admin", is_active=True)
    admin_user.set_password(admin_password)
    admin_user.ensure_avatar()
    db.session.add(admin_user)
    db.session.commit()
    app.logger.info("Default administrator created", extra={"email": admin_email})


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError:
            # Startup fails loudly later if the server is unreachable.
            pass
        finally:
            engine.dispose()


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def create_app(config_name: Optional[str] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    app.config.from_pyfile("config.py", silent=True)
    os.makedirs(app.instance_path, exist_ok=True)
    for subdir in ("concerns", "policies"):
        os.makedirs(os.path.join(app.config["UPLOAD_FOLDER"], subdir), exist_ok=True)

    logger = init_logging(app)
    app.logger = logger

    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.session_protection = None

    @login_manager.request_loader
    def load_user_from_request(req):
        from models import User  # Local import to avoid circular dependency
        from utils.tokens import TokenError, verify_access_token

        token = _bearer_token() or req.cookies.get(current_app.config["ACCESS_COOKIE_NAME"])
        if not token:
            return None
        try:
            payload = verify_access_token(token)
        except TokenError:
            return None
        user = db.session.get(User, str(payload["uid"]))
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        token = _bearer_token() or request.cookies.get(current_app.config["ACCESS_COOKIE_NAME"])
        message = "Not authorized, token failed" if token else "Not authorized, no token"
        return error_response(message, 401)

    from routes import API_BLUEPRINTS, main_bp

    app.register_blueprint(main_bp)
    for blueprint in API_BLUEPRINTS:
        csrf.exempt(blueprint)
        app.register_blueprint(blueprint)

    register_error_handlers(app)

    @app.before_request
    def _before_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        g.sanitized_args = sanitize_input(request.args)
        if request.method == "OPTIONS":
            return make_response("", 204)
        return None

    @app.after_request
    def _after_request(response):
        force_https = app.config.get("PREFERRED_URL_SCHEME") == "https" and not app.testing
        response = apply_security_headers(response, force_https=force_https)
        response = apply_cors_headers(response, app.config.get("CORS_ORIGINS", []))
        response.headers["X-Request-ID"] = getattr(g, "request_id", "-")
        return response

    # Tables are created on first run.
    with app.app_context():
        db.create_all()
        ensure_default_admin(app)

    return app


# Expose the Flask application for WSGI servers (e.g., gunicorn app:app).
app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    app.run(host="0.0.0.0", port=port, use_reloader=False)
