"""Blueprint registration, health check and uploaded-file serving."""
from datetime import datetime

from flask import Blueprint, current_app, send_from_directory

from utils.responses import success_response
from .agents import agents_bp
from .ai import ai_bp
from .auth import auth_bp
from .comments import comments_bp
from .concerns import concerns_bp
from .ideas import ideas_bp
from .notifications import notifications_bp
from .policies import policies_bp
from .users import users_bp

main_bp = Blueprint("main", __name__)

API_BLUEPRINTS = (
    auth_bp,
    users_bp,
    concerns_bp,
    comments_bp,
    notifications_bp,
    policies_bp,
    ideas_bp,
    ai_bp,
    agents_bp,
)


@main_bp.route("/", methods=["GET"])
def index():
    return success_response(
        message="Welcome to CivicConnect API",
        version="1.0.0",
        endpoints={
            "auth": "/api/auth",
            "users": "/api/users",
            "concerns": "/api/concerns",
            "comments": "/api/comments",
            "notifications": "/api/notifications",
            "policies": "/api/policies",
            "ideas": "/api/ideas",
            "ai": "/api/ai",
            "budgetPlanner": "/api/agents/budget-planner",
            "health": "/api/health",
        },
    )


@main_bp.route("/api/health", methods=["GET"])
def health():
    return success_response(
        message="CivicConnect API is running",
        timestamp=datetime.utcnow().isoformat() + "Z",
        environment=current_app.config.get("ENV", "production"),
    )


@main_bp.route("/uploads/<path:filename>", methods=["GET"])
def uploaded_file(filename):
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], filename)


__all__ = [
    "API_BLUEPRINTS",
    "agents_bp",
    "ai_bp",
    "auth_bp",
    "comments_bp",
    "concerns_bp",
    "ideas_bp",
    "main_bp",
    "notifications_bp",
    "policies_bp",
    "users_bp",
]
