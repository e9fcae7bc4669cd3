"""Environment-aware configuration for the Flask application."""
import json
import os
from datetime import timedelta


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _fail_open_policy() -> dict:
    # Advisory steps recover with defaults; scoring is load-bearing.
    policy = {"sufficiency": True, "scoring": False, "summary": True}
    raw = os.getenv("BUDGET_FAIL_OPEN")
    if raw:
        try:
            overrides = json.loads(raw)
        except json.JSONDecodeError:
            overrides = {}
        if isinstance(overrides, dict):
            policy.update({k: bool(v) for k, v in overrides.items() if k in policy})
    return policy


class BaseConfig:
    def __init__(self) -> None:
        # Local dev defaults: SQLite db and a non-empty secret.
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        db_url = os.getenv("DATABASE_URL")
        if db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'civicconnect.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_pre_ping": True,
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
        }
        self.SESSION_COOKIE_HTTPONLY = True
        self.SESSION_COOKIE_SAMESITE = "Lax"
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.WTF_CSRF_ENABLED = True
        self.WTF_CSRF_TIME_LIMIT = 3600

        self.JWT_ACCESS_SECRET = os.getenv("JWT_ACCESS_SECRET", self.SECRET_KEY + "-access")
        self.JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", self.SECRET_KEY + "-refresh")
        self.ACCESS_TOKEN_TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", 15 * 60))
        self.REFRESH_TOKEN_TTL_SECONDS = int(os.getenv("REFRESH_TOKEN_TTL_SECONDS", 7 * 24 * 3600))
        self.REFRESH_COOKIE_NAME = "refreshToken"
        self.ACCESS_COOKIE_NAME = "accessToken"
        self.REFRESH_COOKIE_SECURE = False
        # Fernet key for national ID fields; derived from SECRET_KEY when unset.
        self.FIELD_ENCRYPTION_KEY = os.getenv("FIELD_ENCRYPTION_KEY", "")

        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
        self.GEMINI_TEXT_MODEL = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.0-flash")
        self.GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", 0.3))
        self.GEMINI_MAX_OUTPUT_TOKENS = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", 4096))

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "")
        self.DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "")
        self.CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]
        self.AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", 100))

        self.UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(os.getcwd(), "uploads"))
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))
        # Leave headroom for multipart form fields around the file itself.
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 12 * 1024 * 1024))

        self.BUDGET_BATCH_SIZE = int(os.getenv("BUDGET_BATCH_SIZE", 8))
        self.BUDGET_CONTINGENCY_RATIO = os.getenv("BUDGET_CONTINGENCY_RATIO", "0.10")
        self.BUDGET_SUFFICIENCY_SAMPLE = int(os.getenv("BUDGET_SUFFICIENCY_SAMPLE", 5))
        self.BUDGET_RESCALE_ROUNDING = os.getenv("BUDGET_RESCALE_ROUNDING", "nearest")
        self.BUDGET_FAIL_OPEN = _fail_open_policy()
        self.IDEA_STRICT_TRANSITIONS = _env_bool("IDEA_STRICT_TRANSITIONS")


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.SESSION_COOKIE_SECURE = False


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.DEBUG = False
        self.ENV = "testing"
        self.SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.WTF_CSRF_ENABLED = False
        self.SECRET_KEY = "testing-secret"
        self.JWT_ACCESS_SECRET = "testing-access"
        self.JWT_REFRESH_SECRET = "testing-refresh"
        self.AUTH_RATE_LIMIT = 10_000
        self.DEFAULT_ADMIN_EMAIL = ""
        self.DEFAULT_ADMIN_PASSWORD = ""


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SESSION_COOKIE_SECURE = True
        self.REFRESH_COOKIE_SECURE = True
        self.PERMANENT_SESSION_LIFETIME = timedelta(days=7)
        self.SEND_FILE_MAX_AGE_DEFAULT = 31536000
