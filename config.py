"""Environment-aware configuration for the civic issue service."""
import os
from datetime import timedelta

# name, description, SLA window in hours
DEFAULT_DEPARTMENTS: tuple[tuple[str, str, int], ...] = (
    ("Roads & Infrastructure", "Potholes, damaged roads, footpaths and bridges", 72),
    ("Water & Sanitation", "Water supply, leakage, drainage and garbage", 48),
    ("Electricity & Power", "Street lights, outages and exposed wiring", 24),
)


class BaseConfig:
    def __init__(self) -> None:
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        db_url = os.getenv("DATABASE_URL")
        # Placeholder hosts (e.g. db_host) fall back to a local SQLite file.
        if db_url and "db_host" not in db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'civic_issues.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        if not self.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            self.SQLALCHEMY_ENGINE_OPTIONS = {
                "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
                "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 20)),
                "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
                "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
            }
        self.SESSION_COOKIE_HTTPONLY = True
        self.REMEMBER_COOKIE_HTTPONLY = True
        self.SESSION_COOKIE_SAMESITE = "Lax"
        self.PERMANENT_SESSION_LIFETIME = timedelta(days=30)
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.WTF_CSRF_ENABLED = True
        self.WTF_CSRF_TIME_LIMIT = 3600
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@civic.gov.in")
        self.DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "Admin@12345!")
        self.DEFAULT_DEPARTMENTS = DEFAULT_DEPARTMENTS

        # Duplicate detection
        self.GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
        self.DUPLICATE_ORACLE_MODEL = os.getenv("DUPLICATE_ORACLE_MODEL", "gemini-2.5-flash")
        self.DUPLICATE_ORACLE_TIMEOUT_MS = int(os.getenv("DUPLICATE_ORACLE_TIMEOUT_MS", 8000))
        self.GEO_MATCH_WINDOW_DEG = float(os.getenv("GEO_MATCH_WINDOW_DEG", 0.001))

        # Points ledger
        self.POINTS_NEW_ISSUE = int(os.getenv("POINTS_NEW_ISSUE", 10))
        self.POINTS_DUPLICATE_REPORT = int(os.getenv("POINTS_DUPLICATE_REPORT", 10))
        self.LEADERBOARD_SIZE = int(os.getenv("LEADERBOARD_SIZE", 20))

        # Authority login throttling (per process, rolling window)
        self.AUTHORITY_LOGIN_RATE_LIMIT = int(os.getenv("AUTHORITY_LOGIN_RATE_LIMIT", 5))
        self.AUTHORITY_LOGIN_RATE_WINDOW_SECONDS = int(os.getenv("AUTHORITY_LOGIN_RATE_WINDOW_SECONDS", 60))
        # Reverse proxies in front of the app whose X-Forwarded-For is trusted
        self.TRUSTED_PROXY_COUNT = int(os.getenv("TRUSTED_PROXY_COUNT", 0))

        self.ISSUES_PER_PAGE = int(os.getenv("ISSUES_PER_PAGE", 20))


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.SESSION_COOKIE_SECURE = False
        self.REMEMBER_COOKIE_SECURE = False


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SESSION_COOKIE_SECURE = True
        self.REMEMBER_COOKIE_SECURE = True


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.ENV = "testing"
        self.SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.WTF_CSRF_ENABLED = False
        self.SESSION_COOKIE_SECURE = False
        self.GEMINI_API_KEY = ""
        self.LOG_LEVEL = "WARNING"
