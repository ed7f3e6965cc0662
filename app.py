"""Flask application factory for the civic issue service."""
import os
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from werkzeug.middleware.proxy_fix import ProxyFix

from extensions import csrf, db, login_manager, migrate
from utils.duplicate_oracle import DuplicateOracle, init_duplicate_oracle
from utils.errors import IssueEngineError
from utils.logger import init_logging
from utils.security import apply_security_headers


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(IssueEngineError)
    def issue_engine_error(error):
        log = app.logger.error if error.status_code >= 500 else app.logger.info
        log("Request rejected", extra={"path": request.path, "error": error.error_code})
        return jsonify(error.to_payload()), error.status_code

    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning("403 Forbidden", extra={"path": request.path, "method": request.method})
        return jsonify({"error": "forbidden", "message": "You do not have access to this resource."}), 403

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning("404 Not Found", extra={"path": request.path, "method": request.method})
        return jsonify({"error": "not_found", "message": "Resource not found."}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "method_not_allowed", "message": "Method not allowed."}), 405

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        db.session.rollback()
        return jsonify({"error": "internal_error", "message": "Something went wrong."}), 500


def ensure_default_roles_and_admin(app: Flask) -> None:
    """Ensure baseline roles and departments exist and a default admin can log in without registering."""
    from models import Department, Role, User  # Local import to avoid circular dependency

    default_roles = [
        ("Citizen", "Reports and upvotes civic issues"),
        ("Authority", "Department official who accepts and resolves issues"),
        ("Admin", "Platform administrator with full privileges"),
    ]

    role_cache: dict[str, Role] = {}
    for name, description in default_roles:
        role_cache[name] = Role.get_or_create(name, description=description)

    for name, description, sla_hours in app.config.get("DEFAULT_DEPARTMENTS", ()):
        if not Department.query.filter_by(name=name).first():
            db.session.add(Department(name=name, description=description, sla_hours=sla_hours))
    db.session.commit()

    admin_email = (app.config.get("DEFAULT_ADMIN_EMAIL") or "").lower().strip()
    admin_password = app.config.get("DEFAULT_ADMIN_PASSWORD") or ""
    if not admin_email or not admin_password:
        return

    admin_role = role_cache["Admin"]
    admin_user = User.query.filter_by(email=admin_email).first()

    if admin_user:
        updates = False
        if admin_user.role != admin_role:
            admin_user.role = admin_role
            updates = True
        if not admin_user.is_active:
            admin_user.is_active = True
            updates = True
        if updates:
            db.session.add(admin_user)
            db.session.commit()
        return

    admin_user = User(
        full_name="System Administrator",
        email=admin_email,
        role=admin_role,
        is_active=True,
    )
    admin_user.set_password(admin_password)
    db.session.add(admin_user)
    db.session.commit()


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        # For file-backed SQLite just make sure the parent directory exists.
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
            # If we cannot connect/create, let the normal app startup fail loudly later.
            pass
        finally:
            engine.dispose()


def create_app(config_name: Optional[str] = None, duplicate_oracle: Optional[DuplicateOracle] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    # Resolve configuration
    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    if not app.testing:
        app.config.from_pyfile("config.py", silent=True)
        os.makedirs(app.instance_path, exist_ok=True)

    trusted_proxies = int(app.config.get("TRUSTED_PROXY_COUNT", 0))
    if trusted_proxies:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=trusted_proxies, x_proto=trusted_proxies)

    # Initialize logging early
    logger = init_logging(app)
    app.logger = logger

    # Initialize extensions
    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.session_protection = "strong"
    init_duplicate_oracle(app, duplicate_oracle)

    @login_manager.user_loader
    def load_user(user_id):
        from models import User  # Local import to avoid circular dependency

        if not user_id:
            return None
        return db.session.get(User, str(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "unauthenticated", "message": "Sign in to continue."}), 401

    # Blueprints
    from routes import admin_bp, auth_bp, issues_bp, main_bp
    from utils.sla_sweeper import run_priority_cycle, run_sla_cycle

    for blueprint in (main_bp, auth_bp, issues_bp, admin_bp):
        csrf.exempt(blueprint)

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(issues_bp)
    app.register_blueprint(admin_bp)

    @app.cli.command("sla-sweep")
    def sla_sweep():
        """Escalate issues past their department SLA (schedule this via cron)."""
        escalated = run_sla_cycle(app)
        print(f"Escalated {escalated} issue(s).")

    @app.cli.command("recalculate-priorities")
    def recalculate_priorities_command():
        """Recompute priority scores for every unresolved issue."""
        scanned = run_priority_cycle(app)
        print(f"Recalculated {scanned} issue(s).")

    # Error handlers
    register_error_handlers(app)

    @app.after_request
    def _after_request(response):
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    # Ensure tables exist so first run creates the database structure automatically.
    with app.app_context():
        db.create_all()
        ensure_default_roles_and_admin(app)

    return app
