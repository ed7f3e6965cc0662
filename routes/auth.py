"""Authentication blueprint: citizen registration, session login and throttled authority login."""
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf import FlaskForm
from sqlalchemy.exc import IntegrityError
from wtforms import BooleanField, PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length
from wtforms.validators import ValidationError as FormValidationError

from extensions import db
from models import AuditLog, Role, User, utcnow
from utils.security import hash_value, password_meets_policy, track_attempt

auth_bp = Blueprint("auth", __name__)


class RegistrationForm(FlaskForm):
    full_name = StringField("Full Name", validators=[DataRequired(), Length(max=150)])
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired(), Length(min=12)])

    def validate_email(self, field):
        if User.query.filter_by(email=field.data.lower().strip()).first():
            raise FormValidationError("An account with this email already exists.")

    def validate_password(self, field):
        ok, reason = password_meets_policy(field.data or "")
        if not ok:
            raise FormValidationError(reason)


class LoginForm(FlaskForm):
    email = StringField("Email", validators=[DataRequired(), Email(), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired()])
    remember_me = BooleanField("Remember me")


def _form_errors(form: FlaskForm) -> dict:
    return {name: "; ".join(messages) for name, messages in form.errors.items()}


def log_action(action_type: str, user: User | None, context: str | None = None) -> None:
    db.session.add(
        AuditLog(
            user_id=user.id if user else None,
            action_type=action_type,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent", "unknown"),
            context_entity=context,
        )
    )


def _caller_key() -> str:
    # Behind a proxy, ProxyFix (TRUSTED_PROXY_COUNT) rewrites remote_addr; raw forwarding headers are ignored.
    ip = request.remote_addr or "unknown"
    return f"authority-login:{hash_value(ip)[:16]}"


@auth_bp.route("/register", methods=["POST"])
def register():
    form = RegistrationForm(meta={"csrf": False})
    if not form.validate_on_submit():
        return jsonify({"error": "validation_error", "fields": _form_errors(form)}), 422

    try:
        role = Role.get_or_create("Citizen", description="Reports and upvotes civic issues")
        user = User(
            full_name=form.full_name.data.strip(),
            email=form.email.data.lower().strip(),
            role=role,
            is_active=True,
        )
        user.set_password(form.password.data)
        db.session.add(user)
        db.session.flush()
        log_action("REGISTER", user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "validation_error", "fields": {"email": "An account with this email already exists."}}), 422

    current_app.logger.info("Citizen registered", extra={"user_id": user.id})
    return jsonify({"user": user.to_payload()}), 201


def _authenticate(form: LoginForm):
    user = User.query.filter_by(email=form.email.data.lower().strip()).first()
    if not user or not user.check_password(form.password.data):
        log_action("LOGIN_FAILED", user)
        db.session.commit()
        return None, (jsonify({"error": "invalid_credentials", "message": "Invalid credentials provided."}), 401)
    if not user.is_active:
        return None, (jsonify({"error": "inactive", "message": "Your account has been deactivated. Contact admin."}), 403)
    return user, None


def _start_session(user: User, remember: bool):
    login_user(user, remember=remember)
    user.last_login_at = utcnow()
    log_action("LOGIN_SUCCESS", user)
    db.session.commit()
    return jsonify({"user": user.to_payload()})


@auth_bp.route("/login", methods=["POST"])
def login():
    form = LoginForm(meta={"csrf": False})
    if not form.validate_on_submit():
        return jsonify({"error": "validation_error", "fields": _form_errors(form)}), 422

    user, failure = _authenticate(form)
    if failure:
        return failure
    if user.is_authority:
        return jsonify({"error": "wrong_portal", "message": "Authorities must sign in through the authority login."}), 403
    return _start_session(user, bool(form.remember_me.data))


@auth_bp.route("/authority-login", methods=["POST"])
def authority_login():
    limit = int(current_app.config.get("AUTHORITY_LOGIN_RATE_LIMIT", 5))
    window = int(current_app.config.get("AUTHORITY_LOGIN_RATE_WINDOW_SECONDS", 60))
    if not track_attempt(_caller_key(), limit=limit, window_seconds=window):
        current_app.logger.warning("Authority login throttled", extra={"path": request.path})
        return jsonify({"error": "rate_limited", "message": "Too many login attempts. Try again later."}), 429

    form = LoginForm(meta={"csrf": False})
    if not form.validate_on_submit():
        return jsonify({"error": "validation_error", "fields": _form_errors(form)}), 422

    user, failure = _authenticate(form)
    if failure:
        return failure
    if not user.is_authority:
        log_action("AUTHORITY_LOGIN_REJECTED", user)
        db.session.commit()
        return jsonify({"error": "not_authority", "message": "This account is not an authority account."}), 403
    return _start_session(user, bool(form.remember_me.data))


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    log_action("LOGOUT", current_user)
    db.session.commit()
    logout_user()
    return jsonify({"status": "signed_out"})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"user": current_user.to_payload()})
