"""
Shared pytest fixtures for the civic issue service test suite.

Every test gets a fresh app on an in-memory SQLite database, seeded with the
default roles, departments and admin, and a scripted duplicate oracle.

Service tests run inside a pushed app context (``ctx``). HTTP tests must not
hold one open across requests, so they work with ids and ``app_context()``.
"""
from datetime import datetime

import pytest

from app import create_app
from extensions import db
from models import Department, Role, User
from utils.duplicate_oracle import DuplicateOracle
from utils.security import reset_attempts

PASSWORD = "Sup3r$ecretPass"
# Fixed clock so day-based priority terms are deterministic.
T0 = datetime(2026, 3, 1, 9, 0, 0)


class FakeOracle(DuplicateOracle):
    """Scripted duplicate oracle: never matches unless told to."""

    def __init__(self):
        self.matched_id = None
        self.match_first = False
        self.error = None
        self.calls = []

    def judge(self, new_issue_text, candidates):
        self.calls.append({"text": new_issue_text, "candidate_ids": [c["id"] for c in candidates]})
        if self.error is not None:
            raise self.error
        if self.match_first and candidates:
            return {"is_duplicate": True, "matched_id": candidates[0]["id"]}
        if self.matched_id:
            return {"is_duplicate": True, "matched_id": self.matched_id}
        return {"is_duplicate": False, "matched_id": None}


def build_user(role_name="Citizen", email=None, department=None, full_name=None, password=PASSWORD):
    """Create and commit a user in the current app context."""
    role = Role.query.filter_by(name=role_name).one()
    dept = Department.query.filter_by(name=department).one() if department else None
    email = email or f"{role_name.lower()}.{User.query.count() + 1}@civic.gov.in"
    user = User(
        full_name=full_name or f"{role_name} {email.split('@')[0]}",
        email=email,
        role=role,
        department_id=dept.id if dept else None,
        is_active=True,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def fake_oracle():
    """Duplicate oracle double shared with the app under test."""
    return FakeOracle()


@pytest.fixture()
def app(fake_oracle):
    """Fresh application bound to an in-memory database."""
    reset_attempts()
    application = create_app("testing", duplicate_oracle=fake_oracle)
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
    reset_attempts()


@pytest.fixture()
def ctx(app):
    """Pushed app context for calling services directly."""
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture()
def make_user(app):
    """Factory returning the id of a freshly committed user."""

    def _make(role_name="Citizen", email=None, department=None, full_name=None):
        with app.app_context():
            return build_user(role_name, email=email, department=department, full_name=full_name).id

    return _make


@pytest.fixture()
def login(app):
    """Factory returning a test client signed in as the given user."""

    def _login(user_id, portal="login", password=PASSWORD):
        with app.app_context():
            email = db.session.get(User, user_id).email
        client = app.test_client()
        resp = client.post(f"/auth/{portal}", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return client

    return _login


@pytest.fixture()
def citizen_client(make_user, login):
    user_id = make_user("Citizen", email="asha@civic.gov.in", full_name="Asha Rao")
    return user_id, login(user_id)


@pytest.fixture()
def second_citizen_client(make_user, login):
    user_id = make_user("Citizen", email="ravi@civic.gov.in", full_name="Ravi Iyer")
    return user_id, login(user_id)


@pytest.fixture()
def roads_authority_client(make_user, login):
    user_id = make_user("Authority", email="roads.officer@civic.gov.in", department="Roads & Infrastructure")
    return user_id, login(user_id, portal="authority-login")


@pytest.fixture()
def admin_client(app, login):
    with app.app_context():
        admin_id = User.query.filter_by(email=app.config["DEFAULT_ADMIN_EMAIL"]).one().id
    return admin_id, login(admin_id, password=app.config["DEFAULT_ADMIN_PASSWORD"])


@pytest.fixture()
def new_user(ctx):
    """Factory creating users inside the pushed context (service tests)."""
    return build_user


@pytest.fixture()
def submit(ctx):
    """Submit an issue at a fixed point in time; returns the intake result."""
    from utils.intake import submit_issue

    def _submit(reporter, category="roads", severity=4, lat=28.6000, lng=77.2000, now=T0, **fields):
        return submit_issue(
            reporter,
            title=fields.pop("title", "Deep pothole near bus stop"),
            description=fields.pop("description", "Large pothole damaging two-wheelers"),
            category=category,
            severity=severity,
            lat=lat,
            lng=lng,
            now=now,
            **fields,
        )

    return _submit
