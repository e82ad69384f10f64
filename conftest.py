import os
import shutil
import tempfile

# Pin the environment before the application (and its settings) are imported
_UPLOAD_DIR = tempfile.mkdtemp(prefix="aquasentra-uploads-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "aquasentra-test-secret-key-at-least-32-characters"
os.environ["UPLOAD_DIR"] = _UPLOAD_DIR
os.environ["SENDGRID_API_KEY"] = ""
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from aquasentra.api.deps import _rate_limit_store
from aquasentra.domain.services.security import create_user_token, hash_password
from aquasentra.infrastructure.database import Database, get_db
from aquasentra.infrastructure.models import Report, User
from aquasentra.main import app

DEFAULT_PASSWORD = "password123"


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_UPLOAD_DIR, ignore_errors=True)


@pytest.fixture(scope="function")
def database():
    """Fresh in-memory SQLite database per test."""
    db = Database("sqlite://").connect()
    db.create_all()
    yield db
    db.drop_all()
    db.dispose()


@pytest.fixture(scope="function")
def db(database):
    session = database.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(database):
    """Test client whose requests use the per-test database."""
    def override_get_db():
        session = database.session()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clear_rate_limits():
    _rate_limit_store.clear()
    yield
    _rate_limit_store.clear()


@pytest.fixture
def make_user(db):
    """Factory creating a committed user of the given role."""
    counter = {"n": 0}

    def _make(role="citizen", status="active", email=None, password=DEFAULT_PASSWORD, **fields):
        counter["n"] += 1
        user = User(
            first_name=fields.pop("first_name", role.capitalize()),
            last_name=fields.pop("last_name", f"User{counter['n']}"),
            email=email or f"{role}{counter['n']}@example.com",
            password_hash=hash_password(password),
            role=role,
            status=status,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def citizen(make_user):
    return make_user("citizen")


@pytest.fixture
def other_citizen(make_user):
    return make_user("citizen")


@pytest.fixture
def verifier(make_user):
    return make_user("verifier")


@pytest.fixture
def analyst(make_user):
    return make_user("analyst")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def make_report(db):
    """Factory inserting a report row directly, bypassing the lifecycle service."""
    counter = {"n": 0}

    def _make(owner, **fields):
        counter["n"] += 1
        severity = fields.pop("severity", "medium")
        urgency = fields.pop("urgency", "routine")
        report = Report(
            public_code=fields.pop("public_code", f"RPTTEST{counter['n']:05d}"),
            hazard_type=fields.pop("hazard_type", "flood"),
            severity=severity,
            urgency=urgency,
            description=fields.pop("description", "Water rising over the promenade"),
            latitude=fields.pop("latitude", 34.0194),
            longitude=fields.pop("longitude", -118.4912),
            status=fields.pop("status", "pending"),
            visibility=fields.pop("visibility", "public"),
            is_emergency=severity == "critical" or urgency == "emergency",
            submitted_by_id=owner.id,
            tags=fields.pop("tags", []),
            **fields,
        )
        db.add(report)
        db.commit()
        db.refresh(report)
        return report

    return _make
