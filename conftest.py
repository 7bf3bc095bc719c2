# conftest.py

import os
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

# TestingConfig must be selected before the application package is imported
os.environ["FLASK_ENV"] = "testing"

from roster_app import create_app  # noqa: E402
from roster_app.importer.progress import get_progress_store  # noqa: E402
from roster_app.models import Donor, Event, EventStatus, User, db  # noqa: E402


@pytest.fixture(scope="function")
def app(tmp_path):
    """Application bound to a throwaway SQLite file and upload directory"""
    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir()
    flask_app = create_app(
        "testing",
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{(tmp_path / 'roster.db').as_posix()}",
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "IMPORTER_EXECUTOR": "inline",
            "IMPORTER_PROGRESS_BACKEND": "memory",
            "IMPORTER_WORKER_ENABLED": False,
            "IMPORTER_UPLOAD_DIR": str(upload_dir),
            "IMPORTER_BATCH_SIZE": 50,
            "LIST_AUTO_EXCLUDE_ON_GENERATE": True,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
        },
    )

    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(autouse=True)
def app_context(app):
    """Every test runs inside the application context"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def progress_store(app):
    """The in-memory progress store registered on the app"""
    return get_progress_store(app)


def _staff_account(username, password, **fields):
    return User(
        username=username,
        email=f"{username}@example.com",
        password_hash=generate_password_hash(password),
        **fields,
    )


@pytest.fixture
def test_user():
    """Unsaved staff account; log in with testuser / testpass123"""
    return _staff_account("testuser", "testpass123", first_name="Test", last_name="User", is_active=True)


@pytest.fixture
def other_user(app):
    """A second, persisted staff account"""
    user = _staff_account("otheruser", "otherpass123", is_active=True)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_user():
    return _staff_account(
        "admin", "adminpass123", first_name="Admin", last_name="User", is_active=True, is_super_admin=True
    )


@pytest.fixture
def inactive_user():
    return _staff_account("inactiveuser", "userpass123", is_active=False)


def _login(client, user, password):
    db.session.add(user)
    db.session.commit()
    client.post("/login", json={"username": user.username, "password": password})
    return client, user


@pytest.fixture
def logged_in_user(client, test_user):
    """Client with an authenticated session for ``test_user``"""
    return _login(client, test_user, "testpass123")


@pytest.fixture
def logged_in_admin(client, admin_user):
    return _login(client, admin_user, "adminpass123")


@pytest.fixture
def donor_factory(app):
    """Persist donors with sensible defaults"""
    counter = {"value": 0}

    def _factory(**overrides):
        counter["value"] += 1
        values = {
            "first_name": "Donor",
            "last_name": f"Number{counter['value']}",
            "total_donations": Decimal("0"),
        }
        if "organization_name" in overrides:
            values.pop("first_name")
            values.pop("last_name")
        values.update(overrides)
        donor = Donor(**values)
        db.session.add(donor)
        db.session.commit()
        return donor

    return _factory


@pytest.fixture
def event_factory(app):
    """Persist events with sensible defaults"""

    def _factory(**overrides):
        values = {
            "name": "Spring Gala",
            "event_type": "Gala",
            "date": datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc),
            "location": "Union Station",
            "criteria_min_giving_level": Decimal("0"),
            "status": EventStatus.PLANNING,
        }
        values.update(overrides)
        event = Event(**values)
        db.session.add(event)
        db.session.commit()
        return event

    return _factory


@pytest.fixture
def event_with_list(event_factory, donor_factory):
    """An event in Review whose generated list holds three donors"""
    from roster_app.services import ListGenerator

    donors = [
        donor_factory(first_name="Ada", last_name="Lovelace", total_donations=Decimal("900")),
        donor_factory(first_name="Grace", last_name="Hopper", total_donations=Decimal("600")),
        donor_factory(organization_name="Acme Foundation", total_donations=Decimal("300")),
    ]
    event = event_factory()
    donor_list = ListGenerator().generate(event.id)
    return event, donor_list, donors
