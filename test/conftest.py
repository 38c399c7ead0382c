import datetime
import os

import pytest

os.environ.setdefault("SECRET_KEY", "insecure_key_for_tests")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

from deploywatch.app import create_app  # noqa: E402
from deploywatch.extensions import db as _db  # noqa: E402
from deploywatch.incident.models import (  # noqa: E402
    Deployment,
    Incident,
    IncidentEvent,
    IncidentStatus,
)

NOW = datetime.datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture(scope="session")
def app():
    """
    Setup our flask test app, this only gets executed once.

    :return: Flask app
    """
    params = {
        "DEBUG": False,
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "BASE_URL": "https://watch.example.com",
        "NOTIFY_TO_EMAIL": "oncall@example.com",
        "VERCEL_PROJECT_ID": "prj_test",
        "VERCEL_TOKEN": "vercel_test_token",
        "DEPLOY_HOOK_URL": "",
        "SMTP_HOST": "",
        "BACKBOARD_THREAD_ID": "",
        "CLOUDWATCH_ENABLED": False,
    }

    _app = create_app(settings_override=params)

    # Establish an application context before running the tests.
    ctx = _app.app_context()
    ctx.push()

    yield _app

    ctx.pop()


@pytest.fixture(scope="function")
def client(app):
    """
    Setup an app client, this gets executed for each test function.

    :param app: Pytest fixture
    :return: Flask app client
    """
    yield app.test_client()


@pytest.fixture(scope="function")
def session(app):
    """
    Give every test a fresh set of tables.

    :param app: Pytest fixture
    :return: SQLAlchemy session
    """
    _db.create_all()

    yield _db.session

    _db.session.remove()
    _db.drop_all()


@pytest.fixture
def clock():
    """A frozen clock returning ``NOW``."""
    return lambda: NOW


@pytest.fixture
def deployment(session):
    deployment = Deployment(external_id="dpl_test", target="production")
    session.add(deployment)
    session.commit()
    return deployment


@pytest.fixture
def make_incident(session, deployment):
    """Factory for an incident with one event."""

    def _make(status=IncidentStatus.OPEN, signature="a" * 64, row_id="row_1"):
        incident = Incident(
            error_signature=signature,
            title="upstream request timeout",
            status=status,
            deployment_id=deployment.id,
            request_path="/api/users",
            event_count=1,
            first_seen_at=NOW,
            last_seen_at=NOW,
        )
        incident.events = [
            IncidentEvent(
                row_id=row_id,
                timestamp_in_ms=1772366400000,
                level="error",
                message="upstream request timeout",
                request_path="/api/users",
                response_status_code=504,
            )
        ]
        session.add(incident)
        session.commit()
        return incident

    return _make
