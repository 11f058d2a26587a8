"""
Shared pytest fixtures for the Airfield Operations approval workflow suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - approvers: Directory entries used by the built-in approval rules
    - make_work_request: Factory for committed WorkRequest rows
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from airops import create_app
from airops.models import db as _db
from airops.models.approver import Approver
from airops.models.work_request import WorkRequest

DIRECTORY = (
    ("manager-1", "Maintenance Manager One", "maintenance_manager"),
    ("manager-2", "Maintenance Manager Two", "maintenance_manager"),
    ("finance-manager", "Finance Manager", "finance_manager"),
    ("supervisor-1", "Shift Supervisor One", "supervisor"),
    ("supervisor-2", "Shift Supervisor Two", "supervisor"),
    ("deputy-1", "Deputy Manager", "deputy_manager"),
)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def approvers():
    """Seed the approver directory and return the ids."""
    for approver_id, name, role in DIRECTORY:
        _db.session.add(Approver(
            id=approver_id, name=name, role=role,
            email=f"{approver_id}@airport.example",
            department="Airfield Operations",
        ))
    _db.session.add(Approver(id="retired-1", name="Retired Approver", is_active=False))
    _db.session.commit()
    return [a[0] for a in DIRECTORY]


@pytest.fixture()
def make_work_request():
    """Factory: create and commit a work request.

    Defaults describe a routine maintenance job that matches none of the
    built-in approval rules.
    """

    def _make(**overrides):
        fields = {
            "organization_id": "org-1",
            "title": "Stand 12 lighting repair",
            "priority": "low",
            "work_type": "maintenance",
            "asset_type": "stand",
            "asset_code": "STD-12",
            "estimated_total_cost": Decimal("500.00"),
            "requestor_name": "planner-1",
            "submission_date": datetime.now(timezone.utc),
            "status": "submitted",
        }
        fields.update(overrides)
        wr = WorkRequest(**fields)
        _db.session.add(wr)
        _db.session.commit()
        return wr

    return _make
