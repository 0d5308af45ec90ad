"""
Shared pytest fixtures for the GearGuard test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - team / equipment: Pre-created registry rows
    - make_request: factory for MaintenanceRequest rows in any status
"""

import itertools

import pytest

from gearguard import create_app
from gearguard.models import db as _db
from gearguard.models.equipment import Equipment, MaintenanceTeam
from gearguard.models.maintenance import MaintenanceRequest


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
def team():
    t = MaintenanceTeam(name="Mechanical", specialization="mechanical", leader_id="leader-1")
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture()
def equipment(team):
    e = Equipment(
        name="CNC Lathe 01",
        serial_number="SN-CNC-001",
        category="machining",
        location="Hall A",
        default_team_id=team.id,
    )
    _db.session.add(e)
    _db.session.commit()
    return e


@pytest.fixture()
def make_request(equipment):
    """Factory: insert a request directly in the given status (bypasses the lifecycle)."""
    seq = itertools.count(1)

    def _make(status="new", **fields):
        n = next(seq)
        values = {
            "request_number": f"MR-{n:05d}",
            "title": f"Spindle noise #{n}",
            "description": "Grinding noise from the main spindle",
            "equipment_id": equipment.id,
            "requester_id": "requester-1",
            "status": status,
        }
        values.update(fields)
        req = MaintenanceRequest(**values)
        _db.session.add(req)
        _db.session.commit()
        return req

    return _make
