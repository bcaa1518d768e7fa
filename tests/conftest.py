"""
Shared pytest fixtures for the Risk Ledger test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_risk / make_issue / make_opportunity: API-level creators
"""

import pytest

from riskledger import create_app
from riskledger.models import db as _db


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


# ── Convenience creators ─────────────────────────────────────────────────


RISK_PAYLOAD = {
    "risk_name": "Supplier insolvency",
    "risk_condition": "Single-source supplier for the avionics harness",
    "risk_if": "the supplier enters administration",
    "risk_then": "integration slips by a quarter",
    "likelihood": 3,
    "consequence": 3,
}

ISSUE_PAYLOAD = {
    "issue_name": "Harness delivery late",
    "description": "First batch arrived six weeks late",
    "consequence": 4,
}

OPPORTUNITY_PAYLOAD = {
    "opportunity_name": "Shared test rig",
    "opportunity_condition": "Programme B owns an idle environmental rig",
    "opportunity_if": "we book it for Q3",
    "opportunity_then": "qualification costs drop",
    "likelihood": 2,
    "impact": 4,
}


def _create(client, path, base, **kw):
    payload = dict(base)
    payload.update(kw)
    res = client.post(f"/api/v1/{path}", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


@pytest.fixture()
def make_risk(client):
    return lambda **kw: _create(client, "risks", RISK_PAYLOAD, **kw)


@pytest.fixture()
def make_issue(client):
    return lambda **kw: _create(client, "issues", ISSUE_PAYLOAD, **kw)


@pytest.fixture()
def make_opportunity(client):
    return lambda **kw: _create(client, "opportunities", OPPORTUNITY_PAYLOAD, **kw)
