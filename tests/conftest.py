"""
Shared pytest fixtures for the AI Use-Case Portfolio test suite.

Provides:
    - app: Flask application (session-scoped) with a recording event sink
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - events: the RecordingEventSink, cleared per test
    - make_use_case / make_engagement: API-backed factories
    - governed_use_case: a use case with all three gates passed
"""

import pytest

from portfolio import create_app
from portfolio.models import db as _db
from portfolio.models.client import Client, Engagement
from portfolio.services.events import RecordingEventSink

_SINK = RecordingEventSink()


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing", event_sink=_SINK)
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
        _SINK.clear()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def events():
    return _SINK


# ── Convenience fixtures ─────────────────────────────────────────────────


QUICK_WIN_LEVERS = {
    "revenue_impact": 5,
    "cost_savings": 4,
    "risk_reduction": 4,
    "broker_partner_experience": 4,
    "strategic_fit": 5,
    "data_readiness": 2,
    "technical_complexity": 2,
    "change_impact": 2,
    "model_risk": 2,
    "adoption_readiness": 2,
}


@pytest.fixture()
def make_use_case(client):
    """Create a use case via the API and return its JSON."""

    def _make(**overrides):
        payload = {"title": "Claims triage assistant", "processes": ["Claims Management"], **overrides}
        res = client.post("/api/use-cases", json=payload)
        assert res.status_code == 201, res.get_json()
        return res.get_json()

    return _make


@pytest.fixture()
def make_engagement():
    """Create a client + engagement directly through the ORM."""

    def _make(name="Engagement A", client_name="Acme Insurance", currency="GBP", **fields):
        owner = Client.query.filter_by(name=client_name).first()
        if owner is None:
            owner = Client(name=client_name, currency=currency)
            _db.session.add(owner)
            _db.session.flush()
        engagement = Engagement(client_id=owner.id, name=name, **fields)
        _db.session.add(engagement)
        _db.session.commit()
        return engagement

    return _make


@pytest.fixture()
def governed_use_case(client, make_use_case):
    """A Backlog use case whose three gates have all passed."""
    uc = make_use_case(primary_business_owner="Jane Doe", use_case_status="Backlog", **QUICK_WIN_LEVERS)
    for gate, body in (
        ("operating-model", {"decision": "approved", "actor": "steerco"}),
        ("intake", {"decision": "approved", "priority_rank": 1}),
        ("rai", {"decision": "approved", "risk_level": "low"}),
    ):
        res = client.patch(f"/api/governance/{uc['id']}/{gate}", json=body)
        assert res.status_code == 200, res.get_json()
    return client.get(f"/api/use-cases/{uc['id']}").get_json()
