"""
Shared pytest fixtures for the labstock test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_reagent / make_lot / make_profile: row factories
    - cron_headers / service_headers: bearer headers for machine routes
"""

from datetime import datetime, timezone

import pytest

from labstock import create_app
from labstock.models import db as _db
from labstock.models.inventory import Lot, Profile, Reagent


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


@pytest.fixture()
def today():
    """The UTC calendar day the digest endpoint runs against."""
    return datetime.now(timezone.utc).date()


@pytest.fixture()
def cron_headers(app):
    return {"Authorization": f"Bearer {app.config['CRON_SECRET']}"}


@pytest.fixture()
def service_headers(app):
    return {"Authorization": f"Bearer {app.config['EXPORT_SERVICE_KEY']}"}


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_reagent():
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "name": f"Reagent {counter['n']}",
            "reference": f"REF-{counter['n']:03d}",
            "unit": "units",
            "total_quantity": 10,
            "minimum_stock": 2,
            "is_active": True,
        }
        fields.update(overrides)
        reagent = Reagent(**fields)
        _db.session.add(reagent)
        _db.session.commit()
        return reagent

    return _make


@pytest.fixture()
def make_lot(make_reagent):
    counter = {"n": 0}

    def _make(reagent=None, **overrides):
        counter["n"] += 1
        reagent = reagent or make_reagent()
        fields = {
            "lot_number": f"LOT-{counter['n']:03d}",
            "quantity": 5,
            "expiry_date": None,
            "is_active": True,
        }
        fields.update(overrides)
        lot = Lot(reagent_id=reagent.id, **fields)
        _db.session.add(lot)
        _db.session.commit()
        return lot

    return _make


@pytest.fixture()
def make_profile():
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "email": f"user{counter['n']}@lab.example",
            "full_name": f"User {counter['n']}",
            "role": "user",
            "is_active": True,
            "receive_email_alerts": True,
        }
        fields.update(overrides)
        profile = Profile(**fields)
        _db.session.add(profile)
        _db.session.commit()
        return profile

    return _make
