"""
Shared pytest fixtures for the Pocket Prospector test suite.

The database path is pointed at a throwaway file BEFORE app is imported,
because app.py creates its tables at import time.
"""
import os
import sys
import tempfile

import pytest

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

os.environ["PROSPECTOR_DB_PATH"] = os.path.join(tempfile.mkdtemp(), "import.db")
os.environ.pop("DATABASE_URL", None)


# ── Per-test database + clean integration config ─────────────────────────────

@pytest.fixture(autouse=True)
def temp_db(tmp_path, monkeypatch):
    """Fresh SQLite file per test; no live API keys."""
    import config
    import store

    db_path = str(tmp_path / "prospector.db")
    monkeypatch.setattr(store, "DB_PATH", db_path)
    monkeypatch.setattr(store, "DATABASE_URL", "")
    for key in ("GOOGLE_API_KEY", "GOOGLE_SHEETS_API_KEY", "GOOGLE_SHEETS_ID",
                "GEMINI_API_KEY", "ANTHROPIC_API_KEY", "ADMIN_KEY", "SOCRATA_APP_TOKEN"):
        monkeypatch.setattr(config, key, "")
    monkeypatch.setattr(config, "INTEL_INITIAL_DELAY", 0)
    monkeypatch.setattr(config, "INTEL_MAX_DELAY", 0)
    store.init_db()
    return db_path


# ── Flask test client ─────────────────────────────────────────────────────────

@pytest.fixture
def app(temp_db):
    import app as app_module
    app_module.app.config["TESTING"] = True
    return app_module.app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(client):
    """Test client with a signed-up, logged-in user."""
    resp = client.post("/api/auth/signup", json={"username": "rep", "password": "secret123"})
    assert resp.status_code == 201
    return client


@pytest.fixture
def user_id(auth_client):
    import store
    return store.get_user_by_username("rep")["id"]


# ── Sample data ───────────────────────────────────────────────────────────────

def _month(label, raw, total, liquor=None, beer=None, wine=None):
    return {
        "month": label,
        "liquor": liquor if liquor is not None else total * 0.5,
        "beer": beer if beer is not None else total * 0.3,
        "wine": wine if wine is not None else total * 0.2,
        "total": total,
        "rawDate": raw,
    }


@pytest.fixture
def sample_history():
    """Three months of receipts, oldest first; one month with no filing."""
    return [
        _month("Jan 24", "2024-01-31T00:00:00.000", 20000),
        _month("Feb 24", "2024-02-29T00:00:00.000", 0),
        _month("Mar 24", "2024-03-31T00:00:00.000", 30000),
    ]


@pytest.fixture
def saved_account(auth_client, user_id, sample_history):
    """A records-backed saved account with history, returned as its DB row."""
    import store
    from account_state import AccountState

    state = AccountState.for_record("12345678901", "1", sample_history, venueType="pub_grill")
    return store.create_account(user_id, "The Tipsy Armadillo", "100 Main St, Austin, TX",
                                30.27, -97.74, state.to_json())
