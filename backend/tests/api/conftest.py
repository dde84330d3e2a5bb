import pytest
from fastapi.testclient import TestClient

from budget_app.database.postgres_db import get_db
from budget_app.main import app
from budget_app.services.auth import create_token_pair
from budget_app.services.report_cache import ReportCache, get_report_cache
from budget_app.services.sessions import SessionTracker, get_session_tracker
from budget_app.services.sync_scheduler import SyncScheduler, get_sync_scheduler


@pytest.fixture
def synced_accounts():
    return []


@pytest.fixture
def client(db_session, fake_redis, synced_accounts):
    def override_get_db():
        yield db_session

    def fake_sync(account_id, user_id=None):
        synced_accounts.append((account_id, user_id))
        return {"imported": 2, "duplicates": 1}

    tracker = SessionTracker(fake_redis)
    cache = ReportCache(fake_redis)
    scheduler = SyncScheduler(sync_fn=fake_sync, list_accounts_fn=lambda: [])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_tracker] = lambda: tracker
    app.dependency_overrides[get_report_cache] = lambda: cache
    app.dependency_overrides[get_sync_scheduler] = lambda: scheduler

    # Not used as a context manager so startup never touches Postgres or Redis
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user):
    tokens = create_token_pair(user.id, user.email)
    return {"Authorization": f"Bearer {tokens['access_token']}"}
