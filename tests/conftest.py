"""Shared fixtures for the portal test suite."""
import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone

_TEST_DIR = tempfile.mkdtemp(prefix="portal-tests-")

os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'portal.db')}"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["HMAC_KEY"] = "test-hmac-key-for-hold-links-0000000"
os.environ["CATALOG_PASSWORD_KEY"] = "test-catalog-password-key-000000000"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from portal.database import drop_db, get_db_context, init_db
from portal.main import app
from portal.models.audit import AuditLog
from portal.models.user import User
from portal.services import user_account
from portal.services.ils import get_ils_connection
from portal.services.rate_limit import login_rate_limiter
from portal.services.session_store import ils_cache, session_store

PASSWORD = "Secret#123"


def run(coro):
    """Run a coroutine from synchronous test code."""
    return asyncio.run(coro)


async def _reset_database():
    await drop_db()
    await init_db()


async def _set_user_flags(username: str, **flags):
    async with get_db_context() as db:
        user = (await db.execute(select(User).where(User.username == username))).scalar_one()
        for key, value in flags.items():
            setattr(user, key, value)


async def _load_user(username: str):
    async with get_db_context() as db:
        return (await db.execute(select(User).where(User.username == username))).scalar_one_or_none()


async def _purge_user(username: str):
    async with get_db_context() as db:
        user = (await db.execute(select(User).where(User.username == username))).scalar_one()
        await user_account.purge_user(db, user)


async def _audit_actions():
    async with get_db_context() as db:
        rows = await db.execute(select(AuditLog.action, AuditLog.success).order_by(AuditLog.id))
        return [(action.value, success) for action, success in rows.all()]


async def _add_search(username: str, params: dict, days_old: int, saved: bool) -> int:
    async with get_db_context() as db:
        user = (await db.execute(select(User).where(User.username == username))).scalar_one()
        search = await user_account.save_search_history(db, user, params, 3)
        search.saved = saved
        if days_old:
            search.created_at = datetime.now(timezone.utc) - timedelta(days=days_old)
        await db.flush()
        return search.id


def add_search(username: str, params: dict, days_old: int = 0, saved: bool = False) -> int:
    """Store a search in ``username``'s history and return its id."""
    return run(_add_search(username, params, days_old, saved))


def audit_actions():
    """``(action, success)`` of every audit entry, oldest first."""
    return run(_audit_actions())


def set_user_flags(username: str, **flags):
    run(_set_user_flags(username, **flags))


def load_user(username: str):
    return run(_load_user(username))


def purge_user(username: str):
    run(_purge_user(username))


@pytest.fixture(autouse=True)
def clean_state():
    """Fresh tables and empty in-memory state for every test."""
    run(_reset_database())
    session_store.clear_all()
    ils_cache.clear()
    get_ils_connection().driver.reset()
    run(login_rate_limiter.reset())
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def register(client: TestClient, username: str, password: str = PASSWORD, email: str = None):
    response = client.post("/api/v1/auth/register", json={
        "username": username,
        "email": email or f"{username}@example.org",
        "password": password,
        "firstname": "Test",
        "lastname": username.capitalize(),
    })
    assert response.status_code == 201, response.text
    return response.json()


def login(client: TestClient, username: str, password: str = PASSWORD) -> dict:
    response = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def auth_headers(client):
    """Bearer headers of a freshly registered user ``reader``."""
    register(client, "reader")
    return login(client, "reader")


@pytest.fixture
def other_headers(client):
    register(client, "other")
    return login(client, "other")


@pytest.fixture
def admin_headers(client):
    register(client, "admin")
    set_user_flags("admin", is_superuser=True)
    return login(client, "admin")


@pytest.fixture
def patron_headers(client, auth_headers):
    """Headers of ``reader`` with a linked library account."""
    response = client.post(
        "/api/v1/account/catalog-login",
        json={"cat_username": "patron1", "cat_password": "pw"},
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    return auth_headers
