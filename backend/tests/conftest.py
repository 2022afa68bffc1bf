"""
Shared fixtures.

The environment is pinned before the app is imported: a throwaway SQLite file
for the session store and no pacing delay between order pages.
"""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="restocking-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/test.db"
os.environ["REPORT_PAGE_DELAY_SECONDS"] = "0"

from typing import Any, Generator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from restocking_report.main import app  # noqa: E402
from restocking_report.shopify_auth import authenticate_admin  # noqa: E402

from shopify_fakes import TEST_CLIENT_ID, TEST_CLIENT_SECRET  # noqa: E402


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def shopify_env(monkeypatch):
    """App credentials set, custom-app fallback cleared."""
    monkeypatch.setenv("SHOPIFY_CLIENT_ID", TEST_CLIENT_ID)
    monkeypatch.setenv("SHOPIFY_CLIENT_SECRET", TEST_CLIENT_SECRET)
    monkeypatch.setenv("BASE_URL", "https://reports.example.com")
    monkeypatch.delenv("OAUTH_STATE_SECRET", raising=False)
    monkeypatch.delenv("SHOPIFY_STORE_DOMAIN", raising=False)
    monkeypatch.delenv("SHOPIFY_ACCESS_TOKEN", raising=False)


@pytest.fixture
def client() -> Generator[TestClient, Any, None]:
    with TestClient(app) as tc:
        yield tc


@pytest.fixture
def admin_override():
    """Install an Admin API client (usually a FakeShopify one) in place of real auth."""

    def install(admin_client):
        app.dependency_overrides[authenticate_admin] = lambda: admin_client

    yield install
    app.dependency_overrides.pop(authenticate_admin, None)
