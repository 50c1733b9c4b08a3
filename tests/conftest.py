"""
tests/conftest.py -- Shared test fixtures for ITAM lifecycle integration tests.

This module provides:
  - make_store(): creates an isolated in-memory CMDBStore
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: TestClient against the real app with a patched lifespan

Named shared-memory SQLite URIs (not plain :memory:) are required because
TestClient runs route handlers in a thread pool. Plain :memory: DBs are
per-connection and would present a blank schema to each worker thread. The
named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# Set before any core import so get_settings() never reads a developer's .env values for these.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("NO_COLOR", "1")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from cmdb.models import Asset, AssetDocument, AssetOwner
from cmdb.store import CMDBStore

# Per-route limits would trip on a busy test module.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(name: str) -> CMDBStore:
    """Return a CMDBStore on a named shared-memory SQLite database."""
    return CMDBStore(db_url=f"sqlite:///file:test_cmdb_{name}?mode=memory&cache=shared&uri=true")


def owner(upn: str = "alice@example.com") -> AssetOwner:
    return AssetOwner(user_id="u-1", upn=upn, display_name="Alice Example", department="IT")


def wipe_cert() -> AssetDocument:
    return AssetDocument(doc_type="WipeCert", url="https://docs.example.com/wipe/1.pdf", title="Wipe certificate")


def new_laptop(store: CMDBStore, **fields) -> str:
    """Register a laptop and return its generated ID."""
    fields.setdefault("asset_class", "Laptop")
    fields.setdefault("model", "Latitude 7440")
    return store.create_asset(Asset(**fields))


def walk(store: CMDBStore, asset_id: str, *states: str, actor: str = "tester") -> None:
    """Commit a chain of transitions starting from the asset's current state."""
    current = store.load_asset(asset_id).state
    for target in states:
        result = store.commit_transition(asset_id, current, target, actor=actor)
        assert getattr(result, "to_state", None) == target, result
        current = target


def _patch_lifespan(cmdb: CMDBStore):
    """Return an async context manager that replaces the real lifespan.

    The escalation_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.cmdb = cmdb
        app.state.escalation_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.escalation_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient for the real app backed by an isolated in-memory store.

    base_url uses localhost so TrustedHostMiddleware admits the requests.
    """
    cmdb = make_store(request.module.__name__.replace(".", "_"))
    app.router.lifespan_context = _patch_lifespan(cmdb)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client

    cmdb.close()


@pytest.fixture
def store() -> Generator[CMDBStore, None, None]:
    """A fresh in-memory CMDBStore per test."""
    s = CMDBStore("sqlite:///:memory:")
    yield s
    s.close()
