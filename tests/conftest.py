"""Shared test fixtures: MockProvider injection, seeded store, cache clearing."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from cip_protocol import CIP
from cip_protocol.llm.providers.mock import MockProvider
from cip_protocol.scaffold.matcher import clear_matcher_cache

from dealer_mcp.config import DEALER_CRM_DOMAIN_CONFIG
from dealer_mcp.data.crm import set_store
from dealer_mcp.data.seed import seed_demo_data
from dealer_mcp.data.store import SqliteRecordStore
from dealer_mcp.server import set_cip_override

SCAFFOLD_DIR = str(Path(__file__).resolve().parent.parent / "dealer_mcp" / "scaffolds")

# Wednesday 11:00 in Detroit: inside showroom business hours.
SEED_NOW = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


@pytest.fixture()
def now() -> datetime:
    return SEED_NOW


@pytest.fixture()
def as_of(now: datetime) -> str:
    return now.isoformat()


@pytest.fixture()
def mock_provider() -> MockProvider:
    """A fresh MockProvider for each test."""
    return MockProvider("Mock LLM response for DealerCRM.")


@pytest.fixture()
def mock_cip(mock_provider: MockProvider) -> CIP:
    """CIP instance wired with real scaffolds + MockProvider."""
    return CIP.from_config(DEALER_CRM_DOMAIN_CONFIG, SCAFFOLD_DIR, mock_provider)


@pytest.fixture(autouse=True)
def _inject_mock_cip(mock_cip: CIP):
    """Auto-inject the mock CIP into the server singleton for every test."""
    set_cip_override(mock_cip)
    yield
    set_cip_override(None)


@pytest.fixture()
def store() -> SqliteRecordStore:
    crm_store = SqliteRecordStore(":memory:")
    seed_demo_data(crm_store, now=SEED_NOW)
    return crm_store


@pytest.fixture(autouse=True)
def _inject_test_store(store: SqliteRecordStore, monkeypatch):
    """Give every test a fresh, isolated, seeded in-memory CRM store."""
    monkeypatch.delenv("DEALER_CRM_TIMEZONE", raising=False)
    set_store(store)
    yield
    set_store(None)
    store.close()


@pytest.fixture(autouse=True)
def _clear_matcher_cache():
    """Clear matcher cache before and after each test to prevent cross-test pollution."""
    clear_matcher_cache()
    yield
    clear_matcher_cache()
