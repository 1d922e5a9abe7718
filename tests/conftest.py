# tests/conftest.py

import pytest
from fastapi.testclient import TestClient

import settings as settings_module
from main import create_app
from services import metrics
from tests.fakes import FakeSettlementStore


OPENNODE_TEST_KEY = "test-opennode-key"


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def opennode_env(monkeypatch):
    """OpenNode fully configured; tests override single fields as needed."""
    s = settings_module.settings
    monkeypatch.setattr(s, "OPENNODE_API_KEY", OPENNODE_TEST_KEY)
    monkeypatch.setattr(s, "OPENNODE_BASE_URL", "")
    monkeypatch.setattr(s, "OPENNODE_WITHDRAWAL_CALLBACK_URL", "https://api.example.com/webhooks/opennode/withdrawals")
    return s


@pytest.fixture
def no_opennode_env(monkeypatch):
    s = settings_module.settings
    monkeypatch.setattr(s, "OPENNODE_API_KEY", "")
    monkeypatch.setattr(s, "OPENNODE_BASE_URL", "")
    monkeypatch.setattr(s, "OPENNODE_WITHDRAWAL_CALLBACK_URL", "")
    return s


@pytest.fixture
def store() -> FakeSettlementStore:
    return FakeSettlementStore()


@pytest.fixture
def client(store) -> TestClient:
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(create_app(store=store), raise_server_exceptions=False)
