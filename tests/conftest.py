import pytest

from zoomvault.config import ENV_VARS
from zoomvault.ledger import SQLiteTransferLedger

from .fakes import FakeClock, FakeZoomClient, InMemoryObjectStore


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep the developer's real environment and config directory out of tests"""
    monkeypatch.setenv("ZOOMVAULT_NO_DOTENV", "1")
    for env_var in ENV_VARS.values():
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setattr("zoomvault.config.user_config_dir", lambda app: str(tmp_path / "config"))
    monkeypatch.setattr("zoomvault.config.user_data_dir", lambda app: str(tmp_path / "data"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(tmp_path):
    return SQLiteTransferLedger(tmp_path / "ledger.db")


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def zoom():
    return FakeZoomClient()
