import pytest

from config import get_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("FINANCE_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("FINANCE_DATABASE_URL", f"sqlite:///{tmp_path / 'finance.db'}")
    monkeypatch.delenv("FINANCE_CACHE_URL", raising=False)
    monkeypatch.setenv("FINANCE_DB_CONNECT_ATTEMPTS", "1")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
