import pytest
import structlog


@pytest.fixture(autouse=True)
def test_clear_env(monkeypatch, tmp_path):
    for field_name in ("PERIOD_SECONDS", "TIMEOUT_SECONDS", "NAME", "STOP_POLICY"):
        monkeypatch.delenv(f"COALESCER_{field_name}", raising=False)
    # keeps a developer's .env out of the settings under test
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    structlog.reset_defaults()
