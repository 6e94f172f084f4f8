import pytest
from pydantic import ValidationError

from coalescer.config import BatcherConfig, BatcherSettings, StopPolicy
from coalescer.core import Batcher


def test_defaults():
    config = BatcherConfig(period_seconds=1.0)

    assert config.timeout_seconds is None
    assert config.name is None
    assert config.stop_policy is StopPolicy.KEEP


@pytest.mark.parametrize("period", [0, -0.5])
def test_period_must_be_positive(period):
    with pytest.raises(ValidationError):
        BatcherConfig(period_seconds=period)


@pytest.mark.parametrize("timeout", [None, False, 0, 0.0])
def test_disabled_timeout_values(timeout):
    assert BatcherConfig(period_seconds=1.0, timeout_seconds=timeout).timeout_seconds is None


def test_negative_timeout_is_rejected():
    with pytest.raises(ValidationError):
        BatcherConfig(period_seconds=1.0, timeout_seconds=-1)


def test_batcher_validates_its_configuration():
    with pytest.raises(ValidationError):
        Batcher(lambda batch, token: None, period_seconds=0)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("COALESCER_PERIOD_SECONDS", "0.25")
    monkeypatch.setenv("COALESCER_TIMEOUT_SECONDS", "false")
    monkeypatch.setenv("COALESCER_NAME", "users")
    monkeypatch.setenv("COALESCER_STOP_POLICY", "fail")

    settings = BatcherSettings()

    assert settings.period_seconds == 0.25
    assert settings.timeout_seconds is None
    assert settings.name == "users"
    assert settings.stop_policy is StopPolicy.FAIL


def test_settings_env_is_case_insensitive(monkeypatch):
    monkeypatch.setenv("coalescer_period_seconds", "2")
    assert BatcherSettings().period_seconds == 2.0


def test_settings_keyword_arguments_take_precedence(monkeypatch):
    monkeypatch.setenv("COALESCER_PERIOD_SECONDS", "3")
    monkeypatch.setenv("COALESCER_TIMEOUT_SECONDS", "10")

    settings = BatcherSettings(period_seconds=0.5)

    assert settings.period_seconds == 0.5
    assert settings.timeout_seconds == 10.0


def test_settings_read_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text(
        "COALESCER_PERIOD_SECONDS=0.75\nCOALESCER_TIMEOUT_SECONDS=4\nUNRELATED_KEY=1\n",
        encoding="utf-8",
    )

    settings = BatcherSettings()

    assert settings.period_seconds == 0.75
    assert settings.timeout_seconds == 4.0


def test_settings_keep_timeout_validation(monkeypatch):
    monkeypatch.setenv("COALESCER_PERIOD_SECONDS", "1")
    monkeypatch.setenv("COALESCER_TIMEOUT_SECONDS", "-2")
    with pytest.raises(ValidationError):
        BatcherSettings()


def test_settings_require_a_period():
    with pytest.raises(ValidationError):
        BatcherSettings()


def test_settings_are_frozen(monkeypatch):
    monkeypatch.setenv("COALESCER_PERIOD_SECONDS", "1")
    settings = BatcherSettings()
    with pytest.raises(ValidationError):
        settings.period_seconds = 2


def test_batcher_from_settings(monkeypatch):
    monkeypatch.setenv("COALESCER_PERIOD_SECONDS", "0.2")
    monkeypatch.setenv("COALESCER_NAME", "users")

    batcher = Batcher.from_config(lambda batch, token: None, BatcherSettings())

    assert batcher.period_seconds == 0.2
    assert batcher.name == "users"


def test_batcher_from_config():
    config = BatcherConfig(period_seconds=0.5, timeout_seconds=2, name="users")

    batcher = Batcher.from_config(lambda batch, token: None, config)

    assert batcher.period_seconds == 0.5
    assert batcher.timeout_seconds == 2
    assert batcher.name == "users"
