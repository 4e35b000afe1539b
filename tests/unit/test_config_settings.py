import pytest

from krushi_client.config import settings
from krushi_client.config.settings import ClientConfig, load_settings, resolve_api_root

ENV_VARS = [
    "KRUSHI_ENV",
    "KRUSHI_API_URL",
    "KRUSHI_REQUEST_TIMEOUT",
    "KRUSHI_CREDENTIALS_FILE",
    "KRUSHI_TELEMETRY_ENABLED",
    "KRUSHI_TELEMETRY_BATCH_SIZE",
    "KRUSHI_TELEMETRY_FLUSH_INTERVAL",
    "KRUSHI_TELEMETRY_MAX_ATTEMPTS",
    "KRUSHI_TELEMETRY_BACKOFF_BASE",
    "KRUSHI_TELEMETRY_BACKOFF_MAX",
    "KRUSHI_TOKEN_REFRESH_LEEWAY",
    "KRUSHI_LOGIN_PATH",
    "KRUSHI_APP_URL",
    "KRUSHI_PASSWORD",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def _fake_run_secrets(monkeypatch, directory):
    real_path = settings.Path

    def fake_path(target):
        if str(target) == "/run/secrets":
            return directory
        return real_path(target)

    monkeypatch.setattr(settings, "Path", fake_path)


def test_defaults():
    cfg = load_settings()
    assert cfg.environment == "development"
    assert cfg.api_root == "http://localhost:5000/api/v1"
    assert cfg.request_timeout == 10.0
    assert cfg.credentials_file == ""
    assert cfg.telemetry_enabled is True
    assert cfg.telemetry_batch_size == 10
    assert cfg.telemetry_flush_interval == 30.0
    assert cfg.telemetry_max_attempts == 5
    assert cfg.token_refresh_leeway == 0
    assert cfg.login_path == "/login"
    assert not cfg.is_production


def test_production_uses_public_api(monkeypatch):
    monkeypatch.setenv("KRUSHI_ENV", "production")
    cfg = load_settings()
    assert cfg.is_production
    assert cfg.api_root == "https://api.smartsheti.com/api/v1"


def test_explicit_api_url(monkeypatch):
    monkeypatch.setenv("KRUSHI_API_URL", "https://staging.example.com/")
    assert load_settings().api_root == "https://staging.example.com/api/v1"


def test_resolve_api_root_keeps_existing_prefix():
    assert resolve_api_root("development", "http://h:1/api/v1") == "http://h:1/api/v1"
    assert resolve_api_root("production", "") == "https://api.smartsheti.com/api/v1"


def test_telemetry_overrides(monkeypatch):
    monkeypatch.setenv("KRUSHI_TELEMETRY_ENABLED", "off")
    monkeypatch.setenv("KRUSHI_TELEMETRY_BATCH_SIZE", "25")
    monkeypatch.setenv("KRUSHI_TELEMETRY_FLUSH_INTERVAL", "5.5")
    monkeypatch.setenv("KRUSHI_TOKEN_REFRESH_LEEWAY", "60")
    cfg = load_settings()
    assert cfg.telemetry_enabled is False
    assert cfg.telemetry_batch_size == 25
    assert cfg.telemetry_flush_interval == 5.5
    assert cfg.token_refresh_leeway == 60


@pytest.mark.parametrize("var,value", [
    ("KRUSHI_TELEMETRY_BATCH_SIZE", "ten"),
    ("KRUSHI_TELEMETRY_BATCH_SIZE", "0"),
    ("KRUSHI_REQUEST_TIMEOUT", "-1"),
    ("KRUSHI_TOKEN_REFRESH_LEEWAY", "1.5"),
])
def test_invalid_numbers_name_the_variable(monkeypatch, var, value):
    monkeypatch.setenv(var, value)
    with pytest.raises(ValueError, match=var):
        load_settings()


def test_login_password_reads_from_run_secrets(monkeypatch, tmp_path):
    (tmp_path / "krushi_password").write_text("file-secret\n")
    _fake_run_secrets(monkeypatch, tmp_path)
    monkeypatch.setenv("KRUSHI_PASSWORD", "env-secret")
    assert ClientConfig().login_password == "file-secret"


def test_login_password_falls_back_to_env(monkeypatch, tmp_path):
    _fake_run_secrets(monkeypatch, tmp_path)
    monkeypatch.setenv("KRUSHI_PASSWORD", "env-secret")
    assert ClientConfig().login_password == "env-secret"


def test_login_password_missing(monkeypatch, tmp_path):
    _fake_run_secrets(monkeypatch, tmp_path)
    assert ClientConfig().login_password is None
