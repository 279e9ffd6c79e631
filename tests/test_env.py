import pytest
from fastapi.testclient import TestClient

from login_guard import config
from login_guard.config import ConfigError
from login_guard.main import app


REQUIRED = {
    "SUPABASE_URL": "https://example.supabase.co/",
    "SUPABASE_ANON_KEY": "anon-key-1234567890",
    "LOG_LEVEL": "INFO",
}

OPTIONAL = [
    "LOGIN_MAX_ATTEMPTS",
    "LOGIN_WINDOW_MS",
    "LOGIN_BLOCK_DURATION_MS",
    "API_MAX_REQUESTS",
    "TRUST_FORWARDED_FOR",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in OPTIONAL:
        monkeypatch.delenv(key, raising=False)
    yield
    config.reset_settings_cache()


def set_env(monkeypatch):
    for key, value in REQUIRED.items():
        monkeypatch.setenv(key, value)


def test_healthz_missing_env(monkeypatch):
    for key in REQUIRED:
        monkeypatch.delenv(key, raising=False)
    config.reset_settings_cache()
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 500
    assert "Missing required" in response.json()["detail"]


def test_healthz_valid_env(monkeypatch):
    set_env(monkeypatch)
    config.reset_settings_cache()
    with TestClient(app) as client:
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "tracked_keys": 0, "blocked_keys": 0}


def test_default_login_policy(monkeypatch):
    set_env(monkeypatch)
    settings = config.load_settings()
    policies = settings.policies()
    assert settings.supabase_url == "https://example.supabase.co"
    assert policies.login.max_attempts == 5
    assert policies.login.window_ms == 15 * 60 * 1000
    assert policies.login.block_duration_ms == 30 * 60 * 1000
    assert policies.api.max_attempts == 100


def test_policy_overrides(monkeypatch):
    set_env(monkeypatch)
    monkeypatch.setenv("LOGIN_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("LOGIN_WINDOW_MS", "60000")
    policies = config.load_settings().policies()
    assert policies.login.max_attempts == 3
    assert policies.login.window_ms == 60000


@pytest.mark.parametrize(
    "name,value",
    [
        ("LOGIN_MAX_ATTEMPTS", "0"),
        ("LOGIN_WINDOW_MS", "-5"),
        ("LOGIN_BLOCK_DURATION_MS", "-1"),
        ("LOGIN_MAX_ATTEMPTS", "many"),
    ],
)
def test_invalid_policy_fails_at_load(monkeypatch, name, value):
    set_env(monkeypatch)
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        config.load_settings()


def test_invalid_supabase_url(monkeypatch):
    set_env(monkeypatch)
    monkeypatch.setenv("SUPABASE_URL", "example.supabase.co")
    valid, reason = config.is_environment_valid()
    assert valid is False
    assert "SUPABASE_URL" in reason


def test_startup_error_recorded(monkeypatch):
    for key in REQUIRED:
        monkeypatch.delenv(key, raising=False)
    config.reset_settings_cache()
    with TestClient(app) as client:
        assert "Missing required" in app.state.startup_error
        response = client.get("/healthz")
        assert response.status_code == 500
        login = client.post("/auth/login", json={"email": "ops@example.com", "password": "x"})
        assert login.status_code == 503
