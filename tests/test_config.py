import pytest
from pydantic import ValidationError

from correlauth.config import (
    DEFAULT_COOKIE_MAX_AGE,
    DEFAULT_TOKEN_LIFETIME,
    Settings,
    StoreBackend,
    get_settings,
    reset_settings_cache,
)
from correlauth.service.runtime import Runtime, _mask_url_password, build_store
from correlauth.storage.memory import MemoryStore


def test_defaults():
    settings = Settings()

    assert settings.jwt_expires_in == DEFAULT_TOKEN_LIFETIME
    assert settings.correlation_cookie_max_age == DEFAULT_COOKIE_MAX_AGE
    assert settings.correlation_cookie_name == "x-correlation-id"
    assert (settings.jwt_issuer, settings.jwt_subject, settings.jwt_audience) == (
        "jwt",
        "jwt",
        "everyone",
    )
    assert settings.store_backend is StoreBackend.MEMORY
    assert settings.debug is False


def test_from_env_reads_named_variables(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("JWT_SECRET", "from-environment-secret-value-0123456789")
    monkeypatch.setenv("JWT_EXPIRES_IN", "600")
    monkeypatch.setenv("JWT_AUDIENCE", "clients")
    monkeypatch.setenv("DEBUG", "true")

    settings = Settings.from_env()

    assert settings.jwt_secret == "from-environment-secret-value-0123456789"
    assert settings.jwt_expires_in == 600
    assert settings.jwt_audience == "clients"
    assert settings.debug is True


def test_from_env_falls_back_to_dotenv(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("JWT_ISSUER", raising=False)
    (tmp_path / ".env").write_text("JWT_ISSUER=dotenv-issuer\n")

    assert Settings.from_env().jwt_issuer == "dotenv-issuer"


def test_environment_wins_over_dotenv(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("JWT_ISSUER", "env-issuer")
    (tmp_path / ".env").write_text("JWT_ISSUER=dotenv-issuer\n")

    assert Settings.from_env().jwt_issuer == "env-issuer"


def test_app_id_only_used_without_secret():
    settings = Settings(jwt_secret="explicit-secret-value-0123456789abcdef", heroku_app_id="app")

    assert settings.jwt_secret == "explicit-secret-value-0123456789abcdef"


@pytest.mark.parametrize("field", ["jwt_expires_in", "correlation_cookie_max_age"])
def test_lifetimes_must_be_positive(field):
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


def test_unknown_backend_rejected():
    with pytest.raises(ValidationError):
        Settings(store_backend="sqlite")


def test_get_settings_is_cached(monkeypatch):
    reset_settings_cache()
    first = get_settings()
    monkeypatch.setenv("JWT_ISSUER", "changed")

    assert get_settings() is first

    reset_settings_cache()
    assert get_settings().jwt_issuer == "changed"


def test_memory_backend_builds_memory_store():
    assert isinstance(build_store(Settings()), MemoryStore)


def test_runtime_wires_debug_flag():
    runtime = Runtime(
        Settings(jwt_secret="runtime-secret-value-0123456789abcdef", debug=True),
        store=MemoryStore(),
    )

    assert runtime.authenticator.debug is True
    assert runtime.lifecycle.store is runtime.store


def test_mask_url_password():
    assert _mask_url_password("redis://:hunter2@localhost:6379/0") == "redis://:***@localhost:6379/0"
    assert _mask_url_password("postgresql://app:pw@db/auth") == "postgresql://app:***@db/auth"
    assert _mask_url_password("redis://localhost:6379") == "redis://localhost:6379"
