import logging

from creaturehunt.backend.config import DEFAULT_ARTWORK_URL, DEFAULT_CATALOG_URL, configure_logging, load_settings

ENV_VARS = (
    "CREATUREHUNT_DATABASE_URL",
    "CREATUREHUNT_CACHE_PATH",
    "CREATUREHUNT_CATALOG_URL",
    "CREATUREHUNT_CATALOG_LIMIT",
    "CREATUREHUNT_ARTWORK_URL",
    "CREATUREHUNT_FLEE_SECONDS",
    "CREATUREHUNT_HTTP_TIMEOUT",
    "CREATUREHUNT_HOST",
    "CREATUREHUNT_PORT",
    "CREATUREHUNT_LOG_LEVEL",
)


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("CREATUREHUNT_DATABASE_URL", "postgresql://local")
    monkeypatch.setenv("CREATUREHUNT_CACHE_PATH", "/tmp/catalog.db")
    monkeypatch.setenv("CREATUREHUNT_CATALOG_URL", "https://catalog.test/api/")
    monkeypatch.setenv("CREATUREHUNT_CATALOG_LIMIT", "20")
    monkeypatch.setenv("CREATUREHUNT_FLEE_SECONDS", "2.5")
    monkeypatch.setenv("CREATUREHUNT_HOST", "localhost")
    monkeypatch.setenv("CREATUREHUNT_PORT", "9000")
    monkeypatch.setenv("CREATUREHUNT_LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.database_url == "postgresql://local"
    assert settings.cache_path == "/tmp/catalog.db"
    assert settings.catalog_url == "https://catalog.test/api"
    assert settings.catalog_limit == 20
    assert settings.flee_seconds == 2.5
    assert settings.host == "localhost"
    assert settings.port == 9000
    assert settings.log_level == "DEBUG"


def test_load_settings_applies_defaults(monkeypatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.database_url is None
    assert settings.cache_path is None
    assert settings.catalog_url == DEFAULT_CATALOG_URL
    assert settings.catalog_limit == 151
    assert settings.artwork_url == DEFAULT_ARTWORK_URL
    assert settings.flee_seconds == 10.0
    assert settings.http_timeout == 10.0
    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.log_level == "INFO"


def test_configure_logging_accepts_unknown_level(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("chatty")

    assert calls[0]["level"] == logging.INFO
