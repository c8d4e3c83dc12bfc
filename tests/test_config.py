from soilsync.config import DEFAULT_DB_PATH, Settings, parse_api_keys


def test_parse_api_keys():
    raw = "key-a, key-b\n  key-c  # staging\n\n"
    assert parse_api_keys(raw) == ["key-a", "key-b", "key-c"]
    assert parse_api_keys(None) == []


def test_from_env(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEYS", "one,two")
    monkeypatch.setenv("SOILSYNC_DEMO_DELAY", "0.5")
    monkeypatch.setenv("SOILSYNC_HISTORY_LIMIT", "5")
    monkeypatch.setenv("SOILSYNC_DB_PATH", "")
    settings = Settings.from_env()
    assert settings.api_keys == ["one", "two"]
    assert settings.has_credentials
    assert settings.demo_delay == 0.5
    assert settings.history_limit == 5
    assert settings.db_path == DEFAULT_DB_PATH


def test_single_key_fallback(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "solo")
    assert Settings.from_env().api_keys == ["solo"]


def test_no_keys_means_demo(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    assert not Settings.from_env().has_credentials


def test_session_bounds_from_env(monkeypatch):
    monkeypatch.setenv("SOILSYNC_SESSION_TTL", "600")
    monkeypatch.setenv("SOILSYNC_MAX_SESSIONS", "50")
    settings = Settings.from_env()
    assert settings.session_ttl == 600.0
    assert settings.max_sessions == 50


def test_session_bound_defaults(monkeypatch):
    monkeypatch.delenv("SOILSYNC_SESSION_TTL", raising=False)
    monkeypatch.delenv("SOILSYNC_MAX_SESSIONS", raising=False)
    settings = Settings.from_env()
    assert settings.session_ttl == 12 * 60 * 60
    assert settings.max_sessions == 1000
