from duochat.config import Settings


def test_environment_is_read_when_settings_are_built(monkeypatch):
    monkeypatch.setenv("PORT", "4000")
    monkeypatch.setenv("CORS_ORIGIN", "https://chat.example.org")
    monkeypatch.setenv("STORE_READ_RETRIES", "0")

    settings = Settings()

    assert settings.port == 4000
    assert settings.cors_origin == "https://chat.example.org"
    assert settings.store_read_retries == 0


def test_defaults_apply_when_unset(monkeypatch):
    for name in ("PORT", "CORS_ORIGIN", "JWT_SECRET_NAME", "LOG_FILE"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.port == 3001
    assert settings.cors_origin == "https://chat.onrender.com"
    assert settings.jwt_secret_name == "jwt-secret"
    assert settings.log_file is None


def test_explicit_values_override_environment(monkeypatch):
    monkeypatch.setenv("DB_NAME", "from-env")
    assert Settings(db_name="explicit").db_name == "explicit"
