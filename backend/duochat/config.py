import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env(name: str, default: Optional[str] = None):
    return field(default_factory=lambda: os.getenv(name, default))


def _env_int(name: str, default: int):
    return field(default_factory=lambda: int(os.getenv(name, str(default))))


@dataclass
class Settings:
    """Runtime configuration read from the environment (and ``.env``) when constructed."""

    mongo_uri: str = _env("MONGO_URI", "mongodb://localhost:27017/")
    db_name: str = _env("DB_NAME", "duochat")
    mongo_timeout_ms: int = _env_int("MONGO_TIMEOUT_MS", 5000)
    store_read_retries: int = _env_int("STORE_READ_RETRIES", 2)
    store_update_retries: int = _env_int("STORE_UPDATE_RETRIES", 5)

    # Fernet key protecting the secrets kept in the vault collection.
    vault_secret: Optional[str] = _env("VAULT_SECRET")
    jwt_secret_name: str = _env("JWT_SECRET_NAME", "jwt-secret")
    jwt_alg: str = _env("JWT_ALG", "HS256")
    token_ttl_hours: int = _env_int("TOKEN_TTL_HOURS", 24)
    secret_cache_ttl: int = _env_int("SECRET_CACHE_TTL", 300)

    cors_origin: str = _env("CORS_ORIGIN", "https://chat.onrender.com")
    host: str = _env("HOST", "0.0.0.0")
    port: int = _env_int("PORT", 3001)
    keep_alive_timeout: int = _env_int("KEEP_ALIVE_TIMEOUT", 120)

    log_level: str = _env("LOG_LEVEL", "INFO")
    log_file: Optional[str] = _env("LOG_FILE")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
