import mongomock
import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from duochat.config import Settings
from duochat.db import create_indexes
from duochat.main import create_app
from duochat.stores import ConversationStore, UserStore
from duochat.vault import Vault


@pytest.fixture
def settings():
    return Settings(
        db_name="duochat_test",
        vault_secret=Fernet.generate_key().decode(),
        jwt_secret_name="test-jwt-secret",
        log_level="WARNING",
    )


@pytest.fixture
def db():
    database = mongomock.MongoClient()["duochat_test"]
    create_indexes(database)
    return database


@pytest.fixture
def vault(db, settings):
    return Vault(db.vault, settings.vault_secret, ttl=settings.secret_cache_ttl)


@pytest.fixture
def users(db):
    return UserStore(db.users)


@pytest.fixture
def conversations(db):
    return ConversationStore(db.conversations)


@pytest.fixture
def app(settings, db, vault):
    return create_app(settings, db=db, vault=vault)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def register(client):
    """Register a user over HTTP and return its auth headers."""

    def _register(user, password="correct-horse"):
        r = client.post("/api/register", json={"user": user, "password": password})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['token']}"}

    return _register


@pytest.fixture
def befriend(client, register):
    """Register two users, make them contacts and return (headers_a, headers_b, conversation)."""

    def _befriend(a="alice", b="bob"):
        ha, hb = register(a), register(b)
        assert client.post(f"/api/{a}/contacts/requests/send/{b}", headers=ha).status_code == 200
        r = client.post(f"/api/{b}/contacts/requests/accept/{a}", headers=hb)
        assert r.status_code == 201, r.text
        return ha, hb, r.json()["conversation"]

    return _befriend
