import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI
from pymongo.database import Database

from .auth import AuthService
from .auth import router as auth_router
from .config import Settings, get_settings
from .contacts import ContactWorkflow
from .contacts import router as contacts_router
from .db import create_client, create_indexes, get_database
from .deps import setup_cors
from .errors import register_error_handlers
from .logging_config import setup_logging
from .messages import MessagingService
from .messages import router as messages_router
from .stores import ConversationStore, UserStore
from .vault import Vault

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None, vault: Optional[Vault] = None) -> FastAPI:
    """Build the application and wire its components.

    ``db`` and ``vault`` are created from ``settings`` unless given, which
    is how tests swap in an in-memory database.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_file)

    if db is None:
        db = get_database(create_client(settings), settings)
    if vault is None:
        vault = Vault(db.vault, settings.vault_secret, settings.secret_cache_ttl)

    retries = {"read_retries": settings.store_read_retries, "update_retries": settings.store_update_retries}
    users = UserStore(db.users, **retries)
    conversations = ConversationStore(db.conversations, **retries)

    app = FastAPI(title="duochat")
    app.state.settings = settings
    app.state.db = db
    app.state.vault = vault
    app.state.auth = AuthService(users, vault, settings)
    app.state.contacts = ContactWorkflow(users, conversations, db)
    app.state.messaging = MessagingService(conversations)

    setup_cors(app, settings.cors_origin)
    register_error_handlers(app)

    @app.on_event("startup")
    def _startup():
        create_indexes(db)

    @app.get("/api/health")
    @app.get("/api/sse/health")
    def health():
        return {"success": True}

    app.include_router(auth_router, prefix="/api")
    app.include_router(messages_router, prefix="/api")
    app.include_router(contacts_router, prefix="/api")
    return app


def run():
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        timeout_keep_alive=settings.keep_alive_timeout,
    )


if __name__ == "__main__":
    run()
