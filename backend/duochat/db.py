import logging

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from .config import Settings

logger = logging.getLogger(__name__)


def create_client(settings: Settings) -> MongoClient:
    """Build the process-wide client.

    Every store call is bounded by ``mongo_timeout_ms``. Store reads do not
    retry timeouts, so one slow call costs at most one timeout.
    """
    timeout = settings.mongo_timeout_ms
    return MongoClient(
        settings.mongo_uri,
        serverSelectionTimeoutMS=timeout,
        connectTimeoutMS=timeout,
        socketTimeoutMS=timeout,
        retryReads=True,
    )


def get_database(client: MongoClient, settings: Settings) -> Database:
    return client[settings.db_name]


def create_indexes(db: Database) -> None:
    db.conversations.create_index("pairKey", unique=True)
    db.conversations.create_index([("createdAt", ASCENDING)])
    db.vault.create_index("name", unique=True)
    db.audit_log.create_index([("actor", ASCENDING), ("timestamp", ASCENDING)])
    logger.info("MongoDB indexes verified")
