import logging
from datetime import datetime

from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


def log_event(db: Database, actor: str, action: str, details: dict = None):
    """
    Record an audit event in the ``audit_log`` collection.

    :param db: MongoDB database handle.
    :param actor: Username that performed the action.
    :param action: Action name, e.g. 'USER_LOGIN', 'CONTACT_REQUEST_SENT'.
    :param details: Extra fields describing the event.

    A failed audit write is logged and otherwise ignored; it never fails
    the request that triggered it.
    """
    if details is None:
        details = {}

    log_entry = {
        "timestamp": datetime.utcnow(),
        "actor": actor,
        "action": action,
        "details": details,
    }
    try:
        db.audit_log.insert_one(log_entry)
    except PyMongoError as exc:
        logger.warning("audit event %s by %s not recorded: %s", action, actor, exc)
