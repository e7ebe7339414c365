"""Document-store wrappers for the ``users`` and ``conversations`` collections.

Multi-field changes go through :meth:`DocumentStore.transactional_update`:
the document is read, changed in memory and written back only if its
``_v`` version is still the one that was read. A concurrent writer makes
the conditional replace miss, and the change is recomputed from a fresh
read. Plain :meth:`DocumentStore.update` calls bump ``_v`` too, so they
invalidate in-flight transactional updates instead of being overwritten.
"""
import copy
import logging
import time
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from pymongo import ASCENDING
from pymongo.collection import Collection
from pymongo.errors import AutoReconnect, DuplicateKeyError, NetworkTimeout, ServerSelectionTimeoutError

from .errors import NotFound, Unavailable
from .schemas import ConversationRecord, UserRecord

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]


def now_ms() -> int:
    return int(time.time() * 1000)


def pair_key(a: str, b: str) -> str:
    return ":".join(sorted((a, b)))


class DocumentStore:
    def __init__(self, collection: Collection, label: str, read_retries: int = 2, update_retries: int = 5):
        self.collection = collection
        self.label = label
        self.read_retries = read_retries
        self.update_retries = update_retries

    def _read(self, op: Callable[[], Any]) -> Any:
        """Run a read, retrying dropped connections.

        Timeouts are raised on first occurrence; only dropped connections are retried.
        """
        attempt = 0
        while True:
            try:
                return op()
            except (NetworkTimeout, ServerSelectionTimeoutError):
                raise
            except AutoReconnect as exc:
                if attempt >= self.read_retries:
                    raise
                attempt += 1
                logger.warning("transient read error on %s (attempt %d): %s", self.collection.name, attempt, exc)

    def get(self, key: str) -> Optional[Doc]:
        return self._read(lambda: self.collection.find_one({"_id": key}))

    def find_one(self, query: Doc) -> Optional[Doc]:
        return self._read(lambda: self.collection.find_one(query))

    def find(self, query: Doc, sort_field: Optional[str] = None) -> List[Doc]:
        def op():
            cursor = self.collection.find(query)
            if sort_field:
                cursor = cursor.sort(sort_field, ASCENDING)
            return list(cursor)

        return self._read(op)

    def set(self, key: str, doc: Doc) -> bool:
        """Insert ``doc`` under ``key``; False if the key (or a unique index) is taken."""
        try:
            self.collection.insert_one({**doc, "_id": key, "_v": 1})
        except DuplicateKeyError:
            return False
        return True

    def update(self, key: str, fields: Doc) -> bool:
        result = self.collection.update_one({"_id": key}, {"$set": fields, "$inc": {"_v": 1}})
        return result.matched_count == 1

    def transactional_update(
        self,
        key: str,
        fn: Callable[[Doc], Doc],
        create: Optional[Callable[[], Doc]] = None,
    ) -> Doc:
        for attempt in range(self.update_retries):
            doc = self.get(key)
            if doc is None:
                if create is None:
                    raise NotFound(f"{self.label} '{key}' not found")
                new = fn(create())
                new.update({"_id": key, "_v": 1})
                try:
                    self.collection.insert_one(new)
                except DuplicateKeyError:
                    continue
                return new

            version = doc.get("_v")
            new = fn(copy.deepcopy(doc))
            new.update({"_id": key, "_v": (version or 0) + 1})
            if version is None:
                match = {"_id": key, "_v": {"$exists": False}}
            else:
                match = {"_id": key, "_v": version}
            if self.collection.replace_one(match, new).matched_count == 1:
                return new
            logger.debug("version conflict on %s %s (attempt %d)", self.label, key, attempt + 1)

        logger.warning("giving up on %s %s after %d conflicting updates", self.label, key, self.update_retries)
        raise Unavailable(f"{self.label} '{key}' is being modified concurrently, retry later")


class UserStore(DocumentStore):
    """Credential store: one document per username."""

    def __init__(self, collection: Collection, **kwargs):
        super().__init__(collection, "User", **kwargs)

    def get_user(self, username: str) -> Optional[UserRecord]:
        doc = self.get(username)
        return UserRecord.from_doc(doc) if doc else None

    def create_user(self, username: str, hashed_password: str) -> bool:
        return self.set(username, UserRecord(username=username, hashedPassword=hashed_password).to_doc())

    def claim_placeholder(self, username: str, hashed_password: str) -> bool:
        """Set the password of a profile that was created without one."""
        result = self.collection.update_one(
            {"_id": username, "hashedPassword": None},
            {"$set": {"hashedPassword": hashed_password}, "$inc": {"_v": 1}},
        )
        return result.matched_count == 1

    def update_user(self, username: str, fn: Callable[[UserRecord], None], create: bool = False) -> UserRecord:
        def apply(doc: Doc) -> Doc:
            user = UserRecord.from_doc(doc)
            fn(user)
            return user.to_doc()

        factory = (lambda: UserRecord(username=username).to_doc()) if create else None
        return UserRecord.from_doc(self.transactional_update(username, apply, create=factory))


class ConversationStore(DocumentStore):
    def __init__(self, collection: Collection, **kwargs):
        super().__init__(collection, "Conversation", **kwargs)

    def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        doc = self.get(conversation_id)
        return ConversationRecord.from_doc(doc) if doc else None

    def find_by_pair(self, a: str, b: str) -> Optional[ConversationRecord]:
        doc = self.find_one({f"participants.{a}": True, f"participants.{b}": True})
        return ConversationRecord.from_doc(doc) if doc else None

    def create(self, a: str, b: str) -> Optional[ConversationRecord]:
        """Create the conversation for the pair; None if one already exists."""
        conv = ConversationRecord(
            id=uuid4().hex,
            participants={a: True, b: True},
            pairKey=pair_key(a, b),
            createdAt=now_ms(),
        )
        if not self.set(conv.id, conv.to_doc()):
            return None
        return conv

    def list_for_user(self, username: str) -> List[ConversationRecord]:
        docs = self.find({f"participants.{username}": True}, sort_field="createdAt")
        return [ConversationRecord.from_doc(d) for d in docs]

    def update_conversation(self, conversation_id: str, fn: Callable[[ConversationRecord], None]) -> ConversationRecord:
        def apply(doc: Doc) -> Doc:
            conv = ConversationRecord.from_doc(doc)
            fn(conv)
            return conv.to_doc()

        return ConversationRecord.from_doc(self.transactional_update(conversation_id, apply))

    def set_typing(self, conversation_id: str, username: str, typing: bool) -> bool:
        return self.update(conversation_id, {f"typing.{username}": typing})
