import logging
import os
import secrets
import threading
import time
from typing import Dict, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from .errors import Internal

logger = logging.getLogger(__name__)


def _env_name(name: str) -> str:
    return name.upper().replace("-", "_")


class Vault:
    """Named secrets, Fernet-encrypted at rest in the ``vault`` collection.

    Lookups are cached process-wide for ``ttl`` seconds. A secret missing
    from the collection falls back to the environment variable of the same
    name in upper snake case (``jwt-secret`` -> ``JWT_SECRET``).
    """

    def __init__(self, collection: Collection, master_key: Optional[str] = None, ttl: int = 300):
        if not master_key:
            logger.warning("VAULT_SECRET not set, generating a throwaway master key")
            master_key = Fernet.generate_key().decode()
        self._fernet = Fernet(master_key.encode())
        self._collection = collection
        self._ttl = ttl
        self._cache: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def encrypt(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)

    def decrypt(self, token: bytes) -> bytes:
        return self._fernet.decrypt(token)

    def get_secret(self, name: str, generate: bool = False) -> str:
        now = time.monotonic()
        with self._lock:
            cached = self._cache.get(name)
            if cached and cached[1] > now:
                return cached[0]

        value = self._fetch(name)
        if value is None and generate:
            value = self._generate(name)
        if value is None:
            raise Internal(f"secret '{name}' is not configured")

        with self._lock:
            self._cache[name] = (value, now + self._ttl)
        return value

    def put_secret(self, name: str, value: str) -> None:
        ciphertext = self.encrypt(value.encode()).decode()
        self._collection.update_one({"name": name}, {"$set": {"name": name, "ciphertext": ciphertext}}, upsert=True)
        self.invalidate(name)
        logger.info("stored secret %s", name)

    def invalidate(self, name: Optional[str] = None) -> None:
        with self._lock:
            if name is None:
                self._cache.clear()
            else:
                self._cache.pop(name, None)

    def _fetch(self, name: str) -> Optional[str]:
        doc = self._collection.find_one({"name": name})
        if doc:
            try:
                return self.decrypt(doc["ciphertext"].encode()).decode()
            except InvalidToken:
                logger.error("secret %s cannot be decrypted with the configured master key", name)
                raise Internal(f"secret '{name}' cannot be decrypted")
        return os.getenv(_env_name(name))

    def _generate(self, name: str) -> str:
        value = secrets.token_urlsafe(48)
        ciphertext = self.encrypt(value.encode()).decode()
        try:
            self._collection.insert_one({"name": name, "ciphertext": ciphertext})
            logger.info("generated secret %s", name)
            return value
        except DuplicateKeyError:
            # another process generated it first
            return self._fetch(name)
