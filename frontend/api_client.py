# api_client.py
import logging
import os

import requests

BASE = os.getenv("CHAT_API_BASE", "http://127.0.0.1:3001")

logger = logging.getLogger("duochat.frontend")


class ApiError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


def _auth_headers(token: str):
    return {"Authorization": f"Bearer {token}"} if token else {}


class ChatClient:
    """Thin wrapper over the REST API. ``session`` is anything with requests' verb methods."""

    def __init__(self, base: str = BASE, session=None):
        self.base = base.rstrip("/")
        self.session = session or requests.Session()
        self.token = ""
        self.user = None

    def _call(self, method: str, path: str, **kwargs):
        r = getattr(self.session, method)(f"{self.base}/api{path}", headers=_auth_headers(self.token), **kwargs)
        try:
            body = r.json()
        except ValueError:
            body = {}
        if r.status_code >= 400:
            raise ApiError(r.status_code, body.get("error", f"HTTP {r.status_code}"))
        return body

    def _login_with(self, path: str, payload: dict) -> str:
        body = self._call("post", path, json=payload)
        self.token = body["token"]
        self.user = payload["user"]
        logger.info("frontend: %s ok for %s", path.strip("/"), self.user)
        return self.token

    def health(self) -> bool:
        return self._call("get", "/health").get("success", False)

    def register(self, user: str, password: str) -> str:
        return self._login_with("/register", {"user": user, "password": password})

    def login(self, user: str, password: str) -> str:
        return self._login_with("/login", {"user": user, "password": password})

    def contacts(self):
        return self._call("get", f"/{self.user}/contacts")["contacts"]

    def pending_requests(self):
        return self._call("get", f"/{self.user}/contacts/pending-requests")["contactRequests"]

    def sent_requests(self):
        return self._call("get", f"/{self.user}/contacts/sent-requests")["sentRequests"]

    def send_request(self, contact: str):
        return self._call("post", f"/{self.user}/contacts/requests/send/{contact}")

    def accept_request(self, contact: str):
        return self._call("post", f"/{self.user}/contacts/requests/accept/{contact}")["conversation"]

    def decline_request(self, contact: str):
        return self._call("post", f"/{self.user}/contacts/requests/decline/{contact}")

    def conversations(self):
        return self._call("get", f"/{self.user}/conversations")["conversations"]

    def open_conversation(self, contact: str):
        return self._call("post", "/conversations", json={"user": self.user, "contact": contact})["conversation"]

    def conversation(self, conversation_id: str):
        return self._call("get", f"/conversations/{conversation_id}")

    def send_message(self, conversation_id: str, body: str):
        payload = {"conversationId": conversation_id, "message": {"sender": self.user, "body": body}}
        return self._call("put", "/message", json=payload)["message"]

    def mark_read(self, conversation_id: str) -> int:
        return self._call("put", "/message", json={"conversationId": conversation_id, "updateRead": self.user})["read"]

    def set_typing(self, conversation_id: str, typing: bool):
        return self._call("put", "/typing", json={"conversationId": conversation_id, "user": self.user, "typing": typing})
