"""Contact handshake: request, accept or decline, and the pair's conversation.

For an ordered pair (requester, target) the handshake moves from *none*
to *requested* (requester in ``target.contactRequests`` and target in
``requester.sentRequests``), and from there to *accepted* (mutual
contacts, request cleared) or back to *none* on decline.

Each user document is changed with its own optimistic update. The two
updates of a step are not one transaction, but both are set inserts or
removals, so repeating a request after a partial failure converges on
the same state.
"""
import logging
from typing import List, Tuple

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from .audit import log_event
from .auth import current_user, require_identity
from .deps import get_contacts
from .errors import BadRequest, Conflict, NotFound
from .schemas import ConversationCreateIn, ConversationOut, ConversationRecord, UserPath, UserRecord
from .stores import ConversationStore, UserStore

logger = logging.getLogger(__name__)

router = APIRouter()


class ContactWorkflow:
    def __init__(self, users: UserStore, conversations: ConversationStore, db=None):
        self.users = users
        self.conversations = conversations
        self.db = db

    def _audit(self, actor: str, action: str, **details):
        if self.db is not None:
            log_event(self.db, actor, action, details)

    def _require_user(self, username: str) -> UserRecord:
        user = self.users.get_user(username)
        if user is None:
            raise NotFound(f"User {username} not found")
        return user

    def send_request(self, requester: str, target: str) -> None:
        if requester == target:
            raise BadRequest("Cannot send a contact request to yourself")
        self._require_user(requester)
        target_user = self._require_user(target)
        if requester in target_user.contacts:
            raise Conflict(f"{requester} and {target} are already contacts")
        if requester in target_user.contactRequests:
            raise Conflict(f"Contact request to {target} already sent")

        def add_incoming(user: UserRecord):
            if requester in user.contactRequests:
                raise Conflict(f"Contact request to {target} already sent")
            user.contactRequests.add(requester)

        self.users.update_user(target, add_incoming)
        self.users.update_user(requester, lambda user: user.sentRequests.add(target))
        logger.info("contact request %s -> %s", requester, target)
        self._audit(requester, "CONTACT_REQUEST_SENT", target=target)

    def accept_request(self, username: str, contact: str) -> Tuple[ConversationRecord, bool]:
        """Accept ``contact``'s request; returns the pair's conversation and whether it was created."""
        if username == contact:
            raise BadRequest("Cannot accept yourself as a contact")
        # missing profiles are treated as empty here, and only here; they are
        # written by the updates below once the request is known to exist
        user = self.users.get_user(username) or UserRecord(username=username)
        if contact not in user.contactRequests and contact not in user.contacts:
            raise NotFound(f"No pending contact request from {contact}")

        def accept(rec: UserRecord):
            rec.contacts.add(contact)
            rec.contactRequests.discard(contact)

        def accepted(rec: UserRecord):
            rec.contacts.add(username)
            rec.sentRequests.discard(username)

        self.users.update_user(username, accept, create=True)
        self.users.update_user(contact, accepted, create=True)
        logger.info("%s accepted contact request from %s", username, contact)
        self._audit(username, "CONTACT_REQUEST_ACCEPTED", contact=contact)
        return self.ensure_conversation(username, contact)

    def decline_request(self, username: str, contact: str) -> None:
        user = self._require_user(username)
        if contact not in user.contactRequests:
            raise NotFound(f"No pending contact request from {contact}")

        self.users.update_user(username, lambda rec: rec.contactRequests.discard(contact))
        if self.users.get_user(contact) is not None:
            self.users.update_user(contact, lambda rec: rec.sentRequests.discard(username))
        logger.info("%s declined contact request from %s", username, contact)
        self._audit(username, "CONTACT_REQUEST_DECLINED", contact=contact)

    def ensure_conversation(self, a: str, b: str) -> Tuple[ConversationRecord, bool]:
        existing = self.conversations.find_by_pair(a, b)
        if existing is not None:
            return existing, False
        created = self.conversations.create(a, b)
        if created is None:
            # lost the race against a concurrent create for the same pair
            existing = self.conversations.find_by_pair(a, b)
            if existing is None:
                raise Conflict(f"Conversation between {a} and {b} could not be created")
            return existing, False
        logger.info("created conversation %s for %s and %s", created.id, a, b)
        self._audit(a, "CONVERSATION_CREATED", conversationId=created.id, contact=b)
        return created, True

    def request_conversation(self, username: str, contact: str) -> Tuple[ConversationRecord, bool]:
        user = self._require_user(username)
        if contact not in user.contacts:
            raise NotFound(f"{contact} is not in your contacts")
        return self.ensure_conversation(username, contact)

    def list_contacts(self, username: str) -> List[str]:
        return sorted(self._require_user(username).contacts)

    def list_pending(self, username: str) -> List[str]:
        return sorted(self._require_user(username).contactRequests)

    def list_sent(self, username: str) -> List[str]:
        return sorted(self._require_user(username).sentRequests)


def _conversation_response(conv: ConversationRecord, created: bool) -> JSONResponse:
    body = {
        "success": True,
        "message": "Conversation created" if created else "Conversation already exists",
        "conversation": ConversationOut.from_record(conv).model_dump(),
    }
    return JSONResponse(status_code=201 if created else 200, content=body)


@router.post("/{user}/contacts/requests/send/{contactToRequest}")
def send_request(
    user: UserPath,
    contactToRequest: UserPath,
    me: str = Depends(current_user),
    contacts: ContactWorkflow = Depends(get_contacts),
):
    require_identity(me, user)
    contacts.send_request(user, contactToRequest)
    return {"success": True, "message": f"Contact request sent to {contactToRequest}"}


@router.post("/{user}/contacts/requests/accept/{contactToAccept}")
def accept_request(
    user: UserPath,
    contactToAccept: UserPath,
    me: str = Depends(current_user),
    contacts: ContactWorkflow = Depends(get_contacts),
):
    require_identity(me, user)
    conv, created = contacts.accept_request(user, contactToAccept)
    return _conversation_response(conv, created)


@router.post("/{user}/contacts/requests/decline/{contactToDecline}")
def decline_request(
    user: UserPath,
    contactToDecline: UserPath,
    me: str = Depends(current_user),
    contacts: ContactWorkflow = Depends(get_contacts),
):
    require_identity(me, user)
    contacts.decline_request(user, contactToDecline)
    return {"success": True, "message": f"Contact request from {contactToDecline} declined"}


@router.get("/{user}/contacts")
def get_contacts_list(
    user: UserPath,
    me: str = Depends(current_user),
    contacts: ContactWorkflow = Depends(get_contacts),
):
    require_identity(me, user)
    return {"success": True, "contacts": contacts.list_contacts(user)}


@router.get("/{user}/contacts/pending-requests")
def get_pending_requests(
    user: UserPath,
    me: str = Depends(current_user),
    contacts: ContactWorkflow = Depends(get_contacts),
):
    require_identity(me, user)
    return {"success": True, "contactRequests": contacts.list_pending(user)}


@router.get("/{user}/contacts/sent-requests")
def get_sent_requests(
    user: UserPath,
    me: str = Depends(current_user),
    contacts: ContactWorkflow = Depends(get_contacts),
):
    require_identity(me, user)
    return {"success": True, "sentRequests": contacts.list_sent(user)}


@router.post("/conversations")
def create_conversation(
    data: ConversationCreateIn,
    me: str = Depends(current_user),
    contacts: ContactWorkflow = Depends(get_contacts),
):
    require_identity(me, data.user)
    conv, created = contacts.request_conversation(data.user, data.contact)
    return _conversation_response(conv, created)
