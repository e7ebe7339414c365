import logging
from typing import List

from fastapi import APIRouter, Depends

from .auth import current_user, require_identity
from .deps import get_messaging
from .errors import BadRequest, NotFound, Unauthorized
from .schemas import ConversationOut, ConversationRecord, MessageRecord, MessageUpdateIn, TypingIn, UserPath
from .stores import ConversationStore, now_ms

logger = logging.getLogger(__name__)

router = APIRouter()


class MessagingService:
    def __init__(self, conversations: ConversationStore):
        self.conversations = conversations

    def _require_participant(self, conversation_id: str, username: str) -> ConversationRecord:
        conv = self.conversations.get_conversation(conversation_id)
        if conv is None:
            raise NotFound("Conversation not found")
        if not conv.has_participant(username):
            raise Unauthorized(f"{username} is not a participant of this conversation")
        return conv

    def send_message(self, conversation_id: str, sender: str, body: str) -> MessageRecord:
        self._require_participant(conversation_id, sender)
        appended = []

        def append(conv: ConversationRecord):
            # never stamp earlier than the latest message already stored
            last = max((m.timestamp for m in conv.messages), default=0)
            message = MessageRecord(sender=sender, body=body, timestamp=max(now_ms(), last))
            conv.messages.append(message)
            appended[:] = [message]

        self.conversations.update_conversation(conversation_id, append)
        logger.debug("message from %s appended to %s", sender, conversation_id)
        return appended[0]

    def mark_read(self, conversation_id: str, reader: str) -> int:
        """Mark every message as read by ``reader``; returns the message count."""
        self._require_participant(conversation_id, reader)

        def read_all(conv: ConversationRecord):
            for message in conv.messages:
                message.readBy[reader] = True

        conv = self.conversations.update_conversation(conversation_id, read_all)
        return len(conv.messages)

    def set_typing(self, conversation_id: str, username: str, typing: bool) -> None:
        # no expiry: a client that disappears mid-typing stays "typing"
        self._require_participant(conversation_id, username)
        if not self.conversations.set_typing(conversation_id, username, typing):
            raise NotFound("Conversation not found")

    def get_conversation(self, conversation_id: str, viewer: str) -> ConversationRecord:
        return self._require_participant(conversation_id, viewer)

    def list_conversations(self, username: str) -> List[ConversationRecord]:
        return self.conversations.list_for_user(username)


@router.put("/message")
def update_message(
    data: MessageUpdateIn,
    me: str = Depends(current_user),
    messaging: MessagingService = Depends(get_messaging),
):
    if data.message is None and data.updateRead is None:
        raise BadRequest("message or updateRead is required")

    out = {"success": True}
    if data.message is not None:
        require_identity(me, data.message.sender)
        sent = messaging.send_message(data.conversationId, data.message.sender, data.message.body)
        out["message"] = sent.model_dump()
    if data.updateRead is not None:
        require_identity(me, data.updateRead)
        out["read"] = messaging.mark_read(data.conversationId, data.updateRead)
    return out


@router.put("/typing")
def update_typing(
    data: TypingIn,
    me: str = Depends(current_user),
    messaging: MessagingService = Depends(get_messaging),
):
    require_identity(me, data.user)
    messaging.set_typing(data.conversationId, data.user, data.typing)
    return {"success": True}


@router.get("/conversations/{conversation_id}", response_model=ConversationOut)
def get_conversation(
    conversation_id: str,
    me: str = Depends(current_user),
    messaging: MessagingService = Depends(get_messaging),
):
    return ConversationOut.from_record(messaging.get_conversation(conversation_id, me))


@router.get("/{user}/conversations")
def list_conversations(
    user: UserPath,
    me: str = Depends(current_user),
    messaging: MessagingService = Depends(get_messaging),
):
    require_identity(me, user)
    convs = messaging.list_conversations(user)
    return {"success": True, "conversations": [ConversationOut.from_record(c).model_dump() for c in convs]}
