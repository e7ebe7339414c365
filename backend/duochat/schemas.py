from typing import Annotated, Any, Dict, List, Optional

from fastapi import Path
from pydantic import BaseModel, Field

USERNAME_PATTERN = r"^[A-Za-z0-9_-]{1,32}$"

Username = Annotated[str, Field(pattern=USERNAME_PATTERN)]
UserPath = Annotated[str, Path(pattern=USERNAME_PATTERN)]


# ---------- Stored records ----------

class UserRecord(BaseModel):
    username: str
    hashedPassword: Optional[str] = None
    contacts: set[str] = Field(default_factory=set)
    contactRequests: set[str] = Field(default_factory=set)
    sentRequests: set[str] = Field(default_factory=set)

    @property
    def is_placeholder(self) -> bool:
        return self.hashedPassword is None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "UserRecord":
        return cls(
            username=doc["_id"],
            hashedPassword=doc.get("hashedPassword"),
            contacts=set(doc.get("contacts", [])),
            contactRequests=set(doc.get("contactRequests", [])),
            sentRequests=set(doc.get("sentRequests", [])),
        )

    def to_doc(self) -> Dict[str, Any]:
        # sets are persisted as sorted arrays so documents stay stable
        return {
            "_id": self.username,
            "hashedPassword": self.hashedPassword,
            "contacts": sorted(self.contacts),
            "contactRequests": sorted(self.contactRequests),
            "sentRequests": sorted(self.sentRequests),
        }


class MessageRecord(BaseModel):
    sender: str
    body: str
    timestamp: int
    readBy: Dict[str, bool] = Field(default_factory=dict)


class ConversationRecord(BaseModel):
    id: str
    participants: Dict[str, bool]
    pairKey: str
    messages: List[MessageRecord] = Field(default_factory=list)
    typing: Dict[str, bool] = Field(default_factory=dict)
    createdAt: int

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "ConversationRecord":
        data = {k: v for k, v in doc.items() if k not in ("_id", "_v")}
        return cls(id=doc["_id"], **data)

    def to_doc(self) -> Dict[str, Any]:
        doc = self.model_dump(exclude={"id"})
        doc["_id"] = self.id
        return doc

    def has_participant(self, username: str) -> bool:
        return self.participants.get(username) is True


# ---------- Requests ----------

class RegisterIn(BaseModel):
    user: Username
    hashedPassword: Optional[str] = None
    password: Optional[str] = None


class LoginIn(BaseModel):
    user: Username
    password: str


class MessageIn(BaseModel):
    sender: Username
    body: str = Field(min_length=1, max_length=4000)


class MessageUpdateIn(BaseModel):
    conversationId: str
    message: Optional[MessageIn] = None
    updateRead: Optional[Username] = None


class TypingIn(BaseModel):
    conversationId: str
    user: Username
    typing: bool


class ConversationCreateIn(BaseModel):
    user: Username
    contact: Username


# ---------- Responses ----------

class TokenOut(BaseModel):
    success: bool = True
    message: str
    token: str


class ConversationOut(BaseModel):
    id: str
    participants: Dict[str, bool]
    messages: List[MessageRecord]
    typing: Dict[str, bool]
    createdAt: int

    @classmethod
    def from_record(cls, conv: ConversationRecord) -> "ConversationOut":
        return cls(
            id=conv.id,
            participants=conv.participants,
            messages=conv.messages,
            typing=conv.typing,
            createdAt=conv.createdAt,
        )
