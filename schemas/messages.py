from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from backend import SessionSnapshot

# A document id is any non-empty string; numeric ids are accepted as their string form.
DocumentId = Annotated[str, Field(min_length=1)]
# Client timestamps are opaque: numbers (epoch ms) or strings are stored and relayed as sent.
Timestamp = Union[int, float, str]


class ClientMessage(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)


class JoinRoomMessage(ClientMessage):
    type: Literal["join-room"]
    document_id: DocumentId


class RequestDocumentMessage(ClientMessage):
    type: Literal["request-document"]
    document_id: DocumentId


class EditorChangeMessage(ClientMessage):
    type: Literal["editor-change"]
    document_id: DocumentId
    ciphertext: str = Field(min_length=1)
    nonce: str = Field(min_length=1)
    origin_id: Optional[str] = None
    timestamp: Optional[Timestamp] = None


class HeartbeatMessage(ClientMessage):
    type: Literal["heartbeat", "ping"]


InboundMessage = Annotated[
    Union[JoinRoomMessage, RequestDocumentMessage, EditorChangeMessage, HeartbeatMessage],
    Field(discriminator="type"),
]

inbound_adapter = TypeAdapter(InboundMessage)


def parse_client_message(data) -> InboundMessage:
    """Validate a decoded JSON frame; raises pydantic.ValidationError on bad input."""
    return inbound_adapter.validate_python(data)


class CurrentDocumentMessage(BaseModel):
    type: Literal["current-document"] = "current-document"
    ciphertext: str
    nonce: str
    timestamp: Timestamp

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "CurrentDocumentMessage":
        return cls(ciphertext=snapshot.ciphertext, nonce=snapshot.nonce, timestamp=snapshot.updated_at)


class UserJoinedMessage(BaseModel):
    type: Literal["user-joined"] = "user-joined"
    origin_id: str


class UserLeftMessage(BaseModel):
    type: Literal["user-left"] = "user-left"
    origin_id: str


class UserCountMessage(BaseModel):
    type: Literal["user-count"] = "user-count"
    count: int


class EditorChangeBroadcast(BaseModel):
    type: Literal["editor-change"] = "editor-change"
    ciphertext: str
    nonce: str
    origin_id: str
    timestamp: Timestamp
