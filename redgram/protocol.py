"""
redgram.protocol - Wire format shared by the relay and its clients

Every frame is one JSON object with a "type" discriminator. Each direction
is a closed set of event classes; anything else is rejected with
ProtocolError so both ends can log and drop it.

Client -> relay:  REGISTER, SEND_MESSAGE, READ_RECEIPT, PRESENCE
Relay -> client:  INIT_STATE, USER_JOINED, NEW_MESSAGE, MESSAGE_READ
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Union


class ProtocolError(ValueError):
    """Frame could not be decoded into a known event."""


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


# === FIELD HELPERS ===

def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ProtocolError(f"'{key}' must be a string")
    return value


def _optional_str(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ProtocolError(f"'{key}' must be a string or null")
    return value


def _require_str_list(data: dict, key: str) -> list[str]:
    value = data.get(key)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ProtocolError(f"'{key}' must be a list of strings")
    return list(value)


# === DATA ===

@dataclass
class Profile:
    """A user's public identity card, keyed by username."""
    id: str
    username: str
    name: str = ""
    phone: str = ""
    bio: str = ""
    avatar_color: str = ""
    is_premium: Optional[bool] = None
    privacy: Optional[dict] = None
    extra: dict = field(default_factory=dict)  # unknown keys, relayed as-is

    _KNOWN: ClassVar[frozenset] = frozenset(
        {"id", "username", "name", "phone", "bio", "avatarColor", "isPremium", "privacy"}
    )

    @classmethod
    def from_dict(cls, data) -> "Profile":
        if not isinstance(data, dict):
            raise ProtocolError("profile must be an object")
        is_premium = data.get("isPremium")
        if is_premium is not None and not isinstance(is_premium, bool):
            raise ProtocolError("'isPremium' must be a boolean")
        privacy = data.get("privacy")
        if privacy is not None and not isinstance(privacy, dict):
            raise ProtocolError("'privacy' must be an object")
        return cls(
            id=_require_str(data, "id"),
            username=_require_str(data, "username"),
            name=_optional_str(data, "name") or "",
            phone=_optional_str(data, "phone") or "",
            bio=_optional_str(data, "bio") or "",
            avatar_color=_optional_str(data, "avatarColor") or "",
            is_premium=is_premium,
            privacy=dict(privacy) if privacy is not None else None,
            extra={k: v for k, v in data.items() if k not in cls._KNOWN},
        )

    def to_dict(self) -> dict:
        out = dict(self.extra)
        out.update({
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "phone": self.phone,
            "bio": self.bio,
            "avatarColor": self.avatar_color,
        })
        if self.is_premium is not None:
            out["isPremium"] = self.is_premium
        if self.privacy is not None:
            out["privacy"] = dict(self.privacy)
        return out


@dataclass
class ChatMessage:
    """A single chat line. chat_id is a peer id or a group id."""
    id: str
    chat_id: str
    text: str
    sender_id: Optional[str] = None
    timestamp: Union[int, float] = 0  # ms since epoch
    status: MessageStatus = MessageStatus.SENT
    sender: Optional[str] = None  # "me" on local echo, "them" once relayed
    extra: dict = field(default_factory=dict)  # unknown keys, relayed as-is

    _KNOWN: ClassVar[frozenset] = frozenset(
        {"id", "chatId", "text", "senderId", "timestamp", "status", "sender"}
    )

    @classmethod
    def from_dict(cls, data) -> "ChatMessage":
        if not isinstance(data, dict):
            raise ProtocolError("message must be an object")
        timestamp = data.get("timestamp", 0)
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not math.isfinite(timestamp):
            raise ProtocolError("'timestamp' must be a finite number")
        try:
            status = MessageStatus(data.get("status", MessageStatus.SENT.value))
        except ValueError:
            raise ProtocolError(f"unknown message status: {data.get('status')!r}")
        return cls(
            id=_require_str(data, "id"),
            chat_id=_require_str(data, "chatId"),
            text=_require_str(data, "text"),
            sender_id=_optional_str(data, "senderId"),
            timestamp=timestamp,
            status=status,
            sender=_optional_str(data, "sender"),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN},
        )

    def to_dict(self) -> dict:
        out = dict(self.extra)
        out.update({
            "id": self.id,
            "chatId": self.chat_id,
            "text": self.text,
            "senderId": self.sender_id,
            "timestamp": self.timestamp,
            "status": self.status.value,
        })
        if self.sender is not None:
            out["sender"] = self.sender
        return out


# === CLIENT -> RELAY ===

@dataclass(frozen=True)
class Register:
    TYPE: ClassVar[str] = "REGISTER"
    profile: Profile

    @classmethod
    def from_payload(cls, data: dict) -> "Register":
        return cls(Profile.from_dict(data.get("profile")))

    def to_payload(self) -> dict:
        return {"profile": self.profile.to_dict()}


@dataclass(frozen=True)
class SendMessage:
    TYPE: ClassVar[str] = "SEND_MESSAGE"
    message: ChatMessage
    is_group: bool = False

    @classmethod
    def from_payload(cls, data: dict) -> "SendMessage":
        is_group = data.get("isGroup", False)
        if is_group is None:
            is_group = False
        if not isinstance(is_group, bool):
            raise ProtocolError("'isGroup' must be a boolean")
        return cls(ChatMessage.from_dict(data.get("message")), is_group)

    def to_payload(self) -> dict:
        return {"message": self.message.to_dict(), "isGroup": self.is_group}


@dataclass(frozen=True)
class _Receipt:
    """Body shared by READ_RECEIPT and the MESSAGE_READ it is relayed as."""
    chat_id: str
    message_ids: tuple
    reader_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data: dict):
        return cls(
            chat_id=_require_str(data, "chatId"),
            message_ids=tuple(_require_str_list(data, "messageIds")),
            reader_id=_optional_str(data, "readerId"),
        )

    def to_payload(self) -> dict:
        return {
            "chatId": self.chat_id,
            "messageIds": list(self.message_ids),
            "readerId": self.reader_id,
        }


@dataclass(frozen=True)
class ReadReceipt(_Receipt):
    TYPE: ClassVar[str] = "READ_RECEIPT"


@dataclass(frozen=True)
class Presence:
    """Bare 'I am here' from a client that has no profile yet."""
    TYPE: ClassVar[str] = "PRESENCE"
    user_id: str

    @classmethod
    def from_payload(cls, data: dict) -> "Presence":
        return cls(_require_str(data, "userId"))

    def to_payload(self) -> dict:
        return {"userId": self.user_id}


# === RELAY -> CLIENT ===

@dataclass(frozen=True)
class InitState:
    TYPE: ClassVar[str] = "INIT_STATE"
    users: tuple

    @classmethod
    def from_payload(cls, data: dict) -> "InitState":
        users = data.get("users")
        if not isinstance(users, list):
            raise ProtocolError("'users' must be a list")
        return cls(tuple(Profile.from_dict(u) for u in users))

    def to_payload(self) -> dict:
        return {"users": [u.to_dict() for u in self.users]}


@dataclass(frozen=True)
class UserJoined:
    TYPE: ClassVar[str] = "USER_JOINED"
    profile: Profile

    @classmethod
    def from_payload(cls, data: dict) -> "UserJoined":
        return cls(Profile.from_dict(data.get("profile")))

    def to_payload(self) -> dict:
        return {"profile": self.profile.to_dict()}


@dataclass(frozen=True)
class NewMessage:
    TYPE: ClassVar[str] = "NEW_MESSAGE"
    message: ChatMessage

    @classmethod
    def from_payload(cls, data: dict) -> "NewMessage":
        return cls(ChatMessage.from_dict(data.get("message")))

    def to_payload(self) -> dict:
        return {"message": self.message.to_dict()}


@dataclass(frozen=True)
class MessageRead(_Receipt):
    TYPE: ClassVar[str] = "MESSAGE_READ"


ClientEvent = Union[Register, SendMessage, ReadReceipt, Presence]
HubEvent = Union[InitState, UserJoined, NewMessage, MessageRead]

CLIENT_EVENTS = {cls.TYPE: cls for cls in (Register, SendMessage, ReadReceipt, Presence)}
HUB_EVENTS = {cls.TYPE: cls for cls in (InitState, UserJoined, NewMessage, MessageRead)}


# === CODEC ===

def encode(event) -> str:
    """Serialize an event into a text frame."""
    return json.dumps({"type": event.TYPE, **event.to_payload()})


def _decode(raw, registry: dict):
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ProtocolError("frame is not valid UTF-8")
    try:
        data = json.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        raise ProtocolError(f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise ProtocolError("frame must be a JSON object")

    msg_type = data.get("type")
    event_cls = registry.get(msg_type)
    if event_cls is None:
        raise ProtocolError(f"unknown event type: {msg_type!r}")
    return event_cls.from_payload(data)


def decode_client_event(raw) -> ClientEvent:
    """Parse a frame sent by a client to the relay."""
    return _decode(raw, CLIENT_EVENTS)


def decode_hub_event(raw) -> HubEvent:
    """Parse a frame sent by the relay to a client."""
    return _decode(raw, HUB_EVENTS)
