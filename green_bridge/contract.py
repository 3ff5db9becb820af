"""
Bridge Contract.
Shared data models for notifications and the events sent to the host.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class MonitorTarget:
    """The single monitored group. Replaced wholesale, never mutated."""

    group_id: str
    active: bool = True


@dataclass(frozen=True)
class Notification:
    """One item drained from the provider inbox."""

    receipt_id: Optional[Any]
    body: Dict[str, Any]


@dataclass(frozen=True)
class Group:
    id: str
    name: str

    def to_wire(self) -> dict:
        return {"id": self.id, "name": self.name}


class DomainEvent:
    """Base class for everything written to the host."""

    type: str = ""

    def to_wire(self) -> dict:
        raise NotImplementedError


@dataclass
class StatusChanged(DomainEvent):
    connected: bool
    type: str = field(default="status", init=False)

    def to_wire(self) -> dict:
        return {"type": self.type, "connected": self.connected}


@dataclass
class GroupsListed(DomainEvent):
    groups: List[Group] = field(default_factory=list)
    error: Optional[str] = None
    type: str = field(default="groups", init=False)

    def to_wire(self) -> dict:
        wire = {"type": self.type, "groups": [g.to_wire() for g in self.groups]}
        if self.error:
            wire["error"] = self.error
        return wire


@dataclass
class MonitoringChanged(DomainEvent):
    monitoring: bool
    type: str = field(default="monitoringStatus", init=False)

    def to_wire(self) -> dict:
        return {"type": self.type, "monitoring": self.monitoring}


@dataclass
class TextMessage(DomainEvent):
    id: str
    chat_id: str
    author: str
    timestamp: int
    text: str
    sender_name: str
    type: str = field(default="text", init=False)

    def to_wire(self) -> dict:
        return {
            "type": self.type,
            "Text": {
                "Id": self.id,
                "From": self.chat_id,
                "Author": self.author,
                "Type": "text",
                "Timestamp": self.timestamp,
                "Text": self.text,
                "SenderName": self.sender_name,
            },
        }


@dataclass
class MediaMessage(DomainEvent):
    id: str
    chat_id: str
    author: str
    timestamp: int
    filename: str
    mime_type: str
    data_base64: str
    size: int
    sender_name: str
    caption: str = ""
    type: str = field(default="media", init=False)

    def to_wire(self) -> dict:
        return {
            "type": self.type,
            "Media": {
                "Id": self.id,
                "From": self.chat_id,
                "Author": self.author,
                "Type": self.mime_type,
                "Timestamp": self.timestamp,
                "Filename": self.filename,
                "Data": self.data_base64,
                "Size": self.size,
                "SenderName": self.sender_name,
                "Body": self.caption,
            },
        }


@dataclass
class ErrorEvent(DomainEvent):
    message: str
    type: str = field(default="error", init=False)

    def to_wire(self) -> dict:
        return {"type": self.type, "message": self.message}


@dataclass
class HistoryListed(DomainEvent):
    chat_id: str
    messages: List[dict] = field(default_factory=list)
    error: Optional[str] = None
    type: str = field(default="history", init=False)

    def to_wire(self) -> dict:
        wire = {"type": self.type, "chatId": self.chat_id, "messages": self.messages}
        if self.error:
            wire["error"] = self.error
        return wire


@dataclass
class MessageSent(DomainEvent):
    chat_id: str
    id_message: Optional[str] = None
    error: Optional[str] = None
    type: str = field(default="messageSent", init=False)

    def to_wire(self) -> dict:
        wire = {"type": self.type, "chatId": self.chat_id, "idMessage": self.id_message}
        if self.error:
            wire["error"] = self.error
        return wire
