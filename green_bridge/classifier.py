"""
Notification Classifier and Dispatcher.

``classify`` maps a raw notification body onto a typed result without any
I/O. ``NotificationDispatcher`` acts on that result: state hints go back to
the session, text goes straight to the sink, media is downloaded first.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from .contract import MediaMessage, MonitorTarget, TextMessage
from .errors import ProtocolError, ProviderError
from .media import build_media_filename, encode_base64, infer_file_type

logger = logging.getLogger(__name__)

STATE_CHANGED = "stateInstanceChanged"
MESSAGE_WEBHOOKS = ("incomingMessageReceived", "outgoingMessageReceived")
STATE_FIELDS = ("stateInstance", "stateAfter", "statusInstance")
FILE_MESSAGE_TYPES = ("imageMessage", "videoMessage", "audioMessage", "documentMessage")


@dataclass(frozen=True)
class Ignored:
    reason: str


@dataclass(frozen=True)
class StateHint:
    state: str


@dataclass(frozen=True)
class MediaReference:
    id: str
    chat_id: str
    author: str
    sender_name: str
    timestamp: int
    type_message: str
    mime_type: Optional[str]
    download_url: Optional[str]
    caption: str
    file_name: Optional[str]


Classification = Union[Ignored, StateHint, TextMessage, MediaReference]


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _file_data(message_data: dict, type_message: str) -> Optional[dict]:
    """Look up file data: fileMessageData, then <type>Data, then <type>."""
    for key in ("fileMessageData", f"{type_message}Data", type_message):
        value = message_data.get(key)
        if isinstance(value, dict):
            return value
    return None


def _timestamp(body: dict, now: Optional[float]) -> int:
    ts = body.get("timestamp")
    if isinstance(ts, (int, float)) and ts > 0:
        return int(ts)
    return int(now if now is not None else time.time())


def classify(
    body: Any, monitor: Optional[MonitorTarget], now: Optional[float] = None
) -> Classification:
    if not isinstance(body, dict):
        raise ProtocolError("classify", f"notification body is {type(body).__name__}")

    type_webhook = body.get("typeWebhook")

    if type_webhook == STATE_CHANGED:
        for key in STATE_FIELDS:
            if body.get(key):
                return StateHint(str(body[key]))
        return Ignored("state change without state")

    if type_webhook not in MESSAGE_WEBHOOKS:
        return Ignored(f"webhook {type_webhook}")

    sender = _dict(body.get("senderData"))
    chat_id = sender.get("chatId")
    if monitor is None or not monitor.active:
        return Ignored("not monitoring")
    if chat_id != monitor.group_id:
        return Ignored(f"chat {chat_id} not monitored")

    message_data = _dict(body.get("messageData"))
    type_message = message_data.get("typeMessage")
    message_id = str(body.get("idMessage") or message_data.get("idMessage") or "unknown")
    author = sender.get("sender") or chat_id
    sender_name = sender.get("senderName") or "Unknown"
    timestamp = _timestamp(body, now)

    text = None
    if type_message == "textMessage":
        text = _dict(message_data.get("textMessageData")).get("textMessage")
    elif type_message == "extendedTextMessage":
        text = _dict(message_data.get("extendedTextMessageData")).get("text")

    if type_message in ("textMessage", "extendedTextMessage"):
        if not isinstance(text, str) or not text:
            return Ignored(f"{type_message} without text")
        return TextMessage(
            id=message_id,
            chat_id=chat_id,
            author=author,
            timestamp=timestamp,
            text=text,
            sender_name=sender_name,
        )

    file_data = _file_data(message_data, type_message or "")
    if type_message in FILE_MESSAGE_TYPES or (
        file_data is not None and file_data.get("downloadUrl")
    ):
        file_data = file_data or {}
        return MediaReference(
            id=message_id,
            chat_id=chat_id,
            author=author,
            sender_name=sender_name,
            timestamp=timestamp,
            type_message=type_message or "",
            mime_type=file_data.get("mimeType"),
            download_url=file_data.get("downloadUrl"),
            caption=file_data.get("caption") or "",
            file_name=file_data.get("fileName"),
        )

    logger.info(f"Unhandled message type: {type_message}")
    return Ignored(f"unhandled message type {type_message}")


class NotificationDispatcher:
    def __init__(
        self,
        gateway,
        sink,
        get_monitor: Callable[[], Optional[MonitorTarget]],
        on_state_hint: Optional[Callable[[str], Awaitable[None]]] = None,
        media_max_bytes: Optional[int] = None,
    ):
        self.gateway = gateway
        self.sink = sink
        self.get_monitor = get_monitor
        self.on_state_hint = on_state_hint
        self.media_max_bytes = media_max_bytes

    async def dispatch(self, body: Any):
        """Classify one body and emit at most one event. Returns the event or None."""
        result = classify(body, self.get_monitor())

        if isinstance(result, Ignored):
            logger.debug(f"Notification ignored: {result.reason}")
            return None

        if isinstance(result, StateHint):
            logger.info(f"State changed to: {result.state}")
            if self.on_state_hint:
                await self.on_state_hint(result.state)
            return None

        if isinstance(result, MediaReference):
            event = await self._download_media(result)
        else:
            event = result
            logger.info(f"Text message from monitored group {event.chat_id}")

        if event is not None:
            self.sink.emit(event)
        return event

    async def _download_media(self, ref: MediaReference) -> Optional[MediaMessage]:
        logger.info(f"{ref.type_message or 'File'} received, downloading...")
        try:
            data = await self.gateway.download_file(
                ref.chat_id, ref.id, download_url=ref.download_url
            )
        except ProviderError as e:
            logger.error(f"Error downloading {ref.type_message} {ref.id}: {e}")
            return None

        if self.media_max_bytes and len(data) > self.media_max_bytes:
            logger.warning(f"Media {ref.id} too large ({len(data)} bytes). Skipping.")
            return None

        extension, mime_type = infer_file_type(ref.mime_type, ref.type_message)
        filename = build_media_filename(ref.sender_name, ref.timestamp, extension)
        logger.info(f"Sending media to host - {filename}, {len(data)} bytes")
        return MediaMessage(
            id=ref.id,
            chat_id=ref.chat_id,
            author=ref.author,
            timestamp=ref.timestamp,
            filename=filename,
            mime_type=mime_type,
            data_base64=encode_base64(data),
            size=len(data),
            sender_name=ref.sender_name,
            caption=ref.caption,
        )
