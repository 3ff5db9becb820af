"""
Chat history normalization.
Flattens ``getChatHistory`` records into the shape sent with ``history`` events.
"""

from typing import Any, Dict, Iterable, List

MEDIA_TYPES = ("imageMessage", "videoMessage", "audioMessage", "documentMessage")


def _sub(record: dict, key: str) -> dict:
    value = record.get(key)
    return value if isinstance(value, dict) else {}


def normalize_message(record: Dict[str, Any]) -> Dict[str, Any]:
    type_message = record.get("typeMessage")
    media_type = None
    file_id = None
    file_name = None

    if type_message in MEDIA_TYPES:
        data = _sub(record, f"{type_message}Data")
        media_type = type_message
        file_id = data.get("idMessage") or record.get("idMessage")
        if type_message == "documentMessage":
            file_name = record.get("fileName") or data.get("fileName")
        if type_message == "audioMessage":
            text = ""
        else:
            text = record.get("caption") or data.get("caption") or ""
    elif type_message == "textMessage":
        text = record.get("textMessage") or _sub(record, "textMessageData").get("textMessage") or ""
    elif type_message == "extendedTextMessage":
        text = record.get("text") or _sub(record, "extendedTextMessageData").get("text") or ""
    else:
        text = record.get("textMessage") or record.get("text") or ""

    timestamp = record.get("timestamp") or 0
    return {
        "id": record.get("idMessage") or f"{timestamp}-{record.get('chatId', '')}",
        "chatId": record.get("chatId"),
        "text": text,
        "own": record.get("type") == "outgoing",
        "time": timestamp,
        "senderName": record.get("senderName"),
        "mediaType": media_type,
        "fileId": file_id,
        "fileName": file_name,
    }


def normalize_history(records: Iterable[Any]) -> List[Dict[str, Any]]:
    return [normalize_message(r) for r in records if isinstance(r, dict)]
