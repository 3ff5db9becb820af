"""
Media helpers.
Filename sanitization and file type inference for downloaded attachments.
"""

import base64
import re
from datetime import datetime, timezone
from typing import Optional, Tuple

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_{2,}")

# typeMessage -> default mime when the provider does not report one
_DEFAULT_MIME_BY_TYPE = {
    "imageMessage": "image/jpeg",
    "videoMessage": "video/mp4",
    "audioMessage": "audio/ogg",
}

OCTET_STREAM = "application/octet-stream"


def sanitize_name(name: Optional[str], fallback: str = "unknown") -> str:
    """
    Make a sender name safe for use in a filename.

    Filesystem-unsafe characters become underscores, whitespace runs
    collapse to one underscore, repeated underscores collapse, and
    leading/trailing underscores are trimmed.
    """
    if not name:
        return fallback
    cleaned = _UNSAFE_CHARS.sub("_", name)
    cleaned = _WHITESPACE.sub("_", cleaned)
    cleaned = _UNDERSCORES.sub("_", cleaned)
    cleaned = cleaned.strip("_")
    return cleaned or fallback


def compact_timestamp(epoch_seconds: int) -> str:
    """UTC timestamp formatted for filenames: YYYYMMDD_HHMMSS."""
    dt = datetime.fromtimestamp(int(epoch_seconds), tz=timezone.utc)
    return dt.strftime("%Y%m%d_%H%M%S")


def infer_file_type(
    mime_type: Optional[str], type_message: Optional[str] = None
) -> Tuple[str, str]:
    """
    Return ``(extension, mime_type)`` for an attachment.

    image -> jpg, video -> mp4, audio -> ogg, pdf -> pdf, else bin.
    """
    mime = (mime_type or "").split(";")[0].strip().lower()
    if not mime:
        mime = _DEFAULT_MIME_BY_TYPE.get(type_message or "", "")

    if mime.startswith("image/"):
        return "jpg", mime
    if mime.startswith("video/"):
        return "mp4", mime
    if mime.startswith("audio/"):
        return "ogg", mime
    if mime == "application/pdf" or mime.endswith("/pdf"):
        return "pdf", "application/pdf"
    return "bin", OCTET_STREAM


def build_media_filename(sender_name: Optional[str], epoch_seconds: int, extension: str) -> str:
    return f"{sanitize_name(sender_name)}_{compact_timestamp(epoch_seconds)}.{extension}"


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
