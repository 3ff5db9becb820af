"""
Output Sink.
Serializes domain events as line-delimited JSON on stdout.
"""

import json
import logging
import sys
from typing import Optional, TextIO

from .contract import DomainEvent

logger = logging.getLogger(__name__)


def encode_event(event: DomainEvent) -> str:
    return json.dumps(event.to_wire(), ensure_ascii=False, separators=(",", ":"))


class JsonLineSink:
    """One compact JSON object per line, flushed after every event."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def emit(self, event: DomainEvent):
        line = encode_event(event)
        self.stream.write(line + "\n")
        self.stream.flush()
        logger.debug(f"Sent to host: {event.type}")


class MemorySink:
    """Collects events in a list instead of writing them."""

    def __init__(self):
        self.events = []

    def emit(self, event: DomainEvent):
        self.events.append(event)

    def of_type(self, event_type: str):
        return [e for e in self.events if e.type == event_type]
