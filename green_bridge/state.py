"""
Connection State Management.
Tracks the provider instance authorization state for the session.
"""

import logging
from enum import Enum
from typing import Optional

from .errors import RateLimitError

logger = logging.getLogger(__name__)

_NOT_AUTHORIZED_ALIASES = ("blocked", "unauthorized")


class ConnectionState(str, Enum):
    UNKNOWN = "unknown"
    STARTING = "starting"
    NOT_AUTHORIZED = "notAuthorized"
    AUTHORIZED = "authorized"
    ERROR = "error"

    @classmethod
    def from_remote(cls, raw: Optional[str]) -> "ConnectionState":
        """Map a provider ``stateInstance`` value onto the local enum."""
        if raw in _NOT_AUTHORIZED_ALIASES:
            return cls.NOT_AUTHORIZED
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


class Transition(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ConnectionStateMachine:
    """
    Debounced authorization state.

    ``state`` is the last observed state (including transient ``error``).
    ``connected`` only changes when an observation crosses the
    authorized/not-authorized boundary, so noise among unknown, starting and
    error never produces a transition.
    """

    def __init__(self):
        self.state = ConnectionState.UNKNOWN
        self.connected = False
        self.last_error: Optional[BaseException] = None

    def apply(self, raw_state) -> Optional[Transition]:
        """Record an observed state and return the effective transition, if any."""
        state = (
            raw_state
            if isinstance(raw_state, ConnectionState)
            else ConnectionState.from_remote(raw_state)
        )
        self.state = state
        self.last_error = None

        if state == ConnectionState.AUTHORIZED and not self.connected:
            self.connected = True
            logger.info("Instance authorized")
            return Transition.CONNECTED

        if state == ConnectionState.NOT_AUTHORIZED and self.connected:
            self.connected = False
            logger.info("Instance no longer authorized")
            return Transition.DISCONNECTED

        return None

    def observe_error(self, exc: BaseException):
        """
        Record a failed state check.

        A rate-limit keeps the last known state untouched. Other errors mark
        the raw state as ``error`` for this poll only; the effective
        connection is preserved.
        """
        if isinstance(exc, RateLimitError):
            logger.info("Rate limited during state check, keeping current status")
            return
        self.state = ConnectionState.ERROR
        self.last_error = exc
        logger.warning(f"State check failed: {exc}")
