from .base import PollingTask
from .notification_poller import NotificationPoller
from .qr_poller import QrPoller
from .state_poller import StatePoller

__all__ = ["PollingTask", "NotificationPoller", "QrPoller", "StatePoller"]
