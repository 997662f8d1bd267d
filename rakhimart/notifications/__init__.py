from .events import NotificationKind
from .dispatcher import OrderNotifier, PendingNotification

__all__ = [
    "NotificationKind",
    "OrderNotifier",
    "PendingNotification",
]
