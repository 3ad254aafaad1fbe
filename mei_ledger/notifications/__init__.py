"""Due-date notification feed."""

from mei_ledger.notifications.cache import (
    InMemoryNotificationCache,
    JsonFileNotificationCache,
    NotificationCache,
)
from mei_ledger.notifications.generator import (
    NotificationGenerator,
    WELCOME_MESSAGE,
    alert_message,
    sort_feed,
)

__all__ = [
    "InMemoryNotificationCache",
    "JsonFileNotificationCache",
    "NotificationCache",
    "NotificationGenerator",
    "WELCOME_MESSAGE",
    "alert_message",
    "sort_feed",
]
