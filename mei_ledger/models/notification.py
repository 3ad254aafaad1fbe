"""
Notification models.

Notifications live in the local cache, not in the relational store.
The only state transition is unread -> read.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from mei_ledger.models.ledger import new_record_id, utc_now


class NotificationCategory(str, Enum):
    TAX_ALERT = "tax_alert"
    INFO = "info"
    WELCOME = "welcome"


class NotificationPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank: high=3, medium=2, low=1."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    NotificationPriority.HIGH: 3,
    NotificationPriority.MEDIUM: 2,
    NotificationPriority.LOW: 1,
}


class NotificationItem(BaseModel):
    """A single entry of the notification feed."""

    id: str = Field(default_factory=new_record_id)
    message: str = Field(..., min_length=1, max_length=500)
    created_at: datetime = Field(default_factory=utc_now)
    read: bool = False
    category: NotificationCategory = NotificationCategory.INFO
    priority: NotificationPriority = NotificationPriority.LOW

    # Explicit dedup key for tax alerts. Older cached alerts lack it and
    # are matched on message text instead.
    obligation_id: Optional[str] = None
    due_date: Optional[date] = None

    def mark_read(self) -> 'NotificationItem':
        return self.model_copy(update={"read": True})
