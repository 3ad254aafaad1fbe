"""
Notification Generator

Builds the notification feed: due-date alerts for pending DAS
obligations, plus a one-time set of welcome and tip messages.

ALGORITHM (generate):
1. Pending obligations due today or later
2. Skip those due more than `alert_window_days` away
3. Skip those already alerted (see _already_alerted)
4. Priority high within `high_priority_days`, medium otherwise
5. Seed welcome/tips only when the feed was empty at the start
6. Sort by priority rank, then newest first

Generating twice in a row adds nothing the second time. Every operation
needs a signed-in owner and raises NotAuthenticatedError otherwise,
before the cache is read or written.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from mei_ledger.audit import AuditLogger
from mei_ledger.context import NotAuthenticatedError, OwnerContext
from mei_ledger.models.ledger import TaxObligation, TaxStatus, utc_now
from mei_ledger.models.notification import (
    NotificationCategory,
    NotificationItem,
    NotificationPriority,
)
from mei_ledger.notifications.cache import NotificationCache
from mei_ledger.services.storage import StorageError, TaxObligationStorageInterface
from mei_ledger.utils.dates import days_until, format_due_date


logger = structlog.get_logger("mei_ledger.notifications")

WELCOME_MESSAGE = "Welcome to MEI Ledger!"

# (message, category, days back)
SEED_MESSAGES = [
    ("Reminder: the DAS is due on day {due_day} of every month",
     NotificationCategory.INFO, 1),
    ("Tip: categorize your expenses for better control",
     NotificationCategory.INFO, 3),
    ("Tip: attach the payment receipt when you mark a DAS as paid",
     NotificationCategory.INFO, 5),
    (WELCOME_MESSAGE, NotificationCategory.WELCOME, 7),
]


def alert_message(obligation: TaxObligation, days: int) -> str:
    """Alert text; always carries the competence and the formatted due date."""
    due = format_due_date(obligation.due_date)
    if days == 0:
        return f"DAS for competence {obligation.competence} is due today ({due})"
    unit = "day" if days == 1 else "days"
    return f"DAS for competence {obligation.competence} is due in {days} {unit} ({due})"


def sort_feed(items: list[NotificationItem]) -> list[NotificationItem]:
    """Highest priority first, newest first within a priority."""
    return sorted(
        items,
        key=lambda item: (item.priority.rank, item.created_at),
        reverse=True,
    )


class NotificationGenerator:
    """
    Maintains the notification feed in a NotificationCache.

    Args:
        context: Owner resolution
        obligations: Store the pending obligations are read from
        cache: Where the feed is persisted
        clock: Returns the current (timezone-aware) time
    """

    def __init__(
        self,
        context: OwnerContext,
        obligations: TaxObligationStorageInterface,
        cache: NotificationCache,
        alert_window_days: int = 10,
        high_priority_days: int = 3,
        due_day: int = 20,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._context = context
        self._obligations = obligations
        self._cache = cache
        self._alert_window_days = alert_window_days
        self._high_priority_days = high_priority_days
        self._due_day = due_day
        self._audit_logger = audit_logger
        self._clock = clock
        self._feed: Optional[list[NotificationItem]] = None
        context.on_owner_change(self.invalidate)

    def invalidate(self) -> None:
        """Drop the in-memory copy; the next call re-reads the cache."""
        self._feed = None

    async def _require_owner(self, operation: str) -> str:
        try:
            return await self._context.require_owner()
        except NotAuthenticatedError:
            logger.warning("auth_required", operation=operation)
            if self._audit_logger:
                await self._audit_logger.log_auth_required(operation)
            raise

    async def _load(self) -> list[NotificationItem]:
        if self._feed is None:
            self._feed = await self._cache.get_all()
        return list(self._feed)

    async def _save(self, items: list[NotificationItem]) -> list[NotificationItem]:
        items = sort_feed(items)
        await self._cache.set_all(items)
        self._feed = items
        return list(items)

    def _already_alerted(self, obligation: TaxObligation, items: list[NotificationItem]) -> bool:
        """
        True when some notification already covers this obligation's due date.

        Alerts written by this generator carry obligation_id and due_date;
        they match on both, or on the due date plus the competence in the
        message when the obligation was recreated under a new id. Older
        alerts only have text, so they match when the message holds both
        the competence and the formatted due date.
        """
        due_text = format_due_date(obligation.due_date)
        for item in items:
            if item.obligation_id is not None:
                if item.due_date != obligation.due_date:
                    continue
                if item.obligation_id == obligation.id or obligation.competence in item.message:
                    return True
                continue
            if obligation.competence in item.message and due_text in item.message:
                return True
        return False

    async def _pending_obligations(self, owner_id: str, now: datetime) -> list[TaxObligation]:
        try:
            return await self._obligations.list_obligations(
                owner_id,
                status=TaxStatus.PENDING,
                due_from=now.date(),
            )
        except StorageError as e:
            logger.warning("alert_source_unavailable", owner_id=owner_id, error=str(e))
            return []

    def _seed(self, now: datetime) -> list[NotificationItem]:
        return [
            NotificationItem(
                message=message.format(due_day=self._due_day),
                created_at=now - timedelta(days=days_back),
                read=False,
                category=category,
                priority=NotificationPriority.LOW,
            )
            for message, category, days_back in SEED_MESSAGES
        ]

    async def generate(self) -> list[NotificationItem]:
        """Add any new alerts (and the first-run seed) and return the sorted feed."""
        owner_id = await self._require_owner("generate_notifications")
        now = self._clock()
        items = await self._load()
        was_empty = not items

        created: list[NotificationItem] = []
        for obligation in await self._pending_obligations(owner_id, now):
            days = days_until(obligation.due_date, now.date())
            if days > self._alert_window_days:
                continue
            if self._already_alerted(obligation, items + created):
                continue
            created.append(NotificationItem(
                message=alert_message(obligation, days),
                created_at=now,
                category=NotificationCategory.TAX_ALERT,
                priority=(
                    NotificationPriority.HIGH
                    if days <= self._high_priority_days
                    else NotificationPriority.MEDIUM
                ),
                obligation_id=obligation.id,
                due_date=obligation.due_date,
            ))

        seeded = self._seed(now) if was_empty else []

        if not created and not seeded:
            return sort_feed(items)

        feed = await self._save(items + created + seeded)
        logger.info("notifications_generated", alerts=len(created), seeded=len(seeded))
        if self._audit_logger:
            for item in created:
                await self._audit_logger.log_notification_created(
                    owner_id=owner_id,
                    notification_id=item.id,
                    priority=item.priority.value,
                    obligation_id=item.obligation_id,
                )
            if seeded:
                await self._audit_logger.log_notifications_seeded(owner_id, len(seeded))
        return feed

    async def list_notifications(self) -> list[NotificationItem]:
        await self._require_owner("list_notifications")
        return sort_feed(await self._load())

    async def unread_count(self) -> int:
        await self._require_owner("unread_count")
        return sum(1 for item in await self._load() if not item.read)

    async def mark_as_read(self, notification_id: str) -> bool:
        """Mark one notification read. Returns False if no such notification."""
        await self._require_owner("mark_notification_read")
        items = await self._load()
        for index, item in enumerate(items):
            if item.id == notification_id:
                if not item.read:
                    items[index] = item.mark_read()
                    await self._save(items)
                return True
        return False

    async def mark_all_as_read(self) -> int:
        """Mark every notification read. Returns how many changed."""
        await self._require_owner("mark_all_notifications_read")
        items = await self._load()
        changed = sum(1 for item in items if not item.read)
        if changed:
            await self._save([item.mark_read() for item in items])
        return changed
