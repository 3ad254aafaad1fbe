"""
Notification cache.

The notification feed is kept on the client, outside the relational
store, in a single named slot.

LIMITATION: The slot is per client install, not per owner. Two owners
signing in on the same install share one feed.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

import structlog
from pydantic import TypeAdapter, ValidationError

from mei_ledger.models.notification import NotificationItem


logger = structlog.get_logger("mei_ledger.notifications")

_ITEMS = TypeAdapter(list[NotificationItem])


class NotificationCache(ABC):
    """Durable key-value slot holding the whole notification list."""

    @abstractmethod
    async def get_all(self) -> list[NotificationItem]:
        """The stored list; empty when nothing was stored yet."""

    @abstractmethod
    async def set_all(self, items: list[NotificationItem]) -> None:
        """Replace the stored list (last write wins)."""

    async def clear(self) -> None:
        await self.set_all([])


class InMemoryNotificationCache(NotificationCache):
    """Notification cache for tests; lost when the process exits."""

    def __init__(self):
        self._items: list[NotificationItem] = []

    async def get_all(self) -> list[NotificationItem]:
        return [item.model_copy() for item in self._items]

    async def set_all(self, items: list[NotificationItem]) -> None:
        self._items = [item.model_copy() for item in items]


class JsonFileNotificationCache(NotificationCache):
    """
    Notification cache stored as a JSON array in one file.

    A missing file reads as an empty list. An unreadable file is logged
    and also reads as empty; the next write replaces it.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def get_all(self) -> list[NotificationItem]:
        if not self.path.exists():
            return []
        try:
            return _ITEMS.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning("notification_cache_unreadable", path=str(self.path), error=str(e))
            return []

    async def set_all(self, items: list[NotificationItem]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_bytes(_ITEMS.dump_json(items, indent=2))
        os.replace(tmp_path, self.path)
