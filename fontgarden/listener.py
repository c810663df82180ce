"""
Realtime change listener.

Subscribes to the fonts, projects and font_projects tables and refreshes the
affected DataCache collections whenever any of them changes.
"""

import asyncio
import logging
from typing import Any, Optional

from fontgarden.data_cache import DataCache
from fontgarden.models import ChangeEvent
from fontgarden.utils.store import (
    FONT_PROJECTS_TABLE,
    FONTS_TABLE,
    PROJECTS_TABLE,
    StoreError,
    SupabaseStore,
)

logger = logging.getLogger(__name__)

# Which cache refreshes each table's changes trigger
REFRESHES_BY_TABLE = {
    FONTS_TABLE: ("fonts",),
    PROJECTS_TABLE: ("projects",),
    FONT_PROJECTS_TABLE: ("fonts", "projects"),
}


class ChangeListener:
    """
    Keeps a DataCache in sync with remote changes.

    Use as an async context manager so subscriptions are always released:

        async with ChangeListener(store, cache):
            ...
    """

    def __init__(self, store: SupabaseStore, cache: DataCache):
        self.store = store
        self.cache = cache
        self._channels: list[Any] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return bool(self._channels)

    async def start(self) -> None:
        """Subscribe to every watched table. Raises StoreError on failure."""
        if self._channels:
            return

        try:
            for table in REFRESHES_BY_TABLE:
                self._channels.append(await self.store.subscribe(table, self.handle_change))
        except StoreError:
            await self.stop()
            raise

        logger.info(f"Listening for changes on {', '.join(REFRESHES_BY_TABLE)}")

    async def stop(self) -> None:
        """Release all subscriptions and wait for in-flight refreshes."""
        channels, self._channels = self._channels, []
        try:
            for channel in channels:
                try:
                    await self.store.unsubscribe(channel)
                except StoreError as e:
                    logger.error(f"Error releasing subscription: {e}")
        finally:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def handle_change(self, event: ChangeEvent) -> Optional[asyncio.Task]:
        """Schedule the refreshes for a change notification."""
        targets = REFRESHES_BY_TABLE.get(event.table)
        if not targets:
            logger.debug(f"Ignoring change on unwatched table {event.table}")
            return None

        logger.debug(f"{event.event_type or 'Change'} on {event.table} ({event.record_id})")
        task = asyncio.get_running_loop().create_task(self._refresh(targets))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _refresh(self, targets: tuple[str, ...]) -> None:
        refreshes = []
        if "fonts" in targets:
            refreshes.append(self.cache.refresh_fonts())
        if "projects" in targets:
            refreshes.append(self.cache.refresh_projects())
        await asyncio.gather(*refreshes)

    async def __aenter__(self) -> "ChangeListener":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
