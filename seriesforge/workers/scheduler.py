"""Background refresher — re-runs catalog discovery on an interval."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from seriesforge.catalog.catalog import Catalog
from seriesforge.config import settings

logger = logging.getLogger("seriesforge.refresher")


class CatalogRefresher:
    """Asyncio-based background task refreshing a catalog.

    Runs inside the caller's event loop. A failed refresh is logged and the
    loop keeps going; `catalog.updated` tells whether the last pass was clean.
    """

    def __init__(self, catalog: Catalog, interval: Optional[int] = None) -> None:
        self.catalog = catalog
        self.interval = interval if interval is not None else settings.refresh_interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background refresher."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Refresher started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Stop the background refresher gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Refresher stopped")

    async def refresh_now(self) -> bool:
        """Run one refresh pass; return whether every origin succeeded."""
        try:
            await self.catalog.update()
        except Exception as e:
            logger.error(f"Catalog refresh failed: {e}")
            return False
        return True

    async def _run_loop(self) -> None:
        """Main refresher loop."""
        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            await self.refresh_now()
