"""SeriesForge — catalog bootstrap and process entry point."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from seriesforge.catalog.catalog import Catalog
from seriesforge.config import Settings, settings
from seriesforge.connectors.base import ConnectorRegistry
from seriesforge.connectors.registry import build_default_registry
from seriesforge.logging_config import setup_logging
from seriesforge.workers.scheduler import CatalogRefresher

logger = logging.getLogger("seriesforge")


def create_catalog(
    config: Optional[Settings] = None,
    registry: Optional[ConnectorRegistry] = None,
) -> Catalog:
    """Build a catalog holding every origin declared in the settings."""
    config = config or settings
    catalog = Catalog(registry or build_default_registry())

    for name, origin_config in config.origins_map.items():
        catalog.add_origin(name, origin_config)

    if not catalog.origins:
        logger.warning("⚠  No origins configured — set ORIGINS to enable discovery")

    return catalog


async def run(config: Optional[Settings] = None) -> None:
    """Run an initial refresh, then keep the catalog fresh until cancelled."""
    config = config or settings
    setup_logging(config.log_level)

    catalog = create_catalog(config)
    refresher = CatalogRefresher(catalog, interval=config.refresh_interval_seconds)

    logger.info("✦ SeriesForge started")
    logger.info(f"  Origins: {', '.join(sorted(catalog.origins)) or '-'}")
    logger.info(f"  Refresh interval: {config.refresh_interval_seconds}s")

    await refresher.refresh_now()
    await refresher.start()
    try:
        await asyncio.Event().wait()
    finally:
        await refresher.stop()
        logger.info("✦ SeriesForge shutting down")


if __name__ == "__main__":
    asyncio.run(run())
