"""Catalog — in-memory origin → source → metric inventory."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import TYPE_CHECKING, Optional

from seriesforge.catalog.channel import DiscoveryChannel
from seriesforge.errors import ConfigError
from seriesforge.observability.metrics import metrics
from seriesforge.utils.time import utc_now

if TYPE_CHECKING:
    from seriesforge.connectors.base import Connector, ConnectorRegistry

logger = logging.getLogger("seriesforge.catalog")


@dataclass(eq=False)
class Metric:
    """A queryable time series. Backend resolution data stays in the connector."""

    name: str
    source: Source = field(repr=False)


@dataclass(eq=False)
class Source:
    """A monitored host or entity grouping metrics."""

    name: str
    origin: Origin = field(repr=False)
    metrics: dict[str, Metric] = field(default_factory=dict)


class Origin:
    """One configured backend instance and the tree its connector discovers."""

    def __init__(self, name: str, catalog: Catalog) -> None:
        self.name = name
        self.catalog = catalog
        self.sources: dict[str, Source] = {}
        self.connector: Optional[Connector] = None

    def __repr__(self) -> str:
        return f"Origin(name={self.name!r}, sources={len(self.sources)})"

    async def update(self) -> None:
        """Run one discovery pass and merge its results into the tree.

        The connector walk and the channel consumer run as concurrent tasks;
        the pass ends when the channel is closed and the walk has returned.
        """
        if self.connector is None:
            raise ConfigError(f"origin `{self.name}' has no connector")

        channel = DiscoveryChannel()
        producer = asyncio.create_task(self.connector.update(channel))
        # A producer that died without closing still ends the stream.
        producer.add_done_callback(lambda _: channel.closed or channel.close())

        count = 0
        try:
            async for source_name, metric_name in channel:
                self._append_metric(source_name, metric_name)
                count += 1
        except BaseException:
            producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)
            raise

        await producer
        logger.debug(f"origin discovery yielded {count} metrics", extra={"origin": self.name})

    def _append_metric(self, source_name: str, metric_name: str) -> Metric:
        with self.catalog.lock:
            source = self.sources.get(source_name)
            if source is None:
                source = Source(name=source_name, origin=self)
                self.sources[source_name] = source

            metric = source.metrics.get(metric_name)
            if metric is None:
                metric = Metric(name=metric_name, source=source)
                source.metrics[metric_name] = metric
            return metric


class Catalog:
    """Owns every origin, orchestrates their refresh and answers lookups."""

    def __init__(self, registry: ConnectorRegistry) -> None:
        self.registry = registry
        self.origins: dict[str, Origin] = {}
        self.updated: Optional[datetime] = None
        self.lock = RLock()

    def add_origin(self, name: str, config: dict[str, str]) -> Origin:
        """Create an origin and its connector from raw settings.

        Duplicate names are rejected; the catalog is left unchanged on error.
        """
        backend_type = config.get("type")
        if not backend_type:
            raise ConfigError("missing backend type")
        if backend_type not in self.registry:
            raise ConfigError(f"unknown `{backend_type}' backend type")

        with self.lock:
            if name in self.origins:
                raise ConfigError(f"duplicate `{name}' origin")

            origin = Origin(name=name, catalog=self)
            origin.connector = self.registry.get(backend_type)(origin, config)
            self.origins[name] = origin

        logger.info(f"origin added (type={backend_type})", extra={"origin": name})
        return origin

    def get_origin(self, name: str) -> Optional[Origin]:
        with self.lock:
            return self.origins.get(name)

    def get_source(self, origin: str, source: str) -> Optional[Source]:
        with self.lock:
            item = self.origins.get(origin)
            if item is None:
                return None
            return item.sources.get(source)

    def get_metric(self, origin: str, source: str, name: str) -> Optional[Metric]:
        """Return a metric by origin, source and name, or None."""
        with self.lock:
            item = self.get_source(origin, source)
            if item is None:
                return None
            return item.metrics.get(name)

    def metric_exists(self, origin: str, source: str, name: str) -> bool:
        return self.get_metric(origin, source, name) is not None

    async def update(self) -> None:
        """Refresh every origin.

        All origins are attempted. If any failed, the last error is raised and
        `updated` is left untouched; metrics found before a failure are kept.
        """
        last_error: Optional[Exception] = None

        logger.info("catalog update started")

        with self.lock:
            origins = list(self.origins.values())

        for origin in origins:
            started = time.perf_counter()
            try:
                await origin.update()
            except Exception as exc:
                logger.error(f"origin update failed: {exc}", extra={"origin": origin.name})
                last_error = exc
                ok = False
            else:
                ok = True
            metrics.observe_refresh(origin.name, ok, (time.perf_counter() - started) * 1000)

        if last_error is not None:
            logger.info("catalog update failed")
            raise last_error

        self.updated = utc_now()
        logger.info("catalog update completed")
