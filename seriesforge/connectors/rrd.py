"""RRD connector — discovers metrics from a tree of round-robin database files."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import TYPE_CHECKING, Optional

from seriesforge.config import settings
from seriesforge.connectors.base import Connector, ConnectorRegistry
from seriesforge.errors import ConfigError, DiscoveryError, QueryError, StorageError
from seriesforge.observability.metrics import metrics
from seriesforge.query.engine import evaluate
from seriesforge.query.models import GroupQuery, PlotResult
from seriesforge.storage.base import StorageEngine

if TYPE_CHECKING:
    from seriesforge.catalog.catalog import Metric, Origin
    from seriesforge.catalog.channel import DiscoveryChannel

logger = logging.getLogger("seriesforge.connectors.rrd")

PATTERN_KEYWORDS = ("source", "metric")


@dataclass(frozen=True)
class RRDMetric:
    """Where a discovered metric lives in the storage engine."""

    dataset: str
    file_path: str


def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a discovery pattern and check its named groups."""
    try:
        regex = re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"invalid pattern `{pattern}': {exc}") from exc

    for key in regex.groupindex:
        if key not in PATTERN_KEYWORDS:
            raise ConfigError(f"invalid pattern keyword `{key}'")

    for key in PATTERN_KEYWORDS:
        if key not in regex.groupindex:
            raise ConfigError(f"missing pattern keyword `{key}'")

    return regex


class RRDConnector(Connector):
    """Connector for a directory of .rrd files.

    File paths relative to `path` are matched against `pattern`, whose
    `source` and `metric` groups name the discovered entities. Every dataset
    of a file becomes one metric named ``<metric>/<dataset>``.
    """

    def __init__(self, origin: Origin, path: str, pattern: str, engine: StorageEngine) -> None:
        self.origin = origin
        self.path = path
        self.pattern = pattern
        self.engine = engine
        self._metrics: dict[tuple[str, str], RRDMetric] = {}
        self._lock = Lock()

    @classmethod
    def from_config(
        cls, origin: Origin, config: dict[str, str], engine: Optional[StorageEngine] = None
    ) -> RRDConnector:
        for key in ("path", "pattern"):
            if key not in config:
                raise ConfigError(f"missing `{key}' mandatory connector setting")

        if engine is None:
            from seriesforge.storage.rrd_engine import RRDToolEngine

            engine = RRDToolEngine()

        return cls(origin, config["path"].rstrip(os.sep) or os.sep, config["pattern"], engine)

    async def update(self, channel: DiscoveryChannel) -> None:
        try:
            regex = compile_pattern(self.pattern)
            await self._walk(regex, channel)
        finally:
            channel.close()

    async def _walk(self, regex: re.Pattern, channel: DiscoveryChannel) -> None:
        def on_error(exc: OSError) -> None:
            raise exc

        # Each directory listing is read in a worker thread so the channel
        # consumer keeps draining while the walk is in progress.
        walker = os.walk(self.path, onerror=on_error)
        try:
            while True:
                entry = await asyncio.to_thread(next, walker, None)
                if entry is None:
                    break
                dir_path, dir_names, file_names = entry
                dir_names.sort()
                for file_name in sorted(file_names):
                    await self._handle_file(regex, channel, os.path.join(dir_path, file_name))
        except OSError as exc:
            raise DiscoveryError(f"unable to walk `{self.path}': {exc}") from exc
        finally:
            walker.close()

    async def _handle_file(
        self, regex: re.Pattern, channel: DiscoveryChannel, file_path: str
    ) -> None:
        # Skip non-regular entries (sockets, fifos, broken links)
        if not await asyncio.to_thread(os.path.isfile, file_path):
            return

        relative = os.path.relpath(file_path, self.path)
        match = regex.search(relative)
        if match is None:
            logger.warning(
                f"file `{file_path}' does not match pattern",
                extra={"origin": self.origin.name},
            )
            return

        # Optional groups that did not participate yield empty names.
        source = match.group("source") or ""
        metric = match.group("metric") or ""

        try:
            datasets = await asyncio.to_thread(self.engine.datasets, file_path)
        except StorageError as exc:
            raise DiscoveryError(f"unable to read `{file_path}': {exc}") from exc

        for dataset in datasets:
            metric_name = f"{metric}/{dataset}"
            with self._lock:
                self._metrics[(source, metric_name)] = RRDMetric(dataset=dataset, file_path=file_path)
            await channel.send(source, metric_name)

    def resolve(self, metric: Metric) -> tuple[str, str]:
        with self._lock:
            item = self._metrics.get((metric.source.name, metric.name))
        if item is None:
            raise QueryError(f"unknown metric `{metric.name}' for source `{metric.source.name}'")
        return item.file_path, item.dataset

    async def get_plots(
        self,
        query: GroupQuery,
        start: datetime,
        end: datetime,
        step: timedelta,
        percentiles: list[float] | None = None,
    ) -> dict[str, PlotResult]:
        return await self._get_data("plots", query, start, end, step, percentiles, info_only=False)

    async def get_value(
        self,
        query: GroupQuery,
        ref_time: datetime,
        percentiles: list[float] | None = None,
    ) -> dict[str, dict[str, float]]:
        data = await self._get_data(
            "value",
            query,
            ref_time - timedelta(minutes=1),
            ref_time,
            timedelta(minutes=1),
            percentiles,
            info_only=True,
        )
        return {name: result.info for name, result in data.items()}

    async def _get_data(
        self,
        kind: str,
        query: GroupQuery,
        start: datetime,
        end: datetime,
        step: timedelta,
        percentiles: list[float] | None,
        info_only: bool,
    ) -> dict[str, PlotResult]:
        started = time.perf_counter()
        ok = False
        try:
            result = await asyncio.to_thread(
                evaluate,
                self.engine,
                query,
                self.resolve,
                start,
                end,
                step,
                settings.default_percentiles_list if percentiles is None else percentiles,
                info_only,
            )
            ok = True
            return result
        finally:
            metrics.observe_query(kind, ok, (time.perf_counter() - started) * 1000)


def register(registry: ConnectorRegistry, engine: Optional[StorageEngine] = None) -> None:
    """Install the `rrd` backend type into a registry."""

    def constructor(origin: Origin, config: dict[str, str]) -> RRDConnector:
        return RRDConnector.from_config(origin, config, engine=engine)

    registry.register("rrd", constructor)
