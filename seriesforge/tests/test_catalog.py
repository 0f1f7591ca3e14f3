"""Tests for the catalog: origins, lookups and refresh orchestration."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from seriesforge.catalog.catalog import Catalog
from seriesforge.connectors.base import Connector, ConnectorRegistry
from seriesforge.errors import ConfigError, DiscoveryError

PATTERN = r"(?P<source>[^/]+)/(?P<metric>.+)\.rrd$"


class StubConnector(Connector):
    """Connector sending a fixed list of pairs, optionally failing afterwards."""

    def __init__(self, pairs=(), error: Exception | None = None, close: bool = True) -> None:
        self.pairs = list(pairs)
        self.error = error
        self.close = close

    async def update(self, channel) -> None:
        try:
            for source, metric in self.pairs:
                await channel.send(source, metric)
            if self.error is not None:
                raise self.error
        finally:
            if self.close:
                channel.close()

    async def get_plots(self, query, start, end, step, percentiles=None):
        return {}

    async def get_value(self, query, ref_time, percentiles=None):
        return {}


class BlockingConnector(StubConnector):
    """Connector that sends one pair, then waits until cancelled."""

    def __init__(self) -> None:
        super().__init__(pairs=[("web1", "cpu/value")])
        self.cancelled = False

    async def update(self, channel) -> None:
        try:
            await channel.send("web1", "cpu/value")
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            channel.close()


def _stub_registry() -> ConnectorRegistry:
    registry = ConnectorRegistry()

    def constructor(origin, config):
        error = DiscoveryError(config["fail"]) if "fail" in config else None
        pairs = [tuple(pair.split(":")) for pair in config.get("pairs", "").split() if pair]
        return StubConnector(pairs=pairs, error=error, close=config.get("close") != "no")

    registry.register("stub", constructor)
    return registry.freeze()


class TestAddOrigin:
    def test_missing_type_raises(self, catalog):
        with pytest.raises(ConfigError, match="missing backend type"):
            catalog.add_origin("local", {"path": "/tmp"})
        assert catalog.origins == {}

    def test_unknown_type_leaves_origins_unchanged(self, catalog, rrd_root):
        catalog.add_origin("local", {"type": "rrd", "path": str(rrd_root), "pattern": PATTERN})
        before = dict(catalog.origins)

        with pytest.raises(ConfigError, match="unknown `graphite' backend type"):
            catalog.add_origin("remote", {"type": "graphite"})

        assert catalog.origins == before

    @pytest.mark.parametrize("missing", ["path", "pattern"])
    def test_missing_connector_setting(self, catalog, missing):
        config = {"type": "rrd", "path": "/var/lib/rrd", "pattern": PATTERN}
        del config[missing]

        with pytest.raises(ConfigError, match=f"missing `{missing}' mandatory connector setting"):
            catalog.add_origin("local", config)
        assert "local" not in catalog.origins

    def test_duplicate_origin_rejected(self, catalog, rrd_root):
        config = {"type": "rrd", "path": str(rrd_root), "pattern": PATTERN}
        first = catalog.add_origin("local", config)

        with pytest.raises(ConfigError, match="duplicate `local' origin"):
            catalog.add_origin("local", config)
        assert catalog.origins["local"] is first

    def test_origin_gets_connector(self, catalog, rrd_root):
        origin = catalog.add_origin(
            "local", {"type": "rrd", "path": str(rrd_root), "pattern": PATTERN}
        )
        assert origin.connector is not None
        assert origin.catalog is catalog
        assert catalog.get_origin("local") is origin


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_metric_returns_discovered_metric(self, populated):
        metric = populated.get_metric("local", "host1", "load/shortterm")
        assert metric is not None
        assert metric.name == "load/shortterm"
        assert metric.source.name == "host1"
        assert metric.source.origin.name == "local"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "origin,source,name",
        [
            ("local", "host1", "cpu/value"),
            ("local", "host1", "load/midterm"),
            ("remote", "host1", "cpu/value"),
            ("local", "host9", "cpu/value"),
            ("local", "host1", "memory/used"),
            ("", "", ""),
        ],
    )
    async def test_exists_matches_get_metric(self, populated, origin, source, name):
        metric = populated.get_metric(origin, source, name)
        assert populated.metric_exists(origin, source, name) is (metric is not None)

    @pytest.mark.asyncio
    async def test_missing_levels_return_none(self, populated):
        assert populated.get_metric("remote", "host1", "cpu/value") is None
        assert populated.get_metric("local", "host9", "cpu/value") is None
        assert populated.get_metric("local", "host1", "memory/used") is None
        assert populated.get_source("remote", "host1") is None
        assert populated.get_source("local", "host2").name == "host2"


class TestUpdate:
    @pytest.mark.asyncio
    async def test_clean_update_sets_timestamp(self, catalog, rrd_root):
        catalog.add_origin("local", {"type": "rrd", "path": str(rrd_root), "pattern": PATTERN})
        assert catalog.updated is None

        await catalog.update()

        assert isinstance(catalog.updated, datetime)
        assert sorted(catalog.origins["local"].sources) == ["host1", "host2", "host3"]

    @pytest.mark.asyncio
    async def test_update_with_no_origins(self, catalog):
        await catalog.update()
        assert catalog.updated is not None

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_metrics_and_timestamp(self):
        catalog = Catalog(_stub_registry())
        catalog.add_origin("good", {"type": "stub", "pairs": "web1:cpu/value web2:cpu/value"})
        catalog.add_origin("bad", {"type": "stub", "pairs": "db1:disk/used"})

        await catalog.update()
        previous = catalog.updated
        assert previous is not None

        bad = catalog.origins["bad"].connector
        bad.pairs.append(("db2", "disk/used"))
        bad.error = DiscoveryError("walk failed")
        with pytest.raises(DiscoveryError, match="walk failed"):
            await catalog.update()

        assert catalog.updated == previous
        assert catalog.metric_exists("good", "web1", "cpu/value")
        assert catalog.metric_exists("good", "web2", "cpu/value")
        # Discovered before the failure: kept.
        assert catalog.metric_exists("bad", "db2", "disk/used")

    @pytest.mark.asyncio
    async def test_first_refresh_failure_leaves_timestamp_unset(self):
        catalog = Catalog(_stub_registry())
        catalog.add_origin("bad", {"type": "stub", "fail": "walk failed"})
        catalog.add_origin("good", {"type": "stub", "pairs": "web1:cpu/value"})

        with pytest.raises(DiscoveryError, match="walk failed"):
            await catalog.update()

        assert catalog.updated is None
        # Origins after the failing one are still attempted.
        assert catalog.metric_exists("good", "web1", "cpu/value")

    @pytest.mark.asyncio
    async def test_last_error_is_reported(self):
        catalog = Catalog(_stub_registry())
        catalog.add_origin("first", {"type": "stub", "fail": "first failed"})
        catalog.add_origin("second", {"type": "stub", "fail": "second failed"})

        with pytest.raises(DiscoveryError, match="second failed"):
            await catalog.update()

    @pytest.mark.asyncio
    async def test_producer_without_close_still_ends_stream(self):
        catalog = Catalog(_stub_registry())
        catalog.add_origin("lazy", {"type": "stub", "pairs": "web1:cpu/value", "close": "no"})

        await catalog.update()

        assert catalog.metric_exists("lazy", "web1", "cpu/value")

    @pytest.mark.asyncio
    async def test_repeated_update_is_additive(self, catalog, rrd_root, engine):
        catalog.add_origin("local", {"type": "rrd", "path": str(rrd_root), "pattern": PATTERN})
        await catalog.update()

        engine.add_file(rrd_root / "host4" / "cpu.rrd", value=[1.0])
        await catalog.update()

        assert catalog.metric_exists("local", "host4", "cpu/value")
        assert catalog.metric_exists("local", "host1", "cpu/value")

    @pytest.mark.asyncio
    async def test_failing_consumer_cancels_walk(self, monkeypatch):
        catalog = Catalog(_stub_registry())
        origin = catalog.add_origin("slow", {"type": "stub"})
        origin.connector = BlockingConnector()

        def fail(source_name, metric_name):
            raise RuntimeError("merge failed")

        monkeypatch.setattr(origin, "_append_metric", fail)

        with pytest.raises(RuntimeError, match="merge failed"):
            await origin.update()

        assert origin.connector.cancelled
