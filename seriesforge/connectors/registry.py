"""Default connector registry."""

from __future__ import annotations

from typing import Optional

from seriesforge.connectors import rrd
from seriesforge.connectors.base import ConnectorRegistry
from seriesforge.storage.base import StorageEngine


def build_default_registry(engine: Optional[StorageEngine] = None) -> ConnectorRegistry:
    """Register every bundled connector and freeze the registry.

    `engine` overrides the storage engine of file-based connectors.
    """
    registry = ConnectorRegistry()
    rrd.register(registry, engine=engine)
    return registry.freeze()
