"""Base interfaces for storage connectors and their registry."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from seriesforge.errors import ConfigError
from seriesforge.query.models import GroupQuery, PlotResult

if TYPE_CHECKING:
    from seriesforge.catalog.catalog import Origin
    from seriesforge.catalog.channel import DiscoveryChannel


class Connector(ABC):
    """Bridges an origin to one storage technology."""

    @abstractmethod
    async def update(self, channel: DiscoveryChannel) -> None:
        """Discover ``(source, metric)`` pairs and send them on the channel.

        The channel must be closed exactly once, on success or failure.
        """
        ...

    @abstractmethod
    async def get_plots(
        self,
        query: GroupQuery,
        start: datetime,
        end: datetime,
        step: timedelta,
        percentiles: list[float] | None = None,
    ) -> dict[str, PlotResult]:
        """Return samples and statistics per output series over a time range."""
        ...

    @abstractmethod
    async def get_value(
        self,
        query: GroupQuery,
        ref_time: datetime,
        percentiles: list[float] | None = None,
    ) -> dict[str, dict[str, float]]:
        """Return statistics per output series at a reference time."""
        ...


ConnectorConstructor = Callable[["Origin", dict[str, str]], Connector]


class ConnectorRegistry:
    """Backend-type name → connector constructor.

    Connectors register themselves at startup; `freeze()` ends the
    registration phase.
    """

    def __init__(self) -> None:
        self._constructors: dict[str, ConnectorConstructor] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, name: str, constructor: ConnectorConstructor) -> None:
        if self._frozen:
            raise ConfigError(f"cannot register `{name}' connector: registry is frozen")
        if name in self._constructors:
            raise ConfigError(f"`{name}' connector already registered")
        self._constructors[name] = constructor

    def freeze(self) -> ConnectorRegistry:
        self._frozen = True
        return self

    def get(self, name: str) -> ConnectorConstructor:
        try:
            return self._constructors[name]
        except KeyError:
            raise ConfigError(f"unknown `{name}' backend type") from None

    def names(self) -> list[str]:
        return sorted(self._constructors)

    def __contains__(self, name: object) -> bool:
        return name in self._constructors
