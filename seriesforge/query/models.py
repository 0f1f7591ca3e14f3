"""Group query and plot result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from seriesforge.catalog.catalog import Metric


class GroupType(IntEnum):
    """Aggregation operator applied across the series of a group."""

    NONE = 0
    SUM = 1
    AVG = 2


@dataclass
class Serie:
    """One named input series of a group query."""

    name: str
    metric: Optional[Metric] = None  # unresolved series are skipped
    scale: float = 0.0  # 0 means "no scaling"


@dataclass
class GroupQuery:
    """A set of series combined under an aggregation operator."""

    name: str
    series: list[Serie] = field(default_factory=list)
    type: GroupType = GroupType.NONE
    scale: float = 0.0


@dataclass
class PlotResult:
    """Raw samples plus a statistics map for one output series.

    Undefined samples are NaN.
    """

    plots: list[float] = field(default_factory=list)
    info: dict[str, float] = field(default_factory=dict)
