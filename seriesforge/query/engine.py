"""Query engine — turns group queries into storage plans and assembles results.

A group query is evaluated in three steps:

1. Build a `SeriesPlan`: one output series per input series (`NONE`) or a
   single folded series (`SUM`/`AVG`), each followed by its scaling chain.
2. Attach statistics requests (min/avg/max/last and percentiles) to every
   output series.
3. Ask the storage engine to export samples (unless only statistics are
   wanted) and to render the statistics, then merge both into `PlotResult`s
   keyed by output name.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Iterable

from seriesforge.errors import QueryError
from seriesforge.query.models import GroupQuery, GroupType, PlotResult
from seriesforge.storage.base import SeriesPlan, StorageEngine

if TYPE_CHECKING:
    from seriesforge.catalog.catalog import Metric

logger = logging.getLogger("seriesforge.query")

# Maps a catalog metric to its (file path, dataset) in the storage engine.
Resolver = Callable[["Metric"], tuple[str, str]]


def percentile_label(percentile: float) -> str:
    """Return the statistic label of a percentile: ``50th`` or ``95.50th``."""
    if float(percentile).is_integer():
        return f"{percentile:.0f}th"
    return f"{percentile:.2f}th"


def _number(value: float) -> str:
    return repr(float(value))


def _scale(plan: SeriesPlan, name: str, source: str, factor: float) -> None:
    if factor != 0:
        plan.compute(name, f"{source},{_number(factor)},*")
    else:
        plan.compute(name, source)


def add_statistics(
    plan: SeriesPlan, serie: str, item: str, percentiles: Iterable[float]
) -> None:
    """Request min/avg/max/last and percentile readings for one output series."""
    item = item.replace("%", "%%")

    for label, function in (
        ("min", "MINIMUM"),
        ("avg", "AVERAGE"),
        ("max", "MAXIMUM"),
        ("last", "LAST"),
    ):
        plan.reduce(f"{serie}-{label}", f"{serie},{function}")
        plan.print(f"{serie}-{label}", f"{item},{label},%lf")

    for index, percentile in enumerate(percentiles):
        # Undefined samples count as zero.
        plan.compute(f"{serie}-cdef{index}", f"{serie},UN,0,{serie},IF")
        plan.reduce(
            f"{serie}-vdef{index}", f"{serie}-cdef{index},{_number(percentile)},PERCENT"
        )
        plan.print(f"{serie}-vdef{index}", f"{item},{percentile_label(percentile)},%lf")


def normalized_type(query: GroupQuery) -> GroupType:
    if len(query.series) == 1:
        return GroupType.NONE
    try:
        return GroupType(query.type)
    except ValueError:
        raise QueryError(f"unknown `{query.type}' operator type") from None


def build_plan(
    query: GroupQuery,
    resolve: Resolver,
    percentiles: Iterable[float] = (),
    info_only: bool = False,
) -> tuple[SeriesPlan, dict[str, str]]:
    """Build the storage plan of a query.

    Returns the plan and a mapping of plan series name → output name.
    """
    if not query.series:
        raise QueryError("group has no series")

    group_type = normalized_type(query)
    contributing = [serie for serie in query.series if serie.metric is not None]
    if not contributing:
        raise QueryError("group has no resolvable series")

    percentiles = list(percentiles)
    plan = SeriesPlan()
    outputs: dict[str, str] = {}

    if group_type == GroupType.NONE:
        for count, serie in enumerate(contributing):
            name = f"serie{count}"
            path, dataset = resolve(serie.metric)

            plan.define(f"{name}-orig0", path, dataset)
            _scale(plan, f"{name}-orig1", f"{name}-orig0", serie.scale)
            _scale(plan, name, f"{name}-orig1", query.scale)

            add_statistics(plan, name, serie.name, percentiles)
            if not info_only:
                plan.export(name, name)

            outputs[name] = serie.name

    else:
        name = "serie0"
        stack: list[str] = []

        for index, serie in enumerate(query.series):
            if serie.metric is None:
                continue

            temp = f"{name}-tmp{index}"
            path, dataset = resolve(serie.metric)
            plan.define(temp, path, dataset)

            if stack:
                stack.extend([temp, "+"])
            else:
                stack.append(temp)

        if group_type == GroupType.AVG:
            stack.extend([str(len(contributing)), "/"])

        plan.compute(f"{name}-orig", ",".join(stack))
        _scale(plan, name, f"{name}-orig", query.scale)

        add_statistics(plan, name, query.name, percentiles)
        if not info_only:
            plan.export(name, name)

        outputs[name] = query.name

    return plan, outputs


def parse_info(lines: Iterable[str], results: dict[str, PlotResult]) -> None:
    """Merge ``"<output>,<label>,<value>"`` print lines into `results`."""
    for line in lines:
        chunks = line.rsplit(",", 2)
        if len(chunks) != 3:
            logger.warning(f"ignoring malformed statistics line `{line}'")
            continue

        item, label, raw = chunks
        try:
            value = float(raw)
        except ValueError:
            value = math.nan

        results.setdefault(item, PlotResult()).info[label] = value


def evaluate(
    engine: StorageEngine,
    query: GroupQuery,
    resolve: Resolver,
    start: datetime,
    end: datetime,
    step: timedelta,
    percentiles: Iterable[float] = (),
    info_only: bool = False,
) -> dict[str, PlotResult]:
    """Evaluate a group query against a storage engine."""
    plan, outputs = build_plan(query, resolve, percentiles, info_only)
    results: dict[str, PlotResult] = {}

    if not info_only:
        data = engine.export(plan, start, end, step)
        for index, legend in enumerate(data.legends):
            results[outputs.get(legend, legend)] = PlotResult(plots=data.column(index))

    parse_info(engine.graph(plan, start, end), results)

    return results
