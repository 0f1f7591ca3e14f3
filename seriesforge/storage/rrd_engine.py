"""RRDtool storage engine — renders series plans for the rrdtool bindings."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta

from seriesforge.errors import MissingOptionalDependencyError, StorageError
from seriesforge.storage.base import ExportResult, PlanStep, SeriesPlan, StorageEngine
from seriesforge.utils.time import to_epoch, to_seconds

try:
    import rrdtool
except ImportError as exc:  # pragma: no cover - depends on the environment
    raise MissingOptionalDependencyError("rrd") from exc

logger = logging.getLogger("seriesforge.storage.rrd_engine")

_DS_INDEX_RE = re.compile(r"^ds\[(?P<name>.+)\]\.index$")
_PRINT_KEY_RE = re.compile(r"^print\[(?P<index>\d+)\]$")


def _escape(value: str) -> str:
    # Colons separate fields in rrdtool graph/xport arguments.
    return value.replace(":", "\\:")


def render_step(step: PlanStep) -> str:
    """Render one plan step as an rrdtool graph/xport argument."""
    if step.kind == "define":
        return f"DEF:{step.name}={_escape(step.path)}:{step.dataset}:{step.cf}"
    if step.kind == "compute":
        return f"CDEF:{step.name}={step.expression}"
    if step.kind == "reduce":
        return f"VDEF:{step.name}={step.expression}"
    if step.kind == "print":
        return f"PRINT:{step.name}:{_escape(step.expression)}"
    if step.kind == "export":
        return f"XPORT:{step.name}:{_escape(step.expression)}"
    raise ValueError(f"unknown plan step kind `{step.kind}'")


class RRDToolEngine(StorageEngine):
    """Storage engine backed by round-robin database files."""

    def datasets(self, path: str) -> list[str]:
        try:
            info = rrdtool.info(path)
        except rrdtool.OperationalError as exc:
            raise StorageError(str(exc)) from exc

        names = []
        for key in info:
            match = _DS_INDEX_RE.match(key)
            if match:
                names.append(match.group("name"))
        return sorted(names)

    def export(
        self, plan: SeriesPlan, start: datetime, end: datetime, step: timedelta
    ) -> ExportResult:
        args = [
            "--start", str(to_epoch(start)),
            "--end", str(to_epoch(end)),
            "--step", str(to_seconds(step)),
        ]
        args.extend(render_step(item) for item in plan.of_kind("define", "compute", "export"))

        try:
            data = rrdtool.xport(*args)
        except rrdtool.OperationalError as exc:
            raise StorageError(str(exc)) from exc

        return ExportResult(
            legends=list(data["meta"]["legend"]),
            rows=[tuple(row) for row in data["data"]],
        )

    def graph(self, plan: SeriesPlan, start: datetime, end: datetime) -> list[str]:
        args = ["-", "--start", str(to_epoch(start)), "--end", str(to_epoch(end))]
        args.extend(
            render_step(item) for item in plan.of_kind("define", "compute", "reduce", "print")
        )

        try:
            info = rrdtool.graphv(*args)
        except rrdtool.OperationalError as exc:
            raise StorageError(str(exc)) from exc

        lines: list[tuple[int, str]] = []
        for key, value in info.items():
            match = _PRINT_KEY_RE.match(key)
            if match:
                lines.append((int(match.group("index")), str(value)))

        logger.debug(f"graph produced {len(lines)} print lines")
        return [value for _, value in sorted(lines)]
