"""Shared test fixtures for SeriesForge tests."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pytest
import pytest_asyncio

from seriesforge.catalog.catalog import Catalog
from seriesforge.connectors.registry import build_default_registry
from seriesforge.errors import StorageError
from seriesforge.storage.base import ExportResult, SeriesPlan, StorageEngine

PATTERN = r"(?P<source>[^/]+)/(?P<metric>.+)\.rrd$"

_BINARY = {
    "+": np.add,
    "-": np.subtract,
    "*": np.multiply,
    "/": np.divide,
}


def _rpn(expression: str, values: dict[str, np.ndarray]):
    stack: list = []
    for token in expression.split(","):
        if token in values:
            stack.append(values[token])
        elif token in _BINARY:
            right = stack.pop()
            left = stack.pop()
            stack.append(_BINARY[token](left, right))
        elif token == "UN":
            stack.append(np.isnan(stack.pop()).astype(np.float64))
        elif token == "IF":
            if_false = stack.pop()
            if_true = stack.pop()
            condition = stack.pop()
            stack.append(np.where(condition != 0, if_true, if_false))
        else:
            stack.append(float(token))
    return stack.pop()


def _reduce(expression: str, values: dict[str, np.ndarray]) -> float:
    tokens = expression.split(",")
    data = values[tokens[0]]
    defined = data[~np.isnan(data)]
    if defined.size == 0:
        return math.nan

    function = tokens[-1]
    if function == "MINIMUM":
        return float(defined.min())
    if function == "AVERAGE":
        return float(defined.mean())
    if function == "MAXIMUM":
        return float(defined.max())
    if function == "LAST":
        return float(defined[-1])
    if function == "PERCENT":
        ordered = np.sort(defined)
        index = int((ordered.size - 1) * float(tokens[1]) / 100)
        return float(ordered[index])
    raise ValueError(f"unsupported reduce function {function}")


class FakeStorageEngine(StorageEngine):
    """In-memory storage engine evaluating series plans with numpy."""

    def __init__(self) -> None:
        self.files: dict[str, dict[str, list[float]]] = {}
        self.unreadable: set[str] = set()
        self.calls: list[str] = []
        self.export_error: str | None = None
        self.extra_print_lines: list[str] = []

    def add_file(self, path: Path, **datasets: list[float]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"RRD")
        self.files[str(path)] = datasets

    def datasets(self, path: str) -> list[str]:
        self.calls.append("datasets")
        if path in self.unreadable or path not in self.files:
            raise StorageError(f"opening '{path}': No such file or directory")
        return sorted(self.files[path])

    def _series(self, plan: SeriesPlan) -> dict[str, np.ndarray]:
        values: dict[str, np.ndarray] = {}
        for step in plan.of_kind("define", "compute"):
            if step.kind == "define":
                values[step.name] = np.array(self.files[step.path][step.dataset], dtype=np.float64)
            else:
                values[step.name] = np.asarray(_rpn(step.expression, values), dtype=np.float64)
        return values

    def export(
        self, plan: SeriesPlan, start: datetime, end: datetime, step: timedelta
    ) -> ExportResult:
        self.calls.append("export")
        if self.export_error:
            raise StorageError(self.export_error)

        values = self._series(plan)
        exports = plan.of_kind("export")
        columns = [values[item.name] for item in exports]
        rows = [tuple(float(value) for value in row) for row in zip(*columns)]
        return ExportResult(legends=[item.expression for item in exports], rows=rows)

    def graph(self, plan: SeriesPlan, start: datetime, end: datetime) -> list[str]:
        self.calls.append("graph")
        values = self._series(plan)
        scalars = {item.name: _reduce(item.expression, values) for item in plan.of_kind("reduce")}

        lines = []
        for item in plan.of_kind("print"):
            text = item.expression.replace("%lf", f"{scalars[item.name]:f}")
            lines.append(text.replace("%%", "%"))
        return lines + self.extra_print_lines


@pytest.fixture
def engine() -> FakeStorageEngine:
    return FakeStorageEngine()


@pytest.fixture
def registry(engine):
    return build_default_registry(engine=engine)


@pytest.fixture
def catalog(registry) -> Catalog:
    return Catalog(registry)


@pytest.fixture
def rrd_root(tmp_path, engine) -> Path:
    """A small collectd-like tree of .rrd files."""
    root = tmp_path / "rrd"
    engine.add_file(root / "host1" / "cpu.rrd", value=[2.0, 2.0, 2.0])
    engine.add_file(root / "host2" / "cpu.rrd", value=[4.0, 4.0, 4.0])
    engine.add_file(root / "host3" / "cpu.rrd", value=[9.0, 9.0, 9.0])
    engine.add_file(
        root / "host1" / "load.rrd",
        shortterm=[1.0, 2.0, 3.0, 4.0],
        midterm=[0.5, math.nan, 1.5, 2.5],
    )
    return root


@pytest_asyncio.fixture
async def populated(catalog, rrd_root) -> Catalog:
    """Catalog with one discovered `rrd` origin named `local`."""
    catalog.add_origin("local", {"type": "rrd", "path": str(rrd_root), "pattern": PATTERN})
    await catalog.update()
    return catalog
