"""Base interfaces for time-series storage engines."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import numpy as np

# Consolidation function used when reading archived samples.
DEFAULT_CF = "AVERAGE"


@dataclass(frozen=True)
class PlanStep:
    """One instruction of a series plan.

    `kind` is one of "define", "compute", "reduce", "print" or "export".
    """

    kind: str
    name: str
    expression: str = ""
    path: str = ""
    dataset: str = ""
    cf: str = DEFAULT_CF


@dataclass
class SeriesPlan:
    """Engine-neutral request plan.

    Expressions are RPN strings over names defined earlier in the plan
    (e.g. ``"a,b,+,2,/"``).
    """

    steps: list[PlanStep] = field(default_factory=list)

    def define(self, name: str, path: str, dataset: str, cf: str = DEFAULT_CF) -> None:
        self.steps.append(PlanStep("define", name, path=path, dataset=dataset, cf=cf))

    def compute(self, name: str, expression: str) -> None:
        self.steps.append(PlanStep("compute", name, expression=expression))

    def reduce(self, name: str, expression: str) -> None:
        self.steps.append(PlanStep("reduce", name, expression=expression))

    def print(self, name: str, fmt: str) -> None:
        self.steps.append(PlanStep("print", name, expression=fmt))

    def export(self, name: str, legend: str) -> None:
        self.steps.append(PlanStep("export", name, expression=legend))

    def of_kind(self, *kinds: str) -> list[PlanStep]:
        return [step for step in self.steps if step.kind in kinds]

    def __len__(self) -> int:
        return len(self.steps)


@dataclass
class ExportResult:
    """Samples exported for a set of named series, one column per legend."""

    legends: list[str]
    rows: list[tuple[Optional[float], ...]]

    def column(self, index: int) -> list[float]:
        """Return one column as floats, unknown samples as NaN."""
        if not self.rows:
            return []
        data = np.array(self.rows, dtype=np.float64).reshape(len(self.rows), len(self.legends))
        return data[:, index].tolist()


class StorageEngine(ABC):
    """Narrow interface the connectors need from a storage engine.

    Implementations raise `StorageError` with the engine's own message.
    """

    @abstractmethod
    def datasets(self, path: str) -> list[str]:
        """Return the dataset names stored in a file."""
        ...

    @abstractmethod
    def export(
        self, plan: SeriesPlan, start: datetime, end: datetime, step: timedelta
    ) -> ExportResult:
        """Export samples of every `export` step of the plan."""
        ...

    @abstractmethod
    def graph(self, plan: SeriesPlan, start: datetime, end: datetime) -> list[str]:
        """Evaluate the plan and return its rendered `print` lines, in order."""
        ...
