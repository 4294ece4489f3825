from __future__ import annotations

from dataclasses import dataclass, field

NOT_SIGNIFICANT = "not-significant"
REGRESSION = "regression"
IMPROVEMENT = "improvement"

GEOMEAN_NAME = "[Geo mean]"

Labels = tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class SeriesKey:
    labels: Labels
    benchmark: str
    unit: str


@dataclass
class MetricSeries:
    unit: str
    labels: Labels = ()
    values: list[float] = field(default_factory=list)
    rvalues: list[float] = field(default_factory=list)
    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0

    def spread(self) -> float:
        if self.mean == 0 or self.max == 0:
            return 0.0
        return max(1 - self.min / self.mean, self.max / self.mean - 1)


@dataclass(frozen=True)
class ComparisonRow:
    benchmark: str
    unit: str
    old: MetricSeries
    new: MetricSeries
    pct_delta: float
    delta: str
    classification: str
    p_value: float | None = None
    note: str = ""

    @property
    def is_aggregate(self) -> bool:
        return self.benchmark == GEOMEAN_NAME


@dataclass(frozen=True)
class Table:
    unit: str
    metric: str
    group: str
    rows: list[ComparisonRow]
