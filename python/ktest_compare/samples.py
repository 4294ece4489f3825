from __future__ import annotations

import re
from pathlib import Path
from typing import Iterator, Mapping

from .model import Labels, MetricSeries, SeriesKey

BENCHMARK_MARKER = "Benchmark"

CONFIG_LINE = re.compile(r"^([a-z][^\sA-Z:]*):(?:\s+(.*))?$")


class SampleStore:
    """In-memory benchmark samples keyed by (labels, benchmark, unit).

    Series keep the order in which they were first seen so that tables
    list benchmarks the way the benchmark run printed them.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._series: dict[SeriesKey, MetricSeries] = {}

    def __len__(self) -> int:
        return len(self._series)

    def __iter__(self) -> Iterator[tuple[SeriesKey, MetricSeries]]:
        return iter(self._series.items())

    def benchmarks(self) -> list[str]:
        seen: dict[str, None] = {}
        for key in self._series:
            seen.setdefault(key.benchmark, None)
        return list(seen)

    def add(self, labels: Mapping[str, str] | Labels, benchmark: str, unit: str, value: float) -> None:
        normalized = _normalize_labels(labels)
        key = SeriesKey(labels=normalized, benchmark=benchmark, unit=unit)
        series = self._series.get(key)
        if series is None:
            series = MetricSeries(unit=unit, labels=normalized)
            self._series[key] = series
        series.values.append(float(value))

    def add_text(self, text: str) -> int:
        labels: dict[str, str] = {}
        added = 0
        for line in text.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            config = CONFIG_LINE.match(stripped)
            if config:
                labels[config.group(1)] = (config.group(2) or "").strip()
                continue
            record = parse_record_line(stripped)
            if record is None:
                continue
            name, measurements = record
            for value, unit in measurements:
                self.add(labels, name, unit, value)
                added += 1
        return added

    def add_file(self, path: Path | str) -> int:
        return self.add_text(Path(path).read_text(encoding="utf-8"))


def parse_record_line(line: str) -> tuple[str, list[tuple[float, str]]] | None:
    fields = line.split()
    if len(fields) < 4 or not fields[0].startswith(BENCHMARK_MARKER):
        return None
    try:
        iterations = int(fields[1])
    except ValueError:
        return None
    if iterations <= 0:
        return None
    name = fields[0][len(BENCHMARK_MARKER) :] or fields[0]
    measurements: list[tuple[float, str]] = []
    for idx in range(2, len(fields) - 1, 2):
        try:
            value = float(fields[idx])
        except ValueError:
            continue
        measurements.append((value, fields[idx + 1]))
    if not measurements:
        return None
    return name, measurements


def store_from_text(text: str, name: str = "") -> SampleStore:
    store = SampleStore(name)
    store.add_text(text)
    return store


def _normalize_labels(labels: Mapping[str, str] | Labels) -> Labels:
    if isinstance(labels, Mapping):
        return tuple(sorted(labels.items()))
    return tuple(sorted(labels))
