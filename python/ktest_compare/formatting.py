from __future__ import annotations

import logging
from typing import Callable, TextIO

from .model import ComparisonRow, MetricSeries, Table

logger = logging.getLogger(__name__)

Scaler = Callable[[float], str]

RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
RESET = "\033[0m"

# Means below this many nanoseconds sit at timer resolution.
TINY_VALUE_NS = 32.0

MIN_SAMPLES = 5

_TIME_STEPS = (
    (99.5, "{:.0f}s", 1.0),
    (9.95, "{:.1f}s", 1.0),
    (0.995, "{:.2f}s", 1.0),
    (0.0995, "{:.0f}ms", 1e3),
    (0.00995, "{:.1f}ms", 1e3),
    (0.000995, "{:.2f}ms", 1e3),
    (0.0000995, "{:.0f}µs", 1e6),
    (0.00000995, "{:.1f}µs", 1e6),
    (0.000000995, "{:.2f}µs", 1e6),
    (0.0000000995, "{:.0f}ns", 1e9),
    (0.00000000995, "{:.1f}ns", 1e9),
)

_SI_STEPS = (
    (99.5e12, "{:.0f}", 1e12, "T"),
    (9.95e12, "{:.1f}", 1e12, "T"),
    (0.995e12, "{:.2f}", 1e12, "T"),
    (99.5e9, "{:.0f}", 1e9, "G"),
    (9.95e9, "{:.1f}", 1e9, "G"),
    (0.995e9, "{:.2f}", 1e9, "G"),
    (99.5e6, "{:.0f}", 1e6, "M"),
    (9.95e6, "{:.1f}", 1e6, "M"),
    (0.995e6, "{:.2f}", 1e6, "M"),
    (99.5e3, "{:.0f}", 1e3, "k"),
    (9.95e3, "{:.1f}", 1e3, "k"),
    (0.995e3, "{:.2f}", 1e3, "k"),
    (99.5, "{:.0f}", 1.0, ""),
    (9.95, "{:.1f}", 1.0, ""),
)


def time_scaler(ns: float) -> Scaler:
    seconds = ns / 1e9
    fmt, scale = "{:.2f}ns", 1e9
    for threshold, step_fmt, step_scale in _TIME_STEPS:
        if seconds >= threshold:
            fmt, scale = step_fmt, step_scale
            break
    return lambda value: fmt.format(value / 1e9 * scale)


def new_scaler(value: float, unit: str) -> Scaler:
    if unit == "ns/op":
        return time_scaler(value)

    prescale = 1e6 if unit == "MB/s" else 1.0
    fmt, scale, suffix = "{:.2f}", 1.0, ""
    for threshold, step_fmt, step_scale, step_suffix in _SI_STEPS:
        if value * prescale >= threshold:
            fmt, scale, suffix = step_fmt, step_scale, step_suffix
            break
    if unit == "B/op":
        suffix += "B"
    elif unit == "MB/s":
        suffix += "B/s"
    scale /= prescale
    return lambda v: fmt.format(v / scale) + suffix


def format_metric(series: MetricSeries, scaler: Scaler) -> str:
    mean = scaler(series.mean)
    if series.mean == 0 or series.max == 0:
        return mean
    return f"{mean} ±{series.spread() * 100.0:.0f}%"


def resolve_colorize(mode: str, stream: TextIO) -> bool:
    value = mode.lower()
    if value == "auto":
        isatty = getattr(stream, "isatty", None)
        return bool(isatty and isatty())
    if value in {"on", "true", "yes", "1"}:
        return True
    if value in {"off", "false", "no", "0"}:
        return False
    raise ValueError(f"invalid colorize argument '{mode}'; expected auto, true or false")


def noise_band(row: ComparisonRow) -> float:
    sides = (row.old, row.new)
    band = sum(100.0 * side.spread() for side in sides if side.max != side.min)
    if all(side.mean < TINY_VALUE_NS for side in sides):
        band *= 2
    return band + 1


def colorize_delta(row: ComparisonRow) -> str:
    if abs(row.pct_delta) < noise_band(row):
        return f"{YELLOW}~{RESET}"
    if row.delta.startswith("+"):
        return f"{RED}{row.delta}{RESET}"
    if row.delta.startswith("-"):
        return f"{GREEN}{row.delta}{RESET}"
    return f"{YELLOW}{row.delta}{RESET}"


def warn_undersampled(tables: list[Table]) -> list[str]:
    warned: list[str] = []
    for table in tables:
        for row in table.rows:
            if row.is_aggregate:
                continue
            if min(len(row.old.values), len(row.new.values)) < MIN_SAMPLES:
                logger.warning("%s needs more samples, re-run with --count=5 or higher?", row.benchmark)
                warned.append(row.benchmark)
    return warned


def _row_cells(row: ComparisonRow, colorize: bool) -> list[str]:
    scaler = new_scaler(row.old.mean, row.unit)
    delta = colorize_delta(row) if colorize else row.delta
    if delta == "~":
        delta = "~   "
    return [row.benchmark, format_metric(row.old, scaler), format_metric(row.new, scaler), delta, row.note]


def render_text_table(
    tables: list[Table],
    *,
    colorize: bool = False,
    old_label: str = "old",
    new_label: str = "new",
) -> str:
    blocks: list[list[list[str]]] = []
    for table in tables:
        block = [["name", f"{old_label} {table.metric}", f"{new_label} {table.metric}", "delta"]]
        if table.group:
            block.append([table.group])
        block.extend(_row_cells(row, colorize) for row in table.rows)
        blocks.append(block)

    widths: list[int] = []
    for block in blocks:
        for cells in block:
            if len(cells) == 1:
                continue
            while len(widths) < len(cells):
                widths.append(0)
            for idx, cell in enumerate(cells):
                widths[idx] = max(widths[idx], len(cell))

    lines: list[str] = []
    for idx, block in enumerate(blocks):
        if idx > 0:
            lines.append("")
        header = block[0]
        lines.append(
            "  ".join(
                [f"{header[0]:<{widths[0]}}"]
                + [f"{cell:<{widths[i]}}" for i, cell in enumerate(header[1:-1], start=1)]
                + [header[-1]]
            )
        )
        for cells in block[1:]:
            if len(cells) == 1:
                lines.append(cells[0])
                continue
            parts = [f"{cells[0]:<{widths[0]}}"]
            for i, cell in enumerate(cells[1:], start=1):
                if i == len(cells) - 1 and cell.startswith("("):
                    parts.append(cell)
                else:
                    parts.append(f"{cell:>{widths[i]}}")
            lines.append("  ".join(parts).rstrip())
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
