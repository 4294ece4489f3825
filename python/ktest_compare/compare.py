from __future__ import annotations

import argparse
import logging
import math
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
from scipy import stats

from .formatting import render_text_table, resolve_colorize, warn_undersampled
from .model import (
    GEOMEAN_NAME,
    IMPROVEMENT,
    NOT_SIGNIFICANT,
    REGRESSION,
    ComparisonRow,
    MetricSeries,
    Table,
)
from .samples import SampleStore

logger = logging.getLogger(__name__)

DELTA_TESTS = {
    "none": "none",
    "u": "u-test",
    "u-test": "u-test",
    "utest": "u-test",
    "t": "t-test",
    "t-test": "t-test",
    "ttest": "t-test",
}

SORT_ORDERS = {
    "none": "none",
    "name": "by-name",
    "by-name": "by-name",
    "delta": "by-delta",
    "by-delta": "by-delta",
}

# Samples below this value make the geometric mean meaningless (zero allocation
# counts, sub-resolution timings).
TRUST_EPSILON = 0.01

NEUTRAL_DELTAS = {"~", "0.00%", "+0.00%", "-0.00%"}

METRIC_NAMES = {
    "ns/op": "time/op",
    "B/op": "alloc/op",
    "allocs/op": "allocs/op",
    "MB/s": "speed",
}


@dataclass(frozen=True)
class CompareOptions:
    delta_test: str = "u-test"
    alpha: float = 0.05
    add_geomean: bool = False
    split_by: tuple[str, ...] = ()
    order: str = "none"
    reverse: bool = False


def normalize_delta_test(name: str) -> str:
    value = DELTA_TESTS.get(name.lower())
    if value is None:
        raise ValueError(
            f"invalid delta-test argument '{name}'; expected one of: none, utest, ttest"
        )
    return value


def parse_sort_order(value: str) -> tuple[str, bool]:
    reverse = value.startswith("-")
    name = value[1:] if reverse else value
    order = SORT_ORDERS.get(name)
    if order is None:
        raise ValueError(f"invalid sort argument '{value}'; expected [-]delta, [-]name or none")
    return order, reverse


def metric_name(unit: str) -> str:
    return METRIC_NAMES.get(unit, unit)


def summarize_series(unit: str, values: Sequence[float], labels=()) -> MetricSeries:
    series = MetricSeries(unit=unit, labels=tuple(labels), values=list(values))
    if not series.values:
        return series
    q1, q3 = np.percentile(series.values, [25, 75], method="median_unbiased")
    lo = q1 - 1.5 * (q3 - q1)
    hi = q3 + 1.5 * (q3 - q1)
    series.rvalues = [value for value in series.values if lo <= value <= hi]
    if series.rvalues:
        series.min = min(series.rvalues)
        series.max = max(series.rvalues)
        series.mean = sum(series.rvalues) / len(series.rvalues)
    return series


def significance(old: MetricSeries, new: MetricSeries, delta_test: str) -> tuple[float | None, str]:
    if delta_test == "none":
        return None, ""
    if len(old.rvalues) < 2 or len(new.rvalues) < 2:
        return None, "(too few samples)"
    if delta_test == "u-test":
        if len(set(old.rvalues) | set(new.rvalues)) == 1:
            return None, "(all equal)"
        result = stats.mannwhitneyu(old.rvalues, new.rvalues, alternative="two-sided")
    else:
        if np.var(old.rvalues) == 0 and np.var(new.rvalues) == 0:
            return None, "(zero variance)"
        result = stats.ttest_ind(old.rvalues, new.rvalues, equal_var=False)
    p_value = float(result.pvalue)
    if math.isnan(p_value):
        return None, "(p-value undefined)"
    return p_value, f"(p={p_value:.3f} n={len(old.rvalues)}+{len(new.rvalues)})"


def classify_delta(pct: float, delta: str) -> tuple[str, str]:
    if delta in NEUTRAL_DELTAS:
        return "~", NOT_SIGNIFICANT
    if pct > 0:
        return delta, REGRESSION
    if pct < 0:
        return delta, IMPROVEMENT
    return "~", NOT_SIGNIFICANT


def format_pct_delta(old_mean: float, new_mean: float) -> tuple[float, str]:
    if new_mean == old_mean:
        return 0.0, "0.00%"
    if old_mean == 0:
        return math.inf, "+Inf%"
    pct = ((new_mean / old_mean) - 1.0) * 100.0
    return pct, f"{pct:+.2f}%"


def compare_series(
    benchmark: str,
    old: MetricSeries,
    new: MetricSeries,
    *,
    delta_test: str,
    alpha: float,
) -> ComparisonRow:
    p_value, note = significance(old, new, delta_test)
    if delta_test == "none":
        significant = True
    else:
        significant = p_value is not None and p_value < alpha

    pct, delta = 0.0, "~"
    if significant:
        pct, delta = format_pct_delta(old.mean, new.mean)
    delta, classification = classify_delta(pct, delta)
    return ComparisonRow(
        benchmark=benchmark,
        unit=old.unit,
        old=old,
        new=new,
        pct_delta=pct,
        delta=delta,
        classification=classification,
        p_value=p_value,
        note=note,
    )


def geomean_row(rows: list[ComparisonRow], unit: str) -> ComparisonRow | None:
    for row in rows:
        for side in (row.old, row.new):
            if any(value < TRUST_EPSILON for value in side.rvalues):
                return None

    old_means = [row.old.mean for row in rows if row.old.mean != 0]
    new_means = [row.new.mean for row in rows if row.new.mean != 0]
    # A single contributing row would just repeat that row.
    if max(len(old_means), len(new_means)) <= 1 or not old_means or not new_means:
        return None

    old_geomean = float(stats.gmean(old_means))
    new_geomean = float(stats.gmean(new_means))
    pct, delta = format_pct_delta(old_geomean, new_geomean)
    delta, classification = classify_delta(pct, delta)
    return ComparisonRow(
        benchmark=GEOMEAN_NAME,
        unit=unit,
        old=MetricSeries(unit=unit, mean=old_geomean),
        new=MetricSeries(unit=unit, mean=new_geomean),
        pct_delta=pct,
        delta=delta,
        classification=classification,
    )


def build_tables(old: SampleStore, new: SampleStore, options: CompareOptions | None = None) -> list[Table]:
    options = options or CompareOptions()
    delta_test = normalize_delta_test(options.delta_test)
    order, reverse = parse_sort_order(options.order)
    reverse = reverse or options.reverse
    if not (0.0 < options.alpha <= 1.0):
        raise ValueError("alpha must be in (0, 1]")

    old_groups = _group_values(old, options.split_by)
    new_groups = _group_values(new, options.split_by)
    table_keys = list(dict.fromkeys([*old_groups, *new_groups]))

    tables: list[Table] = []
    for group, unit in table_keys:
        old_benchmarks = old_groups.get((group, unit), {})
        new_benchmarks = new_groups.get((group, unit), {})
        rows: list[ComparisonRow] = []
        for benchmark in dict.fromkeys([*old_benchmarks, *new_benchmarks]):
            old_values = old_benchmarks.get(benchmark)
            new_values = new_benchmarks.get(benchmark)
            if not old_values or not new_values:
                logger.debug("%s: %s has samples on one side only, skipping", benchmark, unit)
                continue
            old_series = summarize_series(unit, old_values)
            new_series = summarize_series(unit, new_values)
            if not old_series.rvalues or not new_series.rvalues:
                continue
            rows.append(
                compare_series(
                    benchmark,
                    old_series,
                    new_series,
                    delta_test=delta_test,
                    alpha=options.alpha,
                )
            )
        if not rows:
            continue
        rows = sort_rows(rows, order, reverse)
        if options.add_geomean:
            aggregate = geomean_row(rows, unit)
            if aggregate is not None:
                rows.append(aggregate)
        tables.append(Table(unit=unit, metric=metric_name(unit), group=group, rows=rows))
    return tables


def sort_rows(rows: list[ComparisonRow], order: str, reverse: bool = False) -> list[ComparisonRow]:
    if order == "by-name":
        return sorted(rows, key=lambda row: row.benchmark, reverse=reverse)
    if order == "by-delta":
        return sorted(rows, key=delta_impact, reverse=reverse)
    return list(rows)


def delta_impact(row: ComparisonRow) -> float:
    """Sort key putting the largest regressions first and the largest improvements last."""
    if row.classification == REGRESSION:
        return -abs(row.pct_delta)
    if row.classification == IMPROVEMENT:
        return abs(row.pct_delta)
    return 0.0


def render_comparison(
    tables: list[Table],
    *,
    colorize: bool,
    old_label: str = "old",
    new_label: str = "new",
) -> str:
    warn_undersampled(tables)
    return render_text_table(tables, colorize=colorize, old_label=old_label, new_label=new_label)


def _group_values(
    store: SampleStore, split_by: Sequence[str]
) -> dict[tuple[str, str], dict[str, list[float]]]:
    grouped: dict[tuple[str, str], dict[str, list[float]]] = {}
    for key, series in store:
        labels = dict(key.labels)
        group = " ".join(f"{name}:{labels[name]}" for name in split_by if name in labels)
        values = grouped.setdefault((group, key.unit), {}).setdefault(key.benchmark, [])
        values.extend(series.values)
    return grouped


def _load(path: Path, name: str) -> SampleStore:
    store = SampleStore(name)
    if store.add_file(path) == 0:
        logger.warning("%s: no benchmark samples found", path)
    return store


def add_benchstat_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("old", type=Path)
    parser.add_argument("new", type=Path)
    parser.add_argument(
        "--delta-test",
        default="utest",
        help="significance test to apply to delta: utest, ttest, or none",
    )
    parser.add_argument("--alpha", type=float, default=0.05, help="consider change significant if p < alpha")
    parser.add_argument("--geomean", action="store_true", help="print the geometric mean of each file")
    parser.add_argument("--split", default="pkg,goos,goarch", help="split benchmarks by labels")
    parser.add_argument("--sort", default="none", help="sort by order: [-]delta, [-]name, none")
    parser.add_argument("--colorize", default="auto", help="colorize output: auto, true, false")


def run_benchstat(args: argparse.Namespace) -> int:
    order, reverse = parse_sort_order(args.sort)
    options = CompareOptions(
        delta_test=normalize_delta_test(args.delta_test),
        alpha=args.alpha,
        add_geomean=args.geomean,
        split_by=tuple(key for key in args.split.split(",") if key),
        order=order,
        reverse=reverse,
    )
    tables = build_tables(_load(args.old, "old"), _load(args.new, "new"), options)
    sys.stdout.write(render_comparison(tables, colorize=resolve_colorize(args.colorize, sys.stdout)))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ktest benchstat",
        description="Compute and compare statistics about benchmark results",
    )
    add_benchstat_arguments(parser)
    return run_benchstat(parser.parse_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
