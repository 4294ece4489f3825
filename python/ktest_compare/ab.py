from __future__ import annotations

import re
from dataclasses import dataclass

from .compare import CompareOptions, build_tables, render_comparison
from .samples import BENCHMARK_MARKER, SampleStore, parse_record_line


@dataclass(frozen=True)
class ABResult:
    old: SampleStore
    new: SampleStore
    add_geomean: bool = False


def compile_pattern(pattern: str, which: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"compile {which} benchmark pattern {pattern!r}: {exc}") from exc


def split_by_patterns(output: str, old_pattern: str, new_pattern: str) -> ABResult:
    """Divide one combined benchmark run into old and new sample sets.

    Each pattern has to select exactly one benchmark and the two selections
    must differ. Both sides are stored under one shared row name so that the
    comparator pairs them.
    """
    old_re = compile_pattern(old_pattern, "old (first)")
    new_re = compile_pattern(new_pattern, "new (second)")

    old_name = ""
    new_name = ""
    old_records: list[list[tuple[float, str]]] = []
    new_records: list[list[tuple[float, str]]] = []
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith(BENCHMARK_MARKER) or "\t" not in line:
            continue
        bench_name = line.split("\t", 1)[0]
        record = parse_record_line(line)
        if record is None:
            continue
        _, measurements = record
        if old_re.search(bench_name):
            if old_name and old_name != bench_name:
                raise ValueError(
                    f"{old_pattern} regexp matched more than one benchmark: {old_name} and {bench_name}"
                )
            old_name = bench_name
            old_records.append(measurements)
        if new_re.search(bench_name):
            if new_name and new_name != bench_name:
                raise ValueError(
                    f"{new_pattern} regexp matched more than one benchmark: {new_name} and {bench_name}"
                )
            new_name = bench_name
            new_records.append(measurements)

    if old_name and old_name == new_name:
        raise ValueError(f"old/new regexp both matched {old_name}")
    if not old_name:
        raise ValueError(f"{old_pattern} regexp matched no benchmarks")
    if not new_name:
        raise ValueError(f"{new_pattern} regexp matched no benchmarks")

    row_name = f"{_display_name(old_name)} vs {_display_name(new_name)}"
    old = SampleStore("old")
    new = SampleStore("new")
    for store, records in ((old, old_records), (new, new_records)):
        for measurements in records:
            for value, unit in measurements:
                store.add({}, row_name, unit, value)
    return ABResult(old=old, new=new)


def files_ab(old_output: str, new_output: str, old_key: str, new_key: str) -> ABResult:
    """Pair two independently produced runs by renaming the new class prefix."""
    new_output = new_output.replace(f"{new_key}::", f"{old_key}::")
    old = SampleStore("old")
    old.add_text(old_output)
    new = SampleStore("new")
    new.add_text(new_output)
    return ABResult(old=old, new=new, add_geomean=True)


def render_ab(result: ABResult, *, colorize: bool = True) -> str:
    options = CompareOptions(delta_test="u-test", alpha=0.05, add_geomean=result.add_geomean)
    tables = build_tables(result.old, result.new, options)
    return render_comparison(tables, colorize=colorize)


def _display_name(bench_name: str) -> str:
    return bench_name[len(BENCHMARK_MARKER) :] or bench_name
