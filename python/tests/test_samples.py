from __future__ import annotations

from pathlib import Path

from ktest_compare.samples import SampleStore, parse_record_line, store_from_text

RUN_OUTPUT = """goos: linux
pkg: acme
class: \\Acme\\BenchmarkStrings
BenchmarkStrings::concat\t1000\t120.0 ns/op\t16 B/op\t1 allocs/op
BenchmarkStrings::concat\t1000\t118.0 ns/op\t16 B/op\t1 allocs/op
BenchmarkStrings::broken\t0\t1.0 ns/op
ok \\Acme\\BenchmarkStrings 0.120s
"""


def test_parse_record_line_strips_benchmark_marker() -> None:
    assert parse_record_line("BenchmarkFoo::bar\t10\t5.0 ns/op") == ("Foo::bar", [(5.0, "ns/op")])
    assert parse_record_line("BenchmarkFoo 10 5 ns/op 3 B/op") == ("Foo", [(5.0, "ns/op"), (3.0, "B/op")])


def test_parse_record_line_rejects_malformed_records() -> None:
    assert parse_record_line("BenchmarkFoo 10") is None
    assert parse_record_line("BenchmarkFoo many 5 ns/op") is None
    assert parse_record_line("BenchmarkFoo 0 5 ns/op") is None
    assert parse_record_line("Foo 10 5 ns/op") is None


def test_store_groups_samples_by_benchmark_unit_and_labels() -> None:
    store = store_from_text(RUN_OUTPUT, "new")

    assert store.name == "new"
    assert len(store) == 3
    assert store.benchmarks() == ["Strings::concat"]

    units = {key.unit: series for key, series in store}
    assert units["ns/op"].values == [120.0, 118.0]
    assert units["B/op"].values == [16.0, 16.0]
    assert units["allocs/op"].values == [1.0, 1.0]

    key = next(key for key, _ in store)
    labels = dict(key.labels)
    assert labels["goos"] == "linux"
    assert labels["pkg"] == "acme"


def test_store_keeps_first_seen_order(tmp_path: Path) -> None:
    path = tmp_path / "old.txt"
    path.write_text(
        "BenchmarkB 10 2.0 ns/op\nBenchmarkA 10 1.0 ns/op\nBenchmarkB 10 2.5 ns/op\n",
        encoding="utf-8",
    )
    store = SampleStore("old")

    assert store.add_file(path) == 3
    assert store.benchmarks() == ["B", "A"]


def test_add_normalizes_label_order() -> None:
    store = SampleStore()
    store.add({"goos": "linux", "pkg": "a"}, "X", "ns/op", 1.0)
    store.add((("pkg", "a"), ("goos", "linux")), "X", "ns/op", 2.0)

    assert len(store) == 1
    (_, series), = list(store)
    assert series.values == [1.0, 2.0]
