from __future__ import annotations

import io
import logging

import pytest

from ktest_compare.formatting import (
    GREEN,
    RED,
    RESET,
    YELLOW,
    colorize_delta,
    new_scaler,
    noise_band,
    render_text_table,
    resolve_colorize,
    time_scaler,
    warn_undersampled,
)
from ktest_compare.model import GEOMEAN_NAME, IMPROVEMENT, NOT_SIGNIFICANT, REGRESSION, ComparisonRow, MetricSeries, Table


def _series(values: list[float], unit: str = "ns/op") -> MetricSeries:
    return MetricSeries(
        unit=unit,
        values=list(values),
        rvalues=list(values),
        mean=sum(values) / len(values),
        min=min(values),
        max=max(values),
    )


def _row(
    old: list[float],
    new: list[float],
    delta: str,
    pct: float,
    classification: str,
    *,
    name: str = "Strings::concat",
    note: str = "",
) -> ComparisonRow:
    return ComparisonRow(
        benchmark=name,
        unit="ns/op",
        old=_series(old),
        new=_series(new),
        pct_delta=pct,
        delta=delta,
        classification=classification,
        note=note,
    )


def test_time_scaler_picks_unit_from_magnitude() -> None:
    assert time_scaler(50.0)(50.0) == "50.0ns"
    assert time_scaler(1234.0)(1234.0) == "1.23µs"
    assert time_scaler(2.5e6)(2.5e6) == "2.50ms"
    assert time_scaler(3e9)(3e9) == "3.00s"


def test_new_scaler_applies_si_prefixes_and_byte_suffixes() -> None:
    assert new_scaler(2048.0, "B/op")(2048.0) == "2.05kB"
    assert new_scaler(16.0, "B/op")(16.0) == "16.0B"
    assert new_scaler(3.0, "allocs/op")(3.0) == "3.00"


def test_resolve_colorize() -> None:
    stream = io.StringIO()
    assert resolve_colorize("auto", stream) is False
    assert resolve_colorize("true", stream) is True
    assert resolve_colorize("OFF", stream) is False
    with pytest.raises(ValueError, match="invalid colorize"):
        resolve_colorize("sometimes", stream)


def test_noise_band_doubles_for_tiny_means() -> None:
    row = _row([9.0, 10.0, 11.0], [11.0, 11.0, 11.0], "+10.00%", 10.0, REGRESSION)

    # old spread is 10%, new has none; both means sit below timer resolution
    assert noise_band(row) == pytest.approx(21.0)


def test_colorize_delta_colors_by_direction() -> None:
    regression = _row([100.0] * 3, [150.0] * 3, "+50.00%", 50.0, REGRESSION)
    improvement = _row([150.0] * 3, [100.0] * 3, "-33.33%", -33.33, IMPROVEMENT)
    noise = _row([100.0, 80.0, 120.0], [105.0] * 3, "+5.00%", 5.0, REGRESSION)

    assert colorize_delta(regression) == f"{RED}+50.00%{RESET}"
    assert colorize_delta(improvement) == f"{GREEN}-33.33%{RESET}"
    assert colorize_delta(noise) == f"{YELLOW}~{RESET}"


def test_render_text_table_layout() -> None:
    rows = [
        _row([100.0] * 5, [150.0] * 5, "+50.00%", 50.0, REGRESSION, note="(p=0.008 n=5+5)"),
        _row([100.0] * 5, [100.0] * 5, "~", 0.0, NOT_SIGNIFICANT, name="Strings::implode", note="(all equal)"),
    ]
    text = render_text_table(
        [Table(unit="ns/op", metric="time/op", group="", rows=rows)],
        old_label="PHP",
        new_label="KPHP",
    )

    lines = text.splitlines()
    assert text.endswith("\n")
    assert lines[0].split() == ["name", "PHP", "time/op", "KPHP", "time/op", "delta"]
    assert lines[1].startswith("Strings::concat   ")
    assert "+50.00%" in lines[1] and lines[1].endswith("(p=0.008 n=5+5)")
    assert "~   " in lines[2] and lines[2].endswith("(all equal)")


def test_render_separates_tables_with_blank_line() -> None:
    row = _row([100.0] * 5, [150.0] * 5, "+50.00%", 50.0, REGRESSION)
    tables = [
        Table(unit="ns/op", metric="time/op", group="goos:linux", rows=[row]),
        Table(unit="ns/op", metric="time/op", group="goos:darwin", rows=[row]),
    ]

    lines = render_text_table(tables).splitlines()

    assert lines[1] == "goos:linux"
    assert "" in lines
    assert lines[lines.index("") + 2] == "goos:darwin"


def test_warn_undersampled_skips_aggregate_rows(caplog: pytest.LogCaptureFixture) -> None:
    few = _row([1.0] * 3, [1.0] * 8, "~", 0.0, NOT_SIGNIFICANT, name="Few")
    enough = _row([1.0] * 5, [1.0] * 5, "~", 0.0, NOT_SIGNIFICANT, name="Enough")
    aggregate = ComparisonRow(
        benchmark=GEOMEAN_NAME,
        unit="ns/op",
        old=MetricSeries(unit="ns/op", mean=1.0),
        new=MetricSeries(unit="ns/op", mean=1.0),
        pct_delta=0.0,
        delta="~",
        classification=NOT_SIGNIFICANT,
    )

    with caplog.at_level(logging.WARNING):
        warned = warn_undersampled([Table(unit="ns/op", metric="time/op", group="", rows=[few, enough, aggregate])])

    assert warned == ["Few"]
    assert "Few needs more samples, re-run with --count=5 or higher?" in caplog.text
