from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Sequence

from .extract import BENCHMARK_METHOD_MARKER, BenchmarkUnit, TestUnit

MIN_TRIES = 20
ITERATIONS_RATE = 100_000_000
UNROLL = 20


@dataclass(frozen=True)
class BenchDriverOptions:
    count: int = 1
    teamcity: bool = False
    benchmem: bool = False
    profiling: bool = False
    bootstrap: str | None = None
    only_php_autoload: bool = False
    min_tries: int = MIN_TRIES
    iterations_rate: int = ITERATIONS_RATE
    unroll: int = UNROLL


def select_bench_methods(units: Sequence[BenchmarkUnit], run_filter: str) -> list[BenchmarkUnit]:
    try:
        pattern = re.compile(run_filter)
    except re.error as exc:
        raise ValueError(f"invalid run filter {run_filter!r}: {exc}") from exc

    selected: list[BenchmarkUnit] = []
    total = 0
    for unit in units:
        methods = tuple(m for m in unit.methods if pattern.search(f"{unit.class_name}::{m.key}"))
        total += len(methods)
        selected.append(replace(unit, methods=methods))
    if total == 0:
        raise ValueError("selected benchmarks set contains no methods to run")
    return selected


def _php_string(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _bootstrap_block(options: BenchDriverOptions) -> list[str]:
    if not options.bootstrap:
        return []
    lines = [f"require_once {_php_string(options.bootstrap)};"]
    if options.only_php_autoload:
        lines = ["#ifndef KPHP", *lines, "#endif"]
    return [*lines, ""]


def render_bench_driver(unit: BenchmarkUnit, bench_filename: str, options: BenchDriverOptions) -> str:
    location = f"php_qn://{bench_filename}::{unit.class_fqn}::".replace("\\", "\\\\")
    started = finished = ""
    if options.teamcity:
        started = (
            f'  fprintf(STDERR, "##teamcity[testStarted name=\'%s\' locationHint=\'{location}%s\']\\n", '
            "remove_benchmark_prefix($name), $place);\n"
        )
        finished = (
            "  fprintf(STDERR, \"##teamcity[testFinished name='%s']\\n\", remove_benchmark_prefix($name));\n"
        )

    out = ["<?php", ""]
    out.extend(_bootstrap_block(options))
    out.append(f"require_once {_php_string(bench_filename)};")
    out.append(
        f"""
function remove_prefix($text, $prefix) {{
  if (strpos($text, $prefix) === 0) {{
    $text = substr($text, strlen($prefix));
  }}
  return $text;
}}

function remove_benchmark_prefix($text) {{
  return remove_prefix(remove_prefix($text, "{BENCHMARK_METHOD_MARKER}"), "_");
}}

function test_started(string $name, string $place) {{
{started}}}

function test_finished(string $name) {{
{finished}}}

function __bench_main(int $count) {{
  global $argv;
  $bench_name = $argv[1];
  switch ($bench_name) {{"""
    )
    for method in unit.methods:
        out.append(f"    case '{method.name}':")
        out.append(f"      __bench_{method.name}($count);")
        out.append("      break;")
    out.append(
        """    default:
      fprintf(STDERR, "unexpected method name: $bench_name\\n");
      exit(1);
  }
}
"""
    )
    for method in unit.methods:
        out.append(_render_bench_method(unit, method.name, method.key, options))
    out.append(f"$count = '{options.count}';")
    out.append("__bench_main(intval($count));")
    return "\n".join(out) + "\n"


def _render_bench_method(unit: BenchmarkUnit, name: str, key: str, options: BenchDriverOptions) -> str:
    profile = " * @kphp-profile\n * @kphp-profile-allow-inline\n" if options.profiling else ""
    unrolled = "\n".join(f"      _{name}($bench);" for _ in range(options.unroll))
    if options.benchmem:
        allocs_before = "    [$num_allocs_before, $mem_allocated_before] = memory_get_allocations();\n"
        report = (
            "    [$num_allocs_after, $mem_allocated_after] = memory_get_allocations();\n"
            "    $op_allocated = (int)(ceil(($mem_allocated_after - $mem_allocated_before) / $i));\n"
            "    $op_allocs = (int)(ceil(($num_allocs_after - $num_allocs_before) / $i));\n"
            '    fprintf(STDERR, "$i\\t$avg_time.0 ns/op\\t$op_allocated B/op\\t$op_allocs allocs/op\\n");'
        )
    else:
        allocs_before = ""
        report = '    fprintf(STDERR, "$i\\t$avg_time.0 ns/op\\n");'

    return f"""/**
 * @param {unit.class_fqn} $bench
{profile} */
function _{name}($bench) {{
  while (false) {{
    break;
    if (false) {{}}
  }}
  return $bench->{name}();
}}
function __bench_{name}(int $count) {{
  $bench = new {unit.class_fqn}();
  $min_tries = {options.min_tries};
  $iterations_rate = {options.iterations_rate};

  // an error thrown by the method has to surface before test_started
  $bench->{name}();

  test_started("{name}", "{name}");

  for ($num_run = 0; $num_run < $count; ++$num_run) {{
    fprintf(STDERR, "{unit.class_name}::{key}\\t");
    // warm-up call, not measured
    $bench->{name}();
    $run1_start = hrtime(true);
    $bench->{name}();
    $run1_end = hrtime(true);
    $op_time_approx = max($run1_end - $run1_start, 1);
    $max_tries = max((int)($iterations_rate / $op_time_approx), $min_tries);
    $time_total = 0;
{allocs_before}    $i = 0;
    while ($i < $max_tries) {{
      $start = hrtime(true);
{unrolled}
      $time_total += hrtime(true) - $start;
      $i += {options.unroll};
    }}
    $avg_time = (int)($time_total / $i);
{report}
  }}

  test_finished("{name}");
}}
"""


def render_test_driver(unit: TestUnit, test_filename: str) -> str:
    out = [
        "<?php",
        "",
        f"require_once {_php_string(test_filename)};",
        "",
        "use KPHPUnit\\Framework\\TestCase;",
        "use KPHPUnit\\Framework\\AssertionFailedException;",
        "",
        "function __kphpunit_main() {",
    ]
    if unit.has_set_up_before_class:
        out.append(f"  {unit.class_fqn}::setUpBeforeClass();")
    out.append(f"  $test = new {unit.class_fqn}();")
    for method in unit.methods:
        out.extend(
            [
                "  try {",
                f"    echo '[\"START\",\"{method}\"]' . \"\\n\";",
                f"    $test->{method}();",
                "    fprintf(STDERR, '.');",
                "  } catch (AssertionFailedException $e) {",
                "    fprintf(STDERR, 'F');",
                "  }",
            ]
        )
    out.append("  echo '[\"FINISHED\"]' . \"\\n\";")
    if unit.has_tear_down_after_class:
        out.append(f"  {unit.class_fqn}::tearDownAfterClass();")
    out.extend(["}", "", "__kphpunit_main();"])
    return "\n".join(out) + "\n"
