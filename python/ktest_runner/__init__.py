"""KPHP test and benchmark orchestration."""

from .bench import BenchRunConfig, run_bench
from .phpunit import ExecutionReport, PhpunitRunConfig, format_result, run_phpunit

__all__ = [
    "BenchRunConfig",
    "ExecutionReport",
    "PhpunitRunConfig",
    "format_result",
    "run_bench",
    "run_phpunit",
]
