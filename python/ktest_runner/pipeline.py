from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .errors import PipelineError

logger = logging.getLogger(__name__)

Step = tuple[str, Callable[[], None]]


def run_steps(steps: Sequence[Step]) -> None:
    for name, fn in steps:
        logger.debug("step: %s", name)
        try:
            fn()
        except Exception as exc:
            raise PipelineError(name, exc) from exc


def find_sources(target: Path, matches: Callable[[str], bool]) -> list[Path]:
    if target.suffix == ".php" and not target.is_dir():
        return [target]
    if not target.is_dir():
        raise FileNotFoundError(f"{target}: no such directory")
    return [path for path in sorted(target.rglob("*.php")) if path.is_file() and matches(path.name)]


def is_bench_file(name: str) -> bool:
    return name.startswith("Benchmark") and name.endswith(".php")


def is_test_file(name: str) -> bool:
    return name.endswith("Test.php")


def short_name(path: Path, base: Path) -> str:
    try:
        return path.relative_to(base).as_posix()
    except ValueError:
        return path.name


def progress_line(done: int, total: int, status: str) -> str:
    pct = int(done / total * 100.0) if total else 100
    return f" {done} / {total} ({pct:2d}%) {status}"


def log_issues(source: str, issues: Iterable[object]) -> None:
    for issue in issues:
        logger.warning("%s: %s", source, issue)
