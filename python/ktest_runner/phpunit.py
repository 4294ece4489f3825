from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from .drivers import render_test_driver
from .errors import BuildError, EventStreamError, PhpParseError, RunError
from .events import Failure, parse_test_output
from .extract import TestUnit, extract_test
from .phpsource import parse_php
from .pipeline import find_sources, is_test_file, progress_line, run_steps, short_name
from .process import kphp_build, kphp_run
from .textedit import apply_text_edits
from .workspace import prepare_workspace, remove_workspace, write_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhpunitRunConfig:
    project_root: Path
    test_target: Path
    kphp_command: str
    src_dir: str = "src"
    composer_root: str = ""
    include_dirs: tuple[str, ...] = ()
    no_cleanup: bool = False


@dataclass
class TestFile:
    full_name: Path
    short_name: str
    id: int = 0
    unit: TestUnit | None = None
    contents: bytes = b""
    preprocessed: bytes = b""
    driver: str = ""
    main_filename: Path | None = None

    __test__ = False


@dataclass
class ExecutionReport:
    tests: int = 0
    assertions: int = 0
    failures: list[Failure] = field(default_factory=list)
    elapsed: float = 0.0


class PhpunitRunner:
    def __init__(self, config: PhpunitRunConfig, *, output: TextIO | None = None) -> None:
        if not config.kphp_command:
            raise ValueError("kphp2cpp binary is not configured")
        self.config = config
        self.output = output or sys.stdout
        self.test_dir = config.test_target
        self.files: list[TestFile] = []
        self.build_dir: Path | None = None
        self.build_dir_tests: Path | None = None
        self.report = ExecutionReport()

    def run(self) -> ExecutionReport:
        start = time.monotonic()
        try:
            run_steps(
                [
                    ("find test files", self._find_test_files),
                    ("prepare temp build dir", self._prepare_build_dir),
                    ("parse test files", self._parse_test_files),
                    ("filter only parsed files", self._filter_parsed_files),
                    ("sort test files", self._sort_test_files),
                    ("preprocess contents", self._preprocess_contents),
                    ("generate test main", self._generate_test_main),
                    ("write preprocessed test files", self._write_preprocessed_files),
                    ("write test main", self._write_test_main),
                    ("run kphp tests", self._run_kphp_tests),
                ]
            )
        finally:
            if not self.config.no_cleanup:
                remove_workspace(self.build_dir)
        self.report.elapsed = time.monotonic() - start
        return self.report

    def _find_test_files(self) -> None:
        target = self.config.test_target
        self.test_dir = target.parent if target.suffix == ".php" else target
        self.files = [
            TestFile(full_name=path, short_name=short_name(path, self.test_dir))
            for path in find_sources(target, is_test_file)
        ]
        logger.debug("test dir: %s", self.test_dir)
        for f in self.files:
            logger.debug("test file: %s", f.full_name)

    def _prepare_build_dir(self) -> None:
        self.build_dir = prepare_workspace(
            "kphpunit-build",
            self.config.project_root,
            links=[self.config.src_dir, "vendor", "composer.json"],
            make_dirs=["mains"],
        )
        logger.debug("temp build dir: %s", self.build_dir)
        try:
            relative = self.test_dir.relative_to(self.config.project_root)
        except ValueError:
            relative = Path("tests")
        self.build_dir_tests = self.build_dir / relative
        self.build_dir_tests.mkdir(parents=True, exist_ok=True)

    def _parse_test_files(self) -> None:
        for f in self.files:
            f.contents = f.full_name.read_bytes()
            try:
                tree = parse_php(f.contents, str(f.full_name))
            except PhpParseError as exc:
                logger.error("%s", exc)
                continue
            f.unit = extract_test(tree)

    def _filter_parsed_files(self) -> None:
        parsed: list[TestFile] = []
        for f in self.files:
            if f.unit is None:
                continue
            if not f.unit.found:
                logger.warning("%s: can't find a test class inside a file, skipping", f.short_name)
                continue
            parsed.append(f)
        self.files = parsed

    def _sort_test_files(self) -> None:
        self.files.sort(key=lambda f: str(f.full_name))
        for idx, f in enumerate(self.files):
            f.id = idx

    def _preprocess_contents(self) -> None:
        for f in self.files:
            f.preprocessed = apply_text_edits(f.contents, _parsed_unit(f).edits)

    def _generate_test_main(self) -> None:
        _, build_dir_tests = self._build_dirs()
        for f in self.files:
            f.driver = render_test_driver(_parsed_unit(f), str(build_dir_tests / f.short_name))

    def _write_preprocessed_files(self) -> None:
        _, build_dir_tests = self._build_dirs()
        for f in self.files:
            write_file(build_dir_tests / f.short_name, f.preprocessed)

    def _write_test_main(self) -> None:
        build_dir, _ = self._build_dirs()
        for f in self.files:
            f.main_filename = build_dir / "mains" / f"{f.id}.php"
            write_file(f.main_filename, f.driver)

    def _run_kphp_tests(self) -> None:
        build_dir, _ = self._build_dirs()
        total = sum(len(_parsed_unit(f).methods) for f in self.files)
        done = 0
        for f in self.files:
            done += len(_parsed_unit(f).methods)
            status = self._run_file(f, build_dir)
            self.output.write(progress_line(done, total, status) + "\n")
            self.output.flush()

    def _run_file(self, f: TestFile, build_dir: Path) -> str:
        unit = _parsed_unit(f)
        if f.main_filename is None:
            raise RuntimeError(f"{f.short_name}: test main is not written")
        try:
            executable = kphp_build(
                self.config.kphp_command,
                f.main_filename,
                output_dir=build_dir,
                workdir=build_dir,
                composer_root=self.config.composer_root,
                include_dirs=self.config.include_dirs,
            )
        except BuildError as exc:
            logger.error("%s: build error: %s", f.full_name, exc)
            return "ERROR"

        try:
            result = kphp_run(executable, workdir=build_dir, stderr_sink=self.output)
        except RunError as exc:
            logger.error("%s: run error: %s", f.full_name, exc)
            return "ERROR"

        try:
            parsed = parse_test_output(result.stdout, unit.class_name, str(f.full_name))
        except EventStreamError as exc:
            logger.error("%s: parse test output: %s", f.full_name, exc)
            return "ERROR"

        self.report.tests += parsed.tests
        self.report.assertions += parsed.assertions
        self.report.failures.extend(parsed.failures)
        return "FAIL" if parsed.failures else "OK"

    def _build_dirs(self) -> tuple[Path, Path]:
        if self.build_dir is None or self.build_dir_tests is None:
            raise RuntimeError("temp build dir is not prepared")
        return self.build_dir, self.build_dir_tests


def _parsed_unit(f: TestFile) -> TestUnit:
    if f.unit is None:
        raise RuntimeError(f"{f.short_name}: test file is not parsed")
    return f.unit


def run_phpunit(config: PhpunitRunConfig, *, output: TextIO | None = None) -> ExecutionReport:
    return PhpunitRunner(config, output=output).run()


def format_result(report: ExecutionReport, *, print_time: bool = True, short_location: bool = False) -> str:
    lines: list[str] = []
    if print_time:
        lines.extend(["", f"Time: {report.elapsed:.3f}s", ""])
    else:
        lines.append("")

    if not report.failures:
        lines.append(f"OK ({report.tests} tests, {report.assertions} assertions)")
        return "\n".join(lines) + "\n"

    if len(report.failures) == 1:
        lines.extend(["There was 1 failure:", ""])
    else:
        lines.extend([f"There were {len(report.failures)} failures:", ""])
    for idx, failure in enumerate(report.failures, start=1):
        lines.append(f"{idx}) {failure.name}")
        if failure.message:
            lines.append(failure.message)
        lines.extend([f"{failure.reason}.", ""])
        location = Path(failure.file).name if short_location else failure.file
        lines.extend([f"{location}:{failure.line}", ""])
    lines.append("FAILURES!")
    lines.append(
        f"Tests: {report.tests}, Assertions: {report.assertions}, Failures: {len(report.failures)}."
    )
    return "\n".join(lines) + "\n"
