from __future__ import annotations

import logging
import re
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence, TextIO

from .drivers import BenchDriverOptions, render_bench_driver, select_bench_methods
from .errors import BuildError, PhpParseError, RunError
from .extract import BenchmarkUnit, extract_benchmark
from .phpsource import parse_php
from .pipeline import find_sources, is_bench_file, log_issues, run_steps, short_name
from .process import RunResult, kphp_build, kphp_run, php_run
from .teamcity import TeamcityLogger
from .workspace import prepare_workspace, remove_workspace, write_file

logger = logging.getLogger(__name__)

CPU_BOOST_FILES = (
    (Path("/sys/devices/system/cpu/intel_pstate/no_turbo"), "0"),
    (Path("/sys/devices/system/cpu/cpufreq/boost"), "1"),
)

PROFILE_PREFIX = "ktest"
PROFILE_SUFFIX = re.compile(r"\.[A-F0-9]+\.\d+$")


@dataclass(frozen=True)
class BenchRunConfig:
    project_root: Path
    bench_target: Path
    kphp_command: str = ""
    php_command: str = ""
    composer_root: str = ""
    preload: str = ""
    run_filter: str = ".*"
    include_dirs: tuple[str, ...] = ()
    disable_autoload_for_kphp: bool = False
    teamcity: bool = False
    benchmem: bool = False
    count: int = 1
    no_cleanup: bool = False
    profile_dir: str = ""
    no_jit: bool = False

    @property
    def php_mode(self) -> bool:
        return bool(self.php_command)


@dataclass
class BenchFile:
    full_name: Path
    short_name: str
    id: int = 0
    unit: BenchmarkUnit | None = None
    driver: str = ""


@dataclass
class BenchReport:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def check_system_issues(boost_files: Sequence[tuple[Path, str]] = CPU_BOOST_FILES) -> list[str]:
    for path, enabled in boost_files:
        try:
            value = path.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if value == enabled:
            return [f"cpu boost is not disabled ({path})"]
    return []


def move_profiles(profiles_dir: Path, profile_dir: Path) -> list[Path]:
    profile_dir.mkdir(parents=True, exist_ok=True)
    moved: list[Path] = []
    for entry in sorted(profiles_dir.iterdir()):
        name = entry.name.removeprefix(f"{PROFILE_PREFIX}._")
        name = PROFILE_SUFFIX.sub("", name)
        destination = profile_dir / f"{name}.callgrind"
        shutil.copyfile(entry, destination)
        moved.append(destination)
    return moved


class BenchRunner:
    def __init__(
        self,
        config: BenchRunConfig,
        *,
        output: TextIO | None = None,
        boost_files: Sequence[tuple[Path, str]] = CPU_BOOST_FILES,
    ) -> None:
        if config.count <= 0:
            raise ValueError("count must be > 0")
        if not config.php_mode and not config.kphp_command:
            raise ValueError("kphp2cpp binary is not configured")
        self.config = config
        self.output = output or sys.stdout
        self.boost_files = boost_files
        self.teamcity = TeamcityLogger(self.output if config.teamcity else None)
        self.files: list[BenchFile] = []
        self.build_dir: Path | None = None
        self.profiler_prefix = ""
        self.report = BenchReport()

    def run(self) -> BenchReport:
        try:
            run_steps(
                [
                    ("check for issues", self._check_issues),
                    ("find bench files", self._find_bench_files),
                    ("prepare temp build dir", self._prepare_build_dir),
                    ("parse bench files", self._parse_bench_files),
                    ("filter only parsed files", self._filter_parsed_files),
                    ("sort bench files", self._sort_bench_files),
                    ("generate bench main", self._generate_bench_main),
                    ("run bench", self._run_bench),
                    ("move profiles", self._move_profiles),
                ]
            )
        finally:
            if not self.config.no_cleanup:
                remove_workspace(self.build_dir)
        return self.report

    def _check_issues(self) -> None:
        for issue in check_system_issues(self.boost_files):
            logger.warning("%s", issue)

    def _find_bench_files(self) -> None:
        target = self.config.bench_target
        base = target.parent if target.suffix == ".php" else target
        self.files = [
            BenchFile(full_name=path, short_name=short_name(path, base))
            for path in find_sources(target, is_bench_file)
        ]
        for f in self.files:
            logger.debug("bench file: %s", f.full_name)

    def _prepare_build_dir(self) -> None:
        links = ["vendor", "composer.json", self.config.preload, "ffilibs"]
        self.build_dir = prepare_workspace(
            "kphpbench-build",
            self.config.project_root,
            links=links,
            make_dirs=["mains"],
        )
        logger.debug("temp build dir: %s", self.build_dir)
        if self.config.profile_dir:
            profiles_dir = self.build_dir / "profiles"
            profiles_dir.mkdir(parents=True, exist_ok=True)
            self.profiler_prefix = str(profiles_dir / PROFILE_PREFIX)

    def _parse_bench_files(self) -> None:
        for f in self.files:
            try:
                tree = parse_php(f.full_name.read_bytes(), str(f.full_name))
            except PhpParseError as exc:
                logger.error("%s", exc)
                continue
            unit = extract_benchmark(tree, f.short_name)
            blocking = unit.blocking_issues
            log_issues(f.short_name, (issue for issue in unit.issues if not issue.blocks_build))
            if blocking:
                raise ValueError(f"{f.short_name}: {blocking[0]}")
            if not unit.found:
                raise ValueError(f"{f.short_name}: can't find a benchmark class inside a file")
            f.unit = unit

    def _filter_parsed_files(self) -> None:
        self.files = [f for f in self.files if f.unit is not None]

    def _sort_bench_files(self) -> None:
        self.files.sort(key=lambda f: str(f.full_name))
        for idx, f in enumerate(self.files):
            f.id = idx

    def _generate_bench_main(self) -> None:
        units = select_bench_methods([f.unit for f in self.files if f.unit is not None], self.config.run_filter)
        bootstrap = None
        if self.config.composer_root:
            bootstrap = str(Path(self.config.composer_root) / "vendor" / "autoload.php")
        options = BenchDriverOptions(
            count=self.config.count,
            teamcity=self.config.teamcity,
            benchmem=self.config.benchmem and not self.config.php_mode,
            profiling=bool(self.config.profile_dir),
            bootstrap=bootstrap,
            only_php_autoload=self.config.disable_autoload_for_kphp,
        )
        for f, unit in zip(self.files, units):
            f.unit = unit
            f.driver = render_bench_driver(unit, str(f.full_name), options)

    def _run_bench(self) -> None:
        build_dir = self._build_dir()
        for f in self.files:
            unit = f.unit
            if unit is None or not unit.methods:
                continue
            main_filename = build_dir / "mains" / f"{f.id}.php"
            write_file(main_filename, f.driver)
            self.teamcity.suite_started(unit.class_fqn)

            executable: Path | None = None
            if not self.config.php_mode:
                try:
                    executable = kphp_build(
                        self.config.kphp_command,
                        main_filename,
                        output_dir=build_dir,
                        workdir=build_dir,
                        composer_root=self.config.composer_root,
                        include_dirs=self.config.include_dirs,
                        profiling=bool(self.config.profile_dir),
                    )
                except BuildError as exc:
                    logger.error("%s: build error: %s", f.full_name, exc)
                    self.teamcity.suite_finished(unit.class_fqn, 0.0)
                    self.report.failed.append(unit.class_fqn)
                    continue

            self.output.write(f"class: {unit.class_fqn}\n")
            self.output.flush()
            elapsed = 0.0
            failed = False
            for method in unit.methods:
                try:
                    result = self._run_method(build_dir, main_filename, executable, method.name)
                except RunError as exc:
                    elapsed += exc.elapsed
                    logger.error("%s: %s run error: %s", f.full_name, method.name, exc)
                    failed = True
                    break
                elapsed += result.elapsed

            if failed:
                self.report.failed.append(unit.class_fqn)
            else:
                self.output.write(f"ok {unit.class_fqn} {elapsed:.3f}s\n")
                self.output.flush()
                self.report.completed.append(unit.class_fqn)
            self.teamcity.suite_finished(unit.class_fqn, elapsed)

    def _run_method(
        self, build_dir: Path, main_filename: Path, executable: Path | None, method: str
    ) -> RunResult:
        if executable is None:
            return php_run(
                self.config.php_command,
                main_filename,
                workdir=build_dir,
                preload=self.config.preload,
                jit=not self.config.no_jit,
                args=[method],
                stderr_sink=self.output,
            )
        return kphp_run(
            executable,
            workdir=build_dir,
            args=[method],
            profiler_prefix=self.profiler_prefix,
            stderr_sink=self.output,
        )

    def _build_dir(self) -> Path:
        if self.build_dir is None:
            raise RuntimeError("temp build dir is not prepared")
        return self.build_dir

    def _move_profiles(self) -> None:
        if not self.profiler_prefix:
            return
        move_profiles(Path(self.profiler_prefix).parent, Path(self.config.profile_dir))


def run_bench(config: BenchRunConfig, *, output: TextIO | None = None) -> BenchReport:
    return BenchRunner(config, output=output).run()
