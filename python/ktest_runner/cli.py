from __future__ import annotations

import argparse
import logging
import os
import sys
from importlib import metadata
from pathlib import Path
from typing import Mapping

from ktest_compare.ab import files_ab, render_ab, split_by_patterns
from ktest_compare.compare import (
    CompareOptions,
    add_benchstat_arguments,
    build_tables,
    render_comparison,
    run_benchstat,
)
from ktest_compare.formatting import resolve_colorize
from ktest_compare.samples import store_from_text

from .bench import BenchRunConfig, run_bench
from .compare_output import CompareConfig, compare_script
from .errors import KtestError
from .kenv import (
    describe_environment,
    env_bool,
    env_string,
    find_composer_root,
    resolve_kphp_binary,
    split_include_dirs,
)
from .phpunit import PhpunitRunConfig, format_result, run_phpunit
from .process import flush_progress, print_progress, run_with_progress

logger = logging.getLogger("ktest")

DISTRIBUTION = "ktest"
AB_COUNT = "10"


def _self_command(*args: str) -> list[str]:
    return [sys.executable, "-m", "ktest_runner", *args]


def _kphp_command(value: str, environ: Mapping[str, str]) -> str:
    if value:
        return value
    resolved = resolve_kphp_binary(environ)
    if resolved is None:
        raise ValueError("can't locate kphp2cpp binary; please set --kphp2cpp-binary arg")
    return resolved


def _project_root(value: str) -> Path:
    return Path(value).resolve()


def _cmd_phpunit(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    project_root = _project_root(args.project_root)
    config = PhpunitRunConfig(
        project_root=project_root,
        test_target=Path(args.target).resolve(),
        kphp_command=_kphp_command(args.kphp2cpp_binary, environ),
        src_dir=args.src_dir,
        composer_root=find_composer_root(project_root),
        include_dirs=split_include_dirs(args.include_dirs),
        no_cleanup=args.no_cleanup,
    )
    report = run_phpunit(config)
    sys.stdout.write(format_result(report, print_time=True))
    return 0


def _cmd_compare(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    compare_script(
        CompareConfig(
            script=Path(args.script),
            workdir=Path.cwd(),
            project_root=_project_root(args.project_root),
            kphp_command=_kphp_command(args.kphp2cpp_binary, environ),
            php_command=args.php,
            preload=args.preload,
        )
    )
    return 0


def _cmd_benchstat(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    return run_benchstat(args)


def _bench_config(args: argparse.Namespace, environ: Mapping[str, str], *, php_mode: bool) -> BenchRunConfig:
    if args.count <= 0:
        raise ValueError("--count must be > 0")
    project_root = _project_root(args.project_root)
    return BenchRunConfig(
        project_root=project_root,
        bench_target=Path(args.target).resolve(),
        kphp_command="" if php_mode else _kphp_command(args.kphp2cpp_binary, environ),
        php_command=args.php if php_mode else "",
        composer_root=find_composer_root(project_root),
        preload=getattr(args, "preload", ""),
        run_filter=args.run,
        include_dirs=split_include_dirs(getattr(args, "include_dirs", "")),
        disable_autoload_for_kphp=args.disable_kphp_autoload,
        teamcity=args.teamcity,
        benchmem=getattr(args, "benchmem", False),
        count=args.count,
        no_cleanup=args.no_cleanup,
        profile_dir=getattr(args, "profile_dir", ""),
        no_jit=getattr(args, "no_jit", False),
    )


def _cmd_bench(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    report = run_bench(_bench_config(args, environ, php_mode=False))
    if report.failed:
        logger.warning("%d benchmark file(s) failed: %s", len(report.failed), ", ".join(report.failed))
    return 0


def _cmd_bench_php(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    report = run_bench(_bench_config(args, environ, php_mode=True))
    if report.failed:
        logger.warning("%d benchmark file(s) failed: %s", len(report.failed), ", ".join(report.failed))
    return 0


def _cmd_bench_ab(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    old, new = args.old, args.new
    try:
        if old.endswith(".php") and new.endswith(".php"):
            old_key = Path(old).name.removesuffix(".php")
            new_key = Path(new).name.removesuffix(".php")
            outputs = []
            for key, filename in ((old_key, old), (new_key, new)):
                print_progress(f"compiling {key}...")
                command = _self_command("bench", "--count", AB_COUNT, "--benchmem", *args.bench_args, filename)
                outputs.append(run_with_progress(key, command))
            result = files_ab(outputs[0], outputs[1], old_key, new_key)
        else:
            print_progress("compiling KPHP benchmarks...")
            command = _self_command(
                "bench",
                "--count",
                AB_COUNT,
                "--run",
                f"(?:{old})|(?:{new})",
                *args.bench_args,
            )
            output = run_with_progress(f"{old} and {new}", command)
            result = split_by_patterns(output, old, new)
    finally:
        flush_progress()
    sys.stdout.write(render_ab(result, colorize=resolve_colorize("auto", sys.stdout)))
    return 0


def _cmd_bench_vs_php(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    count = str(args.count)
    try:
        print_progress("compiling KPHP benchmarks...")
        kphp_command = ["bench", "--count", count]
        if args.kphp2cpp_binary:
            kphp_command.extend(["--kphp2cpp-binary", args.kphp2cpp_binary])
        kphp_output = run_with_progress("KPHP", _self_command(*kphp_command, args.target))

        print_progress("running PHP benchmarks...")
        php_output = run_with_progress(
            "PHP",
            _self_command("bench-php", "--count", count, "--php", args.php, args.target),
        )
    finally:
        flush_progress()

    tables = build_tables(
        store_from_text(php_output, "PHP"),
        store_from_text(kphp_output, "KPHP"),
        CompareOptions(add_geomean=args.geomean),
    )
    sys.stdout.write(
        render_comparison(
            tables,
            colorize=resolve_colorize("auto", sys.stdout),
            old_label="PHP",
            new_label="KPHP",
        )
    )
    return 0


def _cmd_env(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    for line in describe_environment(environ):
        print(line)
    return 0


def _cmd_version(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    try:
        version = metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        print("ktest built without version info")
        return 0
    print(f"ktest version {version}")
    return 0


def build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--debug", action="store_true", help="print debug info")

    parser = argparse.ArgumentParser(prog="ktest", description="KPHP test and benchmark runner")
    sub = parser.add_subparsers(dest="command", required=True)
    cwd = os.getcwd()
    kphp_default = env_string(environ, "KTEST_KPHP2CPP_BINARY")
    include_default = env_string(environ, "KTEST_INCLUDE_DIRS")
    autoload_default = env_bool(environ, "KTEST_DISABLE_KPHP_AUTOLOAD", False)
    kphp_help = "kphp binary path; if empty, $KPHP_ROOT/objs/bin/kphp2cpp is used"

    phpunit_cmd = sub.add_parser("phpunit", parents=[common], help="run phpunit tests using KPHP")
    phpunit_cmd.add_argument("target")
    phpunit_cmd.add_argument("--no-cleanup", action="store_true", help="keep temp build directory")
    phpunit_cmd.add_argument("--project-root", default=cwd)
    phpunit_cmd.add_argument("--src-dir", default="src", help="project sources root")
    phpunit_cmd.add_argument("--kphp2cpp-binary", default=kphp_default, help=kphp_help)
    phpunit_cmd.add_argument("--include-dirs", default=include_default)
    phpunit_cmd.set_defaults(handler=_cmd_phpunit)

    compare_cmd = sub.add_parser(
        "compare", parents=[common], help="test that KPHP and PHP scripts output is identical"
    )
    compare_cmd.add_argument("script")
    compare_cmd.add_argument("--php", default="php", help="PHP command to run the script")
    compare_cmd.add_argument("--preload", default="", help="opcache.preload script")
    compare_cmd.add_argument("--project-root", default=cwd)
    compare_cmd.add_argument("--kphp2cpp-binary", default=kphp_default, help=kphp_help)
    compare_cmd.set_defaults(handler=_cmd_compare)

    benchstat_cmd = sub.add_parser(
        "benchstat", parents=[common], help="compute and compare statistics about benchmark results"
    )
    add_benchstat_arguments(benchstat_cmd)
    benchstat_cmd.set_defaults(handler=_cmd_benchstat)

    for name, help_text, php_mode in (
        ("bench", "run benchmarks using KPHP", False),
        ("bench-php", "run benchmarks using PHP", True),
    ):
        bench_cmd = sub.add_parser(name, parents=[common], help=help_text)
        bench_cmd.add_argument("target")
        bench_cmd.add_argument("--count", type=int, default=1, help="run each benchmark n times")
        bench_cmd.add_argument("--no-cleanup", action="store_true", help="keep temp build directory")
        bench_cmd.add_argument("--project-root", default=cwd)
        bench_cmd.add_argument("--run", default=".*", help="regexp that selects the benchmarks to run")
        bench_cmd.add_argument(
            "--disable-kphp-autoload",
            action=argparse.BooleanOptionalAction,
            default=autoload_default,
        )
        bench_cmd.add_argument("--teamcity", action="store_true", help="report progress in TeamCity format")
        if php_mode:
            bench_cmd.add_argument("--php", default="php", help="PHP command to run the benchmarks")
            bench_cmd.add_argument("--preload", default="", help="opcache.preload script")
            bench_cmd.add_argument("--no-jit", action="store_true", help="disable opcache JIT")
            bench_cmd.set_defaults(handler=_cmd_bench_php)
        else:
            bench_cmd.add_argument("--kphp2cpp-binary", default=kphp_default, help=kphp_help)
            bench_cmd.add_argument("--include-dirs", default=include_default)
            bench_cmd.add_argument("--benchmem", action="store_true", help="print memory allocation stats")
            bench_cmd.add_argument("--profile-dir", default="", help="write callgrind profiles here")
            bench_cmd.set_defaults(handler=_cmd_bench)

    ab_cmd = sub.add_parser(
        "bench-ab",
        parents=[common],
        help="run two selected benchmarks using KPHP and compare their results",
    )
    ab_cmd.add_argument("old", help="old benchmark regexp or benchmark file")
    ab_cmd.add_argument("new", help="new benchmark regexp or benchmark file")
    ab_cmd.add_argument("bench_args", nargs=argparse.REMAINDER)
    ab_cmd.set_defaults(handler=_cmd_bench_ab)

    vs_cmd = sub.add_parser(
        "bench-vs-php", parents=[common], help="run benchmarks using both KPHP and PHP, compare the results"
    )
    vs_cmd.add_argument("target")
    vs_cmd.add_argument("--geomean", action="store_true")
    vs_cmd.add_argument("--count", type=int, default=10)
    vs_cmd.add_argument("--php", default="php")
    vs_cmd.add_argument("--kphp2cpp-binary", default="", help=kphp_help)
    vs_cmd.set_defaults(handler=_cmd_bench_vs_php)

    env_cmd = sub.add_parser("env", parents=[common], help="print ktest-related env variables")
    env_cmd.set_defaults(handler=_cmd_env)

    version_cmd = sub.add_parser("version", parents=[common], help="print ktest version info")
    version_cmd.set_defaults(handler=_cmd_version)
    return parser


def main(argv: list[str] | None = None, environ: Mapping[str, str] | None = None) -> int:
    env = os.environ if environ is None else environ
    try:
        parser = build_parser(env)
    except ValueError as exc:
        logging.basicConfig(format="%(message)s")
        logger.error("ktest: error: %s", exc)
        return 1
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO, format="%(message)s")
    try:
        return args.handler(args, env)
    except (KtestError, ValueError, OSError) as exc:
        logger.error("ktest %s: error: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
