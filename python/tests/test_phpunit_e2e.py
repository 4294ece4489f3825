from __future__ import annotations

import io
import logging
import shutil
from pathlib import Path

import pytest

from ktest_runner import cli
from ktest_runner.events import Failure
from ktest_runner.phpunit import ExecutionReport, PhpunitRunConfig, PhpunitRunner, format_result

TEST_TEMPLATE = """<?php

use PHPUnit\\Framework\\TestCase;

class {name} extends TestCase {{
{methods}}}
"""

METHOD_TEMPLATE = """    public function {name}() {{
        $this->assertTrue(true);
    }}
"""

EVENTS = {
    "ATest": '["START","testOne"]\n["ASSERT_OK"]\n["FINISHED"]\n',
    "CTest": (
        '["START","testA"]\n'
        '["ASSERT_OK"]\n'
        '["START","testB"]\n'
        '["ASSERT_SAME_FAILED",1,2,"",7]\n'
        '["FINISHED"]\n'
    ),
}


def _fake_kphp(path: Path, outputs: Path, fail_on: str) -> Path:
    """Compiler stand-in: the built ``cli`` prints canned events for the test class."""
    path.write_text(
        "#!/usr/bin/env bash\n"
        "dest=''\n"
        "while [[ $# -gt 1 ]]; do\n"
        '  case "$1" in\n'
        '    --destination-directory) dest="$2"; shift 2 ;;\n'
        "    --mode|--composer-root|--profiler|-I) shift 2 ;;\n"
        "    *) shift ;;\n"
        "  esac\n"
        "done\n"
        'main="$1"\n'
        f"if grep -q '{fail_on}' \"$main\"; then echo 'compilation failed' >&2; exit 1; fi\n"
        "name=$(grep -o '[A-Za-z]*Test\\.php' \"$main\" | head -n 1)\n"
        f"base=\"{outputs}/${{name%.php}}\"\n"
        "printf '#!/usr/bin/env bash\\ncat \"%s.out\"\\n[[ ! -e \"%s.fail\" ]]\\n' \"$base\" \"$base\" > \"$dest/cli\"\n"
        'chmod +x "$dest/cli"\n',
        encoding="utf-8",
    )
    path.chmod(0o755)
    return path


def _project(
    tmp_path: Path,
    *,
    fail_build: str = "BTest",
    extra_outputs: dict[str, bytes] | None = None,
    failing_runs: tuple[str, ...] = (),
) -> tuple[Path, Path]:
    project = tmp_path / "project"
    tests = project / "tests"
    tests.mkdir(parents=True)
    for name, methods in (("ATest", ["testOne"]), ("BTest", ["testOne"]), ("CTest", ["testA", "testB"])):
        body = "".join(METHOD_TEMPLATE.format(name=method) for method in methods)
        (tests / f"{name}.php").write_text(TEST_TEMPLATE.format(name=name, methods=body), encoding="utf-8")

    outputs = tmp_path / "outputs"
    outputs.mkdir()
    for name, events in EVENTS.items():
        (outputs / f"{name}.out").write_text(events, encoding="utf-8")
    for name, raw in (extra_outputs or {}).items():
        (outputs / f"{name}.out").write_bytes(raw)
    for name in failing_runs:
        (outputs / f"{name}.fail").touch()
    return project, _fake_kphp(tmp_path / "kphp2cpp", outputs, fail_build)


def test_failed_build_is_reported_and_other_files_still_run(tmp_path: Path) -> None:
    project, kphp = _project(tmp_path)
    output = io.StringIO()
    runner = PhpunitRunner(
        PhpunitRunConfig(project_root=project, test_target=project / "tests", kphp_command=str(kphp)),
        output=output,
    )

    report = runner.run()

    assert output.getvalue().splitlines() == [
        " 1 / 4 (25%) OK",
        " 2 / 4 (50%) ERROR",
        " 4 / 4 (100%) FAIL",
    ]
    assert report.tests == 3
    assert report.assertions == 3
    (failure,) = report.failures
    assert failure.name == "CTest::testB"
    assert failure.reason == "Failed asserting that 2 is identical to 1"
    assert failure.file.endswith("tests/CTest.php")
    assert runner.build_dir is not None and not runner.build_dir.exists()


@pytest.mark.parametrize(
    ("extra_outputs", "failing_runs", "logged"),
    [
        pytest.param(
            {"BTest": b'["START","testOne"]\n\xff\xfe garbage\n["FINISHED"]\n'},
            (),
            "BTest.php: parse test output: output line 2",
            id="invalid-utf8",
        ),
        pytest.param(
            {"BTest": b'["START","testOne"]\n["BOGUS"]\n["FINISHED"]\n'},
            (),
            "BTest.php: parse test output: output line 2: [\"BOGUS\"]: unexpected op BOGUS",
            id="unknown-tag",
        ),
        pytest.param(
            {"BTest": b'["START","testOne"]\n["ASSERT_OK"]\n'},
            ("BTest",),
            "BTest.php: run error: ",
            id="nonzero-exit",
        ),
    ],
)
def test_broken_test_binary_is_reported_and_other_files_still_run(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
    extra_outputs: dict[str, bytes],
    failing_runs: tuple[str, ...],
    logged: str,
) -> None:
    project, kphp = _project(
        tmp_path, fail_build="nothing-fails", extra_outputs=extra_outputs, failing_runs=failing_runs
    )
    output = io.StringIO()
    runner = PhpunitRunner(
        PhpunitRunConfig(project_root=project, test_target=project / "tests", kphp_command=str(kphp)),
        output=output,
    )

    with caplog.at_level(logging.ERROR):
        report = runner.run()

    assert output.getvalue().splitlines() == [
        " 1 / 4 (25%) OK",
        " 2 / 4 (50%) ERROR",
        " 4 / 4 (100%) FAIL",
    ]
    assert logged in caplog.text
    assert report.tests == 3
    assert report.assertions == 3
    assert [failure.name for failure in report.failures] == ["CTest::testB"]


def test_no_cleanup_keeps_preprocessed_sources(tmp_path: Path) -> None:
    project, kphp = _project(tmp_path)
    runner = PhpunitRunner(
        PhpunitRunConfig(
            project_root=project,
            test_target=project / "tests" / "ATest.php",
            kphp_command=str(kphp),
            no_cleanup=True,
        ),
        output=io.StringIO(),
    )

    report = runner.run()

    assert runner.build_dir is not None
    try:
        preprocessed = (runner.build_dir / "tests" / "ATest.php").read_text(encoding="utf-8")
        assert "use KPHPUnit\\Framework\\TestCase;" in preprocessed
        assert "$this->assertTrueWithLine(7, true);" in preprocessed
        assert (runner.build_dir / "mains" / "0.php").exists()
    finally:
        shutil.rmtree(runner.build_dir)
    assert report.tests == 1
    assert report.failures == []


def test_cli_exit_status_is_zero_when_tests_fail(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], caplog: pytest.LogCaptureFixture
) -> None:
    project, kphp = _project(tmp_path)

    with caplog.at_level(logging.ERROR):
        code = cli.main(
            [
                "phpunit",
                str(project / "tests"),
                "--project-root",
                str(project),
                "--kphp2cpp-binary",
                str(kphp),
            ],
            environ={},
        )

    out = capsys.readouterr().out
    assert code == 0
    assert "There was 1 failure:" in out
    assert "1) CTest::testB" in out
    assert "FAILURES!\nTests: 3, Assertions: 3, Failures: 1.\n" in out
    assert "BTest.php: build error" in caplog.text


def test_format_result_success_and_failures() -> None:
    ok = ExecutionReport(tests=2, assertions=5, elapsed=0.5)
    assert format_result(ok) == "\nTime: 0.500s\n\nOK (2 tests, 5 assertions)\n"
    assert format_result(ok, print_time=False) == "\nOK (2 tests, 5 assertions)\n"

    failures = [
        Failure("MathTest::testA", "Failed asserting that 2 is identical to 1", "", "/src/tests/MathTest.php", 12),
        Failure("MathTest::testB", "Failed asserting that false is true", "flag", "/src/tests/MathTest.php", 20),
    ]
    text = format_result(
        ExecutionReport(tests=2, assertions=2, failures=failures), print_time=False, short_location=True
    )

    assert text == (
        "\n"
        "There were 2 failures:\n"
        "\n"
        "1) MathTest::testA\n"
        "Failed asserting that 2 is identical to 1.\n"
        "\n"
        "MathTest.php:12\n"
        "\n"
        "2) MathTest::testB\n"
        "flag\n"
        "Failed asserting that false is true.\n"
        "\n"
        "MathTest.php:20\n"
        "\n"
        "FAILURES!\n"
        "Tests: 2, Assertions: 2, Failures: 2.\n"
    )
