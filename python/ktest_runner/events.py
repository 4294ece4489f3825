from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .errors import EventStreamError

START = "START"
ASSERT_OK = "ASSERT_OK"
FINISHED = "FINISHED"

FAILURE_REASONS = {
    "ASSERT_EQUALS_FAILED": "Failed asserting that {actual} matches expected {expected}",
    "ASSERT_NOT_EQUALS_FAILED": "Failed asserting that {actual} is not equal to {expected}",
    "ASSERT_SAME_FAILED": "Failed asserting that {actual} is identical to {expected}",
    "ASSERT_NOT_SAME_FAILED": "Failed asserting that {actual} is not identical to {expected}",
    "ASSERT_BOOL_FAILED": "Failed asserting that {actual} is {expected}",
}


@dataclass(frozen=True)
class Failure:
    name: str
    reason: str
    message: str
    file: str
    line: int


@dataclass(frozen=True)
class FileResult:
    tests: int = 0
    assertions: int = 0
    finished: bool = False
    failures: tuple[Failure, ...] = ()


def json_display(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def parse_test_output(output: str | bytes, class_name: str, filename: str) -> FileResult:
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")

    tests = 0
    assertions = 0
    finished = False
    failures: list[Failure] = []
    current_test = ""

    for lineno, line in enumerate(output.split("\n"), start=1):
        if not line.strip():
            continue
        try:
            fields = json.loads(line)
        except json.JSONDecodeError as exc:
            raise EventStreamError(f"output line {lineno}: {line}: {exc}") from exc
        if not isinstance(fields, list):
            raise EventStreamError(f"output line {lineno}: {line}: expected a JSON array")
        if not fields:
            raise EventStreamError(f"output line {lineno}: {line}: empty fields")
        tag = fields[0]
        if not isinstance(tag, str):
            raise EventStreamError(f"output line {lineno}: {line}: operation tag is not a string")

        if tag == START:
            if len(fields) < 2 or not isinstance(fields[1], str):
                raise EventStreamError(f"output line {lineno}: {line}: START expects a test name")
            current_test = fields[1]
            tests += 1
        elif tag == ASSERT_OK:
            assertions += 1
        elif tag == FINISHED:
            finished = True
        elif tag in FAILURE_REASONS:
            if len(fields) < 5:
                raise EventStreamError(
                    f"output line {lineno}: {line}: {tag} expects expected, actual, message and line"
                )
            expected, actual, message, line_number = fields[1:5]
            if not isinstance(line_number, (int, float)) or isinstance(line_number, bool):
                raise EventStreamError(f"output line {lineno}: {line}: line is not a number")
            assertions += 1
            if tag == "ASSERT_BOOL_FAILED" and isinstance(expected, str):
                expected_text = expected
            else:
                expected_text = json_display(expected)
            failures.append(
                Failure(
                    name=f"{class_name}::{current_test}",
                    reason=FAILURE_REASONS[tag].format(actual=json_display(actual), expected=expected_text),
                    message=message if isinstance(message, str) else json_display(message),
                    file=filename,
                    line=int(line_number),
                )
            )
        else:
            raise EventStreamError(f"output line {lineno}: {line}: unexpected op {tag}")

    return FileResult(tests=tests, assertions=assertions, finished=finished, failures=tuple(failures))
