from __future__ import annotations

import pytest

from ktest_runner.errors import PhpParseError
from ktest_runner.extract import extract_benchmark, extract_test
from ktest_runner.phpsource import parse_php
from ktest_runner.textedit import apply_text_edits

BENCHMARK_SOURCE = b"""<?php

namespace Acme;

class BenchmarkFoo {
    private $parts = ['a', 'b'];

    public function benchmarkConcat() {
        return 'a' . 'b';
    }

    public function benchmark_implode() {
        return implode('', $this->parts);
    }

    public function helper() {}
}
"""

TEST_SOURCE = b"""<?php

use PHPUnit\\Framework\\TestCase;

class StringsTest extends TestCase {
    public static function setUpBeforeClass(): void {}

    public function testConcat() {
        $this->assertSame("ab", "a" . "b");
        $this->assertTrue(true);
    }

    public function testEmpty() {
        $this->assertTrue();
        $this->helper(1);
    }

    public function helper($x) {}
}
"""


def test_benchmark_class_matching_its_file_has_no_issues() -> None:
    unit = extract_benchmark(parse_php(BENCHMARK_SOURCE), "bench/BenchmarkFoo.php")

    assert unit.found
    assert unit.issues == ()
    assert unit.class_name == "BenchmarkFoo"
    assert unit.class_fqn == "\\Acme\\BenchmarkFoo"
    assert [(m.name, m.key) for m in unit.methods] == [
        ("benchmarkConcat", "Concat"),
        ("benchmark_implode", "implode"),
    ]


def test_benchmark_file_name_mismatch_blocks_build() -> None:
    unit = extract_benchmark(parse_php(BENCHMARK_SOURCE), "bench/Foo.php")

    assert unit.found
    assert len(unit.blocking_issues) == 1
    message = str(unit.blocking_issues[0])
    assert "does not match the class name 'BenchmarkFoo'" in message
    assert "name the file 'BenchmarkFoo.php'" in message


def test_suffixed_benchmark_class_gets_a_hint() -> None:
    source = b"<?php\nclass ConcatBenchmark {\n  public function benchmarkX() {}\n}\n"

    unit = extract_benchmark(parse_php(source), "ConcatBenchmark.php")

    assert not unit.found
    assert unit.blocking_issues == ()
    assert "perhaps you meant 'BenchmarkConcat'" in str(unit.issues[0])


def test_second_benchmark_class_is_reported_and_ignored() -> None:
    source = b"<?php\nclass BenchmarkA { function benchmarkX() {} }\nclass BenchmarkB { function benchmarkY() {} }\n"

    unit = extract_benchmark(parse_php(source), "BenchmarkA.php")

    assert unit.class_name == "BenchmarkA"
    assert [m.name for m in unit.methods] == ["benchmarkX"]
    assert "only the first one is used" in str(unit.issues[0])
    assert unit.blocking_issues == ()


def test_braced_namespace_is_qualified() -> None:
    source = b"<?php\nnamespace Acme\\Strings {\n  class BenchmarkBar { function benchmarkRun() {} }\n}\n"

    unit = extract_benchmark(parse_php(source), "BenchmarkBar.php")

    assert unit.class_fqn == "\\Acme\\Strings\\BenchmarkBar"


def test_test_extraction_collects_methods_and_hooks() -> None:
    unit = extract_test(parse_php(TEST_SOURCE))

    assert unit.found
    assert unit.class_fqn == "\\StringsTest"
    assert unit.methods == ("testConcat", "testEmpty")
    assert unit.has_set_up_before_class
    assert not unit.has_tear_down_after_class


def test_test_extraction_rewrites_asserts_and_base_class() -> None:
    unit = extract_test(parse_php(TEST_SOURCE))

    rewritten = apply_text_edits(TEST_SOURCE, unit.edits).decode()

    assert "use KPHPUnit\\Framework\\TestCase;" in rewritten
    assert '$this->assertSameWithLine(9, "ab", "a" . "b");' in rewritten
    assert "$this->assertTrueWithLine(10, true);" in rewritten
    assert "$this->assertTrueWithLine(14);" in rewritten
    assert "$this->helper(1);" in rewritten
    assert [edit.start for edit in unit.edits] == sorted(edit.start for edit in unit.edits)


def test_file_without_test_class() -> None:
    unit = extract_test(parse_php(b"<?php\nclass Helper {}\n"))

    assert not unit.found
    assert unit.methods == ()


def test_parse_error_is_reported_with_file_name() -> None:
    with pytest.raises(PhpParseError, match="Broken.php: parse error"):
        parse_php(b"<?php\nclass {\n", "Broken.php")
