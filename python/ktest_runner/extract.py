from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Callable

from tree_sitter import Node, Tree

from .phpsource import declared_name, iter_classes, iter_methods, iter_nodes, node_text, qualify
from .textedit import TextEdit

BENCHMARK_CLASS_MARKER = "Benchmark"
BENCHMARK_METHOD_MARKER = "benchmark"
TEST_CLASS_MARKER = "Test"
TEST_METHOD_MARKER = "test"

SET_UP_BEFORE_CLASS = "setUpBeforeClass"
TEAR_DOWN_AFTER_CLASS = "tearDownAfterClass"

ASSERT_METHODS = frozenset(
    {
        "assertTrue",
        "assertFalse",
        "assertSame",
        "assertNotSame",
        "assertEquals",
        "assertNotEquals",
    }
)

PHPUNIT_TEST_CASE = "PHPUnit\\Framework\\TestCase"
KPHPUNIT_TEST_CASE = "KPHPUnit\\Framework\\TestCase"


@dataclass(frozen=True)
class BenchMethod:
    name: str
    key: str


@dataclass(frozen=True)
class ExtractIssue:
    message: str
    blocks_build: bool = False

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class BenchmarkUnit:
    class_name: str = ""
    class_fqn: str = ""
    methods: tuple[BenchMethod, ...] = ()
    issues: tuple[ExtractIssue, ...] = ()

    @property
    def found(self) -> bool:
        return bool(self.class_fqn)

    @property
    def blocking_issues(self) -> tuple[ExtractIssue, ...]:
        return tuple(issue for issue in self.issues if issue.blocks_build)


@dataclass(frozen=True)
class TestUnit:
    class_name: str = ""
    class_fqn: str = ""
    methods: tuple[str, ...] = ()
    has_set_up_before_class: bool = False
    has_tear_down_after_class: bool = False
    edits: tuple[TextEdit, ...] = ()

    __test__ = False

    @property
    def found(self) -> bool:
        return bool(self.class_name)


def benchmark_key(method_name: str) -> str:
    key = method_name[len(BENCHMARK_METHOD_MARKER) :] if method_name.startswith(BENCHMARK_METHOD_MARKER) else method_name
    return key[1:] if key.startswith("_") else key


def extract_benchmark(tree: Tree, short_name: str) -> BenchmarkUnit:
    file_name = posixpath.basename(short_name.replace("\\", "/"))
    issues: list[ExtractIssue] = []
    chosen: tuple[str, Node] | None = None

    for namespace, class_node in iter_classes(tree.root_node):
        class_name = declared_name(class_node)
        if class_name.startswith(BENCHMARK_CLASS_MARKER):
            if chosen is not None:
                issues.append(
                    ExtractIssue(
                        f"more than one benchmark class in {file_name}: "
                        f"'{declared_name(chosen[1])}' and '{class_name}', only the first one is used"
                    )
                )
                continue
            chosen = (namespace, class_node)
            if file_name != f"{class_name}.php":
                issues.append(
                    ExtractIssue(
                        f"filename '{file_name}' does not match the class name '{class_name}' of the benchmark.\n"
                        "KPHP will not be able to find the class.\n\n"
                        f"To fix, name the file '{class_name}.php'",
                        blocks_build=True,
                    )
                )
        elif class_name.endswith(BENCHMARK_CLASS_MARKER):
            suggested = class_name[: -len(BENCHMARK_CLASS_MARKER)]
            issues.append(
                ExtractIssue(
                    f"perhaps you meant '{BENCHMARK_CLASS_MARKER}{suggested}', class name should be "
                    f"prefixed with '{BENCHMARK_CLASS_MARKER}' and not suffixed"
                )
            )

    if chosen is None:
        return BenchmarkUnit(issues=tuple(issues))

    namespace, class_node = chosen
    class_name = declared_name(class_node)
    methods = tuple(
        BenchMethod(name=name, key=benchmark_key(name))
        for name in (declared_name(method) for method in iter_methods(class_node))
        if name.startswith(BENCHMARK_METHOD_MARKER)
    )
    return BenchmarkUnit(
        class_name=class_name,
        class_fqn=qualify(namespace, class_name),
        methods=methods,
        issues=tuple(issues),
    )


def _rewrite_assert_call(node: Node) -> TextEdit | None:
    receiver = node.child_by_field_name("object")
    method = node.child_by_field_name("name")
    arguments = node.child_by_field_name("arguments")
    if receiver is None or method is None or arguments is None:
        return None
    if node_text(receiver) != "$this" or method.type != "name":
        return None
    method_name = node_text(method)
    if method_name not in ASSERT_METHODS:
        return None
    open_paren = arguments.children[0] if arguments.children else None
    if open_paren is None or open_paren.type != "(":
        return None

    line = method.start_point[0] + 1
    separator = ", " if arguments.named_child_count else ""
    return TextEdit(
        start=method.start_byte,
        end=open_paren.end_byte,
        replacement=f"{method_name}WithLine({line}{separator}".encode("utf-8"),
    )


def _rewrite_use_declaration(node: Node) -> TextEdit | None:
    if node.child_by_field_name("type") is not None:
        return None
    if any(child.type in {"function", "const"} for child in node.children):
        return None
    for clause in node.named_children:
        if clause.type != "namespace_use_clause":
            continue
        for name_node in clause.named_children:
            if name_node.type not in {"qualified_name", "name"}:
                continue
            if node_text(name_node).lstrip("\\") == PHPUNIT_TEST_CASE:
                return TextEdit(
                    start=name_node.start_byte,
                    end=name_node.end_byte,
                    replacement=KPHPUNIT_TEST_CASE.encode("utf-8"),
                )
            break
    return None


_FILE_REWRITERS: dict[str, Callable[[Node], TextEdit | None]] = {
    "namespace_use_declaration": _rewrite_use_declaration,
}

_CLASS_REWRITERS: dict[str, Callable[[Node], TextEdit | None]] = {
    "member_call_expression": _rewrite_assert_call,
}


def extract_test(tree: Tree) -> TestUnit:
    root = tree.root_node
    edits: list[TextEdit] = []
    for node in iter_nodes(root):
        rewriter = _FILE_REWRITERS.get(node.type)
        if rewriter is not None:
            edit = rewriter(node)
            if edit is not None:
                edits.append(edit)

    for namespace, class_node in iter_classes(root):
        class_name = declared_name(class_node)
        if not class_name.endswith(TEST_CLASS_MARKER):
            continue
        method_names = [declared_name(method) for method in iter_methods(class_node)]
        for node in iter_nodes(class_node):
            rewriter = _CLASS_REWRITERS.get(node.type)
            if rewriter is not None:
                edit = rewriter(node)
                if edit is not None:
                    edits.append(edit)
        return TestUnit(
            class_name=class_name,
            class_fqn=qualify(namespace, class_name),
            methods=tuple(name for name in method_names if name.startswith(TEST_METHOD_MARKER)),
            has_set_up_before_class=SET_UP_BEFORE_CLASS in method_names,
            has_tear_down_after_class=TEAR_DOWN_AFTER_CLASS in method_names,
            edits=tuple(sorted(edits, key=lambda edit: edit.start)),
        )

    return TestUnit(edits=tuple(sorted(edits, key=lambda edit: edit.start)))
