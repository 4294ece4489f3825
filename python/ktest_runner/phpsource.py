from __future__ import annotations

from typing import Iterator

import tree_sitter_php
from tree_sitter import Language, Node, Parser, Tree

from .errors import PhpParseError

PHP_LANGUAGE = Language(tree_sitter_php.language_php())

MAX_DIAGNOSTICS = 10


def parse_php(source: bytes, filename: str = "<source>") -> Tree:
    tree = Parser(PHP_LANGUAGE).parse(source)
    if tree.root_node.has_error:
        raise PhpParseError(filename, collect_diagnostics(tree.root_node))
    return tree


def collect_diagnostics(root: Node) -> list[str]:
    diagnostics: list[str] = []
    stack = [root]
    while stack and len(diagnostics) < MAX_DIAGNOSTICS:
        node = stack.pop()
        row, column = node.start_point[0] + 1, node.start_point[1] + 1
        if node.is_missing:
            diagnostics.append(f"line {row}:{column}: missing {node.type}")
            continue
        if node.is_error:
            snippet = node_text(node).splitlines()[0:1]
            near = f" near {snippet[0]!r}" if snippet else ""
            diagnostics.append(f"line {row}:{column}: syntax error{near}")
            continue
        stack.extend(child for child in reversed(node.children) if child.has_error or child.is_missing)
    return diagnostics


def node_text(node: Node | None) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def iter_nodes(node: Node) -> Iterator[Node]:
    """Pre-order walk over ``node`` and all of its descendants."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def iter_classes(root: Node) -> Iterator[tuple[str, Node]]:
    """Yield ``(namespace, class_declaration)`` pairs in source order."""
    namespace = ""
    for child in root.named_children:
        if child.type == "namespace_definition":
            name = node_text(child.child_by_field_name("name"))
            body = child.child_by_field_name("body")
            if body is None:
                namespace = name
            else:
                yield from _classes_in(body, name)
            continue
        yield from _classes_in(child, namespace)


def iter_methods(class_node: Node) -> Iterator[Node]:
    body = class_node.child_by_field_name("body")
    if body is None:
        return
    for member in body.named_children:
        if member.type == "method_declaration":
            yield member


def declared_name(node: Node) -> str:
    return node_text(node.child_by_field_name("name"))


def qualify(namespace: str, class_name: str) -> str:
    if namespace:
        return f"\\{namespace}\\{class_name}"
    return f"\\{class_name}"


def _classes_in(node: Node, namespace: str) -> Iterator[tuple[str, Node]]:
    for current in iter_nodes(node):
        if current.type == "class_declaration":
            yield namespace, current
