from __future__ import annotations

import pytest

from ktest_runner.textedit import TextEdit, apply_text_edits


def test_edits_apply_in_start_order() -> None:
    edits = [
        TextEdit(start=6, end=7, replacement=b"Z"),
        TextEdit(start=0, end=1, replacement=b"A"),
    ]

    assert apply_text_edits(b"0123456789", edits) == b"A12345Z789"


def test_edit_inside_rewritten_span_is_dropped() -> None:
    edits = [
        TextEdit(start=0, end=5, replacement=b"A"),
        TextEdit(start=2, end=8, replacement=b"B"),
    ]

    assert apply_text_edits(b"0123456789", edits) == b"A89"


def test_no_edits_returns_contents_unchanged() -> None:
    assert apply_text_edits(b"<?php echo 1;", []) == b"<?php echo 1;"


def test_insertion_and_deletion() -> None:
    edits = [
        TextEdit(start=3, end=3, replacement=b"---"),
        TextEdit(start=5, end=7, replacement=b""),
    ]

    assert apply_text_edits(b"0123456789", edits) == b"012---34789"


def test_invalid_span_is_rejected() -> None:
    with pytest.raises(ValueError, match="invalid edit span"):
        TextEdit(start=4, end=2, replacement=b"")
