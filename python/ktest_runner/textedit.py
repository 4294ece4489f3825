from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class TextEdit:
    start: int
    end: int
    replacement: bytes

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"invalid edit span [{self.start}, {self.end})")


def apply_text_edits(contents: bytes, edits: Iterable[TextEdit]) -> bytes:
    """Apply edits in start order; an edit starting inside an already rewritten span is dropped."""
    ordered = sorted(edits, key=lambda edit: edit.start)
    if not ordered:
        return contents

    out = bytearray()
    offset = 0
    for edit in ordered:
        if edit.start < offset:
            offset = max(offset, edit.end)
            continue
        out += contents[offset : edit.start]
        out += edit.replacement
        offset = edit.end
    out += contents[offset:]
    return bytes(out)
