"""
Loop Span Collector — source ranges of every ``for`` and ``while`` header.

Spans are recorded raw (expanded-text positions) while the TU is walked and
only resolved to presumed file locations when the loop cache is merged.
``do ... while`` loops are a different node type and are never matched.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from halfacts.preprocessor import SourceLocations
from halfacts.syntax import SyntaxKind, syntax_kind, walk_kind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawLoopSpan:
    """Loop keyword and header ')' as 0-indexed (row, column) in the expanded TU."""
    keyword: str
    begin: Tuple[int, int]
    end: Tuple[int, int]


@dataclass(frozen=True)
class LoopSpan:
    file: str
    begin_line: int
    begin_column: int
    end_line: int
    end_column: int

    @property
    def sort_key(self) -> Tuple[str, int, int]:
        return (
            self.file,
            (self.begin_line << 32) | self.begin_column,
            (self.end_line << 32) | self.end_column,
        )


class LoopSpanCollector:

    def __init__(self):
        self.raw: List[RawLoopSpan] = []

    def collect(self, tu):
        for node in walk_kind(tu.root, SyntaxKind.FOR_LOOP, SyntaxKind.WHILE_LOOP):
            if syntax_kind(node) is SyntaxKind.FOR_LOOP:
                close = _last_child(node, ")")
                keyword = "for"
            else:
                condition = node.child_by_field_name("condition")
                close = condition.children[-1] if condition is not None and condition.children else None
                keyword = "while"
            if close is None or close.type != ")":
                continue
            self.raw.append(RawLoopSpan(keyword, tuple(node.start_point), tuple(close.start_point)))
        logger.debug("%s: %d loop headers", tu.main_file, len(self.raw))

    def resolve(self, locations: SourceLocations) -> List[LoopSpan]:
        """Presumed-location spans; macro-synthesized or straddling ones are dropped."""
        spans = []
        for raw in self.raw:
            span = resolve_span(raw, locations)
            if span is None:
                logger.debug("Dropping loop span at expanded %s", raw.begin)
            else:
                spans.append(span)
        return spans


def _last_child(node, node_type: str):
    for child in reversed(node.children):
        if child.type == node_type:
            return child
    return None


def resolve_span(raw: RawLoopSpan, locations: SourceLocations) -> Optional[LoopSpan]:
    begin = locations.presumed_location(raw.begin[0], raw.begin[1], raw.keyword.encode())
    if begin is None:
        return None
    end_loc = locations.original_location(raw.end[0])
    if end_loc is None or end_loc[0] != begin.file:
        return None

    lines = locations.original_lines(begin.file)
    close = find_header_close(lines, begin.line - 1, begin.column - 1 + len(raw.keyword))
    if close is None:
        return None
    return LoopSpan(begin.file, begin.line, begin.column, close[0] + 1, close[1] + 1)


def find_header_close(lines: List[bytes], row: int, col: int) -> Optional[Tuple[int, int]]:
    """
    Position of the ')' matching the first '(' at or after (row, col).

    Only whitespace and comments may precede that '('.  Comments, string and
    character literals are skipped while matching.  Returns 0-indexed
    (row, column), or None.
    """
    depth = 0
    in_block_comment = False
    while row < len(lines):
        text = lines[row]
        i = col
        while i < len(text):
            c = text[i:i + 1]
            if in_block_comment:
                if text[i:i + 2] == b"*/":
                    in_block_comment = False
                    i += 2
                else:
                    i += 1
                continue
            if text[i:i + 2] == b"/*":
                in_block_comment = True
                i += 2
                continue
            if text[i:i + 2] == b"//":
                break
            if depth == 0:
                if c == b"(":
                    depth = 1
                elif not c.isspace():
                    return None
                i += 1
                continue
            if c in (b'"', b"'"):
                i = _skip_literal(text, i)
                continue
            if c == b"(":
                depth += 1
            elif c == b")":
                depth -= 1
                if depth == 0:
                    return row, i
            i += 1
        row += 1
        col = 0
    return None


def _skip_literal(text: bytes, start: int) -> int:
    quote = text[start:start + 1]
    i = start + 1
    while i < len(text):
        c = text[i:i + 1]
        if c == b"\\":
            i += 2
            continue
        if c == quote:
            return i + 1
        i += 1
    return i
