"""
Preprocessor — pcpp front half of a translation unit.

Expands one TU with pcpp and keeps what the later passes need:
  • a MacroExpansion event for every macro pcpp is about to expand
  • the #line map tying each expanded line back to (file, line)
  • presumed-location and origin lookups built on that map
"""

import os
import io
import re
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Callable, List, Dict, Optional, Tuple
from pcpp import Preprocessor, OutputDirective, Action

from halfacts.c_tokens import aligned_column

logger = logging.getLogger(__name__)

_LINE_DIRECTIVE_RE = re.compile(r'^#line\s+(\d+)\s+"([^"]+)"')

_IDENT_CHARS = frozenset(b"abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_")


@dataclass
class MacroExpansion:
    """A macro about to be expanded, as reported by the preprocessor."""
    name: str
    replacement: str        # replacement list as written in the #define
    num_params: int
    num_args: int


@dataclass(frozen=True)
class PresumedLocation:
    """A position after macro expansion, mapped back to a real file."""
    file: str               # canonical absolute path
    line: int               # 1-indexed
    column: int             # 1-indexed, in bytes


class Origin(Enum):
    PRIMARY = "primary-file"
    MODULE_HEADER = "module-local-header"
    SYSTEM = "system"


class _QuietPreprocessor(Preprocessor):
    """A pcpp Preprocessor that logs instead of printing, and reports expansions.

    Missing includes are passed through untouched so that a TU can still be
    analysed without its toolchain headers.  ``expand_macros`` is the one
    place pcpp funnels every expansion through, so it doubles as the macro
    expansion event feed.
    """

    def __init__(self, on_expansion: Optional[Callable[[MacroExpansion], None]] = None):
        super().__init__()
        self._on_expansion = on_expansion

    def on_include_not_found(self, is_malformed, is_system_include, curdir, includepath):
        logger.debug("pcpp: include not found: %s (system=%s)", includepath, is_system_include)
        raise OutputDirective(Action.IgnoreAndPassThrough)

    def on_error(self, file, line, msg):
        logger.debug("pcpp: %s:%s: %s", file, line, msg)

    def expand_macros(self, tokens, expanding_from=[]):
        if self._on_expansion is not None:
            self._report_expansions(tokens, expanding_from)
        return super().expand_macros(tokens, expanding_from)

    def _report_expansions(self, tokens, expanding_from):
        for i, tok in enumerate(tokens):
            macro = self.macros.get(tok.value)
            if macro is None:
                continue
            if tok.value in expanding_from or tok.value in getattr(tok, "expanded_from", ()):
                continue

            num_args = 0
            if macro.arglist is not None:
                num_args = _count_invocation_args(tokens, i + 1)
                if num_args is None:
                    # Function-like macro name not followed by '(' is not expanded
                    continue

            self._on_expansion(MacroExpansion(
                name=tok.value,
                replacement="".join(t.value for t in macro.value),
                num_params=len(macro.arglist) if macro.arglist is not None else 0,
                num_args=num_args,
            ))


def _count_invocation_args(tokens, start: int) -> Optional[int]:
    """Count the arguments of a function-like macro invocation starting at ``start``.

    Returns None when the next non-blank token is not '('.
    """
    i = start
    while i < len(tokens) and not tokens[i].value.strip():
        i += 1
    if i >= len(tokens) or tokens[i].value != "(":
        return None

    depth = 0
    commas = 0
    has_content = False
    for tok in tokens[i:]:
        if tok.value == "(":
            depth += 1
            if depth == 1:
                continue
        elif tok.value == ")":
            depth -= 1
            if depth == 0:
                break
        elif tok.value == "," and depth == 1:
            commas += 1
            continue
        if tok.value.strip():
            has_content = True

    if commas:
        return commas + 1
    return 1 if has_content else 0


class PreprocessorEngine:
    """
    A C preprocessor wrapper using 'pcpp'.

    Expands the TU and parses the #line directives emitted by pcpp into a
    line map, so every line of the expanded text can be traced back to the
    file and line it came from.  The directives themselves are blanked in
    the returned text (line count preserved) so tree-sitter never sees them
    in the middle of a statement.
    """

    def __init__(self, include_dirs: Optional[List[str]] = None,
                 system_include_dirs: Optional[List[str]] = None):
        self.include_dirs = [os.path.abspath(d) for d in include_dirs or []]
        self.system_include_dirs = [os.path.abspath(d) for d in system_include_dirs or []]
        # Pre-defined macros (e.g. from compiler or user config)
        self.defines: Dict[str, str] = {}

    def add_define(self, name: str, value: str = "1"):
        """Add a global macro definition (e.g. -DDEBUG=1)."""
        self.defines[name] = value

    def preprocess(self, file_path: str,
                   on_expansion: Optional[Callable[[MacroExpansion], None]] = None
                   ) -> Tuple[bytes, "SourceLocations"]:
        """
        Preprocess a TU and return (expanded_source, locations).

        Raises OSError if the file cannot be read; pcpp failures propagate
        to the caller, which decides whether the TU is skipped.
        """
        full_path = os.path.abspath(file_path)

        pp = _QuietPreprocessor(on_expansion)
        for d in self.include_dirs + self.system_include_dirs:
            pp.add_path(d)
        for k, v in self.defines.items():
            pp.define(f"{k} {v}")

        with open(full_path, "r", encoding="utf-8", errors="replace") as f:
            pp.parse(f.read(), source=full_path)
        output_buffer = io.StringIO()
        pp.write(output_buffer)

        lines = output_buffer.getvalue().splitlines()
        line_map: List[Tuple[int, str]] = []
        cleaned: List[str] = []
        current_line = 1
        current_file = full_path

        for line in lines:
            m = _LINE_DIRECTIVE_RE.match(line)
            if m:
                # Directive: #line N "file" -> The *next* line is N
                next_line_num = int(m.group(1))
                current_file = m.group(2)
                line_map.append((next_line_num - 1, current_file))
                cleaned.append("")
                current_line = next_line_num
            else:
                line_map.append((current_line, current_file))
                cleaned.append(line)
                current_line += 1

        expanded = "\n".join(cleaned).encode("utf-8")
        locations = SourceLocations(full_path, line_map, self.system_include_dirs,
                                    expanded.split(b"\n"))
        logger.debug("Preprocessed %s: %d expanded lines", full_path, len(lines))
        return expanded, locations


class SourceLocations:
    """Maps positions in the expanded TU back to presumed file locations."""

    def __init__(self, main_file: str, line_map: List[Tuple[int, str]],
                 system_include_dirs: Optional[List[str]] = None,
                 expanded_lines: Optional[List[bytes]] = None):
        self.line_map = line_map
        self.expanded_lines = expanded_lines
        self._real: Dict[str, str] = {}
        self._originals: Dict[str, Optional[List[bytes]]] = {}
        self.main_file = self.canonical_path(main_file)
        self._system_dirs = [
            self.canonical_path(d).rstrip(os.sep) + os.sep
            for d in system_include_dirs or []
        ]

    def canonical_path(self, path: str) -> str:
        """Absolute, symlink-resolved form of ``path`` (memoised)."""
        real = self._real.get(path)
        if real is None:
            real = os.path.realpath(os.path.abspath(path))
            self._real[path] = real
        return real

    def original_location(self, row: int) -> Optional[Tuple[str, int]]:
        """(canonical file, 1-indexed line) for a 0-indexed expanded row."""
        if row < 0 or row >= len(self.line_map):
            return None
        orig_line, orig_file = self.line_map[row]
        return self.canonical_path(orig_file), orig_line

    def origin_of(self, row: int) -> Origin:
        """Classify where the expanded row came from."""
        loc = self.original_location(row)
        path = loc[0] if loc else self.main_file
        if path == self.main_file:
            return Origin.PRIMARY
        for d in self._system_dirs:
            if path.startswith(d):
                return Origin.SYSTEM
        return Origin.MODULE_HEADER

    def original_lines(self, path: str) -> Optional[List[bytes]]:
        """Raw lines of an original file, or None if it cannot be read."""
        if path not in self._originals:
            try:
                with open(path, "rb") as f:
                    self._originals[path] = f.read().split(b"\n")
            except OSError as e:
                logger.debug("Cannot read %s for location checks: %s", path, e)
                self._originals[path] = None
        return self._originals[path]

    def presumed_location(self, row: int, column: int, token: bytes) -> Optional[PresumedLocation]:
        """
        Resolve an expanded (row, column) holding ``token`` to a presumed location.

        The expanded line is aligned token by token with the mapped line of
        the original file.  The position only counts as file-backed when the
        token at ``column`` has a counterpart there; tokens produced by a
        macro expansion have none and yield None.
        """
        loc = self.original_location(row)
        if loc is None:
            return None
        path, line = loc
        lines = self.original_lines(path)
        if lines is None or line < 1 or line > len(lines):
            return None

        text = lines[line - 1]
        if self.expanded_lines is None or row >= len(self.expanded_lines):
            # no expanded text to align against
            if _token_at(text, column, token):
                return PresumedLocation(path, line, column + 1)
            return None

        expanded = self.expanded_lines[row]
        if not _token_at(expanded, column, token):
            return None
        orig_column = aligned_column(expanded, column, text)
        if orig_column is None or not _token_at(text, orig_column, token):
            return None
        return PresumedLocation(path, line, orig_column + 1)


def _token_at(text: bytes, column: int, token: bytes) -> bool:
    if column < 0 or text[column:column + len(token)] != token:
        return False
    if token[:1] == b"_" or token[:1].isalnum():
        # Whole-token match for identifiers and keywords
        if column > 0 and text[column - 1] in _IDENT_CHARS:
            return False
        end = column + len(token)
        if end < len(text) and text[end] in _IDENT_CHARS:
            return False
    return True
