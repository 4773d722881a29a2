"""
C preprocessing tokens — a small regex lexer shared by the macro matcher
and the location resolver.

Whitespace and comments are dropped.  pp-numbers such as ``0x40000000UL``
come out as one NUMERIC token.
"""

import re
from enum import Enum
from typing import List, Tuple

from difflib import SequenceMatcher


class TokenKind(Enum):
    IDENT = "ident"
    KEYWORD = "keyword"
    NUMERIC = "numeric"
    L_PAREN = "("
    R_PAREN = ")"
    STAR = "*"
    PUNCT = "punct"
    LITERAL = "literal"     # string / character literal


C_KEYWORDS = frozenset({
    "auto", "break", "case", "char", "const", "continue", "default", "do",
    "double", "else", "enum", "extern", "float", "for", "goto", "if",
    "inline", "int", "long", "register", "restrict", "return", "short",
    "signed", "sizeof", "static", "struct", "switch", "typedef", "union",
    "unsigned", "void", "volatile", "while", "_Alignas", "_Alignof",
    "_Atomic", "_Bool", "_Complex", "_Generic", "_Imaginary", "_Noreturn",
    "_Static_assert", "_Thread_local",
})

_TOKEN_RE = re.compile(r"""
    (?P<ws>\s+|/\*.*?\*/|//[^\n]*)
  | (?P<literal>L?"(?:\\.|[^"\\])*"|L?'(?:\\.|[^'\\])*')
  | (?P<number>\.?[0-9](?:[eEpP][+-]|[0-9a-zA-Z_.])*)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<punct>\.\.\.|<<=|>>=|->|\+\+|--|<<|>>|<=|>=|==|!=|&&|\|\||[-+*/%&|^]=|\#\#|[^\s])
""", re.VERBOSE | re.DOTALL)

_PUNCT_KINDS = {"(": TokenKind.L_PAREN, ")": TokenKind.R_PAREN, "*": TokenKind.STAR}


def token_spans(text: str) -> List[Tuple[TokenKind, str, int]]:
    """(kind, value, start offset) of every token in ``text``."""
    tokens = []
    for m in _TOKEN_RE.finditer(text):
        group = m.lastgroup
        value = m.group()
        if group == "ws":
            continue
        if group == "literal":
            kind = TokenKind.LITERAL
        elif group == "number":
            kind = TokenKind.NUMERIC
        elif group == "ident":
            kind = TokenKind.KEYWORD if value in C_KEYWORDS else TokenKind.IDENT
        else:
            kind = _PUNCT_KINDS.get(value, TokenKind.PUNCT)
        tokens.append((kind, value, m.start()))
    return tokens


def tokenize(text: str) -> List[Tuple[TokenKind, str]]:
    """Split a replacement list into preprocessing tokens (comments dropped)."""
    return [(kind, value) for kind, value, _ in token_spans(text)]


def aligned_column(expanded: bytes, column: int, original: bytes):
    """
    Column in ``original`` of the token starting at ``column`` in ``expanded``.

    The two lines are aligned token by token.  Tokens a macro expansion
    inserted have no counterpart in the original line, so a token coming
    from a macro yields None wherever it sits on the line.
    """
    # latin-1 keeps str offsets equal to byte offsets
    exp_tokens = token_spans(expanded.decode("latin-1"))
    orig_tokens = token_spans(original.decode("latin-1"))
    index = next((i for i, tok in enumerate(exp_tokens) if tok[2] == column), None)
    if index is None:
        return None

    matcher = SequenceMatcher(None, [tok[1] for tok in exp_tokens],
                              [tok[1] for tok in orig_tokens], autojunk=False)
    for a, b, size in matcher.get_matching_blocks():
        if a <= index < a + size:
            return orig_tokens[b + index - a][2]
    return None
