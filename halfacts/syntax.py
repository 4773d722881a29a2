"""
Syntax — the closed set of tree-sitter node variants the analyses care about.

Every pass dispatches on SyntaxKind instead of comparing raw node type
strings, so the handful of C constructs that matter (enum declarations,
functions, declarations, returns, plain assignments, identifier references,
loops, scopes) are named in exactly one place.
"""

from enum import Enum
from typing import Iterator, Optional, Tuple

import tree_sitter_c as tsc
from tree_sitter import Language, Parser, Node

C_LANGUAGE = Language(tsc.language())
_parser = Parser(C_LANGUAGE)


def parse(source: bytes):
    """Parse C source bytes into a tree-sitter tree."""
    return _parser.parse(source)


class SyntaxKind(Enum):
    ENUM_DECL = "enum_decl"             # enum specifier with a body
    TYPEDEF = "typedef"
    FUNCTION_DEF = "function_def"
    DECLARATION = "declaration"
    RETURN = "return"
    ASSIGNMENT = "assignment"           # plain '=' only
    IDENT_REF = "ident_ref"
    FOR_LOOP = "for_loop"
    WHILE_LOOP = "while_loop"
    SCOPE = "scope"
    OPAQUE = "opaque"                   # binary and comma operators
    OTHER = "other"


_KIND_BY_TYPE = {
    "type_definition": SyntaxKind.TYPEDEF,
    "function_definition": SyntaxKind.FUNCTION_DEF,
    "declaration": SyntaxKind.DECLARATION,
    "return_statement": SyntaxKind.RETURN,
    "identifier": SyntaxKind.IDENT_REF,
    "for_statement": SyntaxKind.FOR_LOOP,
    "while_statement": SyntaxKind.WHILE_LOOP,
    "compound_statement": SyntaxKind.SCOPE,
    "binary_expression": SyntaxKind.OPAQUE,
    "comma_expression": SyntaxKind.OPAQUE,
}

# Node types that are preprocessor containers we need to recurse into
PREPROC_CONTAINERS = {
    "preproc_ifdef", "preproc_if", "preproc_elif",
    "preproc_else", "preproc_ifndef",
}


def syntax_kind(node: Node) -> SyntaxKind:
    """Classify a tree-sitter node into one of the SyntaxKind variants."""
    if node.type == "enum_specifier":
        if node.child_by_field_name("body") is not None:
            return SyntaxKind.ENUM_DECL
        return SyntaxKind.OTHER
    if node.type == "assignment_expression":
        op = node.child_by_field_name("operator")
        if op is not None and op.type == "=":
            return SyntaxKind.ASSIGNMENT
        return SyntaxKind.OTHER
    return _KIND_BY_TYPE.get(node.type, SyntaxKind.OTHER)


# ═══════════════════════════════════════════════════════════════════════
#  Traversal helpers
# ═══════════════════════════════════════════════════════════════════════

def node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


def walk_kind(node: Node, *kinds: SyntaxKind) -> Iterator[Node]:
    """Yield all descendant nodes (preorder) whose kind is one of ``kinds``."""
    cursor = node.walk()
    visited = False
    while True:
        if not visited and syntax_kind(cursor.node) in kinds:
            yield cursor.node
        if not visited and cursor.goto_first_child():
            visited = False
            continue
        if cursor.goto_next_sibling():
            visited = False
            continue
        if cursor.goto_parent():
            visited = True
            continue
        break


def top_level_nodes(root: Node) -> Iterator[Node]:
    """File-scope nodes, looking through preprocessor conditionals."""
    for child in root.children:
        if child.type in PREPROC_CONTAINERS:
            yield from top_level_nodes(child)
        else:
            yield child


def last_reference(node: Optional[Node]) -> Optional[Node]:
    """
    The last identifier referenced by an expression, in source order.

    Operands of binary and comma operators are not looked at: an expression
    like ``a | E_OK`` does not directly name an enum constant.
    """
    last = None
    stack = [node] if node is not None else []
    while stack:
        current = stack.pop()
        kind = syntax_kind(current)
        if kind is SyntaxKind.OPAQUE:
            continue
        if kind is SyntaxKind.IDENT_REF:
            last = current
            continue
        stack.extend(reversed(current.named_children))
    return last


_DECLARATOR_WRAPPERS = {
    "pointer_declarator", "array_declarator", "parenthesized_declarator",
    "attributed_declarator", "init_declarator",
}


def declarator_name(declarator: Optional[Node]) -> Optional[Node]:
    """The identifier a (possibly nested) declarator declares."""
    node = declarator
    while node is not None and node.type in _DECLARATOR_WRAPPERS:
        if node.type in ("parenthesized_declarator", "attributed_declarator"):
            node = node.named_children[0] if node.named_children else None
        else:
            node = node.child_by_field_name("declarator")
    if node is not None and node.type == "function_declarator":
        return declarator_name(node.child_by_field_name("declarator"))
    if node is not None and node.type == "identifier":
        return node
    return None


def function_declarator(declarator: Optional[Node]) -> Tuple[Optional[Node], bool]:
    """
    If ``declarator`` declares a function, return (function_declarator, returns_pointer).

    ``int *f(void)`` is a function returning a pointer; ``int (*fp)(void)``
    is a pointer variable and yields (None, ...).
    """
    returns_pointer = False
    node = declarator
    while node is not None and node.type in ("pointer_declarator", "attributed_declarator"):
        if node.type == "pointer_declarator":
            returns_pointer = True
            node = node.child_by_field_name("declarator")
        else:
            node = node.named_children[0] if node.named_children else None
    if node is None or node.type != "function_declarator":
        return None, returns_pointer
    inner = node.child_by_field_name("declarator")
    if inner is None or inner.type != "identifier":
        return None, returns_pointer
    return node, returns_pointer


def first_value_child(node: Node) -> Optional[Node]:
    """First named child that is not a comment (e.g. the value of a return)."""
    for child in node.named_children:
        if child.type != "comment":
            return child
    return None
