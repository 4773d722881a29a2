"""
Enum Registry — every enum constant of a TU mapped to its owning enum type.

Built fresh for each translation unit from all enum declarations reachable
in it (primary file, module headers and system headers alike).  Also
follows typedef chains so that a declared type such as ``HAL_StatusTypeDef``
can be resolved to the enum it names.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from tree_sitter import Node

from halfacts.syntax import SyntaxKind, node_text, syntax_kind, walk_kind

logger = logging.getLogger(__name__)


@dataclass
class EnumConstant:
    """An enumeration constant with its computed value."""
    name: str
    value: int


@dataclass(eq=False)
class EnumType:
    """An enum declaration.  Compared by identity: two enums never merge."""
    name: str
    constants: List[EnumConstant] = field(default_factory=list)

    def __repr__(self):
        return f"EnumType({self.name!r}, {[c.name for c in self.constants]})"


class EnumRegistry:
    """Constant name -> EnumType lookup table for one translation unit."""

    def __init__(self):
        self._owner: Dict[str, EnumType] = {}
        self._constants: Dict[str, EnumConstant] = {}
        self._by_node: Dict[Tuple[int, int], EnumType] = {}
        self._tags: Dict[str, EnumType] = {}
        self._typedefs: Dict[str, Node] = {}
        self._source = b""

    # ────────────────────────────────────────────────────────────────
    #  Registration and lookup
    # ────────────────────────────────────────────────────────────────

    def register(self, enum_type: EnumType):
        """Map each constant of ``enum_type`` to it.  The first owner wins."""
        for constant in enum_type.constants:
            if constant.name not in self._owner:
                self._owner[constant.name] = enum_type
                self._constants[constant.name] = constant

    def lookup(self, constant_name: str) -> EnumType:
        """Owning type of a registered constant.  Unknown names are a caller bug."""
        return self._owner[constant_name]

    def get(self, constant_name: str) -> Optional[EnumType]:
        return self._owner.get(constant_name)

    def value_of(self, constant_name: str) -> Optional[int]:
        constant = self._constants.get(constant_name)
        return constant.value if constant is not None else None

    def __len__(self) -> int:
        return len(self._owner)

    @property
    def types(self) -> List[EnumType]:
        """Registered enum types, in declaration order."""
        seen: Dict[EnumType, None] = {}
        for enum_type in self._by_node.values():
            seen.setdefault(enum_type, None)
        return list(seen)

    # ────────────────────────────────────────────────────────────────
    #  Building from a translation unit
    # ────────────────────────────────────────────────────────────────

    @classmethod
    def build(cls, tu) -> "EnumRegistry":
        """Register every enum declared anywhere in ``tu``."""
        registry = cls()
        registry._source = tu.source
        for node in walk_kind(tu.root, SyntaxKind.ENUM_DECL, SyntaxKind.TYPEDEF):
            if syntax_kind(node) is SyntaxKind.TYPEDEF:
                registry._add_typedef(node)
            else:
                enum_type = registry._declare_enum(node, tu)
                registry.register(enum_type)
        logger.debug("Registered %d enum constants in %d enum types",
                     len(registry), len(registry.types))
        return registry

    def _add_typedef(self, node: Node):
        type_node = node.child_by_field_name("type")
        if type_node is None:
            return
        for declarator in node.children_by_field_name("declarator"):
            # Only plain aliases; `typedef enum e *p_t;` is not an enum type
            if declarator.type == "type_identifier":
                self._typedefs.setdefault(self._text(declarator), type_node)

    def _declare_enum(self, node: Node, tu) -> EnumType:
        enum_type = EnumType(self._enum_name(node, tu))
        self._by_node[(node.start_byte, node.end_byte)] = enum_type
        tag = node.child_by_field_name("name")
        if tag is not None:
            self._tags.setdefault(self._text(tag), enum_type)

        local: Dict[str, int] = {}
        next_val = 0
        for child in node.child_by_field_name("body").named_children:
            if child.type != "enumerator":
                continue
            name_node = child.child_by_field_name("name")
            if name_node is None:
                continue
            name = self._text(name_node)

            value = None
            val_node = child.child_by_field_name("value")
            if val_node is not None:
                value = self._evaluate(val_node, local)
                if value is None:
                    logger.debug("Cannot evaluate initializer of %s, using %d", name, next_val)
            if value is None:
                value = next_val

            enum_type.constants.append(EnumConstant(name, value))
            local[name] = value
            next_val = value + 1
        return enum_type

    def _enum_name(self, node: Node, tu) -> str:
        parent = node.parent
        if parent is not None and syntax_kind(parent) is SyntaxKind.TYPEDEF:
            for declarator in parent.children_by_field_name("declarator"):
                if declarator.type == "type_identifier":
                    return self._text(declarator)
        tag = node.child_by_field_name("name")
        if tag is not None:
            return f"enum {self._text(tag)}"
        loc = tu.locations.original_location(node.start_point[0])
        if loc is None:
            return f"<anonymous enum at {tu.main_file}:{node.start_point[0] + 1}>"
        return f"<anonymous enum at {loc[0]}:{loc[1]}>"

    # ────────────────────────────────────────────────────────────────
    #  Type resolution
    # ────────────────────────────────────────────────────────────────

    def resolve_type(self, type_node: Optional[Node]) -> Optional[EnumType]:
        """The EnumType a declared type denotes, following typedef chains."""
        visited: Set[str] = set()
        node = type_node
        while node is not None:
            if node.type == "enum_specifier":
                if node.child_by_field_name("body") is not None:
                    return self._by_node.get((node.start_byte, node.end_byte))
                tag = node.child_by_field_name("name")
                return self._tags.get(self._text(tag)) if tag is not None else None
            if node.type != "type_identifier":
                return None
            alias = self._text(node)
            if alias in visited:
                return None
            visited.add(alias)
            node = self._typedefs.get(alias)
        return None

    # ────────────────────────────────────────────────────────────────
    #  Integer constant expressions
    # ────────────────────────────────────────────────────────────────

    def _evaluate(self, node: Node, local: Dict[str, int]) -> Optional[int]:
        t = node.type
        if t == "number_literal":
            return parse_int_literal(self._text(node))
        if t == "char_literal":
            return parse_char_literal(self._text(node))
        if t == "identifier":
            name = self._text(node)
            if name in local:
                return local[name]
            return self.value_of(name)
        if t == "parenthesized_expression":
            inner = [c for c in node.named_children if c.type != "comment"]
            return self._evaluate(inner[0], local) if len(inner) == 1 else None
        if t == "cast_expression":
            value = node.child_by_field_name("value")
            return self._evaluate(value, local) if value is not None else None
        if t == "unary_expression":
            operand = self._evaluate(node.child_by_field_name("argument"), local)
            if operand is None:
                return None
            op = node.child_by_field_name("operator").type
            return _UNARY_OPS[op](operand) if op in _UNARY_OPS else None
        if t == "binary_expression":
            left = self._evaluate(node.child_by_field_name("left"), local)
            right = self._evaluate(node.child_by_field_name("right"), local)
            if left is None or right is None:
                return None
            op = node.child_by_field_name("operator").type
            fn = _BINARY_OPS.get(op)
            if fn is None:
                return None
            try:
                return fn(left, right)
            except (ZeroDivisionError, ValueError):
                return None
        if t == "conditional_expression":
            cond = self._evaluate(node.child_by_field_name("condition"), local)
            if cond is None:
                return None
            branch = node.child_by_field_name("consequence" if cond else "alternative")
            return self._evaluate(branch, local) if branch is not None else None
        return None

    def _text(self, node: Node) -> str:
        return node_text(node, self._source)


def _c_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _c_mod(a: int, b: int) -> int:
    return a - b * _c_div(a, b)


_UNARY_OPS = {
    "-": lambda a: -a,
    "+": lambda a: a,
    "~": lambda a: ~a,
    "!": lambda a: int(not a),
}

_BINARY_OPS = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": _c_div,
    "%": _c_mod,
    "<<": lambda a, b: a << b,
    ">>": lambda a, b: a >> b,
    "&": lambda a, b: a & b,
    "|": lambda a, b: a | b,
    "^": lambda a, b: a ^ b,
    "&&": lambda a, b: int(bool(a) and bool(b)),
    "||": lambda a, b: int(bool(a) or bool(b)),
    "==": lambda a, b: int(a == b),
    "!=": lambda a, b: int(a != b),
    "<": lambda a, b: int(a < b),
    ">": lambda a, b: int(a > b),
    "<=": lambda a, b: int(a <= b),
    ">=": lambda a, b: int(a >= b),
}


def parse_int_literal(text: str) -> Optional[int]:
    """Value of a C integer literal (``0x1FU``, ``010``, ``0b101``, ``42ul``)."""
    digits = text.replace("'", "").strip().rstrip("uUlLzZ")
    sign = 1
    if digits[:1] in ("-", "+"):
        sign = -1 if digits[0] == "-" else 1
        digits = digits[1:].lstrip()
    if not digits:
        return None
    try:
        if digits[:2] in ("0x", "0X"):
            return sign * int(digits[2:], 16)
        if digits[:2] in ("0b", "0B"):
            return sign * int(digits[2:], 2)
        if len(digits) > 1 and digits[0] == "0":
            return sign * int(digits[1:], 8)
        return sign * int(digits, 10)
    except ValueError:
        # floating literal or malformed
        return None


_SIMPLE_ESCAPES = {
    "n": 10, "t": 9, "r": 13, "0": 0, "a": 7, "b": 8, "f": 12, "v": 11,
    "\\": 92, "'": 39, '"': 34, "?": 63,
}


def parse_char_literal(text: str) -> Optional[int]:
    """Value of a plain C character literal such as ``'A'`` or ``'\\n'``."""
    start = text.find("'")
    end = text.rfind("'")
    if start < 0 or end <= start + 1:
        return None
    body = text[start + 1:end]
    if not body.startswith("\\"):
        return ord(body[0]) if len(body) == 1 else None
    esc = body[1:]
    if esc[:1] in ("x", "X"):
        try:
            return int(esc[1:], 16)
        except ValueError:
            return None
    if esc and all(c in "01234567" for c in esc):
        return int(esc, 8)
    return _SIMPLE_ESCAPES.get(esc)
