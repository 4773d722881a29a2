"""
Success Value Inferencer — which enum value a HAL function returns on success.

Per function with a body:
  • fast path  — the declared return type is an enum: take its first
                 "good" enumerator (name contains "ok" or "success")
  • slow path  — otherwise scan the body once, collecting the enum types
                 of returned constants, or of returned local variables
                 that were initialised / assigned from enum constants

Also classifies every function into the Declared and Defined sets from
which the API surface is computed.  Nothing in here raises: a function the
heuristic cannot resolve simply gets no record.
"""

import logging
from typing import Dict, List, Optional, Set

from tree_sitter import Node

from halfacts.enum_registry import EnumRegistry, EnumType
from halfacts.preprocessor import Origin
from halfacts.syntax import (
    SyntaxKind, declarator_name, first_value_child, function_declarator,
    last_reference, node_text, syntax_kind,
)
from halfacts.translation_unit import FunctionSignature, TranslationUnit

logger = logging.getLogger(__name__)

GOOD_NAME_ELEMENTS = ("ok", "success")


def is_good_name(name: str) -> bool:
    """Substring match, so ``HAL_NOT_OK`` counts as good too."""
    lowered = name.lower()
    return any(element in lowered for element in GOOD_NAME_ELEMENTS)


def success_value_of(enum_type: EnumType) -> Optional[int]:
    """Value of the first good enumerator of ``enum_type``, in declaration order."""
    for constant in enum_type.constants:
        if is_good_name(constant.name):
            return zero_extend(constant.value)
    return None


def zero_extend(value: int) -> int:
    """Two's-complement unsigned form of an enumerator value."""
    if value >= 0:
        return value
    if value >= -(1 << 31):
        return value & 0xFFFFFFFF
    return value & 0xFFFFFFFFFFFFFFFF


class SuccessValueInferencer:
    """Infers success values and classifies functions for one TU.

    ``known`` holds the success values already on record (the loaded cache);
    functions found there are never analysed again.
    """

    def __init__(self, registry: EnumRegistry, known: Optional[Dict[str, int]] = None):
        self.registry = registry
        self.known: Dict[str, int] = dict(known or {})
        self.inferred: Dict[str, int] = {}
        self.declared: Set[str] = set()
        self.defined: Set[str] = set()

    def is_resolved(self, name: str) -> bool:
        return name in self.known or name in self.inferred

    def run(self, tu: TranslationUnit):
        for fn in tu.functions():
            self.visit_function(tu, fn)
        logger.info("%s: %d success values inferred, %d declared, %d defined",
                    tu.main_file, len(self.inferred), len(self.declared), len(self.defined))

    def visit_function(self, tu: TranslationUnit, fn: FunctionSignature):
        if fn.is_diverging:
            return

        if not fn.has_body:
            if fn.origin is Origin.MODULE_HEADER:
                self.declared.add(fn.name)
            return

        if fn.origin is Origin.PRIMARY:
            self.defined.add(fn.name)
        elif fn.origin is Origin.MODULE_HEADER:
            self.declared.add(fn.name)

        if self.is_resolved(fn.name):
            return

        ret_enum = None if fn.returns_pointer else self.registry.resolve_type(fn.return_type)
        if ret_enum is not None:
            value = success_value_of(ret_enum)
            if value is not None:
                self.inferred[fn.name] = value
            return

        candidates = _BodyScan(self.registry, tu, fn).candidate_types()
        if len(candidates) > 1:
            logger.warning("In %s: multiple return enum types.", fn.name)
        for enum_type in candidates:
            value = success_value_of(enum_type)
            if value is not None:
                self.inferred[fn.name] = value
                break


# ═══════════════════════════════════════════════════════════════════════
#  Body scan (slow path)
# ═══════════════════════════════════════════════════════════════════════

class _BodyScan:
    """
    One pass over a function body tracking enum values flowing into
    local variables and out through return statements.

    Identifiers resolve through a stack of lexical scopes; each scope maps a
    name to a local-variable key, or to None for names that are in scope but
    are not local variables (parameters, block-scope ``extern``, nested
    function prototypes).  Names not found in any scope are looked up as
    enum constants.
    """

    def __init__(self, registry: EnumRegistry, tu: TranslationUnit, fn: FunctionSignature):
        self.registry = registry
        self.tu = tu
        self.fn = fn
        self.scopes: List[Dict[str, Optional[str]]] = []
        self.decl_enum: Dict[str, EnumType] = {}
        self.stored_enum: Dict[str, EnumType] = {}
        # insertion-ordered sets
        self.ret_enums: Dict[EnumType, None] = {}
        self.ret_vars: Dict[str, None] = {}

    def candidate_types(self) -> List[EnumType]:
        self.scopes.append({name: None for name in self.fn.parameters})
        self._visit(self.fn.body)
        self.scopes.pop()

        if self.ret_enums:
            return list(self.ret_enums)

        collected: Dict[EnumType, None] = {}
        for var in self.ret_vars:
            enum_type = self.decl_enum.get(var)
            if enum_type is None:
                enum_type = self.stored_enum.get(var)
            if enum_type is not None:
                collected.setdefault(enum_type, None)
        return list(collected)

    # ────────────────────────────────────────────────────────────────
    #  Traversal
    # ────────────────────────────────────────────────────────────────

    def _visit(self, node: Optional[Node]):
        if node is None:
            return
        kind = syntax_kind(node)
        if kind is SyntaxKind.OPAQUE:
            return
        if kind in (SyntaxKind.SCOPE, SyntaxKind.FOR_LOOP):
            self.scopes.append({})
            for child in node.named_children:
                self._visit(child)
            self.scopes.pop()
        elif kind is SyntaxKind.DECLARATION:
            self._visit_declaration(node)
        elif kind is SyntaxKind.RETURN:
            self._visit_return(node)
        elif kind is SyntaxKind.ASSIGNMENT:
            self._visit_assignment(node)
        else:
            for child in node.named_children:
                self._visit(child)

    def _visit_declaration(self, node: Node):
        is_extern = any(
            child.type == "storage_class_specifier" and self._text(child) == "extern"
            for child in node.children
        )
        for declarator in node.children_by_field_name("declarator"):
            ident = declarator_name(declarator)
            if ident is None:
                continue
            name = self._text(ident)
            if is_extern or function_declarator(declarator)[0] is not None:
                self.scopes[-1][name] = None
                continue

            key = f"{name}@{ident.start_byte}"
            self.scopes[-1][name] = key
            if declarator.type != "init_declarator":
                continue
            value = declarator.child_by_field_name("value")
            self._visit(value)
            enum_type = self._enum_of(value)
            if enum_type is not None:
                self.decl_enum[key] = enum_type

    def _visit_return(self, node: Node):
        value = first_value_child(node)
        self._visit(value)
        ref = last_reference(value)
        if ref is None:
            return
        enum_type = self._enum_constant(ref)
        if enum_type is not None:
            self.ret_enums.setdefault(enum_type, None)
            return
        var = self._local_variable(ref)
        if var is not None:
            self.ret_vars.setdefault(var, None)

    def _visit_assignment(self, node: Node):
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        self._visit(right)
        self._visit(left)
        enum_type = self._enum_of(right)
        if enum_type is None:
            return
        target = last_reference(left)
        var = self._local_variable(target) if target is not None else None
        if var is not None:
            # later assignments replace earlier ones
            self.stored_enum[var] = enum_type

    # ────────────────────────────────────────────────────────────────
    #  Name resolution
    # ────────────────────────────────────────────────────────────────

    def _lookup_scopes(self, name: str):
        for scope in reversed(self.scopes):
            if name in scope:
                return True, scope[name]
        return False, None

    def _enum_constant(self, ident: Node) -> Optional[EnumType]:
        name = self._text(ident)
        found, _ = self._lookup_scopes(name)
        if found:
            return None
        return self.registry.get(name)

    def _local_variable(self, ident: Node) -> Optional[str]:
        _, key = self._lookup_scopes(self._text(ident))
        return key

    def _enum_of(self, expr: Optional[Node]) -> Optional[EnumType]:
        ref = last_reference(expr)
        return self._enum_constant(ref) if ref is not None else None

    def _text(self, node: Node) -> str:
        return node_text(node, self.tu.source)
