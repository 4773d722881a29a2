"""
Translation unit — one compiled source file with everything it includes.

Runs the preprocessor over the TU, parses the expanded text with tree-sitter
and exposes the function declarations the inferencer classifies, each with
the origin of the file it was written in.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from tree_sitter import Node

from halfacts.preprocessor import MacroExpansion, Origin, PreprocessorEngine, SourceLocations
from halfacts.syntax import (
    SyntaxKind, declarator_name, function_declarator, node_text, parse,
    syntax_kind, top_level_nodes,
)

logger = logging.getLogger(__name__)

_NORETURN_RE = re.compile(r'\b(?:_Noreturn|noreturn|__noreturn__)\b')


@dataclass
class FunctionSignature:
    """A function declaration or definition as seen by the analyses."""
    name: str
    has_body: bool
    is_diverging: bool
    origin: Origin
    return_type: Optional[Node] = None
    returns_pointer: bool = False
    parameters: List[str] = field(default_factory=list)
    body: Optional[Node] = None


@dataclass
class TranslationUnit:
    main_file: str
    source: bytes
    tree: object
    locations: SourceLocations

    @property
    def root(self) -> Node:
        return self.tree.root_node

    def text(self, node: Node) -> str:
        return node_text(node, self.source)

    def functions(self) -> List[FunctionSignature]:
        """All file-scope function declarations and definitions, in source order."""
        candidates = []
        for node in top_level_nodes(self.root):
            kind = syntax_kind(node)
            if kind is SyntaxKind.FUNCTION_DEF:
                declarators = [node.child_by_field_name("declarator")]
            elif kind is SyntaxKind.DECLARATION:
                declarators = node.children_by_field_name("declarator")
            else:
                continue
            for declarator in declarators:
                fn_decl, returns_pointer = function_declarator(declarator)
                if fn_decl is not None:
                    candidates.append((node, fn_decl, returns_pointer))

        # A function is diverging if any of its declarations says so
        diverging: Set[str] = set()
        for node, fn_decl, _ in candidates:
            if self._is_noreturn(node, fn_decl):
                diverging.add(self._function_name(fn_decl))

        functions = []
        for node, fn_decl, returns_pointer in candidates:
            name = self._function_name(fn_decl)
            body = node.child_by_field_name("body") if node.type == "function_definition" else None
            functions.append(FunctionSignature(
                name=name,
                has_body=body is not None,
                is_diverging=name in diverging,
                origin=self.locations.origin_of(node.start_point[0]),
                return_type=node.child_by_field_name("type"),
                returns_pointer=returns_pointer,
                parameters=self._parameter_names(fn_decl),
                body=body,
            ))
        return functions

    def _function_name(self, fn_decl: Node) -> str:
        return self.text(fn_decl.child_by_field_name("declarator"))

    def _parameter_names(self, fn_decl: Node) -> List[str]:
        params = fn_decl.child_by_field_name("parameters")
        if params is None:
            return []
        names = []
        for child in params.named_children:
            if child.type != "parameter_declaration":
                continue
            ident = declarator_name(child.child_by_field_name("declarator"))
            if ident is not None:
                names.append(self.text(ident))
        return names

    def _is_noreturn(self, node: Node, fn_decl: Node) -> bool:
        """Check specifiers and attributes of a declaration for noreturn."""
        body = node.child_by_field_name("body") if node.type == "function_definition" else None
        end = body.start_byte if body is not None else node.end_byte
        text = self.source[node.start_byte:end]
        params = fn_decl.child_by_field_name("parameters")
        if params is not None:
            text = self.source[node.start_byte:params.start_byte] + self.source[params.end_byte:end]
        return _NORETURN_RE.search(text.decode("utf-8", errors="replace")) is not None


def load_translation_unit(file_path: str, preprocessor: PreprocessorEngine,
                          on_expansion: Optional[Callable[[MacroExpansion], None]] = None
                          ) -> Optional[TranslationUnit]:
    """Preprocess and parse a TU.  Returns None (logged) if either step fails."""
    try:
        expanded, locations = preprocessor.preprocess(file_path, on_expansion)
    except Exception as e:
        logger.error("Preprocessing failed for %s: %s", file_path, e)
        return None

    try:
        tree = parse(expanded)
    except Exception as e:
        logger.error("Failed to parse %s: %s", file_path, e)
        return None

    if tree.root_node.has_error:
        logger.info("Parse of %s contains errors; analysing the recoverable parts", file_path)
    return TranslationUnit(locations.main_file, expanded, tree, locations)


def origins_by_name(functions: List[FunctionSignature]) -> Dict[str, Set[Origin]]:
    """Group the origins each function name was seen in."""
    result: Dict[str, Set[Origin]] = {}
    for fn in functions:
        result.setdefault(fn.name, set()).add(fn.origin)
    return result
