"""
Peripheral Struct Name Extractor — register-block types behind address casts.

CMSIS-style device headers define every peripheral instance as

    #define GPIOA   ((GPIO_TypeDef *) GPIOA_BASE)

Whenever such an object-like macro is expanded, its replacement tokens are
run through a small state machine recognising exactly

    (  (  IDENT  *  )  ADDR  )

where ADDR is one numeric literal or identifier.  The captured IDENT is the
peripheral struct (or typedef) name.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, Optional, Set, Tuple

from halfacts.c_tokens import TokenKind, tokenize
from halfacts.preprocessor import MacroExpansion

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
#  State machine
# ═══════════════════════════════════════════════════════════════════════

class MatchState(Enum):
    BEGIN = "begin"
    FIRST_LP = "first-lparen"
    SECOND_LP = "second-lparen"
    TYPE_NAME = "type-name"
    STAR = "star"
    FIRST_RP = "first-rparen"
    ADDRESS = "address"
    ACCEPT = "accept"


# (state, token kind) -> next state.  Anything missing rejects.
TRANSITIONS: Dict[Tuple[MatchState, TokenKind], MatchState] = {
    (MatchState.BEGIN, TokenKind.L_PAREN): MatchState.FIRST_LP,
    (MatchState.FIRST_LP, TokenKind.L_PAREN): MatchState.SECOND_LP,
    (MatchState.SECOND_LP, TokenKind.IDENT): MatchState.TYPE_NAME,
    (MatchState.TYPE_NAME, TokenKind.STAR): MatchState.STAR,
    (MatchState.STAR, TokenKind.R_PAREN): MatchState.FIRST_RP,
    (MatchState.FIRST_RP, TokenKind.NUMERIC): MatchState.ADDRESS,
    (MatchState.FIRST_RP, TokenKind.IDENT): MatchState.ADDRESS,
    (MatchState.ADDRESS, TokenKind.R_PAREN): MatchState.ACCEPT,
}


def match_periph_cast(tokens: Iterable[Tuple[TokenKind, str]]) -> Optional[str]:
    """Type name captured from ``( ( IDENT * ) ADDR )``, or None.

    Tokens after the accepting ')' are not looked at.
    """
    state = MatchState.BEGIN
    captured = None
    for kind, value in tokens:
        next_state = TRANSITIONS.get((state, kind))
        if next_state is None:
            return None
        if next_state is MatchState.TYPE_NAME:
            captured = value
        state = next_state
        if state is MatchState.ACCEPT:
            return captured
    return None


class PeriphStructNameExtractor:
    """Collects struct names from the macro-expansion event stream of a TU."""

    def __init__(self):
        self.names: Set[str] = set()

    def on_macro_expansion(self, expansion: MacroExpansion):
        if expansion.num_params != 0 or expansion.num_args != 0:
            return
        if not expansion.replacement.strip():
            return
        name = match_periph_cast(tokenize(expansion.replacement))
        if name is not None and name not in self.names:
            logger.debug("Peripheral struct %s via macro %s", name, expansion.name)
            self.names.add(name)
