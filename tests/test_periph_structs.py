"""
Peripheral Struct Name Extractor Tests — tokenizer, state machine, event filter.
"""

import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

MOCK_PROJECT = os.path.join(PROJECT_ROOT, "tests", "mock_project")
SYS_DIR = os.path.join(MOCK_PROJECT, "sys")
GPIO_C = os.path.join(MOCK_PROJECT, "hal_gpio.c")

from halfacts.c_tokens import TokenKind, aligned_column, tokenize
from halfacts.periph_structs import (
    MatchState, PeriphStructNameExtractor, TRANSITIONS, match_periph_cast,
)
from halfacts.preprocessor import MacroExpansion, PreprocessorEngine


def match(text):
    return match_periph_cast(tokenize(text))


class TestTokenizer(unittest.TestCase):

    def test_pp_number_is_one_token(self):
        self.assertEqual(tokenize("0x40000000UL"), [(TokenKind.NUMERIC, "0x40000000UL")])

    def test_cast_tokens(self):
        kinds = [k for k, _ in tokenize("((GPIO_TypeDef *) GPIOA_BASE)")]
        self.assertEqual(kinds, [
            TokenKind.L_PAREN, TokenKind.L_PAREN, TokenKind.IDENT, TokenKind.STAR,
            TokenKind.R_PAREN, TokenKind.IDENT, TokenKind.R_PAREN,
        ])

    def test_keywords_and_comments(self):
        tokens = tokenize("struct /* periph */ x // tail")
        self.assertEqual(tokens, [(TokenKind.KEYWORD, "struct"), (TokenKind.IDENT, "x")])

    def test_multichar_punctuators(self):
        self.assertEqual([v for _, v in tokenize("a->b<<=2")], ["a", "->", "b", "<<=", "2"])


class TestLineAlignment(unittest.TestCase):

    def test_identical_lines(self):
        line = b"    while (n > 0) {"
        self.assertEqual(aligned_column(line, 4, line), 4)

    def test_expansion_earlier_on_line(self):
        original = b"    NOP(); for (i = 0; i < n; i++) { }"
        expanded = b"    do { } while (0); for (i = 0; i < n; i++) { }"
        self.assertEqual(aligned_column(expanded, expanded.index(b"for"), original),
                         original.index(b"for"))

    def test_reflowed_whitespace(self):
        original = b"if (READY)   while (x) {"
        expanded = b"if (1) while (x) {"
        self.assertEqual(aligned_column(expanded, expanded.index(b"while"), original),
                         original.index(b"while"))

    def test_token_from_macro_has_no_column(self):
        original = b"    FOREVER {"
        expanded = b"    for (;;) {"
        self.assertIsNone(aligned_column(expanded, 4, original))

    def test_column_not_at_token_start(self):
        line = b"for (;;)"
        self.assertIsNone(aligned_column(line, 1, line))


class TestStateMachine(unittest.TestCase):

    def test_accepts_numeric_address(self):
        self.assertEqual(match("((periph_t*)0x40000000)"), "periph_t")

    def test_accepts_identifier_address(self):
        self.assertEqual(match("((periph_t*)BASE_ADDR)"), "periph_t")

    def test_accepts_with_whitespace_and_suffix(self):
        self.assertEqual(match("( ( GPIO_TypeDef * ) 0x40020000UL )"), "GPIO_TypeDef")

    def test_trailing_tokens_after_accept_ignored(self):
        self.assertEqual(match("((periph_t*)BASE) + 4"), "periph_t")

    def test_rejects_leading_token(self):
        self.assertIsNone(match("+((periph_t*)BASE)"))

    def test_rejects_missing_outer_paren(self):
        self.assertIsNone(match("(periph_t*)0x40000000"))

    def test_rejects_missing_star(self):
        self.assertIsNone(match("((periph_t)0x40000000)"))

    def test_rejects_double_star(self):
        self.assertIsNone(match("((periph_t**)0x40000000)"))

    def test_rejects_parenthesized_address(self):
        self.assertIsNone(match("((periph_t*)(BASE + 4))"))

    def test_rejects_compound_address(self):
        self.assertIsNone(match("((periph_t*)BASE + 4)"))

    def test_rejects_struct_keyword(self):
        self.assertIsNone(match("((struct periph*)0x40000000)"))

    def test_rejects_truncated(self):
        self.assertIsNone(match("((periph_t*)0x40000000"))
        self.assertIsNone(match(""))

    def test_transition_table_is_a_chain(self):
        """Every non-final state has a successor; ACCEPT has none."""
        sources = {state for state, _ in TRANSITIONS}
        self.assertNotIn(MatchState.ACCEPT, sources)
        self.assertEqual(sources, set(MatchState) - {MatchState.ACCEPT})


class TestExtractorEvents(unittest.TestCase):

    def _event(self, replacement, params=0, args=0):
        return MacroExpansion("M", replacement, params, args)

    def test_object_like_macro_accepted(self):
        ex = PeriphStructNameExtractor()
        ex.on_macro_expansion(self._event("((RCC_TypeDef *) 0x40023800UL)"))
        self.assertEqual(ex.names, {"RCC_TypeDef"})

    def test_macro_with_parameters_rejected(self):
        ex = PeriphStructNameExtractor()
        ex.on_macro_expansion(self._event("((USART_TypeDef *) base)", params=1, args=1))
        self.assertEqual(ex.names, set())

    def test_invocation_with_arguments_rejected(self):
        ex = PeriphStructNameExtractor()
        ex.on_macro_expansion(self._event("((USART_TypeDef *) 0x1)", params=0, args=1))
        self.assertEqual(ex.names, set())

    def test_empty_replacement(self):
        ex = PeriphStructNameExtractor()
        ex.on_macro_expansion(self._event(""))
        self.assertEqual(ex.names, set())

    def test_mock_project_stream(self):
        """GPIOA and RCC qualify; USART_AT takes a parameter; DMA1 lacks the outer parens."""
        ex = PeriphStructNameExtractor()
        engine = PreprocessorEngine([MOCK_PROJECT], [SYS_DIR])
        engine.preprocess(GPIO_C, ex.on_macro_expansion)
        self.assertEqual(ex.names, {"GPIO_TypeDef", "RCC_TypeDef"})


if __name__ == "__main__":
    unittest.main()
