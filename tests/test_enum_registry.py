"""
Enum Registry Tests — constant values, type naming, typedef resolution.
"""

import os
import sys
import tempfile
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from halfacts.enum_registry import (
    EnumConstant, EnumRegistry, EnumType, parse_char_literal, parse_int_literal,
)
from halfacts.preprocessor import PreprocessorEngine
from halfacts.translation_unit import load_translation_unit

ENUM_SOURCE = """\
enum color { RED, GREEN = 5, BLUE };

typedef enum
{
    FLAG_A = 1 << 3,
    FLAG_B = 'A',
    FLAG_C = FLAG_A + 1,
    FLAG_D = (2 > 1) ? 10 : 20,
    FLAG_E = -1,
    FLAG_F = 0x10UL,
    FLAG_G = 010,
    FLAG_H = (unsigned int)GREEN * 2,
    FLAG_I = sizeof(int),
    FLAG_J
} flags_t;

enum { ANON_X, ANON_Y };

typedef flags_t flags_alias_t;
typedef flags_alias_t *flags_ptr_t;

flags_alias_t get_flags(void);
enum color get_color(void);
flags_ptr_t get_flags_ptr(void);
int get_int(void);
"""


def load_source(code: str):
    tmp = tempfile.mkdtemp()
    path = os.path.join(tmp, "enums.c")
    with open(path, "w") as f:
        f.write(code)
    return load_translation_unit(path, PreprocessorEngine())


class TestEnumValues(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.tu = load_source(ENUM_SOURCE)
        cls.registry = EnumRegistry.build(cls.tu)

    def _value(self, name):
        return self.registry.value_of(name)

    def test_implicit_values(self):
        self.assertEqual(self._value("RED"), 0)
        self.assertEqual(self._value("GREEN"), 5)
        self.assertEqual(self._value("BLUE"), 6)

    def test_constant_expressions(self):
        self.assertEqual(self._value("FLAG_A"), 8)
        self.assertEqual(self._value("FLAG_B"), 65)
        self.assertEqual(self._value("FLAG_C"), 9)
        self.assertEqual(self._value("FLAG_D"), 10)
        self.assertEqual(self._value("FLAG_E"), -1)
        self.assertEqual(self._value("FLAG_F"), 16)
        self.assertEqual(self._value("FLAG_G"), 8)

    def test_cast_of_earlier_constant(self):
        self.assertEqual(self._value("FLAG_H"), 10)

    def test_unevaluable_initializer_counts_on(self):
        """sizeof cannot be evaluated: the value continues from the previous one."""
        self.assertEqual(self._value("FLAG_I"), 11)
        self.assertEqual(self._value("FLAG_J"), 12)

    def test_declaration_order_kept(self):
        flags = self.registry.lookup("FLAG_A")
        self.assertEqual([c.name for c in flags.constants][:3], ["FLAG_A", "FLAG_B", "FLAG_C"])


class TestEnumNaming(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.tu = load_source(ENUM_SOURCE)
        cls.registry = EnumRegistry.build(cls.tu)

    def test_tag_name(self):
        self.assertEqual(self.registry.lookup("RED").name, "enum color")

    def test_typedef_name(self):
        self.assertEqual(self.registry.lookup("FLAG_A").name, "flags_t")

    def test_anonymous_name(self):
        name = self.registry.lookup("ANON_X").name
        self.assertTrue(name.startswith("<anonymous enum at "), name)
        self.assertTrue(name.endswith("enums.c:17>"), name)

    def test_same_type_for_all_constants(self):
        self.assertIs(self.registry.lookup("RED"), self.registry.lookup("BLUE"))
        self.assertIsNot(self.registry.lookup("RED"), self.registry.lookup("FLAG_A"))

    def test_types_in_declaration_order(self):
        names = [t.name for t in self.registry.types]
        self.assertEqual(names[:2], ["enum color", "flags_t"])
        self.assertEqual(len(names), 3)


class TestRegistryContract(unittest.TestCase):

    def test_lookup_unknown_is_key_error(self):
        registry = EnumRegistry()
        with self.assertRaises(KeyError):
            registry.lookup("NOT_A_CONSTANT")
        self.assertIsNone(registry.get("NOT_A_CONSTANT"))

    def test_first_registration_wins(self):
        registry = EnumRegistry()
        first = EnumType("enum first", [EnumConstant("SHARED", 1)])
        second = EnumType("enum second", [EnumConstant("SHARED", 2),
                                          EnumConstant("OTHER", 3)])
        registry.register(first)
        registry.register(second)
        registry.register(first)
        self.assertIs(registry.lookup("SHARED"), first)
        self.assertEqual(registry.value_of("SHARED"), 1)
        self.assertIs(registry.lookup("OTHER"), second)
        self.assertEqual(len(registry), 2)

    def test_identity_semantics(self):
        """Two enums with the same shape are still different types."""
        a = EnumType("enum x", [EnumConstant("X", 0)])
        b = EnumType("enum x", [EnumConstant("X", 0)])
        self.assertNotEqual(a, b)
        self.assertEqual(len({a, b}), 2)


class TestTypeResolution(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.tu = load_source(ENUM_SOURCE)
        cls.registry = EnumRegistry.build(cls.tu)
        cls.functions = {fn.name: fn for fn in cls.tu.functions()}

    def _resolve(self, name):
        return self.registry.resolve_type(self.functions[name].return_type)

    def test_typedef_chain(self):
        self.assertIs(self._resolve("get_flags"), self.registry.lookup("FLAG_A"))

    def test_enum_tag(self):
        self.assertIs(self._resolve("get_color"), self.registry.lookup("RED"))

    def test_typedef_of_pointer_is_not_enum(self):
        self.assertIsNone(self._resolve("get_flags_ptr"))

    def test_primitive_type(self):
        self.assertIsNone(self._resolve("get_int"))


class TestLiteralParsing(unittest.TestCase):

    def test_int_literals(self):
        self.assertEqual(parse_int_literal("42"), 42)
        self.assertEqual(parse_int_literal("0x1FU"), 31)
        self.assertEqual(parse_int_literal("0b101"), 5)
        self.assertEqual(parse_int_literal("017"), 15)
        self.assertEqual(parse_int_literal("0"), 0)
        self.assertEqual(parse_int_literal("100ull"), 100)
        self.assertEqual(parse_int_literal("-0x10"), -16)
        self.assertIsNone(parse_int_literal("1.5f"))

    def test_char_literals(self):
        self.assertEqual(parse_char_literal("'A'"), 65)
        self.assertEqual(parse_char_literal("'\\n'"), 10)
        self.assertEqual(parse_char_literal("'\\x41'"), 65)
        self.assertEqual(parse_char_literal("'\\0'"), 0)
        self.assertIsNone(parse_char_literal("''"))


if __name__ == "__main__":
    unittest.main()
