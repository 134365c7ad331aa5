"""
Tests for C expression semantics and printf formatting.

Tests cover:
  - Integer arithmetic (truncating division and modulo)
  - Logical, relational, bitwise and shift operators
  - Casts, sizeof and char wrap-around
  - Pointer arithmetic
  - Macro expansion
  - Literal parsing, escapes and source rendering
  - printf conversions
"""

import pytest
from ctrace.analysis import analyze
from ctrace.evaluator import (
    Typed, ValueHost, coerce, format_printf, parse_literal, to_source, unescape,
)
from ctrace.lexer import tokenize
from ctrace.parser import parse, parse_expression
from ctrace.state import SimulationError


def _expr(code: str):
    return parse_expression(tokenize(code))


def _eval(code: str, **values) -> Typed:
    bound = {name: v if isinstance(v, Typed) else Typed(v) for name, v in values.items()}
    return ValueHost(bound).evaluator().evaluate(_expr(code))


# ─── Arithmetic ─────────────────────

class TestArithmetic:
    def test_precedence(self):
        assert _eval("1 + 2 * 3").value == 7

    def test_division_truncates_toward_zero(self):
        assert _eval("7 / 2").value == 3
        assert _eval("-7 / 2").value == -3
        assert _eval("7 / -2").value == -3

    def test_modulo_sign_follows_dividend(self):
        assert _eval("-7 % 2").value == -1
        assert _eval("7 % -2").value == 1

    def test_division_by_zero(self):
        with pytest.raises(SimulationError, match="Division by zero"):
            _eval("1 / 0")

    def test_floating_division(self):
        result = _eval("3 / 2.0")
        assert result.value == 1.5
        assert result.ctype == "double"

    def test_bound_names(self):
        assert _eval("n * 10 + i", n=5, i=2).value == 52

    def test_uninitialized_operand(self):
        with pytest.raises(SimulationError):
            _eval("x + 1", x=Typed(None))


# ─── Logic and bits ─────────────────────

class TestLogicAndBits:
    def test_relational_results_are_ints(self):
        assert _eval("3 > 2").value == 1
        assert _eval("3 == 2").value == 0

    def test_short_circuit(self):
        # right side would divide by zero
        assert _eval("0 && 1 / 0").value == 0
        assert _eval("1 || 1 / 0").value == 1

    def test_not(self):
        assert _eval("!5").value == 0
        assert _eval("!0").value == 1

    def test_bitwise(self):
        assert _eval("12 & 10").value == 8
        assert _eval("12 | 10").value == 14
        assert _eval("12 ^ 10").value == 6
        assert _eval("~12").value == -13

    def test_shifts(self):
        assert _eval("12 << 2").value == 48
        assert _eval("12 >> 2").value == 3

    def test_conditional(self):
        assert _eval("a > b ? a : b", a=3, b=9).value == 9


# ─── Types ─────────────────────

class TestTypes:
    def test_cast_truncates(self):
        result = _eval("(int)3.9")
        assert result.value == 3 and result.ctype == "int"

    def test_sizeof_types(self):
        assert _eval("sizeof(int)").value == 4
        assert _eval("sizeof(double)").value == 8
        assert _eval("sizeof(char*)").value == 8

    def test_char_wraps(self):
        assert coerce(200, "char") == -56
        assert coerce(200, "unsigned char") == 200

    def test_float_coercion(self):
        assert coerce(5, "float") == 5.0
        assert coerce(2.7, "int") == 2

    def test_null_and_eof(self):
        assert _eval("NULL").value == 0
        assert _eval("EOF").value == -1

    def test_unknown_identifier(self):
        with pytest.raises(SimulationError, match="Unknown identifier"):
            _eval("mystery")


# ─── Pointers ─────────────────────

class TestPointerArithmetic:
    def test_scaled_by_element_size(self):
        ev = ValueHost().evaluator()
        assert ev.binary("+", Typed(0x1000, "int*"), Typed(2)) == Typed(0x1008, "int*")
        assert ev.binary("+", Typed(0x1000, "double*"), Typed(1)).value == 0x1008
        assert ev.binary("-", Typed(0x1000, "char*"), Typed(1)).value == 0xFFF

    def test_pointer_difference(self):
        ev = ValueHost().evaluator()
        assert ev.binary("-", Typed(0x1010, "int*"), Typed(0x1000, "int*")).value == 4

    def test_struct_pointer_uses_struct_size(self):
        ev = ValueHost(struct_sizes={"struct P": 12}).evaluator()
        assert ev.binary("+", Typed(0x1000, "struct P*"), Typed(1)).value == 0x100C


# ─── Macros ─────────────────────

class TestMacros:
    SOURCE = (
        "#define PI 3.14159\n"
        "#define SQUARE(x) ((x) * (x))\n"
        "#define MAX(a, b) ((a) > (b) ? (a) : (b))\n"
        "int main() { return 0; }\n"
    )

    def _macros(self):
        return analyze(parse(tokenize(self.SOURCE)), self.SOURCE).macros

    def test_object_like(self):
        ev = ValueHost(macros=self._macros()).evaluator()
        assert ev.value(_expr("PI * 2")) == pytest.approx(6.28318)

    def test_function_like(self):
        ev = ValueHost(macros=self._macros()).evaluator()
        assert ev.value(_expr("SQUARE(1 + 2)")) == 9
        assert ev.value(_expr("MAX(4, 11)")) == 11

    def test_wrong_argument_count(self):
        ev = ValueHost(macros=self._macros()).evaluator()
        with pytest.raises(SimulationError, match="expects 2 arguments"):
            ev.value(_expr("MAX(4)"))

    def test_substitute_text(self):
        macro = self._macros()["SQUARE"]
        assert macro.substitute({"x": "radius"}) == "((radius) * (radius))"
        assert macro.signature() == "SQUARE(x)"


# ─── Literals and text ─────────────────────

class TestLiterals:
    def test_integer_forms(self):
        assert parse_literal("42") == Typed(42, "int")
        assert parse_literal("0x1F").value == 31
        assert parse_literal("017").value == 15
        assert parse_literal("10L").ctype == "long"

    def test_floating_forms(self):
        assert parse_literal("2.5f") == Typed(2.5, "float")
        assert parse_literal("1.75") == Typed(1.75, "double")

    def test_char_and_string(self):
        assert parse_literal("'A'") == Typed(65, "char")
        assert parse_literal(r"'\n'").value == 10
        assert parse_literal(r'"a\tb"') == Typed("a\tb", "char*")

    def test_unescape(self):
        assert unescape(r"line\n") == "line\n"
        assert unescape(r"\x41\101\0") == "AA\0"
        assert unescape(r"\"q\"") == '"q"'

    def test_to_source(self):
        assert to_source(_expr("a * (b + c)")) == "a * (b + c)"
        assert to_source(_expr("*(ptr + i)")) == "*(ptr + i)"
        assert to_source(_expr("ptr->nome")) == "ptr->nome"
        assert to_source(_expr('printf("%d", x)')) == 'printf("%d", x)'
        assert to_source(_expr("(int*)malloc(n * sizeof(int))")) == "(int*)malloc(n * sizeof(int))"


# ─── printf ─────────────────────

class TestFormatPrintf:
    def test_integers(self):
        assert format_printf("%d|%5d|%-3d|", [Typed(7), Typed(42), Typed(1)]) == "7|   42|1  |"

    def test_float_precision(self):
        assert format_printf("%.2f", [Typed(1.75, "float")]) == "1.75"
        assert format_printf("%f", [Typed(0.5, "double")]) == "0.500000"

    def test_hex_char_percent(self):
        assert format_printf("%x %X %c 100%%", [Typed(255), Typed(255), Typed(65, "char")]) == "ff FF A 100%"

    def test_negative_hex_is_unsigned(self):
        assert format_printf("%x", [Typed(-1)]) == "ffffffff"

    def test_string_through_reader(self):
        memory = {0x1000: "João"}
        assert format_printf("Nome: %s", [Typed(0x1000, "char*")], memory.__getitem__) == "Nome: João"

    def test_pointer(self):
        assert format_printf("%p", [Typed(0x1000, "int*")]) == "0x1000"

    def test_star_width(self):
        assert format_printf("%*d", [Typed(4), Typed(7)]) == "   7"

    def test_missing_argument(self):
        with pytest.raises(SimulationError, match="Not enough arguments"):
            format_printf("%d %d", [Typed(1)])

    def test_uninitialized_argument(self):
        with pytest.raises(SimulationError, match="uninitialized"):
            format_printf("%d", [Typed(None)])
