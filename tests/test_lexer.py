"""
Tests for the tokenizer.

Tests cover:
  - Token classification (keywords, library functions, literals, operators)
  - Longest-match operators
  - Preprocessor lines (#include, #define, conditionals)
  - Comments and string literals
  - Line / column positions
  - Dropped characters
"""

import os
import re

import pytest
from ctrace.lexer import Lexer, Token, TokenKind, tokenize


def _pairs(source: str) -> list:
    return [(t.kind, t.text) for t in tokenize(source)]


# ─── Classification ─────────────────────

class TestClassification:
    def test_simple_declaration(self):
        assert _pairs("int x = 10;") == [
            (TokenKind.KEYWORD, "int"),
            (TokenKind.IDENTIFIER, "x"),
            (TokenKind.OPERATOR, "="),
            (TokenKind.LITERAL, "10"),
            (TokenKind.PUNCTUATION, ";"),
        ]

    def test_library_function_names(self):
        kinds = dict((text, kind) for kind, text in _pairs("printf malloc fopen myfunc"))
        assert kinds["printf"] == TokenKind.FUNCTION
        assert kinds["malloc"] == TokenKind.FUNCTION
        assert kinds["fopen"] == TokenKind.FUNCTION
        assert kinds["myfunc"] == TokenKind.IDENTIFIER

    def test_numeric_literals(self):
        texts = [t.text for t in tokenize("0x1F 3.14 2.5f 10UL 017")]
        assert texts == ["0x1F", "3.14", "2.5f", "10UL", "017"]
        assert all(t.kind == TokenKind.LITERAL for t in tokenize("0x1F 3.14"))

    def test_string_and_char_literals(self):
        toks = tokenize(r'"a \"quoted\" word" ' + "'\\n'")
        assert [t.kind for t in toks] == [TokenKind.LITERAL, TokenKind.LITERAL]
        assert toks[0].text == r'"a \"quoted\" word"'

    def test_arrow_and_dot_are_punctuation(self):
        assert (TokenKind.PUNCTUATION, "->") in _pairs("p->x")
        assert (TokenKind.PUNCTUATION, ".") in _pairs("s.x")


# ─── Operators ─────────────────────

class TestOperators:
    def test_longest_match(self):
        assert [t.text for t in tokenize("a <<= 2")] == ["a", "<<=", "2"]
        assert [t.text for t in tokenize("a<<b")] == ["a", "<<", "b"]

    def test_increment_is_one_token(self):
        assert [t.text for t in tokenize("i++")] == ["i", "++"]

    def test_logical_vs_bitwise(self):
        texts = [t.text for t in tokenize("a && b & c || d | e")]
        assert texts == ["a", "&&", "b", "&", "c", "||", "d", "|", "e"]


# ─── Preprocessor ─────────────────────

class TestPreprocessor:
    def test_include_angle_brackets(self):
        assert _pairs("#include <stdio.h>") == [
            (TokenKind.PREPROCESSOR, "#include"),
            (TokenKind.PUNCTUATION, "<"),
            (TokenKind.IDENTIFIER, "stdio.h"),
            (TokenKind.PUNCTUATION, ">"),
        ]

    def test_include_quotes(self):
        assert [t.text for t in tokenize('#include "util.h"')] == ["#include", '"', "util.h", '"']

    def test_define_with_body(self):
        assert _pairs("#define MAX(a, b) ((a) > (b) ? (a) : (b))") == [
            (TokenKind.PREPROCESSOR, "#define"),
            (TokenKind.IDENTIFIER, "MAX"),
            (TokenKind.LITERAL, "(a, b) ((a) > (b) ? (a) : (b))"),
        ]

    def test_define_without_body(self):
        assert _pairs("#define DEBUG") == [
            (TokenKind.PREPROCESSOR, "#define"),
            (TokenKind.IDENTIFIER, "DEBUG"),
        ]

    def test_conditional_directive(self):
        assert _pairs("    #ifdef DEBUG") == [
            (TokenKind.PREPROCESSOR, "#ifdef"),
            (TokenKind.LITERAL, "DEBUG"),
        ]

    def test_define_trailing_comment_dropped(self):
        assert _pairs("#define SIZE 5 // size") == [
            (TokenKind.PREPROCESSOR, "#define"),
            (TokenKind.IDENTIFIER, "SIZE"),
            (TokenKind.LITERAL, "5"),
        ]
        assert _pairs("#define SIZE /* count */ 5")[-1] == (TokenKind.LITERAL, "5")

    def test_define_string_keeps_slashes(self):
        toks = tokenize('#define URL "http://example.com" // site')
        assert toks[-1].text == '"http://example.com"'
        assert toks[-1].column == 13

    def test_conditional_trailing_comment_dropped(self):
        assert [t.text for t in tokenize("#endif // DEBUG")] == ["#endif"]

    def test_directive_body_not_rescanned(self):
        toks = tokenize("#define PI 3.14159\nint x;")
        assert [t.text for t in toks] == ["#define", "PI", "3.14159", "int", "x", ";"]


# ─── Comments and positions ─────────────────────

class TestPositions:
    def test_comments_dropped(self):
        src = "int a; // trailing\n/* block\n comment */ int b;"
        assert [t.text for t in tokenize(src)] == ["int", "a", ";", "int", "b", ";"]

    def test_comment_markers_inside_string(self):
        toks = tokenize('puts("http://example.com");')
        assert toks[2].text == '"http://example.com"'

    def test_line_and_column(self):
        toks = tokenize("int x;\n  x = 1;")
        assert toks[0] == Token(TokenKind.KEYWORD, "int", 1, 1)
        assert (toks[3].text, toks[3].line, toks[3].column) == ("x", 2, 3)

    def test_tokens_sorted_by_position(self):
        toks = tokenize("#include <stdio.h>\nint main() { return 0; }")
        positions = [(t.line, t.column) for t in toks]
        assert positions == sorted(positions)

    def test_block_comment_lines(self):
        toks = tokenize("/* one\ntwo\nthree */ int y;")
        assert toks[0].line == 3


# ─── Dropped characters ─────────────────────

class TestSkipped:
    def test_unknown_characters_recorded(self):
        lexer = Lexer("int x = 1; @ $")
        toks = lexer.tokenize()
        assert [t.text for t in toks] == ["int", "x", "=", "1", ";"]
        assert [ch for _, _, ch in lexer.skipped] == ["@", "$"]
        assert lexer.skipped[0][:2] == (1, 12)

    def test_clean_source_skips_nothing(self):
        lexer = Lexer("int main() { return 0; }")
        lexer.tokenize()
        assert lexer.skipped == []

    def test_empty_source(self):
        assert tokenize("") == []


# ─── Concatenation ─────────────────────

EXAMPLES_DIR = os.path.join(os.path.dirname(__file__), "..", "examples")


def _visible(text: str) -> str:
    return re.sub(r"\s+", "", text)


class TestConcatenation:
    def test_tokens_reproduce_source(self):
        src = "#include <stdio.h>\n#define SQ(x) ((x)*(x))\nint main() {\n  int a[3] = {1, 2, 3};\n  return a[0] <<= 1;\n}\n"
        assert _visible("".join(t.text for t in tokenize(src))) == _visible(src)

    @pytest.mark.parametrize("name", sorted(f for f in os.listdir(EXAMPLES_DIR) if f.endswith(".c")))
    def test_examples_reproduce_source(self, name):
        with open(os.path.join(EXAMPLES_DIR, name), encoding="utf-8") as f:
            src = f.read()
        lexer = Lexer(src)
        joined = "".join(t.text for t in lexer.tokenize())
        assert lexer.skipped == []
        # string literals keep their inner spaces, so compare without whitespace
        assert _visible(joined) == _visible(re.sub(r"//[^\n]*|/\*.*?\*/", "", src, flags=re.DOTALL))
