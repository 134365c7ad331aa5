"""
Lexer / Tokenizer for the C execution tracer.

Converts C source text into a flat, position-sorted list of classified
tokens. Preprocessor lines are handled in a separate pass so that their
arguments (included file names, macro names and bodies) come out as their
own tokens and are never re-scanned by the general pattern matcher.

The lexer never fails: characters it does not recognize are dropped and
remembered in ``Lexer.skipped`` so the caller can report them.
"""

from __future__ import annotations
import bisect
import enum
import logging
import re
from dataclasses import dataclass
from typing import List, Tuple

log = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Token kinds
# ──────────────────────────────────────────────

class TokenKind(enum.Enum):
    KEYWORD = "keyword"
    IDENTIFIER = "identifier"
    FUNCTION = "function"
    OPERATOR = "operator"
    PUNCTUATION = "punctuation"
    LITERAL = "literal"
    PREPROCESSOR = "preprocessor"


# ──────────────────────────────────────────────
# Token data class
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    line: int
    column: int

    def __repr__(self):
        return f"Token({self.kind.name}, {self.text!r}, L{self.line}:{self.column})"


# ──────────────────────────────────────────────
# Classification tables
# ──────────────────────────────────────────────

KEYWORDS = frozenset({
    "auto", "break", "case", "char", "const", "continue", "default", "do",
    "double", "else", "enum", "extern", "float", "for", "goto", "if",
    "inline", "int", "long", "register", "restrict", "return", "short",
    "signed", "sizeof", "static", "struct", "switch", "typedef", "union",
    "unsigned", "void", "volatile", "while", "_Bool", "_Complex", "_Imaginary",
})

STD_FUNCTIONS = frozenset({
    "printf", "scanf", "malloc", "free", "calloc", "realloc", "strlen",
    "strcpy", "strcat", "strcmp", "fopen", "fclose", "fread", "fwrite",
    "fprintf", "fscanf", "fgets", "fputs", "fseek", "ftell", "rewind",
    "puts", "putchar",
})

ARITHMETIC_OPS = frozenset({"+", "-", "*", "/", "%", "++", "--"})
RELATIONAL_OPS = frozenset({"==", "!=", ">", "<", ">=", "<="})
LOGICAL_OPS = frozenset({"&&", "||", "!"})
BITWISE_OPS = frozenset({"&", "|", "^", "~", "<<", ">>"})
ASSIGNMENT_OPS = frozenset({
    "=", "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "<<=", ">>=",
})
OPERATORS = ARITHMETIC_OPS | RELATIONAL_OPS | LOGICAL_OPS | BITWISE_OPS | ASSIGNMENT_OPS

PUNCTUATION = frozenset({
    "{", "}", "(", ")", "[", "]", ";", ",", ".", "->", ":", "?", "...",
})


# ──────────────────────────────────────────────
# Token pattern (alternatives in priority order)
# ──────────────────────────────────────────────

# Longest operators first so "<<=" never splits into "<<" "=".
_OPERATOR_TEXTS = sorted(OPERATORS | PUNCTUATION, key=len, reverse=True)

TOKEN_RE = re.compile(
    r"(?P<comment>//[^\n]*|/\*.*?\*/)"
    r"|(?P<number>0[xX][0-9a-fA-F]+[uUlL]*|\d+\.\d*(?:[eE][+-]?\d+)?[fFlL]?|\d+[uUlL]*)"
    r"|(?P<string>\"(?:\\.|[^\"\\\n])*\"|'(?:\\.|[^'\\\n])*')"
    r"|(?P<op>" + "|".join(re.escape(op) for op in _OPERATOR_TEXTS) + r")"
    r"|(?P<word>\w+)",
    re.DOTALL,
)

_DEFINE_RE = re.compile(r"#\s*define\s+(\w+)")
_DIRECTIVE_COMMENT_RE = re.compile(r"'(?:\\.|[^'\\])*'|\"(?:\\.|[^\"\\])*\"|//.*|/\*.*?(?:\*/|$)")


def _blank_comments(text: str) -> str:
    """Replace comments on a directive line with spaces, leaving offsets intact."""
    return _DIRECTIVE_COMMENT_RE.sub(
        lambda m: m.group() if m.group()[0] in "\"'" else " " * len(m.group()), text)


# ──────────────────────────────────────────────
# Lexer
# ──────────────────────────────────────────────

class Lexer:
    """Tokenizes C source into a list of Tokens sorted by position."""

    def __init__(self, source: str):
        self.source = source
        self.tokens: List[Token] = []
        # (line, column, character) of every dropped character
        self.skipped: List[Tuple[int, int, str]] = []
        self._newlines = [i for i, ch in enumerate(source) if ch == "\n"]

    def _position(self, offset: int) -> Tuple[int, int]:
        """Convert a character offset to a 1-based (line, column) pair."""
        line = bisect.bisect_left(self._newlines, offset)
        line_start = self._newlines[line - 1] + 1 if line > 0 else 0
        return line + 1, offset - line_start + 1

    def _token_at(self, kind: TokenKind, text: str, offset: int) -> Token:
        line, column = self._position(offset)
        return Token(kind, text, line, column)

    # ── Preprocessor pass ─────────────────────

    def _scan_directives(self) -> List[Tuple[int, int]]:
        """Emit tokens for every directive line and return the claimed spans."""
        spans: List[Tuple[int, int]] = []
        offset = 0
        for raw_line in self.source.split("\n"):
            stripped = raw_line.strip()
            if stripped.startswith("#"):
                start = offset + (len(raw_line) - len(raw_line.lstrip()))
                spans.append((start, start + len(stripped)))
                self._emit_directive(stripped, start)
            offset += len(raw_line) + 1
        return spans

    def _emit_directive(self, text: str, start: int):
        text = _blank_comments(text)
        command = text.split()[0]
        self.tokens.append(self._token_at(TokenKind.PREPROCESSOR, command, start))
        rest_at = len(command)

        if command == "#include":
            for opener, closer in (("<", ">"), ('"', '"')):
                left = text.find(opener, rest_at)
                right = text.find(closer, left + 1) if left != -1 else -1
                if left != -1 and right != -1 and not text[rest_at:left].strip():
                    self.tokens.append(self._token_at(TokenKind.PUNCTUATION, opener, start + left))
                    self.tokens.append(self._token_at(
                        TokenKind.IDENTIFIER, text[left + 1:right], start + left + 1))
                    self.tokens.append(self._token_at(TokenKind.PUNCTUATION, closer, start + right))
                    return

        elif command == "#define":
            m = _DEFINE_RE.match(text)
            if m:
                self.tokens.append(self._token_at(TokenKind.IDENTIFIER, m.group(1), start + m.start(1)))
                body = text[m.end(1):]
                if body.strip():
                    lead = len(body) - len(body.lstrip())
                    self.tokens.append(self._token_at(
                        TokenKind.LITERAL, body.strip(), start + m.end(1) + lead))
                return

        # Anything else after the command word (#ifdef DEBUG, #pragma once,
        # malformed #include) is kept as a single literal.
        rest = text[rest_at:]
        if rest.strip():
            lead = len(rest) - len(rest.lstrip())
            self.tokens.append(self._token_at(TokenKind.LITERAL, rest.strip(), start + rest_at + lead))

    # ── General pass ──────────────────────────

    @staticmethod
    def _classify(match: re.Match) -> TokenKind:
        text = match.group()
        if match.lastgroup in ("number", "string"):
            return TokenKind.LITERAL
        if match.lastgroup == "op":
            return TokenKind.OPERATOR if text in OPERATORS else TokenKind.PUNCTUATION
        if text in KEYWORDS:
            return TokenKind.KEYWORD
        if text in STD_FUNCTIONS:
            return TokenKind.FUNCTION
        return TokenKind.IDENTIFIER

    def _record_skipped(self, start: int, end: int, spans: List[Tuple[int, int]]):
        for offset in range(start, end):
            ch = self.source[offset]
            if ch.isspace() or _within(offset, spans):
                continue
            line, column = self._position(offset)
            log.debug("Dropping unrecognized character %r at L%d:%d", ch, line, column)
            self.skipped.append((line, column, ch))

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source and return the position-sorted tokens."""
        self.tokens = []
        self.skipped = []
        spans = self._scan_directives()

        cursor = 0
        for match in TOKEN_RE.finditer(self.source):
            self._record_skipped(cursor, match.start(), spans)
            cursor = match.end()
            if _within(match.start(), spans) or match.lastgroup == "comment":
                continue
            self.tokens.append(self._token_at(self._classify(match), match.group(), match.start()))
        self._record_skipped(cursor, len(self.source), spans)

        self.tokens.sort(key=lambda t: (t.line, t.column))
        log.debug("Tokenized %d characters into %d tokens", len(self.source), len(self.tokens))
        return self.tokens


def _within(offset: int, spans: List[Tuple[int, int]]) -> bool:
    return any(start <= offset < end for start, end in spans)


def tokenize(source: str) -> List[Token]:
    """Tokenize ``source``; see ``Lexer`` for access to dropped characters."""
    return Lexer(source).tokenize()
