"""
Recursive-descent parser for the C execution tracer.

Parses the token list from the Lexer into the syntax tree defined in
ast_nodes. Supports the subset of C needed by the teaching examples:

  - Preprocessor directives (kept as nodes, not expanded)
  - Global variables, struct definitions and function definitions
  - Local declarations with pointers, fixed-size arrays and initializer lists
  - Control flow: if/else, for, while, do-while, switch/case, break,
    continue, return
  - Expressions: assignment (all compound forms), ternary, logical,
    bitwise, relational, shift, arithmetic, unary, casts, sizeof,
    calls, array indexing, member access and postfix ++/--

There is no error recovery: the first unmet expectation raises ParseError.
"""

from __future__ import annotations
import logging
from typing import List, Optional

from .lexer import Token, TokenKind, ASSIGNMENT_OPS
from .ast_nodes import *

log = logging.getLogger(__name__)


# Keywords that may appear in a type specifier
TYPE_KEYWORDS = frozenset({
    "void", "char", "short", "int", "long", "float", "double", "signed",
    "unsigned", "_Bool", "const", "static", "volatile", "extern",
    "register", "auto", "inline", "restrict",
})

TAG_KEYWORDS = frozenset({"struct", "enum", "union"})

# Typedef names from the standard headers that the examples rely on
TYPEDEF_NAMES = frozenset({"FILE", "size_t", "bool", "ptrdiff_t", "time_t"})

UNARY_OPS = frozenset({"+", "-", "!", "~", "++", "--", "*", "&"})


class ParseError(Exception):
    def __init__(self, message: str, token: Optional[Token],
                 expected_kind: Optional[TokenKind] = None,
                 expected_text: Optional[str] = None, line: int = 0):
        self.token = token
        self.expected_kind = expected_kind
        self.expected_text = expected_text
        self.line = token.line if token is not None else line
        if token is not None:
            got = f"got {token.kind.value} {token.text!r}"
            loc = f"L{token.line}:{token.column}"
        else:
            got = "reached end of input"
            loc = f"L{self.line}"
        super().__init__(f"Parse error at {loc}: {message} ({got})")


class Parser:
    """Recursive descent parser producing a Program tree from tokens."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    # ── Helpers ─────────────────────────────

    def _cur(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _peek(self, offset: int = 0) -> Optional[Token]:
        i = self.pos + offset
        return self.tokens[i] if i < len(self.tokens) else None

    def _at(self, text: str, offset: int = 0) -> bool:
        tok = self._peek(offset)
        return tok is not None and tok.text == text and tok.kind != TokenKind.LITERAL

    def _at_kind(self, kind: TokenKind, offset: int = 0) -> bool:
        tok = self._peek(offset)
        return tok is not None and tok.kind == kind

    def _advance(self) -> Token:
        if self.pos >= len(self.tokens):
            raise self._error("Unexpected end of input")
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _last_line(self) -> int:
        return self.tokens[-1].line if self.tokens else 1

    def _error(self, message: str, expected_kind: Optional[TokenKind] = None,
               expected_text: Optional[str] = None) -> ParseError:
        return ParseError(message, self._cur(), expected_kind, expected_text,
                          line=self._last_line())

    def _expect(self, kind: TokenKind, text: Optional[str] = None, msg: str = "") -> Token:
        tok = self._cur()
        if tok is None or tok.kind != kind or (text is not None and tok.text != text):
            if not msg:
                msg = f"Expected {kind.value}" + (f" {text!r}" if text else "")
            raise self._error(msg, kind, text)
        return self._advance()

    def _expect_punct(self, text: str) -> Token:
        return self._expect(TokenKind.PUNCTUATION, text)

    def _match(self, text: str) -> Optional[Token]:
        if self._at(text):
            return self._advance()
        return None

    def _line(self) -> int:
        tok = self._cur()
        return tok.line if tok is not None else self._last_line()

    # ── Types ─────────────────────────────────

    def _is_type_start(self, offset: int = 0) -> bool:
        tok = self._peek(offset)
        if tok is None:
            return False
        if tok.kind == TokenKind.KEYWORD:
            return tok.text in TYPE_KEYWORDS or tok.text in TAG_KEYWORDS
        return tok.kind == TokenKind.IDENTIFIER and tok.text in TYPEDEF_NAMES

    def _parse_type(self) -> str:
        """Parse type specifier words (``unsigned int``, ``struct Tag``, ``FILE``)."""
        words: List[str] = []
        while self._is_type_start():
            tok = self._advance()
            words.append(tok.text)
            if tok.text in TAG_KEYWORDS:
                words.append(self._expect(TokenKind.IDENTIFIER, msg=f"Expected {tok.text} tag").text)
            elif tok.kind == TokenKind.IDENTIFIER:
                break
        if not words:
            raise self._error("Expected type specifier", TokenKind.KEYWORD)
        return " ".join(words)

    def _parse_stars(self) -> int:
        depth = 0
        while self._at("*"):
            self._advance()
            depth += 1
        return depth

    # ── Top level ─────────────────────────────

    def parse(self) -> Program:
        """Parse the full token list into a Program tree."""
        prog = Program(line=1)
        while self._cur() is not None:
            if self._at_kind(TokenKind.PREPROCESSOR):
                prog.children.append(self._parse_directive())
            elif self._is_type_start():
                prog.children.append(self._parse_type_declaration())
            else:
                raise self._error("Unexpected token in global scope")
        log.debug("Parsed %d top-level nodes", len(prog.children))
        return prog

    def _parse_directive(self) -> PreprocessorDirective:
        """A directive owns every token that follows it on the same line."""
        tok = self._expect(TokenKind.PREPROCESSOR)
        node = PreprocessorDirective(value=tok.text, line=tok.line)
        while self._cur() is not None and self._cur().line == tok.line:
            node.arguments.append(self._advance().text)
        return node

    def _parse_type_declaration(self) -> SyntaxNode:
        line = self._line()
        if self._at("struct") and self._at_kind(TokenKind.IDENTIFIER, 1) and self._at("{", 2):
            return self._parse_struct_definition()

        type_text = self._parse_type()

        # Scan ahead: '{' at paren depth 0 before ';' means a function body
        depth = 0
        is_function = False
        for tok in self.tokens[self.pos:]:
            if tok.text == "(":
                depth += 1
            elif tok.text == ")":
                depth -= 1
            elif depth == 0 and tok.text == "{":
                is_function = True
                break
            elif depth == 0 and tok.text == ";":
                break

        if is_function:
            return self._parse_function_definition(type_text, line)
        decl = self._parse_variable_declaration(type_text, line)
        self._expect_punct(";")
        return decl

    def _parse_struct_definition(self) -> StructDefinition:
        tok = self._advance()  # 'struct'
        name = self._advance().text
        node = StructDefinition(value=name, line=tok.line)
        self._expect_punct("{")
        while not self._at("}"):
            if self._cur() is None:
                raise self._error("Expected '}'", TokenKind.PUNCTUATION, "}")
            field_line = self._line()
            node.children.append(self._parse_variable_declaration(self._parse_type(), field_line))
            self._expect_punct(";")
        self._expect_punct("}")
        self._expect_punct(";")
        return node

    def _parse_function_definition(self, return_type: str, line: int) -> FunctionDefinition:
        """Parse ``type name(params) { body }``."""
        stars = self._parse_stars()
        name_tok = self._cur()
        if name_tok is None or name_tok.kind not in (TokenKind.IDENTIFIER, TokenKind.FUNCTION):
            raise self._error("Expected function name", TokenKind.IDENTIFIER)
        self._advance()
        self._expect_punct("(")
        params = self._parse_param_list()
        self._expect_punct(")")

        func = FunctionDefinition(value=name_tok.text, return_type=return_type + "*" * stars,
                                  parameters=params, line=line)
        func.children.append(self._parse_compound_statement())
        return func

    def _parse_param_list(self) -> List[Parameter]:
        params: List[Parameter] = []
        if self._at(")"):
            return params
        if self._at("void") and self._at(")", 1):
            self._advance()
            return params

        while True:
            if self._match("..."):
                params.append(Parameter(type="..."))
            else:
                ptype = self._parse_type()
                stars = self._parse_stars()
                pname = ""
                if self._at_kind(TokenKind.IDENTIFIER):
                    pname = self._advance().text
                is_array = False
                if self._match("["):
                    while not self._at("]"):
                        if self._cur() is None:
                            raise self._error("Expected ']'", TokenKind.PUNCTUATION, "]")
                        self._advance()
                    self._expect_punct("]")
                    is_array = True
                params.append(Parameter(type=ptype + "*" * max(stars - 1, 0), name=pname,
                                        is_pointer=stars > 0, is_array=is_array))
            if not self._match(","):
                break
        return params

    def _parse_variable_declaration(self, type_text: str, line: int) -> VariableDeclaration:
        """Parse the declarators after a type, without the trailing ';'."""
        decl = VariableDeclaration(declared_type=type_text, line=line)
        while True:
            stars = self._parse_stars()
            name_tok = self._expect(TokenKind.IDENTIFIER, msg="Expected variable name")
            var = Variable(value=name_tok.text, is_pointer=stars > 0, pointer_depth=stars,
                           line=name_tok.line)
            if self._match("["):
                var.is_array = True
                if not self._at("]"):
                    var.array_size = self._parse_expression()
                self._expect_punct("]")
            if self._at("="):
                self._advance()
                if self._at("{"):
                    var.children.append(self._parse_initializer_list())
                else:
                    var.children.append(self._parse_assignment())
            decl.children.append(var)
            if not self._match(","):
                break
        return decl

    def _parse_initializer_list(self) -> InitializerList:
        tok = self._expect_punct("{")
        node = InitializerList(line=tok.line)
        while not self._at("}"):
            if self._at("{"):
                node.children.append(self._parse_initializer_list())
            else:
                node.children.append(self._parse_assignment())
            if not self._match(","):
                break
        self._expect_punct("}")
        return node

    # ── Statements ────────────────────────────

    def _parse_compound_statement(self) -> CompoundStatement:
        """Parse ``{ statement* }``."""
        tok = self._expect_punct("{")
        block = CompoundStatement(line=tok.line)
        while not self._at("}"):
            if self._cur() is None:
                raise self._error("Expected '}'", TokenKind.PUNCTUATION, "}")
            block.children.append(self._parse_statement())
        self._expect_punct("}")
        return block

    def _parse_statement(self) -> SyntaxNode:
        tok = self._cur()
        if tok is None:
            raise self._error("Expected statement")

        if tok.kind == TokenKind.PREPROCESSOR:
            return self._parse_directive()

        if self._at("{"):
            return self._parse_compound_statement()

        if self._at(";"):
            self._advance()
            return Empty(line=tok.line)

        if tok.kind == TokenKind.KEYWORD:
            handler = {
                "if": self._parse_if,
                "for": self._parse_for,
                "while": self._parse_while,
                "do": self._parse_do_while,
                "switch": self._parse_switch,
                "return": self._parse_return,
                "case": self._parse_case,
                "default": self._parse_default,
            }.get(tok.text)
            if handler is not None:
                return handler()
            if tok.text in ("break", "continue"):
                self._advance()
                self._expect_punct(";")
                if tok.text == "break":
                    return BreakStatement(line=tok.line)
                return ContinueStatement(line=tok.line)

        if self._is_type_start():
            decl = self._parse_variable_declaration(self._parse_type(), tok.line)
            self._expect_punct(";")
            return decl

        return self._parse_expression_statement()

    def _parse_body(self) -> SyntaxNode:
        if self._at("{"):
            return self._parse_compound_statement()
        return self._parse_statement()

    def _parse_if(self) -> IfStatement:
        tok = self._advance()  # 'if'
        self._expect_punct("(")
        cond = self._parse_expression()
        self._expect_punct(")")
        node = IfStatement(children=[cond, self._parse_body()], line=tok.line)
        if self._match("else"):
            node.children.append(self._parse_body())
        return node

    def _parse_for(self) -> ForStatement:
        tok = self._advance()  # 'for'
        self._expect_punct("(")

        if self._at(";"):
            init = Empty(line=tok.line)
        elif self._is_type_start():
            init = self._parse_variable_declaration(self._parse_type(), tok.line)
        else:
            init = self._parse_expression()
        self._expect_punct(";")

        cond = Empty(line=tok.line) if self._at(";") else self._parse_expression()
        self._expect_punct(";")

        update = Empty(line=tok.line) if self._at(")") else self._parse_expression()
        self._expect_punct(")")

        return ForStatement(children=[init, cond, update, self._parse_body()], line=tok.line)

    def _parse_while(self) -> WhileStatement:
        tok = self._advance()  # 'while'
        self._expect_punct("(")
        cond = self._parse_expression()
        self._expect_punct(")")
        return WhileStatement(children=[cond, self._parse_body()], line=tok.line)

    def _parse_do_while(self) -> DoWhileStatement:
        tok = self._advance()  # 'do'
        body = self._parse_body()
        self._expect(TokenKind.KEYWORD, "while", "Expected 'while' after do body")
        self._expect_punct("(")
        cond = self._parse_expression()
        self._expect_punct(")")
        self._expect_punct(";")
        return DoWhileStatement(children=[body, cond], line=tok.line)

    def _parse_switch(self) -> SwitchStatement:
        tok = self._advance()  # 'switch'
        self._expect_punct("(")
        subject = self._parse_expression()
        self._expect_punct(")")
        return SwitchStatement(children=[subject, self._parse_body()], line=tok.line)

    def _parse_case(self) -> CaseLabel:
        tok = self._advance()  # 'case'
        label = self._parse_conditional()
        self._expect_punct(":")
        return CaseLabel(children=[label], line=tok.line)

    def _parse_default(self) -> DefaultLabel:
        tok = self._advance()  # 'default'
        self._expect_punct(":")
        return DefaultLabel(line=tok.line)

    def _parse_return(self) -> ReturnStatement:
        tok = self._advance()  # 'return'
        node = ReturnStatement(line=tok.line)
        if not self._at(";"):
            node.children.append(self._parse_expression())
        self._expect_punct(";")
        return node

    def _parse_expression_statement(self) -> ExpressionStatement:
        line = self._line()
        expr = self._parse_expression()
        self._expect_punct(";")
        return ExpressionStatement(children=[expr], line=line)

    # ── Expressions (lowest to highest binding) ──

    def _parse_expression(self) -> SyntaxNode:
        return self._parse_assignment()

    def _parse_assignment(self) -> SyntaxNode:
        """Assignment is right-associative: a = b = c is a = (b = c)."""
        left = self._parse_conditional()
        tok = self._cur()
        if tok is not None and tok.kind == TokenKind.OPERATOR and tok.text in ASSIGNMENT_OPS:
            self._advance()
            right = self._parse_assignment()
            return AssignmentExpression(value=tok.text, children=[left, right], line=tok.line)
        return left

    def _parse_conditional(self) -> SyntaxNode:
        cond = self._parse_logical()
        if self._at("?"):
            tok = self._advance()
            then_expr = self._parse_expression()
            self._expect_punct(":")
            else_expr = self._parse_conditional()
            return ConditionalExpression(children=[cond, then_expr, else_expr], line=tok.line)
        return cond

    def _parse_binary(self, operators, operand, node_type) -> SyntaxNode:
        """Left-associative binary level: operand (op operand)*."""
        left = operand()
        while self._at_kind(TokenKind.OPERATOR) and self._cur().text in operators:
            tok = self._advance()
            right = operand()
            left = node_type(value=tok.text, children=[left, right], line=tok.line)
        return left

    def _parse_logical(self) -> SyntaxNode:
        return self._parse_binary(("&&", "||"), self._parse_bitwise, LogicalExpression)

    def _parse_bitwise(self) -> SyntaxNode:
        return self._parse_binary(("&", "|", "^"), self._parse_relational, BitwiseExpression)

    def _parse_relational(self) -> SyntaxNode:
        return self._parse_binary(("==", "!=", "<", ">", "<=", ">="), self._parse_shift,
                                  RelationalExpression)

    def _parse_shift(self) -> SyntaxNode:
        return self._parse_binary(("<<", ">>"), self._parse_additive, ShiftExpression)

    def _parse_additive(self) -> SyntaxNode:
        return self._parse_binary(("+", "-"), self._parse_multiplicative, AdditiveExpression)

    def _parse_multiplicative(self) -> SyntaxNode:
        return self._parse_binary(("*", "/", "%"), self._parse_unary, MultiplicativeExpression)

    def _parse_unary(self) -> SyntaxNode:
        """Prefix operators, sizeof and casts."""
        tok = self._cur()
        if tok is None:
            raise self._error("Expected expression")

        if tok.kind == TokenKind.OPERATOR and tok.text in UNARY_OPS:
            self._advance()
            operand = self._parse_unary()
            return UnaryExpression(value=tok.text, children=[operand], line=tok.line)

        if tok.kind == TokenKind.KEYWORD and tok.text == "sizeof":
            return self._parse_sizeof()

        # '(' followed by a type is a cast
        if self._at("(") and self._is_type_start(1):
            self._advance()
            type_text = self._parse_type() + "*" * self._parse_stars()
            self._expect_punct(")")
            operand = self._parse_unary()
            return CastExpression(value=type_text, children=[operand], line=tok.line)

        return self._parse_postfix()

    def _parse_sizeof(self) -> SizeofExpression:
        tok = self._advance()  # 'sizeof'
        if self._at("(") and self._is_type_start(1):
            self._advance()
            type_text = self._parse_type() + "*" * self._parse_stars()
            self._expect_punct(")")
            return SizeofExpression(value=type_text, line=tok.line)
        return SizeofExpression(children=[self._parse_unary()], line=tok.line)

    def _parse_postfix(self) -> SyntaxNode:
        expr = self._parse_primary()
        while True:
            if self._at(".") or self._at("->"):
                tok = self._advance()
                member = self._expect(TokenKind.IDENTIFIER, msg="Expected member name")
                expr = MemberAccess(value=member.text, children=[expr],
                                    is_arrow=tok.text == "->", line=tok.line)
            elif self._at_kind(TokenKind.OPERATOR) and self._cur().text in ("++", "--"):
                tok = self._advance()
                expr = PostfixExpression(value=tok.text, children=[expr], line=tok.line)
            else:
                return expr

    def _parse_primary(self) -> SyntaxNode:
        """Literals, identifiers, calls, array indexing and parentheses."""
        tok = self._cur()
        if tok is None:
            raise self._error("Expected expression")

        if tok.kind == TokenKind.LITERAL:
            self._advance()
            return Literal(value=tok.text, line=tok.line)

        if tok.kind in (TokenKind.IDENTIFIER, TokenKind.FUNCTION):
            self._advance()
            if self._at("("):
                self._advance()
                call = CallExpression(value=tok.text, line=tok.line)
                if not self._at(")"):
                    call.children.append(self._parse_assignment())
                    while self._match(","):
                        call.children.append(self._parse_assignment())
                self._expect_punct(")")
                return call
            if self._at("["):
                self._advance()
                index = self._parse_expression()
                self._expect_punct("]")
                return ArrayAccess(value=tok.text, children=[index], line=tok.line)
            return Identifier(value=tok.text, line=tok.line)

        if self._at("("):
            self._advance()
            expr = self._parse_expression()
            self._expect_punct(")")
            return expr

        raise self._error("Unexpected token while parsing expression")


def parse(tokens: List[Token]) -> Program:
    """Parse ``tokens`` into a Program tree (raises ParseError)."""
    return Parser(tokens).parse()


def parse_expression(tokens: List[Token]) -> SyntaxNode:
    """Parse a lone expression (macro bodies); every token must be consumed."""
    parser = Parser(tokens)
    expr = parser._parse_expression()
    if parser._cur() is not None:
        raise parser._error("Unexpected tokens after expression")
    return expr
