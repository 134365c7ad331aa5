"""
Syntax tree node definitions for the C execution tracer.

Every node shares the same shape (``kind``, ``value``, ordered
``children``, source ``line``) so the trace generator and a display layer
can walk the tree generically. Each subclass is one variant of the tagged
union and adds only the fields that belong to its production.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import ClassVar, Iterator, List, Optional


# ──────────────────────────────────────────────
# Base node
# ──────────────────────────────────────────────

@dataclass
class SyntaxNode:
    """Base class for all syntax tree nodes."""
    value: Optional[str] = None
    children: List[SyntaxNode] = field(default_factory=list)
    line: int = 0

    kind: ClassVar[str] = "node"

    def walk(self) -> Iterator[SyntaxNode]:
        """Yield this node and all descendants, depth first, in source order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find_all(self, kind: str) -> List[SyntaxNode]:
        return [node for node in self.walk() if node.kind == kind]


# ──────────────────────────────────────────────
# Top level
# ──────────────────────────────────────────────

@dataclass
class Program(SyntaxNode):
    """Root node: directives, declarations and function definitions."""
    kind: ClassVar[str] = "program"

    def function(self, name: str) -> Optional[FunctionDefinition]:
        for child in self.children:
            if isinstance(child, FunctionDefinition) and child.value == name:
                return child
        return None

    @property
    def functions(self) -> List[FunctionDefinition]:
        return [c for c in self.children if isinstance(c, FunctionDefinition)]


@dataclass
class PreprocessorDirective(SyntaxNode):
    """``#include <stdio.h>``: value is the command, arguments the rest."""
    arguments: List[str] = field(default_factory=list)
    kind: ClassVar[str] = "preprocessor_directive"


@dataclass
class Parameter:
    """Function parameter (not a tree node)."""
    type: str
    name: str = ""
    is_pointer: bool = False
    is_array: bool = False

    @property
    def ctype(self) -> str:
        if self.is_pointer or self.is_array:
            return self.type + "*"
        return self.type


@dataclass
class FunctionDefinition(SyntaxNode):
    """Function definition; the single child is the body."""
    return_type: str = "int"
    parameters: List[Parameter] = field(default_factory=list)
    kind: ClassVar[str] = "function_definition"

    @property
    def body(self) -> CompoundStatement:
        return self.children[0]


@dataclass
class StructDefinition(SyntaxNode):
    """``struct Tag { ... };``: children are the field declarations."""
    kind: ClassVar[str] = "struct_definition"


# ──────────────────────────────────────────────
# Declarations
# ──────────────────────────────────────────────

@dataclass
class VariableDeclaration(SyntaxNode):
    """``int x = 1, *p;``: children are Variable nodes."""
    declared_type: str = "int"
    kind: ClassVar[str] = "variable_declaration"


@dataclass
class Variable(SyntaxNode):
    """One declarator; optional child is the initializer."""
    is_pointer: bool = False
    pointer_depth: int = 0
    array_size: Optional[SyntaxNode] = None
    is_array: bool = False
    kind: ClassVar[str] = "variable"

    @property
    def initializer(self) -> Optional[SyntaxNode]:
        return self.children[0] if self.children else None


# ──────────────────────────────────────────────
# Statements
# ──────────────────────────────────────────────

@dataclass
class CompoundStatement(SyntaxNode):
    """``{ ... }``"""
    kind: ClassVar[str] = "compound_statement"


@dataclass
class ExpressionStatement(SyntaxNode):
    """Expression used as a statement; single child."""
    kind: ClassVar[str] = "expression_statement"

    @property
    def expression(self) -> SyntaxNode:
        return self.children[0]


@dataclass
class IfStatement(SyntaxNode):
    """Children: [condition, then, else?]"""
    kind: ClassVar[str] = "if_statement"


@dataclass
class ForStatement(SyntaxNode):
    """Children: always [init, condition, increment, body]."""
    kind: ClassVar[str] = "for_statement"


@dataclass
class WhileStatement(SyntaxNode):
    """Children: [condition, body]"""
    kind: ClassVar[str] = "while_statement"


@dataclass
class DoWhileStatement(SyntaxNode):
    """Children: [body, condition]"""
    kind: ClassVar[str] = "do_while_statement"


@dataclass
class SwitchStatement(SyntaxNode):
    """Children: [subject, body]"""
    kind: ClassVar[str] = "switch_statement"


@dataclass
class CaseLabel(SyntaxNode):
    """``case expr:``; single child is the label expression."""
    kind: ClassVar[str] = "case_label"


@dataclass
class DefaultLabel(SyntaxNode):
    kind: ClassVar[str] = "default_label"


@dataclass
class BreakStatement(SyntaxNode):
    kind: ClassVar[str] = "break_statement"


@dataclass
class ContinueStatement(SyntaxNode):
    kind: ClassVar[str] = "continue_statement"


@dataclass
class ReturnStatement(SyntaxNode):
    """``return [expr];``"""
    kind: ClassVar[str] = "return_statement"


@dataclass
class Empty(SyntaxNode):
    """Placeholder for an omitted for-clause."""
    kind: ClassVar[str] = "empty"


# ──────────────────────────────────────────────
# Expressions (value holds the operator)
# ──────────────────────────────────────────────

@dataclass
class AssignmentExpression(SyntaxNode):
    kind: ClassVar[str] = "assignment_expression"


@dataclass
class ConditionalExpression(SyntaxNode):
    """``cond ? a : b``"""
    kind: ClassVar[str] = "conditional_expression"


@dataclass
class LogicalExpression(SyntaxNode):
    kind: ClassVar[str] = "logical_expression"


@dataclass
class BitwiseExpression(SyntaxNode):
    kind: ClassVar[str] = "bitwise_expression"


@dataclass
class RelationalExpression(SyntaxNode):
    kind: ClassVar[str] = "relational_expression"


@dataclass
class ShiftExpression(SyntaxNode):
    kind: ClassVar[str] = "shift_expression"


@dataclass
class AdditiveExpression(SyntaxNode):
    kind: ClassVar[str] = "additive_expression"


@dataclass
class MultiplicativeExpression(SyntaxNode):
    kind: ClassVar[str] = "multiplicative_expression"


@dataclass
class UnaryExpression(SyntaxNode):
    kind: ClassVar[str] = "unary_expression"


@dataclass
class PostfixExpression(SyntaxNode):
    """``x++`` / ``x--``"""
    kind: ClassVar[str] = "postfix_expression"


@dataclass
class CastExpression(SyntaxNode):
    """``(type)expr``: value is the target type text."""
    kind: ClassVar[str] = "cast_expression"


@dataclass
class SizeofExpression(SyntaxNode):
    """``sizeof(type)`` (value = type) or ``sizeof expr`` (one child)."""
    kind: ClassVar[str] = "sizeof_expression"


@dataclass
class MemberAccess(SyntaxNode):
    """``obj.member`` / ``ptr->member``: value is the member name."""
    is_arrow: bool = False
    kind: ClassVar[str] = "member_access"


@dataclass
class CallExpression(SyntaxNode):
    """Function call: value is the callee, children are the arguments."""
    kind: ClassVar[str] = "call_expression"


@dataclass
class ArrayAccess(SyntaxNode):
    """``name[index]``: value is the array name, child the index."""
    kind: ClassVar[str] = "array_access"


@dataclass
class InitializerList(SyntaxNode):
    """``{1, 2, 3}``"""
    kind: ClassVar[str] = "initializer_list"


@dataclass
class Literal(SyntaxNode):
    """Number, character or string constant exactly as written."""
    kind: ClassVar[str] = "literal"


@dataclass
class Identifier(SyntaxNode):
    kind: ClassVar[str] = "identifier"
