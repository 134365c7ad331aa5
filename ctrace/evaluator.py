"""
Expression evaluation for the trace scripts.

The evaluator walks expression nodes and produces ``Typed`` values with C
integer semantics (truncating division, pointer arithmetic scaled by the
element size, 0/1 results for comparisons). It never touches the
simulation state directly; everything goes through a host object:

    host.lookup(name)            -> (address, ctype) or None
    host.read(address)           -> stored value
    host.write(address, value)   -> None
    host.call(name, args, line)  -> Typed
    host.struct_layout(ctype)    -> {member: (offset, ctype)}
    host.struct_sizes            -> {"struct Tag": size}
    host.macros                  -> {name: Macro}
    host.note_macro(name, text, line)

``Simulation`` is the real host; ``ValueHost`` is a small stand-alone one
for evaluating constant expressions.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .ast_nodes import *
from .state import (
    SimulationError, element_type, is_array_type, is_pointer_type, sizeof,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Typed:
    """A value together with its C type text."""
    value: Any
    ctype: str = "int"


def truthy(value: Any) -> bool:
    if value is None:
        raise SimulationError("Condition uses an uninitialized value")
    return bool(value)


# ──────────────────────────────────────────────
# Literals
# ──────────────────────────────────────────────

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "a": "\a", "b": "\b",
            "f": "\f", "v": "\v", "\\": "\\", "'": "'", '"': '"', "?": "?"}
_ESCAPE_RE = re.compile(r"\\(x[0-9a-fA-F]+|[0-7]{1,3}|.)", re.DOTALL)


def unescape(text: str) -> str:
    """Resolve C escape sequences in the body of a string or char literal."""
    def repl(m: re.Match) -> str:
        esc = m.group(1)
        if esc[0] == "x":
            return chr(int(esc[1:], 16))
        if esc[0] in "01234567" and (len(esc) > 1 or esc != "0"):
            return chr(int(esc, 8))
        return _ESCAPES.get(esc, esc)
    return _ESCAPE_RE.sub(repl, text)


def parse_literal(text: str) -> Typed:
    if text.startswith('"'):
        return Typed(unescape(text[1:-1]), "char*")
    if text.startswith("'"):
        body = unescape(text[1:-1])
        return Typed(ord(body[0]) if body else 0, "char")
    if text[:2] in ("0x", "0X"):
        return Typed(int(text.rstrip("uUlL"), 16), "int")
    digits = text.rstrip("uUlLfF")
    if "." in digits or "e" in digits or "E" in digits:
        return Typed(float(digits), "float" if text[-1] in "fF" else "double")
    if len(digits) > 1 and digits.startswith("0"):
        return Typed(int(digits, 8), "int")
    return Typed(int(digits), "long" if text[-1] in "lL" else "int")


def is_floating(ctype: str) -> bool:
    return not is_pointer_type(ctype) and ("float" in ctype or "double" in ctype)


def coerce(value: Any, ctype: str) -> Any:
    """Convert a value on assignment to an object of type ``ctype``."""
    if value is None or is_pointer_type(ctype) or is_array_type(ctype):
        return value
    if isinstance(value, str) or ctype.startswith("struct "):
        return value
    if is_floating(ctype):
        return float(value)
    if isinstance(value, float):
        return int(value)
    if "char" in ctype and "unsigned" not in ctype:
        return (value + 128) % 256 - 128
    return value


# ──────────────────────────────────────────────
# Expression text
# ──────────────────────────────────────────────

def to_source(node: SyntaxNode) -> str:
    """Render an expression node back to compact C text for descriptions."""
    if isinstance(node, (Literal, Identifier)):
        return node.value
    if isinstance(node, Empty):
        return ""
    if isinstance(node, CallExpression):
        return f"{node.value}({', '.join(to_source(a) for a in node.children)})"
    if isinstance(node, ArrayAccess):
        return f"{node.value}[{to_source(node.children[0])}]"
    if isinstance(node, MemberAccess):
        return f"{to_source(node.children[0])}{'->' if node.is_arrow else '.'}{node.value}"
    if isinstance(node, UnaryExpression):
        operand = node.children[0]
        text = to_source(operand)
        if isinstance(operand, (Literal, Identifier, CallExpression, ArrayAccess, MemberAccess)):
            return f"{node.value}{text}"
        return f"{node.value}({text})"
    if isinstance(node, PostfixExpression):
        return f"{to_source(node.children[0])}{node.value}"
    if isinstance(node, CastExpression):
        return f"({node.value}){to_source(node.children[0])}"
    if isinstance(node, SizeofExpression):
        return f"sizeof({node.value or to_source(node.children[0])})"
    if isinstance(node, ConditionalExpression):
        cond, a, b = node.children
        return f"{to_source(cond)} ? {to_source(a)} : {to_source(b)}"
    if isinstance(node, InitializerList):
        return "{" + ", ".join(to_source(c) for c in node.children) + "}"
    if isinstance(node, VariableDeclaration):
        return node.declared_type + " " + ", ".join(v.value for v in node.children)
    if len(node.children) == 2 and node.value:
        left, right = (to_source(c) for c in node.children)
        if isinstance(node.children[1], (AdditiveExpression, ShiftExpression)) and \
                isinstance(node, (MultiplicativeExpression, AdditiveExpression)):
            right = f"({right})"
        return f"{left} {node.value} {right}"
    return node.kind


# ──────────────────────────────────────────────
# printf-style formatting
# ──────────────────────────────────────────────

_FORMAT_RE = re.compile(
    r"%(?P<flags>[-+ #0]*)(?P<width>\*|\d+)?(?:\.(?P<prec>\*|\d+))?"
    r"(?P<length>hh|h|ll|l|L|z|j|t)?(?P<conv>[diouxXfFeEgGcsp%])"
)


def format_printf(fmt: str, args: List[Typed],
                  read: Optional[Callable[[int], Any]] = None) -> str:
    """Render a printf format string the way a C library would."""
    queue = list(args)

    def take() -> Typed:
        if not queue:
            raise SimulationError(f"Not enough arguments for format {fmt!r}")
        return queue.pop(0)

    def repl(m: re.Match) -> str:
        conv = m.group("conv")
        if conv == "%":
            return "%"
        width = m.group("width") or ""
        if width == "*":
            width = str(take().value)
        prec = m.group("prec")
        if prec == "*":
            prec = str(take().value)
        spec = "%" + m.group("flags") + width + (f".{prec}" if prec is not None else "")

        arg = take()
        value = arg.value
        if value is None:
            raise SimulationError("printf argument is uninitialized")
        if conv == "s":
            if isinstance(value, int) and read is not None:
                value = read(value)
            return (spec + "s") % (value if isinstance(value, str) else str(value))
        if conv == "c":
            return (spec + "s") % (chr(value) if isinstance(value, int) else str(value)[:1])
        if conv == "p":
            return (spec + "s") % f"0x{int(value):x}"
        if isinstance(value, str):
            raise SimulationError(f"printf %{conv} given a string")
        if conv in "di":
            return (spec + "d") % int(value)
        if conv == "u":
            return (spec + "d") % (int(value) & 0xFFFFFFFF)
        if conv in "oxX":
            return (spec + conv) % (int(value) & 0xFFFFFFFF)
        return (spec + conv) % float(value)

    return _FORMAT_RE.sub(repl, fmt)


# ──────────────────────────────────────────────
# Evaluator
# ──────────────────────────────────────────────

class Evaluator:
    """Evaluates expression nodes against a host (see module docstring)."""

    def __init__(self, host):
        self.host = host
        self._bindings: List[Dict[str, Typed]] = []

    def bind(self, values: Dict[str, Typed]) -> Evaluator:
        """Name overrides consulted before the host (loop indices, macro params)."""
        self._bindings.append(values)
        return self

    def unbind(self):
        self._bindings.pop()

    def value(self, node: SyntaxNode) -> Any:
        return self.evaluate(node).value

    # ── rvalues ───────────────────────────────

    def evaluate(self, node: SyntaxNode) -> Typed:
        if isinstance(node, Literal):
            return parse_literal(node.value)

        if isinstance(node, Identifier):
            return self._identifier(node.value)

        if isinstance(node, AssignmentExpression):
            return self._assign(node)

        if isinstance(node, ConditionalExpression):
            cond, then_expr, else_expr = node.children
            return self.evaluate(then_expr if truthy(self.value(cond)) else else_expr)

        if isinstance(node, LogicalExpression):
            left = truthy(self.value(node.children[0]))
            if node.value == "&&" and not left:
                return Typed(0)
            if node.value == "||" and left:
                return Typed(1)
            return Typed(int(truthy(self.value(node.children[1]))))

        if isinstance(node, (BitwiseExpression, RelationalExpression, ShiftExpression,
                             AdditiveExpression, MultiplicativeExpression)):
            left, right = (self.evaluate(c) for c in node.children)
            return self.binary(node.value, left, right)

        if isinstance(node, UnaryExpression):
            return self._unary(node)

        if isinstance(node, PostfixExpression):
            target = self.address_of(node.children[0])
            old = self.host.read(target.value)
            self._store(target, self._step(node.value, Typed(old, target.ctype)).value)
            return Typed(old, target.ctype)

        if isinstance(node, CastExpression):
            inner = self.evaluate(node.children[0])
            return Typed(coerce(inner.value, node.value), node.value)

        if isinstance(node, SizeofExpression):
            return Typed(self.sizeof(node), "size_t")

        if isinstance(node, (ArrayAccess, MemberAccess)):
            return self._load(self.address_of(node))

        if isinstance(node, CallExpression):
            return self._call(node)

        raise SimulationError(f"Cannot evaluate {node.kind} at line {node.line}")

    def _identifier(self, name: str) -> Typed:
        for scope in reversed(self._bindings):
            if name in scope:
                return scope[name]
        found = self.host.lookup(name)
        if found is not None:
            address, ctype = found
            return self._load(Typed(address, ctype))
        macro = self.host.macros.get(name)
        if macro is not None and macro.params is None:
            return self.evaluate(macro.expression())
        if name == "NULL":
            return Typed(0, "void*")
        if name == "EOF":
            return Typed(-1)
        raise SimulationError(f"Unknown identifier '{name}'")

    def _load(self, lvalue: Typed) -> Typed:
        """Read the object at ``lvalue.value``; arrays decay, structs stay addresses."""
        if is_array_type(lvalue.ctype):
            return Typed(lvalue.value, element_type(lvalue.ctype) + "*")
        if lvalue.ctype.startswith("struct ") and not is_pointer_type(lvalue.ctype):
            return lvalue
        return Typed(self.host.read(lvalue.value), lvalue.ctype)

    def _store(self, lvalue: Typed, value: Any):
        self.host.write(lvalue.value, coerce(value, lvalue.ctype))

    def _unary(self, node: UnaryExpression) -> Typed:
        op, operand = node.value, node.children[0]
        if op == "&":
            target = self.address_of(operand)
            return Typed(target.value, target.ctype + "*")
        if op == "*":
            return self._load(self._deref(self.evaluate(operand)))
        if op in ("++", "--"):
            target = self.address_of(operand)
            new = self._step(op, Typed(self.host.read(target.value), target.ctype))
            self._store(target, new.value)
            return new

        value = self.evaluate(operand)
        if value.value is None:
            raise SimulationError(f"'{to_source(operand)}' is used before it is initialized")
        if op == "-":
            return Typed(-value.value, value.ctype)
        if op == "+":
            return value
        if op == "!":
            return Typed(int(not value.value))
        if op == "~":
            return Typed(~int(value.value), value.ctype)
        raise SimulationError(f"Unsupported unary operator {op}")

    def _step(self, op: str, current: Typed) -> Typed:
        return self.binary("+" if op == "++" else "-", current, Typed(1))

    def _assign(self, node: AssignmentExpression) -> Typed:
        target = self.address_of(node.children[0])
        value = self.evaluate(node.children[1])
        if node.value != "=":
            current = Typed(self.host.read(target.value), target.ctype)
            value = self.binary(node.value[:-1], current, value)
        self._store(target, value.value)
        return Typed(coerce(value.value, target.ctype), target.ctype)

    def binary(self, op: str, left: Typed, right: Typed) -> Typed:
        a, b = left.value, right.value
        if a is None or b is None:
            raise SimulationError(f"Operator {op} applied to an uninitialized value")

        left_ptr = is_pointer_type(left.ctype)
        right_ptr = is_pointer_type(right.ctype)
        if op in ("+", "-") and (left_ptr or right_ptr):
            if left_ptr and right_ptr and op == "-":
                return Typed((a - b) // sizeof(element_type(left.ctype), self.host.struct_sizes), "long")
            ptr, offset = (left, b) if left_ptr else (right, a)
            scale = sizeof(element_type(ptr.ctype), self.host.struct_sizes)
            return Typed(ptr.value + (offset if op == "+" else -offset) * scale, ptr.ctype)

        if op in ("==", "!=", "<", ">", "<=", ">="):
            result = {"==": a == b, "!=": a != b, "<": a < b, ">": a > b,
                      "<=": a <= b, ">=": a >= b}[op]
            return Typed(int(result))

        floating = isinstance(a, float) or isinstance(b, float)
        ctype = "double" if floating else left.ctype if left.ctype != "char" else "int"
        if op == "+":
            return Typed(a + b, ctype)
        if op == "-":
            return Typed(a - b, ctype)
        if op == "*":
            return Typed(a * b, ctype)
        if op in ("/", "%"):
            if b == 0:
                raise SimulationError("Division by zero")
            if floating:
                if op == "%":
                    raise SimulationError("Operator % needs integer operands")
                return Typed(a / b, ctype)
            quotient = abs(a) // abs(b) * (1 if (a >= 0) == (b >= 0) else -1)
            return Typed(quotient if op == "/" else a - b * quotient, ctype)

        if floating:
            raise SimulationError(f"Operator {op} needs integer operands")
        if op == "&":
            return Typed(a & b, ctype)
        if op == "|":
            return Typed(a | b, ctype)
        if op == "^":
            return Typed(a ^ b, ctype)
        if op == "<<":
            return Typed(a << b, ctype)
        if op == ">>":
            return Typed(a >> b, ctype)
        raise SimulationError(f"Unsupported operator {op}")

    def sizeof(self, node: SizeofExpression) -> int:
        if node.value:
            return sizeof(node.value, self.host.struct_sizes)
        operand = node.children[0]
        if isinstance(operand, Identifier):
            found = self.host.lookup(operand.value)
            if found is not None:
                return sizeof(found[1], self.host.struct_sizes)
        if isinstance(operand, (ArrayAccess, MemberAccess)) or \
                isinstance(operand, UnaryExpression) and operand.value == "*":
            return sizeof(self.address_of(operand).ctype, self.host.struct_sizes)
        return sizeof(self.evaluate(operand).ctype, self.host.struct_sizes)

    # ── lvalues ───────────────────────────────

    def _deref(self, pointer: Typed) -> Typed:
        if pointer.value is None:
            raise SimulationError("Dereferencing an uninitialized pointer")
        if pointer.value == 0:
            raise SimulationError("Dereferencing a NULL pointer")
        return Typed(pointer.value, element_type(pointer.ctype))

    def address_of(self, node: SyntaxNode) -> Typed:
        """Address of the object ``node`` designates, typed with the object's type."""
        if isinstance(node, Identifier):
            found = self.host.lookup(node.value)
            if found is None:
                raise SimulationError(f"Unknown variable '{node.value}'")
            return Typed(*found)

        if isinstance(node, UnaryExpression) and node.value == "*":
            return self._deref(self.evaluate(node.children[0]))

        if isinstance(node, ArrayAccess):
            base = self._identifier(node.value)
            index = self.value(node.children[0])
            return self._deref(self.binary("+", base, Typed(index)))

        if isinstance(node, MemberAccess):
            if node.is_arrow:
                struct = self._deref(self.evaluate(node.children[0]))
            else:
                struct = self.address_of(node.children[0])
            layout = self.host.struct_layout(struct.ctype)
            if node.value not in layout:
                raise SimulationError(f"{struct.ctype} has no member '{node.value}'")
            offset, ctype = layout[node.value]
            return Typed(struct.value + offset, ctype)

        raise SimulationError(f"'{to_source(node)}' is not assignable")

    # ── calls ─────────────────────────────────

    def _call(self, node: CallExpression) -> Typed:
        macro = self.host.macros.get(node.value)
        if macro is not None and macro.params is not None:
            return self._expand(macro, node)
        args = [self.evaluate(arg) for arg in node.children]
        return self.host.call(node.value, args, node.line)

    def _expand(self, macro, node: CallExpression) -> Typed:
        if len(macro.params) != len(node.children):
            raise SimulationError(
                f"Macro {macro.name} expects {len(macro.params)} arguments, got {len(node.children)}")
        texts = {p: to_source(a) for p, a in zip(macro.params, node.children)}
        self.host.note_macro(macro.name, macro.substitute(texts), node.line)
        self.bind({p: self.evaluate(a) for p, a in zip(macro.params, node.children)})
        try:
            return self.evaluate(macro.expression())
        finally:
            self.unbind()


class ValueHost:
    """Host backed by a plain name -> value mapping, for constant expressions."""

    def __init__(self, values: Optional[Dict[str, Typed]] = None, macros=None,
                 struct_sizes: Optional[Dict[str, int]] = None):
        self.values = dict(values or {})
        self.macros = macros or {}
        self.struct_sizes = struct_sizes or {}

    def lookup(self, name):
        return None

    def read(self, address):
        raise SimulationError("Constant expressions cannot read memory")

    def write(self, address, value):
        raise SimulationError("Constant expressions cannot assign")

    def call(self, name, args, line):
        raise SimulationError(f"Constant expressions cannot call {name}()")

    def struct_layout(self, ctype):
        return {}

    def note_macro(self, name, text, line):
        log.debug("Macro %s expanded to %s", name, text)

    def evaluator(self) -> Evaluator:
        return Evaluator(self).bind(self.values)
