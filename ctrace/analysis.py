"""
Program analysis shared by the classifier and the trace scripts.

``AnalyzedProgram`` bundles a parsed program with the facts every script
needs: the source lines (for locating step lines), the macro table built
from ``#define`` lines and the byte layout of every struct definition.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .ast_nodes import *
from .evaluator import ValueHost, to_source
from .lexer import Token, tokenize
from .parser import ParseError, parse_expression
from .state import SimulationError, element_type, is_array_type, sizeof

log = logging.getLogger(__name__)


_DEFINE_LINE_RE = re.compile(r"^\s*#\s*define\s+(\w+)(\(([^)]*)\))?(.*)$")
_WORD_RE = re.compile(r"\b\w+\b")


# ──────────────────────────────────────────────
# Macros
# ──────────────────────────────────────────────

@dataclass
class Macro:
    """``#define NAME body`` or ``#define NAME(a, b) body``."""
    name: str
    params: Optional[List[str]]
    body: str
    line: int = 0
    _tree: Optional[SyntaxNode] = field(default=None, repr=False, compare=False)

    @property
    def is_function_like(self) -> bool:
        return self.params is not None

    def expression(self) -> SyntaxNode:
        """The body parsed as an expression (parsed once, on first use)."""
        if self._tree is None:
            if not self.body:
                raise SimulationError(f"Macro {self.name} has no value")
            try:
                self._tree = parse_expression(tokenize(self.body))
            except ParseError as e:
                raise SimulationError(f"Macro {self.name} is not an expression: {e}") from e
        return self._tree

    def substitute(self, arguments: Dict[str, str]) -> str:
        """Body text with parameter names replaced by argument text."""
        return _WORD_RE.sub(lambda m: arguments.get(m.group(), m.group()), self.body)

    def signature(self) -> str:
        if self.params is None:
            return self.name
        return f"{self.name}({', '.join(self.params)})"


def collect_macros(tree: Program, lines: List[str]) -> Dict[str, Macro]:
    """Build the macro table from the ``#define`` directives in the tree."""
    macros: Dict[str, Macro] = {}
    for node in tree.find_all("preprocessor_directive"):
        if node.value != "#define" or not 0 < node.line <= len(lines):
            continue
        m = _DEFINE_LINE_RE.match(lines[node.line - 1])
        if not m:
            continue
        params = None
        if m.group(2) is not None:
            params = [p.strip() for p in m.group(3).split(",") if p.strip()]
        body = re.sub(r"/\*.*?\*/|//.*$", "", m.group(4)).strip()
        macros[m.group(1)] = Macro(m.group(1), params, body, node.line)
    return macros


# ──────────────────────────────────────────────
# Structs
# ──────────────────────────────────────────────

@dataclass
class StructLayout:
    name: str                                   # "struct Pessoa"
    members: Dict[str, Tuple[int, str]]         # member -> (offset, ctype)
    size: int

    def describe(self) -> str:
        parts = [f"{m} at +{off} ({ctype})" for m, (off, ctype) in self.members.items()]
        return f"{self.name} occupies {self.size} bytes: " + ", ".join(parts)


def _alignment(ctype: str, struct_sizes: Dict[str, int]) -> int:
    while is_array_type(ctype):
        ctype = element_type(ctype)
    return max(1, min(sizeof(ctype, struct_sizes), 8))


def constant_value(node: SyntaxNode, macros: Dict[str, Macro],
                   struct_sizes: Optional[Dict[str, int]] = None) -> int:
    """Evaluate a constant expression such as an array size."""
    return ValueHost(macros=macros, struct_sizes=struct_sizes).evaluator().value(node)


def variable_ctype(declared_type: str, var: Variable,
                   evaluate: Callable[[SyntaxNode], Any]) -> str:
    """Full C type of one declarator: ``int`` + ``*`` + ``[5]``.

    ``evaluate`` computes the array size expression.
    """
    ctype = declared_type + "*" * var.pointer_depth
    if not var.is_array:
        return ctype
    count = None
    if var.array_size is not None:
        count = evaluate(var.array_size)
    elif isinstance(var.initializer, InitializerList):
        count = len(var.initializer.children)
    elif isinstance(var.initializer, Literal) and var.initializer.value.startswith('"'):
        count = len(var.initializer.value) - 1
    return f"{ctype}[{count if count is not None else ''}]"


def layout_structs(tree: Program, macros: Dict[str, Macro]) -> Dict[str, StructLayout]:
    layouts: Dict[str, StructLayout] = {}
    sizes: Dict[str, int] = {}
    for node in tree.children:
        if not isinstance(node, StructDefinition):
            continue
        name = f"struct {node.value}"
        members: Dict[str, Tuple[int, str]] = {}
        offset = 0
        widest = 1
        for decl in node.children:
            for var in decl.children:
                ctype = variable_ctype(decl.declared_type, var,
                                       lambda n: constant_value(n, macros, sizes))
                align = _alignment(ctype, sizes)
                widest = max(widest, align)
                offset = (offset + align - 1) // align * align
                members[var.value] = (offset, ctype)
                offset += sizeof(ctype, sizes)
        size = (offset + widest - 1) // widest * widest
        layouts[name] = StructLayout(name, members, size)
        sizes[name] = size
    return layouts


# ──────────────────────────────────────────────
# Analyzed program
# ──────────────────────────────────────────────

@dataclass
class AnalyzedProgram:
    tree: Program
    source: str
    tokens: List[Token]
    lines: List[str]
    macros: Dict[str, Macro]
    structs: Dict[str, StructLayout]

    @property
    def lowered(self) -> str:
        return self.source.lower()

    @property
    def last_line(self) -> int:
        """Line of the last token (1 for an empty program)."""
        return max((t.line for t in self.tokens), default=1)

    @property
    def main(self) -> Optional[FunctionDefinition]:
        return self.tree.function("main")

    @property
    def struct_sizes(self) -> Dict[str, int]:
        return {name: layout.size for name, layout in self.structs.items()}

    def function(self, name: str) -> Optional[FunctionDefinition]:
        return self.tree.function(name)

    def clamp(self, line: int) -> int:
        return max(1, min(line, len(self.lines)))

    def find_line(self, needles, after: int = 0, default: Optional[int] = None) -> int:
        """First line after ``after`` containing any of ``needles``."""
        if isinstance(needles, str):
            needles = (needles,)
        for number in range(after + 1, len(self.lines) + 1):
            text = self.lines[number - 1]
            if any(n in text for n in needles):
                return number
        return self.clamp(default if default is not None else max(after, 1))

    def calls(self, node: Optional[SyntaxNode] = None, name: Optional[str] = None) -> List[CallExpression]:
        root = node if node is not None else self.tree
        return [c for c in root.find_all("call_expression") if name is None or c.value == name]

    def text(self, node: SyntaxNode) -> str:
        return to_source(node)


def analyze(tree: Program, source: str, tokens: Optional[Iterable[Token]] = None) -> AnalyzedProgram:
    lines = source.split("\n")
    token_list = list(tokens) if tokens is not None else tokenize(source)
    macros = collect_macros(tree, lines)
    structs = layout_structs(tree, macros)
    log.debug("Analyzed program: %d functions, %d macros, %d structs",
              len(tree.functions), len(macros), len(structs))
    return AnalyzedProgram(tree, source, token_list, lines, macros, structs)
