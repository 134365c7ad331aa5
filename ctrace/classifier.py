"""
Program classification.

Each program is matched against an ordered table of fingerprints; the
first predicate that holds decides which trace script plays it out. The
order matters: a program that uses malloc inside a struct-heavy example is
still a dynamic allocation program.
"""

from __future__ import annotations
import enum
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Set, Tuple

from .analysis import AnalyzedProgram
from .ast_nodes import *

log = logging.getLogger(__name__)


class Category(enum.Enum):
    DYNAMIC_ALLOCATION = "dynamic_allocation"
    STRUCTURES = "structures"
    FILE_IO = "file_io"
    SWITCH_CASE = "switch_case"
    PREPROCESSOR = "preprocessor"
    BITWISE = "bitwise"
    RECURSION = "recursion"
    ARRAYS = "arrays"
    BASIC = "basic"
    GENERIC = "generic"


BITWISE_ASSIGNMENTS = frozenset({"&=", "|=", "^=", "<<=", ">>="})
LOOP_KINDS = frozenset({"for_statement", "while_statement", "do_while_statement", "switch_statement"})


def call_graph(program: AnalyzedProgram) -> Dict[str, Set[str]]:
    """Function name -> user functions it calls."""
    names = {f.value for f in program.tree.functions}
    return {
        f.value: {c.value for c in f.find_all("call_expression") if c.value in names}
        for f in program.tree.functions
    }


def recursive_functions(program: AnalyzedProgram) -> Set[str]:
    """Functions that can reach themselves through calls, directly or not."""
    graph = call_graph(program)
    found = set()
    for start in graph:
        seen: Set[str] = set()
        pending = list(graph[start])
        while pending:
            name = pending.pop()
            if name == start:
                found.add(start)
                break
            if name not in seen:
                seen.add(name)
                pending.extend(graph.get(name, ()))
    return found


def self_calling_functions(program: AnalyzedProgram) -> Set[str]:
    """Functions whose own body calls them by name."""
    return {name for name, callees in call_graph(program).items() if name in callees}


def has_recursion(program: AnalyzedProgram) -> bool:
    return bool(self_calling_functions(program))


def uses_bitwise(program: AnalyzedProgram) -> bool:
    """Bitwise operators in the tree; unary '&' (address-of) does not count."""
    for node in program.tree.walk():
        if isinstance(node, (BitwiseExpression, ShiftExpression)):
            return True
        if isinstance(node, AssignmentExpression) and node.value in BITWISE_ASSIGNMENTS:
            return True
        if isinstance(node, UnaryExpression) and node.value == "~":
            return True
    return False


def is_straight_line(program: AnalyzedProgram) -> bool:
    main = program.main
    return main is not None and not any(n.kind in LOOP_KINDS for n in main.walk())


@dataclass(frozen=True)
class Fingerprint:
    category: Category
    predicate: Callable[[AnalyzedProgram], bool]
    summary: str


FINGERPRINTS: Tuple[Fingerprint, ...] = (
    Fingerprint(Category.DYNAMIC_ALLOCATION,
                lambda p: "malloc(" in p.lowered or "free(" in p.lowered,
                "calls malloc() or free()"),
    Fingerprint(Category.STRUCTURES,
                lambda p: "struct " in p.lowered,
                "declares or uses a struct"),
    Fingerprint(Category.FILE_IO,
                lambda p: "fopen(" in p.lowered or "fclose(" in p.lowered,
                "opens or closes a file"),
    Fingerprint(Category.SWITCH_CASE,
                lambda p: bool(re.search(r"switch\s*\(", p.lowered)) or "case " in p.lowered,
                "branches with switch/case"),
    Fingerprint(Category.PREPROCESSOR,
                lambda p: "#define " in p.lowered,
                "defines macros"),
    Fingerprint(Category.BITWISE, uses_bitwise,
                "uses bitwise or shift operators"),
    Fingerprint(Category.RECURSION, has_recursion,
                "has a function that calls itself"),
    Fingerprint(Category.ARRAYS,
                lambda p: "[" in p.lowered and "]" in p.lowered,
                "indexes arrays"),
    Fingerprint(Category.BASIC, is_straight_line,
                "has a main() without loops or switches"),
)


def classify(program: AnalyzedProgram) -> Category:
    """Category of the first matching fingerprint, else GENERIC."""
    for fingerprint in FINGERPRINTS:
        if fingerprint.predicate(program):
            log.debug("Program classified as %s: %s", fingerprint.category.value, fingerprint.summary)
            return fingerprint.category
    log.debug("Program classified as generic")
    return Category.GENERIC
