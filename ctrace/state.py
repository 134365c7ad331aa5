"""
Simulated machine state for the C execution tracer.

Addresses are synthetic integers. Everything below ``heap_base`` is the
stack region and everything at or above it is the heap region; display
layers rely on that split to separate the Stack and Heap views.

``SimulationState`` is an explicit value: it is built empty, folded forward
one ExecutionStep delta at a time with ``apply``, and owned by exactly one
trace generation pass. ``replay`` rebuilds it for any step index.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .steps import ExecutionStep, FrameAction

log = logging.getLogger(__name__)


STACK_BASE = 0x1000
HEAP_BASE = 0x8000

# Sizes on a 64-bit target
TYPE_SIZES: Dict[str, int] = {
    "char": 1,
    "_Bool": 1,
    "bool": 1,
    "short": 2,
    "int": 4,
    "unsigned": 4,
    "long": 8,
    "float": 4,
    "double": 8,
    "size_t": 8,
    "FILE": 216,
    "void": 1,
}
POINTER_SIZE = 8

_QUALIFIERS = frozenset({"const", "static", "volatile", "extern", "register",
                         "auto", "inline", "restrict"})


class SimulationError(Exception):
    """Raised when a trace script cannot continue the simulation."""


def is_pointer_type(ctype: str) -> bool:
    return ctype.rstrip().endswith("*")


def is_array_type(ctype: str) -> bool:
    return ctype.rstrip().endswith("]")


def element_type(ctype: str) -> str:
    """Type reached by indexing or dereferencing ``ctype``."""
    ctype = ctype.rstrip()
    if is_array_type(ctype):
        return ctype[:ctype.rindex("[")].rstrip()
    if is_pointer_type(ctype):
        return ctype[:-1].rstrip()
    raise SimulationError(f"Type '{ctype}' cannot be dereferenced")


def sizeof(ctype: str, struct_sizes: Optional[Dict[str, int]] = None) -> int:
    """Size in bytes of a type written as C text ('int', 'char*', 'int[5]')."""
    ctype = ctype.strip()
    if is_pointer_type(ctype):
        return POINTER_SIZE
    if is_array_type(ctype):
        count = ctype[ctype.rindex("[") + 1:-1].strip()
        return sizeof(element_type(ctype), struct_sizes) * (int(count) if count.isdigit() else 1)
    words = [w for w in ctype.split() if w not in _QUALIFIERS]
    if words[:1] == ["struct"]:
        return (struct_sizes or {}).get(" ".join(words[:2]), POINTER_SIZE)
    for word in ("char", "short", "long", "double", "float"):
        if word in words:
            return TYPE_SIZES[word]
    return TYPE_SIZES.get(words[-1], 4) if words else 4


# ──────────────────────────────────────────────
# State records
# ──────────────────────────────────────────────

@dataclass
class MemoryCell:
    address: int
    name: str
    declared_type: str
    value: Any = None


@dataclass
class StackFrame:
    function_name: str
    return_address: int = 0
    variables: Dict[str, MemoryCell] = field(default_factory=dict)


@dataclass
class HeapBlock:
    address: int
    size: int
    content: Any = None
    freed: bool = False


# ──────────────────────────────────────────────
# Address cursor
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class AddressCursor:
    """Next free stack / heap addresses. Allocation returns a new cursor."""
    next_stack: int = STACK_BASE
    next_heap: int = HEAP_BASE
    heap_base: int = HEAP_BASE

    @classmethod
    def starting_at(cls, stack_base: int, heap_base: int) -> AddressCursor:
        return cls(next_stack=stack_base, next_heap=heap_base, heap_base=heap_base)

    def stack(self, size: int) -> Tuple[int, AddressCursor]:
        address = self.next_stack
        if address + size > self.heap_base:
            raise SimulationError(
                f"Stack overflow: {size} bytes at 0x{address:x} would reach the heap at 0x{self.heap_base:x}")
        return address, AddressCursor(address + size, self.next_heap, self.heap_base)

    def heap(self, size: int) -> Tuple[int, AddressCursor]:
        address = self.next_heap
        # Zero-byte requests still get a distinct address
        return address, AddressCursor(self.next_stack, address + max(size, 1), self.heap_base)


# ──────────────────────────────────────────────
# Simulation state
# ──────────────────────────────────────────────

@dataclass
class SimulationState:
    memory: Dict[int, MemoryCell] = field(default_factory=dict)
    stack: List[StackFrame] = field(default_factory=list)
    heap: Dict[int, HeapBlock] = field(default_factory=dict)
    console: str = ""
    heap_base: int = HEAP_BASE

    def frame(self, name: str) -> Optional[StackFrame]:
        """Innermost frame called ``name``."""
        for frame in reversed(self.stack):
            if frame.function_name == name:
                return frame
        return None

    def apply(self, step: ExecutionStep) -> SimulationState:
        """Fold one step's delta into the state and return the state."""
        delta = step.delta

        for address, patch in delta.memory.items():
            cell = self.memory.get(address)
            if cell is None:
                self.memory[address] = MemoryCell(address, patch.name, patch.type, patch.value)
            else:
                cell.name, cell.declared_type, cell.value = patch.name, patch.type, patch.value

        for frame_name, patch in delta.stack.items():
            frame = self.frame(frame_name)
            if patch.action == FrameAction.REMOVE:
                if frame is None:
                    raise SimulationError(f"Cannot pop missing frame '{frame_name}'")
                self.stack.remove(frame)
                continue
            if frame is None:
                if patch.action == FrameAction.UPDATE:
                    raise SimulationError(f"Cannot update variables of missing frame '{frame_name}'")
                frame = StackFrame(frame_name, patch.return_address)
                self.stack.append(frame)
            for var in patch.variables:
                if patch.action == FrameAction.UPDATE and var.name not in frame.variables:
                    raise SimulationError(f"Variable '{var.name}' is not declared in '{frame_name}'")
                frame.variables[var.name] = MemoryCell(var.address, var.name, var.type, var.value)

        for address, patch in delta.heap.items():
            if address < self.heap_base:
                raise SimulationError(f"Heap block at 0x{address:x} is below the heap base")
            block = self.heap.get(address)
            if block is None:
                self.heap[address] = HeapBlock(address, patch.size, freed=patch.freed)
            elif block.freed and not patch.freed:
                raise SimulationError(f"Heap block at 0x{address:x} was already freed")
            else:
                block.size, block.freed = patch.size, patch.freed

        self.console += delta.output
        return self

    def cells_in(self, start: int, size: int) -> List[MemoryCell]:
        return [c for a, c in sorted(self.memory.items()) if start <= a < start + size]


def replay(steps: Iterable[ExecutionStep], upto: Optional[int] = None,
           heap_base: int = HEAP_BASE) -> SimulationState:
    """Cumulative state after steps[0..upto] (all steps when upto is None)."""
    state = SimulationState(heap_base=heap_base)
    for index, step in enumerate(steps):
        if upto is not None and index > upto:
            break
        state.apply(step)
    return state
