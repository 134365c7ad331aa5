"""
Execution steps: the contract handed to display layers.

A trace is an append-only list of ``ExecutionStep``. Each step carries a
sparse ``StepDelta`` with up to four independent parts:

    memory   address -> {value, name, type}
    stack    frame name -> add variables | update variables | frame removed
    heap     address -> {size, freed}
    output   console text appended by the step

Consumers render the cumulative effect of the deltas from step 0 to the
current step (see ``state.replay``).
"""

from __future__ import annotations
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple


class StepKind(enum.Enum):
    INITIALIZATION = "initialization"
    FINALIZATION = "finalization"
    INFORMATION = "information"
    PREPROCESSING = "preprocessing"
    DECLARATION = "declaration"
    ASSIGNMENT = "assignment"
    CALL = "call"
    RETURN = "return"
    CONDITIONAL = "conditional"
    EXECUTION = "execution"
    WARNING = "warning"
    ERROR = "error"


# Node kind to highlight in the tree for each step kind
NODE_KIND_FOR_STEP: Dict[StepKind, str] = {
    StepKind.DECLARATION: "variable_declaration",
    StepKind.ASSIGNMENT: "assignment_expression",
    StepKind.CALL: "call_expression",
    StepKind.RETURN: "return_statement",
    StepKind.CONDITIONAL: "if_statement",
    StepKind.EXECUTION: "for_statement",
    StepKind.PREPROCESSING: "preprocessor_directive",
    StepKind.INFORMATION: "function_definition",
}


class FrameAction(enum.Enum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class CellPatch:
    value: Any
    name: str
    type: str


@dataclass(frozen=True)
class StackVariable:
    name: str
    value: Any
    address: int
    type: str


@dataclass(frozen=True)
class FramePatch:
    """ADD creates the frame when missing; REMOVE pops it."""
    action: FrameAction
    variables: Tuple[StackVariable, ...] = ()
    return_address: int = 0


@dataclass(frozen=True)
class HeapPatch:
    address: int
    size: int
    freed: bool = False


@dataclass(frozen=True)
class StepDelta:
    memory: Dict[int, CellPatch] = field(default_factory=dict)
    stack: Dict[str, FramePatch] = field(default_factory=dict)
    heap: Dict[int, HeapPatch] = field(default_factory=dict)
    output: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.memory or self.stack or self.heap or self.output)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.memory:
            out["memory"] = {
                address: {"value": p.value, "name": p.name, "type": p.type}
                for address, p in self.memory.items()
            }
        if self.stack:
            out["stack"] = {}
            for frame, p in self.stack.items():
                if p.action == FrameAction.REMOVE:
                    out["stack"][frame] = {"remove": True}
                else:
                    out["stack"][frame] = {p.action.value: [
                        {"name": v.name, "value": v.value, "address": v.address, "type": v.type}
                        for v in p.variables
                    ]}
        if self.heap:
            out["heap"] = {
                address: {"address": p.address, "size": p.size, "freed": p.freed}
                for address, p in self.heap.items()
            }
        if self.output:
            out["output"] = self.output
        return out


@dataclass(frozen=True)
class ExecutionStep:
    kind: StepKind
    source_line: int
    description: str
    delta: StepDelta = field(default_factory=StepDelta)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "line": self.source_line,
            "description": self.description,
            "delta": self.delta.to_dict(),
        }
