"""
Step builder shared by the trace scripts.

A ``Simulation`` is created fresh for every trace generation pass. It owns
the live ``SimulationState``, the immutable ``AddressCursor`` it replaces on
every allocation, and the list of emitted steps. Every step is applied to
the live state as it is emitted, so the final state of a pass always equals
``replay(steps)``.

Effects produced while an expression is evaluated (memory writes, heap
changes, console output, notes from library calls) are held as pending and
folded into the next emitted step.

The statement walker executes declarations, expression statements, if,
loops (bounded by ``max_loop_iterations``), switch, break/continue, return
and conditional compilation directives inside function bodies.
"""

from __future__ import annotations
import enum
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .analysis import AnalyzedProgram, variable_ctype
from .ast_nodes import *
from .config import DEFAULT_CONFIG, TraceConfig
from .evaluator import Evaluator, Typed, coerce, format_printf, is_floating, to_source, truthy
from .state import (
    AddressCursor, SimulationError, SimulationState, element_type,
    is_array_type, is_pointer_type, sizeof,
)
from .steps import (
    CellPatch, ExecutionStep, FrameAction, FramePatch, HeapPatch, StackVariable,
    StepDelta, StepKind,
)

log = logging.getLogger(__name__)


GLOBAL_FRAME = "globals"

_SCANF_RE = re.compile(r"%[*]?\d*(?:hh|h|ll|l|L)?([diouxXfFeEgGcs])")


class Signal(enum.Enum):
    NORMAL = "normal"
    BREAK = "break"
    CONTINUE = "continue"
    RETURN = "return"


@dataclass
class Flow:
    """How a statement finished and the last line it executed."""
    signal: Signal = Signal.NORMAL
    value: Optional[Typed] = None
    line: int = 0


@dataclass
class OpenFile:
    name: str
    mode: str
    position: int = 0


def show_value(value: Any, ctype: str = "int") -> str:
    """Human-readable value for step descriptions."""
    if value is None:
        return "uninitialized"
    if isinstance(value, str):
        return '"' + value.replace("\n", "\\n") + '"'
    if isinstance(value, dict):
        return "{" + ", ".join(f"{k}: {show_value(v)}" for k, v in value.items()) + "}"
    if isinstance(value, list):
        return "{" + ", ".join(show_value(v) for v in value) + "}"
    if is_pointer_type(ctype) and isinstance(value, int):
        return "NULL" if value == 0 else f"0x{value:x}"
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def array_length(ctype: str) -> int:
    count = ctype[ctype.rindex("[") + 1:-1].strip()
    return int(count) if count.isdigit() else 0


def is_struct_type(ctype: str) -> bool:
    return ctype.startswith("struct ") and not is_pointer_type(ctype) and not is_array_type(ctype)


def is_aggregate(ctype: str) -> bool:
    return is_array_type(ctype) or is_struct_type(ctype)


class Simulation:
    """Builds one trace: live state, address cursor and emitted steps."""

    def __init__(self, program: AnalyzedProgram, config: TraceConfig = DEFAULT_CONFIG):
        self.program = program
        self.config = config
        self.state = SimulationState(heap_base=config.heap_base)
        self.cursor = AddressCursor.starting_at(config.stack_base, config.heap_base)
        self.steps: List[ExecutionStep] = []
        self.evaluator = Evaluator(self)
        self.struct_sizes = program.struct_sizes
        self.frames: List[str] = []
        self.files: Dict[int, OpenFile] = {}
        self.disk: Dict[str, str] = {}

        # scalar variable address -> (frame label, variable name)
        self._owners: Dict[int, Tuple[str, str]] = {}
        self._writes: Dict[int, Any] = {}
        self._heap: Dict[int, HeapPatch] = {}
        self._output: List[str] = []
        self._notes: List[str] = []

    # ── Host interface for the evaluator ─────

    @property
    def macros(self):
        return self.program.macros

    @property
    def current_frame(self) -> str:
        return self.frames[-1] if self.frames else GLOBAL_FRAME

    def struct_layout(self, ctype: str) -> Dict[str, Tuple[int, str]]:
        layout = self.program.structs.get(ctype.strip())
        if layout is None:
            raise SimulationError(f"Unknown struct type '{ctype}'")
        return layout.members

    def lookup(self, name: str) -> Optional[Tuple[int, str]]:
        for label in (self.current_frame, GLOBAL_FRAME):
            frame = self.state.frame(label)
            if frame is not None and name in frame.variables:
                cell = frame.variables[name]
                return cell.address, cell.declared_type
        return None

    def read(self, address: int) -> Any:
        if address in self._writes:
            return self._writes[address]
        cell = self.state.memory.get(address)
        if cell is None:
            raise SimulationError(f"Read from unmapped address 0x{address:x}")
        return cell.value

    def write(self, address: int, value: Any):
        if address not in self.state.memory:
            raise SimulationError(f"Write to unmapped address 0x{address:x}")
        self._writes[address] = value

    def note(self, text: str):
        self._notes.append(text)

    def note_macro(self, name: str, text: str, line: int):
        self.emit(StepKind.PREPROCESSING, line, f"Macro {name} expands to {text}")

    def cell_name(self, address: Any) -> Optional[str]:
        cell = self.state.memory.get(address) if isinstance(address, int) else None
        return cell.name if cell is not None else None

    def pointee_name(self, address: Any, pointer_type: str) -> Optional[str]:
        """Name of what a pointer designates (the struct, not its first member)."""
        name = self.cell_name(address)
        if name is not None and is_struct_type(element_type(pointer_type)):
            return name.split(".")[0]
        return name

    # ── Allocation ───────────────────────────

    def allocate_stack(self, size: int) -> int:
        address, self.cursor = self.cursor.stack(size)
        return address

    def allocate_heap(self, size: int) -> int:
        address, self.cursor = self.cursor.heap(size)
        return address

    # ── Step emission ────────────────────────

    def has_pending(self) -> bool:
        return bool(self._writes or self._heap or self._output or self._notes)

    def emit(self, kind: StepKind, line: int, description: str,
             memory: Optional[Dict[int, CellPatch]] = None,
             stack: Optional[Dict[str, FramePatch]] = None,
             heap: Optional[Dict[int, HeapPatch]] = None,
             output: str = "") -> ExecutionStep:
        """Emit one step, folding in pending effects, and apply it to the state."""
        cells: Dict[int, CellPatch] = {}
        updates: Dict[str, List[StackVariable]] = {}
        for address, value in self._writes.items():
            cell = self.state.memory[address]
            cells[address] = CellPatch(value, cell.name, cell.declared_type)
            owner = self._owners.get(address)
            if owner is not None and self.state.frame(owner[0]) is not None:
                updates.setdefault(owner[0], []).append(
                    StackVariable(owner[1], value, address, cell.declared_type))
        cells.update(memory or {})

        frames = {label: FramePatch(FrameAction.UPDATE, tuple(v)) for label, v in updates.items()}
        frames.update(stack or {})
        blocks = dict(self._heap)
        blocks.update(heap or {})
        if self._notes:
            description = "; ".join(self._notes + ([description] if description else []))

        step = ExecutionStep(kind, self.program.clamp(line), description,
                             StepDelta(cells, frames, blocks, "".join(self._output) + output))
        self._writes, self._heap, self._output, self._notes = {}, {}, [], []

        self.state.apply(step)
        self.steps.append(step)
        log.debug("step %d [%s] L%d %s", len(self.steps) - 1, kind.value, step.source_line, description)
        return step

    # ── Declarations ─────────────────────────

    def object_cells(self, name: str, ctype: str, address: int, value: Any) -> Dict[int, CellPatch]:
        """Memory cells for one object: one per scalar, member or element.

        Character arrays are a single cell holding the whole string.
        """
        if is_struct_type(ctype):
            cells: Dict[int, CellPatch] = {}
            for member, (offset, mtype) in self.struct_layout(ctype).items():
                member_value = value.get(member) if isinstance(value, dict) else None
                cells.update(self.object_cells(f"{name}.{member}", mtype, address + offset, member_value))
            return cells
        if is_array_type(ctype):
            elem = element_type(ctype)
            if elem.split()[-1] == "char":
                return {address: CellPatch(value, name, ctype)}
            values = value if isinstance(value, list) else []
            size = sizeof(elem, self.struct_sizes)
            cells = {}
            for i in range(array_length(ctype)):
                item = values[i] if i < len(values) else (coerce(0, elem) if values else None)
                cells.update(self.object_cells(f"{name}[{i}]", elem, address + i * size, item))
            return cells
        return {address: CellPatch(value, name, ctype)}

    def declare(self, name: str, ctype: str, line: int, value: Any = None,
                description: Optional[str] = None, frame: Optional[str] = None,
                address: Optional[int] = None) -> int:
        """Emit the declaration step for a variable.

        Stack space comes from the simulation's cursor unless the caller
        already reserved ``address`` from its own.
        """
        label = frame or self.current_frame
        if address is None:
            address = self.allocate_stack(sizeof(ctype, self.struct_sizes))
        memory = self.object_cells(name, ctype, address, value)
        if not is_aggregate(ctype):
            self._owners[address] = (label, name)
        shown = address if is_aggregate(ctype) else value
        variable = StackVariable(name, shown, address, ctype)
        if description is None:
            description = f"Declaration of variable {name} with value {show_value(value, ctype)}"
        self.emit(StepKind.DECLARATION, line, description, memory,
                  {label: FramePatch(FrameAction.ADD, (variable,))})
        return address

    def initial_value(self, ctype: str, init: Optional[SyntaxNode]) -> Any:
        if init is None:
            return None
        if isinstance(init, InitializerList):
            if is_struct_type(ctype):
                members = self.struct_layout(ctype).items()
                return {m: self.initial_value(t, c) for (m, (_, t)), c in zip(members, init.children)}
            if is_array_type(ctype):
                elem = element_type(ctype)
                return [self.initial_value(elem, c) for c in init.children]
            raise SimulationError(f"Initializer list used for scalar type {ctype}")
        typed = self.evaluator.evaluate(init)
        if is_struct_type(ctype):
            return {m: self.read(typed.value + off) for m, (off, _) in self.struct_layout(ctype).items()}
        return coerce(typed.value, ctype)

    def declare_variable(self, declared_type: str, var: Variable) -> int:
        ctype = variable_ctype(declared_type, var, self.evaluator.value)
        value = self.initial_value(ctype, var.initializer)
        address = self.declare(var.value, ctype, var.line, value,
                               self.describe_declaration(var.value, ctype, value))
        self.after_declaration(var, ctype, address)
        return address

    def describe_declaration(self, name: str, ctype: str, value: Any) -> str:
        if is_struct_type(ctype):
            return f"Declaration of {ctype} variable {name}"
        if is_array_type(ctype):
            text = f"Declaration of array {name} with {array_length(ctype)} elements"
            return text + (f" initialized to {show_value(value)}" if value is not None else "")
        if is_pointer_type(ctype):
            if value is None:
                return f"Declaration of pointer {name} (uninitialized)"
            target = self.pointee_name(value, ctype)
            if target is not None:
                return f"Declaration of pointer {name} pointing to {target}"
            return f"Declaration of pointer {name} with value {show_value(value, ctype)}"
        if value is None:
            return f"Declaration of variable {name} (uninitialized)"
        return f"Declaration of variable {name} with value {show_value(value, ctype)}"

    def after_declaration(self, var: Variable, ctype: str, address: int):
        """Hook for scripts that explain particular declarations."""

    def declare_globals(self):
        for node in self.program.tree.children:
            if isinstance(node, VariableDeclaration):
                for var in node.children:
                    ctype = variable_ctype(node.declared_type, var, self.evaluator.value)
                    value = self.initial_value(ctype, var.initializer)
                    self.declare(var.value, ctype, var.line, value,
                                 "Global " + self.describe_declaration(var.value, ctype, value).lower(),
                                 frame=GLOBAL_FRAME)

    # ── Calls ────────────────────────────────

    def call(self, name: str, args: List[Typed], line: int) -> Typed:
        builtin = getattr(self, f"_builtin_{name}", None)
        if builtin is not None:
            return builtin(args, line)
        function = self.program.function(name)
        if function is None:
            raise SimulationError(f"No simulation available for call to {name}()")
        return self.invoke(function, args, line)

    def frame_label(self, name: str) -> str:
        """``fatorial`` for the first activation, ``fatorial#2`` for the next."""
        depth = sum(1 for label in self.frames if label.split("#")[0] == name)
        return name if depth == 0 else f"{name}#{depth + 1}"

    def invoke(self, function: FunctionDefinition, args: List[Typed], line: int) -> Typed:
        """Push a frame for ``function``, run its body and pop the frame."""
        name = function.value
        if len(self.frames) >= self.config.max_call_depth:
            raise SimulationError(
                f"Call depth limit of {self.config.max_call_depth} reached calling {name}()")
        params = [p for p in function.parameters if p.type != "..."]
        if len(args) != len(params):
            raise SimulationError(f"{name}() expects {len(params)} arguments, got {len(args)}")

        label = self.frame_label(name)
        memory: Dict[int, CellPatch] = {}
        variables = []
        for param, arg in zip(params, args):
            ctype = param.ctype
            if is_struct_type(ctype):
                value = {m: self.read(arg.value + off) for m, (off, _) in self.struct_layout(ctype).items()}
            else:
                value = coerce(arg.value, ctype)
            address = self.allocate_stack(sizeof(ctype, self.struct_sizes))
            memory.update(self.object_cells(param.name, ctype, address, value))
            if is_struct_type(ctype):
                variables.append(StackVariable(param.name, address, address, ctype))
            else:
                variables.append(StackVariable(param.name, value, address, ctype))
                self._owners[address] = (label, param.name)

        shown = ", ".join(show_value(a.value, a.ctype) for a in args)
        self.emit(StepKind.CALL, line, f"Call to {name}({shown})", memory,
                  {label: FramePatch(FrameAction.ADD, tuple(variables), return_address=line)})

        self.frames.append(label)
        flow = self.run_block(function.body.children)
        self.frames.pop()

        result = None
        if flow.signal is Signal.RETURN and flow.value is not None:
            result = coerce(flow.value.value, function.return_type)
        description = f"Return from {label}"
        if result is not None:
            description += f" with value {show_value(result, function.return_type)}"
        self.emit(StepKind.RETURN, flow.line or function.line, description,
                  stack={label: FramePatch(FrameAction.REMOVE)})
        self._owners = {a: o for a, o in self._owners.items() if o[0] != label}
        return Typed(result, function.return_type)

    def run_main(self) -> Typed:
        main = self.program.main
        if main is None:
            raise SimulationError("The program has no main() function")
        self.declare_globals()
        return self.invoke(main, [], main.line)

    # ── Statements ───────────────────────────

    def run_block(self, statements: List[SyntaxNode]) -> Flow:
        # each entry: [some branch taken, current branch active]
        conditions: List[List[bool]] = []
        last = 0
        for stmt in statements:
            if isinstance(stmt, PreprocessorDirective):
                self.run_directive(stmt, conditions)
                continue
            if not all(active for _, active in conditions):
                continue
            flow = self.run_statement(stmt)
            if flow.signal is not Signal.NORMAL:
                return flow
            last = flow.line or stmt.line
        return Flow(line=last)

    def run_directive(self, node: PreprocessorDirective, conditions: List[List[bool]]):
        enclosing = all(active for _, active in conditions[:-1]) if conditions else True
        command = node.value
        argument = node.arguments[0] if node.arguments else ""

        if command in ("#ifdef", "#ifndef", "#if"):
            enclosing = all(active for _, active in conditions)
            if command == "#if":
                result = bool(self._directive_value(argument))
                text = f"#if {argument} is {'true' if result else 'false'}"
            else:
                defined = argument in self.macros
                result = defined if command == "#ifdef" else not defined
                text = f"{command} {argument}: {argument} is {'defined' if defined else 'not defined'}"
            conditions.append([result, result])
            if enclosing:
                self.emit(StepKind.PREPROCESSING, node.line,
                          f"{text}, {'compiling' if result else 'skipping'} the block")
            return

        if command in ("#else", "#elif"):
            if not conditions:
                raise SimulationError(f"{command} without #if at line {node.line}")
            entry = conditions[-1]
            result = not entry[0]
            if command == "#elif" and result:
                result = bool(self._directive_value(argument))
            entry[0], entry[1] = entry[0] or result, result
            if enclosing:
                self.emit(StepKind.PREPROCESSING, node.line,
                          f"{command}: {'compiling' if result else 'skipping'} the alternative block")
            return

        if command == "#endif":
            if not conditions:
                raise SimulationError(f"#endif without #if at line {node.line}")
            conditions.pop()
            return

        if all(active for _, active in conditions):
            text = " ".join([command] + node.arguments)
            self.emit(StepKind.PREPROCESSING, node.line, f"{text} is handled before compilation")

    def _directive_value(self, text: str) -> Any:
        macro = self.macros.get(text.strip())
        if macro is not None:
            text = macro.body
        return int(text) if text.strip().lstrip("-").isdigit() else 0

    def run_statement(self, stmt: SyntaxNode) -> Flow:
        if isinstance(stmt, VariableDeclaration):
            for var in stmt.children:
                self.declare_variable(stmt.declared_type, var)
            return Flow(line=stmt.line)

        if isinstance(stmt, ExpressionStatement):
            self.run_expression(stmt.expression, stmt.line)
            return Flow(line=stmt.line)

        if isinstance(stmt, CompoundStatement):
            return self.run_block(stmt.children)

        if isinstance(stmt, IfStatement):
            cond = stmt.children[0]
            taken = truthy(self.evaluator.value(cond))
            self.emit(StepKind.CONDITIONAL, stmt.line,
                      f"Condition {to_source(cond)} is {'true' if taken else 'false'}")
            if taken:
                return self.run_statement(stmt.children[1])
            if len(stmt.children) > 2:
                return self.run_statement(stmt.children[2])
            return Flow(line=stmt.line)

        if isinstance(stmt, (ForStatement, WhileStatement, DoWhileStatement)):
            return self.run_loop(stmt)

        if isinstance(stmt, SwitchStatement):
            return self.run_switch(stmt)

        if isinstance(stmt, BreakStatement):
            return Flow(Signal.BREAK, line=stmt.line)

        if isinstance(stmt, ContinueStatement):
            return Flow(Signal.CONTINUE, line=stmt.line)

        if isinstance(stmt, ReturnStatement):
            value = self.evaluator.evaluate(stmt.children[0]) if stmt.children else None
            return Flow(Signal.RETURN, value, stmt.line)

        if isinstance(stmt, (Empty, CaseLabel, DefaultLabel)):
            return Flow(line=stmt.line)

        raise SimulationError(f"Cannot simulate {stmt.kind} at line {stmt.line}")

    def run_expression(self, expr: SyntaxNode, line: int):
        result = self.evaluator.evaluate(expr)
        if isinstance(expr, CallExpression) and self.program.function(expr.value) is not None \
                and not self.has_pending():
            return
        kind, description = self.describe_expression(expr, result)
        self.emit(kind, line, description)

    def describe_expression(self, expr: SyntaxNode, result: Typed) -> Tuple[StepKind, str]:
        if isinstance(expr, AssignmentExpression):
            target = expr.children[0]
            written = list(self._writes)[-1] if self._writes else None
            name = self.cell_name(written) or to_source(target)
            if expr.value != "=":
                return StepKind.ASSIGNMENT, f"{to_source(expr)} leaves {name} = {show_value(result.value, result.ctype)}"
            if isinstance(target, UnaryExpression) and target.value == "*":
                return StepKind.ASSIGNMENT, (
                    f"Assignment of {show_value(result.value, result.ctype)} to the value "
                    f"pointed by {to_source(target.children[0])} ({name})")
            pointee = self.pointee_name(result.value, result.ctype) if is_pointer_type(result.ctype) else None
            if pointee is not None:
                return StepKind.ASSIGNMENT, f"Assignment of the address of {pointee} to {name}"
            return StepKind.ASSIGNMENT, f"Assignment of {show_value(result.value, result.ctype)} to {name}"

        if isinstance(expr, (UnaryExpression, PostfixExpression)) and expr.value in ("++", "--"):
            written = list(self._writes)[-1] if self._writes else None
            name = self.cell_name(written) or to_source(expr.children[0])
            value = self.read(written) if written is not None else result.value
            return StepKind.ASSIGNMENT, f"{to_source(expr)} makes {name} = {show_value(value)}"

        if isinstance(expr, CallExpression):
            return StepKind.CALL, "" if self._notes else f"Call to {expr.value}()"

        return StepKind.EXECUTION, f"Evaluation of {to_source(expr)}"

    def run_loop(self, stmt: SyntaxNode) -> Flow:
        update: Optional[SyntaxNode] = None
        if isinstance(stmt, ForStatement):
            init, cond, update, body = stmt.children
            if isinstance(init, VariableDeclaration):
                self.run_statement(init)
            elif not isinstance(init, Empty):
                self.run_expression(init, stmt.line)
        elif isinstance(stmt, WhileStatement):
            cond, body = stmt.children
        else:
            body, cond = stmt.children

        limit = self.config.max_loop_iterations
        check = not isinstance(stmt, DoWhileStatement)
        iterations = 0
        while True:
            if check and not self._loop_condition(cond, stmt.line):
                break
            check = True
            if iterations == limit:
                self.emit(StepKind.WARNING, stmt.line, f"Loop stopped after {limit} iterations")
                break
            iterations += 1
            flow = self.run_statement(body)
            if flow.signal is Signal.BREAK:
                break
            if flow.signal is Signal.RETURN:
                return flow
            if update is not None and not isinstance(update, Empty):
                self.run_expression(update, stmt.line)
        return Flow(line=stmt.line)

    def _loop_condition(self, cond: SyntaxNode, line: int) -> bool:
        if isinstance(cond, Empty):
            return True
        result = truthy(self.evaluator.value(cond))
        self.emit(StepKind.CONDITIONAL, line,
                  f"Loop condition {to_source(cond)} is {'true' if result else 'false'}")
        return result

    def run_switch(self, stmt: SwitchStatement) -> Flow:
        subject_node, body = stmt.children
        subject = self.evaluator.value(subject_node)
        statements = body.children if isinstance(body, CompoundStatement) else [body]

        start = None
        for i, s in enumerate(statements):
            if isinstance(s, CaseLabel) and self.evaluator.value(s.children[0]) == subject:
                start = i
                break
        if start is None:
            start = next((i for i, s in enumerate(statements) if isinstance(s, DefaultLabel)), None)

        text = f"switch ({to_source(subject_node)}) with {to_source(subject_node)} = {show_value(subject)}"
        if start is None:
            self.emit(StepKind.CONDITIONAL, stmt.line, f"{text}: no case matches")
            return Flow(line=stmt.line)
        label = statements[start]
        target = "default" if isinstance(label, DefaultLabel) else f"case {to_source(label.children[0])}"
        self.emit(StepKind.CONDITIONAL, label.line, f"{text} jumps to {target}")

        flow = self.run_block(statements[start:])
        if flow.signal is Signal.BREAK:
            return Flow(line=flow.line)
        return flow

    # ── Library functions ────────────────────

    def read_string(self, pointer: Any) -> str:
        value = pointer if isinstance(pointer, str) else self.read(pointer)
        if value is None:
            raise SimulationError("String argument is uninitialized")
        if not isinstance(value, str):
            raise SimulationError(f"Expected a string at 0x{pointer:x}")
        return value

    def _format(self, args: List[Typed]) -> str:
        if not args or not isinstance(args[0].value, str):
            raise SimulationError("Format argument must be a string literal")
        return format_printf(args[0].value, args[1:], self.read_string)

    def _builtin_printf(self, args: List[Typed], line: int) -> Typed:
        text = self._format(args)
        self._output.append(text)
        self.note(f"printf writes {show_value(text)}")
        return Typed(len(text))

    def _builtin_puts(self, args: List[Typed], line: int) -> Typed:
        text = self.read_string(args[0].value) + "\n"
        self._output.append(text)
        self.note(f"puts writes {show_value(text)}")
        return Typed(len(text))

    def _builtin_putchar(self, args: List[Typed], line: int) -> Typed:
        text = chr(args[0].value)
        self._output.append(text)
        self.note(f"putchar writes {show_value(text)}")
        return args[0]

    def _builtin_scanf(self, args: List[Typed], line: int) -> Typed:
        conversions = _SCANF_RE.findall(self._string_arg(args, 0))
        for conv, target in zip(conversions, args[1:]):
            ctype = element_type(target.ctype)
            if conv == "s":
                value = str(self.config.scanf_value)
            elif conv in "fFeEgG" or is_floating(ctype):
                value = float(self.config.scanf_value)
            else:
                value = int(self.config.scanf_value)
            self.write(target.value, value)
            self.note(f"scanf reads {show_value(value)} into {self.cell_name(target.value) or 'memory'}")
        return Typed(min(len(conversions), len(args) - 1))

    def _string_arg(self, args: List[Typed], index: int) -> str:
        if len(args) <= index:
            raise SimulationError("Missing string argument")
        return self.read_string(args[index].value)

    def _builtin_strcpy(self, args: List[Typed], line: int) -> Typed:
        text = self._string_arg(args, 1)
        self.write(args[0].value, text)
        self.note(f"strcpy copies {show_value(text)} into {self.cell_name(args[0].value)}")
        return args[0]

    def _builtin_strcat(self, args: List[Typed], line: int) -> Typed:
        text = self._string_arg(args, 0) + self._string_arg(args, 1)
        self.write(args[0].value, text)
        self.note(f"strcat leaves {self.cell_name(args[0].value)} = {show_value(text)}")
        return args[0]

    def _builtin_strlen(self, args: List[Typed], line: int) -> Typed:
        return Typed(len(self._string_arg(args, 0)), "size_t")

    def _builtin_strcmp(self, args: List[Typed], line: int) -> Typed:
        a, b = self._string_arg(args, 0), self._string_arg(args, 1)
        return Typed((a > b) - (a < b))

    def _open_file(self, pointer: Typed) -> OpenFile:
        file = self.files.get(pointer.value)
        if file is None:
            raise SimulationError(f"{show_value(pointer.value, 'FILE*')} is not an open FILE")
        return file

    def _builtin_fopen(self, args: List[Typed], line: int) -> Typed:
        name, mode = self._string_arg(args, 0), self._string_arg(args, 1)
        if mode.startswith("r") and name not in self.disk:
            self.note(f"fopen cannot open {show_value(name)}: returns NULL")
            return Typed(0, "FILE*")
        if mode.startswith("w"):
            self.disk[name] = ""
        else:
            self.disk.setdefault(name, "")
        size = sizeof("FILE")
        address = self.allocate_heap(size)
        self._heap[address] = HeapPatch(address, size)
        self.files[address] = OpenFile(name, mode)
        purpose = {"r": "reading", "w": "writing", "a": "appending"}.get(mode[0], mode)
        self.note(f"fopen opens {show_value(name)} for {purpose}; FILE structure at 0x{address:x}")
        return Typed(address, "FILE*")

    def _builtin_fclose(self, args: List[Typed], line: int) -> Typed:
        file = self._open_file(args[0])
        del self.files[args[0].value]
        self._heap[args[0].value] = HeapPatch(args[0].value, sizeof("FILE"), freed=True)
        self.note(f"fclose closes {show_value(file.name)} and frees its FILE structure")
        return Typed(0)

    def _write_file(self, pointer: Typed, text: str, via: str):
        file = self._open_file(pointer)
        if file.mode.startswith("r") and "+" not in file.mode:
            raise SimulationError(f"{file.name} is open for reading only")
        self.disk[file.name] += text
        self.note(f"{via} writes {show_value(text)} to {file.name}")

    def _builtin_fprintf(self, args: List[Typed], line: int) -> Typed:
        text = self._format(args[1:])
        self._write_file(args[0], text, "fprintf")
        return Typed(len(text))

    def _builtin_fputs(self, args: List[Typed], line: int) -> Typed:
        self._write_file(args[1], self._string_arg(args, 0), "fputs")
        return Typed(0)

    def _builtin_fgets(self, args: List[Typed], line: int) -> Typed:
        buffer, limit, pointer = args
        file = self._open_file(pointer)
        content = self.disk[file.name]
        if file.position >= len(content):
            self.note(f"fgets reached the end of {file.name}")
            return Typed(0, "char*")
        end = content.find("\n", file.position)
        end = len(content) if end == -1 else end + 1
        end = min(end, file.position + max(limit.value - 1, 0))
        chunk = content[file.position:end]
        file.position = end
        self.write(buffer.value, chunk)
        self.note(f"fgets reads {show_value(chunk)} from {file.name}")
        return buffer
