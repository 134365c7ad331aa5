"""
Per-category trace scripts.

Each script is a pure function ``(AnalyzedProgram, TraceConfig) -> steps``
that builds its own ``Simulation``. Most scripts run ``main`` through the
statement walker and add explanations suited to their category; the
dynamic allocation script plays out a fixed malloc/use/free sequence with
parameters read from the program, and the generic script only reports
output calls.
"""

from __future__ import annotations
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .analysis import AnalyzedProgram
from .ast_nodes import *
from .classifier import Category, recursive_functions
from .config import TraceConfig
from .evaluator import Typed, ValueHost, parse_literal, to_source
from .simulation import Simulation, show_value
from .state import AddressCursor, SimulationError, sizeof
from .steps import CellPatch, ExecutionStep, FrameAction, FramePatch, HeapPatch, StackVariable, StepKind

log = logging.getLogger(__name__)

Script = Callable[[AnalyzedProgram, TraceConfig], List[ExecutionStep]]

OUTPUT_FUNCTIONS = ("printf", "puts", "putchar")


# ──────────────────────────────────────────────
# Walker-based scripts
# ──────────────────────────────────────────────

def trace_basic(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    """Variables and pointers: main runs statement by statement."""
    sim = Simulation(program, config)
    sim.run_main()
    return sim.steps


def binary(value: int, width: int = 0) -> str:
    if value < 0 or width:
        return format(value & 0xFFFFFFFF, "032b")
    return format(value, "b")


class _BitwiseSimulation(Simulation):
    """Shows the bit patterns behind declarations initialized with bit operations."""

    def after_declaration(self, var: Variable, ctype: str, address: int):
        init = var.initializer
        if not isinstance(init, (BitwiseExpression, ShiftExpression, UnaryExpression)):
            return
        if isinstance(init, UnaryExpression) and init.value != "~":
            return
        if not all(isinstance(c, (Identifier, Literal)) for c in init.children):
            return
        result = self.read(address)
        operands = [self.evaluator.value(c) for c in init.children]
        if isinstance(init, UnaryExpression):
            text = f"~{binary(operands[0], 32)} = {binary(result, 32)}"
        elif isinstance(init, ShiftExpression):
            text = f"{binary(operands[0])} {init.value} {operands[1]} = {binary(result)}"
        else:
            text = f"{binary(operands[0])} {init.value} {binary(operands[1])} = {binary(result)}"
        self.emit(StepKind.EXECUTION, var.line, f"In binary, {to_source(init)}: {text}")


def trace_bitwise(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    sim = _BitwiseSimulation(program, config)
    sim.run_main()
    return sim.steps


def describe_directive(node: PreprocessorDirective, program: AnalyzedProgram) -> str:
    if node.value == "#include":
        header = "".join(node.arguments)
        name = header.strip('<>"')
        return f"#include {header} pastes in the declarations of {name}"
    if node.value == "#define" and node.arguments:
        macro = program.macros.get(node.arguments[0])
        if macro is not None and macro.is_function_like:
            return f"#define {macro.signature()} is a function-like macro expanding to {macro.body}"
        if macro is not None:
            return f"#define {macro.name} replaces {macro.name} with {macro.body or 'nothing'}"
    return f"{' '.join([node.value] + node.arguments)} is handled before compilation"


def trace_preprocessor(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    """Directives first (the preprocessor runs before anything executes), then main."""
    sim = Simulation(program, config)
    for node in program.tree.children:
        if isinstance(node, PreprocessorDirective):
            sim.emit(StepKind.PREPROCESSING, node.line, describe_directive(node, program))
    sim.run_main()
    return sim.steps


def trace_recursion(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    sim = Simulation(program, config)
    recursive = recursive_functions(program)
    for function in program.tree.functions:
        if function.value in recursive:
            name = function.value
            sim.emit(StepKind.INFORMATION, function.line,
                     f"{name}() is recursive: each call gets its own stack frame "
                     f"({name}, {name}#2, {name}#3, ...)")
    sim.run_main()
    return sim.steps


def trace_structures(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    sim = Simulation(program, config)
    for node in program.tree.children:
        if isinstance(node, StructDefinition):
            sim.emit(StepKind.INFORMATION, node.line, program.structs[f"struct {node.value}"].describe())
    sim.run_main()
    return sim.steps


class _ArraySimulation(Simulation):
    def after_declaration(self, var: Variable, ctype: str, address: int):
        if var.is_array:
            size = sizeof(ctype, self.struct_sizes)
            self.emit(StepKind.INFORMATION, var.line,
                      f"{var.value} occupies {size} contiguous bytes from 0x{address:x}; "
                      f"in expressions {var.value} decays to &{var.value}[0]")


def trace_arrays(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    sim = _ArraySimulation(program, config)
    sim.run_main()
    return sim.steps


def trace_switch_case(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    sim = Simulation(program, config)
    scanf_calls = program.calls(name="scanf")
    if scanf_calls:
        sim.emit(StepKind.INFORMATION, scanf_calls[0].line,
                 f"Keyboard input is simulated: scanf() reads {config.scanf_value}")
    sim.run_main()
    return sim.steps


def trace_file_io(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    sim = Simulation(program, config)
    sim.run_main()
    line = program.last_line
    for address, file in sorted(sim.files.items()):
        sim.emit(StepKind.WARNING, line, f"{file.name} was never closed (FILE at 0x{address:x})")
    for name, content in sorted(sim.disk.items()):
        sim.emit(StepKind.INFORMATION, line, f"{name} now contains {show_value(content)}")
    return sim.steps


# ──────────────────────────────────────────────
# Dynamic allocation
# ──────────────────────────────────────────────

def _loops(node: SyntaxNode) -> List[ForStatement]:
    return node.find_all("for_statement")


def _loop_index(loop: ForStatement) -> str:
    init = loop.children[0]
    if isinstance(init, VariableDeclaration) and init.children:
        return init.children[0].value
    if isinstance(init, AssignmentExpression) and isinstance(init.children[0], Identifier):
        return init.children[0].value
    return "i"


def _mentions(node: SyntaxNode, name: str) -> bool:
    for n in node.walk():
        if isinstance(n, (Identifier, ArrayAccess)) and n.value == name:
            return True
    return False


def _allocation_parameters(program: AnalyzedProgram, main: FunctionDefinition):
    """Pointer declaration, element type and element count of the first malloc."""
    pointer: Optional[Tuple[VariableDeclaration, Variable]] = None
    counter: Optional[Tuple[VariableDeclaration, Variable]] = None
    loop_decls = {id(loop.children[0]) for loop in _loops(main)}
    for decl in main.find_all("variable_declaration"):
        if id(decl) in loop_decls:
            continue
        for var in decl.children:
            if var.is_pointer and pointer is None:
                pointer = (decl, var)
            elif not var.is_pointer and not var.is_array and isinstance(var.initializer, Literal) \
                    and counter is None:
                counter = (decl, var)

    element = pointer[0].declared_type + "*" * (pointer[1].pointer_depth - 1) if pointer else "int"
    count_value = parse_literal(counter[1].initializer.value).value if counter else 5
    values = {counter[1].value: Typed(count_value)} if counter else {}

    count = count_value
    allocation = next(iter(program.calls(main, "malloc") + program.calls(main, "calloc")), None)
    if allocation is not None:
        host = ValueHost(values, program.macros, program.struct_sizes)
        try:
            sizes = [host.evaluator().value(arg) for arg in allocation.children]
            total = sizes[0] * sizes[1] if allocation.value == "calloc" else sizes[0]
            count = total // sizeof(element, program.struct_sizes)
        except (SimulationError, IndexError, TypeError) as e:
            log.debug("Using default element count for %s: %s", to_source(allocation), e)
    return pointer, counter, element, count, allocation


def trace_dynamic_allocation(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    """malloc, initialize, print, free, then flag the dangling pointer."""
    main = program.main
    if main is None:
        raise SimulationError("The program has no main() function")
    sim = Simulation(program, config)
    pointer, counter, element, count, allocation = _allocation_parameters(program, main)
    ptr = pointer[1].value if pointer else "ptr"
    ptr_type = element + "*"
    elem_size = sizeof(element, program.struct_sizes)

    cursor = AddressCursor.starting_at(config.stack_base, config.heap_base)
    sim.frames.append("main")
    ptr_line = pointer[1].line if pointer else main.line
    ptr_addr, cursor = cursor.stack(sizeof(ptr_type))
    sim.declare(ptr, ptr_type, ptr_line, None, f"Declaration of pointer {ptr} (uninitialized)",
                address=ptr_addr)
    if counter is not None:
        decl, var = counter
        value = parse_literal(var.initializer.value).value
        address, cursor = cursor.stack(sizeof(decl.declared_type))
        sim.declare(var.value, decl.declared_type, var.line, value,
                    f"Declaration of variable {var.value} with value {value}", address=address)

    size = count * elem_size
    block, cursor = cursor.heap(size)
    malloc_line = allocation.line if allocation is not None else program.find_line("alloc(")
    sim.emit(StepKind.CALL, malloc_line,
             f"{allocation.value if allocation is not None else 'malloc'} reserves {size} bytes "
             f"({count} x {element}) on the heap at 0x{block:x}; {ptr} now points to it",
             memory={ptr_addr: CellPatch(block, ptr, ptr_type)},
             stack={"main": FramePatch(FrameAction.UPDATE, (StackVariable(ptr, block, ptr_addr, ptr_type),))},
             heap={block: HeapPatch(block, size)})

    check = next((n for n in main.find_all("if_statement") if _mentions(n.children[0], ptr)), None)
    sim.emit(StepKind.CONDITIONAL, check.line if check else program.find_line("NULL", malloc_line, malloc_line),
             f"Checking if allocation was successful: {ptr} is 0x{block:x}, not NULL")

    loops = [loop for loop in _loops(main) if _mentions(loop.children[3], ptr)]
    init_loop = next((loop for loop in loops if any(
        isinstance(a.children[0], (ArrayAccess, UnaryExpression)) and _mentions(a.children[0], ptr)
        for a in loop.children[3].find_all("assignment_expression"))), None)
    fill: Optional[SyntaxNode] = None
    init_line = program.find_line(f"{ptr}[", malloc_line, malloc_line)
    index = "i"
    if init_loop is not None:
        index = _loop_index(init_loop)
        target = next(a for a in init_loop.children[3].find_all("assignment_expression")
                      if _mentions(a.children[0], ptr))
        fill, init_line = target.children[1], target.line

    limit = config.max_loop_iterations
    values = []
    for i in range(min(count, limit)):
        value = i * 10
        if fill is not None:
            bound = {index: Typed(i)}
            if counter is not None:
                bound[counter[1].value] = Typed(count)
            try:
                value = ValueHost(bound, program.macros, program.struct_sizes).evaluator().value(fill)
            except SimulationError as e:
                log.debug("Falling back to i * 10 for %s[%d]: %s", ptr, i, e)
        values.append(value)
        address = block + i * elem_size
        sim.emit(StepKind.ASSIGNMENT, init_line, f"Initializing {ptr}[{i}] with value {value}",
                 memory={address: CellPatch(value, f"{ptr}[{i}]", element)})
    if count > limit:
        sim.emit(StepKind.WARNING, init_loop.line if init_loop else init_line,
                 f"Loop stopped after {limit} iterations")

    print_loop = next((loop for loop in loops if loop is not init_loop and
                       any(c.value in OUTPUT_FUNCTIONS for c in program.calls(loop))), None)
    printer = program.calls(print_loop, "printf")[0] if print_loop and program.calls(print_loop, "printf") else None
    print_line = printer.line if printer else program.find_line("printf", init_line, init_line)
    for i, value in enumerate(values):
        if printer is None:
            sim.emit(StepKind.CALL, print_line, f"Printing {ptr}[{i}]", output=f"{ptr}[{i}] = {value}\n")
            continue
        sim.evaluator.bind({_loop_index(print_loop): Typed(i)})
        try:
            sim.evaluator.evaluate(printer)
        finally:
            sim.evaluator.unbind()
        sim.emit(StepKind.CALL, print_line, f"Printing {ptr}[{i}]")
    if count > limit:
        sim.emit(StepKind.WARNING, print_loop.line if print_loop else print_line,
                 f"Loop stopped after {limit} iterations")

    free_call = next(iter(program.calls(main, "free")), None)
    free_line = free_call.line if free_call else program.find_line("free(", print_line, program.last_line)
    sim.emit(StepKind.CALL, free_line, f"free releases the {size} bytes at 0x{block:x}",
             heap={block: HeapPatch(block, size, freed=True)})
    sim.emit(StepKind.WARNING, free_line, f"{ptr} is now a dangling pointer pointing to freed memory")

    for node in main.find_all("assignment_expression"):
        left, right = node.children
        if node.line > free_line and isinstance(left, Identifier) and left.value == ptr \
                and to_source(right) in ("NULL", "0"):
            sim.emit(StepKind.ASSIGNMENT, node.line, f"Assignment of NULL to {ptr}: it no longer dangles",
                     memory={ptr_addr: CellPatch(0, ptr, ptr_type)},
                     stack={"main": FramePatch(FrameAction.UPDATE, (StackVariable(ptr, 0, ptr_addr, ptr_type),))})
            break

    returns = [s for s in main.body.children if isinstance(s, ReturnStatement)]
    return_line = returns[-1].line if returns else program.last_line
    sim.emit(StepKind.RETURN, return_line, "Return from main with value 0",
             stack={"main": FramePatch(FrameAction.REMOVE)})
    sim.frames.pop()
    return sim.steps


# ──────────────────────────────────────────────
# Generic fallback
# ──────────────────────────────────────────────

def trace_generic(program: AnalyzedProgram, config: TraceConfig) -> List[ExecutionStep]:
    """Programs no script understands: report main's output calls only."""
    sim = Simulation(program, config)
    main = program.main
    if main is None:
        sim.emit(StepKind.ERROR, 1, "Could not find main function for execution")
        return sim.steps

    sim.emit(StepKind.INFORMATION, main.line, "Found main() function - starting execution",
             stack={"main": FramePatch(FrameAction.ADD)})
    for call in program.calls(main):
        if call.value in OUTPUT_FUNCTIONS:
            sim.emit(StepKind.CALL, call.line, f"{call.value} function call",
                     output=f"Simulated output from {call.value} call\n")
    returns = main.find_all("return_statement")
    sim.emit(StepKind.RETURN, returns[-1].line if returns else program.last_line,
             "Return from main function", stack={"main": FramePatch(FrameAction.REMOVE)})
    return sim.steps


SCRIPTS: Dict[Category, Script] = {
    Category.DYNAMIC_ALLOCATION: trace_dynamic_allocation,
    Category.STRUCTURES: trace_structures,
    Category.FILE_IO: trace_file_io,
    Category.SWITCH_CASE: trace_switch_case,
    Category.PREPROCESSOR: trace_preprocessor,
    Category.BITWISE: trace_bitwise,
    Category.RECURSION: trace_recursion,
    Category.ARRAYS: trace_arrays,
    Category.BASIC: trace_basic,
    Category.GENERIC: trace_generic,
}
