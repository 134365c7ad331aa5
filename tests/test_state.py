"""
Tests for the simulated machine state and step deltas.

Tests cover:
  - Type sizes
  - Address cursor (immutable allocation, stack/heap collision)
  - Folding deltas into SimulationState and its consistency checks
  - Replay and delta serialization
  - TraceConfig validation
"""

import pytest
from ctrace.config import DEFAULT_CONFIG, TraceConfig
from ctrace.state import (
    HEAP_BASE, STACK_BASE, AddressCursor, SimulationError, SimulationState,
    element_type, replay, sizeof,
)
from ctrace.steps import (
    CellPatch, ExecutionStep, FrameAction, FramePatch, HeapPatch, StackVariable,
    StepDelta, StepKind,
)


def _step(**delta) -> ExecutionStep:
    return ExecutionStep(StepKind.EXECUTION, 1, "test", StepDelta(**delta))


def _frame(name, action=FrameAction.ADD, *variables):
    return {name: FramePatch(action, tuple(variables))}


# ─── Types ─────────────────────

class TestSizes:
    def test_scalars(self):
        assert sizeof("char") == 1
        assert sizeof("int") == 4
        assert sizeof("unsigned int") == 4
        assert sizeof("long") == 8
        assert sizeof("float") == 4
        assert sizeof("double") == 8

    def test_pointers_and_arrays(self):
        assert sizeof("char*") == 8
        assert sizeof("struct Pessoa*") == 8
        assert sizeof("int[5]") == 20
        assert sizeof("char[50]") == 50

    def test_structs(self):
        assert sizeof("struct Pessoa", {"struct Pessoa": 60}) == 60
        assert sizeof("struct Pessoa[2]", {"struct Pessoa": 60}) == 120

    def test_file(self):
        assert sizeof("FILE") == 216

    def test_element_type(self):
        assert element_type("int*") == "int"
        assert element_type("char[50]") == "char"
        with pytest.raises(SimulationError):
            element_type("int")


# ─── Address cursor ─────────────────────

class TestAddressCursor:
    def test_defaults(self):
        cursor = AddressCursor()
        assert (cursor.next_stack, cursor.next_heap) == (STACK_BASE, HEAP_BASE)

    def test_allocation_returns_new_cursor(self):
        start = AddressCursor.starting_at(0x100, 0x800)
        first, after = start.stack(4)
        second, _ = after.stack(8)
        assert (first, second) == (0x100, 0x104)
        assert start.next_stack == 0x100

    def test_heap_is_independent(self):
        cursor = AddressCursor.starting_at(0x100, 0x800)
        block, cursor = cursor.heap(20)
        _, cursor = cursor.stack(4)
        again, _ = cursor.heap(8)
        assert (block, again) == (0x800, 0x814)

    def test_zero_sized_heap_blocks_are_distinct(self):
        first, cursor = AddressCursor().heap(0)
        second, _ = cursor.heap(0)
        assert first != second

    def test_stack_overflow(self):
        cursor = AddressCursor.starting_at(0x100, 0x108)
        _, cursor = cursor.stack(8)
        with pytest.raises(SimulationError, match="Stack overflow"):
            cursor.stack(1)


# ─── Applying deltas ─────────────────────

class TestApply:
    def test_memory_and_frames(self):
        state = SimulationState()
        x = StackVariable("x", 10, 0x1000, "int")
        state.apply(_step(memory={0x1000: CellPatch(10, "x", "int")}, stack=_frame("main", FrameAction.ADD, x)))
        assert state.memory[0x1000].value == 10
        assert state.frame("main").variables["x"].value == 10

        x2 = StackVariable("x", 11, 0x1000, "int")
        state.apply(_step(memory={0x1000: CellPatch(11, "x", "int")}, stack=_frame("main", FrameAction.UPDATE, x2)))
        assert state.memory[0x1000].value == 11
        assert state.frame("main").variables["x"].value == 11

    def test_innermost_frame(self):
        state = SimulationState()
        state.apply(_step(stack=_frame("f")))
        state.apply(_step(stack=_frame("f#2")))
        state.apply(_step(stack=_frame("f#2", FrameAction.REMOVE)))
        assert [f.function_name for f in state.stack] == ["f"]

    def test_remove_missing_frame(self):
        with pytest.raises(SimulationError, match="missing frame"):
            SimulationState().apply(_step(stack=_frame("main", FrameAction.REMOVE)))

    def test_update_undeclared_variable(self):
        state = SimulationState()
        state.apply(_step(stack=_frame("main")))
        with pytest.raises(SimulationError, match="not declared"):
            state.apply(_step(stack=_frame("main", FrameAction.UPDATE, StackVariable("y", 1, 0x1000, "int"))))

    def test_freed_block_stays_freed(self):
        state = SimulationState()
        state.apply(_step(heap={HEAP_BASE: HeapPatch(HEAP_BASE, 20)}))
        state.apply(_step(heap={HEAP_BASE: HeapPatch(HEAP_BASE, 20, freed=True)}))
        assert state.heap[HEAP_BASE].freed
        with pytest.raises(SimulationError, match="already freed"):
            state.apply(_step(heap={HEAP_BASE: HeapPatch(HEAP_BASE, 20)}))

    def test_heap_block_below_base(self):
        with pytest.raises(SimulationError, match="below the heap base"):
            SimulationState().apply(_step(heap={0x10: HeapPatch(0x10, 4)}))

    def test_console_accumulates(self):
        state = SimulationState()
        state.apply(_step(output="a\n"))
        state.apply(_step(output="b\n"))
        assert state.console == "a\nb\n"

    def test_cells_in(self):
        state = SimulationState()
        state.apply(_step(memory={
            HEAP_BASE: CellPatch(0, "p[0]", "int"),
            HEAP_BASE + 4: CellPatch(10, "p[1]", "int"),
            HEAP_BASE + 8: CellPatch(20, "q", "int"),
        }))
        assert [c.name for c in state.cells_in(HEAP_BASE, 8)] == ["p[0]", "p[1]"]


# ─── Replay ─────────────────────

class TestReplay:
    def test_replay_upto(self):
        steps = [_step(output="1"), _step(output="2"), _step(output="3")]
        assert replay(steps).console == "123"
        assert replay(steps, 0).console == "1"
        assert replay(steps, 1).console == "12"

    def test_replay_is_fresh_each_time(self):
        steps = [_step(stack=_frame("main"))]
        assert replay(steps) is not replay(steps)
        assert len(replay(steps).stack) == 1


class TestStepDelta:
    def test_empty(self):
        assert StepDelta().is_empty
        assert not StepDelta(output="x").is_empty

    def test_to_dict_is_sparse(self):
        step = ExecutionStep(StepKind.CALL, 3, "free", StepDelta(heap={HEAP_BASE: HeapPatch(HEAP_BASE, 20, True)}))
        assert step.to_dict() == {
            "kind": "call",
            "line": 3,
            "description": "free",
            "delta": {"heap": {HEAP_BASE: {"address": HEAP_BASE, "size": 20, "freed": True}}},
        }

    def test_frame_removal_shape(self):
        delta = StepDelta(stack=_frame("main", FrameAction.REMOVE))
        assert delta.to_dict() == {"stack": {"main": {"remove": True}}}


# ─── Config ─────────────────────

class TestTraceConfig:
    def test_defaults(self):
        assert DEFAULT_CONFIG.stack_base == STACK_BASE
        assert DEFAULT_CONFIG.heap_base == HEAP_BASE
        assert DEFAULT_CONFIG.scanf_value == 3

    def test_heap_must_be_above_stack(self):
        with pytest.raises(ValueError):
            TraceConfig(stack_base=0x9000, heap_base=0x8000)

    def test_limits_must_be_positive(self):
        with pytest.raises(ValueError):
            TraceConfig(max_call_depth=0)
        with pytest.raises(ValueError):
            TraceConfig(max_loop_iterations=0)
