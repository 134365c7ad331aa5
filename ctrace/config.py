"""
Trace generation settings.
"""

from __future__ import annotations
from dataclasses import dataclass

from .state import HEAP_BASE, STACK_BASE


@dataclass(frozen=True)
class TraceConfig:
    """Knobs for one trace generation pass.

    stack_base / heap_base   first synthetic address of each region
    scanf_value              what every scanf() call "reads" from the keyboard
    max_call_depth           user function frames allowed before giving up
    max_loop_iterations      iterations per loop before it is cut short
    """
    stack_base: int = STACK_BASE
    heap_base: int = HEAP_BASE
    scanf_value: int = 3
    max_call_depth: int = 32
    max_loop_iterations: int = 100

    def __post_init__(self):
        if self.stack_base < 0:
            raise ValueError(f"stack_base must not be negative (got {self.stack_base:#x})")
        if self.heap_base <= self.stack_base:
            raise ValueError(
                f"heap_base {self.heap_base:#x} must be above stack_base {self.stack_base:#x}")
        if self.max_call_depth < 1:
            raise ValueError("max_call_depth must be at least 1")
        if self.max_loop_iterations < 1:
            raise ValueError("max_loop_iterations must be at least 1")


DEFAULT_CONFIG = TraceConfig()
