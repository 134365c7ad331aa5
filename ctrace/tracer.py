"""
Trace generation: classify the program, run its script and wrap the result
between an initialization and a finalization step.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .analysis import analyze
from .ast_nodes import Program
from .classifier import Category, classify
from .config import DEFAULT_CONFIG, TraceConfig
from .lexer import Token, tokenize
from .scripts import SCRIPTS
from .state import SimulationState, replay
from .steps import ExecutionStep, StepKind

log = logging.getLogger(__name__)


@dataclass
class TraceResult:
    steps: List[ExecutionStep]
    state: SimulationState
    category: Optional[Category] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def output(self) -> str:
        return self.state.console


def generate_trace(tree: Program, source: str, tokens: Optional[Iterable[Token]] = None,
                   config: TraceConfig = DEFAULT_CONFIG) -> TraceResult:
    """Produce the full step list for a parsed program.

    Never raises for simulation problems: a failing script yields
    [initialization, error, finalization] and the error text in the result.
    """
    token_list = list(tokens) if tokens is not None else tokenize(source)
    first = ExecutionStep(StepKind.INITIALIZATION, 1, "Program start")
    last = ExecutionStep(StepKind.FINALIZATION, max((t.line for t in token_list), default=1),
                         "Program end")

    category = None
    try:
        program = analyze(tree, source, token_list)
        category = classify(program)
        body = SCRIPTS[category](program, config)
    except Exception as e:
        log.error("Trace generation failed: %s", e)
        log.debug("Trace generation traceback", exc_info=True)
        steps = [first, ExecutionStep(StepKind.ERROR, 1, f"Error generating steps: {e}"), last]
        return TraceResult(steps, replay(steps, heap_base=config.heap_base), category, str(e))

    steps = [first] + body + [last]
    log.info("Generated %d steps for a %s program", len(steps), category.value)
    return TraceResult(steps, replay(steps, heap_base=config.heap_base), category)
