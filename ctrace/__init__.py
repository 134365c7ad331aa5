"""
ctrace: C Execution Tracer
==========================
Turns a small C teaching program into an ordered list of execution steps
that show how variables, pointers, the stack and the heap change as the
program runs. Nothing is compiled or executed natively: the program is
classified and a script for its category simulates it.

Architecture:
    ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌────────────┐    ┌──────────────┐
    │ C Source │───>│  Lexer   │───>│  Parser  │───>│ Classifier │───>│ Trace script │
    │ (.c)     │    │ (tokens) │    │  (tree)  │    │ (category) │    │   (steps)    │
    └──────────┘    └──────────┘    └──────────┘    └────────────┘    └──────────────┘

    - lexer.py:      Regex tokenizer with a preprocessor pre-pass
    - parser.py:     Recursive descent into ast_nodes dataclasses
    - analysis.py:   Macros, struct layouts and line lookup for the scripts
    - classifier.py: Ordered fingerprint table, first match wins
    - scripts.py:    One trace script per category, plus the generic fallback
    - simulation.py: Step builder and statement walker used by the scripts
    - evaluator.py:  C expression semantics and printf formatting
    - state.py:      Simulated memory / stack / heap and delta replay
    - pipeline.py:   Session with step navigation and an error log
"""

__version__ = "0.2.0"
__author__ = "ctrace contributors"

from .lexer import Lexer, Token, TokenKind, tokenize
from .ast_nodes import *
from .parser import Parser, ParseError, parse
from .config import DEFAULT_CONFIG, TraceConfig
from .state import SimulationError, SimulationState, replay
from .steps import ExecutionStep, NODE_KIND_FOR_STEP, StepKind
from .classifier import Category
from .tracer import TraceResult, generate_trace
from .pipeline import ErrorEntry, Session, Severity


def trace_source(source: str, config: TraceConfig = DEFAULT_CONFIG) -> TraceResult:
    """Trace C source text end to end.

    Full pipeline: Lexer -> Parser -> classify -> trace script.

    Args:
        source: C source code string.
        config: Address bases, simulated input and limits.

    Returns:
        TraceResult with the steps and the final simulated state.

    Raises:
        ParseError: the source is not in the supported C subset.
    """
    tokens = Lexer(source).tokenize()
    tree = Parser(tokens).parse()
    return generate_trace(tree, source, tokens, config)
