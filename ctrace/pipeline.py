"""
Session: tokenize -> parse -> trace, plus the step cursor a viewer drives.

A Session owns the outputs of the last run (tokens, tree, steps) and an
error log. ``run`` replaces all of them wholesale; a failing parse leaves
the step list empty and re-raises the ParseError after logging it.
"""

from __future__ import annotations
import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .ast_nodes import Program
from .config import DEFAULT_CONFIG, TraceConfig
from .lexer import Lexer, Token
from .parser import ParseError, Parser
from .state import SimulationState, replay
from .steps import ExecutionStep
from .tracer import TraceResult, generate_trace

log = logging.getLogger(__name__)


class Severity(enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ErrorEntry:
    message: str
    severity: Severity = Severity.ERROR
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self):
        return f"[{self.timestamp:%H:%M:%S}] {self.severity.value}: {self.message}"


class Session:
    """One editor/viewer session over a single source program."""

    def __init__(self, config: TraceConfig = DEFAULT_CONFIG):
        self.config = config
        self.source = ""
        self.tokens: List[Token] = []
        self.tree: Optional[Program] = None
        self.steps: List[ExecutionStep] = []
        self.result: Optional[TraceResult] = None
        self.errors: List[ErrorEntry] = []
        self.current_step = 0

    def reset(self):
        self.source = ""
        self.tokens = []
        self.tree = None
        self.steps = []
        self.result = None
        self.errors = []
        self.current_step = 0

    def log_error(self, message: str, severity: Severity = Severity.ERROR):
        entry = ErrorEntry(message, severity)
        self.errors.append(entry)
        if severity == Severity.ERROR:
            log.error(message)
        else:
            log.warning(message)

    def run(self, source: str) -> List[ExecutionStep]:
        """Run the whole pipeline on ``source`` and return the steps."""
        self.reset()
        self.source = source

        lexer = Lexer(source)
        self.tokens = lexer.tokenize()
        for line, column, char in lexer.skipped:
            self.log_error(f"Ignored unrecognized character {char!r} at L{line}:{column}",
                           Severity.WARNING)

        try:
            self.tree = Parser(self.tokens).parse()
        except ParseError as e:
            self.log_error(str(e))
            raise

        self.result = generate_trace(self.tree, source, self.tokens, self.config)
        if self.result.error is not None:
            self.log_error(f"Error generating steps: {self.result.error}")
        self.steps = self.result.steps
        return self.steps

    # ── Navigation ───────────────────────────

    @property
    def step(self) -> Optional[ExecutionStep]:
        if not self.steps:
            return None
        return self.steps[self.current_step]

    def go_to_step(self, index: int) -> Optional[ExecutionStep]:
        """Move the cursor; out-of-range indexes are ignored."""
        if 0 <= index < len(self.steps):
            self.current_step = index
        return self.step

    def first(self) -> Optional[ExecutionStep]:
        return self.go_to_step(0)

    def previous(self) -> Optional[ExecutionStep]:
        return self.go_to_step(self.current_step - 1)

    def next(self) -> Optional[ExecutionStep]:
        return self.go_to_step(self.current_step + 1)

    def last(self) -> Optional[ExecutionStep]:
        return self.go_to_step(len(self.steps) - 1)

    @property
    def at_end(self) -> bool:
        return not self.steps or self.current_step == len(self.steps) - 1

    def state_at(self, index: Optional[int] = None) -> SimulationState:
        """Cumulative machine state after step ``index`` (default: the cursor)."""
        if index is None:
            index = self.current_step
        return replay(self.steps, index, heap_base=self.config.heap_base)

    # ── Export ───────────────────────────────

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps({
            "category": self.result.category.value if self.result and self.result.category else None,
            "steps": [s.to_dict() for s in self.steps],
            "errors": [{"message": e.message, "severity": e.severity.value,
                        "timestamp": e.timestamp.isoformat()} for e in self.errors],
        }, indent=indent, ensure_ascii=False)
