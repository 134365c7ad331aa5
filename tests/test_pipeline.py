"""
Tests for the Session pipeline.

Tests cover:
  - Running the full pipeline and reading results
  - Step navigation
  - Error log (dropped characters, parse errors, trace errors)
  - State reconstruction and JSON export
"""

import json

import pytest
from ctrace.parser import ParseError
from ctrace.pipeline import ErrorEntry, Session, Severity
from ctrace.steps import StepKind

BASIC = (
    "#include <stdio.h>\n"
    "int main() {\n"
    "    int x = 10;\n"
    "    int *ptr = &x;\n"
    "    *ptr = 20;\n"
    "    printf(\"%d\\n\", x);\n"
    "    return 0;\n"
    "}\n"
)


@pytest.fixture
def session():
    s = Session()
    s.run(BASIC)
    return s


# ─── Running ─────────────────────

class TestRun:
    def test_outputs_populated(self, session):
        assert session.tokens
        assert session.tree is not None
        assert session.steps[0].kind == StepKind.INITIALIZATION
        assert session.result.output == "20\n"
        assert session.errors == []

    def test_rerun_replaces_everything(self, session):
        session.go_to_step(3)
        session.run("int main() { return 0; }")
        assert session.current_step == 0
        assert session.source == "int main() { return 0; }"
        assert session.result.output == ""

    def test_parse_error_is_logged_and_raised(self):
        s = Session()
        with pytest.raises(ParseError):
            s.run("int main( {")
        assert s.steps == []
        assert s.tree is None
        assert len(s.errors) == 1
        assert s.errors[0].severity == Severity.ERROR
        assert s.errors[0].message.startswith("Parse error at L1")

    def test_dropped_characters_are_warnings(self):
        s = Session()
        s.run("int main() {\n    int x = 1; @\n    return x;\n}\n")
        assert len(s.errors) == 1
        entry = s.errors[0]
        assert entry.severity == Severity.WARNING
        assert "'@'" in entry.message and "L2:16" in entry.message
        assert s.result.ok

    def test_trace_error_logged(self):
        s = Session()
        steps = s.run("int main() {\n    int x = 1 / 0;\n    return 0;\n}\n")
        assert [st.kind for st in steps] == [
            StepKind.INITIALIZATION, StepKind.ERROR, StepKind.FINALIZATION,
        ]
        assert [e.message for e in s.errors] == ["Error generating steps: Division by zero"]


# ─── Navigation ─────────────────────

class TestNavigation:
    def test_starts_at_first_step(self, session):
        assert session.current_step == 0
        assert session.step is session.steps[0]

    def test_next_and_previous(self, session):
        session.next()
        session.next()
        assert session.current_step == 2
        session.previous()
        assert session.current_step == 1

    def test_bounds_are_sticky(self, session):
        session.previous()
        assert session.current_step == 0
        session.last()
        assert session.at_end
        session.next()
        assert session.current_step == len(session.steps) - 1

    def test_out_of_range_ignored(self, session):
        session.go_to_step(2)
        session.go_to_step(999)
        session.go_to_step(-1)
        assert session.current_step == 2

    def test_first(self, session):
        session.last()
        assert session.first() is session.steps[0]

    def test_empty_session(self):
        s = Session()
        assert s.step is None
        assert s.next() is None
        assert s.at_end


# ─── State and export ─────────────────────

class TestStateAndExport:
    def test_state_at_cursor(self, session):
        session.first()
        assert session.state_at().memory == {}
        session.last()
        state = session.state_at()
        assert state.console == "20\n"
        assert [c.value for c in state.memory.values() if c.name == "x"] == [20]

    def test_state_at_index_is_cumulative(self, session):
        decl_index = next(i for i, s in enumerate(session.steps) if s.kind == StepKind.DECLARATION)
        state = session.state_at(decl_index)
        assert [c.name for c in state.memory.values()] == ["x"]
        assert state.frame("main").variables["x"].value == 10

    def test_to_json(self, session):
        data = json.loads(session.to_json())
        assert data["category"] == "basic"
        assert data["steps"][0] == {"kind": "initialization", "line": 1,
                                    "description": "Program start", "delta": {}}
        assert data["errors"] == []
        declaration = next(s for s in data["steps"] if s["kind"] == "declaration")
        assert declaration["delta"]["memory"] == {"4096": {"value": 10, "name": "x", "type": "int"}}


class TestErrorEntry:
    def test_str(self):
        entry = ErrorEntry("boom", Severity.WARNING)
        assert str(entry).endswith("warning: boom")

    def test_defaults(self):
        entry = ErrorEntry("boom")
        assert entry.severity == Severity.ERROR
        assert entry.timestamp is not None
