"""
Tests for the ctracer command line.

Tests cover:
  - Listing, single-step, JSON and debug dump modes
  - Configuration flags
  - Exit codes for missing files, bad flags, parse errors and trace errors
"""

import json
import os

import pytest
from ctracer import build_config, build_parser, main, parse_int_arg

EXAMPLES_DIR = os.path.join(os.path.dirname(__file__), "..", "examples")


def _example(name: str) -> str:
    return os.path.join(EXAMPLES_DIR, name)


def _write(tmp_path, code: str) -> str:
    path = tmp_path / "prog.c"
    path.write_text(code, encoding="utf-8")
    return str(path)


# ─── Modes ─────────────────────

class TestModes:
    def test_listing(self, capsys):
        assert main([_example("malloc.c")]) == 0
        out = capsys.readouterr().out
        assert "Category: dynamic_allocation" in out
        assert "dangling pointer" in out
        assert "Console output:\nptr[0] = 0\n" in out

    def test_single_step(self, capsys):
        assert main([_example("basic.c"), "--step", "2"]) == 0
        out = capsys.readouterr().out
        assert "declaration" in out
        assert "Stack:" in out and "main:" in out
        assert "x " in out

    def test_step_out_of_range(self, capsys):
        assert main([_example("basic.c"), "--step", "999"]) == 1
        assert "step must be between 0 and" in capsys.readouterr().err

    def test_json(self, capsys):
        assert main([_example("struct.c"), "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["category"] == "structures"
        assert data["steps"][-1]["kind"] == "finalization"

    def test_tokens(self, capsys):
        assert main([_example("custom.c"), "--tokens"]) == 0
        out = capsys.readouterr().out
        assert "Token(PREPROCESSOR, '#include'" in out
        assert "Token(FUNCTION, 'printf'" in out

    def test_ast(self, capsys):
        assert main([_example("custom.c"), "--ast"]) == 0
        out = capsys.readouterr().out
        assert out.startswith("program L1")
        assert "function_definition 'main'" in out
        assert "call_expression 'printf'" in out

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--version"])
        assert exc.value.code == 0
        assert "ctracer" in capsys.readouterr().out


# ─── Configuration ─────────────────────

class TestConfigFlags:
    def test_parse_int_arg(self):
        assert parse_int_arg("0x1000") == 0x1000
        assert parse_int_arg("$8000") == 0x8000
        assert parse_int_arg("42") == 42

    def test_build_config(self):
        args = build_parser().parse_args(
            ["x.c", "--stack-base", "0x2000", "--heap-base", "0x9000",
             "--input", "4", "--max-depth", "8", "--max-loops", "10"])
        config = build_config(args)
        assert (config.stack_base, config.heap_base) == (0x2000, 0x9000)
        assert (config.scanf_value, config.max_call_depth, config.max_loop_iterations) == (4, 8, 10)

    def test_input_flag_changes_branch(self, capsys):
        assert main([_example("switchcase.c"), "--input", "5"]) == 0
        assert "You chose option 5" in capsys.readouterr().out

    def test_heap_base_flag(self, capsys):
        assert main([_example("malloc.c"), "--heap-base", "0xA000"]) == 0
        assert "0xa000" in capsys.readouterr().out


# ─── Exit codes ─────────────────────

class TestExitCodes:
    def test_missing_file(self, capsys):
        assert main(["does_not_exist.c"]) == 1
        assert "File not found" in capsys.readouterr().err

    def test_invalid_config(self, capsys):
        assert main([_example("basic.c"), "--stack-base", "0x9000"]) == 1
        assert "heap_base" in capsys.readouterr().err

    def test_parse_error(self, tmp_path, capsys):
        assert main([_write(tmp_path, "int main( {\n")]) == 1
        assert "Parse error at L1" in capsys.readouterr().err

    def test_trace_error(self, tmp_path, capsys):
        path = _write(tmp_path, "int main() {\n    int x = 1 / 0;\n    return 0;\n}\n")
        assert main([path, "--quiet"]) == 2
        assert "Error generating steps: Division by zero" in capsys.readouterr().out

    def test_truncated_parameter_list(self, tmp_path, capsys):
        assert main([_write(tmp_path, "int f(int a[) { return 0; }\n")]) == 1
        assert "Expected ']'" in capsys.readouterr().err
