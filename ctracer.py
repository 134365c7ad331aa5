#!/usr/bin/env python3
"""
ctracer: C execution tracer CLI

Usage:
    python ctracer.py <input.c> [--step N | --json | --tokens | --ast]
                                [--stack-base 0x1000] [--heap-base 0x8000]
                                [--input 3] [--max-depth 32] [--max-loops 100]
                                [--verbose | --quiet] [--log-file trace.log]

Without a dump option every step is listed followed by the program's
simulated console output.

Examples:
    python ctracer.py examples/malloc.c
    python ctracer.py examples/basic.c --step 5
    python ctracer.py examples/switchcase.c --input 2
    python ctracer.py examples/struct.c --json > struct.json
    python ctracer.py - < program.c
"""

import argparse
import logging
import os
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

# Allow running from project root without installing
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from ctrace import __version__
from ctrace.config import TraceConfig
from ctrace.pipeline import Session
from ctrace.lexer import tokenize
from ctrace.parser import ParseError
from ctrace.state import SimulationState
from ctrace.steps import ExecutionStep


def setup_logging(console_level: int = logging.WARNING,
                  log_file: Optional[str] = None) -> logging.Logger:
    """Console logging through rich; optionally everything to a file as well."""
    logger = logging.getLogger("ctrace")
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)

    # stdout carries the trace itself
    ch = RichHandler(
        console=Console(stderr=True),
        level=console_level,
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    ch.setLevel(console_level)
    logger.addHandler(ch)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-7s | %(name)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(fh)
    return logger


def parse_int_arg(value: str) -> int:
    """Parse an integer argument that may be hex (0x...), $ prefix, or decimal."""
    value = value.strip()
    if value.startswith("0x") or value.startswith("0X"):
        return int(value, 16)
    if value.startswith("$"):
        return int(value[1:], 16)
    return int(value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ctracer",
        description="Step-by-step memory traces of small C teaching programs",
    )
    parser.add_argument("input", help="C source file ('-' reads stdin)")
    parser.add_argument("--step", type=int, default=None,
                        help="Show step N and the machine state after it")
    parser.add_argument("--json", action="store_true",
                        help="Print the steps and error log as JSON")
    parser.add_argument("--tokens", action="store_true",
                        help="Dump token stream and exit (debug)")
    parser.add_argument("--ast", action="store_true",
                        help="Dump syntax tree and exit (debug)")
    parser.add_argument("--stack-base", default=None,
                        help="First stack address (hex, e.g. 0x1000)")
    parser.add_argument("--heap-base", default=None,
                        help="First heap address (hex, e.g. 0x8000)")
    parser.add_argument("--input", dest="scanf_value", type=int, default=None,
                        help="Value every scanf() call reads (default 3)")
    parser.add_argument("--max-depth", type=int, default=None,
                        help="Maximum nested user function calls")
    parser.add_argument("--max-loops", type=int, default=None,
                        help="Iterations per loop before it is cut short")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log trace generation details to stderr")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Only log errors")
    parser.add_argument("--log-file", default=None,
                        help="Also write a DEBUG log to this file")
    parser.add_argument("--version", action="version",
                        version=f"ctracer {__version__}")
    return parser


def build_config(args) -> TraceConfig:
    overrides = {}
    if args.stack_base:
        overrides["stack_base"] = parse_int_arg(args.stack_base)
    if args.heap_base:
        overrides["heap_base"] = parse_int_arg(args.heap_base)
    if args.scanf_value is not None:
        overrides["scanf_value"] = args.scanf_value
    if args.max_depth is not None:
        overrides["max_call_depth"] = args.max_depth
    if args.max_loops is not None:
        overrides["max_loop_iterations"] = args.max_loops
    return TraceConfig(**overrides)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.WARNING
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.ERROR
    setup_logging(level, args.log_file)

    try:
        if args.input == "-":
            source = sys.stdin.read()
        else:
            with open(args.input, "r", encoding="utf-8") as f:
                source = f.read()
    except FileNotFoundError:
        print(f"Error: File not found: {args.input}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error reading {args.input}: {e}", file=sys.stderr)
        return 1

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    session = Session(config)
    try:
        if args.tokens:
            for tok in tokenize(source):
                print(tok)
            return 0

        session.run(source)

        if args.ast:
            _print_tree(session.tree)
            return 0

        if args.json:
            print(session.to_json())
            return 0 if session.result.ok else 2

        if args.step is not None:
            if not 0 <= args.step < len(session.steps):
                print(f"Error: step must be between 0 and {len(session.steps) - 1}", file=sys.stderr)
                return 1
            session.go_to_step(args.step)
            _print_step(args.step, session.step)
            _print_state(session.state_at())
            return 0

        print(f"Category: {session.result.category.value if session.result.category else 'unknown'}")
        for index, step in enumerate(session.steps):
            _print_step(index, step)
        print()
        print("Console output:")
        print(session.result.output, end="" if session.result.output.endswith("\n") else "\n")
        return 0 if session.result.ok else 2

    except ParseError as e:
        print(e, file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Internal tracer error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 2


def _print_step(index: int, step: ExecutionStep):
    print(f"{index:4d}  L{step.source_line:<4d} {step.kind.value:<14s} {step.description}")


def _print_state(state: SimulationState):
    print("Stack:")
    for frame in reversed(state.stack):
        print(f"  {frame.function_name}:")
        for var in frame.variables.values():
            print(f"    {var.name:<16s} {var.declared_type:<14s} 0x{var.address:04x}  {var.value!r}")
    print("Memory:")
    for address, cell in sorted(state.memory.items()):
        region = "heap " if address >= state.heap_base else "stack"
        print(f"  {region} 0x{address:04x}  {cell.name:<20s} {cell.declared_type:<12s} {cell.value!r}")
    print("Heap:")
    for address, block in sorted(state.heap.items()):
        print(f"  0x{address:04x}  {block.size:5d} bytes  {'freed' if block.freed else 'in use'}")
    print("Console:")
    print(state.console, end="" if state.console.endswith("\n") else "\n")


def _print_tree(node, indent=0):
    """Pretty-print a syntax tree (debug helper)."""
    prefix = "  " * indent
    if node is None:
        return
    extras = []
    for fname in node.__dataclass_fields__:
        if fname in ("value", "children", "line"):
            continue
        val = getattr(node, fname)
        if hasattr(val, "kind"):
            val = f"{val.kind} {val.value}"
        if val not in (None, False, [], 0, ""):
            extras.append(f"{fname}={val!r}")
    value = f" {node.value!r}" if node.value is not None else ""
    print(f"{prefix}{node.kind}{value} L{node.line}" + (f"  [{', '.join(extras)}]" if extras else ""))
    for child in node.children:
        _print_tree(child, indent + 1)


if __name__ == "__main__":
    sys.exit(main())
