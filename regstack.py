"""regstack entry point: load a program, run it, report the final state."""

from __future__ import annotations
import argparse
import json
import sys
from typing import List, Optional

from interpreter import Machine, TracebackFormatter
from lexer import MachineError


def load_machine(program: str, *, source_mode: bool, verbose: bool) -> Machine:
    if source_mode:
        return Machine.from_source(program, filename="<string>", verbose=verbose)
    with open(program, "r", encoding="utf-8") as handle:
        source_text = handle.read()
    return Machine.from_source(source_text, filename=program, verbose=verbose)


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Register-augmented stack machine interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit register snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--json", dest="json_state", action="store_true", help="Print the final state as JSON")
    args = parser.parse_args(argv)

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
        else:
            print("a program file is required", file=sys.stderr)
        return 1

    try:
        machine = load_machine(args.program, source_mode=args.source_mode, verbose=args.verbose)
    except OSError as exc:
        print(f"Failed to read {args.program}: {exc}", file=sys.stderr)
        return 1

    try:
        machine.run()
    except MachineError as error:
        formatter = TracebackFormatter(machine)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1

    state = machine.snapshot()
    if args.json_state:
        print(json.dumps(state.to_dict(), indent=2))
    else:
        print(state.format_text())
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
