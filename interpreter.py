from __future__ import annotations
import json
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

from lexer import MachineError, Token, tokenize_line
from values import (
    TYPE_INT,
    ParseValueError,
    Value,
    parse_line_number,
    parse_value,
    to_debug,
    to_json,
)


# Number of journal entries carried by a JSON traceback.
TRACEBACK_DEPTH = 8

# Number of journal entries kept; older steps are discarded.
JOURNAL_DEPTH = 64

ZERO = Value(TYPE_INT, 0)


def split_program(source: str) -> List[str]:
    """Split program text on newlines only, dropping one trailing carriage return per line."""
    lines = source.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


class LineOutOfBounds(MachineError):
    """Raised when the program counter does not address a program line."""


class ArgMismatch(MachineError):
    def __init__(self, mnemonic: str, expected: int, got: int, *, program_counter: Optional[int] = None) -> None:
        plural = "" if expected == 1 else "s"
        super().__init__(f"{mnemonic} expects {expected} operand{plural}, got {got}", program_counter=program_counter)
        self.mnemonic = mnemonic
        self.expected = expected
        self.got = got


class EmptyStack(MachineError):
    """Raised when a stack-consuming instruction finds too few values."""


class HaltedStep(MachineError):
    """Raised when a halted machine is asked to step."""


class Opcode(Enum):
    PUSHI = "pushi"
    PUSHR = "pushr"
    POP = "pop"
    POPS = "pops"
    PEEK = "peek"
    SWAP = "swap"
    ADD = "add"
    MULT = "mult"
    INC = "inc"
    DEC = "dec"
    JUMP = "jump"
    JZER = "jzer"
    CALL = "call"
    RET = "ret"
    HALT = "halt"


# A handler returns the 0-based index of the next instruction, or None to
# fall through to the following line.
InstructionImpl = Callable[["Machine", List[Token]], Optional[int]]


@dataclass
class Instruction:
    opcode: Opcode
    arity: int
    impl: InstructionImpl

    def validate(self, supplied: int) -> None:
        if supplied != self.arity:
            raise ArgMismatch(self.opcode.value, self.arity, supplied)


class Instructions:
    def __init__(self) -> None:
        self.table: Dict[Opcode, Instruction] = {}
        self._register(Opcode.PUSHI, 1, self._pushi)
        self._register(Opcode.PUSHR, 0, self._pushr)
        self._register(Opcode.POP, 0, self._pop)
        self._register(Opcode.POPS, 0, self._pops)
        self._register(Opcode.PEEK, 0, self._peek)
        self._register(Opcode.SWAP, 0, self._swap)
        self._register(Opcode.ADD, 0, self._add)
        self._register(Opcode.MULT, 0, self._mult)
        self._register(Opcode.INC, 0, self._inc)
        self._register(Opcode.DEC, 0, self._dec)
        self._register(Opcode.JUMP, 1, self._jump)
        self._register(Opcode.JZER, 1, self._jzer)
        self._register(Opcode.CALL, 1, self._call)
        self._register(Opcode.RET, 0, self._ret)
        self._register(Opcode.HALT, 0, self._halt)

    def _register(self, opcode: Opcode, arity: int, impl: InstructionImpl) -> None:
        self.table[opcode] = Instruction(opcode=opcode, arity=arity, impl=impl)

    def decode(self, mnemonic: str) -> Instruction:
        try:
            opcode = Opcode(mnemonic)
        except ValueError:
            raise ParseValueError(f"Unrecognized instruction '{mnemonic}'")
        return self.table[opcode]

    # Helpers
    def _expect_depth(self, machine: "Machine", depth: int, rule: str) -> None:
        have = len(machine.stack)
        if have < depth:
            plural = "" if depth == 1 else "s"
            raise EmptyStack(
                f"{rule} needs {depth} stack value{plural}, stack holds {have}",
                program_counter=machine.program_counter,
            )

    # Stack
    def _pushi(self, machine: "Machine", operands: List[Token]) -> Optional[int]:
        machine.stack.append(parse_value(operands[0].value))
        return None

    def _pushr(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        machine.stack.append(machine.register_a)
        return None

    def _pop(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        self._expect_depth(machine, 1, "pop")
        machine.stack.pop()
        return None

    def _pops(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        self._expect_depth(machine, 1, "pops")
        machine.register_a = machine.stack.pop()
        return None

    def _peek(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        self._expect_depth(machine, 1, "peek")
        machine.register_a = machine.stack[-1]
        return None

    def _swap(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        machine.register_a, machine.register_b = machine.register_b, machine.register_a
        return None

    # Arithmetic: the top of the stack is the left operand; nothing is popped.
    def _add(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        self._expect_depth(machine, 2, "add")
        machine.register_a = machine.stack[-1].add(machine.stack[-2])
        return None

    def _mult(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        self._expect_depth(machine, 2, "mult")
        machine.register_a = machine.stack[-1].mult(machine.stack[-2])
        return None

    def _inc(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        machine.register_a = machine.register_a.increment(1)
        return None

    def _dec(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        machine.register_a = machine.register_a.increment(-1)
        return None

    # Control transfer. Targets are 1-based lines; storage is 0-based.
    def _jump(self, machine: "Machine", operands: List[Token]) -> Optional[int]:
        return parse_line_number(operands[0].value) - 1

    def _jzer(self, machine: "Machine", operands: List[Token]) -> Optional[int]:
        target = parse_line_number(operands[0].value) - 1
        if machine.register_a == ZERO:
            return target
        return None

    def _call(self, machine: "Machine", operands: List[Token]) -> Optional[int]:
        target = parse_line_number(operands[0].value) - 1
        machine.register_r = machine.program_counter + 1
        return target

    def _ret(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        return machine.register_r

    def _halt(self, machine: "Machine", _: List[Token]) -> Optional[int]:
        machine.halt = True
        return machine.program_counter


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    program_counter: Optional[int]
    statement: Optional[str]
    opcode: Optional[str]
    registers: Optional[Dict[str, Any]]

    @property
    def line(self) -> Optional[int]:
        if self.program_counter is None:
            return None
        return self.program_counter + 1

    def to_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "step_index": self.step_index,
            "state_id": self.state_id,
            "line": self.line,
            "statement": self.statement,
            "opcode": self.opcode,
        }
        if self.registers is not None:
            entry["registers"] = self.registers
        return entry


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=JOURNAL_DEPTH)
        self.next_state_index = 0

    def record(
        self,
        *,
        program_counter: Optional[int],
        statement: Optional[str],
        opcode: Optional[str],
        registers: Optional[Dict[str, Any]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            program_counter=program_counter,
            statement=statement,
            opcode=opcode,
            registers=registers if self.verbose else None,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    @property
    def last(self) -> StateEntry:
        return self.entries[-1]

    def find(self, step_index: int) -> Optional[StateEntry]:
        for entry in reversed(self.entries):
            if entry.step_index == step_index:
                return entry
        return None


@dataclass(frozen=True)
class MachineState:
    """Externally visible machine state. Line numbers are 1-based; R is 0 until the first call."""

    register_a: Value
    register_b: Value
    register_r: int
    program_counter: int
    stack: Tuple[Value, ...] = field(default_factory=tuple)
    halted: bool = False

    def format_text(self) -> str:
        lines = [
            f"A:  {to_debug(self.register_a)}",
            f"B:  {to_debug(self.register_b)}",
            f"R:  {self.register_r}",
            f"PC: {self.program_counter}",
            "Stack (top first):",
        ]
        if not self.stack:
            lines.append("  <empty>")
        for value in self.stack:
            lines.append(f"  {to_debug(value)}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "register_a": to_json(self.register_a),
            "register_b": to_json(self.register_b),
            "register_r": self.register_r,
            "program_counter": self.program_counter,
            "stack": [to_json(value) for value in self.stack],
            "halted": self.halted,
        }


class Machine:
    """Single-owner machine state stepped one source line at a time.

    ``call`` saves its own program counter in R as the 1-based line of the
    call, which is also the 0-based index of the line after it; ``ret``
    resumes at that index. R starts at 0, so ``ret`` before any ``call``
    resumes at the first line.
    """

    def __init__(self, lines: Iterable[str], *, filename: str = "<string>", verbose: bool = False) -> None:
        self.program: Tuple[str, ...] = tuple(lines)
        self.filename = filename
        self.verbose = verbose
        self.stack: List[Value] = []
        self.program_counter = 0
        self.register_a = ZERO
        self.register_b = ZERO
        self.register_r = 0
        self.halt = False
        self.instructions = Instructions()
        self.logger = StateLogger(verbose=verbose)
        self.logger.record(program_counter=None, statement="<seed>", opcode=None)

    @classmethod
    def from_source(cls, source: str, *, filename: str = "<string>", verbose: bool = False) -> "Machine":
        return cls(split_program(source), filename=filename, verbose=verbose)

    def step(self) -> None:
        pc = self.program_counter
        if self.halt:
            raise self._attributed(HaltedStep("Machine is halted", program_counter=pc))
        if pc >= len(self.program):
            raise self._attributed(
                LineOutOfBounds(
                    f"No instruction at line {pc + 1}; program has {len(self.program)} lines",
                    program_counter=pc,
                )
            )
        statement = self.program[pc]
        tokens = tokenize_line(statement, pc + 1)
        self._log_step(statement, tokens[0].value if tokens else None)
        if not tokens:
            self.program_counter = pc + 1
            return
        try:
            instruction = self.instructions.decode(tokens[0].value)
            operands = tokens[1:]
            instruction.validate(len(operands))
            target = instruction.impl(self, operands)
        except MachineError as error:
            if error.program_counter is None:
                error.program_counter = pc
            raise self._attributed(error)
        self.program_counter = pc + 1 if target is None else target

    def run(self, max_steps: Optional[int] = None) -> int:
        """Step until halted, or until ``max_steps`` steps have run.

        Returns the number of steps taken. Errors propagate to the caller.
        """
        steps = 0
        while not self.halt:
            if max_steps is not None and steps >= max_steps:
                break
            self.step()
            steps += 1
        return steps

    def snapshot(self) -> MachineState:
        return MachineState(
            register_a=self.register_a,
            register_b=self.register_b,
            register_r=self.register_r,
            program_counter=self.program_counter + 1,
            stack=tuple(reversed(self.stack)),
            halted=self.halt,
        )

    def _attributed(self, error: MachineError) -> MachineError:
        error.step_index = self.logger.last.step_index
        return error

    def _log_step(self, statement: str, opcode: Optional[str]) -> StateEntry:
        registers = None
        if self.verbose:
            registers = {
                "A": to_debug(self.register_a),
                "B": to_debug(self.register_b),
                "R": self.register_r,
                "depth": len(self.stack),
            }
        return self.logger.record(
            program_counter=self.program_counter,
            statement=statement,
            opcode=opcode,
            registers=registers,
        )


class TracebackFormatter:
    def __init__(self, machine: Machine) -> None:
        self.machine = machine

    def _statement(self, error: MachineError) -> Optional[str]:
        pc = error.program_counter
        if pc is None or pc >= len(self.machine.program):
            return None
        return self.machine.program[pc]

    def _entry(self, error: MachineError) -> Optional[StateEntry]:
        if error.step_index is None:
            return None
        return self.machine.logger.find(error.step_index)

    def format_text(self, error: MachineError, verbose: bool) -> str:
        lines = ["Traceback (most recent step last):"]
        if error.line is not None:
            lines.append(f"  File \"{self.machine.filename}\", line {error.line}")
            statement = self._statement(error)
            if statement is not None:
                lines.append(f"    {statement.strip()}")
        else:
            lines.append("  <unknown location>")
        entry = self._entry(error)
        if entry is not None:
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}")
            if verbose and entry.registers is not None:
                registers = ", ".join(f"{k}={v}" for k, v in entry.registers.items())
                lines.append(f"    Registers: {registers}")
        lines.append(f"{error.__class__.__name__}: {error.message}")
        return "\n".join(lines)

    def to_json(self, error: MachineError) -> str:
        recent = list(self.machine.logger.entries)[-TRACEBACK_DEPTH:]
        data: Dict[str, Any] = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "line": error.line,
                "statement": self._statement(error),
                "failing_step_index": error.step_index,
            },
            "steps": [entry.to_dict() for entry in recent],
        }
        if isinstance(error, ArgMismatch):
            data["error"]["expected"] = error.expected
            data["error"]["got"] = error.got
        return json.dumps(data, indent=2)
