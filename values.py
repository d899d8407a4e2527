from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

from lexer import MachineError


TYPE_INT = "INT"
TYPE_FLT = "FLT"
TYPE_STR = "STR"

VALUE_TYPES = (TYPE_INT, TYPE_FLT, TYPE_STR)

INT64_MIN = int(np.iinfo(np.int64).min)
INT64_MAX = int(np.iinfo(np.int64).max)

_INT_LITERAL = re.compile(r"[+-]?[0-9]+")
_FLT_LITERAL = re.compile(r"[+-]?(?:[0-9]+\.[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_LINE_LITERAL = re.compile(r"\+?[0-9]+")


class ParseValueError(MachineError):
    """Raised when a token cannot be decoded as a literal, target or opcode."""


class UnsupportedOperation(MachineError):
    """Raised when an operation is applied to a kind it does not accept."""


@dataclass(frozen=True)
class Value:
    type: str
    value: Any

    def __post_init__(self) -> None:
        if self.type not in VALUE_TYPES:
            raise ValueError(f"Unknown value type '{self.type}'")

    def add(self, other: "Value") -> "Value":
        """Coercive addition; total over every pair of kinds.

        STR + any -> STR (concatenation, self first)
        any + STR -> STR
        FLT + FLT -> FLT
        FLT + INT, INT + FLT -> FLT (integer widened)
        INT + INT -> INT (wraps at 64 bits)
        """
        if self.type == TYPE_STR or other.type == TYPE_STR:
            return Value(TYPE_STR, to_text(self) + to_text(other))
        if self.type == TYPE_INT and other.type == TYPE_INT:
            return Value(TYPE_INT, _int64_op(np.add, self.value, other.value))
        return Value(TYPE_FLT, float(self.value) + float(other.value))

    def mult(self, other: "Value") -> "Value":
        if self.type == TYPE_STR or other.type == TYPE_STR:
            raise UnsupportedOperation(
                f"mult is not defined for {self.type} and {other.type}"
            )
        if self.type == TYPE_INT and other.type == TYPE_INT:
            return Value(TYPE_INT, _int64_op(np.multiply, self.value, other.value))
        return Value(TYPE_FLT, float(self.value) * float(other.value))

    def increment(self, delta: int) -> "Value":
        if self.type != TYPE_INT:
            raise UnsupportedOperation(f"increment expects {TYPE_INT}, got {self.type}")
        return Value(TYPE_INT, _int64_op(np.add, self.value, delta))


def _int64_op(op: Callable[[Any, Any], Any], a: int, b: int) -> int:
    # Array arithmetic wraps on overflow without raising or warning.
    left = np.array([a], dtype=np.int64)
    right = np.array([b], dtype=np.int64)
    return int(op(left, right)[0])


def to_text(value: Value) -> str:
    """Natural textual form, used when a value is concatenated onto text."""
    if value.type == TYPE_STR:
        return value.value
    if value.type == TYPE_FLT:
        return _positional(value.value)
    return str(value.value)


def _positional(number: float) -> str:
    # Shortest round-trip digits, never in exponent form, no trailing ".0".
    if np.isnan(number):
        return "NaN"
    return np.format_float_positional(number, unique=True, trim="-")


def to_debug(value: Value) -> str:
    """Display form: text is quoted, numbers are shown as literals."""
    if value.type == TYPE_STR:
        return f'"{value.value}"'
    if value.type == TYPE_FLT:
        return repr(value.value)
    return str(value.value)


def to_json(value: Value) -> dict:
    return {"type": value.type, "value": value.value}


def parse_value(token: str) -> Value:
    if len(token) >= 2 and token.startswith('"') and token.endswith('"'):
        return Value(TYPE_STR, token[1:-1])
    if "." in token:
        if not _FLT_LITERAL.fullmatch(token):
            raise ParseValueError(f"Invalid float literal '{token}'")
        return Value(TYPE_FLT, float(token))
    if not _INT_LITERAL.fullmatch(token):
        raise ParseValueError(f"Invalid literal '{token}'")
    number = int(token)
    if number < INT64_MIN or number > INT64_MAX:
        raise ParseValueError(f"Integer literal '{token}' does not fit in 64 bits")
    return Value(TYPE_INT, number)


def parse_line_number(token: str) -> int:
    """Parse a 1-based jump target."""
    if not _LINE_LITERAL.fullmatch(token):
        raise ParseValueError(f"Invalid line number '{token}'")
    line = int(token)
    if line == 0:
        raise ParseValueError("Line numbers start at 1")
    return line

