from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


class MachineError(Exception):
    """Base class for machine errors."""

    def __init__(self, message: str, *, program_counter: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.program_counter = program_counter
        self.step_index: Optional[int] = None

    @property
    def line(self) -> Optional[int]:
        if self.program_counter is None:
            return None
        return self.program_counter + 1

    def __str__(self) -> str:
        if self.program_counter is None:
            return self.message
        return f"{self.message} (line {self.line})"


@dataclass
class Token:
    value: str
    line: int
    column: int


# ASCII whitespace; vertical tab is not a separator.
WHITESPACE = " \t\r\n\f"


class Lexer:
    """Splits a single instruction line into whitespace-delimited tokens.

    No quoting is honoured: a text literal containing a space becomes two
    tokens, so the caller's arity check rejects it.
    """

    def __init__(self, text: str, line: int = 1) -> None:
        self.text = text
        self.line = line
        self.index = 0
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch in WHITESPACE:
                _advance()
                continue
            tokens_append(self._consume_word())
        return tokens

    def _consume_word(self) -> Token:
        col = self.column
        chars: List[str] = []
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n:
            ch = text[self.index]
            if ch in WHITESPACE:
                break
            chars.append(ch)
            _advance()
        return Token("".join(chars), self.line, col)

    def _advance(self) -> None:
        self.column += 1
        self.index += 1


def tokenize_line(text: str, line: int = 1) -> List[Token]:
    return Lexer(text, line).tokenize()
