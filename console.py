"""Console collaborators for keyboard polling and TRAP I/O.

The core only needs a blocking line read and a text write. `StdConsole`
talks to the process streams; `ScriptedConsole` serves a fixed list of
input lines and captures output, which is what tests and embedders use.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from typing import Protocol, TextIO

REPLACEMENT_CHAR = "\ufffd"


class Console(Protocol):
    def read_line(self) -> str:
        """Block for the next input line (without terminator); '' on EOF."""
        ...

    def write(self, text: str) -> None: ...


class StdConsole:
    """Console backed by text streams (stdin/stdout by default)."""

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout

    def read_line(self) -> str:
        line = self.stdin.readline()
        return line.rstrip("\r\n")

    def write(self, text: str) -> None:
        self.stdout.write(text)
        self.stdout.flush()


class ScriptedConsole:
    """Console with pre-scripted input lines and captured output."""

    def __init__(self, lines: Iterable[str] = ()) -> None:
        self.input_lines: list[str] = [str(x) for x in lines]
        self.output: list[str] = []
        self.reads = 0

    def read_line(self) -> str:
        self.reads += 1
        if not self.input_lines:
            return ""
        return self.input_lines.pop(0)

    def write(self, text: str) -> None:
        self.output.append(text)

    @property
    def text(self) -> str:
        return "".join(self.output)


def read_char(console: Console) -> int | None:
    """Return the code of the first char of the next input line.

    None when the line is empty, input is exhausted or the console failed;
    a failing console (including undecodable input) is logged and otherwise
    treated as "no input".
    """
    try:
        line = console.read_line()
    except (OSError, UnicodeDecodeError) as e:
        logging.warning("console read failed: %s", e)
        return None
    if not line:
        return None
    return ord(line[0]) & 0xFFFF


def char_for(code: int) -> str:
    """Character for a 16-bit code; lone surrogates print as U+FFFD."""
    code &= 0xFFFF
    if 0xD800 <= code <= 0xDFFF:
        return REPLACEMENT_CHAR
    return chr(code)


def write_text(console: Console, text: str) -> None:
    """Write to the console; a failing console is logged, not raised."""
    try:
        console.write(text)
    except (OSError, UnicodeEncodeError) as e:
        logging.warning("console write failed: %s", e)
