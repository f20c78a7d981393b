"""Console backends and the first-char reader."""

import io
import logging
from typing import Any

from console import ScriptedConsole, StdConsole, char_for, read_char, write_text


def test_std_console_strips_line_terminators() -> None:
    con = StdConsole(stdin=io.StringIO("abc\r\nsecond\n"), stdout=io.StringIO())
    assert con.read_line() == "abc"
    assert con.read_line() == "second"
    assert con.read_line() == ""


def test_std_console_write() -> None:
    out = io.StringIO()
    StdConsole(stdin=io.StringIO(), stdout=out).write("hi\n")
    assert out.getvalue() == "hi\n"


def test_scripted_console_serves_lines_then_eof() -> None:
    con = ScriptedConsole(["one", "two"])
    assert con.read_line() == "one"
    assert con.read_line() == "two"
    assert con.read_line() == ""
    assert con.reads == 3
    con.write("a")
    con.write("b")
    assert con.text == "ab"


def test_read_char() -> None:
    con = ScriptedConsole(["xyz", ""])
    assert read_char(con) == ord("x")
    assert read_char(con) is None
    assert read_char(con) is None


class _Broken:
    def read_line(self) -> str:
        raise OSError("device gone")

    def write(self, text: str) -> None:
        pass


def test_read_char_logs_console_errors(caplog: Any) -> None:
    with caplog.at_level(logging.WARNING):
        assert read_char(_Broken()) is None
    assert "device gone" in caplog.text


def test_read_char_undecodable_input(caplog: Any) -> None:
    stdin = io.TextIOWrapper(io.BytesIO(b"\xff\n"), encoding="utf-8")
    con = StdConsole(stdin=stdin, stdout=io.StringIO())
    with caplog.at_level(logging.WARNING):
        assert read_char(con) is None
    assert "console read failed" in caplog.text


def test_char_for_replaces_surrogates() -> None:
    assert char_for(0x41) == "A"
    assert char_for(0xD800) == "\ufffd"
    assert char_for(0xDFFF) == "\ufffd"
    assert char_for(0xE000) == "\ue000"


class _ClosedPipe:
    def read_line(self) -> str:
        return ""

    def write(self, text: str) -> None:
        raise BrokenPipeError("stdout closed")


def test_write_text_logs_console_errors(caplog: Any) -> None:
    with caplog.at_level(logging.WARNING):
        write_text(_ClosedPipe(), "hi")
    assert "console write failed" in caplog.text


def test_write_text_unencodable_text(caplog: Any) -> None:
    out = io.TextIOWrapper(io.BytesIO(), encoding="ascii")
    with caplog.at_level(logging.WARNING):
        write_text(StdConsole(stdin=io.StringIO(), stdout=out), "\xe9")
    assert "console write failed" in caplog.text
