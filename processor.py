"""Processor (Datapath + ControlUnit) and CLI wrapper.

Provides the register file, the 64K-word memory with its memory-mapped
keyboard registers, image loading, the FETCH-DECODE-EXEC loop with the
TRAP service, logging initialization and the command line runner.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

import isa
from config import ConfigError, load_config
from console import Console, StdConsole, char_for, read_char, write_text
from isa import Condition, OpCode, TrapCode


def init_logging(logfile: str | None = None, debug: bool = False, console: bool = False) -> None:
    """Configure the root logger.

    If debug=True set DEBUG level, otherwise WARNING. A FileHandler is
    attached when `logfile` is given; console=True also echoes records to
    stderr so they never mix with program output on stdout.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    lvl = logging.DEBUG if debug else logging.WARNING
    root.setLevel(lvl)

    if debug:
        fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        fmt = "%(levelname)-5s %(message)s"

    if logfile:
        fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
        fh.setLevel(lvl)
        fh.setFormatter(logging.Formatter(fmt))
        root.addHandler(fh)

    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


class LoadError(ValueError):
    """Raised when a program image is malformed or cannot be read."""

    pass


def load_image(blob: bytes) -> tuple[int, list[int]]:
    """Split a program image into (origin, words).

    The image is a sequence of big-endian 16-bit words: the first one is
    the origin address, the rest are loaded from the origin upwards.
    """
    if not isinstance(blob, (bytes, bytearray, memoryview)):
        msg = f"Image is not a byte sequence: {type(blob).__name__}"
        raise LoadError(msg)
    data = bytes(blob)
    if len(data) < 2:
        msg = "Image too short: missing origin word"
        raise LoadError(msg)
    if len(data) % 2:
        msg = f"Image truncated mid-word ({len(data)} bytes)"
        raise LoadError(msg)
    origin = int.from_bytes(data[0:2], byteorder="big")
    words = [int.from_bytes(data[i : i + 2], byteorder="big") for i in range(2, len(data), 2)]
    return origin, words


class RegisterFile:
    """General registers R0..R7, program counter and condition code."""

    def __init__(self) -> None:
        self._regs = [0] * isa.NUM_REGISTERS
        self._pc = isa.DEFAULT_ORIGIN
        self._cond = Condition.ZRO

    def get(self, index: int) -> int:
        return self._regs[index]

    def set(self, index: int, value: int) -> None:
        self._regs[index] = value & isa.WORD_MASK

    @property
    def pc(self) -> int:
        return self._pc

    @pc.setter
    def pc(self, value: int) -> None:
        self._pc = value & isa.WORD_MASK

    @property
    def condition_code(self) -> Condition:
        return self._cond

    def update_condition_code(self, index: int) -> None:
        """Recompute the condition flag from the current value of register `index`."""
        self._cond = isa.condition_for(self._regs[index])

    def snapshot(self) -> dict[str, int]:
        regs = {f"R{i}": v for i, v in enumerate(self._regs)}
        regs["PC"] = self._pc
        return regs


class Memory:
    """65536 words of storage with memory-mapped keyboard registers.

    Reading the keyboard status address polls the console before the value
    is returned: the poll is part of what `read` does here, not a separate
    device access. Callers never distinguish device reads from plain reads.
    """

    def __init__(self, console: Console, kbsr: int = isa.KBSR, kbdr: int = isa.KBDR) -> None:
        self.console = console
        self.kbsr = kbsr
        self.kbdr = kbdr
        self.cells = [0] * isa.MEM_WORDS

    def _poll_keyboard(self) -> None:
        ch = read_char(self.console)
        if ch:
            self.write(self.kbsr, isa.KBSR_READY)
            self.write(self.kbdr, ch)
        else:
            self.write(self.kbsr, 0)

    def read(self, address: int) -> int:
        address &= isa.WORD_MASK
        if address == self.kbsr:
            self._poll_keyboard()
        return self.cells[address]

    def write(self, address: int, value: int) -> None:
        self.cells[address & isa.WORD_MASK] = value & isa.WORD_MASK


class Datapath:
    """The VM: owns one register file and one memory loaded from an image."""

    regs: RegisterFile
    mem: Memory
    console: Console

    origin: int
    image_len: int

    tick: int
    step_limit: int | None
    halt_message: str

    def __init__(
        self,
        image: bytes,
        console: Console | None = None,
        kbsr: int = isa.KBSR,
        kbdr: int = isa.KBDR,
        step_limit: int | None = None,
        halt_message: str = "HALTing execution",
    ) -> None:
        """Parse `image` and build the machine state; raises LoadError."""
        # parse first so a bad image leaves nothing behind
        origin, words = load_image(image)

        self.console = console if console is not None else StdConsole()
        self.regs = RegisterFile()
        self.mem = Memory(self.console, kbsr=kbsr, kbdr=kbdr)

        address = origin
        for w in words:
            self.mem.write(address, w)
            address = (address + 1) & isa.WORD_MASK

        self.origin = origin
        self.image_len = len(words)
        self.regs.pc = origin

        self.tick = 0
        self.step_limit = step_limit
        self.halt_message = halt_message
        logging.debug("Datapath: loaded %d words at origin %#06x", self.image_len, origin)


class Outcome(Enum):
    """Result of executing one instruction (or a run)."""

    CONTINUING = "continuing"
    HALTED = "halted"
    FAULTED = "faulted"

    @property
    def exit_status(self) -> int:
        return 1 if self is Outcome.FAULTED else 0


class TrapService:
    """Console I/O and halt services selected by the TRAP vector."""

    def __init__(self, dp: Datapath) -> None:
        self.dp = dp
        self._services: dict[int, Callable[[], Outcome]] = {
            TrapCode.GETC: self.getc,
            TrapCode.OUT: self.out,
            TrapCode.PUTS: self.puts,
            TrapCode.IN: self.in_,
            TrapCode.PUTSP: self.putsp,
            TrapCode.HALT: self.halt,
        }

    def dispatch(self, vector: int) -> Outcome:
        service = self._services.get(vector)
        if service is None:
            logging.error("TRAP: unknown trap vector %#04x at PC %#06x", vector, self.dp.regs.pc)
            return Outcome.FAULTED
        return service()

    def _read_into_r0(self) -> int | None:
        ch = read_char(self.dp.console)
        self.dp.regs.set(0, ch or 0)
        return ch

    def getc(self) -> Outcome:
        self._read_into_r0()
        return Outcome.CONTINUING

    def out(self) -> Outcome:
        # newline after the char is kept for output compatibility
        write_text(self.dp.console, char_for(self.dp.regs.get(0)) + "\n")
        return Outcome.CONTINUING

    def puts(self) -> Outcome:
        mem = self.dp.mem
        address = self.dp.regs.get(0)
        chars: list[str] = []
        word = mem.read(address)
        while word != 0:
            chars.append(char_for(word))
            address = (address + 1) & isa.WORD_MASK
            word = mem.read(address)
        write_text(self.dp.console, "".join(chars))
        return Outcome.CONTINUING

    def in_(self) -> Outcome:
        ch = self._read_into_r0()
        if ch:
            write_text(self.dp.console, char_for(ch) + "\n")
        return Outcome.CONTINUING

    def putsp(self) -> Outcome:
        mem = self.dp.mem
        address = self.dp.regs.get(0)
        chars: list[str] = []
        word = mem.read(address)
        while word != 0:
            chars.append(chr(word & 0xFF))
            hi = word >> 8
            if hi:
                chars.append(chr(hi))
            address = (address + 1) & isa.WORD_MASK
            word = mem.read(address)
        write_text(self.dp.console, "".join(chars))
        return Outcome.CONTINUING

    def halt(self) -> Outcome:
        write_text(self.dp.console, self.dp.halt_message + "\n")
        logging.debug("HALT encountered after %d steps", self.dp.tick + 1)
        return Outcome.HALTED


class ControlUnit:
    """Control unit implementing the FETCH-DECODE-EXEC loop for the Datapath."""

    dp: Datapath
    state: Outcome

    def __init__(self, dp: Datapath) -> None:
        """Create a ControlUnit bound to `dp`."""
        self.dp = dp
        self.state = Outcome.CONTINUING
        self.traps = TrapService(dp)
        self._handlers: dict[OpCode, Callable[[int], Outcome | None]] = {
            OpCode.BR: self._br,
            OpCode.ADD: self._add,
            OpCode.LD: self._ld,
            OpCode.ST: self._st,
            OpCode.JSR: self._jsr,
            OpCode.AND: self._and,
            OpCode.LDR: self._ldr,
            OpCode.STR: self._str,
            OpCode.RTI: self._nop,
            OpCode.NOT: self._not,
            OpCode.LDI: self._ldi,
            OpCode.STI: self._sti,
            OpCode.JMP: self._jmp,
            OpCode.RES: self._nop,
            OpCode.LEA: self._lea,
            OpCode.TRAP: self._trap,
            OpCode.UNKNOWN: self._nop,
        }

    # --- opcode handlers ---
    def _pc_relative(self, offset: int) -> int:
        return (self.dp.regs.pc + offset) & isa.WORD_MASK

    def _base_relative(self, instr: int) -> int:
        return (self.dp.regs.get(isa.sr1(instr)) + isa.offset6(instr)) & isa.WORD_MASK

    def _load(self, dest: int, value: int) -> None:
        self.dp.regs.set(dest, value)
        self.dp.regs.update_condition_code(dest)

    def _br(self, instr: int) -> None:
        if isa.nzp(instr) & self.dp.regs.condition_code:
            self.dp.regs.pc = self._pc_relative(isa.pc_offset9(instr))

    def _add(self, instr: int) -> None:
        regs = self.dp.regs
        operand = isa.imm5(instr) if isa.imm_flag(instr) else regs.get(isa.sr2(instr))
        self._load(isa.dr(instr), regs.get(isa.sr1(instr)) + operand)

    def _and(self, instr: int) -> None:
        regs = self.dp.regs
        operand = isa.imm5(instr) if isa.imm_flag(instr) else regs.get(isa.sr2(instr))
        self._load(isa.dr(instr), regs.get(isa.sr1(instr)) & operand)

    def _not(self, instr: int) -> None:
        self._load(isa.dr(instr), ~self.dp.regs.get(isa.sr1(instr)))

    def _ld(self, instr: int) -> None:
        address = self._pc_relative(isa.pc_offset9(instr))
        self._load(isa.dr(instr), self.dp.mem.read(address))

    def _st(self, instr: int) -> None:
        address = self._pc_relative(isa.pc_offset9(instr))
        self.dp.mem.write(address, self.dp.regs.get(isa.dr(instr)))

    def _ldi(self, instr: int) -> None:
        pointer = self.dp.mem.read(self._pc_relative(isa.pc_offset9(instr)))
        self._load(isa.dr(instr), self.dp.mem.read(pointer))

    def _sti(self, instr: int) -> None:
        pointer = self.dp.mem.read(self._pc_relative(isa.pc_offset9(instr)))
        self.dp.mem.write(pointer, self.dp.regs.get(isa.dr(instr)))

    def _ldr(self, instr: int) -> None:
        self._load(isa.dr(instr), self.dp.mem.read(self._base_relative(instr)))

    def _str(self, instr: int) -> None:
        self.dp.mem.write(self._base_relative(instr), self.dp.regs.get(isa.dr(instr)))

    def _jmp(self, instr: int) -> None:
        self.dp.regs.pc = self.dp.regs.get(isa.sr1(instr))

    def _jsr(self, instr: int) -> None:
        regs = self.dp.regs
        regs.set(isa.LINK_REGISTER, regs.pc)
        if isa.long_flag(instr):
            regs.pc = self._pc_relative(isa.pc_offset11(instr))
        else:
            regs.pc = regs.get(isa.sr1(instr))

    def _lea(self, instr: int) -> None:
        self._load(isa.dr(instr), self._pc_relative(isa.pc_offset9(instr)))

    def _nop(self, instr: int) -> None:
        return None

    def _trap(self, instr: int) -> Outcome:
        return self.traps.dispatch(isa.trap_vector(instr))

    # --- main loop ---
    def step(self) -> Outcome:
        """Fetch, advance PC, decode and execute one instruction."""
        if self.state is not Outcome.CONTINUING:
            return self.state
        dp = self.dp
        instr = dp.mem.read(dp.regs.pc)
        # PC-relative offsets are taken from the already advanced PC
        dp.regs.pc = dp.regs.pc + 1
        opcode = isa.decode_opcode(instr)
        result = self._handlers[opcode](instr)
        dp.tick += 1
        self.state = result or Outcome.CONTINUING
        return self.state

    def run(self) -> Outcome:
        """Execute until HALT, an unknown trap, the step limit or PC reaching the top address."""
        dp = self.dp
        while dp.regs.pc < isa.MAX_ADDRESS:
            if dp.step_limit is not None and dp.tick >= dp.step_limit:
                logging.warning("step limit %d reached at PC %#06x", dp.step_limit, dp.regs.pc)
                break
            outcome = self.step()
            if outcome is not Outcome.CONTINUING:
                return outcome
        return self.state


def build_datapath(image: bytes, config: dict[str, Any] | None, console: Console | None = None) -> Datapath:
    """Create a Datapath from an image and a (raw or normalized) config."""
    cfg = load_config(config)
    return Datapath(
        image,
        console=console,
        kbsr=cfg["kbsr"],
        kbdr=cfg["kbdr"],
        step_limit=cfg["step_limit"],
        halt_message=cfg["halt_message"],
    )


def run_bytes(image: bytes, config: dict[str, Any] | None = None, console: Console | None = None) -> tuple[Outcome, int]:
    """Load `image`, run it to completion and return (outcome, steps)."""
    dp = build_datapath(image, config, console)
    cu = ControlUnit(dp)
    outcome = cu.run()
    return outcome, dp.tick


# ---------- CLI ----------
def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Run a 16-bit program image (big-endian words, origin first).")
    ap.add_argument("program", help="program image (.obj)")
    ap.add_argument("--config", help="path to yaml config", default=None)

    help_debug = "enable debug logging."
    help_logfile = "path to processor log"
    help_console = "also echo logs to stderr"
    ap.add_argument("--debug", action="store_true", help=help_debug)
    ap.add_argument("--logfile", default=None, help=help_logfile)
    ap.add_argument("--console", action="store_true", help=help_console)
    args = ap.parse_args(argv)

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e, file=sys.stderr)
        return 2

    try:
        image = Path(args.program).read_bytes()
        dp = build_datapath(image, cfg)
    except OSError as e:
        print("Cannot read program:", e, file=sys.stderr)
        return 2
    except LoadError as e:
        print("Bad program image:", e, file=sys.stderr)
        return 2

    outcome = ControlUnit(dp).run()
    logging.debug("CLI: finished with %s after %d steps", outcome.name, dp.tick)
    return outcome.exit_status


if __name__ == "__main__":
    sys.exit(main())
