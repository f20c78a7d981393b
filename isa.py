"""ISA: opcodes, trap codes, condition flags and instruction field helpers."""

from enum import IntEnum

WORD_BITS = 16
WORD_MASK = 0xFFFF
SIGN_BIT = 0x8000

MEM_WORDS = 1 << WORD_BITS  # 65536 addressable words
MAX_ADDRESS = WORD_MASK  # run loop bound (PC < MAX_ADDRESS)

DEFAULT_ORIGIN = 0x3000

# memory-mapped keyboard registers
KBSR = 0xFE00  # keyboard status: bit 15 set -> key available
KBDR = 0xFE02  # keyboard data: last character code read
KBSR_READY = 1 << 15

LINK_REGISTER = 7
NUM_REGISTERS = 8


class OpCode(IntEnum):
    """Opcodes selected by the top 4 bits of an instruction word."""

    BR = 0  # conditional branch
    ADD = 1
    LD = 2  # load PC-relative
    ST = 3  # store PC-relative
    JSR = 4  # jump to subroutine
    AND = 5
    LDR = 6  # load base+offset
    STR = 7  # store base+offset
    RTI = 8  # unused
    NOT = 9
    LDI = 10  # load indirect
    STI = 11  # store indirect
    JMP = 12  # jump (RET when base is R7)
    RES = 13  # reserved
    LEA = 14  # load effective address
    TRAP = 15
    UNKNOWN = 16  # not reachable from a 4-bit field


class TrapCode(IntEnum):
    """Service codes carried in the low byte of a TRAP instruction."""

    GETC = 0x20  # read a char, no echo
    OUT = 0x21  # write char in R0 (plus newline)
    PUTS = 0x22  # write one-char-per-word string at R0
    IN = 0x23  # read a char and echo it
    PUTSP = 0x24  # write two-chars-per-word string at R0
    HALT = 0x25


class Condition(IntEnum):
    """Condition flags; values line up with the BR instruction's nzp mask."""

    POS = 1 << 0
    ZRO = 1 << 1
    NEG = 1 << 2


def decode_opcode(instr: int) -> OpCode:
    """Map the top 4 bits of `instr` to an OpCode (UNKNOWN if out of range)."""
    op = (instr & WORD_MASK) >> 12
    try:
        return OpCode(op)
    except ValueError:
        return OpCode.UNKNOWN


def sign_extend(x: int, bit_count: int) -> int:
    """Widen a `bit_count`-bit two's-complement field to a 16-bit word."""
    x &= (1 << bit_count) - 1
    if (x >> (bit_count - 1)) & 1:
        x |= WORD_MASK << bit_count
    return x & WORD_MASK


def to_signed(word: int) -> int:
    """Signed interpretation of a 16-bit word."""
    word &= WORD_MASK
    if word & SIGN_BIT:
        return word - (1 << WORD_BITS)
    return word


def condition_for(word: int) -> Condition:
    """Condition flag describing the sign of `word`."""
    word &= WORD_MASK
    if word == 0:
        return Condition.ZRO
    if word & SIGN_BIT:
        return Condition.NEG
    return Condition.POS


# --- instruction fields ---
def dr(instr: int) -> int:
    """Destination (or store source) register, bits 11..9."""
    return (instr >> 9) & 0x7


def sr1(instr: int) -> int:
    """First source / base register, bits 8..6."""
    return (instr >> 6) & 0x7


def sr2(instr: int) -> int:
    return instr & 0x7


def imm_flag(instr: int) -> bool:
    return bool((instr >> 5) & 0x1)


def long_flag(instr: int) -> bool:
    return bool((instr >> 11) & 0x1)


def nzp(instr: int) -> int:
    """Branch condition mask, bits 11..9."""
    return (instr >> 9) & 0x7


def imm5(instr: int) -> int:
    return sign_extend(instr & 0x1F, 5)


def offset6(instr: int) -> int:
    return sign_extend(instr & 0x3F, 6)


def pc_offset9(instr: int) -> int:
    return sign_extend(instr & 0x1FF, 9)


def pc_offset11(instr: int) -> int:
    return sign_extend(instr & 0x7FF, 11)


def trap_vector(instr: int) -> int:
    return instr & 0xFF
