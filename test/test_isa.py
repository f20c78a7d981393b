"""Decoder, sign extension and field helpers."""

import isa
import pytest
from isa import Condition, OpCode


@pytest.mark.parametrize("opcode", list(OpCode)[:16])
def test_decode_top_nibble(opcode: OpCode) -> None:
    instr = (int(opcode) << 12) | 0x0ABC
    assert isa.decode_opcode(instr) is opcode


def test_decode_order_matches_architecture() -> None:
    names = [isa.decode_opcode(n << 12).name for n in range(16)]
    assert names == [
        "BR", "ADD", "LD", "ST", "JSR", "AND", "LDR", "STR",
        "RTI", "NOT", "LDI", "STI", "JMP", "RES", "LEA", "TRAP",
    ]  # fmt: skip


def test_decode_ignores_bits_above_word() -> None:
    assert isa.decode_opcode(0x1F025) is OpCode.TRAP


@pytest.mark.parametrize("width", [5, 6, 9, 11])
def test_sign_extend_preserves_signed_value(width: int) -> None:
    for x in range(1 << width):
        signed_field = x - (1 << width) if x >> (width - 1) else x
        assert isa.to_signed(isa.sign_extend(x, width)) == signed_field


def test_sign_extend_examples() -> None:
    assert isa.sign_extend(0x1F, 5) == 0xFFFF
    assert isa.sign_extend(0x0F, 5) == 0x000F
    assert isa.sign_extend(0x100, 9) == 0xFF00
    assert isa.sign_extend(0x400, 11) == 0xFC00


def test_condition_for() -> None:
    assert isa.condition_for(0) is Condition.ZRO
    assert isa.condition_for(1) is Condition.POS
    assert isa.condition_for(0x7FFF) is Condition.POS
    assert isa.condition_for(0x8000) is Condition.NEG
    assert isa.condition_for(0x10000) is Condition.ZRO


def test_condition_values_line_up_with_nzp_mask() -> None:
    # BRn, BRz, BRp
    assert isa.nzp(0x0800) == Condition.NEG
    assert isa.nzp(0x0400) == Condition.ZRO
    assert isa.nzp(0x0200) == Condition.POS


def test_fields() -> None:
    instr = 0x1042  # ADD R0, R1, R2
    assert isa.dr(instr) == 0
    assert isa.sr1(instr) == 1
    assert isa.sr2(instr) == 2
    assert not isa.imm_flag(instr)
    assert isa.imm5(0x127F) == 0xFFFF
    assert isa.offset6(0x7281) == 1
    assert isa.pc_offset9(0x03FC) == 0xFFFC
    assert isa.pc_offset11(0x4802) == 2
    assert isa.long_flag(0x4802)
    assert isa.trap_vector(0xF025) == 0x25
