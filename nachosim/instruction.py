"""Decoding and disassembly of MIPS R2000/R3000 instructions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum


class OpCode(IntEnum):
    """Simulator opcodes; not the raw opcode field of the instruction."""

    ADD = 1
    ADDI = 2
    ADDIU = 3
    ADDU = 4
    AND = 5
    ANDI = 6
    BEQ = 7
    BGEZ = 8
    BGEZAL = 9
    BGTZ = 10
    BLEZ = 11
    BLTZ = 12
    BLTZAL = 13
    BNE = 14
    DIV = 16
    DIVU = 17
    J = 18
    JAL = 19
    JALR = 20
    JR = 21
    LB = 22
    LBU = 23
    LH = 24
    LHU = 25
    LUI = 26
    LW = 27
    LWL = 28
    LWR = 29
    MFHI = 31
    MFLO = 32
    MTHI = 34
    MTLO = 35
    MULT = 36
    MULTU = 37
    NOR = 38
    OR = 39
    ORI = 40
    RFE = 41
    SB = 42
    SH = 43
    SLL = 44
    SLLV = 45
    SLT = 46
    SLTI = 47
    SLTIU = 48
    SLTU = 49
    SRA = 50
    SRAV = 51
    SRL = 52
    SRLV = 53
    SUB = 54
    SUBU = 55
    SW = 56
    SWL = 57
    SWR = 58
    XOR = 59
    XORI = 60
    SYSCALL = 61
    UNIMP = 62  # legal, but not implemented by the simulator
    RES = 63  # reserved by the architecture


class _Format(Enum):
    I = 1
    J = 2
    R = 3


_SPECIAL = "special"
_BCOND = "bcond"

_O = OpCode
_I, _J, _R = _Format.I, _Format.J, _Format.R

# Indexed by bits 31:26 of the instruction.
_OP_TABLE = (
    (_SPECIAL, _R), (_BCOND, _I), (_O.J, _J), (_O.JAL, _J),
    (_O.BEQ, _I), (_O.BNE, _I), (_O.BLEZ, _I), (_O.BGTZ, _I),
    (_O.ADDI, _I), (_O.ADDIU, _I), (_O.SLTI, _I), (_O.SLTIU, _I),
    (_O.ANDI, _I), (_O.ORI, _I), (_O.XORI, _I), (_O.LUI, _I),
    (_O.UNIMP, _I), (_O.UNIMP, _I), (_O.UNIMP, _I), (_O.UNIMP, _I),
    (_O.RES, _I), (_O.RES, _I), (_O.RES, _I), (_O.RES, _I),
    (_O.RES, _I), (_O.RES, _I), (_O.RES, _I), (_O.RES, _I),
    (_O.RES, _I), (_O.RES, _I), (_O.RES, _I), (_O.RES, _I),
    (_O.LB, _I), (_O.LH, _I), (_O.LWL, _I), (_O.LW, _I),
    (_O.LBU, _I), (_O.LHU, _I), (_O.LWR, _I), (_O.RES, _I),
    (_O.SB, _I), (_O.SH, _I), (_O.SWL, _I), (_O.SW, _I),
    (_O.RES, _I), (_O.RES, _I), (_O.SWR, _I), (_O.RES, _I),
    (_O.UNIMP, _I), (_O.UNIMP, _I), (_O.UNIMP, _I), (_O.UNIMP, _I),
    (_O.RES, _I), (_O.RES, _I), (_O.RES, _I), (_O.RES, _I),
    (_O.UNIMP, _I), (_O.UNIMP, _I), (_O.UNIMP, _I), (_O.UNIMP, _I),
    (_O.RES, _I), (_O.RES, _I), (_O.RES, _I), (_O.RES, _I),
)

# Indexed by the "funct" field (bits 5:0) of SPECIAL instructions.
_SPECIAL_TABLE = (
    _O.SLL, _O.RES, _O.SRL, _O.SRA, _O.SLLV, _O.RES, _O.SRLV, _O.SRAV,
    _O.JR, _O.JALR, _O.RES, _O.RES, _O.SYSCALL, _O.UNIMP, _O.RES, _O.RES,
    _O.MFHI, _O.MTHI, _O.MFLO, _O.MTLO, _O.RES, _O.RES, _O.RES, _O.RES,
    _O.MULT, _O.MULTU, _O.DIV, _O.DIVU, _O.RES, _O.RES, _O.RES, _O.RES,
    _O.ADD, _O.ADDU, _O.SUB, _O.SUBU, _O.AND, _O.OR, _O.XOR, _O.NOR,
    _O.RES, _O.RES, _O.SLT, _O.SLTU, _O.RES, _O.RES, _O.RES, _O.RES,
    _O.RES, _O.RES, _O.RES, _O.RES, _O.RES, _O.RES, _O.RES, _O.RES,
    _O.RES, _O.RES, _O.RES, _O.RES, _O.RES, _O.RES, _O.RES, _O.RES,
)

# Bits 20:16 of a BCOND instruction select the branch.
_BCOND_TABLE = {
    0x000000: _O.BLTZ,
    0x010000: _O.BGEZ,
    0x100000: _O.BLTZAL,
    0x110000: _O.BGEZAL,
}


class _Field(Enum):
    RS = "rs"
    RT = "rt"
    RD = "rd"
    EXTRA = "extra"


_RS, _RT, _RD, _X = _Field.RS, _Field.RT, _Field.RD, _Field.EXTRA

_OP_STRINGS: dict[OpCode, tuple[str, tuple[_Field, ...]]] = {
    _O.ADD: ("ADD r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.ADDI: ("ADDI r%d,r%d,%d", (_RT, _RS, _X)),
    _O.ADDIU: ("ADDIU r%d,r%d,%d", (_RT, _RS, _X)),
    _O.ADDU: ("ADDU r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.AND: ("AND r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.ANDI: ("ANDI r%d,r%d,%d", (_RT, _RS, _X)),
    _O.BEQ: ("BEQ r%d,r%d,%d", (_RS, _RT, _X)),
    _O.BGEZ: ("BGEZ r%d,%d", (_RS, _X)),
    _O.BGEZAL: ("BGEZAL r%d,%d", (_RS, _X)),
    _O.BGTZ: ("BGTZ r%d,%d", (_RS, _X)),
    _O.BLEZ: ("BLEZ r%d,%d", (_RS, _X)),
    _O.BLTZ: ("BLTZ r%d,%d", (_RS, _X)),
    _O.BLTZAL: ("BLTZAL r%d,%d", (_RS, _X)),
    _O.BNE: ("BNE r%d,r%d,%d", (_RS, _RT, _X)),
    _O.DIV: ("DIV r%d,r%d", (_RS, _RT)),
    _O.DIVU: ("DIVU r%d,r%d", (_RS, _RT)),
    _O.J: ("J %d", (_X,)),
    _O.JAL: ("JAL %d", (_X,)),
    _O.JALR: ("JALR r%d,r%d", (_RD, _RS)),
    _O.JR: ("JR r%d,r%d", (_RD, _RS)),
    _O.LB: ("LB r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.LBU: ("LBU r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.LH: ("LH r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.LHU: ("LHU r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.LUI: ("LUI r%d,%d", (_RT, _X)),
    _O.LW: ("LW r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.LWL: ("LWL r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.LWR: ("LWR r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.MFHI: ("MFHI r%d", (_RD,)),
    _O.MFLO: ("MFLO r%d", (_RD,)),
    _O.MTHI: ("MTHI r%d", (_RS,)),
    _O.MTLO: ("MTLO r%d", (_RS,)),
    _O.MULT: ("MULT r%d,r%d", (_RS, _RT)),
    _O.MULTU: ("MULTU r%d,r%d", (_RS, _RT)),
    _O.NOR: ("NOR r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.OR: ("OR r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.ORI: ("ORI r%d,r%d,%d", (_RT, _RS, _X)),
    _O.RFE: ("RFE", ()),
    _O.SB: ("SB r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.SH: ("SH r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.SLL: ("SLL r%d,r%d,%d", (_RD, _RT, _X)),
    _O.SLLV: ("SLLV r%d,r%d,r%d", (_RD, _RT, _RS)),
    _O.SLT: ("SLT r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.SLTI: ("SLTI r%d,r%d,%d", (_RT, _RS, _X)),
    _O.SLTIU: ("SLTIU r%d,r%d,%d", (_RT, _RS, _X)),
    _O.SLTU: ("SLTU r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.SRA: ("SRA r%d,r%d,%d", (_RD, _RT, _X)),
    _O.SRAV: ("SRAV r%d,r%d,r%d", (_RD, _RT, _RS)),
    _O.SRL: ("SRL r%d,r%d,%d", (_RD, _RT, _X)),
    _O.SRLV: ("SRLV r%d,r%d,r%d", (_RD, _RT, _RS)),
    _O.SUB: ("SUB r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.SUBU: ("SUBU r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.SW: ("SW r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.SWL: ("SWL r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.SWR: ("SWR r%d,%d(r%d)", (_RT, _X, _RS)),
    _O.XOR: ("XOR r%d,r%d,r%d", (_RD, _RS, _RT)),
    _O.XORI: ("XORI r%d,r%d,%d", (_RT, _RS, _X)),
    _O.SYSCALL: ("SYSCALL", ()),
    _O.UNIMP: ("Unimplemented", ()),
    _O.RES: ("Reserved", ()),
}


@dataclass(frozen=True)
class Instruction:
    """A decoded instruction: operation, registers and immediate operand.

    ``extra`` holds the immediate (sign-extended), jump target, shift
    amount or offset, depending on the instruction format.
    """

    value: int
    op_code: OpCode
    rs: int
    rt: int
    rd: int
    extra: int

    @classmethod
    def decode(cls, value: int) -> "Instruction":
        """Decode the 32-bit binary instruction ``value``."""
        value &= 0xFFFFFFFF
        rs = (value >> 21) & 0x1F
        rt = (value >> 16) & 0x1F
        rd = (value >> 11) & 0x1F
        op, fmt = _OP_TABLE[(value >> 26) & 0x3F]

        if fmt is _Format.I:
            extra = value & 0xFFFF
            if extra & 0x8000:
                extra -= 0x10000
        elif fmt is _Format.R:
            extra = (value >> 6) & 0x1F
        else:
            extra = value & 0x3FFFFFF

        if op == _SPECIAL:
            op_code = _SPECIAL_TABLE[value & 0x3F]
        elif op == _BCOND:
            op_code = _BCOND_TABLE.get(value & 0x1F0000, OpCode.UNIMP)
        else:
            op_code = op
        return cls(value, op_code, rs, rt, rd, extra)

    def _field(self, field: _Field) -> int:
        return getattr(self, field.value)

    def disassemble(self) -> str:
        """Return the instruction in assembler-like text form."""
        template, fields = _OP_STRINGS[self.op_code]
        return template % tuple(self._field(field) for field in fields)

    def __str__(self) -> str:
        return self.disassemble()