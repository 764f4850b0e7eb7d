"""Execution of decoded MIPS R2000/R3000 instructions on a simulated CPU.

The CPU is any object providing:

* ``registers`` -- a mutable sequence of ``NUM_TOTAL_REGS`` signed 32-bit values;
* ``read_mem(addr, size)`` -- return 1, 2 or 4 bytes of virtual memory as an
  integer, raising ``TranslationFault`` if the address cannot be translated;
* ``write_mem(addr, size, value)`` -- store 1, 2 or 4 bytes, raising
  ``TranslationFault`` likewise;
* ``raise_exception(which, bad_vaddr)`` -- trap into the kernel;
* ``delayed_load(next_reg, next_value)`` -- finish the pending delayed load
  and record a new one.

Byte ordering in simulated memory is little-endian.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, MutableSequence

from nachosim.instruction import Instruction, OpCode
from nachosim.translate import ExceptionType, TranslationFault

logger = logging.getLogger(__name__)

# Register numbers of the simulated CPU state.
STACK_REG = 29  # user's stack pointer
RET_ADDR_REG = 31  # return address for procedure calls
NUM_GP_REGS = 32  # general purpose registers
HI_REG = 32  # high word of a multiply/divide result
LO_REG = 33  # low word of a multiply/divide result
PC_REG = 34  # current program counter
NEXT_PC_REG = 35  # next program counter (branch delay slot)
PREV_PC_REG = 36  # previous program counter, for debugging
LOAD_REG = 37  # target register of a delayed load
LOAD_VALUE_REG = 38  # value to be loaded by a delayed load
BAD_VADDR_REG = 39  # failing virtual address on an exception
NUM_TOTAL_REGS = 40

_MASK32 = 0xFFFFFFFF
_MASK64 = 0xFFFFFFFFFFFFFFFF


class SimulationError(RuntimeError):
    """Raised when the simulated CPU reaches a state it cannot handle."""


class _Trap(Exception):
    def __init__(self, which: ExceptionType, bad_vaddr: int = 0) -> None:
        super().__init__(which.label)
        self.which = which
        self.bad_vaddr = bad_vaddr


def _s32(value: int) -> int:
    return ((value + 0x80000000) & _MASK32) - 0x80000000


def _u32(value: int) -> int:
    return value & _MASK32


def mult(a: int, b: int, signed: bool) -> tuple[int, int]:
    """Multiply two 32-bit values, returning the (hi, lo) words of the 64-bit product.

    Both words are returned as signed 32-bit values.
    """
    if _u32(a) == 0 or _u32(b) == 0:
        return 0, 0
    if signed:
        product = (_s32(a) * _s32(b)) & _MASK64
    else:
        product = _u32(a) * _u32(b)
    return _s32(product >> 32), _s32(product & _MASK32)


@dataclass
class _Step:
    regs: MutableSequence[int]
    pc_after: int
    load_reg: int = 0
    load_value: int = 0


_Handler = Callable[[object, Instruction, _Step], None]


def _checked(value: int) -> int:
    if value != _s32(value):
        raise _Trap(ExceptionType.OVERFLOW, 0)
    return value


def _branch(step: _Step, ins: Instruction) -> None:
    step.pc_after = _s32(step.regs[NEXT_PC_REG] + (ins.extra << 2))


def _link(step: _Step, reg: int) -> None:
    step.regs[reg] = _s32(step.regs[NEXT_PC_REG] + 4)


def _effective(step: _Step, ins: Instruction) -> int:
    return _s32(step.regs[ins.rs] + ins.extra)


def _require_aligned(addr: int) -> None:
    if addr & 0x3:
        raise SimulationError(f"unaligned partial-word access at 0x{_u32(addr):x}")


def _pending_value(step: _Step, reg: int) -> int:
    if step.regs[LOAD_REG] == reg:
        return step.regs[LOAD_VALUE_REG]
    return step.regs[reg]


def _add(cpu, ins, st):
    st.regs[ins.rd] = _checked(st.regs[ins.rs] + st.regs[ins.rt])


def _addi(cpu, ins, st):
    st.regs[ins.rt] = _checked(st.regs[ins.rs] + ins.extra)


def _addiu(cpu, ins, st):
    st.regs[ins.rt] = _s32(st.regs[ins.rs] + ins.extra)


def _addu(cpu, ins, st):
    st.regs[ins.rd] = _s32(st.regs[ins.rs] + st.regs[ins.rt])


def _and(cpu, ins, st):
    st.regs[ins.rd] = _s32(st.regs[ins.rs] & st.regs[ins.rt])


def _andi(cpu, ins, st):
    st.regs[ins.rt] = _s32(st.regs[ins.rs] & (ins.extra & 0xFFFF))


def _beq(cpu, ins, st):
    if st.regs[ins.rs] == st.regs[ins.rt]:
        _branch(st, ins)


def _bne(cpu, ins, st):
    if st.regs[ins.rs] != st.regs[ins.rt]:
        _branch(st, ins)


def _bgez(cpu, ins, st):
    if st.regs[ins.rs] >= 0:
        _branch(st, ins)


def _bgezal(cpu, ins, st):
    _link(st, RET_ADDR_REG)
    _bgez(cpu, ins, st)


def _bgtz(cpu, ins, st):
    if st.regs[ins.rs] > 0:
        _branch(st, ins)


def _blez(cpu, ins, st):
    if st.regs[ins.rs] <= 0:
        _branch(st, ins)


def _bltz(cpu, ins, st):
    if st.regs[ins.rs] < 0:
        _branch(st, ins)


def _bltzal(cpu, ins, st):
    _link(st, RET_ADDR_REG)
    _bltz(cpu, ins, st)


def _div(cpu, ins, st):
    a, b = st.regs[ins.rs], st.regs[ins.rt]
    if b == 0:
        st.regs[LO_REG] = st.regs[HI_REG] = 0
        return
    quotient = abs(a) // abs(b)
    if (a < 0) != (b < 0):
        quotient = -quotient
    st.regs[LO_REG] = _s32(quotient)
    st.regs[HI_REG] = _s32(a - quotient * b)


def _divu(cpu, ins, st):
    a, b = _u32(st.regs[ins.rs]), _u32(st.regs[ins.rt])
    if b == 0:
        st.regs[LO_REG] = st.regs[HI_REG] = 0
        return
    quotient, remainder = divmod(a, b)
    st.regs[LO_REG] = _s32(quotient)
    st.regs[HI_REG] = _s32(remainder)


def _j(cpu, ins, st):
    st.pc_after = _s32((_u32(st.pc_after) & 0xF0000000) | _u32(ins.extra << 2))


def _jal(cpu, ins, st):
    _link(st, RET_ADDR_REG)
    _j(cpu, ins, st)


def _jr(cpu, ins, st):
    st.pc_after = st.regs[ins.rs]


def _jalr(cpu, ins, st):
    _link(st, ins.rd)
    _jr(cpu, ins, st)


def _load_byte(cpu, ins, st):
    value = cpu.read_mem(_effective(st, ins), 1) & 0xFF
    if value & 0x80 and ins.op_code is OpCode.LB:
        value -= 0x100
    st.load_reg, st.load_value = ins.rt, value


def _load_half(cpu, ins, st):
    addr = _effective(st, ins)
    if addr & 0x1:
        raise _Trap(ExceptionType.ADDRESS_ERROR, addr)
    value = cpu.read_mem(addr, 2) & 0xFFFF
    if value & 0x8000 and ins.op_code is OpCode.LH:
        value -= 0x10000
    st.load_reg, st.load_value = ins.rt, value


def _lui(cpu, ins, st):
    logger.debug("Executing: LUI r%d,%d", ins.rt, ins.extra)
    st.regs[ins.rt] = _s32(ins.extra << 16)


def _lw(cpu, ins, st):
    addr = _effective(st, ins)
    if addr & 0x3:
        raise _Trap(ExceptionType.ADDRESS_ERROR, addr)
    st.load_reg, st.load_value = ins.rt, _s32(cpu.read_mem(addr, 4))


def _lwl(cpu, ins, st):
    addr = _effective(st, ins)
    # Only word-aligned partial loads are supported.
    _require_aligned(addr)
    value = _s32(cpu.read_mem(addr, 4))
    _pending_value(st, ins.rt)
    st.load_reg, st.load_value = ins.rt, value


def _lwr(cpu, ins, st):
    addr = _effective(st, ins)
    _require_aligned(addr)
    value = _u32(cpu.read_mem(addr, 4))
    old = _pending_value(st, ins.rt)
    st.load_reg = ins.rt
    st.load_value = _s32((_u32(old) & 0xFFFFFF00) | ((value >> 24) & 0xFF))


def _mfhi(cpu, ins, st):
    st.regs[ins.rd] = st.regs[HI_REG]


def _mflo(cpu, ins, st):
    st.regs[ins.rd] = st.regs[LO_REG]


def _mthi(cpu, ins, st):
    st.regs[HI_REG] = st.regs[ins.rs]


def _mtlo(cpu, ins, st):
    st.regs[LO_REG] = st.regs[ins.rs]


def _mult(cpu, ins, st):
    st.regs[HI_REG], st.regs[LO_REG] = mult(st.regs[ins.rs], st.regs[ins.rt], True)


def _multu(cpu, ins, st):
    st.regs[HI_REG], st.regs[LO_REG] = mult(st.regs[ins.rs], st.regs[ins.rt], False)


def _nor(cpu, ins, st):
    st.regs[ins.rd] = _s32(~(st.regs[ins.rs] | st.regs[ins.rt]))


def _or(cpu, ins, st):
    # Both operands are taken from rs.
    st.regs[ins.rd] = _s32(st.regs[ins.rs] | st.regs[ins.rs])


def _ori(cpu, ins, st):
    st.regs[ins.rt] = _s32(st.regs[ins.rs] | (ins.extra & 0xFFFF))


def _sb(cpu, ins, st):
    cpu.write_mem(_effective(st, ins), 1, st.regs[ins.rt])


def _sh(cpu, ins, st):
    cpu.write_mem(_effective(st, ins), 2, st.regs[ins.rt])


def _sw(cpu, ins, st):
    cpu.write_mem(_effective(st, ins), 4, st.regs[ins.rt])


def _sll(cpu, ins, st):
    st.regs[ins.rd] = _s32(st.regs[ins.rt] << ins.extra)


def _sllv(cpu, ins, st):
    st.regs[ins.rd] = _s32(st.regs[ins.rt] << (st.regs[ins.rs] & 0x1F))


def _slt(cpu, ins, st):
    st.regs[ins.rd] = int(st.regs[ins.rs] < st.regs[ins.rt])


def _slti(cpu, ins, st):
    st.regs[ins.rt] = int(st.regs[ins.rs] < ins.extra)


def _sltiu(cpu, ins, st):
    st.regs[ins.rt] = int(_u32(st.regs[ins.rs]) < _u32(ins.extra))


def _sltu(cpu, ins, st):
    st.regs[ins.rd] = int(_u32(st.regs[ins.rs]) < _u32(st.regs[ins.rt]))


def _sra(cpu, ins, st):
    st.regs[ins.rd] = st.regs[ins.rt] >> ins.extra


def _srav(cpu, ins, st):
    st.regs[ins.rd] = st.regs[ins.rt] >> (st.regs[ins.rs] & 0x1F)


# The logical shifts operate on the signed register value.
_srl = _sra
_srlv = _srav


def _sub(cpu, ins, st):
    st.regs[ins.rd] = _checked(st.regs[ins.rs] - st.regs[ins.rt])


def _subu(cpu, ins, st):
    st.regs[ins.rd] = _s32(st.regs[ins.rs] - st.regs[ins.rt])


def _swl(cpu, ins, st):
    addr = _effective(st, ins)
    _require_aligned(addr)
    word = addr & ~0x3
    cpu.read_mem(word, 4)
    cpu.write_mem(word, 4, st.regs[ins.rt])


def _swr(cpu, ins, st):
    addr = _effective(st, ins)
    _require_aligned(addr)
    word = addr & ~0x3
    value = _u32(cpu.read_mem(word, 4))
    value = (value & 0xFFFFFF) | _u32(st.regs[ins.rt] << 24)
    cpu.write_mem(word, 4, _s32(value))


def _syscall(cpu, ins, st):
    raise _Trap(ExceptionType.SYSCALL, 0)


def _xor(cpu, ins, st):
    st.regs[ins.rd] = _s32(st.regs[ins.rs] ^ st.regs[ins.rt])


def _xori(cpu, ins, st):
    st.regs[ins.rt] = _s32(st.regs[ins.rs] ^ (ins.extra & 0xFFFF))


def _illegal(cpu, ins, st):
    raise _Trap(ExceptionType.ILLEGAL_INSTR, 0)


_HANDLERS: dict[OpCode, _Handler] = {
    OpCode.ADD: _add,
    OpCode.ADDI: _addi,
    OpCode.ADDIU: _addiu,
    OpCode.ADDU: _addu,
    OpCode.AND: _and,
    OpCode.ANDI: _andi,
    OpCode.BEQ: _beq,
    OpCode.BGEZ: _bgez,
    OpCode.BGEZAL: _bgezal,
    OpCode.BGTZ: _bgtz,
    OpCode.BLEZ: _blez,
    OpCode.BLTZ: _bltz,
    OpCode.BLTZAL: _bltzal,
    OpCode.BNE: _bne,
    OpCode.DIV: _div,
    OpCode.DIVU: _divu,
    OpCode.J: _j,
    OpCode.JAL: _jal,
    OpCode.JALR: _jalr,
    OpCode.JR: _jr,
    OpCode.LB: _load_byte,
    OpCode.LBU: _load_byte,
    OpCode.LH: _load_half,
    OpCode.LHU: _load_half,
    OpCode.LUI: _lui,
    OpCode.LW: _lw,
    OpCode.LWL: _lwl,
    OpCode.LWR: _lwr,
    OpCode.MFHI: _mfhi,
    OpCode.MFLO: _mflo,
    OpCode.MTHI: _mthi,
    OpCode.MTLO: _mtlo,
    OpCode.MULT: _mult,
    OpCode.MULTU: _multu,
    OpCode.NOR: _nor,
    OpCode.OR: _or,
    OpCode.ORI: _ori,
    OpCode.SB: _sb,
    OpCode.SH: _sh,
    OpCode.SLL: _sll,
    OpCode.SLLV: _sllv,
    OpCode.SLT: _slt,
    OpCode.SLTI: _slti,
    OpCode.SLTIU: _sltiu,
    OpCode.SLTU: _sltu,
    OpCode.SRA: _sra,
    OpCode.SRAV: _srav,
    OpCode.SRL: _srl,
    OpCode.SRLV: _srlv,
    OpCode.SUB: _sub,
    OpCode.SUBU: _subu,
    OpCode.SW: _sw,
    OpCode.SWL: _swl,
    OpCode.SWR: _swr,
    OpCode.SYSCALL: _syscall,
    OpCode.XOR: _xor,
    OpCode.XORI: _xori,
    OpCode.RES: _illegal,
    OpCode.UNIMP: _illegal,
}


def execute(cpu, instr: Instruction) -> bool:
    """Execute one decoded instruction on ``cpu``.

    On success the pending delayed load is applied, the program counters
    advance and True is returned.  If the instruction traps, the trap is
    passed to ``cpu.raise_exception`` and False is returned with the program
    counters unchanged, so the instruction can be restarted.
    """
    regs = cpu.registers
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("At PC = 0x%x: %s", _u32(regs[PC_REG]), instr.disassemble())

    handler = _HANDLERS.get(instr.op_code)
    if handler is None:
        raise SimulationError(f"cannot execute {instr.op_code.name}")

    step = _Step(regs, _s32(regs[NEXT_PC_REG] + 4))
    try:
        handler(cpu, instr, step)
    except _Trap as trap:
        cpu.raise_exception(trap.which, trap.bad_vaddr)
        return False
    except TranslationFault as fault:
        cpu.raise_exception(fault.exception_type, fault.virt_addr)
        return False

    cpu.delayed_load(step.load_reg, step.load_value)

    regs[PREV_PC_REG] = regs[PC_REG]
    regs[PC_REG] = regs[NEXT_PC_REG]
    regs[NEXT_PC_REG] = step.pc_after
    return True