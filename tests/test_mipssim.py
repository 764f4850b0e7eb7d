import pytest

from nachosim.instruction import Instruction, OpCode
from nachosim.mipssim import (
    HI_REG,
    LO_REG,
    LOAD_REG,
    LOAD_VALUE_REG,
    NEXT_PC_REG,
    NUM_TOTAL_REGS,
    PC_REG,
    PREV_PC_REG,
    RET_ADDR_REG,
    SimulationError,
    execute,
    mult,
)
from nachosim.translate import ExceptionType, TranslationFault

START_PC = 0x40


class FakeCPU:
    def __init__(self):
        self.registers = [0] * NUM_TOTAL_REGS
        self.registers[PC_REG] = START_PC
        self.registers[NEXT_PC_REG] = START_PC + 4
        self.memory = bytearray(256)
        self.traps = []

    def read_mem(self, addr, size):
        if addr < 0 or addr + size > len(self.memory):
            raise TranslationFault(ExceptionType.PAGE_FAULT, addr)
        return int.from_bytes(self.memory[addr : addr + size], "little")

    def write_mem(self, addr, size, value):
        if addr < 0 or addr + size > len(self.memory):
            raise TranslationFault(ExceptionType.PAGE_FAULT, addr)
        mask = (1 << (8 * size)) - 1
        self.memory[addr : addr + size] = (value & mask).to_bytes(size, "little")

    def raise_exception(self, which, bad_vaddr):
        self.traps.append((which, bad_vaddr))

    def delayed_load(self, next_reg, next_value):
        regs = self.registers
        regs[regs[LOAD_REG]] = regs[LOAD_VALUE_REG]
        regs[LOAD_REG] = next_reg
        regs[LOAD_VALUE_REG] = next_value
        regs[0] = 0


def r_type(funct, rs=0, rt=0, rd=0, shamt=0):
    return Instruction.decode((rs << 21) | (rt << 16) | (rd << 11) | (shamt << 6) | funct)


def i_type(op, rs, rt, imm):
    return Instruction.decode((op << 26) | (rs << 21) | (rt << 16) | (imm & 0xFFFF))


def j_type(op, target):
    return Instruction.decode((op << 26) | target)


@pytest.mark.parametrize(
    "a,b,signed",
    [(3, 5, True), (-1, 1, True), (-7, -9, True), (0x7FFFFFFF, 0x7FFFFFFF, True),
     (-(2**31), -(2**31), True), (-1, -1, False), (0x12345, 0x6789A, False)],
)
def test_mult_recombines_to_full_product(a, b, signed):
    hi, lo = mult(a, b, signed)
    combined = ((hi & 0xFFFFFFFF) << 32) | (lo & 0xFFFFFFFF)
    if signed:
        expected = (a * b) & 0xFFFFFFFFFFFFFFFF
    else:
        expected = (a & 0xFFFFFFFF) * (b & 0xFFFFFFFF)
    assert combined == expected
    assert -(2**31) <= hi < 2**31 and -(2**31) <= lo < 2**31


def test_mult_by_zero():
    assert mult(0, -5, True) == (0, 0)
    assert mult(12345, 0, False) == (0, 0)


def test_mult_negative_one_signed():
    assert mult(-1, 1, True) == (-1, -1)


def test_addu_advances_program_counters():
    cpu = FakeCPU()
    cpu.registers[2], cpu.registers[3] = 20, 22
    assert execute(cpu, r_type(33, rs=2, rt=3, rd=4)) is True
    assert cpu.registers[4] == 20 + 22
    assert cpu.registers[PREV_PC_REG] == START_PC
    assert cpu.registers[PC_REG] == START_PC + 4
    assert cpu.registers[NEXT_PC_REG] == START_PC + 8


def test_addu_wraps():
    cpu = FakeCPU()
    cpu.registers[2], cpu.registers[3] = 0x7FFFFFFF, 1
    execute(cpu, r_type(33, rs=2, rt=3, rd=4))
    assert cpu.registers[4] == -(2**31)


def test_add_overflow_traps_without_advancing():
    cpu = FakeCPU()
    cpu.registers[2], cpu.registers[3] = 0x7FFFFFFF, 1
    assert execute(cpu, r_type(32, rs=2, rt=3, rd=4)) is False
    assert cpu.traps == [(ExceptionType.OVERFLOW, 0)]
    assert cpu.registers[4] == 0
    assert cpu.registers[PC_REG] == START_PC


def test_addi_overflow_traps():
    cpu = FakeCPU()
    cpu.registers[2] = -(2**31)
    assert execute(cpu, i_type(8, 2, 5, -1)) is False
    assert cpu.traps == [(ExceptionType.OVERFLOW, 0)]


def test_sub_overflow_traps():
    cpu = FakeCPU()
    cpu.registers[2], cpu.registers[3] = -(2**31), 1
    assert execute(cpu, r_type(34, rs=2, rt=3, rd=4)) is False
    assert cpu.traps[0][0] is ExceptionType.OVERFLOW


def test_beq_taken_sets_next_pc():
    cpu = FakeCPU()
    cpu.registers[2] = cpu.registers[3] = 7
    execute(cpu, i_type(4, 2, 3, 3))
    assert cpu.registers[PC_REG] == START_PC + 4
    assert cpu.registers[NEXT_PC_REG] == START_PC + 4 + (3 << 2)


def test_beq_not_taken_falls_through():
    cpu = FakeCPU()
    cpu.registers[2], cpu.registers[3] = 1, 2
    execute(cpu, i_type(4, 2, 3, 3))
    assert cpu.registers[NEXT_PC_REG] == START_PC + 8


def test_jal_links_and_jumps():
    cpu = FakeCPU()
    execute(cpu, j_type(3, 0x100))
    assert cpu.registers[RET_ADDR_REG] == START_PC + 8
    assert cpu.registers[NEXT_PC_REG] == 0x100 << 2


def test_jr_jumps_to_register():
    cpu = FakeCPU()
    cpu.registers[9] = 0x200
    execute(cpu, r_type(8, rs=9))
    assert cpu.registers[NEXT_PC_REG] == 0x200


def test_lui_shifts_immediate():
    cpu = FakeCPU()
    execute(cpu, i_type(15, 0, 6, 0x1234))
    assert cpu.registers[6] == 0x1234 << 16


def test_lw_is_delayed():
    cpu = FakeCPU()
    cpu.memory[16:20] = (0x0A0B0C0D).to_bytes(4, "little")
    cpu.registers[2] = 8
    execute(cpu, i_type(35, 2, 7, 8))
    assert cpu.registers[7] == 0
    assert cpu.registers[LOAD_REG] == 7
    assert cpu.registers[LOAD_VALUE_REG] == 0x0A0B0C0D
    cpu.delayed_load(0, 0)
    assert cpu.registers[7] == 0x0A0B0C0D


def test_lw_unaligned_raises_address_error():
    cpu = FakeCPU()
    cpu.registers[2] = 17
    assert execute(cpu, i_type(35, 2, 7, 0)) is False
    assert cpu.traps == [(ExceptionType.ADDRESS_ERROR, 17)]


def test_lh_unaligned_raises_address_error():
    cpu = FakeCPU()
    cpu.registers[2] = 5
    assert execute(cpu, i_type(33, 2, 7, 0)) is False
    assert cpu.traps == [(ExceptionType.ADDRESS_ERROR, 5)]


def test_load_fault_is_reported():
    cpu = FakeCPU()
    cpu.registers[2] = 4096
    assert execute(cpu, i_type(35, 2, 7, 0)) is False
    assert cpu.traps == [(ExceptionType.PAGE_FAULT, 4096)]
    assert cpu.registers[PC_REG] == START_PC


@pytest.mark.parametrize("op,expected", [(32, -128), (36, 128)])
def test_byte_loads_sign_and_zero_extend(op, expected):
    cpu = FakeCPU()
    cpu.memory[3] = 0x80
    execute(cpu, i_type(op, 0, 4, 3))
    assert cpu.registers[LOAD_VALUE_REG] == expected


def test_sw_then_lw_round_trip():
    cpu = FakeCPU()
    cpu.registers[3] = -123456
    execute(cpu, i_type(43, 0, 3, 32))
    assert cpu.memory[32:36] == (-123456 & 0xFFFFFFFF).to_bytes(4, "little")
    execute(cpu, i_type(35, 0, 8, 32))
    assert cpu.registers[LOAD_VALUE_REG] == -123456


def test_div_by_zero_clears_hi_lo():
    cpu = FakeCPU()
    cpu.registers[HI_REG] = cpu.registers[LO_REG] = 9
    cpu.registers[2] = 10
    execute(cpu, r_type(26, rs=2, rt=3))
    assert (cpu.registers[HI_REG], cpu.registers[LO_REG]) == (0, 0)


def test_div_truncates_toward_zero():
    cpu = FakeCPU()
    cpu.registers[2], cpu.registers[3] = -7, 2
    execute(cpu, r_type(26, rs=2, rt=3))
    assert cpu.registers[LO_REG] == -3
    assert cpu.registers[HI_REG] == -1


@pytest.mark.parametrize("a,b", [(100, 7), (-100, 7), (100, -7), (-100, -7)])
def test_div_quotient_remainder_invariant(a, b):
    cpu = FakeCPU()
    cpu.registers[2], cpu.registers[3] = a, b
    execute(cpu, r_type(26, rs=2, rt=3))
    lo, hi = cpu.registers[LO_REG], cpu.registers[HI_REG]
    assert lo * b + hi == a
    assert abs(hi) < abs(b)
    assert hi == 0 or (hi < 0) == (a < 0)


def test_mult_then_mfhi_mflo():
    cpu = FakeCPU()
    cpu.registers[2], cpu.registers[3] = -300000, 70000
    execute(cpu, r_type(24, rs=2, rt=3))
    execute(cpu, r_type(16, rd=10))
    execute(cpu, r_type(18, rd=11))
    assert (cpu.registers[10], cpu.registers[11]) == mult(-300000, 70000, True)


def test_slt_and_sltu_differ_on_negative():
    cpu = FakeCPU()
    cpu.registers[2], cpu.registers[3] = -1, 1
    execute(cpu, r_type(42, rs=2, rt=3, rd=4))
    execute(cpu, r_type(43, rs=2, rt=3, rd=5))
    assert cpu.registers[4] == 1
    assert cpu.registers[5] == 0


def test_syscall_traps():
    cpu = FakeCPU()
    assert execute(cpu, r_type(12)) is False
    assert cpu.traps == [(ExceptionType.SYSCALL, 0)]
    assert cpu.registers[PC_REG] == START_PC


def test_reserved_opcode_is_illegal():
    cpu = FakeCPU()
    assert execute(cpu, j_type(20, 0)) is False
    assert cpu.traps == [(ExceptionType.ILLEGAL_INSTR, 0)]


def test_unexecutable_opcode_raises():
    cpu = FakeCPU()
    with pytest.raises(SimulationError):
        execute(cpu, Instruction(0, OpCode.RFE, 0, 0, 0, 0))


def test_unaligned_lwl_raises():
    cpu = FakeCPU()
    cpu.registers[2] = 1
    with pytest.raises(SimulationError):
        execute(cpu, i_type(34, 2, 4, 0))