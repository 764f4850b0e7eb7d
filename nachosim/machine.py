"""The simulated host hardware as seen by user programs: CPU registers and main memory.

User programs are loaded into ``main_memory`` and executed one instruction
at a time.  Every memory reference is translated through either a linear
page table or a software-loaded TLB, and any fault traps into the kernel
through the exception handler.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Callable, Optional

from nachosim.instruction import Instruction
from nachosim.interrupt import Interrupt, MachineStatus
from nachosim.mipssim import (
    BAD_VADDR_REG,
    HI_REG,
    LO_REG,
    LOAD_REG,
    LOAD_VALUE_REG,
    NEXT_PC_REG,
    NUM_GP_REGS,
    NUM_TOTAL_REGS,
    PC_REG,
    PREV_PC_REG,
    RET_ADDR_REG,
    STACK_REG,
    execute,
)
from nachosim.stats import Statistics
from nachosim.translate import (
    MEMORY_SIZE,
    TLB_SIZE,
    ExceptionType,
    TranslationEntry,
    TranslationFault,
)
from nachosim.translate import translate as _translate

logger = logging.getLogger(__name__)

_MASK32 = 0xFFFFFFFF
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

_HELP = (
    "Machine commands:\n"
    "    <return>  execute one instruction\n"
    "    <number>  run until the given timer tick\n"
    "    c         run until completion\n"
    "    ?         print help message"
)


def _s32(value: int) -> int:
    return ((value + 0x80000000) & _MASK32) - 0x80000000


class Machine:
    """CPU registers, main memory and address translation for user programs."""

    def __init__(
        self,
        interrupt: Interrupt,
        stats: Statistics,
        exception_handler: Callable[[ExceptionType], None],
        debug: bool = False,
        use_tlb: bool = False,
    ) -> None:
        self.interrupt = interrupt
        self.stats = stats
        self.exception_handler = exception_handler
        self.registers: list[int] = [0] * NUM_TOTAL_REGS
        self.main_memory = bytearray(MEMORY_SIZE)
        self.tlb: Optional[list[TranslationEntry]] = (
            [TranslationEntry() for _ in range(TLB_SIZE)] if use_tlb else None
        )
        self.page_table: Optional[list[TranslationEntry]] = None
        self.single_step = debug
        self.run_until_time = 0
        # Any delayed load must be finished before an interrupt handler runs.
        interrupt.on_handler_entry = lambda: self.delayed_load(0, 0)

    def run(self) -> None:
        """Execute the user program; returns only by an exception such as MachineHalted."""
        logger.debug("Starting user program at time %d", self.stats.total_ticks)
        self.interrupt.status = MachineStatus.USER
        while True:
            self.one_instruction()
            self.interrupt.one_tick()
            if self.single_step and self.run_until_time <= self.stats.total_ticks:
                self.debugger()

    def one_instruction(self) -> bool:
        """Fetch, decode and execute one instruction.

        Returns False if the instruction trapped into the kernel.
        """
        try:
            raw = self.read_mem(self.registers[PC_REG], 4)
        except TranslationFault as fault:
            self.raise_exception(fault.exception_type, fault.virt_addr)
            return False
        return execute(self, Instruction.decode(raw))

    def delayed_load(self, next_reg: int, next_value: int) -> None:
        """Complete the pending delayed load and record the next one."""
        regs = self.registers
        regs[regs[LOAD_REG]] = regs[LOAD_VALUE_REG]
        regs[LOAD_REG] = next_reg
        regs[LOAD_VALUE_REG] = next_value
        regs[0] = 0  # register 0 always reads as zero

    @staticmethod
    def _check_register(num: int) -> None:
        if not 0 <= num < NUM_TOTAL_REGS:
            raise IndexError(f"register {num} out of range 0..{NUM_TOTAL_REGS - 1}")

    def read_register(self, num: int) -> int:
        """Return the contents of CPU register ``num``."""
        self._check_register(num)
        return self.registers[num]

    def write_register(self, num: int, value: int) -> None:
        """Store ``value``, truncated to 32 signed bits, into register ``num``."""
        self._check_register(num)
        self.registers[num] = _s32(value)

    def read_mem(self, addr: int, size: int) -> int:
        """Read 1, 2 or 4 bytes of virtual memory at ``addr``.

        Bytes and words are returned sign-extended, half-words unsigned.
        Raises TranslationFault if the address cannot be translated.
        """
        if size not in (1, 2, 4):
            raise ValueError(f"memory access size must be 1, 2 or 4, got {size}")
        logger.debug("Reading VA 0x%x, size %d", addr & _MASK32, size)
        phys = self.translate(addr, size, False)
        raw = bytes(self.main_memory[phys : phys + size])
        value = int.from_bytes(raw, "little", signed=(size != 2))
        logger.debug("\tvalue read = %08x", value & _MASK32)
        return value

    def write_mem(self, addr: int, size: int, value: int) -> None:
        """Write the low 1, 2 or 4 bytes of ``value`` to virtual memory at ``addr``.

        Raises TranslationFault if the address cannot be translated.
        """
        if size not in (1, 2, 4):
            raise ValueError(f"memory access size must be 1, 2 or 4, got {size}")
        logger.debug(
            "Writing VA 0x%x, size %d, value 0x%x", addr & _MASK32, size, value & _MASK32
        )
        phys = self.translate(addr, size, True)
        masked = value & ((1 << (8 * size)) - 1)
        self.main_memory[phys : phys + size] = masked.to_bytes(size, "little")

    def translate(self, virt_addr: int, size: int, writing: bool) -> int:
        """Translate ``virt_addr`` using this machine's page table or TLB."""
        return _translate(virt_addr, size, writing, self.page_table, self.tlb)

    def raise_exception(self, which: ExceptionType, bad_vaddr: int) -> None:
        """Trap into the kernel because of a system call or fault."""
        logger.debug("Exception: %s", which.label)
        self.registers[BAD_VADDR_REG] = bad_vaddr
        self.delayed_load(0, 0)
        self.interrupt.status = MachineStatus.SYSTEM
        self.exception_handler(which)
        self.interrupt.status = MachineStatus.USER

    def debugger(self) -> None:
        """Show the machine state and read one debugger command from standard input."""
        self.interrupt.dump_state()
        self.dump_state()
        print(f"{self.stats.total_ticks}> ", end="", flush=True)
        line = sys.stdin.readline()
        match = _LEADING_INT.match(line)
        if match:
            self.run_until_time = int(match.group(1))
            return
        self.run_until_time = 0
        command = line[:1]
        if command == "c":
            self.single_step = False
        elif command == "?":
            print(_HELP)

    def dump_state(self) -> None:
        """Print the user program's CPU registers."""
        regs = self.registers
        parts = ["Machine registers:\n"]
        for num in range(NUM_GP_REGS):
            if num == STACK_REG:
                name = f"SP({num})"
            elif num == RET_ADDR_REG:
                name = f"RA({num})"
            else:
                name = str(num)
            end = "\n" if num % 4 == 3 else ""
            parts.append(f"\t{name}:\t0x{regs[num] & _MASK32:x}{end}")
        parts.append(f"\tHi:\t0x{regs[HI_REG] & _MASK32:x}")
        parts.append(f"\tLo:\t0x{regs[LO_REG] & _MASK32:x}\n")
        parts.append(f"\tPC:\t0x{regs[PC_REG] & _MASK32:x}")
        parts.append(f"\tNextPC:\t0x{regs[NEXT_PC_REG] & _MASK32:x}")
        parts.append(f"\tPrevPC:\t0x{regs[PREV_PC_REG] & _MASK32:x}\n")
        parts.append(f"\tLoad:\t0x{regs[LOAD_REG] & _MASK32:x}")
        parts.append(f"\tLoadV:\t0x{regs[LOAD_VALUE_REG] & _MASK32:x}\n")
        print("".join(parts))