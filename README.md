# nachosim

A simulated machine for teaching operating-system kernels. It models a
little-endian MIPS R2000/R3000 processor together with the hardware a small
kernel talks to.

## Modules

- `nachosim.machine` — `Machine`: 40 CPU registers, main memory
  (`bytearray`), fetch/decode/execute with `one_instruction()` and `run()`,
  delayed loads, memory access with `read_mem()` / `write_mem()`,
  `raise_exception()` to trap into a kernel-supplied exception handler, and a
  single-stepping `debugger()` that reads commands from standard input.
- `nachosim.instruction` — `Instruction.decode()` turns a 32-bit instruction
  word into opcode, registers and immediate; `disassemble()` renders it as
  text. `OpCode` enumerates the simulator's opcodes.
- `nachosim.mipssim` — `execute(cpu, instr)` runs one decoded instruction;
  `mult(a, b, signed)` returns the (hi, lo) words of a 64-bit product. Also
  holds the register-number constants (`PC_REG`, `NEXT_PC_REG`, `HI_REG`, …).
- `nachosim.translate` — `translate()` maps a virtual address to a physical one
  through either a linear page table or a software-loaded TLB of
  `TranslationEntry` objects, setting use and dirty bits. Failures raise
  `TranslationFault` carrying an `ExceptionType`.
- `nachosim.interrupt` — `Interrupt` keeps simulated time, the interrupt level
  (`IntStatus`), the machine status (`MachineStatus`) and the queue of pending
  device interrupts (`IntType`). `halt()` prints statistics and raises
  `MachineHalted`.
- `nachosim.timer` — `Timer`, a periodic timer device; with `randomize=True`
  intervals are random between 1 and 200 ticks.
- `nachosim.disk` — `Disk`, a single-surface disk of 1024 sectors of 128 bytes
  kept in an ordinary host file, with seek, rotation and track-buffer timing.
  An existing file without the disk's magic number raises `DiskError`.
- `nachosim.network` — `Network`, an unreliable network of fixed 64-byte
  packets over Unix datagram sockets named `SOCKET_<address>` in the current
  directory; `PacketHeader` packs and unpacks the wire header.
- `nachosim.sysdep` — host helpers for files, sockets, Ctrl-C handling, delays
  and a seedable random number generator.
- `nachosim.stats` — `Statistics`, tick and I/O counters, plus the timing
  constants used by the devices.

## Installation

```
pip install .
```

## Examples

Interrupts and the timer:

```python
from nachosim.stats import Statistics
from nachosim.interrupt import Interrupt, IntStatus
from nachosim.timer import Timer

stats = Statistics()
interrupt = Interrupt(stats, yield_callback=lambda: None)

ticks = []
timer = Timer(interrupt, lambda: ticks.append(stats.total_ticks), randomize=False)

interrupt.set_level(IntStatus.ON)   # enabling interrupts advances time
print(stats.report())
```

Running one instruction:

```python
from nachosim.instruction import Instruction
from nachosim.interrupt import Interrupt
from nachosim.machine import Machine
from nachosim.mipssim import NEXT_PC_REG
from nachosim.stats import Statistics
from nachosim.translate import TranslationEntry

stats = Statistics()
machine = Machine(Interrupt(stats), stats, exception_handler=print)
machine.page_table = [
    TranslationEntry(virtual_page=n, physical_page=n, valid=True) for n in range(4)
]

machine.write_mem(0, 4, 0x24020005)            # ADDIU r2,r0,5
machine.write_register(NEXT_PC_REG, 4)
print(Instruction.decode(0x24020005).disassemble())  # ADDIU r2,r0,5
machine.one_instruction()
print(machine.read_register(2))                # 5
```

Devices never block: a read or write request returns at once and the handler
given to the device is called later, when simulated time reaches the moment
the operation completes. Time only moves when interrupts are re-enabled, when a
user instruction runs, or when the machine idles.

When the machine idles with no pending interrupts, or `halt()` is called,
`Interrupt` raises `MachineHalted`.

## What this package does not do

It is the hardware only. There is no kernel: no threads or scheduler, no
system-call or exception handling beyond calling the handler you pass to
`Machine`, no program loader, no file system and no page-table management —
the caller fills in `Machine.page_table` or `Machine.tlb`. There is no console
device and no command-line program. `Network` needs Unix domain sockets, so it
works only on POSIX hosts.

## Running the tests

```
pip install ".[test]"
pytest
```