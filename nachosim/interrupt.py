"""Simulated interrupt hardware and the simulated clock."""

from __future__ import annotations

import heapq
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from nachosim.stats import SYSTEM_TICK, USER_TICK, Statistics

logger = logging.getLogger(__name__)


class IntStatus(Enum):
    """Whether interrupts are disabled or enabled."""

    OFF = 0
    ON = 1

    @property
    def label(self) -> str:
        return "off" if self is IntStatus.OFF else "on"


class MachineStatus(Enum):
    """What the simulated CPU is doing."""

    IDLE = 0
    SYSTEM = 1
    USER = 2


class IntType(Enum):
    """Which hardware device generated an interrupt."""

    TIMER = 0
    DISK = 1
    CONSOLE_WRITE = 2
    CONSOLE_READ = 3
    NETWORK_SEND = 4
    NETWORK_RECV = 5

    @property
    def label(self) -> str:
        return self.name.lower().replace("_", " ")


class MachineHalted(Exception):
    """Raised when the simulated machine shuts down."""


@dataclass
class PendingInterrupt:
    """An interrupt scheduled to occur at simulated time ``when``."""

    handler: Callable[[], None]
    when: int
    kind: IntType


@dataclass(order=True)
class _Entry:
    when: int
    seq: int
    pending: PendingInterrupt = field(compare=False)


class Interrupt:
    """Simulation of interrupt hardware; also keeps simulated time."""

    def __init__(
        self,
        stats: Statistics,
        yield_callback: Optional[Callable[[], None]] = None,
    ) -> None:
        self.stats = stats
        self.yield_callback = yield_callback
        # Called just before any interrupt handler runs (e.g. to finish a
        # delayed load in the CPU simulation).
        self.on_handler_entry: Optional[Callable[[], None]] = None
        self._level = IntStatus.OFF
        self._pending: list[_Entry] = []
        self._seq = itertools.count()
        self._in_handler = False
        self._yield_on_return = False
        self.status = MachineStatus.SYSTEM

    @property
    def level(self) -> IntStatus:
        """Whether interrupts are currently enabled."""
        return self._level

    @property
    def in_handler(self) -> bool:
        return self._in_handler

    @property
    def pending_interrupts(self) -> list[PendingInterrupt]:
        """Scheduled interrupts, earliest first."""
        return [entry.pending for entry in sorted(self._pending)]

    def _change_level(self, old: IntStatus, now: IntStatus) -> None:
        self._level = now
        logger.debug("\tinterrupts: %s -> %s", old.label, now.label)

    def set_level(self, now: IntStatus) -> IntStatus:
        """Enable or disable interrupts, returning the previous level.

        Enabling interrupts advances simulated time by one tick.
        """
        old = self._level
        if now is IntStatus.ON and self._in_handler:
            raise RuntimeError("interrupt handlers may not enable interrupts")
        self._change_level(old, now)
        if now is IntStatus.ON and old is IntStatus.OFF:
            self.one_tick()
        return old

    def enable(self) -> None:
        """Turn interrupts on."""
        self.set_level(IntStatus.ON)

    def one_tick(self) -> None:
        """Advance simulated time and fire any interrupts now due."""
        old = self.status
        if self.status is MachineStatus.SYSTEM:
            self.stats.total_ticks += SYSTEM_TICK
            self.stats.system_ticks += SYSTEM_TICK
        else:
            self.stats.total_ticks += USER_TICK
            self.stats.user_ticks += USER_TICK
        logger.debug("== Tick %d ==", self.stats.total_ticks)

        self._change_level(IntStatus.ON, IntStatus.OFF)
        while self._check_if_due(False):
            pass
        self._change_level(IntStatus.OFF, IntStatus.ON)
        if self._yield_on_return:
            self._yield_on_return = False
            self.status = MachineStatus.SYSTEM
            if self.yield_callback is not None:
                self.yield_callback()
            self.status = old

    def yield_on_return(self) -> None:
        """Request a context switch once the current handler returns."""
        if not self._in_handler:
            raise RuntimeError("yield_on_return called outside an interrupt handler")
        self._yield_on_return = True

    def idle(self) -> None:
        """Advance time to the next pending interrupt; halt if there is none."""
        logger.debug("Machine idling; checking for interrupts.")
        self.status = MachineStatus.IDLE
        if self._check_if_due(True):
            while self._check_if_due(False):
                pass
            self._yield_on_return = False
            self.status = MachineStatus.SYSTEM
            return

        logger.debug("Machine idle.  No interrupts to do.")
        print("No threads ready or runnable, and no pending interrupts.")
        print("Assuming the program completed.")
        self.halt()

    def halt(self) -> None:
        """Print statistics and stop the machine by raising MachineHalted."""
        print("Machine halting!\n")
        self.stats.print_report()
        raise MachineHalted()

    def schedule(self, handler: Callable[[], None], from_now: int, kind: IntType) -> None:
        """Arrange for ``handler`` to run ``from_now`` ticks in the future."""
        when = self.stats.total_ticks + from_now
        logger.debug("Scheduling interrupt handler the %s at time = %d", kind.label, when)
        if from_now <= 0:
            raise ValueError("interrupts must be scheduled in the future")
        self._insert(PendingInterrupt(handler, when, kind))

    def _insert(self, pending: PendingInterrupt) -> None:
        heapq.heappush(self._pending, _Entry(pending.when, next(self._seq), pending))

    def _check_if_due(self, advance_clock: bool) -> bool:
        old = self.status
        if self._level is not IntStatus.OFF:
            raise RuntimeError("interrupts must be disabled to run handlers")
        if logger.isEnabledFor(logging.DEBUG):
            self.dump_state()
        if not self._pending:
            return False
        to_occur = heapq.heappop(self._pending).pending
        when = to_occur.when

        if when > self.stats.total_ticks:
            if not advance_clock:
                self._insert(to_occur)
                return False
            self.stats.idle_ticks += when - self.stats.total_ticks
            self.stats.total_ticks = when

        if (
            self.status is MachineStatus.IDLE
            and to_occur.kind is IntType.TIMER
            and not self._pending
        ):
            self._insert(to_occur)
            return False

        logger.debug(
            "Invoking interrupt handler for the %s at time %d",
            to_occur.kind.label,
            to_occur.when,
        )
        if self.on_handler_entry is not None:
            self.on_handler_entry()
        self._in_handler = True
        self.status = MachineStatus.SYSTEM
        to_occur.handler()
        self.status = old
        self._in_handler = False
        return True

    def dump_state(self) -> None:
        """Print the interrupt level and every scheduled interrupt."""
        print(f"Time: {self.stats.total_ticks}, interrupts {self._level.label}")
        print("Pending interrupts:")
        for pending in self.pending_interrupts:
            print(f"Interrupt handler {pending.kind.label}, scheduled at {pending.when}")
        print("End of pending interrupts", flush=True)