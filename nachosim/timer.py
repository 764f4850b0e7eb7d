"""Simulated hardware timer that interrupts the CPU periodically."""

from __future__ import annotations

from typing import Callable

from nachosim.interrupt import Interrupt, IntType
from nachosim.stats import TIMER_TICKS
from nachosim.sysdep import random_int


class Timer:
    """A hardware timer that calls ``handler`` on every expiry.

    With ``randomize`` set, the interval between interrupts is a random
    number of ticks between 1 and twice the usual interval.
    """

    def __init__(
        self,
        interrupt: Interrupt,
        handler: Callable[[], None],
        randomize: bool = False,
    ) -> None:
        self.interrupt = interrupt
        self.handler = handler
        self.randomize = randomize
        self._schedule_next()

    def _schedule_next(self) -> None:
        self.interrupt.schedule(
            self.timer_expired, self.time_of_next_interrupt(), IntType.TIMER
        )

    def timer_expired(self) -> None:
        """Schedule the next timer interrupt, then invoke the handler."""
        self._schedule_next()
        self.handler()

    def time_of_next_interrupt(self) -> int:
        """Return how many ticks until the timer next fires."""
        if self.randomize:
            return 1 + random_int() % (TIMER_TICKS * 2)
        return TIMER_TICKS