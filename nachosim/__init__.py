"""A simulated MIPS machine with address translation, interrupts, timer, disk and network devices."""

__version__ = "0.1.0"

__all__ = [
    "stats",
    "interrupt",
    "sysdep",
    "timer",
    "disk",
    "network",
    "translate",
    "instruction",
    "mipssim",
    "machine",
]