"""Virtual-to-physical address translation for the simulated CPU.

Two schemes are supported.  With a linear page table the virtual page
number indexes the table directly.  With a software-loaded TLB the entries
are searched for one with a matching virtual page number, and a miss traps
to the kernel.  Exactly one of the two must be in use.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Sequence

from nachosim.disk import SECTOR_SIZE

logger = logging.getLogger(__name__)

PAGE_SIZE = SECTOR_SIZE  # page size equals the disk sector size
NUM_PHYS_PAGES = 254
MEMORY_SIZE = NUM_PHYS_PAGES * PAGE_SIZE
TLB_SIZE = 4  # if there is a TLB, keep it small

_WORD_MASK = 0xFFFFFFFF
_SHORT_MASK = 0xFFFF
_HOST_IS_BIG_ENDIAN = sys.byteorder == "big"

_EXCEPTION_LABELS = (
    "no exception",
    "syscall",
    "page fault/no TLB entry",
    "page read only",
    "bus error",
    "address error",
    "overflow",
    "illegal instruction",
)


class ExceptionType(IntEnum):
    """Causes of a trap from user mode into the kernel."""

    NO_EXCEPTION = 0
    SYSCALL = 1
    PAGE_FAULT = 2
    READ_ONLY = 3
    BUS_ERROR = 4
    ADDRESS_ERROR = 5
    OVERFLOW = 6
    ILLEGAL_INSTR = 7

    @property
    def label(self) -> str:
        return _EXCEPTION_LABELS[self.value]


@dataclass
class TranslationEntry:
    """One mapping from a virtual page to a physical page."""

    virtual_page: int = 0
    physical_page: int = 0
    valid: bool = False
    read_only: bool = False
    use: bool = False
    dirty: bool = False


class TranslationFault(Exception):
    """Raised when an address cannot be translated."""

    def __init__(self, exception_type: ExceptionType, virt_addr: int) -> None:
        super().__init__(f"{exception_type.label} at virtual address 0x{virt_addr & _WORD_MASK:x}")
        self.exception_type = exception_type
        self.virt_addr = virt_addr


def word_to_host(word: int) -> int:
    """Convert a 32-bit word from the simulated machine's little-endian order to host order."""
    word &= _WORD_MASK
    if _HOST_IS_BIG_ENDIAN:
        return int.from_bytes(word.to_bytes(4, "little"), "big")
    return word


def short_to_host(shortword: int) -> int:
    """Convert a 16-bit value from the simulated machine's order to host order."""
    shortword &= _SHORT_MASK
    if _HOST_IS_BIG_ENDIAN:
        return int.from_bytes(shortword.to_bytes(2, "little"), "big")
    return shortword


def word_to_machine(word: int) -> int:
    """Convert a 32-bit word from host order to the simulated machine's order."""
    return word_to_host(word)


def short_to_machine(shortword: int) -> int:
    """Convert a 16-bit value from host order to the simulated machine's order."""
    return short_to_host(shortword)


def _lookup(
    vpn: int,
    virt_addr: int,
    page_table: Optional[Sequence[TranslationEntry]],
    tlb: Optional[Sequence[TranslationEntry]],
) -> TranslationEntry:
    if tlb is None:
        assert page_table is not None
        if vpn >= len(page_table):
            logger.debug(
                "virtual page # %d too large for page table size %d!", vpn, len(page_table)
            )
            raise TranslationFault(ExceptionType.ADDRESS_ERROR, virt_addr)
        entry = page_table[vpn]
        if not entry.valid:
            logger.debug("virtual page # %d not valid", vpn)
            raise TranslationFault(ExceptionType.PAGE_FAULT, virt_addr)
        return entry

    found = next(
        (entry for entry in tlb if entry.valid and entry.virtual_page == vpn), None
    )
    if found is None:
        logger.debug("*** no valid TLB entry found for this virtual page!")
        raise TranslationFault(ExceptionType.PAGE_FAULT, virt_addr)
    return found


def translate(
    virt_addr: int,
    size: int,
    writing: bool,
    page_table: Optional[Sequence[TranslationEntry]] = None,
    tlb: Optional[Sequence[TranslationEntry]] = None,
) -> int:
    """Translate ``virt_addr`` to a physical address in main memory.

    Checks alignment, validity and write permission, sets the use and dirty
    bits of the entry used, and raises TranslationFault on any failure.
    """
    logger.debug("\tTranslate 0x%x, %s", virt_addr & _WORD_MASK, "write" if writing else "read")

    if (size == 4 and virt_addr & 0x3) or (size == 2 and virt_addr & 0x1):
        logger.debug("alignment problem at %d, size %d!", virt_addr, size)
        raise TranslationFault(ExceptionType.ADDRESS_ERROR, virt_addr)

    if (tlb is None) == (page_table is None):
        raise ValueError("exactly one of a TLB or a page table must be given")

    unsigned_addr = virt_addr & _WORD_MASK
    vpn, offset = divmod(unsigned_addr, PAGE_SIZE)

    entry = _lookup(vpn, virt_addr, page_table, tlb)

    if entry.read_only and writing:
        logger.debug("%d mapped read-only", virt_addr)
        raise TranslationFault(ExceptionType.READ_ONLY, virt_addr)

    page_frame = entry.physical_page
    if not 0 <= page_frame < NUM_PHYS_PAGES:
        logger.debug("*** frame %d > %d!", page_frame, NUM_PHYS_PAGES)
        raise TranslationFault(ExceptionType.BUS_ERROR, virt_addr)

    entry.use = True
    if writing:
        entry.dirty = True
    phys_addr = page_frame * PAGE_SIZE + offset
    if not (0 <= phys_addr and phys_addr + size <= MEMORY_SIZE):
        raise RuntimeError(f"physical address 0x{phys_addr:x} outside main memory")
    logger.debug("phys addr = 0x%x", phys_addr)
    return phys_addr