"""Simulated physical disk, stored in a host file.

The disk has one surface split into tracks, each holding the same number
of fixed-size sectors.  Requests return at once; the completion handler is
invoked later through a scheduled disk interrupt.  Timing models seek,
rotational delay and a track buffer that speeds up reads on the current
track.
"""

from __future__ import annotations

import logging
import os
import struct
from typing import BinaryIO, Callable, Optional, Union

from nachosim.interrupt import Interrupt, IntType
from nachosim.stats import ROTATION_TIME, SEEK_TIME, Statistics
from nachosim.sysdep import open_for_read_write, open_for_write, read_exact, write_all

logger = logging.getLogger(__name__)

SECTOR_SIZE = 128  # bytes per disk sector
SECTORS_PER_TRACK = 32  # sectors per disk track
NUM_TRACKS = 32  # tracks per disk
NUM_SECTORS = SECTORS_PER_TRACK * NUM_TRACKS

# Stored at the front of the host file so an unrelated file is not
# mistaken for a disk image.
MAGIC_NUMBER = 0x456789AB
_MAGIC = struct.Struct("<I")
MAGIC_SIZE = _MAGIC.size
DISK_SIZE = MAGIC_SIZE + NUM_SECTORS * SECTOR_SIZE

_SECTOR_WORDS = struct.Struct(f"<{SECTOR_SIZE // 4}I")


class DiskError(Exception):
    """Raised for an invalid disk image or a request while the disk is busy."""


class Disk:
    """A simulated disk device backed by the host file at ``path``."""

    def __init__(
        self,
        path: Union[str, os.PathLike],
        interrupt: Interrupt,
        stats: Statistics,
        on_done: Callable[[], None],
    ) -> None:
        self.interrupt = interrupt
        self.stats = stats
        self.on_done = on_done
        self.active = False
        self._last_sector = 0
        self._buffer_init = 0
        logger.debug("Initializing the disk %s", path)

        stream: Optional[BinaryIO] = open_for_read_write(path, False)
        if stream is not None:
            try:
                raw = read_exact(stream, MAGIC_SIZE)
            except EOFError as exc:
                stream.close()
                raise DiskError(f"{path} is too short to be a disk image") from exc
            (magic,) = _MAGIC.unpack(raw)
            if magic != MAGIC_NUMBER:
                stream.close()
                raise DiskError(f"{path} is not a disk image (bad magic number)")
        else:
            stream = open_for_write(path)
            write_all(stream, _MAGIC.pack(MAGIC_NUMBER))
            # Write at the very end so that reads anywhere never hit EOF.
            stream.seek(DISK_SIZE - 4)
            write_all(stream, bytes(4))
            stream.flush()
        self._stream: BinaryIO = stream

    @property
    def closed(self) -> bool:
        return self._stream.closed

    def _check_request(self, sector_number: int) -> None:
        if self.active:
            raise DiskError("only one disk request may be outstanding at a time")
        if not 0 <= sector_number < NUM_SECTORS:
            raise ValueError(f"sector {sector_number} out of range 0..{NUM_SECTORS - 1}")

    def _log_sector(self, writing: bool, sector: int, data: bytes) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        action = "Writing" if writing else "Reading"
        words = " ".join(f"{word:x}" for word in _SECTOR_WORDS.unpack(data))
        logger.debug("%s sector: %d\n%s", action, sector, words)

    def read_request(self, sector_number: int) -> bytes:
        """Read one sector; completion is signalled later by an interrupt."""
        self._check_request(sector_number)
        ticks = self.compute_latency(sector_number, False)

        logger.debug("Reading from sector %d", sector_number)
        self._stream.seek(SECTOR_SIZE * sector_number + MAGIC_SIZE)
        data = read_exact(self._stream, SECTOR_SIZE)
        self._log_sector(False, sector_number, data)

        self.active = True
        self._update_last(sector_number)
        self.stats.num_disk_reads += 1
        self.interrupt.schedule(self.handle_interrupt, ticks, IntType.DISK)
        return data

    def write_request(self, sector_number: int, data: bytes) -> None:
        """Write one whole sector; completion is signalled later by an interrupt."""
        self._check_request(sector_number)
        if len(data) != SECTOR_SIZE:
            raise ValueError(f"a sector write needs exactly {SECTOR_SIZE} bytes, got {len(data)}")
        ticks = self.compute_latency(sector_number, True)

        logger.debug("Writing to sector %d", sector_number)
        self._stream.seek(SECTOR_SIZE * sector_number + MAGIC_SIZE)
        write_all(self._stream, bytes(data))
        self._stream.flush()
        self._log_sector(True, sector_number, bytes(data))

        self.active = True
        self._update_last(sector_number)
        self.stats.num_disk_writes += 1
        self.interrupt.schedule(self.handle_interrupt, ticks, IntType.DISK)

    def handle_interrupt(self) -> None:
        """Mark the request finished and notify the kernel."""
        self.active = False
        self.on_done()

    def _time_to_seek(self, new_sector: int) -> tuple[int, int]:
        """Return (seek time, wait until the next sector boundary)."""
        new_track = new_sector // SECTORS_PER_TRACK
        old_track = self._last_sector // SECTORS_PER_TRACK
        seek = abs(new_track - old_track) * SEEK_TIME
        over = (self.stats.total_ticks + seek) % ROTATION_TIME
        rotation = ROTATION_TIME - over if over > 0 else 0
        return seek, rotation

    @staticmethod
    def _modulo_diff(to: int, start: int) -> int:
        """Sectors of rotational delay from position ``start`` to ``to``."""
        to_offset = to % SECTORS_PER_TRACK
        from_offset = start % SECTORS_PER_TRACK
        return (to_offset - from_offset + SECTORS_PER_TRACK) % SECTORS_PER_TRACK

    def compute_latency(self, new_sector: int, writing: bool) -> int:
        """Return ticks needed for a request: seek + rotational delay + transfer."""
        seek, rotation = self._time_to_seek(new_sector)
        time_after = self.stats.total_ticks + seek + rotation

        if (
            not writing
            and seek == 0
            and (time_after - self._buffer_init) // ROTATION_TIME
            > self._modulo_diff(new_sector, self._buffer_init // ROTATION_TIME)
        ):
            logger.debug("Request latency = %d", ROTATION_TIME)
            return ROTATION_TIME

        rotation += self._modulo_diff(new_sector, time_after // ROTATION_TIME) * ROTATION_TIME
        latency = seek + rotation + ROTATION_TIME
        logger.debug("Request latency = %d", latency)
        return latency

    def _update_last(self, new_sector: int) -> None:
        seek, rotation = self._time_to_seek(new_sector)
        if seek != 0:
            self._buffer_init = self.stats.total_ticks + seek + rotation
        self._last_sector = new_sector
        logger.debug("Updating last sector = %d, %d", self._last_sector, self._buffer_init)

    def close(self) -> None:
        """Close the host file backing the disk."""
        self._stream.close()

    def __enter__(self) -> "Disk":
        return self

    def __exit__(self, *args) -> None:
        self.close()