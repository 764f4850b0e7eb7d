"""Simulated network interface delivering fixed-size packets over host datagram sockets.

Each simulated machine binds a socket named ``SOCKET_<address>`` in the
current directory.  Delivery is ordered but unreliable: packets may be
dropped according to the configured reliability.
"""

from __future__ import annotations

import dataclasses
import logging
import struct
from dataclasses import dataclass
from typing import Callable

from nachosim.interrupt import Interrupt, IntType, MachineStatus
from nachosim.stats import NETWORK_TIME, Statistics
from nachosim.sysdep import (
    assign_name_to_socket,
    deassign_name_to_socket,
    open_socket,
    poll_socket,
    random_int,
    read_from_socket,
    send_to_socket,
)

logger = logging.getLogger(__name__)

_HEADER = struct.Struct("<iiI")
HEADER_SIZE = _HEADER.size
MAX_WIRE_SIZE = 64  # largest packet that can go out on the wire
MAX_PACKET_SIZE = MAX_WIRE_SIZE - HEADER_SIZE  # largest data payload


def socket_name(address: int) -> str:
    """Return the socket file name used by the machine at ``address``."""
    return f"SOCKET_{address}"


@dataclass(frozen=True)
class PacketHeader:
    """Header prepended to each packet's data on the wire."""

    to: int
    from_: int
    length: int

    def pack(self) -> bytes:
        """Return the header in its wire format."""
        return _HEADER.pack(self.to, self.from_, self.length)

    @classmethod
    def unpack(cls, raw: bytes) -> "PacketHeader":
        """Parse a header from the start of ``raw``."""
        if len(raw) < HEADER_SIZE:
            raise ValueError(f"packet header needs {HEADER_SIZE} bytes, got {len(raw)}")
        to, from_, length = _HEADER.unpack_from(raw)
        return cls(to, from_, length)


class Network:
    """A network device for the simulated machine with the given address."""

    def __init__(
        self,
        address: int,
        reliability: float,
        interrupt: Interrupt,
        stats: Statistics,
        read_avail: Callable[[], None],
        write_done: Callable[[], None],
    ) -> None:
        self.address = address
        self.chance_to_work = min(max(reliability, 0.0), 1.0)
        self.interrupt = interrupt
        self.stats = stats
        self.read_avail = read_avail
        self.write_done = write_done
        self.in_header = PacketHeader(0, 0, 0)
        self._inbox = b""

        self.socket_name = socket_name(address)
        self._sock = open_socket()
        assign_name_to_socket(self._sock, self.socket_name)
        logger.debug("Created socket %s", self.socket_name)

        self._schedule_poll()

    def _schedule_poll(self) -> None:
        self.interrupt.schedule(
            self.check_packet_available, NETWORK_TIME, IntType.NETWORK_RECV
        )

    def check_packet_available(self) -> None:
        """Poll for an incoming packet and buffer it if there is room."""
        self._schedule_poll()

        if self.in_header.length != 0:
            return
        idle = self.interrupt.status is MachineStatus.IDLE
        if not poll_socket(self._sock, idle):
            return

        buffer = read_from_socket(self._sock, MAX_WIRE_SIZE)
        header = PacketHeader.unpack(buffer)
        if header.to != self.address or header.length > MAX_PACKET_SIZE:
            raise ValueError(
                f"malformed packet for {self.address}: to {header.to}, "
                f"length {header.length}"
            )
        self.in_header = header
        self._inbox = buffer[HEADER_SIZE : HEADER_SIZE + header.length]

        logger.debug(
            "Network received packet from %d, length %d", header.from_, header.length
        )
        self.stats.num_packets_recvd += 1
        self.read_avail()

    def send_done(self) -> None:
        """Count the finished send and notify that another may go out."""
        self.stats.num_packets_sent += 1
        self.write_done()

    def send(self, header: PacketHeader, data: bytes) -> None:
        """Send ``header.length`` bytes of ``data`` to ``header.to``.

        Returns at once; ``write_done`` is called later whether or not the
        packet was dropped.
        """
        if not 0 < header.length <= MAX_PACKET_SIZE:
            raise ValueError(
                f"packet length must be 1..{MAX_PACKET_SIZE}, got {header.length}"
            )
        if header.from_ != self.address:
            raise ValueError(
                f"packet from {header.from_} sent by machine {self.address}"
            )
        if len(data) < header.length:
            raise ValueError(
                f"header claims {header.length} bytes but only {len(data)} given"
            )
        logger.debug("Sending to addr %d, %d bytes", header.to, header.length)

        self.interrupt.schedule(self.send_done, NETWORK_TIME, IntType.NETWORK_SEND)

        if random_int() % 100 >= self.chance_to_work * 100:
            logger.debug("oops, lost it!")
            return

        payload = header.pack() + bytes(data[: header.length])
        send_to_socket(
            self._sock, payload.ljust(MAX_WIRE_SIZE, b"\0"), socket_name(header.to)
        )

    def receive(self) -> tuple[PacketHeader, bytes]:
        """Return the buffered packet, or a header of length 0 and no data."""
        header = self.in_header
        self.in_header = dataclasses.replace(header, length=0)
        data = self._inbox if header.length != 0 else b""
        self._inbox = b""
        return header, data

    def close(self) -> None:
        """Close the socket and remove its file name."""
        self._sock.close()
        deassign_name_to_socket(self.socket_name)