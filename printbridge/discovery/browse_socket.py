"""
UDP endpoint for the legacy CUPS browse protocol.

Inbound packets pass the access filter and the codec, then reach the
resolver as announce events. Packets with the delete bit are ignored;
leases take care of vanished queues.
"""

import asyncio
import logging
import socket
from typing import Callable, Optional

from printbridge.access import AccessFilter
from printbridge.naming import split_printer_uri
from printbridge.registry import DiscoveryEvent, DiscoverySource, EventKind

from .browse_packet import BrowsePacketError, parse_browse_packet

logger = logging.getLogger(__name__)

EventSink = Callable[[DiscoveryEvent], None]


def event_from_uri(uri: str, info: str, source: DiscoverySource) -> DiscoveryEvent:
    """
    Announce event for a queue URI seen in a packet or a poll answer.

    Raises:
        BrowsePacketError: if the URI is unparsable or has no host
    """
    try:
        host, port, resource = split_printer_uri(uri)
    except ValueError as e:
        raise BrowsePacketError(f"bad printer URI: {e}") from e
    return DiscoveryEvent(
        kind=EventKind.ANNOUNCE,
        source=source,
        host=host,
        port=port,
        resource=resource,
        service_name=info or "",
    )


class BrowseProtocol(asyncio.DatagramProtocol):
    """Receives browse packets."""

    def __init__(self, sink: Optional[EventSink], access_filter: AccessFilter):
        self.sink = sink
        self.access_filter = access_filter
        self.received = 0

    def datagram_received(self, data: bytes, addr) -> None:
        if self.sink is None:
            return

        source = addr[0]
        if not self.access_filter.allows(source):
            logger.debug(f"Browse packet from {source} disallowed")
            return
        logger.debug(f"Browse packet received from {source}")

        try:
            packet = parse_browse_packet(data)
        except BrowsePacketError as e:
            logger.debug(f"Dropping packet from {source}: {e}")
            return

        self.received += 1
        if packet.is_delete:
            logger.debug(f"Ignoring delete packet for {packet.uri}")
            return

        try:
            event = event_from_uri(packet.uri, packet.info, DiscoverySource.BROWSE)
        except BrowsePacketError as e:
            logger.debug(f"Dropping packet from {source}: {e}")
            return
        self.sink(event)

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Browse socket error: {exc}")


class BrowseSocket:
    """
    The browse socket, bound to the browse port when receiving.

    Args:
        port: Browse port (631)
        sink: Receives announce events; None for a send-only socket
        access_filter: Source address filter for inbound packets
    """

    def __init__(self, port: int, sink: Optional[EventSink] = None, access_filter: Optional[AccessFilter] = None):
        self.port = port
        self.protocol = BrowseProtocol(sink, access_filter or AccessFilter())
        self._transport: Optional[asyncio.DatagramTransport] = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None

    async def open(self) -> None:
        """
        Open the socket.

        Raises:
            OSError: if no socket could be created at all
        """
        loop = asyncio.get_running_loop()
        bind_port = self.port if self.protocol.sink is not None else 0
        try:
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: self.protocol,
                local_addr=("0.0.0.0", bind_port),
                family=socket.AF_INET,
                allow_broadcast=True,
            )
        except OSError as e:
            if bind_port == 0:
                raise
            logger.error(f"Failed to bind browse socket to port {self.port}, not receiving browse packets: {e}")
            self.protocol.sink = None
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: self.protocol,
                local_addr=("0.0.0.0", 0),
                family=socket.AF_INET,
                allow_broadcast=True,
            )
        logger.info(f"Browse socket open (receiving: {self.protocol.sink is not None})")

    def send(self, packet: bytes, broadcast: str) -> None:
        if self._transport is None:
            return
        try:
            self._transport.sendto(packet, (broadcast, self.port))
        except OSError as e:
            logger.warning(f"Sending browse packet to {broadcast} failed: {e}")

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
