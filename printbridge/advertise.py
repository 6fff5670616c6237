"""
Re-advertisement of shared local queues over the legacy browse protocol.

Every browse interval the interface list is refreshed, the local spooler
is checked for changes and one packet per shared queue and interface is
broadcast, with the queue URI pointing at that interface's address.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional
from urllib.parse import urlsplit, urlunsplit

from printbridge.discovery.browse_packet import BrowsePacket, BrowsePacketError, format_browse_packet
from printbridge.discovery.browse_socket import BrowseSocket
from printbridge.mirror import LocalSpoolerMirror
from printbridge.netifs import InterfaceList
from printbridge.spooler.base import PRINTER_NOT_SHARED, SpoolerBase
from printbridge.spooler.errors import SpoolerError

logger = logging.getLogger(__name__)


def _first(value):
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _text(value) -> str:
    """Attribute text with quotes removed."""
    return str(_first(value) or "").replace('"', "")


@dataclass
class BrowseData:
    """What we announce about one shared local queue."""

    type: int
    state: int
    uri: str
    location: str = ""
    info: str = ""
    make_model: str = ""
    options: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_attributes(cls, attrs: dict) -> Optional["BrowseData"]:
        """Browse data for a queue, None if it is not shared or incomplete."""
        printer_type = attrs.get("printer-type")
        state = attrs.get("printer-state")
        uri = _first(attrs.get("printer-uri-supported"))
        if printer_type is None or state is None or not uri:
            return None
        if printer_type & PRINTER_NOT_SHARED:
            return None

        options: dict[str, str] = {}
        auth = _first(attrs.get("auth-info-required"))
        if auth and str(auth).lower() != "none":
            options["auth-info-required"] = str(auth)
        if attrs.get("printer-uuid"):
            options["uuid"] = str(_first(attrs["printer-uuid"]))

        for name, value in attrs.items():
            if not name.endswith("-default"):
                continue
            option = name[:-len("-default")]
            if name == "job-sheets-default" and isinstance(value, (list, tuple)) and len(value) == 2:
                options["job-sheets"] = f"{value[0]},{value[1]}"
            elif isinstance(value, str):
                options[option] = value
            else:
                logger.debug(f"Skipping {option} ({type(value).__name__})")

        return cls(
            type=int(printer_type),
            state=int(state),
            uri=str(uri),
            location=_text(attrs.get("printer-location")),
            info=_text(attrs.get("printer-info")),
            make_model=_text(attrs.get("printer-make-and-model")),
            options=options,
        )

    def packet_for(self, address: str) -> BrowsePacket:
        """Packet with the URI host replaced by ``address``."""
        parts = urlsplit(self.uri)
        netloc = f"{address}:{parts.port}" if parts.port else address
        uri = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
        return BrowsePacket(
            type=self.type,
            state=self.state,
            uri=uri,
            location=self.location,
            info=self.info,
            make_model=self.make_model,
            options=dict(self.options),
        )


class AdvertisementMirror:
    """
    Periodic browse packet sender.

    Args:
        spooler: The local spooler
        mirror: Local queue snapshot; its refreshes rebuild the browse data
        interfaces: Interface list, refreshed before every round
        browse_socket: Socket the packets leave through
        browse_timeout: Lease announced in every packet
        interval: Seconds between rounds
        on_interval: Called instead of sending directly, so the owner can run
            the round in its own task
    """

    def __init__(
        self,
        spooler: SpoolerBase,
        mirror: LocalSpoolerMirror,
        interfaces: InterfaceList,
        browse_socket: BrowseSocket,
        browse_timeout: int = 300,
        interval: int = 60,
        on_interval: Optional[Callable[[], None]] = None,
    ):
        self.spooler = spooler
        self.mirror = mirror
        self.interfaces = interfaces
        self.browse_socket = browse_socket
        self.browse_timeout = browse_timeout
        self.interval = interval
        self.on_interval = on_interval

        self.browse_data: list[BrowseData] = []
        self.packets_sent = 0
        self._task: Optional[asyncio.Task] = None
        self._running = False

        mirror.add_listener(self.prepare_browse_data)

    async def prepare_browse_data(self) -> None:
        """Rebuild the browse data from the local spooler's shared queues."""
        logger.debug("Preparing browse data")
        try:
            printers = await self.spooler.get_printers()
        except SpoolerError as e:
            logger.debug(f"Browse send failed for local spooler: {e}")
            return

        browse_data = []
        for attrs in printers:
            data = BrowseData.from_attributes(attrs)
            if data is not None:
                browse_data.append(data)
        self.browse_data = browse_data

    def broadcast(self) -> int:
        """Send the current browse data on every interface; returns the packet count."""
        sent = 0
        for data in self.browse_data:
            for iface in self.interfaces.interfaces:
                try:
                    packet = format_browse_packet(data.packet_for(iface.address), self.browse_timeout)
                except BrowsePacketError as e:
                    logger.debug(str(e))
                    continue
                logger.debug(f"Packet to send: {packet!r}")
                self.browse_socket.send(packet, iface.broadcast)
                sent += 1
        self.packets_sent += sent
        return sent

    async def send_once(self) -> int:
        self.interfaces.refresh()
        await self.mirror.update()
        return self.broadcast()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._send_loop())
        logger.info(f"Will send browse data every {self.interval}s")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _send_loop(self) -> None:
        while self._running:
            try:
                if self.on_interval is not None:
                    self.on_interval()
                else:
                    await self.send_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Sending browse data failed: {e}")
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
