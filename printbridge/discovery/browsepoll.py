"""
BrowsePoll: periodic polling of remote spoolers.

Each configured peer is asked for its shared queues every browse
interval. With a change subscription the full list is only fetched when
the peer reports a printer event; otherwise the last list is replayed so
the leases of the queues keep getting refreshed.
"""

import asyncio
import logging
from typing import Callable, Optional

from printbridge.registry import DiscoveryEvent, DiscoverySource
from printbridge.spooler.base import PRINTER_IMPLICIT, PRINTER_NOT_SHARED, PRINTER_REMOTE, SpoolerBase
from printbridge.spooler.errors import SpoolerRequestError, SpoolerUnavailable

from .browse_packet import BrowsePacketError
from .browse_socket import event_from_uri
from .subscription import PolledPrinter, PollContext, cancel_subscription, check_for_changes

logger = logging.getLogger(__name__)

# Queues a peer only relays, or does not share, are not ours to poll
EXCLUDED_TYPES = PRINTER_REMOTE | PRINTER_IMPLICIT | PRINTER_NOT_SHARED

BatchSink = Callable[[list[DiscoveryEvent]], None]


def _first(value):
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


class BrowsePoller:
    """
    Polls one peer spooler.

    Args:
        context: Peer address and subscription state
        spooler: Connection to the peer
        sink: Receives the announce events of one poll round as a batch
        interval: Seconds between polls
    """

    def __init__(self, context: PollContext, spooler: SpoolerBase, sink: BatchSink, interval: int = 60):
        self.context = context
        self.spooler = spooler
        self.sink = sink
        self.interval = interval

        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"[BrowsePoll {self.context.label}] Polling every {self.interval}s")

    async def stop(self) -> None:
        """Stop polling and cancel the subscription on the peer."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await cancel_subscription(self.context, self.spooler)
        await self.spooler.close()

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[BrowsePoll {self.context.label}] Poll failed: {e}")
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break

    async def poll_once(self) -> Optional[list[DiscoveryEvent]]:
        """
        Run one poll round and hand the resulting events to the sink.

        Returns:
            The events, or None if the peer could not be queried
        """
        ctx = self.context
        logger.debug(f"[BrowsePoll {ctx.label}] Polling")
        if ctx.major:
            logger.debug(f"[BrowsePoll {ctx.label}] IPP version {ctx.major}.{ctx.minor} requested")

        try:
            changed = await check_for_changes(ctx, self.spooler, self.interval)
            if changed:
                printers = await self.fetch_printers()
                if printers is None:
                    return None
                ctx.printers = printers
            else:
                logger.debug(f"[BrowsePoll {ctx.label}] Keep-alive for {len(ctx.printers)} printer(s)")
                printers = ctx.printers
        except SpoolerUnavailable as e:
            logger.warning(f"[BrowsePoll {ctx.label}] Failed to connect: {e}")
            return None

        events = []
        for printer in printers:
            try:
                events.append(event_from_uri(printer.uri, printer.info, DiscoverySource.POLL))
            except BrowsePacketError as e:
                logger.debug(f"[BrowsePoll {ctx.label}] Skipping {printer.uri}: {e}")
        self.sink(events)
        return events

    async def fetch_printers(self) -> Optional[list[PolledPrinter]]:
        """Shared local queues of the peer; None on a rejected request."""
        logger.debug(f"[BrowsePoll {self.context.label}] CUPS-Get-Printers")
        try:
            attributes = await self.spooler.get_printers()
        except SpoolerRequestError as e:
            logger.warning(f"[BrowsePoll {self.context.label}] Failed: {e}")
            return None

        printers = []
        for attrs in attributes:
            printer_type = attrs.get("printer-type", 0) or 0
            if printer_type & EXCLUDED_TYPES:
                continue
            uri = _first(attrs.get("printer-uri-supported"))
            if not uri:
                continue
            printers.append(PolledPrinter(uri=uri, info=_first(attrs.get("printer-info")) or ""))
        return printers
