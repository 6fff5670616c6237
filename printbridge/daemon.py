"""
The browsing daemon: one event loop owning all printer state.

Transports (DNS-SD browser, browse socket, BrowsePoll peers) push
DiscoveryEvents into a queue. A single consumer task drains it, so the
resolver, the reconciliation pass and the advertisement round never run
concurrently and the registry needs no locking. Timers post ticks into
the same queue instead of acting on their own.
"""

import asyncio
import contextlib
import logging
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Union

from printbridge.advertise import AdvertisementMirror
from printbridge.config import AUTOSHUTDOWN_AVAHI, AUTOSHUTDOWN_ON, BrowsedConfig
from printbridge.discovery.browse_socket import BrowseSocket
from printbridge.discovery.browsepoll import BrowsePoller
from printbridge.discovery.dnssd import DNSSDBrowser
from printbridge.mirror import LocalSpoolerMirror
from printbridge.netifs import InterfaceList
from printbridge.provisioner import QueueProvisioner
from printbridge.registry import DiscoveryEvent, PrinterRegistry
from printbridge.resolver import Resolver
from printbridge.scheduler import AutoShutdown, ReconciliationScheduler
from printbridge.spooler.base import SpoolerBase

logger = logging.getLogger(__name__)

try:
    import uvicorn
    UVICORN_AVAILABLE = True
except ImportError:
    UVICORN_AVAILABLE = False


class Tick(Enum):
    RECONCILE = "reconcile"
    ADVERTISE = "advertise"
    DNSSD_LOST = "dnssd_lost"


QueueItem = Union[DiscoveryEvent, list, Tick]

SpoolerFactory = Callable[[str, int], SpoolerBase]


@dataclass
class BrowsedState:
    """Everything the daemon owns, shared by reference with its components."""

    config: BrowsedConfig
    spooler: SpoolerBase
    registry: PrinterRegistry
    mirror: LocalSpoolerMirror
    interfaces: InterfaceList
    resolver: Resolver
    provisioner: QueueProvisioner
    scheduler: ReconciliationScheduler
    autoshutdown: AutoShutdown
    pollers: list[BrowsePoller] = field(default_factory=list)
    start_time: datetime = field(default_factory=datetime.now)

    @property
    def uptime_seconds(self) -> int:
        return int((datetime.now() - self.start_time).total_seconds())


if UVICORN_AVAILABLE:
    class _EmbeddedServer(uvicorn.Server):
        """uvicorn server that leaves signal handling to the daemon."""

        def install_signal_handlers(self) -> None:
            pass

        @contextlib.contextmanager
        def capture_signals(self):
            yield


class BrowsedDaemon:
    """
    Wires the components together and runs them.

    Args:
        config: Typed configuration
        spooler: The local spooler
        poll_spooler_factory: Opens a connection to a BrowsePoll peer
        clock: Returns the current time in seconds
    """

    def __init__(
        self,
        config: BrowsedConfig,
        spooler: SpoolerBase,
        poll_spooler_factory: Optional[SpoolerFactory] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.events: asyncio.Queue = asyncio.Queue()
        self._stopped = asyncio.Event()
        self._consumer: Optional[asyncio.Task] = None
        self._api_server = None
        self._api_task: Optional[asyncio.Task] = None

        browse = config.browse
        registry = PrinterRegistry()
        mirror = LocalSpoolerMirror(spooler, interval=browse.interval)
        interfaces = InterfaceList()
        autoshutdown = AutoShutdown(
            registry,
            timeout=config.autoshutdown_timeout,
            on_expire=self.stop,
            enabled=config.autoshutdown == AUTOSHUTDOWN_ON,
        )
        provisioner = QueueProvisioner(spooler)
        resolver = Resolver(
            registry,
            mirror,
            timeouts=config.timeouts,
            browse_timeout=browse.timeout,
            create_ipp_printer_queues=config.create_ipp_printer_queues,
            local_addresses=interfaces.local_addresses,
            clock=clock,
        )
        scheduler = ReconciliationScheduler(
            registry,
            spooler,
            provisioner,
            timeouts=config.timeouts,
            browse_timeout=browse.timeout,
            clock=clock,
            on_wakeup=lambda: self.post(Tick.RECONCILE),
            autoshutdown=autoshutdown,
        )
        self.state = BrowsedState(
            config=config,
            spooler=spooler,
            registry=registry,
            mirror=mirror,
            interfaces=interfaces,
            resolver=resolver,
            provisioner=provisioner,
            scheduler=scheduler,
            autoshutdown=autoshutdown,
        )

        self.browse_socket: Optional[BrowseSocket] = None
        if config.browse_remote_cups or config.browse_local_cups:
            self.browse_socket = BrowseSocket(
                browse.port,
                sink=self.post if config.browse_remote_cups else None,
                access_filter=config.access_filter(),
            )

        self.advertiser: Optional[AdvertisementMirror] = None
        if config.browse_local_cups and self.browse_socket is not None:
            self.advertiser = AdvertisementMirror(
                spooler,
                mirror,
                interfaces,
                self.browse_socket,
                browse_timeout=browse.timeout,
                interval=browse.interval,
                on_interval=lambda: self.post(Tick.ADVERTISE),
            )

        if poll_spooler_factory is None:
            from printbridge.spooler.cups_adapter import CUPSSpooler
            poll_spooler_factory = CUPSSpooler
        for context in config.poll_contexts():
            self.state.pollers.append(BrowsePoller(
                context,
                poll_spooler_factory(context.server, context.port),
                self.post,
                interval=browse.interval,
            ))

        self.dnssd: Optional[DNSSDBrowser] = None
        if config.browse_remote_dnssd:
            self.dnssd = DNSSDBrowser(
                self.post,
                local_addresses=interfaces.local_addresses,
                on_available=self._dnssd_available,
                on_lost=self._dnssd_lost,
            )

    def post(self, item: QueueItem) -> None:
        """Hand an event, a poll batch or a tick to the consumer."""
        self.events.put_nowait(item)

    def stop(self) -> None:
        """Request shutdown; ``run`` returns after the shutdown sequence."""
        logger.info("Shutdown requested")
        self._stopped.set()

    async def process(self, item: QueueItem) -> None:
        """Apply one queue item, then re-arm the reconciliation timer."""
        state = self.state
        if isinstance(item, DiscoveryEvent):
            await state.resolver.handle(item)
        elif isinstance(item, list):
            # One poll round: check the local spooler once for the whole batch
            await state.mirror.update()
            with state.mirror.inhibit():
                for event in item:
                    await state.resolver.handle(event)
        elif item is Tick.RECONCILE:
            await state.scheduler.run_pass()
        elif item is Tick.ADVERTISE and self.advertiser is not None:
            await self.advertiser.send_once()
        elif item is Tick.DNSSD_LOST:
            state.resolver.discovery_service_lost()
        state.scheduler.recheck()

    async def _consume(self) -> None:
        while True:
            item = await self.events.get()
            try:
                await self.process(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Failed to process {item!r}: {e}")
            finally:
                self.events.task_done()

    async def start(self) -> None:
        """Recover the previous session, run a first pass and start all transports."""
        state = self.state
        config = self.config
        logger.info("printbridge starting...")

        state.interfaces.refresh()
        await state.mirror.refresh()

        confirm_within = config.browse.timeout if config.browse_remote_cups else config.timeouts.confirm
        state.resolver.adopt_local_queues(confirm_within)
        await state.scheduler.run_pass()

        self._consumer = asyncio.create_task(self._consume())

        if config.autoshutdown == AUTOSHUTDOWN_AVAHI and self.dnssd is None:
            state.autoshutdown.set_enabled(True)

        if self.browse_socket is not None:
            try:
                await self.browse_socket.open()
            except OSError as e:
                logger.error(f"Failed to create browse socket: {e}")
        if self.advertiser is not None and self.browse_socket.is_open:
            await self.advertiser.start()
        for poller in state.pollers:
            await poller.start()
        if self.dnssd is not None:
            await self.dnssd.start()

        self._install_signal_handlers()
        state.autoshutdown.update()

        if config.status_api.enabled:
            await self._start_api()

    async def run(self) -> None:
        """Run until stopped, then remove what we created."""
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        state = self.state
        logger.info("printbridge shutting down...")
        self._remove_signal_handlers()

        if self.dnssd is not None:
            await self.dnssd.stop()
        for poller in state.pollers:
            await poller.stop()
        if self.advertiser is not None:
            await self.advertiser.stop()
        if self.browse_socket is not None:
            self.browse_socket.close()
        await self._stop_api()

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        await state.scheduler.shutdown()
        await state.mirror.close()
        await state.spooler.close()
        logger.info("printbridge stopped")

    def _dnssd_available(self) -> None:
        if self.config.autoshutdown == AUTOSHUTDOWN_AVAHI:
            self.state.autoshutdown.set_enabled(False)

    def _dnssd_lost(self) -> None:
        self.post(Tick.DNSSD_LOST)
        if self.config.autoshutdown == AUTOSHUTDOWN_AVAHI:
            self.state.autoshutdown.set_enabled(True)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGTERM, self.stop)
            loop.add_signal_handler(signal.SIGINT, self.stop)
            loop.add_signal_handler(signal.SIGUSR1, self.state.autoshutdown.set_enabled, False)
            loop.add_signal_handler(signal.SIGUSR2, self.state.autoshutdown.set_enabled, True)
        except (NotImplementedError, RuntimeError) as e:
            logger.warning(f"Signal handlers not installed: {e}")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT, signal.SIGUSR1, signal.SIGUSR2):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    async def _start_api(self) -> None:
        if not UVICORN_AVAILABLE:
            logger.warning("uvicorn not available - status API disabled")
            return

        from printbridge.api.server import create_app

        api = self.config.status_api
        app = create_app(self.state)
        server_config = uvicorn.Config(app, host=api.host, port=api.port, log_level="warning")
        self._api_server = _EmbeddedServer(server_config)
        self._api_task = asyncio.create_task(self._api_server.serve())
        logger.info(f"Status API on http://{api.host}:{api.port}/v1/health")

    async def _stop_api(self) -> None:
        if self._api_task is None:
            return
        self._api_server.should_exit = True
        try:
            await self._api_task
        except Exception as e:
            logger.warning(f"Status API did not stop cleanly: {e}")
        self._api_task = None
        self._api_server = None
