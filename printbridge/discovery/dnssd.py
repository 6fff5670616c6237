"""
Multicast DNS-SD browser for IPP printers.

Requires: zeroconf package
Browses _ipp._tcp and _ipps._tcp, resolves each new service and turns it
into a DiscoveryEvent; removed services become withdraw events.
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional

from printbridge.registry import DiscoveryEvent, DiscoverySource, EventKind

logger = logging.getLogger(__name__)

try:
    from zeroconf import ServiceStateChange
    from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf
    ZEROCONF_AVAILABLE = True
except ImportError:
    ZEROCONF_AVAILABLE = False
    logger.warning("zeroconf package not available - DNS-SD browsing disabled")

SERVICE_TYPES = ["_ipp._tcp.local.", "_ipps._tcp.local."]

RESOLVE_TIMEOUT_MS = 3000

EventSink = Callable[[DiscoveryEvent], None]


def split_service_name(name: str, service_type: str) -> tuple[str, str, str]:
    """
    Split a full zeroconf name into instance name, short type and domain.

    "Office._ipp._tcp.local." -> ("Office", "_ipp._tcp", "local")
    """
    instance = name[:-len(service_type)].rstrip(".") if name.endswith(service_type) else name
    labels = service_type.rstrip(".").split(".")
    return instance, ".".join(labels[:2]), ".".join(labels[2:])


def decode_txt(properties: dict) -> dict[str, str]:
    """TXT record as text; keys without value map to an empty string."""
    txt = {}
    for key, value in (properties or {}).items():
        if isinstance(key, bytes):
            key = key.decode("utf-8", errors="replace")
        if value is None:
            value = ""
        elif isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        txt[key] = value
    return txt


class DNSSDBrowser:
    """
    Browses for network printers and forwards events to ``sink``.

    Args:
        sink: Receives announce and withdraw events
        local_addresses: Returns our own addresses; their services are ignored
        on_available: Called once browsing runs
        on_lost: Called when browsing stops working
    """

    def __init__(
        self,
        sink: EventSink,
        local_addresses: Optional[Callable[[], Iterable[str]]] = None,
        on_available: Optional[Callable[[], None]] = None,
        on_lost: Optional[Callable[[], None]] = None,
    ):
        self.sink = sink
        self.local_addresses = local_addresses or (lambda: ())
        self.on_available = on_available
        self.on_lost = on_lost

        self._zeroconf = None
        self._browser = None
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    async def start(self) -> bool:
        """Start browsing; returns False if DNS-SD is not usable."""
        if self._running:
            return True
        if not ZEROCONF_AVAILABLE:
            if self.on_lost:
                self.on_lost()
            return False

        try:
            self._zeroconf = AsyncZeroconf()
            self._browser = AsyncServiceBrowser(
                self._zeroconf.zeroconf,
                SERVICE_TYPES,
                handlers=[self._on_state_change],
            )
        except OSError as e:
            logger.error(f"DNS-SD browser could not be started: {e}")
            self._zeroconf = None
            if self.on_lost:
                self.on_lost()
            return False

        self._running = True
        logger.info(f"DNS-SD browsing for {', '.join(SERVICE_TYPES)}")
        if self.on_available:
            self.on_available()
        return True

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        for task in list(self._tasks):
            task.cancel()
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        if self._zeroconf is not None:
            await self._zeroconf.async_close()
            self._zeroconf = None
        logger.info("DNS-SD browsing stopped")

    def _on_state_change(self, zeroconf, service_type: str, name: str, state_change) -> None:
        instance, short_type, domain = split_service_name(name, service_type)

        if state_change is ServiceStateChange.Removed:
            logger.debug(f"DNS-SD REMOVE: service '{instance}' of type '{short_type}' in domain '{domain}'")
            self.sink(DiscoveryEvent.withdraw(instance, short_type, domain))
            return

        if state_change in (ServiceStateChange.Added, ServiceStateChange.Updated):
            logger.debug(f"DNS-SD {state_change.name.upper()}: service '{instance}' of type '{short_type}' in domain '{domain}'")
            task = asyncio.ensure_future(self._resolve(service_type, name))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _resolve(self, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(self._zeroconf.zeroconf, RESOLVE_TIMEOUT_MS):
            logger.debug(f"DNS-SD: failed to resolve service '{name}'")
            return

        event = self.event_from_info(service_type, name, info)
        if event is not None:
            self.sink(event)

    def event_from_info(self, service_type: str, name: str, info) -> Optional[DiscoveryEvent]:
        """Announce event for a resolved service, None for our own services."""
        addresses = set(info.parsed_addresses())
        own = {a.lower() for a in self.local_addresses()}
        if addresses & own:
            logger.debug(f"DNS-SD: ignoring local service '{name}'")
            return None

        host = (info.server or "").rstrip(".")
        if not host:
            if not addresses:
                return None
            host = sorted(addresses)[0]

        instance, short_type, domain = split_service_name(name, service_type)
        txt = decode_txt(info.properties)
        return DiscoveryEvent(
            kind=EventKind.ANNOUNCE,
            source=DiscoverySource.DNSSD,
            host=host,
            port=info.port or 631,
            resource=txt.get("rp", ""),
            service_name=instance,
            service_type=short_type,
            service_domain=domain,
            txt=txt,
        )
