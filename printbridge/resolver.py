"""
Naming and deduplication of discovered printers.

Turns normalized discovery events into registry changes: derives the local
queue name and device URI, avoids clashes with queues we do not own,
recognises printers that several servers share under one name and keeps
one of them as the served entry while the others wait as failover sources.
"""

import logging
import time
from typing import Callable, Iterable, Optional

from printbridge.config import Timeouts
from printbridge.mirror import LocalSpoolerMirror
from printbridge.naming import device_uri, normalize_host, sanitize, uri_without_scheme
from printbridge.registry import (
    NEVER,
    DiscoveryEvent,
    DiscoverySource,
    EventKind,
    PrinterKind,
    PrinterRegistry,
    PrinterStatus,
    RemotePrinter,
)

logger = logging.getLogger(__name__)

# Page description languages the local filters can produce for any printer
DRIVERLESS_PDLS = (
    "application/postscript",
    "application/pdf",
    "image/pwg-raster",
    "application/vnd.hp-pcl",
    "application/vnd.hp-pclxl",
)

# TXT keys naming a native network printer, best first
MODEL_TXT_KEYS = ("product", "usb_MDL", "ty")

DEFAULT_PRINTER_NAME = "printer"

RESOURCE_PRINTERS = "printers/"
RESOURCE_CLASSES = "classes/"

STALE_STATES = (PrinterStatus.UNCONFIRMED, PrinterStatus.DISAPPEARED)


def _txt_value(txt: Optional[dict], key: str) -> Optional[str]:
    if not txt:
        return None
    for k, v in txt.items():
        if k.lower() == key.lower():
            return v
    return None


def is_raw_remote_queue(txt: Optional[dict], domain: str) -> bool:
    """
    A spooler queue advertised without a driver behind it.

    Such queues carry no ``product`` TXT value of the form "(...)", so
    nothing is known about the printer and no local queue is set up.
    """
    if txt is None:
        return bool(domain)
    product = _txt_value(txt, "product")
    return not (product and product.startswith("(") and product.endswith(")"))


def supports_driverless(pdl: Optional[str]) -> bool:
    if not pdl:
        return False
    lowered = pdl.lower()
    return any(known in lowered for known in DRIVERLESS_PDLS)


class Resolver:
    """
    Applies discovery events to the registry.

    Args:
        registry: Registry of remote printer entries
        mirror: Local spooler snapshot
        timeouts: Confirm/retry/remove timeouts
        browse_timeout: Lease of legacy and polled announcements, in seconds
        create_ipp_printer_queues: Allow driverless queues for native IPP printers
        local_addresses: Returns the addresses of our own interfaces
        clock: Returns the current time in seconds
    """

    def __init__(
        self,
        registry: PrinterRegistry,
        mirror: LocalSpoolerMirror,
        timeouts: Optional[Timeouts] = None,
        browse_timeout: int = 300,
        create_ipp_printer_queues: bool = False,
        local_addresses: Optional[Callable[[], Iterable[str]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.mirror = mirror
        self.timeouts = timeouts or Timeouts()
        self.browse_timeout = browse_timeout
        self.create_ipp_printer_queues = create_ipp_printer_queues
        self.local_addresses = local_addresses or (lambda: ())
        self.clock = clock

    def _immediately(self) -> float:
        return self.clock() - 1

    async def handle(self, event: DiscoveryEvent) -> Optional[RemotePrinter]:
        """Dispatch one event; returns the affected entry, if any."""
        if event.kind == EventKind.WITHDRAW:
            return self.withdraw(event.service_name, event.service_type, event.service_domain)
        if event.source in (DiscoverySource.BROWSE, DiscoverySource.POLL):
            return await self.announce_from_browse(event)
        return await self.announce(event)

    async def announce(self, event: DiscoveryEvent) -> Optional[RemotePrinter]:
        """A printer announced over multicast DNS-SD."""
        return await self._generate(
            host=event.host,
            port=event.port,
            resource=event.resource.lstrip("/"),
            name=event.service_name,
            service_type=event.service_type,
            domain=event.service_domain,
            txt=event.txt,
        )

    async def announce_from_browse(self, event: DiscoveryEvent) -> Optional[RemotePrinter]:
        """
        A queue announced by a legacy browse packet or found by polling.

        These announcements are leases: an entry that is not refreshed
        within the browse timeout is removed.
        """
        if not event.host:
            logger.debug(f"No host for browsed resource {event.resource}, ignored")
            return None

        own = {a.lower() for a in self.local_addresses()}
        if event.host.lower() in own:
            logger.debug(f"Ignoring own broadcast on {event.host}")
            return None

        lowered = event.resource.lower()
        if not lowered.startswith(("/" + RESOURCE_PRINTERS, "/" + RESOURCE_CLASSES)):
            logger.debug(f"Don't understand URI resource: {event.resource}")
            return None

        local_resource = event.resource[1:].split("?", 1)[0]
        logger.debug(f"Browsed queue name is {local_resource.split('/', 1)[1]}")

        printer = await self._generate(
            host=event.host,
            port=event.port,
            resource=local_resource,
            name=event.service_name,
            service_type="",
            domain="",
            txt=None,
        )
        if printer is None:
            return None

        if printer.is_pending:
            printer.status = PrinterStatus.PENDING_CREATE_FROM_BROADCAST
        else:
            printer.status = PrinterStatus.DISAPPEARED
            printer.deadline = self.clock() + self.browse_timeout
        return printer

    def withdraw(
        self, service_name: str, service_type: str, service_domain: str
    ) -> Optional[RemotePrinter]:
        """A multicast service went away; fail over to a duplicate if one exists."""
        logger.debug(
            f"Withdraw: service '{service_name}' of type '{service_type}' "
            f"in domain '{service_domain}'"
        )
        printer = self.registry.find_by_service(service_name, service_type, service_domain)
        if printer is None:
            return None

        backup = None if printer.is_duplicate else self.registry.find_backup(printer)
        if backup is not None:
            printer.take_over(backup)
            printer.status = PrinterStatus.PENDING_CREATE
            printer.deadline = self._immediately()
            backup.status = PrinterStatus.DISAPPEARED
            backup.deadline = self._immediately()
            logger.info(
                f"[FAILOVER] Printer {printer.name} disappeared, replacing by backup "
                f"on host {printer.host} with URI {printer.uri}"
            )
        else:
            printer.status = PrinterStatus.DISAPPEARED
            printer.deadline = self.clock() + self.timeouts.remove
            logger.info(
                f"Printer {printer.name} (Host: {printer.host}, URI: {printer.uri}) "
                f"disappeared and no backup available, removing entry"
            )
        return printer

    def discovery_service_lost(self) -> int:
        """
        The multicast browser went away: nothing it reported can be trusted.

        Returns:
            Number of entries scheduled for removal
        """
        count = 0
        for printer in self.registry:
            if printer.service_type:
                printer.status = PrinterStatus.DISAPPEARED
                printer.deadline = self._immediately()
                count += 1
        if count:
            logger.info(f"DNS-SD browser lost, removing {count} printer(s) it reported")
        return count

    def adopt_local_queues(self, confirm_within: int) -> list[RemotePrinter]:
        """
        Take over queues we created in an earlier run.

        They stay until announcements confirm them within ``confirm_within``
        seconds; otherwise they are removed.
        """
        adopted = []
        deadline = self.clock() + confirm_within
        for queue in self.mirror.owned_queues():
            printer = RemotePrinter(
                name=queue.name,
                uri=queue.device_uri,
                status=PrinterStatus.UNCONFIRMED,
                deadline=deadline,
            )
            self.registry.add(printer)
            adopted.append(printer)
            logger.info(f"Found printer {queue.name} from previous session, waiting for confirmation")
        return adopted

    async def _generate(
        self,
        host: str,
        port: int,
        resource: str,
        name: str,
        service_type: str,
        domain: str,
        txt: Optional[dict],
    ) -> Optional[RemotePrinter]:
        uri = device_uri(service_type, host, port, resource)
        remote_host = normalize_host(host)
        lowered = resource.lower()
        pdl = None

        if lowered.startswith(RESOURCE_PRINTERS) or lowered.startswith(RESOURCE_CLASSES):
            kind = PrinterKind.SPOOLER_QUEUE
            prefix = RESOURCE_PRINTERS if lowered.startswith(RESOURCE_PRINTERS) else RESOURCE_CLASSES
            remote_queue = sanitize(resource[len(prefix):], 0)
            logger.debug(f"Found spooler queue {remote_queue} on host {remote_host}")
            if prefix == RESOURCE_PRINTERS and is_raw_remote_queue(txt, domain):
                logger.debug(f"Remote queue {remote_queue} on host {remote_host} is raw, ignored")
                return None
        else:
            kind = PrinterKind.NETWORK_PRINTER
            remote_queue = DEFAULT_PRINTER_NAME
            for key in MODEL_TXT_KEYS:
                value = _txt_value(txt, key)
                if value and len(value) >= 3:
                    remote_queue = sanitize(value, 0)
                    break
            value = _txt_value(txt, "pdl")
            if value and len(value) >= 3:
                pdl = sanitize(value, 1)

        if not remote_queue:
            logger.debug(f"No usable queue name for {uri}, ignored")
            return None

        await self.mirror.update()

        local_name = remote_queue
        create = not self.mirror.has_uri(uri)
        if create:
            local = self.mirror.get(local_name)
            if local is not None and not local.owned_by_us:
                local_name = f"{remote_queue}@{remote_host}"
                logger.debug(f"{remote_queue} already taken, using fallback name {local_name}")
                local = self.mirror.get(local_name)
                if local is not None and not local.owned_by_us:
                    logger.debug(f"{local_name} also taken, printer ignored")
                    return None

        if not create:
            printer = self._find_by_uri(uri) or self._find_match(local_name, remote_host)
            if printer is None:
                logger.debug(f"Printer with URI {uri} already exists, printer ignored")
                return None
            self._confirm(printer)
            self._backfill(printer, remote_host, name, service_type, domain)
            return printer

        printer = self._find_match(local_name, remote_host)
        if printer is not None:
            self._update(printer, uri, remote_host, name, service_type, domain, pdl)
            self._backfill(printer, remote_host, name, service_type, domain)
            return printer

        return self._create(
            local_name, uri, kind, remote_host, name, service_type, domain, pdl,
            make_model=remote_queue if kind == PrinterKind.NETWORK_PRINTER else None,
        )

    def _find_by_uri(self, uri: str) -> Optional[RemotePrinter]:
        target = uri_without_scheme(uri)
        for printer in self.registry:
            if uri_without_scheme(printer.uri) == target:
                return printer
        return None

    def _find_match(self, name: str, remote_host: str) -> Optional[RemotePrinter]:
        """The entry for this printer: same name and same or unknown host.

        Stale entries match regardless of host so a returning printer takes
        its old queue back.
        """
        candidates = [
            p for p in self.registry.with_name(name)
            if (not p.host or p.status in STALE_STATES or
                p.host.lower() == remote_host.lower())
        ]
        candidates.sort(key=lambda p: p.is_duplicate)
        return candidates[0] if candidates else None

    def _confirm(self, printer: RemotePrinter) -> None:
        if printer.status in STALE_STATES:
            printer.status = PrinterStatus.CONFIRMED
            printer.deadline = NEVER
            logger.debug(f"Marking entry for {printer.name} (URI: {printer.uri}) as confirmed")

    def _update(
        self,
        printer: RemotePrinter,
        uri: str,
        remote_host: str,
        name: str,
        service_type: str,
        domain: str,
        pdl: Optional[str],
    ) -> None:
        upgrade = "_ipps" in service_type.lower() and printer.uri.lower().startswith("ipp:")
        changed = uri_without_scheme(printer.uri) != uri_without_scheme(uri)

        if upgrade or changed:
            if upgrade:
                logger.info(f"Upgrading printer {printer.name} (Host: {remote_host}) to IPPS. New URI: {uri}")
            if changed:
                logger.info(f"Changing URI of printer {printer.name} (Host: {remote_host}) to {uri}")
            printer.uri = uri
            printer.host = remote_host
            printer.service_name = name
            printer.service_type = service_type
            printer.service_domain = domain
            if pdl:
                printer.pdl = pdl
            printer.status = PrinterStatus.PENDING_CREATE
            printer.deadline = self._immediately()
        else:
            logger.debug(f"Entry for {printer.name} (URI: {printer.uri}) already exists")
            self._confirm(printer)

        if printer.is_duplicate and self.registry.primary(printer.name) is None:
            printer.is_duplicate = False
            printer.duplicate_of = None
            printer.status = PrinterStatus.PENDING_CREATE
            printer.deadline = self._immediately()
            logger.info(f"[FAILOVER] Printer {printer.name} now served by host {printer.host}")

    def _backfill(
        self, printer: RemotePrinter, remote_host: str, name: str, service_type: str, domain: str
    ) -> None:
        """Fill identity fields an entry from a previous session lacks."""
        if not printer.host:
            printer.host = remote_host
        if not printer.service_name and name:
            printer.service_name = name
        if not printer.service_type and service_type:
            printer.service_type = service_type
        if not printer.service_domain and domain:
            printer.service_domain = domain

    def _create(
        self,
        local_name: str,
        uri: str,
        kind: PrinterKind,
        remote_host: str,
        name: str,
        service_type: str,
        domain: str,
        pdl: Optional[str],
        make_model: Optional[str],
    ) -> Optional[RemotePrinter]:
        if kind == PrinterKind.NETWORK_PRINTER:
            if not self.create_ipp_printer_queues:
                logger.debug(
                    f"Printer {local_name} ({uri}) is an IPP network printer and "
                    f"creating queues for those is disabled, ignoring this printer"
                )
                return None
            if not supports_driverless(pdl):
                logger.debug(f"Cannot create remote printer {local_name} ({uri}) as its PDLs are not known, ignoring")
                return None

        printer = RemotePrinter(
            name=local_name,
            uri=uri,
            kind=kind,
            status=PrinterStatus.PENDING_CREATE,
            deadline=self._immediately(),
            host=remote_host,
            service_name=name or "",
            service_type=service_type,
            service_domain=domain,
            pdl=pdl,
            make_model=make_model,
        )

        primary = self.registry.primary(local_name)
        if primary is not None and primary.status not in STALE_STATES:
            printer.is_duplicate = True
            printer.duplicate_of = primary.id
            logger.info(f"Printer {local_name} already available through host {primary.host}")
        else:
            for other in self.registry.with_name(local_name):
                other.is_duplicate = True
                other.duplicate_of = printer.id
                logger.info(
                    f"Stale printer {local_name} on host {other.host} marked duplicate "
                    f"of the newly found one on {remote_host}"
                )

        self.registry.add(printer)
        logger.debug(
            f"DNS-SD IDs: Service name: \"{printer.service_name}\", "
            f"Service type: \"{service_type}\", Domain: \"{domain}\""
        )
        return printer
