from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import uuid

# Deadline of an entry with no pending action
NEVER = float("inf")


class PrinterStatus(Enum):
    UNCONFIRMED = "unconfirmed"  # Found in the spooler, left over from a previous session
    CONFIRMED = "confirmed"
    PENDING_CREATE = "pending_create"
    PENDING_CREATE_FROM_BROADCAST = "pending_create_from_broadcast"
    DISAPPEARED = "disappeared"  # Scheduled for removal, or running on a lease


PENDING_STATES = (PrinterStatus.PENDING_CREATE, PrinterStatus.PENDING_CREATE_FROM_BROADCAST)


class PrinterKind(Enum):
    SPOOLER_QUEUE = "spooler_queue"  # Queue shared by a remote spooler
    NETWORK_PRINTER = "network_printer"  # Printer speaking IPP natively


class DiscoverySource(Enum):
    DNSSD = "dnssd"
    BROWSE = "browse"  # Legacy UDP broadcast
    POLL = "poll"
    PREVIOUS_SESSION = "previous_session"


class EventKind(Enum):
    ANNOUNCE = "announce"
    WITHDRAW = "withdraw"


@dataclass
class DiscoveryEvent:
    """Normalized announce/withdraw notification produced by a transport."""

    kind: EventKind
    source: DiscoverySource
    host: str = ""
    port: int = 631
    resource: str = ""
    service_name: str = ""
    service_type: str = ""
    service_domain: str = ""
    # TXT record of a multicast announcement; None when the transport has none
    txt: Optional[dict[str, str]] = None

    @classmethod
    def withdraw(cls, service_name: str, service_type: str, service_domain: str) -> "DiscoveryEvent":
        return cls(
            kind=EventKind.WITHDRAW,
            source=DiscoverySource.DNSSD,
            service_name=service_name,
            service_type=service_type,
            service_domain=service_domain,
        )


@dataclass
class LocalQueue:
    """One queue of the local spooler as seen by the mirror."""

    name: str
    device_uri: str = ""
    owned_by_us: bool = False


@dataclass
class RemotePrinter:
    """A remote printer represented (or to be represented) by a local queue."""

    name: str
    uri: str
    kind: PrinterKind = PrinterKind.SPOOLER_QUEUE
    status: PrinterStatus = PrinterStatus.PENDING_CREATE
    deadline: float = NEVER
    is_duplicate: bool = False
    duplicate_of: Optional[str] = None
    host: str = ""
    service_name: str = ""
    service_type: str = ""
    service_domain: str = ""
    # At most one of these selects a driver; all unset means a raw queue
    ppd_path: Optional[str] = None
    script_path: Optional[str] = None
    driver_model: Optional[str] = None
    # Advertised by native network printers, baked into interface scripts
    pdl: Optional[str] = None
    make_model: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATES

    def take_over(self, other: "RemotePrinter") -> None:
        """Copy identity and provisioning fields of ``other`` into this entry."""
        self.uri = other.uri
        self.kind = other.kind
        self.host = other.host
        self.service_name = other.service_name
        self.service_type = other.service_type
        self.service_domain = other.service_domain
        self.ppd_path = other.ppd_path
        self.script_path = other.script_path
        self.driver_model = other.driver_model
        self.pdl = other.pdl
        self.make_model = other.make_model

    def to_dict(self) -> dict:
        """Return entry info as dict for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "uri": self.uri,
            "kind": self.kind.value,
            "status": self.status.value,
            "deadline": None if self.deadline == NEVER else self.deadline,
            "duplicate": self.is_duplicate,
            "duplicate_of": self.duplicate_of,
            "host": self.host,
            "service_name": self.service_name,
            "service_type": self.service_type,
            "service_domain": self.service_domain,
        }
