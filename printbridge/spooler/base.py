from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from printbridge.registry.models import LocalQueue

# Option marking a local queue as created by us
MARKER_OPTION = "printbridge"

# printer-type bits (CUPS)
PRINTER_REMOTE = 0x0002
PRINTER_IMPLICIT = 0x10000
PRINTER_DELETE = 0x100000
PRINTER_NOT_SHARED = 0x200000

# Events watched by change subscriptions
SUBSCRIPTION_EVENTS = [
    "printer-added",
    "printer-changed",
    "printer-config-changed",
    "printer-modified",
    "printer-deleted",
    "printer-state-changed",
]


def is_true(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("yes", "on", "true", "1")


@dataclass
class QueueDefinition:
    """Everything the spooler needs to create or modify one queue."""

    name: str
    device_uri: str
    info: str = ""
    location: str = ""
    shared: bool = False
    ppd_path: Optional[str] = None
    script_path: Optional[str] = None
    driver_model: Optional[str] = None

    @property
    def is_raw(self) -> bool:
        return not (self.ppd_path or self.script_path or self.driver_model)


class SpoolerBase(ABC):
    """Operations the daemon consumes from a print spooler.

    Implementations raise SpoolerError subclasses only.
    """

    def __init__(self, server: str = "localhost", port: int = 631):
        self.server = server
        self.port = port

    @abstractmethod
    async def list_queues(self) -> list[LocalQueue]:
        """All local queues with their device URI and our marker."""
        pass

    @abstractmethod
    async def create_or_modify_queue(self, queue: QueueDefinition) -> None:
        """Create the queue, or update it in place when it exists."""
        pass

    @abstractmethod
    async def delete_queue(self, name: str) -> None:
        pass

    @abstractmethod
    async def count_active_jobs(self, name: str) -> int:
        """Number of not-completed jobs on queue ``name``."""
        pass

    @abstractmethod
    async def get_default_queue_name(self) -> Optional[str]:
        pass

    @abstractmethod
    async def fetch_printer_capabilities(self, uri: str) -> dict:
        """Printer attributes of the IPP printer at ``uri``."""
        pass

    @abstractmethod
    async def get_printers(self) -> list[dict]:
        """IPP attributes of every printer the spooler serves."""
        pass

    @abstractmethod
    async def create_subscription(self, events: list[str], interval: int) -> int:
        """Create a pull subscription and return its id."""
        pass

    @abstractmethod
    async def get_notifications(self, subscription_id: int, sequence_number: int) -> list[dict]:
        """Events of the subscription starting at ``sequence_number``."""
        pass

    @abstractmethod
    async def cancel_subscription(self, subscription_id: int) -> None:
        pass

    async def close(self) -> None:
        """Release connections."""
        pass

    def describe(self) -> str:
        return f"{self.server}:{self.port}"
