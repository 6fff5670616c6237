from .models import (
    NEVER,
    DiscoveryEvent,
    DiscoverySource,
    EventKind,
    LocalQueue,
    PrinterKind,
    PrinterStatus,
    RemotePrinter,
)
from .registry import PrinterRegistry

__all__ = [
    "NEVER",
    "DiscoveryEvent",
    "DiscoverySource",
    "EventKind",
    "LocalQueue",
    "PrinterKind",
    "PrinterStatus",
    "PrinterRegistry",
    "RemotePrinter",
]
