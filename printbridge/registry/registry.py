from typing import Callable, Iterator, Optional

from .models import NEVER, PrinterStatus, RemotePrinter


def _key(name: str) -> str:
    return name.lower()


class PrinterRegistry:
    """Registry of remote printer entries, indexed by id and by queue name.

    Queue names compare case-insensitively, as the spooler treats them.
    """

    def __init__(self):
        self._printers: dict[str, RemotePrinter] = {}
        self._by_name: dict[str, list[str]] = {}

    def add(self, printer: RemotePrinter) -> None:
        """Register an entry."""
        self._printers[printer.id] = printer
        self._by_name.setdefault(_key(printer.name), []).append(printer.id)

    def remove(self, printer: RemotePrinter) -> None:
        """Drop an entry; unknown entries are ignored."""
        if self._printers.pop(printer.id, None) is None:
            return
        ids = self._by_name.get(_key(printer.name), [])
        if printer.id in ids:
            ids.remove(printer.id)
        if not ids:
            self._by_name.pop(_key(printer.name), None)

    def get(self, printer_id: str) -> Optional[RemotePrinter]:
        """Get an entry by id."""
        return self._printers.get(printer_id)

    def list_all(self) -> list[RemotePrinter]:
        """List all entries in insertion order."""
        return list(self._printers.values())

    def __iter__(self) -> Iterator[RemotePrinter]:
        return iter(self.list_all())

    def __len__(self) -> int:
        return len(self._printers)

    def with_name(self, name: str) -> list[RemotePrinter]:
        """All entries sharing a queue name, duplicates included."""
        return [self._printers[i] for i in self._by_name.get(_key(name), [])]

    def find_by_name(
        self, name: str, predicate: Optional[Callable[[RemotePrinter], bool]] = None
    ) -> Optional[RemotePrinter]:
        """First entry with ``name`` matching ``predicate``."""
        for printer in self.with_name(name):
            if predicate is None or predicate(printer):
                return printer
        return None

    def primary(self, name: str) -> Optional[RemotePrinter]:
        """The non-duplicate entry providing queue ``name``, if any."""
        return self.find_by_name(name, lambda p: not p.is_duplicate)

    def find_by_service(
        self, service_name: str, service_type: str, service_domain: str
    ) -> Optional[RemotePrinter]:
        """Match a multicast identity triple back to its entry.

        After a failover the promoted entry and the retiring duplicate share
        the triple; the non-duplicate wins.
        """
        matches = [
            p for p in self._printers.values()
            if (p.service_name.lower() == service_name.lower() and
                p.service_type.lower() == service_type.lower() and
                p.service_domain.lower() == service_domain.lower())
        ]
        matches.sort(key=lambda p: p.is_duplicate)
        return matches[0] if matches else None

    def find_backup(self, printer: RemotePrinter) -> Optional[RemotePrinter]:
        """A duplicate of ``printer`` served by another host."""
        return self.find_by_name(
            printer.name,
            lambda q: (q is not printer and q.is_duplicate and
                       q.host.lower() != printer.host.lower())
        )

    def next_deadline(self) -> float:
        """Earliest pending deadline, NEVER if nothing is pending."""
        return min((p.deadline for p in self._printers.values()), default=NEVER)

    def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in PrinterStatus}
        for printer in self._printers.values():
            counts[printer.status.value] += 1
        return counts
