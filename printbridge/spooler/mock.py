import logging
from typing import Optional

from printbridge.registry.models import LocalQueue

from .base import QueueDefinition, SpoolerBase
from .errors import IPP_NOT_FOUND, SpoolerRequestError, SpoolerUnavailable

logger = logging.getLogger(__name__)


class MockSpooler(SpoolerBase):
    """In-memory spooler for testing and dry runs without CUPS."""

    def __init__(self, server: str = "mock", port: int = 631):
        super().__init__(server, port)
        self.queues: dict[str, LocalQueue] = {}
        self.definitions: dict[str, QueueDefinition] = {}
        self.jobs: dict[str, int] = {}
        self.default_queue: Optional[str] = None
        self.printers: list[dict] = []
        self.capabilities: dict[str, dict] = {}
        self.available = True
        # Operation names that fail once with a request error
        self.fail_once: set[str] = set()
        self.calls: list[tuple] = []

        self.subscriptions_supported = True
        self.next_subscription_id = 1
        self.subscriptions: dict[int, list[dict]] = {}

    def add_local_queue(self, name: str, device_uri: str = "", owned_by_us: bool = False) -> None:
        """Allow tests to seed pre-existing queues."""
        self.queues[name] = LocalQueue(name=name, device_uri=device_uri, owned_by_us=owned_by_us)

    def push_event(self, subscription_id: int, event: str = "printer-added") -> None:
        """Allow tests to queue a notification on a subscription."""
        events = self.subscriptions.setdefault(subscription_id, [])
        events.append({
            "notify-subscribed-event": event,
            "notify-sequence-number": len(events) + 1,
        })

    def _notify(self, event: str) -> None:
        for subscription_id in list(self.subscriptions):
            self.push_event(subscription_id, event)

    def _check(self, operation: str, *args) -> None:
        self.calls.append((operation,) + args)
        if not self.available:
            raise SpoolerUnavailable(f"{self.describe()}: connection refused")
        if operation in self.fail_once:
            self.fail_once.discard(operation)
            raise SpoolerRequestError(0x0500, f"{operation} failed")

    async def list_queues(self) -> list[LocalQueue]:
        self._check("list_queues")
        return [LocalQueue(q.name, q.device_uri, q.owned_by_us) for q in self.queues.values()]

    async def create_or_modify_queue(self, queue: QueueDefinition) -> None:
        self._check("create_or_modify_queue", queue.name)
        self.queues[queue.name] = LocalQueue(name=queue.name, device_uri=queue.device_uri, owned_by_us=True)
        self.definitions[queue.name] = queue
        self._notify("printer-added")
        logger.info(f"[MOCK] Queue {queue.name} -> {queue.device_uri}")

    async def delete_queue(self, name: str) -> None:
        self._check("delete_queue", name)
        if name not in self.queues:
            raise SpoolerRequestError(IPP_NOT_FOUND, f"no queue {name}")
        del self.queues[name]
        self.definitions.pop(name, None)
        self._notify("printer-deleted")
        logger.info(f"[MOCK] Queue {name} deleted")

    async def count_active_jobs(self, name: str) -> int:
        self._check("count_active_jobs", name)
        return self.jobs.get(name, 0)

    async def get_default_queue_name(self) -> Optional[str]:
        self._check("get_default_queue_name")
        return self.default_queue

    async def fetch_printer_capabilities(self, uri: str) -> dict:
        self._check("fetch_printer_capabilities", uri)
        if uri not in self.capabilities:
            raise SpoolerUnavailable(f"{uri}: no route to host")
        return self.capabilities[uri]

    async def get_printers(self) -> list[dict]:
        self._check("get_printers")
        return [dict(p) for p in self.printers]

    async def create_subscription(self, events: list[str], interval: int) -> int:
        self._check("create_subscription")
        if not self.subscriptions_supported:
            raise SpoolerRequestError(0x0501, "subscriptions not supported")
        subscription_id = self.next_subscription_id
        self.next_subscription_id += 1
        self.subscriptions[subscription_id] = []
        return subscription_id

    async def get_notifications(self, subscription_id: int, sequence_number: int) -> list[dict]:
        self._check("get_notifications", subscription_id, sequence_number)
        if subscription_id not in self.subscriptions:
            raise SpoolerRequestError(IPP_NOT_FOUND, "subscription expired")
        return [
            e for e in self.subscriptions[subscription_id]
            if e["notify-sequence-number"] >= sequence_number
        ]

    async def cancel_subscription(self, subscription_id: int) -> None:
        self._check("cancel_subscription", subscription_id)
        self.subscriptions.pop(subscription_id, None)
