"""
Snapshot of the queues present in the local spooler.

The resolver asks it which names and device URIs are taken and which
queues we created in an earlier run. A change subscription against the
local spooler avoids refetching the queue list when nothing changed.
"""

import logging
import time
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator, Optional

from printbridge.discovery.subscription import PollContext, cancel_subscription, check_for_changes
from printbridge.registry.models import LocalQueue
from printbridge.spooler.base import SpoolerBase
from printbridge.spooler.errors import SpoolerError, SpoolerUnavailable

logger = logging.getLogger(__name__)

RefreshListener = Callable[[], Awaitable[None]]


class LocalSpoolerMirror:
    """
    Local queue snapshot with subscription-driven refresh.

    Args:
        spooler: The local spooler
        interval: Notification interval requested for the change subscription
    """

    def __init__(self, spooler: SpoolerBase, interval: int = 60):
        self.spooler = spooler
        self.interval = interval
        self.context = PollContext(server=spooler.server, port=spooler.port)
        self._queues: dict[str, LocalQueue] = {}
        self._inhibit_depth = 0
        self._listeners: list[RefreshListener] = []
        self.last_refresh: Optional[float] = None

    def add_listener(self, listener: RefreshListener) -> None:
        """Call ``listener`` after every successful refresh."""
        self._listeners.append(listener)

    @property
    def inhibited(self) -> bool:
        return self._inhibit_depth > 0

    @contextmanager
    def inhibit(self) -> Iterator[None]:
        """Suspend refreshes while a reconciliation pass runs."""
        self._inhibit_depth += 1
        try:
            yield
        finally:
            self._inhibit_depth -= 1

    async def update(self) -> bool:
        """
        Refresh the snapshot if the spooler reports changes.

        Returns:
            True if the queue list was fetched again
        """
        if self.inhibited:
            return False

        try:
            changed = await check_for_changes(self.context, self.spooler, self.interval)
        except SpoolerUnavailable as e:
            logger.debug(f"Local spooler unreachable for notifications: {e}")
            changed = True

        if not changed:
            return False
        return await self.refresh()

    async def refresh(self) -> bool:
        """Fetch the full queue list; the previous snapshot survives failures."""
        try:
            queues = await self.spooler.list_queues()
        except SpoolerError as e:
            logger.warning(f"Could not list local queues, keeping previous snapshot: {e}")
            return False

        self._queues = {q.name.lower(): q for q in queues}
        self.last_refresh = time.time()
        logger.debug(f"Local spooler has {len(self._queues)} queue(s)")

        for listener in self._listeners:
            try:
                await listener()
            except Exception as e:
                logger.error(f"Local queue listener failed: {e}")
        return True

    def get(self, name: str) -> Optional[LocalQueue]:
        return self._queues.get(name.lower())

    def has_uri(self, uri: str) -> bool:
        """Whether some local queue already uses device URI ``uri``."""
        uri = uri.lower()
        return any(q.device_uri.lower() == uri for q in self._queues.values())

    def owned_queues(self) -> list[LocalQueue]:
        """Queues carrying our marker, left over from an earlier run."""
        return [q for q in self._queues.values() if q.owned_by_us]

    def list_all(self) -> list[LocalQueue]:
        return list(self._queues.values())

    async def close(self) -> None:
        """Cancel the change subscription."""
        await cancel_subscription(self.context, self.spooler)
