"""
CUPS spooler adapter.

Requires: pycups package
Used both for the local spooler and for BrowsePoll peers. pycups is
blocking, so every call runs on a one-thread executor owned by the
adapter: calls to one server never overlap and the event loop stays free.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, TypeVar
from urllib.parse import urlsplit

from printbridge.registry.models import LocalQueue

from .base import MARKER_OPTION, QueueDefinition, SpoolerBase, is_true
from .errors import SpoolerError, SpoolerRequestError, SpoolerUnavailable

logger = logging.getLogger(__name__)

try:
    import cups
    CUPS_AVAILABLE = True
except ImportError:
    CUPS_AVAILABLE = False
    logger.warning("pycups package not available - CUPSSpooler will not function")

T = TypeVar("T")

# Attributes requested for every printer when preparing browse data
PRINTER_ATTRIBUTES = [
    "printer-name",
    "printer-type",
    "printer-state",
    "printer-uri-supported",
    "printer-info",
    "printer-location",
    "printer-make-and-model",
    "auth-info-required",
    "printer-uuid",
    "job-template",
]


def _no_password(prompt, *args):
    # Never prompt for credentials from a daemon
    return ""


class CUPSSpooler(SpoolerBase):
    """
    Spooler reached through pycups.

    Args:
        server: CUPS server address or domain socket path (default: localhost)
        port: IPP port
    """

    def __init__(self, server: str = "localhost", port: int = 631):
        super().__init__(server, port)
        self._conn = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cups-{server}")
        if CUPS_AVAILABLE:
            cups.setPasswordCB(_no_password)

    def _get_connection(self):
        """Get or create CUPS connection."""
        if not CUPS_AVAILABLE:
            raise SpoolerUnavailable("pycups package not installed")
        if self._conn is None:
            if self.server.startswith("/"):
                self._conn = cups.Connection(host=self.server)
            else:
                self._conn = cups.Connection(host=self.server, port=self.port)
        return self._conn

    async def _call(self, func: Callable[..., T], *args) -> T:
        """Run a blocking pycups call, translating its errors."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._guarded, func, *args)

    def _guarded(self, func, *args):
        try:
            return func(*args)
        except SpoolerError:
            raise
        except Exception as e:
            if CUPS_AVAILABLE and isinstance(e, cups.IPPError):
                status, message = e.args
                raise SpoolerRequestError(status, message) from e
            # RuntimeError / cups.HTTPError / OSError: the connection is gone
            self._conn = None
            raise SpoolerUnavailable(f"{self.describe()}: {e}") from e

    async def list_queues(self) -> list[LocalQueue]:
        def fetch():
            dests = self._get_connection().getDests()
            queues = []
            for (name, instance), dest in dests.items():
                if instance is not None:
                    continue
                queues.append(LocalQueue(
                    name=name,
                    device_uri=dest.options.get("device-uri", ""),
                    owned_by_us=is_true(dest.options.get(MARKER_OPTION, "false")),
                ))
            return queues

        return await self._call(fetch)

    async def create_or_modify_queue(self, queue: QueueDefinition) -> None:
        def apply():
            conn = self._get_connection()
            kwargs = {
                "device": queue.device_uri,
                "info": queue.info,
                "location": queue.location,
            }
            if queue.ppd_path:
                kwargs["filename"] = queue.ppd_path
            elif queue.script_path:
                kwargs["filename"] = queue.script_path
            elif queue.driver_model:
                kwargs["ppdname"] = queue.driver_model
            conn.addPrinter(queue.name, **kwargs)
            conn.addPrinterOptionDefault(queue.name, MARKER_OPTION, "true")
            conn.setPrinterShared(queue.name, queue.shared)
            conn.enablePrinter(queue.name)
            conn.acceptJobs(queue.name)

        await self._call(apply)

    async def delete_queue(self, name: str) -> None:
        await self._call(lambda: self._get_connection().deletePrinter(name))

    async def count_active_jobs(self, name: str) -> int:
        def count():
            jobs = self._get_connection().getJobs(
                which_jobs="not-completed",
                my_jobs=False,
                requested_attributes=["job-printer-uri"],
            )
            suffix = f"/printers/{name}".lower()
            return sum(
                1 for job in jobs.values()
                if job.get("job-printer-uri", "").lower().endswith(suffix)
            )

        return await self._call(count)

    async def get_default_queue_name(self) -> Optional[str]:
        return await self._call(lambda: self._get_connection().getDefault())

    async def fetch_printer_capabilities(self, uri: str) -> dict:
        def fetch():
            parts = urlsplit(uri)
            conn = cups.Connection(host=parts.hostname, port=parts.port or 631)
            return conn.getPrinterAttributes(uri=uri)

        if not CUPS_AVAILABLE:
            raise SpoolerUnavailable("pycups package not installed")
        return await self._call(fetch)

    async def get_printers(self) -> list[dict]:
        def fetch():
            conn = self._get_connection()
            printers = []
            for name in conn.getPrinters():
                attrs = conn.getPrinterAttributes(name, requested_attributes=PRINTER_ATTRIBUTES)
                attrs.setdefault("printer-name", name)
                printers.append(attrs)
            return printers

        return await self._call(fetch)

    async def create_subscription(self, events: list[str], interval: int) -> int:
        return await self._call(
            lambda: self._get_connection().createSubscription(
                "/", events=events, time_interval=interval
            )
        )

    async def get_notifications(self, subscription_id: int, sequence_number: int) -> list[dict]:
        def fetch():
            result = self._get_connection().getNotifications(
                [subscription_id], [sequence_number]
            )
            return list(result.get("events", []))

        return await self._call(fetch)

    async def cancel_subscription(self, subscription_id: int) -> None:
        await self._call(lambda: self._get_connection().cancelSubscription(subscription_id))

    async def close(self) -> None:
        self._conn = None
        self._executor.shutdown(wait=False)
