"""
Reconciliation of registry entries with the local spooler.

One timer serves all entries: after every pass (and after every event
that touched a deadline) the earliest deadline across the registry is
computed and the timer re-armed for it.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from printbridge.config import Timeouts
from printbridge.provisioner import ProvisionError, QueueProvisioner
from printbridge.registry import NEVER, PrinterRegistry, PrinterStatus, RemotePrinter
from printbridge.spooler.base import SpoolerBase
from printbridge.spooler.errors import SpoolerError, SpoolerErrorType, classify_spooler_error

logger = logging.getLogger(__name__)


class AutoShutdown:
    """
    Exits the daemon once no remote printers are left to serve.

    While enabled and the registry is empty, a one-shot timer runs; when it
    expires with the registry still empty, ``on_expire`` is called. A new
    entry cancels the timer.

    Args:
        registry: Registry of remote printer entries
        timeout: Grace period in seconds
        on_expire: Called to stop the daemon
        enabled: Initial state
    """

    def __init__(
        self,
        registry: PrinterRegistry,
        timeout: float,
        on_expire: Callable[[], None],
        enabled: bool = False,
    ):
        self.registry = registry
        self.timeout = timeout
        self.on_expire = on_expire
        self.enabled = enabled
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def set_enabled(self, enabled: bool) -> None:
        """Switch auto-shutdown on or off at runtime."""
        self.enabled = enabled
        logger.info(f"[AUTOSHUTDOWN] Auto shutdown {'enabled' if enabled else 'disabled'}")
        if enabled:
            self.update()
        else:
            self.cancel()

    def update(self) -> None:
        """Arm or cancel the timer according to the registry size."""
        if len(self.registry) == 0:
            self.arm()
        else:
            self.cancel()

    def arm(self) -> None:
        if not self.enabled or self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._expire)
        logger.info(f"[AUTOSHUTDOWN] No printers to make available, shutting down in {self.timeout} sec...")

    def cancel(self) -> None:
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None
        logger.info("[AUTOSHUTDOWN] Printers to make available, shutdown timer cancelled")

    def _expire(self) -> None:
        self._handle = None
        if not self.enabled or len(self.registry) > 0:
            return
        logger.info("[AUTOSHUTDOWN] Auto shutdown timer expired, shutting down")
        self.on_expire()


class ReconciliationScheduler:
    """
    Applies registry state to the local spooler.

    Args:
        registry: Registry of remote printer entries
        spooler: The local spooler
        provisioner: Creates and modifies local queues
        timeouts: Retry interval for failed operations
        browse_timeout: Lease granted to queues created from browse packets
        clock: Returns the current time in seconds
        on_wakeup: Called when the timer fires; defaults to running a pass
        autoshutdown: Updated whenever entries are removed or added
    """

    def __init__(
        self,
        registry: PrinterRegistry,
        spooler: SpoolerBase,
        provisioner: QueueProvisioner,
        timeouts: Optional[Timeouts] = None,
        browse_timeout: int = 300,
        clock: Callable[[], float] = time.time,
        on_wakeup: Optional[Callable[[], None]] = None,
        autoshutdown: Optional[AutoShutdown] = None,
    ):
        self.registry = registry
        self.spooler = spooler
        self.provisioner = provisioner
        self.timeouts = timeouts or Timeouts()
        self.browse_timeout = browse_timeout
        self.clock = clock
        self.on_wakeup = on_wakeup
        self.autoshutdown = autoshutdown

        self._timer: Optional[asyncio.TimerHandle] = None
        self.next_run: float = NEVER
        self.passes = 0

    async def run_pass(self) -> None:
        """Examine every entry whose deadline has passed, then re-arm the timer."""
        now = self.clock()
        logger.debug("Processing printer list ...")

        for printer in self.registry.list_all():
            await self._process(printer, now)

        self.passes += 1
        self.recheck()

    async def _process(self, printer: RemotePrinter, now: float) -> None:
        if printer.status == PrinterStatus.UNCONFIRMED:
            if printer.deadline > now:
                return
            logger.info(f"No remote printer named {printer.name} available, removing entry from previous session")
            printer.status = PrinterStatus.DISAPPEARED
            printer.deadline = now - 1

        if printer.status == PrinterStatus.DISAPPEARED:
            if printer.deadline <= now:
                await self._remove(printer, now)
            return

        if printer.is_pending:
            if printer.is_duplicate:
                printer.deadline = NEVER
                return
            if printer.deadline <= now:
                await self._create(printer, now)

    async def _remove(self, printer: RemotePrinter, now: float) -> None:
        logger.debug(f"Removing entry {printer.name}{'' if printer.is_duplicate else ' and its local queue'}")

        if not printer.is_duplicate:
            try:
                if await self.spooler.count_active_jobs(printer.name) > 0:
                    logger.info(f"Queue {printer.name} still has jobs, removal postponed")
                    self._retry(printer, now)
                    return
            except SpoolerError as e:
                logger.warning(f"Could not list jobs of {printer.name}, removal postponed: {e}")
                self._retry(printer, now)
                return

            try:
                default = await self.spooler.get_default_queue_name()
            except SpoolerError as e:
                logger.debug(f"Could not determine system default printer: {e}")
                default = None
            if default and default.lower() == printer.name.lower():
                logger.info(f"Queue {printer.name} is the system default printer, removal postponed")
                self._retry(printer, now)
                return

            try:
                await self.spooler.delete_queue(printer.name)
            except SpoolerError as e:
                self._log_failure("remove", printer, e)
                self._retry(printer, now)
                return
            logger.info(f"[QUEUE_REMOVED] {printer.name} (URI: {printer.uri})")

        self.registry.remove(printer)
        if self.autoshutdown is not None and len(self.registry) == 0:
            self.autoshutdown.update()

    async def _create(self, printer: RemotePrinter, now: float) -> None:
        logger.debug(f"Creating/Updating local queue for {printer.name}")
        try:
            await self.provisioner.provision(printer)
        except (SpoolerError, ProvisionError) as e:
            self._log_failure("create", printer, e)
            self._retry(printer, now)
            return

        if printer.status == PrinterStatus.PENDING_CREATE_FROM_BROADCAST:
            printer.status = PrinterStatus.DISAPPEARED
            printer.deadline = self.clock() + self.browse_timeout
            logger.info(
                f"[QUEUE_CREATED] {printer.name} -> {printer.uri} "
                f"(lease {self.browse_timeout}s)"
            )
        else:
            printer.status = PrinterStatus.CONFIRMED
            printer.deadline = NEVER
            logger.info(f"[QUEUE_CREATED] {printer.name} -> {printer.uri}")

    def _retry(self, printer: RemotePrinter, now: float) -> None:
        printer.deadline = now + self.timeouts.retry

    def _log_failure(self, action: str, printer: RemotePrinter, error: Exception) -> None:
        if classify_spooler_error(error) == SpoolerErrorType.TRANSPORT:
            logger.warning(f"Unable to {action} queue {printer.name}, spooler unreachable, will retry: {error}")
        else:
            logger.error(f"Unable to {action} queue {printer.name}, will retry: {error}")

    def recheck(self) -> None:
        """Arm the single timer for the earliest deadline, or disarm it."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        self.next_run = self.registry.next_deadline()
        if self.autoshutdown is not None and len(self.registry) > 0:
            self.autoshutdown.cancel()

        if self.next_run == NEVER:
            logger.debug("Listening")
            return

        delay = max(0.0, self.next_run - self.clock())
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self._wakeup)
        logger.debug(f"Checking queues in {int(delay)}s")

    def _wakeup(self) -> None:
        self._timer = None
        if self.on_wakeup is not None:
            self.on_wakeup()
        else:
            asyncio.ensure_future(self.run_pass())

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def shutdown(self) -> None:
        """Remove every queue we created: all entries disappear now, one last pass."""
        self.cancel()
        if self.autoshutdown is not None:
            self.autoshutdown.cancel()
            self.autoshutdown = None

        now = self.clock()
        for printer in self.registry:
            printer.status = PrinterStatus.DISAPPEARED
            printer.deadline = now - 1

        for printer in self.registry.list_all():
            await self._process(printer, now)

        self.cancel()
        left = len(self.registry)
        if left:
            logger.warning(f"{left} queue(s) could not be removed on shutdown")
