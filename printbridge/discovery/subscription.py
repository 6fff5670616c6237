"""
Change subscriptions against a spooler (local or BrowsePoll peer).

A subscription lets us ask "did anything change since the last sequence
number?" instead of fetching the whole printer list on every interval.
Servers that cannot subscribe are downgraded to full polling for good.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from printbridge.spooler.base import SUBSCRIPTION_EVENTS, SpoolerBase
from printbridge.spooler.errors import SpoolerError, SpoolerRequestError

logger = logging.getLogger(__name__)

IPP_VERSIONS = {
    "version=1.0": (1, 0),
    "version=1.1": (1, 1),
    "version=2.0": (2, 0),
    "version=2.1": (2, 1),
    "version=2.2": (2, 2),
}


@dataclass
class PolledPrinter:
    """A printer seen on a peer, replayed as keep-alive when nothing changed."""

    uri: str
    info: str = ""


@dataclass
class PollContext:
    """Subscription state for one server."""

    server: str
    port: int = 631
    major: int = 0
    minor: int = 0
    can_subscribe: bool = True
    subscription_id: int = -1
    sequence_number: int = 0
    printers: list[PolledPrinter] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.server}:{self.port}"

    @property
    def has_subscription(self) -> bool:
        return self.subscription_id != -1

    @classmethod
    def from_config(cls, value: str, default_port: int = 631) -> "PollContext":
        """
        Parse a BrowsePoll entry: ``host[:port][/version=X.Y]``.

        Unknown version options and unparsable ports are ignored.
        """
        server, _, option = value.strip().partition("/")
        major, minor = 0, 0
        if option:
            if option.lower() in IPP_VERSIONS:
                major, minor = IPP_VERSIONS[option.lower()]
            else:
                logger.warning(f"Ignoring unknown BrowsePoll server option: {option}")

        port = default_port
        host, colon, port_str = server.partition(":")
        if colon:
            server = host
            if port_str.isdigit():
                port = int(port_str)

        return cls(server=server, port=port, major=major, minor=minor)

    def to_dict(self) -> dict:
        return {
            "server": self.server,
            "port": self.port,
            "ipp_version": f"{self.major}.{self.minor}" if self.major else None,
            "can_subscribe": self.can_subscribe,
            "subscription_id": None if self.subscription_id == -1 else self.subscription_id,
            "sequence_number": self.sequence_number,
            "printers": [p.uri for p in self.printers],
        }


async def create_subscription(context: PollContext, spooler: SpoolerBase, interval: int) -> None:
    """Create the printer-* subscription; a refusal downgrades to full polling."""
    logger.debug(f"[BrowsePoll {context.label}] IPP-Create-Subscription")
    try:
        subscription_id: Optional[int] = await spooler.create_subscription(SUBSCRIPTION_EVENTS, interval)
    except SpoolerRequestError as e:
        logger.info(f"[BrowsePoll {context.label}] Subscription refused, polling instead: {e}")
        subscription_id = None

    if subscription_id is None or subscription_id < 0:
        context.subscription_id = -1
        context.can_subscribe = False
        return

    context.subscription_id = subscription_id
    logger.debug(f"[BrowsePoll {context.label}] Subscription ID={subscription_id}")


async def cancel_subscription(context: PollContext, spooler: SpoolerBase) -> None:
    """Cancel the subscription; failures are only logged."""
    if not context.has_subscription:
        return
    logger.debug(f"[BrowsePoll {context.label}] IPP-Cancel-Subscription")
    try:
        await spooler.cancel_subscription(context.subscription_id)
    except SpoolerError as e:
        logger.warning(f"[BrowsePoll {context.label}] Failed to cancel subscription: {e}")
    context.subscription_id = -1


async def check_for_changes(context: PollContext, spooler: SpoolerBase, interval: int) -> bool:
    """
    Decide whether the printer list must be fetched again.

    Creates the subscription on first use. Transport errors propagate to
    the caller; request errors are handled here.

    Returns:
        True if the full printer list should be fetched
    """
    if not context.can_subscribe:
        return True

    if not context.has_subscription:
        await create_subscription(context, spooler, interval)
        return True

    logger.debug(f"[BrowsePoll {context.label}] IPP-Get-Notifications")
    try:
        events = await spooler.get_notifications(context.subscription_id, context.sequence_number + 1)
    except SpoolerRequestError as e:
        if e.not_found:
            logger.debug(f"[BrowsePoll {context.label}] Lease expired")
            await create_subscription(context, spooler, interval)
            return True

        logger.warning(f"[BrowsePoll {context.label}] Notifications failed, polling instead: {e}")
        context.can_subscribe = False
        await cancel_subscription(context, spooler)
        context.sequence_number = 0
        return True

    if not events:
        logger.debug(f"[BrowsePoll {context.label}] No events")
        return False

    logger.debug(f"[BrowsePoll {context.label}] printer-* event")
    context.sequence_number = max(
        (e.get("notify-sequence-number", context.sequence_number) for e in events),
        default=context.sequence_number,
    )
    return True
