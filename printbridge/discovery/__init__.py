"""
Discovery transports.

Each transport turns what it sees on the network into DiscoveryEvents:
multicast DNS-SD, legacy browse packets and BrowsePoll peers.
"""

from .browse_packet import BrowsePacket, BrowsePacketError, format_browse_packet, parse_browse_packet
from .browse_socket import BrowseSocket
from .browsepoll import BrowsePoller
from .subscription import PollContext

__all__ = [
    "BrowsePacket",
    "BrowsePacketError",
    "BrowseSocket",
    "BrowsePoller",
    "PollContext",
    "format_browse_packet",
    "parse_browse_packet",
]
