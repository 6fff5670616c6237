"""
Local network interfaces.

Broadcast-capable IPv4 interfaces receive outbound browse packets; the
addresses of all interfaces identify our own announcements.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Optional

import ifaddr

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkInterface:
    name: str
    address: str
    broadcast: str


class InterfaceList:
    """Snapshot of local interfaces, refreshed before each advertisement round."""

    def __init__(self):
        self.interfaces: list[NetworkInterface] = []
        self.addresses: set[str] = set()

    def refresh(self, adapters: Optional[list] = None) -> None:
        """
        Re-read the interface list.

        Args:
            adapters: ifaddr adapters to use instead of querying the system
        """
        if adapters is None:
            try:
                adapters = ifaddr.get_adapters()
            except OSError as e:
                logger.error(f"Unable to get interface addresses: {e}")
                return

        interfaces = []
        addresses = set()
        for adapter in adapters:
            for ip in adapter.ips:
                if isinstance(ip.ip, tuple):
                    address = ipaddress.ip_address(ip.ip[0])
                else:
                    address = ipaddress.ip_address(ip.ip)

                if address.is_loopback:
                    continue
                if address.version == 6:
                    if not address.is_link_local:
                        addresses.add(str(address))
                    continue

                addresses.add(str(address))
                network = ipaddress.ip_network(f"{address}/{ip.network_prefix}", strict=False)
                # Point-to-point links have no broadcast address
                if network.prefixlen >= 31:
                    continue
                interfaces.append(NetworkInterface(
                    name=adapter.nice_name,
                    address=str(address),
                    broadcast=str(network.broadcast_address),
                ))
                logger.debug(f"Network interface at {address}")

        self.interfaces = interfaces
        self.addresses = addresses

    def local_addresses(self) -> set[str]:
        return set(self.addresses)
