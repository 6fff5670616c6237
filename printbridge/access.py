"""
Source-address filter for inbound legacy browse packets.

Rules come from the ``browse.allow`` configuration list:
    all                  - accept every source
    192.0.2.7            - a single address
    192.0.2.0/24         - a network in prefix notation
    192.0.2.0/255.255.255.0 - a network with a dotted netmask
An empty rule list accepts everything.
"""

import ipaddress
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class RuleType(Enum):
    ALL = "all"
    ADDRESS = "address"
    NETWORK = "network"
    INVALID = "invalid"  # Unparsable value, kept so it shows up in status output


@dataclass
class AccessRule:
    """One parsed allow rule."""

    type: RuleType
    value: str
    address: Optional[IPAddress] = None
    network: Optional[IPNetwork] = None

    def matches(self, source: IPAddress) -> bool:
        if self.type == RuleType.ALL:
            return True
        if self.type == RuleType.ADDRESS:
            return source == self.address
        if self.type == RuleType.NETWORK:
            return source.version == self.network.version and source in self.network
        return False


def parse_allow_value(value: str) -> AccessRule:
    """
    Parse one allow rule.

    Invalid values are logged and become rules that never match.
    """
    value = value.strip()
    if value.lower() == "all":
        return AccessRule(RuleType.ALL, value)

    try:
        if "/" in value:
            network = ipaddress.ip_network(value, strict=False)
            return AccessRule(RuleType.NETWORK, value, network=network)
        return AccessRule(RuleType.ADDRESS, value, address=ipaddress.ip_address(value))
    except ValueError:
        logger.warning(f"Invalid browse.allow value: {value!r}")
        return AccessRule(RuleType.INVALID, value)


class AccessFilter:
    """Decides whether a packet from a given source address is processed."""

    def __init__(self, rules: Optional[Iterable[AccessRule]] = None):
        self.rules: list[AccessRule] = list(rules or [])

    @classmethod
    def from_values(cls, values: Iterable[str]) -> "AccessFilter":
        return cls(parse_allow_value(v) for v in values)

    def allows(self, source: str) -> bool:
        if not self.rules:
            return True

        try:
            address = ipaddress.ip_address(source.split("%", 1)[0])
        except ValueError:
            logger.debug(f"Unparsable source address {source!r}, rejected")
            return False

        # IPv4-mapped IPv6 sources compare against IPv4 rules
        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
            address = address.ipv4_mapped

        return any(rule.matches(address) for rule in self.rules)

    def describe(self) -> list[str]:
        return [f"{rule.type.value}:{rule.value}" for rule in self.rules]
