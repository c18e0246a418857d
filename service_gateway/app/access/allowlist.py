"""
Source-address allow-list for the gateway listener.
"""

import ipaddress
from enum import Enum
from typing import Iterable, List, Optional, Tuple, Union

from shared.errors import ConfigurationError
from shared.logging import get_logger

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class AccessDecision(Enum):
    """Outcome of an allow-list evaluation."""
    ALLOW = "allow"
    DENY = "deny"


class AllowListFilter:
    """Static set of CIDR ranges guarding the whole gateway.

    The list is fixed at construction time and shared by every route.
    An empty list permits nothing.
    """

    def __init__(self, cidrs: Iterable[str]):
        self.logger = get_logger("gateway.allowlist")
        self._networks: Tuple[IPNetwork, ...] = tuple(self._parse(cidr) for cidr in cidrs)
        if not self._networks:
            self.logger.warning("Allow-list is empty, every request will be rejected")

    @staticmethod
    def _parse(cidr: str) -> IPNetwork:
        try:
            return ipaddress.ip_network(cidr.strip(), strict=False)
        except ValueError as exc:
            raise ConfigurationError(
                f"Invalid CIDR in allow-list: {cidr!r}",
                details={"cidr": cidr},
            ) from exc

    @property
    def cidrs(self) -> List[str]:
        return [str(network) for network in self._networks]

    def evaluate(self, source_address: Optional[str]) -> AccessDecision:
        """Return ALLOW if the address falls in any configured range."""
        if not source_address:
            return AccessDecision.DENY
        try:
            address = ipaddress.ip_address(source_address.strip())
        except ValueError:
            self.logger.debug("Unparseable source address", source_address=source_address)
            return AccessDecision.DENY

        # IPv4-mapped IPv6 peers are matched against IPv4 ranges
        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
            address = address.ipv4_mapped

        for network in self._networks:
            if address.version == network.version and address in network:
                return AccessDecision.ALLOW
        return AccessDecision.DENY

    def is_allowed(self, source_address: Optional[str]) -> bool:
        return self.evaluate(source_address) is AccessDecision.ALLOW
