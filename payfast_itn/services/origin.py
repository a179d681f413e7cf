"""
Origin trust policies.

Decide whether the origin an ITN claims (its Referer) currently belongs to
Payfast. The DNS-backed policy resolves the gateway hostnames at
validation time; the static policy serves fixed tables for tests and for
deployments that pin addresses.

DNS answers can change between resolution and use, and the Referer header
is sender-controlled. Stronger provenance belongs at the transport layer.
"""

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from ipaddress import ip_address
from typing import Dict, Iterable, List, Optional, Set
from urllib.parse import urlparse

from aiohttp.resolver import ThreadedResolver

from ..exceptions import GatewayUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_VALID_HOSTS = [
    'www.payfast.co.za',
    'sandbox.payfast.co.za',
    'w1w.payfast.co.za',
    'w2w.payfast.co.za',
]


def origin_host(origin: Optional[str]) -> Optional[str]:
    """Host part of a Referer URL (or a bare host), or None."""
    if not origin:
        return None

    parsed = urlparse(origin if '//' in origin else f'//{origin}')
    return parsed.hostname or None


class OriginTrustPolicy(ABC):
    """Answers "is this claimed origin currently trusted"."""

    @abstractmethod
    async def trusted_addresses(self) -> Set[str]:
        """
        Current set of trusted IP addresses.

        Raises:
            GatewayUnavailableError: If no trusted host could be resolved
        """

    @abstractmethod
    async def resolve_origin(self, host: str) -> Optional[str]:
        """
        IP address of the claimed origin host, or None if unresolvable.

        Raises:
            GatewayUnavailableError: If resolution timed out
        """


class DnsOriginTrustPolicy(OriginTrustPolicy):
    """
    Resolves the allow-listed gateway hostnames live.

    Uses aiohttp's threaded resolver, each lookup under a timeout. The
    resolver is created on first use, since it binds to the running loop.
    """

    def __init__(
        self,
        valid_hosts: Optional[Iterable[str]] = None,
        timeout: float = 5.0,
        resolver: Optional[ThreadedResolver] = None
    ):
        """
        Initialize the policy.

        Args:
            valid_hosts: Gateway hostnames to trust
            timeout: Timeout in seconds for each DNS lookup
            resolver: Optional resolver (aiohttp ThreadedResolver by default)
        """
        self.valid_hosts = list(valid_hosts or DEFAULT_VALID_HOSTS)
        self.timeout = timeout
        self._resolver = resolver
        self._owns_resolver = resolver is None

    async def _lookup(self, host: str) -> List[str]:
        if self._resolver is None:
            self._resolver = ThreadedResolver()

        records = await asyncio.wait_for(
            self._resolver.resolve(host, 0, socket.AF_INET),
            timeout=self.timeout
        )
        return [record['host'] for record in records]

    async def trusted_addresses(self) -> Set[str]:
        valid_ips: Set[str] = set()
        timed_out = False

        for host in self.valid_hosts:
            try:
                valid_ips.update(await self._lookup(host))
            except asyncio.TimeoutError:
                logger.warning(f"Timeout resolving trusted host {host}")
                timed_out = True
            except OSError as e:
                logger.warning(f"Could not resolve trusted host {host}: {e}")

        if not valid_ips:
            raise GatewayUnavailableError(
                "No trusted Payfast host could be resolved",
                timed_out=timed_out
            )

        return valid_ips

    async def resolve_origin(self, host: str) -> Optional[str]:
        try:
            return str(ip_address(host))
        except ValueError:
            pass

        try:
            addresses = await self._lookup(host)
        except asyncio.TimeoutError:
            raise GatewayUnavailableError(
                f"Timeout resolving origin host {host}",
                timed_out=True
            )
        except OSError as e:
            logger.warning(f"Could not resolve origin host {host}: {e}")
            return None

        return addresses[0] if addresses else None

    async def close(self) -> None:
        if self._resolver is not None and self._owns_resolver:
            await self._resolver.close()
            self._resolver = None


class StaticOriginTrustPolicy(OriginTrustPolicy):
    """
    Trust policy backed by fixed tables.

    Args:
        host_table: Hostname to IP addresses, for every host the policy
            can resolve (trusted hosts and origin hosts alike)
        valid_hosts: Hostnames whose addresses are trusted
    """

    def __init__(
        self,
        host_table: Dict[str, List[str]],
        valid_hosts: Optional[Iterable[str]] = None
    ):
        self.host_table = {host: list(ips) for host, ips in host_table.items()}
        self.valid_hosts = list(valid_hosts or DEFAULT_VALID_HOSTS)

    async def trusted_addresses(self) -> Set[str]:
        valid_ips: Set[str] = set()
        for host in self.valid_hosts:
            valid_ips.update(self.host_table.get(host, []))
        return valid_ips

    async def resolve_origin(self, host: str) -> Optional[str]:
        try:
            return str(ip_address(host))
        except ValueError:
            pass

        addresses = self.host_table.get(host)
        return addresses[0] if addresses else None
