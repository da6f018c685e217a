"""SSRF protection: resolve a hostname and refuse private/internal targets."""

import asyncio
import ipaddress
import logging
import socket
from urllib.parse import urlsplit

from ogpreview.modules.scraper.exceptions import (
    BlockedTargetError,
    InvalidUrlError,
    UnresolvableHostError,
)
from ogpreview.modules.scraper.schemas import ScrapeTarget

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

_PRIVATE_V4_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
)


def is_private_ip(address: str) -> bool:
    """Return ``True`` when *address* is loopback, private or link-local.

    Unparseable addresses are treated as private.
    """
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True

    if isinstance(ip, ipaddress.IPv4Address):
        return any(ip in network for network in _PRIVATE_V4_NETWORKS)

    if ip.ipv4_mapped is not None:
        return is_private_ip(str(ip.ipv4_mapped))
    if ip == ipaddress.IPv6Address("::1"):
        return True
    if ip.exploded.startswith("fe80:"):
        return True
    first_hextet = int(ip) >> 112
    return (first_hextet & 0xFE00) == 0xFC00


async def _resolve_host(hostname: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM)
    return list(dict.fromkeys(info[4][0] for info in infos))


async def resolve_and_guard(url: ScrapeTarget | str) -> None:
    """Raise unless every address *url*'s host resolves to is public."""
    try:
        parts = urlsplit(str(url))
        hostname = parts.hostname
    except ValueError as exc:
        raise InvalidUrlError(f"Invalid URL: {url}") from exc

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise BlockedTargetError("Only http/https URLs are allowed.")

    if not hostname:
        raise UnresolvableHostError("Could not resolve host.")

    try:
        addresses = await _resolve_host(hostname)
    except (socket.gaierror, UnicodeError) as exc:
        raise UnresolvableHostError(f"Could not resolve host: {hostname}") from exc

    if not addresses:
        raise UnresolvableHostError(f"Could not resolve host: {hostname}")

    for address in addresses:
        if is_private_ip(address):
            logger.warning("Blocked %s: %s resolves to %s", url, hostname, address)
            raise BlockedTargetError("Target resolves to a private address (blocked).")
