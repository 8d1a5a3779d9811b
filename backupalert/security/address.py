"""Outbound destination address policy (SSRF defense)."""

import asyncio
import ipaddress
import socket
from collections.abc import Awaitable, Callable
from urllib.parse import urlsplit

from backupalert.core.errors import (
    BlockedAddressError,
    DNSResolutionError,
    InvalidURLError,
)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
Resolver = Callable[[str], Awaitable[list[str]]]

# Built once at import and never mutated.
BLOCKED_NETWORKS: tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...] = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "::1/128",
    )
)

ALLOWED_SCHEMES = frozenset({"http", "https"})


def is_blocked_ip(ip: IPAddress | str) -> bool:
    """Check an address against the blocked table.

    Unparseable input counts as blocked. IPv4-mapped IPv6 addresses are
    checked by their IPv4 form.
    """
    if isinstance(ip, str):
        try:
            ip = ipaddress.ip_address(ip.split("%", 1)[0])
        except ValueError:
            return True

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    if ip.is_unspecified:
        return True

    return any(ip.version == net.version and ip in net for net in BLOCKED_NETWORKS)


async def resolve_host(host: str, port: int | None = None) -> list[str]:
    """Resolve a host name to its addresses without blocking the event loop.

    Raises:
        DNSResolutionError: If resolution fails or returns nothing
    """
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError) as e:
        raise DNSResolutionError(f"failed to resolve host {host}: {e}") from e

    addresses: list[str] = []
    for info in infos:
        address = str(info[4][0])
        if address not in addresses:
            addresses.append(address)

    if not addresses:
        raise DNSResolutionError(f"no addresses found for host {host}")
    return addresses


async def validate_url(
    url: str,
    require_https: bool = False,
    resolver: Resolver | None = None,
) -> None:
    """Validate that a URL is safe to contact.

    Args:
        url: Destination URL
        require_https: Reject plain http when set
        resolver: Async host resolver, defaults to the system resolver

    Raises:
        InvalidURLError: Empty input, bad scheme or missing host
        DNSResolutionError: Host does not resolve
        BlockedAddressError: Any resolved address is blocked
    """
    candidate = (url or "").strip()
    if not candidate:
        raise InvalidURLError("URL is required")

    try:
        parts = urlsplit(candidate)
        host = parts.hostname or ""
    except ValueError as e:
        raise InvalidURLError(f"invalid URL: {e}") from e

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidURLError(f"URL scheme must be http or https, got {scheme or 'none'}")
    if require_https and scheme != "https":
        raise InvalidURLError("URL must use https")
    if not host:
        raise InvalidURLError("URL must include a host")

    try:
        literal: IPAddress | None = ipaddress.ip_address(host)
    except ValueError:
        literal = None

    if literal is not None:
        addresses = [str(literal)]
    else:
        resolve = resolver or resolve_host
        try:
            addresses = await resolve(host)
        except DNSResolutionError:
            raise
        except OSError as e:
            raise DNSResolutionError(f"failed to resolve host {host}: {e}") from e
        if not addresses:
            raise DNSResolutionError(f"no addresses found for host {host}")

    for address in addresses:
        if is_blocked_ip(address):
            raise BlockedAddressError(f"destination {host} resolves to blocked address {address}")
