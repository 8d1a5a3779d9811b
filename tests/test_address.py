"""Tests for the outbound address policy."""

import ipaddress

import pytest

from backupalert.core.errors import (
    BlockedAddressError,
    DNSResolutionError,
    InvalidURLError,
)
from backupalert.security.address import BLOCKED_NETWORKS, is_blocked_ip, validate_url


def resolver_for(*addresses: str):
    calls: list[str] = []

    async def resolve(host: str) -> list[str]:
        calls.append(host)
        return list(addresses)

    resolve.calls = calls
    return resolve


@pytest.mark.parametrize(
    "address",
    [
        "127.0.0.1",
        "127.255.0.9",
        "10.0.0.1",
        "172.16.5.4",
        "172.31.255.255",
        "192.168.1.1",
        "169.254.169.254",
        "::1",
        "0.0.0.0",
        "::",
        "::ffff:127.0.0.1",
        "::ffff:10.1.2.3",
    ],
)
def test_private_loopback_link_local_and_unspecified_are_blocked(address: str) -> None:
    assert is_blocked_ip(address)
    assert is_blocked_ip(ipaddress.ip_address(address))


@pytest.mark.parametrize("address", ["8.8.8.8", "93.184.216.34", "172.32.0.1", "2606:4700::1111"])
def test_public_addresses_are_allowed(address: str) -> None:
    assert not is_blocked_ip(address)


def test_unparseable_address_is_blocked() -> None:
    assert is_blocked_ip("not-an-ip")


def test_blocked_table_is_immutable() -> None:
    assert isinstance(BLOCKED_NETWORKS, tuple)
    assert ipaddress.ip_network("169.254.0.0/16") in BLOCKED_NETWORKS


@pytest.mark.asyncio
@pytest.mark.parametrize("url", ["", "   ", "ftp://example.com/x", "file:///etc/passwd", "http://", "example.com"])
async def test_invalid_urls_are_rejected(url: str) -> None:
    with pytest.raises(InvalidURLError):
        await validate_url(url, resolver=resolver_for("93.184.216.34"))


@pytest.mark.asyncio
async def test_http_rejected_when_https_required() -> None:
    with pytest.raises(InvalidURLError, match="https"):
        await validate_url("http://example.com/hook", require_https=True, resolver=resolver_for("93.184.216.34"))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url",
    ["http://127.0.0.1/hook", "http://10.0.0.1/hook", "http://169.254.169.254/latest/meta-data", "http://[::1]:8080/"],
)
async def test_ip_literals_in_blocked_ranges_are_rejected(url: str) -> None:
    resolve = resolver_for("93.184.216.34")
    with pytest.raises(BlockedAddressError, match="blocked"):
        await validate_url(url, resolver=resolve)
    assert resolve.calls == []


@pytest.mark.asyncio
async def test_any_blocked_resolved_address_rejects() -> None:
    with pytest.raises(BlockedAddressError, match="blocked"):
        await validate_url("https://mixed.example/hook", resolver=resolver_for("93.184.216.34", "10.0.0.5"))


@pytest.mark.asyncio
async def test_public_host_passes() -> None:
    resolve = resolver_for("93.184.216.34")
    await validate_url("https://example.com/hook", require_https=True, resolver=resolve)
    assert resolve.calls == ["example.com"]


@pytest.mark.asyncio
async def test_resolution_failure_fails_closed() -> None:
    async def broken(host: str) -> list[str]:
        raise OSError("temporary failure in name resolution")

    with pytest.raises(DNSResolutionError):
        await validate_url("https://unresolvable.example/hook", resolver=broken)


@pytest.mark.asyncio
async def test_empty_resolution_fails_closed() -> None:
    with pytest.raises(DNSResolutionError):
        await validate_url("https://empty.example/hook", resolver=resolver_for())
