"""Tests for the SSRF guard.

DNS is never hit: ``_resolve_host`` is patched to return fixed addresses.
"""

from __future__ import annotations

import socket
from unittest.mock import AsyncMock, patch

import pytest

from ogpreview.modules.scraper.exceptions import (
    BlockedTargetError,
    InvalidUrlError,
    UnresolvableHostError,
)
from ogpreview.modules.scraper.guard import is_private_ip, resolve_and_guard

RESOLVE = "ogpreview.modules.scraper.guard._resolve_host"


class TestIsPrivateIp:
    @pytest.mark.parametrize(
        "address",
        [
            "10.0.0.1",
            "10.255.255.255",
            "172.16.0.1",
            "172.31.255.254",
            "192.168.1.1",
            "127.0.0.1",
            "127.8.8.8",
            "169.254.169.254",
            "::1",
            "fe80::1",
            "fe80::abcd%eth0",
            "fc00::1",
            "fd12:3456:789a::1",
            "::ffff:10.0.0.1",
            "::ffff:127.0.0.1",
        ],
    )
    def test_private_addresses(self, address: str) -> None:
        assert is_private_ip(address) is True

    @pytest.mark.parametrize(
        "address",
        [
            "93.184.216.34",
            "8.8.8.8",
            "172.15.255.255",
            "172.32.0.1",
            "192.169.0.1",
            "2606:2800:220:1:248:1893:25c8:1946",
            "::ffff:93.184.216.34",
        ],
    )
    def test_public_addresses(self, address: str) -> None:
        assert is_private_ip(address) is False

    def test_unparseable_address_is_treated_as_private(self) -> None:
        assert is_private_ip("not-an-ip") is True


class TestResolveAndGuard:
    @pytest.mark.asyncio
    async def test_accepts_public_host(self) -> None:
        with patch(RESOLVE, AsyncMock(return_value=["93.184.216.34"])) as resolve:
            await resolve_and_guard("https://example.com/")
        resolve.assert_awaited_once_with("example.com")

    @pytest.mark.asyncio
    async def test_blocks_private_resolution(self) -> None:
        with patch(RESOLVE, AsyncMock(return_value=["127.0.0.1"])):
            with pytest.raises(BlockedTargetError) as exc_info:
                await resolve_and_guard("http://localtest.me/")
        assert str(exc_info.value) == "Target resolves to a private address (blocked)."
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_blocks_when_any_address_is_private(self) -> None:
        with patch(RESOLVE, AsyncMock(return_value=["93.184.216.34", "10.1.2.3"])):
            with pytest.raises(BlockedTargetError):
                await resolve_and_guard("https://mixed.example.com/")

    @pytest.mark.asyncio
    async def test_blocks_private_ipv6(self) -> None:
        with patch(RESOLVE, AsyncMock(return_value=["fd00::5"])):
            with pytest.raises(BlockedTargetError):
                await resolve_and_guard("https://v6.example.com/")

    @pytest.mark.parametrize("url", ["ftp://example.com/file", "file:///etc/passwd", "gopher://x/"])
    @pytest.mark.asyncio
    async def test_rejects_non_http_schemes(self, url: str) -> None:
        with patch(RESOLVE, AsyncMock()) as resolve:
            with pytest.raises(BlockedTargetError):
                await resolve_and_guard(url)
        resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_resolution_is_unresolvable(self) -> None:
        with patch(RESOLVE, AsyncMock(return_value=[])):
            with pytest.raises(UnresolvableHostError) as exc_info:
                await resolve_and_guard("https://nowhere.example/")
        assert exc_info.value.code == "UnresolvableHost"

    @pytest.mark.asyncio
    async def test_dns_failure_is_unresolvable(self) -> None:
        with patch(RESOLVE, AsyncMock(side_effect=socket.gaierror("Name or service not known"))):
            with pytest.raises(UnresolvableHostError):
                await resolve_and_guard("https://does-not-exist.invalid/")

    @pytest.mark.asyncio
    async def test_missing_host_is_unresolvable(self) -> None:
        with pytest.raises(UnresolvableHostError):
            await resolve_and_guard("https:///path-only")

    @pytest.mark.asyncio
    async def test_malformed_url_is_invalid(self) -> None:
        with patch(RESOLVE, AsyncMock()) as resolve:
            with pytest.raises(InvalidUrlError):
                await resolve_and_guard("http://[oops/")
        resolve.assert_not_awaited()
