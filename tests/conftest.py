"""Shared fixtures: no real DNS lookups and no real sleeps in the suite."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

PUBLIC_IP = "93.184.216.34"


@pytest.fixture(autouse=True)
def no_sleep():
    """Skip retry backoff and orchestrator pacing delays."""
    with patch("ogpreview.modules.scraper.fetcher._sleep", AsyncMock()) as fetch_sleep, patch(
        "ogpreview.modules.scraper.service._random_delay", AsyncMock()
    ):
        yield fetch_sleep


@pytest.fixture()
def public_dns():
    """Every hostname resolves to a single public address."""
    with patch(
        "ogpreview.modules.scraper.guard._resolve_host", AsyncMock(return_value=[PUBLIC_IP])
    ) as resolve:
        yield resolve


@pytest.fixture()
def dns_map():
    """Resolve hostnames from a dict the test fills in; unknown hosts resolve publicly."""
    table: dict[str, list[str]] = {}

    async def resolve(hostname: str) -> list[str]:
        return table.get(hostname, [PUBLIC_IP])

    with patch("ogpreview.modules.scraper.guard._resolve_host", side_effect=resolve):
        yield table
