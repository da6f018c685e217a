"""Tests for versioned metadata storage on an in-memory SQLite database."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ogpreview.config.database import Base
from ogpreview.modules.persistence.models import Domain, Site, SiteMetadata
from ogpreview.modules.persistence.service import PersistenceService
from ogpreview.modules.scraper.normalizer import normalize_url
from ogpreview.modules.scraper.schemas import (
    BasicMetadata,
    OpenGraphMetadata,
    Performance,
    ScrapedMetadata,
)

SCRAPED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
PERFORMANCE = Performance(response_time=250, content_length=2048, http_status=200)


def _metadata(title: str = "Example", image: str = "https://example.com/a.png") -> ScrapedMetadata:
    return ScrapedMetadata(
        basic=BasicMetadata(title=title, favicon="https://example.com/favicon.ico"),
        open_graph=OpenGraphMetadata(title="OG " + title, images=[image]),
    )


@pytest_asyncio.fixture()
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture()
def persistence(session_factory) -> PersistenceService:
    return PersistenceService(session_factory=session_factory)


async def _versions(session_factory) -> list[SiteMetadata]:
    async with session_factory() as session:
        result = await session.execute(select(SiteMetadata).order_by(SiteMetadata.version))
        return list(result.scalars().all())


class TestSaveMetadata:
    @pytest.mark.asyncio
    async def test_first_save_creates_domain_site_and_version(
        self, persistence, session_factory
    ) -> None:
        target = normalize_url("https://www.example.com/blog#top")

        assert await persistence.save_metadata(target, _metadata(), SCRAPED_AT, PERFORMANCE) is True

        async with session_factory() as session:
            domain = (await session.execute(select(Domain))).scalar_one()
            site = (await session.execute(select(Site))).scalar_one()
        assert domain.domain == "example.com"
        assert site.url == "https://example.com/blog#top"
        assert site.path == "/blog#top"
        assert site.domain_id == domain.id

        [version] = await _versions(session_factory)
        assert version.version == 1
        assert version.is_latest is True
        assert version.title == "Example"
        assert version.open_graph == {"title": "OG Example", "images": ["https://example.com/a.png"]}
        assert version.twitter is None
        assert version.response_time_ms == 250
        assert version.http_status == 200

    @pytest.mark.asyncio
    async def test_new_scrape_adds_next_version(self, persistence, session_factory) -> None:
        target = normalize_url("https://example.com/")

        await persistence.save_metadata(target, _metadata(), SCRAPED_AT, PERFORMANCE)
        await persistence.save_metadata(
            target, _metadata(title="Changed"), SCRAPED_AT + timedelta(days=1), PERFORMANCE
        )

        first, second = await _versions(session_factory)
        assert (first.version, first.is_latest) == (1, False)
        assert (second.version, second.is_latest) == (2, True)
        assert second.title == "Changed"

    @pytest.mark.asyncio
    async def test_identical_retry_is_a_no_op(self, persistence, session_factory) -> None:
        target = normalize_url("https://example.com/")

        assert await persistence.save_metadata(target, _metadata(), SCRAPED_AT, PERFORMANCE)
        assert await persistence.save_metadata(target, _metadata(), SCRAPED_AT, PERFORMANCE)

        versions = await _versions(session_factory)
        assert [v.version for v in versions] == [1]

    @pytest.mark.asyncio
    async def test_same_payload_later_scrape_is_a_new_version(
        self, persistence, session_factory
    ) -> None:
        target = normalize_url("https://example.com/")

        await persistence.save_metadata(target, _metadata(), SCRAPED_AT, PERFORMANCE)
        await persistence.save_metadata(
            target, _metadata(), SCRAPED_AT + timedelta(hours=1), PERFORMANCE
        )

        assert [v.version for v in await _versions(session_factory)] == [1, 2]

    @pytest.mark.asyncio
    async def test_pages_share_a_domain(self, persistence, session_factory) -> None:
        await persistence.save_metadata(
            normalize_url("https://example.com/a"), _metadata(), SCRAPED_AT, PERFORMANCE
        )
        await persistence.save_metadata(
            normalize_url("https://example.com/b"), _metadata(), SCRAPED_AT, PERFORMANCE
        )

        async with session_factory() as session:
            domains = (await session.execute(select(func.count()).select_from(Domain))).scalar_one()
            sites = (await session.execute(select(func.count()).select_from(Site))).scalar_one()
        assert (domains, sites) == (1, 2)

    @pytest.mark.asyncio
    async def test_rows_written_by_another_writer_are_reused(
        self, persistence, session_factory
    ) -> None:
        async with session_factory() as session:
            domain = Domain(domain="example.com")
            session.add(domain)
            await session.flush()
            site = Site(url="https://example.com/a", path="/a", domain_id=domain.id)
            session.add(site)
            await session.commit()
            domain_id, site_id = domain.id, site.id

        saved = await persistence.save_metadata(
            normalize_url("https://example.com/a"), _metadata(), SCRAPED_AT, PERFORMANCE
        )

        assert saved is True
        [version] = await _versions(session_factory)
        assert version.site_id == site_id
        async with session_factory() as session:
            assert (await session.execute(select(Domain.id))).scalars().all() == [domain_id]
            assert (await session.execute(select(Site.id))).scalars().all() == [site_id]

    @pytest.mark.asyncio
    async def test_title_falls_back_to_open_graph(self, persistence, session_factory) -> None:
        metadata = ScrapedMetadata(
            open_graph=OpenGraphMetadata(
                title="Only OG", description="OG text", images=["https://example.com/a.png"]
            )
        )

        await persistence.save_metadata(
            normalize_url("https://example.com/"), metadata, SCRAPED_AT, PERFORMANCE
        )

        [version] = await _versions(session_factory)
        assert version.title == "Only OG"
        assert version.description == "OG text"
        assert version.basic is None


class TestClassificationValues:
    @pytest.mark.asyncio
    async def test_empty_database(self, persistence) -> None:
        values = await persistence.get_existing_classification_values()
        assert values.industries == []
        assert values.company_sizes == []

    @pytest.mark.asyncio
    async def test_distinct_non_null_values(self, persistence, session_factory) -> None:
        async with session_factory() as session:
            domain = Domain(domain="example.com")
            session.add(domain)
            await session.flush()
            session.add_all(
                [
                    Site(url="https://example.com/a", domain_id=domain.id, industry="Media", country="DE"),
                    Site(url="https://example.com/b", domain_id=domain.id, industry="Media", country="FR"),
                    Site(url="https://example.com/c", domain_id=domain.id, industry="Retail"),
                    Site(url="https://example.com/d", domain_id=domain.id, language="en"),
                ]
            )
            await session.commit()

        values = await persistence.get_existing_classification_values()

        assert values.industries == ["Media", "Retail"]
        assert values.countries == ["DE", "FR"]
        assert values.languages == ["en"]
        assert values.categories == []
