import logging
import uuid
from datetime import datetime, timezone
from urllib.parse import urlsplit

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ogpreview.config.database import async_session
from ogpreview.modules.persistence.contracts import (
    ClassificationValuesContract,
    MetadataContract,
)
from ogpreview.modules.persistence.models import Domain, Site, SiteMetadata
from ogpreview.modules.persistence.schemas import ClassificationValues
from ogpreview.modules.scraper.schemas import Performance, ScrapedMetadata, ScrapeTarget

logger = logging.getLogger(__name__)

_METADATA_GROUPS = ("basic", "open_graph", "twitter", "structured", "images", "other", "raw")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PersistenceService(MetadataContract, ClassificationValuesContract):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or async_session

    # ── Domains / sites ──────────────────────────────────────────

    @staticmethod
    def _insert(session: AsyncSession, model):
        if session.get_bind().dialect.name == "sqlite":
            return sqlite.insert(model)
        return postgresql.insert(model)

    async def _upsert_domain(self, session: AsyncSession, hostname: str) -> uuid.UUID:
        stmt = (
            self._insert(session, Domain)
            .values(domain=hostname)
            .on_conflict_do_update(
                index_elements=["domain"],
                set_={"updated_at": func.now()},
            )
            .returning(Domain.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one()

    async def _upsert_site(self, session: AsyncSession, url: str, domain_id: uuid.UUID) -> uuid.UUID:
        parts = urlsplit(url)
        path = parts.path + (f"#{parts.fragment}" if parts.fragment else "")
        stmt = (
            self._insert(session, Site)
            .values(url=url, path=path or "/", domain_id=domain_id)
            .on_conflict_do_update(
                index_elements=["url"],
                set_={"updated_at": func.now()},
            )
            .returning(Site.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one()

    # ── Metadata versions ───────────────────────────────────────

    async def save_metadata(
        self,
        target: ScrapeTarget,
        metadata: ScrapedMetadata,
        scraped_at: datetime,
        performance: Performance,
    ) -> bool:
        payload = metadata.model_dump(mode="json", exclude_none=True)

        async with self._session_factory() as session:
            domain_id = await self._upsert_domain(session, target.hostname)
            site_id = await self._upsert_site(session, target.url, domain_id)

            result = await session.execute(
                select(SiteMetadata)
                .where(SiteMetadata.site_id == site_id, SiteMetadata.is_latest.is_(True))
                .order_by(SiteMetadata.version.desc())
                .limit(1)
            )
            latest = result.scalar_one_or_none()

            if latest is not None and self._is_same_version(latest, payload, scraped_at):
                logger.info("Metadata for %s already stored as version %d", target.url, latest.version)
                await session.commit()
                return True

            next_version = 1
            if latest is not None:
                next_version = latest.version + 1
                await session.execute(
                    update(SiteMetadata)
                    .where(SiteMetadata.site_id == site_id)
                    .values(is_latest=False)
                )

            basic = metadata.basic
            open_graph = metadata.open_graph
            session.add(
                SiteMetadata(
                    site_id=site_id,
                    version=next_version,
                    is_latest=True,
                    title=(basic and basic.title) or (open_graph and open_graph.title) or "",
                    description=(
                        (basic and basic.description)
                        or (open_graph and open_graph.description)
                        or ""
                    ),
                    scraped_at=scraped_at,
                    response_time_ms=performance.response_time,
                    content_length=performance.content_length,
                    http_status=performance.http_status,
                    **{group: payload.get(group) for group in _METADATA_GROUPS},
                )
            )
            await session.commit()

        logger.info("Stored metadata version %d for %s", next_version, target.url)
        return True

    @staticmethod
    def _is_same_version(latest: SiteMetadata, payload: dict, scraped_at: datetime) -> bool:
        if _as_utc(latest.scraped_at) != _as_utc(scraped_at):
            return False
        return all(getattr(latest, group) == payload.get(group) for group in _METADATA_GROUPS)

    # ── Classification ──────────────────────────────────────────

    async def get_existing_classification_values(self) -> ClassificationValues:
        async with self._session_factory() as session:

            async def distinct(column) -> list[str]:
                result = await session.execute(
                    select(column).where(column.is_not(None)).distinct().order_by(column)
                )
                return [value for value in result.scalars().all() if value]

            return ClassificationValues(
                industries=await distinct(Site.industry),
                categories=await distinct(Site.category),
                countries=await distinct(Site.country),
                languages=await distinct(Site.language),
                company_sizes=await distinct(Site.company_size),
            )


persistence_service = PersistenceService()
