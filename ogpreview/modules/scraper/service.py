import asyncio
import logging
import random
import time
from datetime import datetime, timezone

from ogpreview.config.settings import settings
from ogpreview.modules.image_relay.service import ImageRelayService, image_relay_service
from ogpreview.modules.persistence.contracts import MetadataContract
from ogpreview.modules.persistence.service import persistence_service
from ogpreview.modules.scraper.exceptions import BATCH_PROCESSING_FAILED, ScrapeError
from ogpreview.modules.scraper.extractor import extract_metadata, has_valid_og_image
from ogpreview.modules.scraper.fetcher import HtmlFetcher, html_fetcher
from ogpreview.modules.scraper.normalizer import normalize_url
from ogpreview.modules.scraper.schemas import (
    Performance,
    ScrapedMetadata,
    ScrapeResult,
    ScrapeStatistics,
    ScrapeTarget,
)

logger = logging.getLogger(__name__)

NO_OG_IMAGE_INFO = "No Open Graph image found"


async def _random_delay(min_seconds: float, max_seconds: float) -> None:
    if max_seconds <= 0:
        return
    await asyncio.sleep(random.uniform(min_seconds, max_seconds))


def _dedupe_key(url: str) -> str:
    try:
        return normalize_url(url).url
    except ScrapeError:
        return url


def summarize(results: list[ScrapeResult], total_processing_time: int) -> ScrapeStatistics:
    return ScrapeStatistics(
        successful=sum(1 for r in results if r.success),
        failed=sum(1 for r in results if not r.success),
        saved=sum(1 for r in results if r.saved),
        total_processing_time=total_processing_time,
    )


class ScraperService:
    """Drives normalize → fetch → extract → relay → persist for one or many URLs."""

    def __init__(
        self,
        fetcher: HtmlFetcher | None = None,
        image_relay: ImageRelayService | None = None,
        persistence: MetadataContract | None = None,
        relay_images: bool | None = None,
        require_og_image: bool | None = None,
    ) -> None:
        self._fetcher = fetcher or html_fetcher
        self._image_relay = image_relay or image_relay_service
        self._persistence = persistence or persistence_service
        self._relay_images = settings.image_relay_enabled if relay_images is None else relay_images
        self._require_og_image = (
            settings.require_og_image if require_og_image is None else require_og_image
        )

    # ── Persistence ─────────────────────────────────────────────

    async def _save(
        self,
        target: ScrapeTarget,
        metadata: ScrapedMetadata,
        scraped_at: datetime,
        performance: Performance,
    ) -> bool:
        try:
            return await self._persistence.save_metadata(target, metadata, scraped_at, performance)
        except Exception:
            logger.exception("Failed to save metadata for %s", target)
            return False

    # ── Single URL ──────────────────────────────────────────────

    async def scrape_one(self, url: str) -> ScrapeResult:
        try:
            target = normalize_url(url)
        except ScrapeError as exc:
            return ScrapeResult(
                success=False, url=url, error=exc.code, message=str(exc), status_code=exc.status_code
            )

        try:
            await _random_delay(settings.pre_fetch_delay_min, settings.pre_fetch_delay_max)
            outcome = await self._fetcher.fetch(target)
        except ScrapeError as exc:
            logger.warning("Scraping failed for %s: %s (%s)", target, exc.code, exc)
            return ScrapeResult(
                success=False,
                url=target.url,
                error=exc.code,
                message=str(exc),
                status_code=exc.status_code,
            )

        metadata = extract_metadata(outcome.html, target)
        scraped_at = datetime.now(timezone.utc)
        performance = Performance(
            response_time=outcome.response_time_ms,
            content_length=outcome.content_length,
            http_status=outcome.http_status,
        )

        if self._require_og_image and not has_valid_og_image(metadata):
            logger.info("No Open Graph image on %s, not saving", target)
            return ScrapeResult(
                success=True,
                url=target.url,
                metadata=metadata,
                scraped_at=scraped_at,
                saved=False,
                performance=performance,
                info=NO_OG_IMAGE_INFO,
            )

        if self._relay_images:
            metadata = await self._image_relay.relay(metadata)

        saved = await self._save(target, metadata, scraped_at, performance)
        return ScrapeResult(
            success=True,
            url=target.url,
            metadata=metadata,
            scraped_at=scraped_at,
            saved=saved,
            performance=performance,
        )

    # ── Bulk ────────────────────────────────────────────────────

    async def scrape_many(self, urls: list[str], max_concurrency: int = 1) -> list[ScrapeResult]:
        """Scrape *urls* in sequential batches of *max_concurrency*.

        Duplicates (after normalization) are scraped once. A batch that
        raises is recorded as ``BatchProcessingFailed`` for each of its URLs
        and the remaining batches still run.
        """
        seen: set[str] = set()
        unique_urls: list[str] = []
        for url in urls:
            key = _dedupe_key(url)
            if key not in seen:
                seen.add(key)
                unique_urls.append(url)

        batch_size = max(1, min(max_concurrency, settings.max_bulk_concurrency))
        total_batches = (len(unique_urls) + batch_size - 1) // batch_size
        results: list[ScrapeResult] = []

        logger.info(
            "Starting bulk scrape of %d unique URLs with concurrency %d",
            len(unique_urls), batch_size,
        )

        for index in range(0, len(unique_urls), batch_size):
            batch = unique_urls[index : index + batch_size]
            batch_number = index // batch_size + 1
            logger.info("Processing batch %d/%d (%d URLs)", batch_number, total_batches, len(batch))

            outcomes = await asyncio.gather(
                *(self.scrape_one(url) for url in batch), return_exceptions=True
            )
            errors = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]

            if errors:
                logger.error(
                    "Batch %d failed: %r", batch_number, errors[0], exc_info=errors[0]
                )
                results.extend(
                    ScrapeResult(
                        success=False,
                        url=url,
                        error=BATCH_PROCESSING_FAILED,
                        message="Batch processing failed",
                        status_code=500,
                    )
                    for url in batch
                )
                continue

            results.extend(outcomes)
            successful = sum(1 for r in outcomes if r.success)
            logger.info("Batch %d completed: %d/%d successful", batch_number, successful, len(batch))

            if index + batch_size < len(unique_urls):
                await _random_delay(settings.batch_delay_min, settings.batch_delay_max)

        logger.info(
            "Bulk scrape completed: %d/%d URLs successful",
            sum(1 for r in results if r.success), len(unique_urls),
        )
        return results

    async def scrape_many_with_stats(
        self, urls: list[str], max_concurrency: int = 1
    ) -> tuple[list[ScrapeResult], ScrapeStatistics]:
        started = time.perf_counter()
        results = await self.scrape_many(urls, max_concurrency)
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return results, summarize(results, elapsed_ms)


scraper_service = ScraperService()
