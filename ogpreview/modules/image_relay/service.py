import asyncio
import hashlib
import logging
import mimetypes
import re
import time
from pathlib import PurePosixPath
from urllib.parse import urlsplit

import httpx

from ogpreview.config.settings import settings
from ogpreview.modules.image_relay.schemas import DownloadedImage, ImageUploadResult
from ogpreview.modules.image_relay.storage import (
    ObjectStorage,
    StorageNotConfiguredError,
    cdn_storage,
)
from ogpreview.modules.scraper.exceptions import ScrapeError
from ogpreview.modules.scraper.guard import resolve_and_guard
from ogpreview.modules.scraper.schemas import ScrapedMetadata

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; OGPreview/1.0; +https://ogpreview.co)"
DEFAULT_EXTENSION = "jpg"

_EXTENSION_RE = re.compile(r"^[a-z0-9]{2,5}$")


class ImageRejectedError(ValueError):
    pass


def _extension(url: str, content_type: str | None = None) -> str:
    suffix = PurePosixPath(urlsplit(url).path).suffix.lower().lstrip(".")
    if _EXTENSION_RE.match(suffix):
        return suffix
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";", 1)[0].strip())
        if guessed:
            return guessed.lstrip(".")
    return DEFAULT_EXTENSION


def generate_filename(original_url: str, content_type: str | None = None) -> str:
    """Collision-resistant name: URL digest, millisecond timestamp, extension."""
    digest = hashlib.sha256(original_url.encode("utf-8")).hexdigest()[:16]
    timestamp = int(time.time() * 1000)
    return f"{digest}_{timestamp}.{_extension(original_url, content_type)}"


def _is_valid_url(url: str) -> bool:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)


async def _guard_request(request: httpx.Request) -> None:
    await resolve_and_guard(str(request.url))


class ImageRelayService:
    """Re-hosts preview images on the CDN and rewrites metadata to point at them."""

    def __init__(
        self,
        storage: ObjectStorage | None = None,
        concurrency: int | None = None,
        timeout: float | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self._storage = storage or cdn_storage
        self._concurrency = max(1, concurrency or settings.image_relay_concurrency)
        self._timeout = timeout or settings.image_fetch_timeout
        self._max_bytes = max_bytes or settings.max_image_bytes

    # ── Download / upload ───────────────────────────────────────

    async def _download(self, url: str) -> DownloadedImage:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            event_hooks={"request": [_guard_request]},
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()

                content_type = response.headers.get("content-type", "application/octet-stream")
                if not content_type.lower().startswith("image/"):
                    raise ImageRejectedError(f"Not an image: {content_type}")

                received = 0
                chunks: list[bytes] = []
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self._max_bytes:
                        raise ImageRejectedError("Image too large")
                    chunks.append(chunk)

        return DownloadedImage(data=b"".join(chunks), content_type=content_type)

    async def _process(self, url: str) -> ImageUploadResult:
        try:
            image = await self._download(url)
            filename = generate_filename(url, image.content_type)
            cdn_url = await self._storage.upload(image.data, filename, image.content_type)
        except (
            ScrapeError,
            httpx.HTTPError,
            httpx.InvalidURL,
            ImageRejectedError,
            StorageNotConfiguredError,
        ) as exc:
            logger.warning("Failed to process image %s: %s", url, exc)
            return ImageUploadResult(success=False, original_url=url, error=str(exc))
        return ImageUploadResult(success=True, original_url=url, cdn_url=cdn_url)

    # ── Metadata rewriting ──────────────────────────────────────

    @staticmethod
    def _collect_urls(metadata: ScrapedMetadata) -> list[str]:
        urls: list[str] = []
        if metadata.open_graph:
            urls.extend(metadata.open_graph.images or [])
            urls.extend(metadata.open_graph.image_secure_url or [])
        if metadata.twitter:
            urls.extend(metadata.twitter.images or [])
        if metadata.basic and metadata.basic.favicon:
            urls.append(metadata.basic.favicon)
        return [url for url in dict.fromkeys(urls) if _is_valid_url(url)]

    @staticmethod
    def _substitute(metadata: ScrapedMetadata, mapping: dict[str, str]) -> ScrapedMetadata:
        def swap(urls: list[str] | None) -> list[str] | None:
            return [mapping.get(url, url) for url in urls] if urls else urls

        updates: dict = {}
        if metadata.open_graph:
            updates["open_graph"] = metadata.open_graph.model_copy(
                update={
                    "images": swap(metadata.open_graph.images),
                    "image_secure_url": swap(metadata.open_graph.image_secure_url),
                }
            )
        if metadata.twitter:
            updates["twitter"] = metadata.twitter.model_copy(
                update={"images": swap(metadata.twitter.images)}
            )
        if metadata.basic and metadata.basic.favicon:
            updates["basic"] = metadata.basic.model_copy(
                update={"favicon": mapping.get(metadata.basic.favicon, metadata.basic.favicon)}
            )
        if metadata.images:
            updates["images"] = [
                image.model_copy(update={"url": mapping.get(image.url, image.url)})
                for image in metadata.images
            ]
        return metadata.model_copy(update=updates)

    # ── Public API ──────────────────────────────────────────────

    async def relay(self, metadata: ScrapedMetadata) -> ScrapedMetadata:
        """Upload every referenced image; failed ones keep their original URL.

        Never raises: any unexpected error returns *metadata* unchanged.
        """
        try:
            urls = self._collect_urls(metadata)
            if not urls:
                return metadata

            logger.info("Relaying %d images to CDN", len(urls))
            semaphore = asyncio.Semaphore(self._concurrency)

            async def relay_one(url: str) -> ImageUploadResult:
                async with semaphore:
                    return await self._process(url)

            results = await asyncio.gather(*(relay_one(url) for url in urls))
            mapping = {r.original_url: r.cdn_url for r in results if r.success and r.cdn_url}
            logger.info("Image relay complete: %d/%d uploaded", len(mapping), len(urls))
            if not mapping:
                return metadata
            return self._substitute(metadata, mapping)
        except Exception:
            logger.exception("Error processing metadata images")
            return metadata


image_relay_service = ImageRelayService()
