from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ScrapeTarget(BaseModel):
    """A normalized, absolute URL ready to be guarded and fetched."""

    model_config = ConfigDict(frozen=True)

    url: str
    scheme: str
    hostname: str

    def __str__(self) -> str:
        return self.url


class FetchOutcome(BaseModel):
    html: str
    final_url: str
    response_time_ms: int
    content_length: int
    http_status: int


# ── Metadata groups ─────────────────────────────────────────


class RobotsDirectives(BaseModel):
    all: str | None = None
    googlebot: str | None = None
    bingbot: str | None = None


class BasicMetadata(BaseModel):
    title: str | None = None
    description: str | None = None
    keywords: str | None = None
    author: str | None = None
    robots: RobotsDirectives | None = None
    viewport: str | None = None
    charset: str | None = None
    generator: str | None = None
    publisher: str | None = None
    theme_color: str | None = None
    favicon: str | None = None
    canonical: str | None = None


class OpenGraphMetadata(BaseModel):
    title: str | None = None
    description: str | None = None
    type: str | None = None
    url: str | None = None
    site_name: str | None = None
    locale: str | None = None
    locale_alternate: list[str] | None = None
    images: list[str] | None = None
    image_secure_url: list[str] | None = None
    image_type: list[str] | None = None
    image_width: str | None = None
    image_height: str | None = None
    image_alt: str | None = None
    audio: str | None = None
    video: str | None = None
    determiner: str | None = None
    updated_time: str | None = None
    see_also: list[str] | None = None
    article_author: str | None = None
    article_published_time: str | None = None
    article_modified_time: str | None = None
    article_section: str | None = None
    article_tag: list[str] | None = None


class TwitterMetadata(BaseModel):
    card: str | None = None
    site: str | None = None
    site_id: str | None = None
    creator: str | None = None
    creator_id: str | None = None
    title: str | None = None
    description: str | None = None
    images: list[str] | None = None
    image_alt: str | None = None
    app_name_iphone: str | None = None
    app_id_iphone: str | None = None
    app_name_ipad: str | None = None
    app_id_ipad: str | None = None
    app_name_googleplay: str | None = None
    app_id_googleplay: str | None = None


ImageSourceTag = Literal[
    "og:image",
    "twitter:image",
    "icon",
    "shortcut-icon",
    "apple-touch-icon",
    "mask-icon",
    "favicon-default",
]


class ImageSource(BaseModel):
    url: str
    source: ImageSourceTag
    sizes: str | None = None
    type: str | None = None


class OtherMetadata(BaseModel):
    msapplication_tile_color: str | None = None
    msapplication_tile_image: str | None = None
    language: str | None = None
    application_name: str | None = None
    apple_mobile_web_app_title: str | None = None
    apple_mobile_web_app_capable: str | None = None
    apple_mobile_web_app_status_bar_style: str | None = None
    format_detection: str | None = None
    mobile_web_app_capable: str | None = None


class MetaTag(BaseModel):
    name: str | None = None
    property: str | None = None
    content: str | None = None
    charset: str | None = None
    http_equiv: str | None = None


class ScrapedMetadata(BaseModel):
    basic: BasicMetadata | None = None
    open_graph: OpenGraphMetadata | None = None
    twitter: TwitterMetadata | None = None
    structured: list[dict[str, Any]] | None = None
    images: list[ImageSource] | None = None
    other: OtherMetadata | None = None
    raw: list[MetaTag] | None = None


# ── Results ─────────────────────────────────────────────────


class Performance(BaseModel):
    response_time: int
    content_length: int
    http_status: int | None = None


class ScrapeResult(BaseModel):
    success: bool
    url: str
    metadata: ScrapedMetadata | None = None
    scraped_at: datetime | None = None
    saved: bool | None = None
    performance: Performance | None = None
    error: str | None = None
    message: str | None = None
    status_code: int | None = None
    info: str | None = None


class ScrapeStatistics(BaseModel):
    successful: int
    failed: int
    saved: int
    total_processing_time: int


# ── API ─────────────────────────────────────────────────────


class ScrapeRequest(BaseModel):
    key: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1, max_length=2048)


class BulkScrapeRequest(BaseModel):
    key: str = Field(..., min_length=1)
    urls: list[str] = Field(..., min_length=1)
    max_concurrency: int = Field(default=1, ge=1, le=10)


class BulkScrapeResponse(BaseModel):
    success: bool
    total_urls: int
    unique_urls: int
    results: list[ScrapeResult]
    statistics: ScrapeStatistics
