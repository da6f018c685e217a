"""Metadata extraction: turns fetched HTML into a :class:`ScrapedMetadata`."""

import json
import logging
from typing import Any
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag

from ogpreview.modules.scraper.schemas import ScrapedMetadata, ScrapeTarget

logger = logging.getLogger(__name__)

DEFAULT_FAVICON_PATH = "/favicon.ico"

_FAVICON_SELECTORS = (
    'link[rel="icon"][type="image/svg+xml"]',
    'link[rel="icon"][sizes~="32x32"]',
    'link[rel="icon"][sizes~="16x16"]',
    'link[rel="icon"]',
    'link[rel="shortcut icon"]',
)

_ICON_LINK_SELECTOR = (
    'link[rel="icon"], link[rel="shortcut icon"], '
    'link[rel^="apple-touch-icon"], link[rel="mask-icon"]'
)


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------

def resolve_url(url: str, base_url: ScrapeTarget | str) -> str:
    """Resolve *url* against *base_url*; never raises."""
    if not url:
        return ""
    base = str(base_url)
    try:
        if url.startswith(("http://", "https://")):
            return url
        if url.startswith("//"):
            return f"{urlsplit(base).scheme}:{url}"
        return urljoin(base, url)
    except ValueError:
        return url


def resolve_urls(urls: list[str], base_url: ScrapeTarget | str) -> list[str]:
    return [resolve_url(url, base_url) for url in urls]


# ---------------------------------------------------------------------------
# Pruning
# ---------------------------------------------------------------------------

def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (dict, list)) and not value)


def _clean_value(value: Any) -> Any:
    if isinstance(value, dict):
        return clean_object(value)
    if isinstance(value, list):
        cleaned = (_clean_value(item) for item in value)
        return [item for item in cleaned if not _is_empty(item)]
    return value


def clean_object(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *data* without null, empty-string or empty containers.

    Dicts are cleaned recursively; list elements are cleaned and the empty
    ones dropped. A key whose value ends up empty is removed.
    """
    cleaned: dict[str, Any] = {}
    for key, value in data.items():
        value = _clean_value(value)
        if not _is_empty(value):
            cleaned[key] = value
    return cleaned


# ---------------------------------------------------------------------------
# Tag readers
# ---------------------------------------------------------------------------

def _meta(soup: BeautifulSoup, selector: str) -> str | None:
    tag = soup.select_one(selector)
    if tag is None:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


def _all_meta(soup: BeautifulSoup, selector: str) -> list[str]:
    values = ((tag.get("content") or "").strip() for tag in soup.select(selector))
    return [value for value in values if value]


def _either(key: str) -> str:
    return f'meta[name="{key}"], meta[property="{key}"]'


def _attr(tag: Tag, name: str) -> str | None:
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return value or None


# ---------------------------------------------------------------------------
# Group extractors
# ---------------------------------------------------------------------------

def _find_favicon(soup: BeautifulSoup, base_url: ScrapeTarget) -> str:
    for selector in _FAVICON_SELECTORS:
        tag = soup.select_one(selector)
        href = (tag.get("href") or "").strip() if tag is not None else ""
        if href:
            return resolve_url(href, base_url)
    return resolve_url(DEFAULT_FAVICON_PATH, base_url)


def extract_basic(soup: BeautifulSoup, base_url: ScrapeTarget) -> dict[str, Any]:
    title_tag = soup.find("title")
    charset_tag = soup.find("meta", charset=True)
    canonical_tag = soup.select_one('link[rel="canonical"]')
    canonical = (canonical_tag.get("href") or "").strip() if canonical_tag is not None else ""

    return {
        "title": title_tag.get_text(strip=True) if title_tag else None,
        "description": _meta(soup, 'meta[name="description"]'),
        "keywords": _meta(soup, 'meta[name="keywords"]'),
        "author": _meta(soup, 'meta[name="author"]'),
        "robots": {
            "all": _meta(soup, 'meta[name="robots"]'),
            "googlebot": _meta(soup, 'meta[name="googlebot"]'),
            "bingbot": _meta(soup, 'meta[name="bingbot"]'),
        },
        "viewport": _meta(soup, 'meta[name="viewport"]'),
        "charset": charset_tag.get("charset") if charset_tag else None,
        "generator": _meta(soup, 'meta[name="generator"]'),
        "publisher": _meta(soup, 'meta[name="publisher"]'),
        "theme_color": _meta(soup, 'meta[name="theme-color"]'),
        "favicon": _find_favicon(soup, base_url),
        "canonical": resolve_url(canonical, base_url) if canonical else None,
    }


def extract_open_graph(soup: BeautifulSoup, base_url: ScrapeTarget) -> dict[str, Any]:
    def og(key: str) -> str | None:
        return _meta(soup, f'meta[property="{key}"]')

    def og_all(key: str) -> list[str]:
        return _all_meta(soup, f'meta[property="{key}"]')

    return {
        "title": og("og:title"),
        "description": og("og:description"),
        "type": og("og:type"),
        "url": og("og:url"),
        "site_name": og("og:site_name"),
        "locale": og("og:locale"),
        "locale_alternate": og_all("og:locale:alternate"),
        "images": resolve_urls(og_all("og:image"), base_url),
        "image_secure_url": resolve_urls(og_all("og:image:secure_url"), base_url),
        "image_type": og_all("og:image:type"),
        "image_width": og("og:image:width"),
        "image_height": og("og:image:height"),
        "image_alt": og("og:image:alt"),
        "audio": og("og:audio"),
        "video": og("og:video"),
        "determiner": og("og:determiner"),
        "updated_time": og("og:updated_time"),
        "see_also": resolve_urls(og_all("og:see_also"), base_url),
        "article_author": og("article:author"),
        "article_published_time": og("article:published_time"),
        "article_modified_time": og("article:modified_time"),
        "article_section": og("article:section"),
        "article_tag": og_all("article:tag"),
    }


def extract_twitter(soup: BeautifulSoup, base_url: ScrapeTarget) -> dict[str, Any]:
    images = [
        *_all_meta(soup, 'meta[name="twitter:image"]'),
        *_all_meta(soup, 'meta[property="twitter:image"]'),
        *_all_meta(soup, 'meta[name="twitter:image:src"]'),
        *_all_meta(soup, 'meta[property="twitter:image:src"]'),
    ]

    return {
        "card": _meta(soup, _either("twitter:card")),
        "site": _meta(soup, _either("twitter:site")),
        "site_id": _meta(soup, _either("twitter:site:id")),
        "creator": _meta(soup, _either("twitter:creator")),
        "creator_id": _meta(soup, _either("twitter:creator:id")),
        "title": _meta(soup, _either("twitter:title")),
        "description": _meta(soup, _either("twitter:description")),
        "images": resolve_urls(images, base_url),
        "image_alt": _meta(soup, _either("twitter:image:alt")),
        "app_name_iphone": _meta(soup, 'meta[name="twitter:app:name:iphone"]'),
        "app_id_iphone": _meta(soup, 'meta[name="twitter:app:id:iphone"]'),
        "app_name_ipad": _meta(soup, 'meta[name="twitter:app:name:ipad"]'),
        "app_id_ipad": _meta(soup, 'meta[name="twitter:app:id:ipad"]'),
        "app_name_googleplay": _meta(soup, 'meta[name="twitter:app:name:googleplay"]'),
        "app_id_googleplay": _meta(soup, 'meta[name="twitter:app:id:googleplay"]'),
    }


def extract_structured(soup: BeautifulSoup) -> list[dict[str, Any]]:
    """Parse every JSON-LD block; malformed blocks are skipped."""
    documents: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        text = script.string if script.string is not None else script.get_text()
        try:
            parsed = json.loads(text)
        except (TypeError, ValueError):
            logger.debug("Skipping malformed JSON-LD block")
            continue
        if isinstance(parsed, dict):
            documents.append(parsed)
        elif isinstance(parsed, list):
            documents.extend(item for item in parsed if isinstance(item, dict))
    return documents


def extract_other(soup: BeautifulSoup, base_url: ScrapeTarget) -> dict[str, Any]:
    tile_image = _meta(soup, 'meta[name="msapplication-TileImage"]')
    html_tag = soup.find("html")

    return {
        "msapplication_tile_color": _meta(soup, 'meta[name="msapplication-TileColor"]'),
        "msapplication_tile_image": resolve_url(tile_image, base_url) if tile_image else None,
        "language": _attr(html_tag, "lang") if html_tag is not None else None,
        "application_name": _meta(soup, 'meta[name="application-name"]'),
        "apple_mobile_web_app_title": _meta(soup, 'meta[name="apple-mobile-web-app-title"]'),
        "apple_mobile_web_app_capable": _meta(soup, 'meta[name="apple-mobile-web-app-capable"]'),
        "apple_mobile_web_app_status_bar_style": _meta(
            soup, 'meta[name="apple-mobile-web-app-status-bar-style"]'
        ),
        "format_detection": _meta(soup, 'meta[name="format-detection"]'),
        "mobile_web_app_capable": _meta(soup, 'meta[name="mobile-web-app-capable"]'),
    }


def _icon_source(rel: str) -> str:
    rel = rel.lower()
    if "apple-touch-icon" in rel:
        return "apple-touch-icon"
    if "shortcut" in rel:
        return "shortcut-icon"
    if "mask" in rel:
        return "mask-icon"
    return "icon"


def extract_images(
    soup: BeautifulSoup,
    base_url: ScrapeTarget,
    og_images: list[str],
    twitter_images: list[str],
) -> list[dict[str, Any]]:
    """Collect preview images and icons, deduplicated by resolved URL."""
    images: list[dict[str, Any]] = []

    for url in og_images:
        if url.strip():
            images.append({"url": resolve_url(url, base_url), "source": "og:image"})
    for url in twitter_images:
        if url.strip():
            images.append({"url": resolve_url(url, base_url), "source": "twitter:image"})

    for link in soup.select(_ICON_LINK_SELECTOR):
        href = (link.get("href") or "").strip()
        if not href:
            continue
        images.append(
            {
                "url": resolve_url(href, base_url),
                "source": _icon_source(_attr(link, "rel") or ""),
                "sizes": _attr(link, "sizes"),
                "type": _attr(link, "type"),
            }
        )

    if not any("icon" in image["source"] for image in images):
        images.append(
            {"url": resolve_url(DEFAULT_FAVICON_PATH, base_url), "source": "favicon-default"}
        )

    seen: set[str] = set()
    unique: list[dict[str, Any]] = []
    for image in images:
        if image["url"] not in seen:
            seen.add(image["url"])
            unique.append(image)
    return unique


def extract_raw(soup: BeautifulSoup) -> list[dict[str, str]]:
    tags: list[dict[str, str]] = []
    for meta in soup.find_all("meta"):
        entry = {
            "name": _attr(meta, "name"),
            "property": _attr(meta, "property"),
            "content": _attr(meta, "content"),
            "charset": _attr(meta, "charset"),
            "http_equiv": _attr(meta, "http-equiv"),
        }
        entry = {key: value for key, value in entry.items() if value}
        if entry:
            tags.append(entry)
    return tags


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_metadata(html: str, base_url: ScrapeTarget) -> ScrapedMetadata:
    """Extract every metadata group from *html*.

    Relative URLs are resolved against *base_url* and empty values are
    pruned before the record is built.
    """
    soup = BeautifulSoup(html, "lxml")

    open_graph = extract_open_graph(soup, base_url)
    twitter = extract_twitter(soup, base_url)

    data = {
        "basic": extract_basic(soup, base_url),
        "open_graph": open_graph,
        "twitter": twitter,
        "structured": extract_structured(soup),
        "images": extract_images(soup, base_url, open_graph["images"], twitter["images"]),
        "other": extract_other(soup, base_url),
        "raw": extract_raw(soup),
    }
    return ScrapedMetadata.model_validate(clean_object(data))


def has_valid_og_image(metadata: ScrapedMetadata) -> bool:
    return bool(metadata.open_graph and metadata.open_graph.images)
