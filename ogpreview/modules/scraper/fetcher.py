"""Guarded HTML fetcher.

Every hop of a redirect chain is re-checked by the SSRF guard, bodies are
streamed against a hard byte cap, and transient upstream failures are retried
with jittered exponential backoff.
"""

import asyncio
import logging
import random
import time
from urllib.parse import urljoin

import httpx

from ogpreview.config.settings import settings
from ogpreview.modules.scraper.exceptions import (
    ConnectionFailedError,
    FetchTimeoutError,
    InvalidUrlError,
    ResponseTooLargeError,
    UnsupportedContentTypeError,
    UpstreamHttpError,
)
from ogpreview.modules.scraper.guard import resolve_and_guard
from ogpreview.modules.scraper.schemas import FetchOutcome, ScrapeTarget

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = frozenset({403, 408, 429, 500, 502, 503, 504})
REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})
BACKOFF_BASE = 0.5
BACKOFF_CAP = 8.0
BACKOFF_JITTER = 1.0

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

_MINIMAL_HEADERS = {
    "User-Agent": USER_AGENTS[0],
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
}


def _browser_headers() -> dict[str, str]:
    return {
        "User-Agent": random.choice(USER_AGENTS),
        "Accept": (
            "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "Cache-Control": "no-cache",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Ch-Ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
        "Sec-Ch-Ua-Mobile": "?0",
        "Sec-Ch-Ua-Platform": '"macOS"',
        "DNT": "1",
    }


def _retry_delay(attempt: int) -> float:
    backoff = min(BACKOFF_BASE * 2 ** (attempt - 1), BACKOFF_CAP)
    return backoff + random.uniform(0, BACKOFF_JITTER) + random.uniform(1.0, 3.0)


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


class HtmlFetcher:
    """Fetches HTML from untrusted URLs.

    A new ``httpx.AsyncClient`` is built for every fetch so each one gets a
    freshly rotated User-Agent and shares no connection state with others.
    """

    def __init__(
        self,
        timeout: float | None = None,
        max_bytes: int | None = None,
        max_redirects: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._timeout = timeout if timeout is not None else settings.fetch_timeout
        self._max_bytes = max_bytes if max_bytes is not None else settings.max_html_bytes
        self._max_redirects = max_redirects if max_redirects is not None else settings.max_redirects
        self._max_attempts = max(1, max_attempts if max_attempts is not None else settings.max_fetch_attempts)

    # ── HTTP layer ──────────────────────────────────────────────

    async def _send(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        try:
            request = client.build_request("GET", url)
        except httpx.InvalidURL as exc:
            raise InvalidUrlError(f"Invalid URL: {url}") from exc
        return await client.send(request, stream=True)

    async def _send_with_retry(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        attempt = 1
        while True:
            try:
                response = await self._send(client, url)
            except httpx.TimeoutException as exc:
                raise FetchTimeoutError(f"Upstream timed out: {url}") from exc
            except httpx.TransportError as exc:
                if attempt >= self._max_attempts:
                    raise ConnectionFailedError(f"Could not connect to {url}: {exc}") from exc
                logger.warning(
                    "Attempt %d/%d failed for %s: %s", attempt, self._max_attempts, url, exc
                )
            else:
                if response.status_code not in RETRY_STATUS_CODES or attempt >= self._max_attempts:
                    return response
                await response.aclose()
                logger.warning(
                    "Attempt %d/%d for %s returned %d",
                    attempt, self._max_attempts, url, response.status_code,
                )
            await _sleep(_retry_delay(attempt))
            attempt += 1

    async def _get_following_redirects(
        self, client: httpx.AsyncClient, url: str, retry: bool = True
    ) -> tuple[httpx.Response, str]:
        current = url
        hops = 0
        while True:
            await resolve_and_guard(current)
            if retry:
                response = await self._send_with_retry(client, current)
            else:
                response = await self._send(client, current)
            location = response.headers.get("location")
            if (
                response.status_code not in REDIRECT_STATUS_CODES
                or not location
                or hops >= self._max_redirects
            ):
                return response, current
            await response.aclose()
            try:
                next_url = urljoin(current, location)
            except ValueError as exc:
                raise InvalidUrlError(f"Invalid redirect location: {location}") from exc
            logger.debug("Redirect %d: %s -> %s", hops + 1, current, next_url)
            current = next_url
            hops += 1

    # ── Body handling ───────────────────────────────────────────

    async def _read_html(self, response: httpx.Response, url: str, started: float) -> FetchOutcome:
        if not response.is_success:
            raise UpstreamHttpError(response.status_code, response.reason_phrase)

        content_type = response.headers.get("content-type", "")
        if "text/html" not in content_type.lower():
            raise UnsupportedContentTypeError(f"Unsupported content-type: {content_type or 'unknown'}")

        declared = response.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self._max_bytes:
            raise ResponseTooLargeError("Response too large.")

        received = 0
        chunks: list[bytes] = []
        try:
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > self._max_bytes:
                    raise ResponseTooLargeError("Response too large.")
                chunks.append(chunk)
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Upstream timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise ConnectionFailedError(f"Failed reading body from {url}: {exc}") from exc

        body = b"".join(chunks)
        try:
            html = body.decode(response.encoding or "utf-8", errors="replace")
        except LookupError:
            html = body.decode("utf-8", errors="replace")

        return FetchOutcome(
            html=html,
            final_url=url,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            content_length=received,
            http_status=response.status_code,
        )

    # ── Public API ──────────────────────────────────────────────

    async def _fetch(self, url: str, started: float) -> FetchOutcome:
        async with httpx.AsyncClient(headers=_browser_headers(), timeout=self._timeout) as client:
            response, current = await self._get_following_redirects(client, url)
            try:
                if response.status_code != 403:
                    return await self._read_html(response, current, started)
            finally:
                await response.aclose()

        logger.info("Got 403 for %s, retrying with minimal headers", current)
        await _sleep(random.uniform(3.0, 5.0))

        async with httpx.AsyncClient(headers=_MINIMAL_HEADERS, timeout=self._timeout) as client:
            try:
                response, current = await self._get_following_redirects(client, current, retry=False)
            except httpx.TransportError as exc:
                logger.warning("Fallback attempt failed for %s: %s", current, exc)
                raise UpstreamHttpError(403, "Forbidden") from exc
            try:
                return await self._read_html(response, current, started)
            finally:
                await response.aclose()

    async def fetch(self, target: ScrapeTarget | str) -> FetchOutcome:
        """Fetch *target* and return its HTML.

        The whole fetch (redirects, retries, backoff, the 403 fallback and
        body streaming) runs under one deadline of ``timeout`` seconds.

        Raises a :class:`~ogpreview.modules.scraper.exceptions.ScrapeError`
        subclass on any guard, transport, status, type or size failure.
        """
        started = time.perf_counter()
        try:
            async with asyncio.timeout(self._timeout):
                return await self._fetch(str(target), started)
        except TimeoutError as exc:
            logger.warning("Fetch of %s exceeded %.1fs", target, self._timeout)
            raise FetchTimeoutError(f"Upstream timed out: {target}") from exc


html_fetcher = HtmlFetcher()
