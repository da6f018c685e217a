import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ogpreview.config.settings import settings
from ogpreview.modules.rate_limiter.schemas import RateLimitDecision
from ogpreview.modules.rate_limiter.service import client_id_from_headers, rate_limiter_service
from ogpreview.modules.scraper.schemas import (
    BulkScrapeRequest,
    BulkScrapeResponse,
    ScrapeRequest,
)
from ogpreview.modules.scraper.service import scraper_service

logger = logging.getLogger(__name__)

router = APIRouter()


def enforce_rate_limit(request: Request) -> RateLimitDecision:
    decision = rate_limiter_service.check(client_id_from_headers(request.headers))
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            headers=decision.headers,
        )
    return decision


def _check_key(key: str, headers: dict[str, str]) -> None:
    if not settings.scrape_secret or not hmac.compare_digest(
        key.encode(), settings.scrape_secret.encode()
    ):
        raise HTTPException(
            status_code=403,
            detail="Forbidden: Invalid authentication key",
            headers=headers,
        )


@router.post("")
async def scrape(
    body: ScrapeRequest, rate_limit: RateLimitDecision = Depends(enforce_rate_limit)
) -> JSONResponse:
    _check_key(body.key, rate_limit.headers)

    result = await scraper_service.scrape_one(body.url)
    status_code = 200 if result.success else (result.status_code or 500)
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(mode="json", exclude_none=True),
        headers=rate_limit.headers,
    )


@router.post("/bulk")
async def scrape_bulk(
    body: BulkScrapeRequest, rate_limit: RateLimitDecision = Depends(enforce_rate_limit)
) -> JSONResponse:
    _check_key(body.key, rate_limit.headers)

    results, statistics = await scraper_service.scrape_many_with_stats(
        body.urls, body.max_concurrency
    )
    logger.info(
        "Bulk scrape: %d/%d successful, %d saved in %dms",
        statistics.successful, len(results), statistics.saved, statistics.total_processing_time,
    )
    response = BulkScrapeResponse(
        success=True,
        total_urls=len(body.urls),
        unique_urls=len(results),
        results=results,
        statistics=statistics,
    )
    return JSONResponse(
        content=response.model_dump(mode="json", exclude_none=True),
        headers=rate_limit.headers,
    )
