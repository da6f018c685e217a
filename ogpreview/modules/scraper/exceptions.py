"""Failure taxonomy for the scrape pipeline.

Every exception carries a stable ``code`` (surfaced as ``ScrapeResult.error``)
and the HTTP status a caller should answer with.
"""

BATCH_PROCESSING_FAILED = "BatchProcessingFailed"


class ScrapeError(Exception):
    code = "ScrapeFailed"
    status_code = 500


class InvalidUrlError(ScrapeError):
    code = "InvalidUrl"
    status_code = 400


class BlockedTargetError(ScrapeError):
    code = "BlockedTarget"
    status_code = 400


class UnresolvableHostError(ScrapeError):
    code = "UnresolvableHost"
    status_code = 400


class UnsupportedContentTypeError(ScrapeError):
    code = "UnsupportedContentType"
    status_code = 415


class ResponseTooLargeError(ScrapeError):
    code = "ResponseTooLarge"
    status_code = 413


class FetchTimeoutError(ScrapeError):
    code = "Timeout"
    status_code = 504


class ConnectionFailedError(ScrapeError):
    code = "ConnectionFailed"
    status_code = 502


class UpstreamHttpError(ScrapeError):
    code = "HttpError"

    def __init__(self, upstream_status: int, reason: str = "") -> None:
        self.upstream_status = upstream_status
        super().__init__(f"Upstream error: {upstream_status} {reason}".strip())

    @property
    def status_code(self) -> int:  # type: ignore[override]
        if 400 <= self.upstream_status < 500:
            return self.upstream_status
        return 502
