import re
from urllib.parse import urlsplit, urlunsplit

from ogpreview.modules.scraper.exceptions import InvalidUrlError
from ogpreview.modules.scraper.schemas import ScrapeTarget

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def normalize_url(raw: str) -> ScrapeTarget:
    """Turn user input into a :class:`ScrapeTarget`.

    Defaults the scheme to https, clears the query string and strips a
    leading ``www.`` so www/non-www variants map to the same site.
    """
    candidate = (raw or "").strip()
    if not candidate:
        raise InvalidUrlError("Invalid URL format")
    if not _SCHEME_RE.match(candidate):
        candidate = f"https://{candidate}"

    try:
        parts = urlsplit(candidate)
        hostname = parts.hostname
        port = parts.port
    except ValueError as exc:
        raise InvalidUrlError("Invalid URL format") from exc

    if not hostname or any(ch.isspace() for ch in hostname):
        raise InvalidUrlError("Invalid URL format")

    if hostname.startswith("www."):
        hostname = hostname[4:]
        if not hostname:
            raise InvalidUrlError("Invalid URL format")

    host = f"[{hostname}]" if ":" in hostname else hostname
    netloc = f"{host}:{port}" if port is not None else host
    scheme = parts.scheme.lower()

    url = urlunsplit((scheme, netloc, parts.path, "", parts.fragment))
    return ScrapeTarget(url=url, scheme=scheme, hostname=hostname)
