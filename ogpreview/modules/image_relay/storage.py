import logging
from abc import ABC, abstractmethod

import httpx

from ogpreview.config.settings import settings

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT = 60.0


class StorageNotConfiguredError(RuntimeError):
    pass


class ObjectStorage(ABC):
    @abstractmethod
    async def upload(self, data: bytes, filename: str, content_type: str) -> str:
        """Store *data* under *filename* and return its public URL."""


class CdnStorageClient(ObjectStorage):
    """Uploads files to a Bunny-style storage zone with an HTTP PUT."""

    def __init__(
        self,
        storage_url: str | None = None,
        public_url: str | None = None,
        access_key: str | None = None,
    ) -> None:
        self._storage_url = (storage_url or settings.cdn_storage_url).rstrip("/")
        self._public_url = (public_url or settings.cdn_public_url).rstrip("/")
        self._access_key = access_key if access_key is not None else settings.cdn_access_key

    async def upload(self, data: bytes, filename: str, content_type: str) -> str:
        if not self._access_key:
            raise StorageNotConfiguredError("CDN access key is not configured")

        async with httpx.AsyncClient(timeout=UPLOAD_TIMEOUT) as client:
            response = await client.put(
                f"{self._storage_url}/{filename}",
                content=data,
                headers={
                    "AccessKey": self._access_key,
                    "Content-Type": content_type,
                    "Accept": "application/json",
                },
            )
        response.raise_for_status()
        logger.debug("Uploaded %s (%d bytes)", filename, len(data))
        return f"{self._public_url}/{filename}"


cdn_storage = CdnStorageClient()
