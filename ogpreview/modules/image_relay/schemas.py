from pydantic import BaseModel


class ImageUploadResult(BaseModel):
    success: bool
    original_url: str
    cdn_url: str | None = None
    error: str | None = None


class DownloadedImage(BaseModel):
    data: bytes
    content_type: str
