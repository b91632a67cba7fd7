import logging
import mimetypes
import os
import uuid
from pathlib import Path
from typing import Dict, Optional

import httpx

from bookbase.config import settings
from bookbase.exceptions import ExternalServiceError
from bookbase.services.http_client import PooledHTTPClient, get_http_client

logger = logging.getLogger(__name__)

BOOK_IMAGES = "book-images"
PROFILE_IMAGES = "profile-images"
BUCKETS = (BOOK_IMAGES, PROFILE_IMAGES)


class StorageService:
    """Stores uploaded images and hands back a public URL for them.

    With ``storage_url`` configured, files go to an object storage REST API
    (the Supabase Storage layout). Without it they are written under
    ``upload_dir`` and served by the API at ``/uploads``.
    """

    def __init__(self, http_client: Optional[PooledHTTPClient] = None,
                 storage_url: Optional[str] = None, service_key: Optional[str] = None,
                 upload_dir: Optional[str] = None):
        self._http_client = http_client
        self.storage_url = (storage_url if storage_url is not None else settings.storage_url or "").rstrip("/")
        self.service_key = service_key or settings.storage_service_key
        self.upload_dir = Path(upload_dir or settings.upload_dir)

    @property
    def is_remote(self) -> bool:
        return bool(self.storage_url)

    async def upload_image(self, bucket: str, filename: Optional[str], content: bytes,
                           content_type: Optional[str]) -> Dict[str, str]:
        if bucket not in BUCKETS:
            raise ValueError(f"Unknown bucket: {bucket}")
        if not content_type or not content_type.startswith("image/"):
            raise ValueError("File must be an image")
        if len(content) > settings.max_upload_size:
            raise ValueError("File size must be less than 5MB")

        ext = self._extension(filename, content_type)
        name = f"book-cover-{uuid.uuid4()}{ext}" if bucket == BOOK_IMAGES else f"{uuid.uuid4()}{ext}"

        if self.is_remote:
            url = await self._upload_remote(bucket, name, content, content_type)
        else:
            url = self._save_local(bucket, name, content)
        logger.info("Stored %s/%s (%d bytes)", bucket, name, len(content))
        return {"url": url, "path": name}

    async def _upload_remote(self, bucket: str, name: str, content: bytes, content_type: str) -> str:
        client = self._http_client or await get_http_client()
        headers = {"Content-Type": content_type, "Cache-Control": "max-age=3600", "x-upsert": "false"}
        if self.service_key:
            headers["Authorization"] = f"Bearer {self.service_key}"
        try:
            response = await client.post_with_retry(
                f"{self.storage_url}/storage/v1/object/{bucket}/{name}",
                content=content,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("Upload to storage failed: %s", e)
            raise ExternalServiceError("Failed to upload image") from e
        if response.status_code >= 400:
            logger.error("Storage rejected upload (%s): %s", response.status_code, response.text)
            raise ExternalServiceError("Failed to upload image")
        return f"{self.storage_url}/storage/v1/object/public/{bucket}/{name}"

    def _save_local(self, bucket: str, name: str, content: bytes) -> str:
        target_dir = self.upload_dir / bucket
        target_dir.mkdir(parents=True, exist_ok=True)
        (target_dir / name).write_bytes(content)
        return f"{settings.public_base_url.rstrip('/')}/uploads/{bucket}/{name}"

    @staticmethod
    def _extension(filename: Optional[str], content_type: str) -> str:
        ext = os.path.splitext(filename or "")[1].lower()
        if not ext:
            ext = mimetypes.guess_extension(content_type) or ""
        if ext not in settings.allowed_image_extensions:
            raise ValueError(
                f"Unsupported image type. Allowed: {', '.join(settings.allowed_image_extensions)}"
            )
        return ext
