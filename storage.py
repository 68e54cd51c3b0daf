"""
SealDeal - Object Storage
Cloud Storage access for uploaded deal documents
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

UPLOAD_PREFIX = "uploads"


@dataclass
class UploadPath:
    """uploads/{uid}/{dealId}/{filename}"""
    user_id: str
    deal_id: str
    file_name: str
    storage_path: str


def parse_upload_path(path: Optional[str]) -> Optional[UploadPath]:
    """Return the parsed upload path, or None for any other object shape"""
    if not path:
        return None

    parts = path.split("/")
    if len(parts) != 4 or parts[0] != UPLOAD_PREFIX:
        return None

    _, user_id, deal_id, file_name = parts
    if not user_id or not deal_id or not file_name:
        return None

    return UploadPath(user_id=user_id, deal_id=deal_id, file_name=file_name, storage_path=path)


class DocumentStorage:
    """Downloads document bytes from a Cloud Storage bucket"""

    def __init__(self, client, bucket_name: Optional[str] = None):
        self._client = client
        # Fall back to the project's default Firebase bucket
        self._bucket_name = bucket_name or f"{client.project}.appspot.com"

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    def download_sync(self, path: str) -> bytes:
        blob = self._client.bucket(self._bucket_name).blob(path)
        return blob.download_as_bytes()

    async def download(self, path: str) -> bytes:
        """Download file content at path. Raises if not found."""
        logger.debug(f"[Storage] Downloading gs://{self._bucket_name}/{path}")
        return await asyncio.to_thread(self.download_sync, path)

    def exists_sync(self, path: str) -> bool:
        return self._client.bucket(self._bucket_name).blob(path).exists()

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.exists_sync, path)
