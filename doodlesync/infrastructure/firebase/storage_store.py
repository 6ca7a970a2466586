import asyncio
import logging
import uuid
from typing import Dict, Optional
from urllib.parse import quote, unquote, urlparse

from firebase_admin import storage

from .app import init_firebase_app
from ...application.ports.object_store import ObjectStore, ProgressCallback

logger = logging.getLogger(__name__)

DOWNLOAD_TOKEN_KEY = "firebaseStorageDownloadTokens"
DOWNLOAD_HOST = "https://firebasestorage.googleapis.com"


def download_url(bucket_name: str, key: str, token: str) -> str:
    return f"{DOWNLOAD_HOST}/v0/b/{bucket_name}/o/{quote(key, safe='')}?alt=media&token={token}"


def key_from_url(url: str) -> str:
    """Recover the object key from a Firebase download URL."""
    path = urlparse(url).path
    marker = "/o/"
    if marker not in path:
        raise ValueError(f"Not a Firebase Storage download URL: {url}")
    return unquote(path.split(marker, 1)[1])


class FirebaseObjectStore(ObjectStore):
    """Object store backed by a Cloud Storage bucket through firebase_admin.

    The blocking google-cloud-storage calls run in worker threads.
    """

    def __init__(self, bucket=None) -> None:
        if bucket is None:
            bucket = storage.bucket(app=init_firebase_app())
        self.bucket = bucket

    async def put(self, key: str, data: bytes, content_type: str, metadata: Dict[str, str], on_progress: Optional[ProgressCallback] = None) -> None:
        if on_progress is not None:
            on_progress(0.0)
        blob = self.bucket.blob(key)
        blob.metadata = {**metadata, DOWNLOAD_TOKEN_KEY: str(uuid.uuid4())}
        await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        if on_progress is not None:
            # The SDK does not report partial progress for in-memory uploads.
            on_progress(1.0)

    async def resolve_url(self, key: str) -> str:
        blob = self.bucket.blob(key)
        await asyncio.to_thread(blob.reload)
        token = (blob.metadata or {}).get(DOWNLOAD_TOKEN_KEY)
        if not token:
            raise LookupError(f"No download token on object {key}")
        return download_url(self.bucket.name, key, token.split(",")[0])

    async def delete(self, url: str) -> None:
        blob = self.bucket.blob(key_from_url(url))
        await asyncio.to_thread(blob.delete)

    async def download(self, url: str, max_size: int) -> bytes:
        blob = self.bucket.blob(key_from_url(url))
        await asyncio.to_thread(blob.reload)
        if blob.size is not None and blob.size > max_size:
            raise ValueError(f"Object is {blob.size} bytes, larger than the {max_size} byte limit")
        return await asyncio.to_thread(blob.download_as_bytes)
