import asyncio
import json
import os
from typing import Dict, Optional

from ...core.config import settings
from ...application.ports.object_store import ObjectStore, ProgressCallback


class LocalObjectStore(ObjectStore):
    """Filesystem object store. Objects live under UPLOAD_DIR and are served at BASE_URL/uploads/<key>.

    Object metadata goes to ``<key>.meta.json`` under a separate directory,
    so it is never reachable through the public uploads mount.
    """

    def __init__(self, upload_dir: Optional[str] = None, base_url: Optional[str] = None, meta_dir: Optional[str] = None) -> None:
        self.upload_dir = upload_dir or settings.UPLOAD_DIR
        self.base_url = (base_url or settings.BASE_URL).rstrip("/")
        self.meta_dir = meta_dir or settings.UPLOAD_META_DIR or f"{os.path.abspath(self.upload_dir)}_meta"

    def _path(self, key: str, root: Optional[str] = None) -> str:
        root = os.path.abspath(root or self.upload_dir)
        path = os.path.abspath(os.path.join(root, key))
        if not path.startswith(root + os.sep):
            raise ValueError(f"Key escapes the upload directory: {key}")
        return path

    def _meta_path(self, key: str) -> str:
        return self._path(f"{key}.meta.json", self.meta_dir)

    def _key_from_url(self, url: str) -> str:
        prefix = f"{self.base_url}/uploads/"
        if not url.startswith(prefix):
            raise ValueError(f"URL is not served by this store: {url}")
        return url[len(prefix):]

    def _write(self, key: str, data: bytes, content_type: str, metadata: Dict[str, str]) -> None:
        path, meta_path = self._path(key), self._meta_path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        os.makedirs(os.path.dirname(meta_path), exist_ok=True)
        with open(meta_path, "w") as f:
            json.dump({"contentType": content_type, "metadata": metadata}, f)

    def _remove(self, key: str) -> None:
        os.remove(self._path(key))
        meta_path = self._meta_path(key)
        if os.path.exists(meta_path):
            os.remove(meta_path)

    def _read(self, key: str, max_size: int) -> bytes:
        path = self._path(key)
        size = os.path.getsize(path)
        if size > max_size:
            raise ValueError(f"Object is {size} bytes, larger than the {max_size} byte limit")
        with open(path, "rb") as f:
            return f.read()

    async def put(self, key: str, data: bytes, content_type: str, metadata: Dict[str, str], on_progress: Optional[ProgressCallback] = None) -> None:
        self._path(key)
        if on_progress is not None:
            on_progress(0.0)
        await asyncio.to_thread(self._write, key, data, content_type, metadata)
        if on_progress is not None:
            on_progress(1.0)

    async def resolve_url(self, key: str) -> str:
        if not await asyncio.to_thread(os.path.exists, self._path(key)):
            raise FileNotFoundError(f"No object stored at {key}")
        return f"{self.base_url}/uploads/{key}"

    async def delete(self, url: str) -> None:
        await asyncio.to_thread(self._remove, self._key_from_url(url))

    async def download(self, url: str, max_size: int) -> bytes:
        return await asyncio.to_thread(self._read, self._key_from_url(url), max_size)
