from typing import Callable, Dict, Optional, Protocol

ProgressCallback = Callable[[float], None]


class ObjectStore(Protocol):
    """Remote blob storage addressed by key on write and by URL afterwards."""

    async def put(self, key: str, data: bytes, content_type: str, metadata: Dict[str, str], on_progress: Optional[ProgressCallback] = None) -> None:
        ...

    async def resolve_url(self, key: str) -> str:
        ...

    async def delete(self, url: str) -> None:
        ...

    async def download(self, url: str, max_size: int) -> bytes:
        ...
