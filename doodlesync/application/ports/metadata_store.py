from typing import Any, Dict, Optional, Protocol


class MetadataStore(Protocol):
    async def create_document(self, collection: str, fields: Dict[str, Any]) -> str:
        ...

    async def get_document(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def delete_document(self, collection: str, document_id: str) -> None:
        ...
