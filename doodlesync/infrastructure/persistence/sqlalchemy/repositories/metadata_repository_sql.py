import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from sqlmodel import Session

from .....db.models import MetadataDocument
from .....application.ports.metadata_store import MetadataStore


def _to_json(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in fields.items()}


class SqlMetadataStore(MetadataStore):
    """Metadata documents in the local database, for runs without Firestore.

    Takes a session factory because calls happen outside request scope.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _create(self, collection: str, fields: Dict[str, Any]) -> str:
        with self.session_factory() as session:
            document = MetadataDocument(collection=collection, payload=_to_json(fields))
            session.add(document)
            session.commit()
            return document.id

    def _get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as session:
            document = session.get(MetadataDocument, document_id)
            if document is None or document.collection != collection:
                return None
            return dict(document.payload)

    def _delete(self, collection: str, document_id: str) -> None:
        with self.session_factory() as session:
            document = session.get(MetadataDocument, document_id)
            if document is not None and document.collection == collection:
                session.delete(document)
                session.commit()

    async def create_document(self, collection: str, fields: Dict[str, Any]) -> str:
        return await asyncio.to_thread(self._create, collection, fields)

    async def get_document(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._get, collection, document_id)

    async def delete_document(self, collection: str, document_id: str) -> None:
        await asyncio.to_thread(self._delete, collection, document_id)
