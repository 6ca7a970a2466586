import asyncio
import logging
from typing import Any, Dict, Optional

from firebase_admin import firestore

from .app import init_firebase_app
from ...application.ports.metadata_store import MetadataStore

logger = logging.getLogger(__name__)


class FirestoreMetadataStore(MetadataStore):
    def __init__(self, client=None) -> None:
        if client is None:
            client = firestore.client(app=init_firebase_app())
        self.client = client

    async def create_document(self, collection: str, fields: Dict[str, Any]) -> str:
        # Auto-generated document id, same as the iOS client
        doc_ref = self.client.collection(collection).document()
        await asyncio.to_thread(doc_ref.set, fields)
        logger.info(f"Created {collection}/{doc_ref.id}")
        return doc_ref.id

    async def get_document(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        snapshot = await asyncio.to_thread(self.client.collection(collection).document(document_id).get)
        if not snapshot.exists:
            return None
        return snapshot.to_dict()

    async def delete_document(self, collection: str, document_id: str) -> None:
        await asyncio.to_thread(self.client.collection(collection).document(document_id).delete)
