import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..ports.object_store import ProgressCallback
from ..ports.record_store import RecordStore
from ..ports.renderer import Renderer
from .sync_state import SyncStatus, needs_sync
from .upload_orchestrator import RemoteRefs, UploadOrchestrator, UploadOutcome
from ...db.models import Drawing
from ...exceptions import DrawingNotFound, InvalidContent, InvalidDrawingName, SyncInProgress

logger = logging.getLogger(__name__)


def normalize_name(name: Optional[str]) -> str:
    normalized = " ".join((name or "").split())
    if not normalized:
        raise InvalidDrawingName("Drawing name must not be empty")
    return normalized


@dataclass
class DrawingService:
    """Local save, edit and delete of drawings, plus the sync calls around them.

    A local save always completes (or fails) before any remote call is made,
    and a failed sync never rolls the local save back.
    """

    record_store: RecordStore
    renderer: Renderer
    orchestrator: UploadOrchestrator
    thumbnail_size: Tuple[int, int] = (400, 400)

    def _thumbnail_for(self, drawing_data: bytes) -> Optional[bytes]:
        vector = self.renderer.decode(drawing_data)
        if vector is None:
            raise InvalidContent("Invalid drawing data")
        return self.renderer.thumbnail(vector, self.thumbnail_size)

    def get_drawing(self, drawing_id: str) -> Drawing:
        drawing = self.record_store.get(drawing_id)
        if drawing is None:
            raise DrawingNotFound(f"Drawing {drawing_id} not found", drawing_id=drawing_id)
        return drawing

    def list_drawings(self) -> List[Drawing]:
        return sorted(self.record_store.list_all(), key=lambda d: d.modified_date, reverse=True)

    def create_drawing(self, name: str, drawing_data: bytes) -> Drawing:
        drawing = Drawing(name=normalize_name(name), drawing_data=drawing_data)
        drawing.thumbnail_data = self._thumbnail_for(drawing_data)
        drawing = self.record_store.insert(drawing)
        logger.info(f"Saved drawing {drawing.id} locally")
        return drawing

    def update_drawing(self, drawing_id: str, name: Optional[str] = None, drawing_data: Optional[bytes] = None) -> Drawing:
        drawing = self.get_drawing(drawing_id)
        changed = False
        if name is not None:
            normalized = normalize_name(name)
            if normalized != drawing.name:
                drawing.name = normalized
                changed = True
        if drawing_data is not None and drawing_data != drawing.drawing_data:
            # Thumbnail is regenerated before the content is persisted
            thumbnail = self._thumbnail_for(drawing_data)
            drawing.drawing_data = drawing_data
            drawing.thumbnail_data = thumbnail
            changed = True
        if not changed:
            return drawing
        drawing.touch()
        return self.record_store.update(drawing)

    def sync_status(self, drawing_id: str) -> SyncStatus:
        return self.orchestrator.state_machine.status_for(self.get_drawing(drawing_id))

    async def sync_drawing(self, drawing_id: str, user_id: Optional[str] = None, on_progress: Optional[ProgressCallback] = None) -> UploadOutcome:
        """Upload a drawing and persist the result.

        A call that finds the drawing already uploading raises SyncInProgress
        and queues a follow-up, which the running call performs once its own
        upload is done and the stored record still needs sync.
        """
        machine = self.orchestrator.state_machine
        drawing = self.get_drawing(drawing_id)
        try:
            outcome = await self._upload_and_persist(drawing, user_id, on_progress)
        except SyncInProgress:
            machine.request_resync(drawing_id, user_id)
            raise

        pending, queued_user = machine.take_resync(drawing_id)
        while pending:
            drawing = self.record_store.reload(drawing_id)
            if drawing is None or not needs_sync(drawing):
                break
            logger.info(f"Running queued sync of drawing {drawing_id}")
            outcome = await self._upload_and_persist(drawing, queued_user or user_id, None)
            pending, queued_user = machine.take_resync(drawing_id)
        return outcome

    async def _upload_and_persist(self, drawing: Drawing, user_id: Optional[str], on_progress: Optional[ProgressCallback]) -> UploadOutcome:
        outcome = await self.orchestrator.upload_drawing(drawing, user_id=user_id, on_progress=on_progress)
        if outcome.success:
            self.record_store.update(drawing)
        else:
            logger.warning(f"Drawing {drawing.id} saved locally but not synced: {outcome.error_message}")
        return outcome

    async def sync_pending(self, user_id: Optional[str] = None) -> List[UploadOutcome]:
        outcomes = []
        for drawing in self.record_store.list_all():
            if needs_sync(drawing):
                outcomes.append(await self.sync_drawing(drawing.id, user_id=user_id))
        return outcomes

    def mark_unsynced(self, drawing_id: str) -> Drawing:
        drawing = self.get_drawing(drawing_id)
        self.orchestrator.state_machine.invalidate(drawing)
        return self.record_store.update(drawing)

    async def delete_drawing(self, drawing_id: str) -> List[str]:
        """Delete locally, then best-effort remote cleanup. Returns remote failure messages."""
        drawing = self.get_drawing(drawing_id)
        refs = RemoteRefs.of(drawing)
        self.record_store.delete(drawing)
        self.orchestrator.state_machine.forget(drawing_id)
        return await self.orchestrator.delete_remote(refs)

    async def processing_status(self, drawing_id: str) -> Optional[Dict[str, Any]]:
        return await self.orchestrator.fetch_processing_status(self.get_drawing(drawing_id))
