from fastapi import APIRouter, BackgroundTasks, Depends, Request
from typing import Optional
import logging

from ..application.services.drawing_service import DrawingService
from ..application.services.sync_state import needs_sync
from ..application.services.upload_orchestrator import UploadOrchestrator, UploadOutcome
from ..db.models import Drawing
from ..dependencies import get_drawing_service, get_orchestrator, make_drawing_service
from ..exceptions import SyncError, SyncInProgress
from ..schemas.drawings import (
    DeleteDrawingResponse,
    DrawingCreateRequest,
    DrawingListResponse,
    DrawingResponse,
    DrawingUpdateRequest,
    ProcessingStatus,
    SyncRequest,
    SyncStatusResponse,
    UploadOutcomeResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/drawings", tags=["Drawings"])


def _to_response(drawing: Drawing) -> DrawingResponse:
    return DrawingResponse(
        id=drawing.id,
        name=drawing.name,
        created_date=drawing.created_date,
        modified_date=drawing.modified_date,
        has_thumbnail=drawing.thumbnail_data is not None,
        synced=drawing.firebase_synced,
        needs_sync=needs_sync(drawing),
        image_url=drawing.firebase_image_url,
        thumbnail_url=drawing.firebase_thumbnail_url,
        upload_date=drawing.firebase_upload_date,
        document_id=drawing.firebase_document_id,
    )


def _outcome_response(outcome: UploadOutcome) -> UploadOutcomeResponse:
    return UploadOutcomeResponse(
        drawing_id=outcome.drawing_id,
        success=outcome.success,
        image_url=outcome.image_url,
        thumbnail_url=outcome.thumbnail_url,
        document_id=outcome.document_id,
        error_kind=outcome.error_kind,
        error=outcome.error_message,
    )


async def sync_in_background(session_factory, orchestrator: UploadOrchestrator, drawing_id: str, user_id: Optional[str]) -> None:
    """Background sync after a local save. Runs with its own session."""
    with session_factory() as session:
        service = make_drawing_service(session, orchestrator)
        try:
            await service.sync_drawing(drawing_id, user_id=user_id)
        except SyncInProgress:
            logger.info(f"Drawing {drawing_id} is already uploading; another sync will follow it")
        except SyncError as e:
            logger.warning(f"Background sync of drawing {drawing_id} skipped: {e}")


def _schedule_sync(request: Request, background_tasks: BackgroundTasks, orchestrator: UploadOrchestrator, drawing_id: str, user_id: Optional[str]) -> None:
    if orchestrator.settings.SYNC_ON_SAVE:
        background_tasks.add_task(sync_in_background, request.app.state.session_factory, orchestrator, drawing_id, user_id)


@router.post("", response_model=DrawingResponse, status_code=201)
def create_drawing(
    body: DrawingCreateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    service: DrawingService = Depends(get_drawing_service),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
):
    drawing = service.create_drawing(body.name, body.payload())
    response = _to_response(drawing)
    _schedule_sync(request, background_tasks, orchestrator, drawing.id, body.user_id)
    return response


@router.get("", response_model=DrawingListResponse)
def list_drawings(service: DrawingService = Depends(get_drawing_service)):
    drawings = [_to_response(d) for d in service.list_drawings()]
    return DrawingListResponse(drawings=drawings, total=len(drawings))


@router.get("/{drawing_id}", response_model=DrawingResponse)
def get_drawing(drawing_id: str, service: DrawingService = Depends(get_drawing_service)):
    return _to_response(service.get_drawing(drawing_id))


@router.patch("/{drawing_id}", response_model=DrawingResponse)
def update_drawing(
    drawing_id: str,
    body: DrawingUpdateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    service: DrawingService = Depends(get_drawing_service),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
):
    drawing = service.update_drawing(drawing_id, name=body.name, drawing_data=body.payload())
    response = _to_response(drawing)
    if response.needs_sync:
        _schedule_sync(request, background_tasks, orchestrator, drawing.id, body.user_id)
    return response


@router.delete("/{drawing_id}", response_model=DeleteDrawingResponse)
async def delete_drawing(drawing_id: str, service: DrawingService = Depends(get_drawing_service)):
    failures = await service.delete_drawing(drawing_id)
    return DeleteDrawingResponse(drawing_id=drawing_id, remote_failures=failures)


@router.post("/{drawing_id}/sync", response_model=UploadOutcomeResponse)
async def sync_drawing(drawing_id: str, body: Optional[SyncRequest] = None, service: DrawingService = Depends(get_drawing_service)):
    outcome = await service.sync_drawing(drawing_id, user_id=body.user_id if body else None)
    return _outcome_response(outcome)


@router.post("/{drawing_id}/unsync", response_model=DrawingResponse)
def mark_unsynced(drawing_id: str, service: DrawingService = Depends(get_drawing_service)):
    return _to_response(service.mark_unsynced(drawing_id))


@router.get("/{drawing_id}/status", response_model=SyncStatusResponse)
async def sync_status(drawing_id: str, service: DrawingService = Depends(get_drawing_service)):
    status = service.sync_status(drawing_id)
    processing = None
    try:
        remote = await service.processing_status(drawing_id)
        if remote is not None:
            processing = ProcessingStatus(**remote)
    except Exception as e:
        logger.warning(f"Could not fetch processing status for drawing {drawing_id}: {e}")
    return SyncStatusResponse(
        drawing_id=drawing_id,
        state=status.state.value,
        in_progress=status.in_progress,
        progress=status.progress,
        last_error=status.last_error,
        processing=processing,
    )
