# Service wiring shared by the app factory and the routers
import logging
from fastapi import Depends, Request
from sqlmodel import Session

from .application.services.drawing_service import DrawingService
from .application.services.sync_state import SyncStateMachine
from .application.services.upload_orchestrator import UploadOrchestrator
from .core.config import Settings
from .database import engine, get_session
from .infrastructure.audit.std_logger import StdSyncAuditLogger
from .infrastructure.persistence.sqlalchemy.repositories.drawing_repository_sql import SqlDrawingRepository
from .infrastructure.render.pillow_renderer import PillowRenderer

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings, session_factory=None) -> UploadOrchestrator:
    """Build the single orchestrator instance for the configured backend."""
    renderer = PillowRenderer(
        background=settings.BACKGROUND_COLOR,
        thumbnail_scale=settings.RASTER_SCALE,
        max_dimension=settings.MAX_RASTER_DIMENSION,
    )
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "firebase":
        from .infrastructure.firebase.firestore_store import FirestoreMetadataStore
        from .infrastructure.firebase.storage_store import FirebaseObjectStore
        object_store = FirebaseObjectStore()
        metadata_store = FirestoreMetadataStore()
    elif backend == "local":
        from .infrastructure.persistence.sqlalchemy.repositories.metadata_repository_sql import SqlMetadataStore
        from .infrastructure.storage.local_object_store import LocalObjectStore
        object_store = LocalObjectStore(upload_dir=settings.UPLOAD_DIR, base_url=settings.BASE_URL, meta_dir=settings.UPLOAD_META_DIR)
        metadata_store = SqlMetadataStore(session_factory or (lambda: Session(engine)))
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
    logger.info(f"Using {backend} storage backend")
    return UploadOrchestrator(
        renderer=renderer,
        object_store=object_store,
        metadata_store=metadata_store,
        state_machine=SyncStateMachine(),
        settings=settings,
        audit_logger=StdSyncAuditLogger(),
    )


def get_orchestrator(request: Request) -> UploadOrchestrator:
    return request.app.state.orchestrator


def make_drawing_service(session: Session, orchestrator: UploadOrchestrator) -> DrawingService:
    return DrawingService(
        record_store=SqlDrawingRepository(session),
        renderer=orchestrator.renderer,
        orchestrator=orchestrator,
        thumbnail_size=tuple(orchestrator.settings.THUMBNAIL_SIZE),
    )


def get_drawing_service(
    session: Session = Depends(get_session),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
) -> DrawingService:
    return make_drawing_service(session, orchestrator)
