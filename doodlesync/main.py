import logging
import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session

# Load environment variables as early as possible
load_dotenv()

from .core.config import Settings, settings as default_settings
from .database import create_db_and_tables, engine
from .dependencies import build_orchestrator
from .exceptions import SyncError, create_success_response, http_exception_handler, sync_error_handler
from .application.services.upload_orchestrator import UploadOrchestrator
from .routers import drawings_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[UploadOrchestrator] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    bind=None,
) -> FastAPI:
    settings = settings or default_settings
    session_factory = session_factory or (lambda: Session(engine))

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=settings.LOG_FORMAT
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.APP_NAME}...")
        create_db_and_tables(bind)
        app.state.session_factory = session_factory
        app.state.orchestrator = orchestrator or build_orchestrator(settings, session_factory)
        logger.info("Database initialized successfully")
        yield
        logger.info(f"Shutting down {settings.APP_NAME}...")

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, debug=settings.DEBUG, lifespan=lifespan)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(SyncError, sync_error_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(drawings_router.router)

    # Objects written by the local backend are served from here
    if settings.STORAGE_BACKEND.lower() == "local":
        os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
        app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

    @app.get("/health")
    def health():
        return create_success_response({"status": "ok", "version": settings.APP_VERSION})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "doodlesync.main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        log_level=default_settings.LOG_LEVEL.lower()
    )
