from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from typing import Optional


class SyncError(Exception):
    """Base class for every failure the sync core reports.

    ``kind`` is a stable machine-readable tag, ``message`` carries the
    human-readable text threaded up from the underlying transport.
    """

    kind = "sync_error"

    def __init__(self, message: str, drawing_id: Optional[str] = None, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.drawing_id = drawing_id
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message


class InvalidContent(SyncError):
    kind = "invalid_content"


class EncodingFailed(SyncError):
    kind = "encoding_failed"


class UploadFailed(SyncError):
    kind = "upload_failed"


class ResolutionFailed(SyncError):
    kind = "resolution_failed"


class MetadataWriteFailed(SyncError):
    kind = "metadata_write_failed"


class StoreFailed(SyncError):
    kind = "store_failed"


class SyncTimedOut(SyncError):
    kind = "timed_out"


class SyncInProgress(SyncError):
    kind = "in_progress"


class InvalidSyncTransition(SyncError):
    kind = "invalid_transition"


class DrawingNotFound(SyncError):
    kind = "not_found"


class InvalidDrawingName(SyncError):
    kind = "invalid_name"


_STATUS_BY_KIND = {
    DrawingNotFound.kind: 404,
    InvalidContent.kind: 422,
    InvalidDrawingName.kind: 422,
    SyncInProgress.kind: 409,
    InvalidSyncTransition.kind: 409,
    StoreFailed.kind: 500,
}


def status_code_for(error: SyncError) -> int:
    return _STATUS_BY_KIND.get(error.kind, 502)


def create_error_response(error_message: str, status_code: int = 400, kind: Optional[str] = None) -> dict:
    """Create a standardized error response"""
    return {
        "success": False,
        "data": None,
        "error": error_message,
        "kind": kind,
    }

def create_success_response(data) -> dict:
    """Create a standardized success response"""
    return {
        "success": True,
        "data": data,
        "error": None
    }

async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.detail, exc.status_code)
    )

async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    status_code = status_code_for(exc)
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(exc.message, status_code, kind=exc.kind)
    )
