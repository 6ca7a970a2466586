"""Upload orchestration for drawings.

Turns one local drawing into a durable remote image, an optional
thumbnail and a metadata document that the 3D generation backend polls.
The steps run strictly in order:

1. decode and rasterize the drawing onto an opaque background
2. upload the PNG to a key derived from the drawing's id and creation time
3. resolve the public URL, retrying a fixed number of times
4. upload the thumbnail (failures here only degrade the outcome)
5. create the metadata document
6. commit the sync fields onto the local record

The local record is only touched in step 6, after the last suspension
point, so a failed or cancelled attempt leaves it exactly as it was.
"""

import asyncio
import calendar
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..ports.audit_logger import SyncAuditLogger
from ..ports.metadata_store import MetadataStore
from ..ports.object_store import ObjectStore, ProgressCallback
from ..ports.renderer import Renderer
from .sync_state import SyncStateMachine
from ...core.config import Settings, settings as default_settings
from ...db.models import Drawing
from ...exceptions import (
    EncodingFailed,
    InvalidContent,
    MetadataWriteFailed,
    ResolutionFailed,
    SyncError,
    SyncTimedOut,
    UploadFailed,
)

logger = logging.getLogger(__name__)

PNG_CONTENT_TYPE = "image/png"


@dataclass
class UploadOutcome:
    drawing_id: str
    success: bool
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    document_id: Optional[str] = None
    error: Optional[SyncError] = None

    @classmethod
    def succeeded(cls, drawing_id: str, image_url: str, thumbnail_url: Optional[str], document_id: str) -> "UploadOutcome":
        return cls(drawing_id=drawing_id, success=True, image_url=image_url, thumbnail_url=thumbnail_url, document_id=document_id)

    @classmethod
    def failed(cls, drawing_id: str, error: SyncError) -> "UploadOutcome":
        return cls(drawing_id=drawing_id, success=False, error=error)

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error is not None else None


@dataclass(frozen=True)
class RemoteRefs:
    """Remote references of a drawing, captured before the local record goes away."""

    drawing_id: str
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    document_id: Optional[str] = None

    @classmethod
    def of(cls, drawing: Drawing) -> "RemoteRefs":
        return cls(
            drawing_id=drawing.id,
            image_url=drawing.firebase_image_url,
            thumbnail_url=drawing.firebase_thumbnail_url,
            document_id=drawing.firebase_document_id,
        )


def created_unix_seconds(drawing: Drawing) -> int:
    # Naive datetimes are stored as UTC.
    return calendar.timegm(drawing.created_date.utctimetuple())


def storage_path(drawing: Drawing, user_scope: str) -> str:
    return f"drawings/{user_scope}/{drawing.id}_{created_unix_seconds(drawing)}.png"


def thumbnail_path(drawing: Drawing, user_scope: str) -> str:
    return f"thumbnails/{user_scope}/{drawing.id}_{created_unix_seconds(drawing)}_thumb.png"


@dataclass
class UploadOrchestrator:
    renderer: Renderer
    object_store: ObjectStore
    metadata_store: MetadataStore
    state_machine: SyncStateMachine = field(default_factory=SyncStateMachine)
    settings: Settings = field(default_factory=lambda: default_settings)
    audit_logger: Optional[SyncAuditLogger] = None
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def upload_drawing(self, drawing: Drawing, user_id: Optional[str] = None, on_progress: Optional[ProgressCallback] = None) -> UploadOutcome:
        """Run one orchestration attempt and report it as an ``UploadOutcome``.

        Fatal errors are returned as failed outcomes rather than raised. Only
        ``SyncInProgress`` (a concurrent call for the same drawing) and task
        cancellation propagate to the caller.
        """
        self.state_machine.begin(drawing)
        try:
            run = self._run(drawing, user_id, on_progress)
            if self.settings.SYNC_TIMEOUT_SEC:
                image_url, thumbnail_url, document_id = await asyncio.wait_for(run, timeout=self.settings.SYNC_TIMEOUT_SEC)
            else:
                image_url, thumbnail_url, document_id = await run
        except asyncio.TimeoutError:
            error = SyncTimedOut(
                f"Sync did not finish within {self.settings.SYNC_TIMEOUT_SEC} seconds",
                drawing_id=drawing.id,
            )
            return self._fail(drawing, user_id, error)
        except SyncError as e:
            e.drawing_id = e.drawing_id or drawing.id
            return self._fail(drawing, user_id, e)
        except asyncio.CancelledError:
            logger.warning(f"Sync of drawing {drawing.id} cancelled")
            self.state_machine.cancel(drawing.id)
            raise

        self.state_machine.succeed(drawing, image_url, thumbnail_url, document_id)
        if on_progress is not None:
            on_progress(1.0)
        logger.info(f"Drawing {drawing.id} synced (document {document_id})")
        self._audit("sync", drawing, True, user_id, {"image_url": image_url, "thumbnail_url": thumbnail_url, "document_id": document_id})
        return UploadOutcome.succeeded(drawing.id, image_url, thumbnail_url, document_id)

    async def _run(self, drawing: Drawing, user_id: Optional[str], on_progress: Optional[ProgressCallback]) -> Tuple[str, Optional[str], str]:
        png = self.render_png(drawing)
        user_scope = user_id or self.settings.DEFAULT_STORAGE_USER

        path = storage_path(drawing, user_scope)
        logger.info(f"Uploading drawing {drawing.id} to path: {path}")

        def progress(fraction: float) -> None:
            self.state_machine.report_progress(drawing.id, fraction)
            if on_progress is not None:
                on_progress(self.state_machine.status_for(drawing).progress)

        try:
            await self.object_store.put(path, png, PNG_CONTENT_TYPE, self._image_metadata(drawing), on_progress=progress)
        except SyncError:
            raise
        except Exception as e:
            raise UploadFailed(f"Upload failed: {e}", original_error=e)
        logger.info(f"Upload completed for path: {path}")

        image_url = await self._resolve_with_retry(path)
        thumbnail_url = await self._upload_thumbnail(drawing, user_scope)
        document_id = await self._create_metadata_document(drawing, image_url, user_id)
        return image_url, thumbnail_url, document_id

    def render_png(self, drawing: Drawing) -> bytes:
        vector = self.renderer.decode(drawing.drawing_data)
        if vector is None:
            raise InvalidContent("Invalid drawing data", drawing_id=drawing.id)
        if self.renderer.bounding_box(vector).is_empty:
            raise InvalidContent("Drawing has no visible content", drawing_id=drawing.id)
        try:
            bitmap = self.renderer.rasterize(vector, self.settings.BACKGROUND_COLOR, self.settings.RASTER_SCALE)
            return self.renderer.encode_png(bitmap)
        except SyncError:
            raise
        except Exception as e:
            raise EncodingFailed(f"Failed to convert image to data: {e}", drawing_id=drawing.id, original_error=e)

    def _image_metadata(self, drawing: Drawing) -> Dict[str, str]:
        return {
            "drawingId": drawing.id,
            "drawingName": drawing.name,
            "createdDate": drawing.created_date.isoformat(),
            "modifiedDate": drawing.modified_date.isoformat(),
        }

    async def _resolve_with_retry(self, key: str) -> str:
        max_attempts = self.settings.URL_RESOLVE_MAX_ATTEMPTS
        last_error: Optional[Exception] = None
        for attempt in range(1, max_attempts + 1):
            try:
                url = await self.object_store.resolve_url(key)
                if not url:
                    raise LookupError(f"Empty download URL returned for {key}")
                logger.info(f"Download URL obtained: {url}")
                return url
            except Exception as e:
                last_error = e
                logger.warning(f"Download URL attempt {attempt} failed: {e}")
                if attempt < max_attempts:
                    await self.sleep(self.settings.URL_RESOLVE_RETRY_DELAY_SEC)
        raise ResolutionFailed(
            f"Failed to obtain download URL after {max_attempts} attempts: {last_error}",
            original_error=last_error,
        )

    async def _upload_thumbnail(self, drawing: Drawing, user_scope: str) -> Optional[str]:
        if not drawing.thumbnail_data:
            return None
        path = thumbnail_path(drawing, user_scope)
        metadata = {"drawingId": drawing.id, "type": "thumbnail"}
        try:
            await self.object_store.put(path, drawing.thumbnail_data, PNG_CONTENT_TYPE, metadata)
            return await self.object_store.resolve_url(path) or None
        except Exception as e:
            logger.warning(f"Thumbnail upload failed for drawing {drawing.id}, continuing without it: {e}")
            return None

    def metadata_fields(self, drawing: Drawing, image_url: str, user_id: Optional[str]) -> Dict[str, Any]:
        return {
            "Title": drawing.name,
            "OriginalImageUrl": image_url,
            "UserId": user_id or self.settings.DEFAULT_METADATA_USER,
            "Status": self.settings.INITIAL_PROCESSING_STATUS,
            "Text_Prompt": "",
            "CreatedAt": drawing.created_date,
            "UpdatedAt": drawing.modified_date,
            "NanoBananaUrl": None,
            "UsdzUrl": None,
        }

    async def _create_metadata_document(self, drawing: Drawing, image_url: str, user_id: Optional[str]) -> str:
        fields = self.metadata_fields(drawing, image_url, user_id)
        try:
            document_id = await self.metadata_store.create_document(self.settings.METADATA_COLLECTION, fields)
        except Exception as e:
            raise MetadataWriteFailed(f"Metadata write failed: {e}", original_error=e)
        if not document_id:
            raise MetadataWriteFailed("Metadata store returned an empty document id")
        return document_id

    def _fail(self, drawing: Drawing, user_id: Optional[str], error: SyncError) -> UploadOutcome:
        logger.error(f"Sync of drawing {drawing.id} failed ({error.kind}): {error.message}")
        self.state_machine.fail(drawing.id, error.message)
        self._audit("sync", drawing, False, user_id, {"kind": error.kind, "error": error.message})
        return UploadOutcome.failed(drawing.id, error)

    def _audit(self, action: str, drawing: Drawing, success: bool, user_id: Optional[str], details: Dict[str, Any]) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(action, drawing.id, success=success, user_id=user_id, details=details)

    # --- Remote object helpers used by the drawing service ---

    async def delete_remote(self, refs: RemoteRefs) -> List[str]:
        """Best-effort removal of everything a sync wrote. Returns failure messages."""
        failures: List[str] = []
        for url in (refs.image_url, refs.thumbnail_url):
            if not url:
                continue
            try:
                await self.object_store.delete(url)
            except Exception as e:
                logger.warning(f"Failed to delete remote object {url}: {e}")
                failures.append(f"Delete failed: {e}")
        if refs.document_id:
            try:
                await self.metadata_store.delete_document(self.settings.METADATA_COLLECTION, refs.document_id)
            except Exception as e:
                logger.warning(f"Failed to delete metadata document {refs.document_id}: {e}")
                failures.append(f"Delete failed: {e}")
        if self.audit_logger is not None:
            self.audit_logger.log("delete_remote", refs.drawing_id, success=not failures, details={"failures": failures})
        return failures

    async def download_image(self, drawing: Drawing) -> Optional[bytes]:
        if not drawing.firebase_image_url:
            return None
        return await self.object_store.download(drawing.firebase_image_url, self.settings.MAX_IMAGE_DOWNLOAD_SIZE)

    async def download_thumbnail(self, drawing: Drawing) -> Optional[bytes]:
        if not drawing.firebase_thumbnail_url:
            return None
        return await self.object_store.download(drawing.firebase_thumbnail_url, self.settings.MAX_THUMBNAIL_DOWNLOAD_SIZE)

    async def fetch_processing_status(self, drawing: Drawing) -> Optional[Dict[str, Any]]:
        if not drawing.firebase_document_id:
            return None
        document = await self.metadata_store.get_document(self.settings.METADATA_COLLECTION, drawing.firebase_document_id)
        if document is None:
            return None
        return {
            "status": document.get("Status"),
            "nano_banana_url": document.get("NanoBananaUrl"),
            "usdz_url": document.get("UsdzUrl"),
        }
