import base64
import binascii
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from ..core.config import settings

# Base64 of MAX_DRAWING_DATA_SIZE bytes, plus room for a data: URL prefix
MAX_ENCODED_LENGTH = (settings.MAX_DRAWING_DATA_SIZE + 2) // 3 * 4 + 128


def _decode_base64(value: Optional[str]) -> Optional[bytes]:
    if value is None:
        return None
    if "," in value and value.startswith("data:"):
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("drawing_data must be base64 encoded")


class DrawingCreateRequest(BaseModel):
    name: str = Field(..., max_length=255)
    drawing_data: str = Field(..., max_length=MAX_ENCODED_LENGTH, description="Base64 encoded stroke document")
    user_id: Optional[str] = None

    @field_validator("drawing_data")
    @classmethod
    def validate_drawing_data(cls, v):
        _decode_base64(v)
        return v

    def payload(self) -> bytes:
        return _decode_base64(self.drawing_data)


class DrawingUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    drawing_data: Optional[str] = Field(None, max_length=MAX_ENCODED_LENGTH)
    user_id: Optional[str] = None

    @field_validator("drawing_data")
    @classmethod
    def validate_drawing_data(cls, v):
        _decode_base64(v)
        return v

    def payload(self) -> Optional[bytes]:
        return _decode_base64(self.drawing_data)


class SyncRequest(BaseModel):
    user_id: Optional[str] = None


class DrawingResponse(BaseModel):
    id: str
    name: str
    created_date: datetime
    modified_date: datetime
    has_thumbnail: bool
    synced: bool
    needs_sync: bool
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    upload_date: Optional[datetime] = None
    document_id: Optional[str] = None


class DrawingListResponse(BaseModel):
    drawings: List[DrawingResponse]
    total: int


class UploadOutcomeResponse(BaseModel):
    drawing_id: str
    success: bool
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    document_id: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None


class ProcessingStatus(BaseModel):
    status: Optional[str] = None
    nano_banana_url: Optional[str] = None
    usdz_url: Optional[str] = None


class SyncStatusResponse(BaseModel):
    drawing_id: str
    state: str
    in_progress: bool
    progress: float
    last_error: Optional[str] = None
    processing: Optional[ProcessingStatus] = None


class DeleteDrawingResponse(BaseModel):
    drawing_id: str
    remote_failures: List[str] = []
