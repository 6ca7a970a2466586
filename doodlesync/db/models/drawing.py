# doodlesync/db/models/drawing.py
from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid
from sqlalchemy import Column, LargeBinary

class Drawing(SQLModel, table=True):
    __tablename__ = "drawings"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(max_length=255)
    drawing_data: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    thumbnail_data: Optional[bytes] = Field(default=None, sa_column=Column(LargeBinary, nullable=True))
    created_date: datetime = Field(default_factory=datetime.utcnow)
    modified_date: datetime = Field(default_factory=datetime.utcnow, index=True)

    # Sync state, owned by the sync state machine
    firebase_synced: bool = Field(default=False)
    firebase_image_url: Optional[str] = Field(default=None)
    firebase_thumbnail_url: Optional[str] = Field(default=None)
    firebase_upload_date: Optional[datetime] = Field(default=None)
    firebase_document_id: Optional[str] = Field(default=None, max_length=128)

    def touch(self) -> None:
        self.modified_date = datetime.utcnow()
