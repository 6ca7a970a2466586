# doodlesync/db/models/metadata_document.py
from typing import Any, Dict
from sqlmodel import SQLModel, Field
from datetime import datetime
import uuid
from sqlalchemy import Column, JSON

class MetadataDocument(SQLModel, table=True):
    __tablename__ = "metadata_documents"
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    collection: str = Field(max_length=100, index=True)
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)
