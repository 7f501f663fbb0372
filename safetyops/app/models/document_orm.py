"""
ORM Model for the document store.

Incidents and CAPAs are persisted as JSON documents grouped by collection.
SQLite-compatible: ids stored as String, no FK constraints.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, JSON, Index

from safetyops.app.core.database import Base


class DocumentORM(Base):
    __tablename__ = "documents"

    # Stored as String for SQLite compatibility
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    collection = Column(String(50), nullable=False, index=True)  # "incidents" | "capas"

    # Entity body, shaped 1:1 after the pydantic schemas
    data = Column(JSON, nullable=False, default=dict)

    # Row timestamps (the entity's own created_at/updated_at live inside data)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_documents_collection_created", "collection", "created_at"),
    )

    def __repr__(self):
        return f"<Document {self.collection}/{self.id}>"
