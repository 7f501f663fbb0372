"""Models package."""

from safetyops.app.models.document_orm import DocumentORM

__all__ = [
    "DocumentORM",
]
