"""Shared schema base for documents persisted through the document store."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from safetyops.app.core.clock import as_utc


class DocumentModel(BaseModel):
    """Base for stored entities and their nested blocks. Datetimes are kept in UTC."""

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("*", mode="after")
    @classmethod
    def _normalise_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return as_utc(value)
        return value

    def to_document(self, **kwargs) -> dict:
        """JSON-shaped dict suitable for DocumentStore.create/update."""
        return self.model_dump(mode="json", **kwargs)
