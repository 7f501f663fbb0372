"""
Document Store - persistence collaborator for the compliance engine.

The lifecycle services never talk to a database directly. They receive a
DocumentStore and use six calls: get_by_id, query, create, update, delete
and server_timestamp. Two adapters are provided:

- InMemoryDocumentStore: dict-backed, used by tests and embedded callers.
- SqlDocumentStore: async SQLAlchemy over the `documents` table.

Partial updates accept dotted keys ("metrics.on_time") that address nested
fields, so a lifecycle step can touch one sub-field without rewriting the
whole block.
"""

import copy
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from safetyops.app.core.clock import Clock, utc_now
from safetyops.app.core.exceptions import NotFoundError
from safetyops.app.core.logging import get_logger
from safetyops.app.models.document_orm import DocumentORM

logger = get_logger(__name__)

Document = Dict[str, Any]
Predicate = Callable[[Document], bool]


class PendingTimestamp:
    """
    Write-only marker for "the instant this write is applied".

    Adapters replace it with a concrete datetime when the document is
    written. It is never returned from a read.
    """

    _instance: Optional["PendingTimestamp"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = PendingTimestamp()


def resolve_timestamps(value: Any, now: datetime) -> Any:
    """Replace every PendingTimestamp inside value with now."""
    if isinstance(value, PendingTimestamp):
        return now
    if isinstance(value, dict):
        return {k: resolve_timestamps(v, now) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_timestamps(v, now) for v in value]
    return value


def apply_update(document: Document, partial: Document) -> Document:
    """Return a copy of document with partial merged in (dotted keys allowed)."""
    updated = copy.deepcopy(document)
    for key, value in partial.items():
        path = key.split(".")
        target = updated
        for part in path[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[path[-1]] = copy.deepcopy(value)
    return updated


def get_field(document: Document, field: str) -> Any:
    value: Any = document
    for part in field.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _sort_value(value: Any) -> Any:
    # ISO strings with and without fractional seconds do not sort lexically
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


def sort_documents(documents: List[Document], order_by: Optional[str]) -> List[Document]:
    """Sort by a (dotted) field; prefix with '-' for descending. Missing values sort last."""
    if not order_by:
        return documents
    descending = order_by.startswith("-")
    field = order_by.lstrip("-")
    present = [d for d in documents if get_field(d, field) is not None]
    missing = [d for d in documents if get_field(d, field) is None]
    present.sort(key=lambda d: _sort_value(get_field(d, field)), reverse=descending)
    return present + missing


class DocumentStore(ABC):
    """Minimal document-store contract consumed by the lifecycle services."""

    @abstractmethod
    async def get_by_id(self, collection: str, document_id: str) -> Document:
        """Return the document with its id under "id"; raise NotFoundError if absent."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        predicate: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        """Return matching documents, optionally ordered and truncated."""

    @abstractmethod
    async def create(self, collection: str, document: Document) -> str:
        """Persist a new document and return its assigned id."""

    @abstractmethod
    async def update(self, collection: str, document_id: str, partial: Document) -> None:
        """Merge partial into an existing document; raise NotFoundError if absent."""

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> None:
        """Remove a document; raise NotFoundError if absent."""

    def server_timestamp(self) -> PendingTimestamp:
        return SERVER_TIMESTAMP


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store. Documents are JSON-encoded on the way in and deep-copied on the way out."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now
        self._collections: Dict[str, Dict[str, Document]] = {}

    def _collection(self, name: str) -> Dict[str, Document]:
        return self._collections.setdefault(name, {})

    def _encode(self, document: Document) -> Document:
        return to_jsonable_python(resolve_timestamps(document, self.clock()))

    async def get_by_id(self, collection: str, document_id: str) -> Document:
        stored = self._collection(collection).get(document_id)
        if stored is None:
            raise NotFoundError(collection, document_id)
        return {**copy.deepcopy(stored), "id": document_id}

    async def query(
        self,
        collection: str,
        predicate: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        documents = [
            {**copy.deepcopy(data), "id": doc_id}
            for doc_id, data in self._collection(collection).items()
        ]
        if predicate is not None:
            documents = [d for d in documents if predicate(d)]
        documents = sort_documents(documents, order_by)
        if limit is not None:
            documents = documents[:limit]
        return documents

    async def create(self, collection: str, document: Document) -> str:
        document_id = str(uuid.uuid4())
        body = {k: v for k, v in document.items() if k != "id"}
        self._collection(collection)[document_id] = self._encode(body)
        return document_id

    async def update(self, collection: str, document_id: str, partial: Document) -> None:
        documents = self._collection(collection)
        if document_id not in documents:
            raise NotFoundError(collection, document_id)
        documents[document_id] = apply_update(documents[document_id], self._encode(partial))

    async def delete(self, collection: str, document_id: str) -> None:
        documents = self._collection(collection)
        if document_id not in documents:
            raise NotFoundError(collection, document_id)
        del documents[document_id]


class SqlDocumentStore(DocumentStore):
    """Async SQLAlchemy store keeping each document as a JSON row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Optional[Clock] = None):
        self.session_factory = session_factory
        self.clock = clock or utc_now

    @asynccontextmanager
    async def _get_session(self):
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    def _encode(self, document: Document) -> Document:
        return to_jsonable_python(resolve_timestamps(document, self.clock()))

    async def _get_row(self, session: AsyncSession, collection: str, document_id: str) -> DocumentORM:
        result = await session.execute(
            select(DocumentORM).where(
                DocumentORM.id == document_id,
                DocumentORM.collection == collection,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(collection, document_id)
        return row

    async def get_by_id(self, collection: str, document_id: str) -> Document:
        async with self._get_session() as s:
            row = await self._get_row(s, collection, document_id)
            return {**copy.deepcopy(row.data), "id": row.id}

    async def query(
        self,
        collection: str,
        predicate: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        async with self._get_session() as s:
            result = await s.execute(
                select(DocumentORM).where(DocumentORM.collection == collection)
            )
            documents = [{**copy.deepcopy(row.data), "id": row.id} for row in result.scalars().all()]

        if predicate is not None:
            documents = [d for d in documents if predicate(d)]
        documents = sort_documents(documents, order_by)
        if limit is not None:
            documents = documents[:limit]
        return documents

    async def create(self, collection: str, document: Document) -> str:
        body = {k: v for k, v in document.items() if k != "id"}
        row = DocumentORM(
            id=str(uuid.uuid4()),
            collection=collection,
            data=self._encode(body),
        )
        async with self._get_session() as s:
            s.add(row)
            await s.flush()
        logger.debug(f"Document created: {collection}/{row.id}")
        return row.id

    async def update(self, collection: str, document_id: str, partial: Document) -> None:
        async with self._get_session() as s:
            row = await self._get_row(s, collection, document_id)
            # Reassign rather than mutate so the JSON column is flagged dirty
            row.data = apply_update(row.data, self._encode(partial))
            await s.flush()

    async def delete(self, collection: str, document_id: str) -> None:
        async with self._get_session() as s:
            row = await self._get_row(s, collection, document_id)
            await s.delete(row)
            await s.flush()
        logger.debug(f"Document deleted: {collection}/{document_id}")
