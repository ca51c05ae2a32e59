"""Document store implemented on SQLAlchemy async sessions."""

import logging
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.document import StoredDocument
from src.services.errors import StoreUnavailable
from src.services.store import (
    BulkWriteResult,
    Document,
    FailedWrite,
    Predicate,
    Store,
    WriteOperation,
)

logger = logging.getLogger(__name__)


class SqlDocumentStore(Store):
    """Store backed by the `documents` table.

    Every call opens its own session, so concurrent batch tasks never share one.
    Bulk writes run each operation in a SAVEPOINT: one failing operation is
    reported without discarding the others.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_operations: int = 400,
    ):
        """Initialize with a session factory.

        Args:
            session_factory: async_sessionmaker bound to the store engine
            max_operations: Bulk write ceiling (operations per call)
        """
        self.session_factory = session_factory
        self.max_operations = max_operations

    async def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            async with self.session_factory() as session:
                row = await self._find(session, collection, doc_id)
                if row is None:
                    return None
                return Document(row.doc_id, dict(row.data))
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"get {collection}/{doc_id} failed: {e}") from e

    async def query(self, collection: str, predicate: Predicate | None = None) -> list[Document]:
        stmt = (
            select(StoredDocument)
            .where(StoredDocument.collection == collection)
            .order_by(StoredDocument.doc_id.asc())
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
                documents = [Document(row.doc_id, dict(row.data)) for row in rows]
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"query {collection} failed: {e}") from e

        if predicate is None:
            return documents
        return [document for document in documents if predicate(document.data)]

    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._upsert(session, collection, doc_id, data)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"put {collection}/{doc_id} failed: {e}") from e

    async def bulk_write(self, operations: Sequence[WriteOperation]) -> BulkWriteResult:
        if len(operations) > self.max_operations:
            raise ValueError(
                f"Bulk write of {len(operations)} operations exceeds limit {self.max_operations}"
            )

        committed: list[WriteOperation] = []
        failed: list[FailedWrite] = []

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    for op in operations:
                        try:
                            async with session.begin_nested():
                                await self._upsert(session, op.collection, op.doc_id, op.data)
                        except SQLAlchemyError as e:
                            logger.warning(
                                "Bulk write operation %s/%s failed: %s",
                                op.collection,
                                op.doc_id,
                                e,
                            )
                            failed.append(FailedWrite(op, str(e)))
                        else:
                            committed.append(op)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"bulk write of {len(operations)} operations failed: {e}") from e

        return BulkWriteResult(committed=committed, failed=failed)

    @staticmethod
    async def _find(session: AsyncSession, collection: str, doc_id: str) -> StoredDocument | None:
        stmt = select(StoredDocument).where(
            StoredDocument.collection == collection,
            StoredDocument.doc_id == doc_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _upsert(
        self,
        session: AsyncSession,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
    ) -> None:
        row = await self._find(session, collection, doc_id)
        if row is None:
            session.add(StoredDocument(collection=collection, doc_id=doc_id, data=dict(data)))
        else:
            # New dict instance so the JSON column is flagged dirty
            row.data = dict(data)
        await session.flush()


__all__ = ["SqlDocumentStore"]
