"""Abstract document store contract consumed by the billing core.

The store offers single-document atomic puts and bounded bulk writes whose
operations may succeed or fail individually. Nothing in the billing core
depends on the persistence technology behind it.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, NamedTuple, Sequence

from src.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

Predicate = Callable[[dict[str, Any]], bool]


class Document(NamedTuple):
    """Stored document: identifier plus JSON body."""

    id: str
    data: dict[str, Any]


class WriteOperation(NamedTuple):
    """Upsert of one document, as submitted to bulk_write."""

    collection: str
    doc_id: str
    data: dict[str, Any]

    @property
    def key(self) -> tuple[str, str]:
        return self.collection, self.doc_id


class FailedWrite(NamedTuple):
    """Operation rejected by the store together with the reason."""

    operation: WriteOperation
    error: str


class BulkWriteResult(NamedTuple):
    """Per-operation outcome of a bulk write."""

    committed: list[WriteOperation]
    failed: list[FailedWrite]

    @property
    def ok(self) -> bool:
        return not self.failed


class StoreReader(ABC):
    """Read side of the store contract."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Get one document, None if it does not exist."""

    @abstractmethod
    async def query(self, collection: str, predicate: Predicate | None = None) -> list[Document]:
        """List documents of a collection (ordered by id) matching the predicate."""


class Store(StoreReader):
    """Full store contract: reads, atomic puts, bounded bulk writes, watch."""

    max_operations: int = 400

    @abstractmethod
    async def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Upsert one document atomically."""

    @abstractmethod
    async def bulk_write(self, operations: Sequence[WriteOperation]) -> BulkWriteResult:
        """Upsert up to max_operations documents, best effort.

        Raises:
            ValueError: more operations than max_operations
            StoreUnavailable: nothing could be written
        """

    async def watch(
        self,
        collection: str,
        predicate: Predicate | None = None,
        poll_interval: float = 1.0,
    ) -> AsyncIterator[Document]:
        """Yield documents of a collection whenever they appear or change.

        Polling implementation; only UI collaborators use it.
        """
        seen: dict[str, dict[str, Any]] = {}
        while True:
            for document in await self.query(collection, predicate):
                if seen.get(document.id) != document.data:
                    seen[document.id] = document.data
                    yield document
            await asyncio.sleep(poll_interval)


async def write_with_retries(
    store: Store,
    operations: Sequence[WriteOperation],
    retries: int,
) -> list[FailedWrite]:
    """Bulk-write operations, re-submitting failed ones up to `retries` times.

    Operations are split into chunks of the store's max_operations. Puts are
    absolute post-states, so re-submitting an operation is idempotent.

    Returns:
        Operations still failing after the last attempt (empty on success)
    """
    pending = list(operations)
    failures: list[FailedWrite] = []
    chunk_size = store.max_operations

    for attempt in range(retries + 1):
        if not pending:
            return []
        failures = []
        for start in range(0, len(pending), chunk_size):
            chunk = pending[start : start + chunk_size]
            try:
                result = await store.bulk_write(chunk)
            except StoreUnavailable as e:
                failures.extend(FailedWrite(op, e.message) for op in chunk)
            else:
                failures.extend(result.failed)

        if not failures:
            return []

        logger.warning(
            "Bulk write attempt %d/%d: %d of %d operations failed",
            attempt + 1,
            retries + 1,
            len(failures),
            len(pending),
        )
        pending = [failure.operation for failure in failures]

    return failures


__all__ = [
    "BulkWriteResult",
    "Document",
    "FailedWrite",
    "Predicate",
    "Store",
    "StoreReader",
    "WriteOperation",
    "write_with_retries",
]
