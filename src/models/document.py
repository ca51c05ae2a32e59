"""Stored document ORM model backing the document store."""

from typing import Any

from sqlalchemy import JSON, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.models import Base, BaseModel


class StoredDocument(Base, BaseModel):
    """One JSON document addressed by (collection, doc_id).

    Collections are slash-separated paths such as ``bills/ACC-001/records``,
    so every account's bills live in their own collection and per-account
    queries never scan other accounts.
    """

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Collection path (e.g., 'ledgers', 'bills/ACC-001/records')",
    )

    doc_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Document identifier, unique within its collection",
    )

    data: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Document body (Decimal values stored as strings)",
    )

    __table_args__ = (
        UniqueConstraint("collection", "doc_id", name="uq_document_collection_id"),
        Index("idx_document_collection", "collection"),
    )

    def __repr__(self) -> str:
        return (
            f"<StoredDocument(id={self.id}, collection={self.collection!r}, "
            f"doc_id={self.doc_id!r})>"
        )


__all__ = ["StoredDocument"]
