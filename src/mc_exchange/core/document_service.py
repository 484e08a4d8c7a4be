"""Listing and transaction documents.

Sellers attach insurance certificates, UCC filings and similar files to
their listings; transaction parties exchange bills of sale and payment
proofs.  Files live on local disk (:mod:`mc_exchange.core.storage_service`)
and every document starts PENDING until an admin verifies or rejects it.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

import structlog
from fastapi import Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mc_exchange.config.settings import get_settings
from mc_exchange.core.database import get_db
from mc_exchange.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from mc_exchange.core.models.enums import DocumentStatus, DocumentType, UserRole
from mc_exchange.core.models.listings import Document, Listing, UnlockedListing
from mc_exchange.core.models.transactions import Transaction
from mc_exchange.core.models.users import User
from mc_exchange.core.storage_service import LocalStorage, get_storage

logger = structlog.get_logger(__name__)


class DocumentService:
    def __init__(self, session: AsyncSession, storage: Optional[LocalStorage] = None) -> None:
        self.session = session
        self.storage = storage or get_storage()

    async def upload(
        self,
        uploader: User,
        *,
        data: bytes,
        filename: str,
        mime_type: str,
        type: DocumentType,
        listing_id: Optional[uuid.UUID] = None,
        transaction_id: Optional[uuid.UUID] = None,
    ) -> Document:
        """Store a file and create its PENDING document row.

        Raises:
            BadRequestError: No target given, file too large or type not allowed.
            NotFoundError: Unknown listing or transaction.
            ForbiddenError: Listing not owned, or caller not a transaction party.
        """
        settings = get_settings()
        if listing_id is None and transaction_id is None:
            raise BadRequestError("A listing or transaction is required")
        if len(data) > settings.max_file_size:
            raise BadRequestError("File too large")
        if mime_type not in settings.allowed_file_types:
            raise BadRequestError(f"File type {mime_type} is not allowed")

        if listing_id is not None:
            listing = await self.session.get(Listing, listing_id)
            if listing is None:
                raise NotFoundError("Listing")
            if listing.seller_id != uploader.id and uploader.role != UserRole.ADMIN:
                raise ForbiddenError("You can only upload documents to your own listings")
        if transaction_id is not None:
            transaction = await self.session.get(Transaction, transaction_id)
            if transaction is None:
                raise NotFoundError("Transaction")
            if not transaction.is_party(uploader.id) and uploader.role != UserRole.ADMIN:
                raise ForbiddenError("You are not part of this transaction")

        folder = f"listings/{listing_id}" if listing_id else f"transactions/{transaction_id}"
        stored = await self.storage.save(data, filename, folder=folder)
        document = Document(
            uploader_id=uploader.id,
            listing_id=listing_id,
            transaction_id=transaction_id,
            type=type.value,
            name=filename,
            url=self.storage.url_for(stored),
            size=len(data),
            mime_type=mime_type,
            status=DocumentStatus.PENDING.value,
        )
        self.session.add(document)
        await self.session.commit()
        logger.info(
            "document_uploaded",
            document_id=str(document.id),
            listing_id=str(listing_id) if listing_id else None,
            transaction_id=str(transaction_id) if transaction_id else None,
            size=len(data),
        )
        return document

    async def get(self, document_id: uuid.UUID, user: User) -> Document:
        document = await self._get(document_id)
        if not await self._can_view(document, user):
            raise ForbiddenError("You do not have access to this document")
        return document

    async def list_for_listing(self, listing_id: uuid.UUID, user: User) -> dict[str, Any]:
        """Documents of a listing.

        Buyers who have not unlocked the listing only learn how many
        documents exist (``restricted`` is ``True``).
        """
        listing = await self.session.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError("Listing")

        allowed = user.role == UserRole.ADMIN or listing.seller_id == user.id
        if not allowed:
            unlocked = await self.session.execute(
                select(UnlockedListing.id).where(
                    UnlockedListing.user_id == user.id,
                    UnlockedListing.listing_id == listing_id,
                )
            )
            allowed = unlocked.first() is not None

        if not allowed:
            count = (
                await self.session.execute(
                    select(func.count()).select_from(Document).where(Document.listing_id == listing_id)
                )
            ).scalar_one()
            return {"documents": [], "count": int(count), "restricted": True}

        rows = await self.session.execute(
            select(Document)
            .where(Document.listing_id == listing_id)
            .order_by(Document.created_at.desc())
        )
        documents = list(rows.scalars().all())
        return {"documents": documents, "count": len(documents), "restricted": False}

    async def list_for_transaction(self, transaction_id: uuid.UUID, user: User) -> list[Document]:
        transaction = await self.session.get(Transaction, transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction")
        if user.role != UserRole.ADMIN and not transaction.is_party(user.id):
            raise ForbiddenError("You are not part of this transaction")
        rows = await self.session.execute(
            select(Document)
            .where(Document.transaction_id == transaction_id)
            .order_by(Document.created_at.desc())
        )
        return list(rows.scalars().all())

    async def delete(self, document_id: uuid.UUID, user: User) -> None:
        document = await self._get(document_id)
        is_owner = document.listing is not None and document.listing.seller_id == user.id
        if user.role != UserRole.ADMIN and document.uploader_id != user.id and not is_owner:
            raise ForbiddenError("You cannot delete this document")
        await self.session.delete(document)
        await self.session.commit()
        await self.storage.delete(self.storage.relative_from_url(document.url))
        logger.info("document_deleted", document_id=str(document_id), user_id=str(user.id))

    async def review(
        self,
        document_id: uuid.UUID,
        admin_id: uuid.UUID,
        status: DocumentStatus,
    ) -> Document:
        """Mark a document VERIFIED or REJECTED."""
        if status not in (DocumentStatus.VERIFIED, DocumentStatus.REJECTED):
            raise BadRequestError("Documents can only be verified or rejected")
        document = await self._get(document_id)
        document.status = status.value
        document.verified_by = admin_id
        document.verified_at = datetime.now(UTC)
        await self.session.commit()
        logger.info("document_reviewed", document_id=str(document.id), status=status.value)
        return document

    async def list_pending(
        self, *, offset: int = 0, limit: int = 20
    ) -> tuple[list[Document], int]:
        total = (
            await self.session.execute(
                select(func.count())
                .select_from(Document)
                .where(Document.status == DocumentStatus.PENDING)
            )
        ).scalar_one()
        rows = await self.session.execute(
            select(Document)
            .where(Document.status == DocumentStatus.PENDING)
            .options(selectinload(Document.listing))
            .order_by(Document.created_at.asc())
            .offset(offset)
            .limit(limit)
        )
        return list(rows.scalars().all()), int(total)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get(self, document_id: uuid.UUID) -> Document:
        document = (
            await self.session.execute(
                select(Document)
                .where(Document.id == document_id)
                .options(selectinload(Document.listing))
            )
        ).scalar_one_or_none()
        if document is None:
            raise NotFoundError("Document")
        return document

    async def _can_view(self, document: Document, user: User) -> bool:
        if user.role == UserRole.ADMIN or document.uploader_id == user.id:
            return True
        if document.listing is not None and document.listing.seller_id == user.id:
            return True
        if document.transaction_id is not None:
            transaction = await self.session.get(Transaction, document.transaction_id)
            return transaction is not None and transaction.is_party(user.id)
        return False


# ---------------------------------------------------------------------------
# FastAPI dependency factory
# ---------------------------------------------------------------------------


async def get_document_service(session: AsyncSession = Depends(get_db)) -> DocumentService:
    return DocumentService(session=session)
