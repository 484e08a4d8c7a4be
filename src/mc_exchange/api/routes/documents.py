"""Document routes: upload, retrieval, deletion and admin review.

Files are written to the local upload directory and served under
``/uploads``; the database row tracks the review status.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status

from mc_exchange.api.dependencies import AdminUser, CurrentUser, Pages
from mc_exchange.api.limiter import UPLOAD_LIMIT, limiter
from mc_exchange.core.document_service import DocumentService, get_document_service
from mc_exchange.core.models.enums import DocumentType
from mc_exchange.core.schemas.common import Pagination, ok
from mc_exchange.core.schemas.misc import DocumentRead, DocumentReview

router = APIRouter()


@router.post("/", status_code=status.HTTP_201_CREATED)
@limiter.limit(UPLOAD_LIMIT)
async def upload_document(
    request: Request,
    user: CurrentUser,
    file: UploadFile = File(...),
    document_type: DocumentType = Form(default=DocumentType.OTHER, alias="type"),
    listing_id: Optional[uuid.UUID] = Form(default=None, alias="listingId"),
    transaction_id: Optional[uuid.UUID] = Form(default=None, alias="transactionId"),
    service: DocumentService = Depends(get_document_service),
) -> dict:
    """Upload a file attached to a listing or a transaction."""
    document = await service.upload(
        user,
        data=await file.read(),
        filename=file.filename or "document",
        mime_type=file.content_type or "application/octet-stream",
        type=document_type,
        listing_id=listing_id,
        transaction_id=transaction_id,
    )
    return ok(DocumentRead.model_validate(document), message="Document uploaded")


@router.get("/admin/pending")
async def pending_documents(
    admin: AdminUser,
    pages: Pages,
    service: DocumentService = Depends(get_document_service),
) -> dict:
    rows, total = await service.list_pending(offset=pages.offset, limit=pages.limit)
    return ok(
        [DocumentRead.model_validate(row) for row in rows],
        pagination=Pagination.build(pages.page, pages.limit, total),
    )


@router.get("/listing/{listing_id}")
async def listing_documents(
    listing_id: uuid.UUID,
    user: CurrentUser,
    service: DocumentService = Depends(get_document_service),
) -> dict:
    result = await service.list_for_listing(listing_id, user)
    return ok(
        {
            "documents": [DocumentRead.model_validate(doc) for doc in result["documents"]],
            "count": result["count"],
            "restricted": result["restricted"],
        }
    )


@router.get("/transaction/{transaction_id}")
async def transaction_documents(
    transaction_id: uuid.UUID,
    user: CurrentUser,
    service: DocumentService = Depends(get_document_service),
) -> dict:
    rows = await service.list_for_transaction(transaction_id, user)
    return ok([DocumentRead.model_validate(row) for row in rows])


@router.get("/{document_id}")
async def get_document(
    document_id: uuid.UUID,
    user: CurrentUser,
    service: DocumentService = Depends(get_document_service),
) -> dict:
    return ok(DocumentRead.model_validate(await service.get(document_id, user)))


@router.delete("/{document_id}")
async def delete_document(
    document_id: uuid.UUID,
    user: CurrentUser,
    service: DocumentService = Depends(get_document_service),
) -> dict:
    await service.delete(document_id, user)
    return ok(message="Document deleted")


@router.put("/{document_id}/verify")
async def review_document(
    document_id: uuid.UUID,
    body: DocumentReview,
    admin: AdminUser,
    service: DocumentService = Depends(get_document_service),
) -> dict:
    document = await service.review(document_id, admin.id, body.status)
    return ok(DocumentRead.model_validate(document), message=f"Document {document.status.lower()}")
