from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from database import get_db
from schemas.documents import UserDocumentCreate, UserDocumentResponse
from services.document_service import UserDocumentService, decode_base64_payload

router = APIRouter(prefix="/api/user_documents", tags=["user_documents"])


def get_user_document_service(db: Session = Depends(get_db)) -> UserDocumentService:
    return UserDocumentService(db)


def _serialize(document) -> dict:
    return UserDocumentResponse.model_validate(document).model_dump(mode="json")


@router.get("")
def list_user_documents(
    user_id: str = Query(..., min_length=1),
    service: UserDocumentService = Depends(get_user_document_service),
):
    return {"ok": True, "documents": [_serialize(doc) for doc in service.list(user_id)]}


@router.get("/{document_id}")
def download_user_document(document_id: str, service: UserDocumentService = Depends(get_user_document_service)):
    """Serve the locally stored bytes as an attachment."""
    document = service.get(document_id)
    disposition = f"attachment; filename*=UTF-8''{quote(document.file_name)}"
    return Response(
        content=document.file_data or b"",
        media_type=document.mime_type or "application/octet-stream",
        headers={"Content-Disposition": disposition},
    )


@router.post("", status_code=201)
def create_user_document(
    payload: UserDocumentCreate,
    service: UserDocumentService = Depends(get_user_document_service),
):
    data = decode_base64_payload(payload.content_base64, field="file_data")
    document = service.upload(
        user_id=payload.user_id,
        file_name=payload.file_name,
        data=data,
        mime_type=payload.mime_type,
        title=payload.title,
        document_type=payload.document_type,
        expense_amount=payload.expense_amount,
        expense_date=payload.expense_date,
    )
    return {"ok": True, "document": _serialize(document)}


@router.post("/{document_id}/resync")
def resync_user_document(document_id: str, service: UserDocumentService = Depends(get_user_document_service)):
    document, result = service.resync(document_id)
    return {"ok": True, "status": result.status, "document": _serialize(document)}


@router.delete("/{document_id}")
def delete_user_document(document_id: str, service: UserDocumentService = Depends(get_user_document_service)):
    return service.delete(document_id).to_payload()
