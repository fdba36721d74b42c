from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from schemas.documents import DealDocumentCreate, DealDocumentResponse
from services.document_service import DealDocumentService, decode_base64_payload

router = APIRouter(prefix="/api/deal_documents", tags=["deal_documents"])


def get_deal_document_service(db: Session = Depends(get_db)) -> DealDocumentService:
    return DealDocumentService(db)


def _serialize(document) -> dict:
    return DealDocumentResponse.model_validate(document).model_dump(mode="json")


@router.get("")
def list_deal_documents(
    deal_id: str = Query(..., min_length=1),
    service: DealDocumentService = Depends(get_deal_document_service),
):
    return {"ok": True, "documents": [_serialize(doc) for doc in service.list(deal_id)]}


@router.post("", status_code=201)
def create_deal_document(
    payload: DealDocumentCreate,
    service: DealDocumentService = Depends(get_deal_document_service),
):
    data = decode_base64_payload(payload.content_base64, field="file_data")
    document = service.upload(
        deal_id=payload.deal_id,
        owner_id=payload.owner_id,
        file_name=payload.file_name,
        data=data,
        mime_type=payload.mime_type,
    )
    return {"ok": True, "document": _serialize(document)}


@router.delete("/deals/{deal_id}/folder")
def delete_deal_folder(deal_id: str, service: DealDocumentService = Depends(get_deal_document_service)):
    return {"ok": True, "folder_deleted": service.delete_deal_folder(deal_id)}


@router.delete("/{document_id}")
def delete_deal_document(document_id: str, service: DealDocumentService = Depends(get_deal_document_service)):
    return service.delete(document_id).to_payload()
