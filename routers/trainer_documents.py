from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from schemas.documents import TrainerDocumentCreate, TrainerDocumentResponse
from services.document_service import decode_base64_payload
from services.trainer_document_service import TrainerDocumentService, document_type_label

router = APIRouter(prefix="/api/trainer_documents", tags=["trainer_documents"])


def get_trainer_document_service(db: Session = Depends(get_db)) -> TrainerDocumentService:
    return TrainerDocumentService(db)


def _serialize(document) -> dict:
    payload = TrainerDocumentResponse.model_validate(document).model_dump(mode="json")
    payload["document_type_label"] = document_type_label(document.document_type)
    return payload


@router.get("")
def list_trainer_documents(
    trainer_id: str = Query(..., min_length=1),
    service: TrainerDocumentService = Depends(get_trainer_document_service),
):
    documents, folder_link = service.list(trainer_id)
    return {
        "ok": True,
        "documents": [_serialize(doc) for doc in documents],
        "drive_folder_web_view_link": folder_link,
    }


@router.post("", status_code=201)
def create_trainer_document(
    payload: TrainerDocumentCreate,
    service: TrainerDocumentService = Depends(get_trainer_document_service),
):
    data = decode_base64_payload(payload.content_base64, field="content_base64")
    document, folder_link = service.upload(
        trainer_id=payload.trainer_id,
        document_type=payload.document_type,
        file_name=payload.file_name,
        data=data,
        mime_type=payload.mime_type,
        declared_size=payload.file_size,
    )
    return {"ok": True, "document": _serialize(document), "drive_folder_web_view_link": folder_link}


@router.post("/{document_id}/resync")
def resync_trainer_document(document_id: str, service: TrainerDocumentService = Depends(get_trainer_document_service)):
    document, result = service.resync(document_id)
    return {"ok": True, "status": result.status, "document": _serialize(document)}


@router.delete("/{document_id}")
def delete_trainer_document(document_id: str, service: TrainerDocumentService = Depends(get_trainer_document_service)):
    result = service.delete(document_id)
    return {"deleted": True, "document_id": document_id, **result.to_payload()}
