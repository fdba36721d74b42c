from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from schemas.documents import SessionDocumentResponse, SessionDocumentsCreate, SessionDocumentUpdate
from services.session_document_service import IncomingFile, SessionDocumentService

router = APIRouter(prefix="/api/session_documents", tags=["session_documents"])


def get_session_document_service(db: Session = Depends(get_db)) -> SessionDocumentService:
    return SessionDocumentService(db)


def _serialize(document) -> dict:
    return SessionDocumentResponse.model_validate(document).model_dump(mode="json")


@router.get("")
def list_session_documents(
    deal_id: str = Query(..., min_length=1),
    session_id: str = Query(..., min_length=1),
    service: SessionDocumentService = Depends(get_session_document_service),
):
    documents, drive_url = service.list(deal_id, session_id)
    return {"ok": True, "documents": [_serialize(doc) for doc in documents], "drive_url": drive_url}


@router.post("", status_code=201)
def create_session_documents(
    payload: SessionDocumentsCreate,
    service: SessionDocumentService = Depends(get_session_document_service),
):
    files = [
        IncomingFile(
            file_name=item.file_name or "",
            content_base64=item.content_base64 or "",
            mime_type=item.mime_type,
            file_size=item.file_size,
        )
        for item in payload.files
    ]
    documents, drive_url = service.upload(
        deal_id=payload.deal_id,
        session_id=payload.session_id,
        files=files,
        share_with_trainer=payload.share_with_trainer,
        target_subfolder=payload.target_subfolder,
    )
    return {"ok": True, "documents": [_serialize(doc) for doc in documents], "drive_url": drive_url}


@router.patch("/{document_id}")
def update_session_document(
    document_id: str,
    payload: SessionDocumentUpdate,
    service: SessionDocumentService = Depends(get_session_document_service),
):
    document = service.update_share(
        document_id, payload.deal_id, payload.session_id, payload.share_with_trainer
    )
    return {"ok": True, "document": _serialize(document)}


@router.delete("/{document_id}")
def delete_session_document(
    document_id: str,
    deal_id: str = Query(..., min_length=1),
    session_id: str = Query(..., min_length=1),
    service: SessionDocumentService = Depends(get_session_document_service),
):
    return service.delete_for_session(document_id, deal_id, session_id).to_payload()
