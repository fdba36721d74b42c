"""
Training-session documents.

A request may carry several files. All of them are decoded and checked against
the size limits before anything is sent to Drive; if one upload fails, the
files already uploaded in the same request are removed again and no local row
is written.
"""

import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import models
from config import config
from services.document_service import (
    DEFAULT_FILE_NAME,
    DocumentLifecycleService,
    decode_base64_payload,
    file_extension,
)
from services.drive_lookup_service import content_link
from services.folder_resolver import sanitize_name
from services.google_drive_real import folder_link
from services.hierarchy_service import CERTIFICATES_FOLDER_NAME, DEAL_DOCUMENTS_FOLDER_NAME
from utils.errors import NotFound, PayloadTooLarge, ValidationError
from utils.structured_logging import documents_logger

SIZE_MISMATCH_MIN_BYTES = 512
SIZE_MISMATCH_RATIO = 0.01
CLEANUP_SUBFOLDERS = (DEAL_DOCUMENTS_FOLDER_NAME, CERTIFICATES_FOLDER_NAME)


@dataclass
class IncomingFile:
    file_name: str
    content_base64: str
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


@dataclass(frozen=True)
class _DecodedFile:
    file_name: str
    data: bytes
    mime_type: Optional[str]


def validate_session_id(session_id: Optional[str]) -> str:
    value = (session_id or "").strip()
    if not value:
        raise ValidationError("session_id is required")
    try:
        uuid.UUID(value)
    except ValueError as exc:
        raise ValidationError("session_id is not a valid UUID") from exc
    return value


def size_label(limit: int) -> str:
    return f"{limit / (1024 * 1024):g} MB"


def size_mismatch(declared: Optional[int], actual: int, ratio: float = SIZE_MISMATCH_RATIO) -> bool:
    """True when a declared size is off from the decoded length by more than max(512 B, ``ratio``)."""
    if not declared or declared <= 0:
        return False
    return abs(actual - declared) > max(SIZE_MISMATCH_MIN_BYTES, declared * ratio)


class SessionDocumentService(DocumentLifecycleService):
    document_type = "session_document"
    model = models.SessionDocument

    def __init__(self, db, drive_service=None, max_bytes: Optional[int] = None, **kwargs):
        super().__init__(db, drive_service=drive_service, **kwargs)
        self.max_bytes = max_bytes or config.SESSION_DOCUMENT_MAX_BYTES

    # --- context ---

    def _get_session(self, deal_id: str, session_id: str) -> models.TrainingSession:
        session_id = validate_session_id(session_id)
        if not deal_id:
            raise ValidationError("deal_id is required")
        session = self.db.get(models.TrainingSession, session_id)
        if session is None or session.deal_id != deal_id:
            raise NotFound(f"Session {session_id} not found for deal {deal_id}")
        if session.deal is None:
            raise NotFound(f"Deal {deal_id} not found")
        return session

    def session_number(self, session: models.TrainingSession) -> int:
        ordered_ids = [
            row.id
            for row in self.db.query(models.TrainingSession.id)
            .filter(models.TrainingSession.deal_id == session.deal_id)
            .order_by(models.TrainingSession.created_at.asc(), models.TrainingSession.id.asc())
            .all()
        ]
        return ordered_ids.index(session.id) + 1 if session.id in ordered_ids else len(ordered_ids) + 1

    def _get_document(self, document_id: str, deal_id: str, session_id: str) -> models.SessionDocument:
        session_id = validate_session_id(session_id)
        document = self.db.get(models.SessionDocument, document_id)
        if document is None or document.deal_id != deal_id or document.session_id != session_id:
            raise NotFound(f"{self.document_type} {document_id} not found")
        return document

    # --- hooks ---

    def _owner_folder_id(self, document, create_if_missing: bool) -> Optional[str]:
        if document.drive_folder_id and not create_if_missing:
            return document.drive_folder_id
        session = self._get_session(document.deal_id, document.session_id)
        chain = self.hierarchy.ensure_session_folder(
            session.deal, session, self.session_number(session), create_if_missing=create_if_missing
        )
        if not chain:
            return None
        if document.drive_folder_id and document.drive_folder_id != chain.session_folder_id:
            return document.drive_folder_id
        return chain.target_folder_id

    def _tags(self, document) -> Dict[str, str]:
        return {
            "ownerId": document.session_id,
            "dealId": document.deal_id,
            "sessionId": document.session_id,
            "recordId": document.id,
        }

    def _remaining_siblings(self, document) -> int:
        return (
            self.db.query(models.SessionDocument)
            .filter(
                models.SessionDocument.deal_id == document.deal_id,
                models.SessionDocument.session_id == document.session_id,
                models.SessionDocument.id != document.id,
            )
            .count()
        )

    def _cleanup_owner_folder(self, document) -> bool:
        """
        Last document of the session: drop the empty well-known sub-folders and
        then the session folder itself when nothing else is left in it.
        """
        session = self.db.get(models.TrainingSession, document.session_id)
        session_folder_id = None
        if session is not None and session.deal is not None:
            chain = self.hierarchy.ensure_session_folder(
                session.deal, session, self.session_number(session), create_if_missing=False
            )
            session_folder_id = chain.session_folder_id if chain else None

        if document.drive_folder_id and document.drive_folder_id != session_folder_id:
            self._delete_folder_if_empty(document.drive_folder_id)
        if not session_folder_id:
            return False

        for name in CLEANUP_SUBFOLDERS:
            subfolder_id = self.hierarchy.resolver.find_folder(session_folder_id, name)
            if subfolder_id:
                self._delete_folder_if_empty(subfolder_id)

        deleted = self._delete_folder_if_empty(session_folder_id)
        if deleted and session.drive_url == folder_link(session_folder_id):
            session.drive_url = None
        return deleted

    # --- operations ---

    def list(self, deal_id: str, session_id: str) -> Tuple[List[models.SessionDocument], Optional[str]]:
        session = self._get_session(deal_id, session_id)
        documents = (
            self.db.query(models.SessionDocument)
            .filter_by(deal_id=deal_id, session_id=session.id)
            .order_by(models.SessionDocument.added_at.asc())
            .all()
        )
        return documents, session.drive_url

    def _decode_files(self, files: Sequence[IncomingFile]) -> List[_DecodedFile]:
        if not files:
            raise ValidationError("At least one file is required")

        limit_label = size_label(self.max_bytes)
        declared_total = sum(item.file_size for item in files if item.file_size and item.file_size > 0)
        if declared_total > self.max_bytes:
            raise PayloadTooLarge(f"Total size of the files exceeds the {limit_label} limit")

        decoded: List[_DecodedFile] = []
        total = 0
        for item in files:
            raw_name = (item.file_name or "").strip()
            if not raw_name:
                raise ValidationError("Every file needs file_name and content_base64")
            data = decode_base64_payload(item.content_base64, field="content_base64")
            if size_mismatch(item.file_size, len(data)):
                raise ValidationError(f'Size of "{raw_name}" does not match the received content')
            if len(data) > self.max_bytes:
                raise PayloadTooLarge(f'File "{raw_name}" exceeds the {limit_label} limit')
            total += len(data)
            if total > self.max_bytes:
                raise PayloadTooLarge(f"Total size of the files exceeds the {limit_label} limit")
            decoded.append(
                _DecodedFile(
                    file_name=sanitize_name(raw_name) or DEFAULT_FILE_NAME,
                    data=data,
                    mime_type=(item.mime_type or "").strip() or None,
                )
            )
        return decoded

    def upload(
        self,
        deal_id: str,
        session_id: str,
        files: Sequence[IncomingFile],
        share_with_trainer: bool = False,
        target_subfolder: Optional[str] = None,
    ) -> Tuple[List[models.SessionDocument], Optional[str]]:
        session = self._get_session(deal_id, session_id)
        decoded = self._decode_files(files)

        chain = self.hierarchy.ensure_session_folder(
            session.deal, session, self.session_number(session), target_subfolder=target_subfolder
        )

        documents: List[models.SessionDocument] = []
        uploaded_ids: List[str] = []
        try:
            for item in decoded:
                record_id = str(uuid.uuid4())
                uploaded = self._upload_and_authorize(
                    chain.target_folder_id,
                    item.file_name,
                    item.data,
                    item.mime_type,
                    tags={
                        "ownerId": session.id,
                        "dealId": deal_id,
                        "sessionId": session.id,
                        "recordId": record_id,
                    },
                )
                uploaded_ids.append(uploaded.id)
                documents.append(
                    models.SessionDocument(
                        id=record_id,
                        deal_id=deal_id,
                        session_id=session.id,
                        file_type=file_extension(item.file_name),
                        share_with_trainer=bool(share_with_trainer),
                        file_name=item.file_name,
                        mime_type=uploaded.mime_type,
                        file_size=len(item.data),
                        drive_file_id=uploaded.id,
                        drive_folder_id=chain.target_folder_id,
                        drive_web_view_link=uploaded.web_view_link,
                        drive_web_content_link=content_link(uploaded.id),
                        file_data=item.data,
                    )
                )
        except Exception:
            for file_id in uploaded_ids:
                self._discard_remote(file_id, reason="failed batch upload")
            raise

        session.drive_url = folder_link(chain.session_folder_id)
        self._commit_new(documents, uploaded_ids)
        self.db.refresh(session)

        documents_logger.info(
            action="upload",
            message=f"Stored {len(documents)} session document(s)",
            drive_file_id=chain.target_folder_id,
            entity_type=self.document_type,
            entity_id=session.id,
            deal_id=deal_id,
        )
        return documents, session.drive_url

    def update_share(self, document_id: str, deal_id: str, session_id: str,
                     share_with_trainer: bool) -> models.SessionDocument:
        document = self._get_document(document_id, deal_id, session_id)
        document.share_with_trainer = bool(share_with_trainer)
        self.db.commit()
        self.db.refresh(document)
        return document

    def delete_for_session(self, document_id: str, deal_id: str, session_id: str):
        self._get_document(document_id, deal_id, session_id)
        return self.delete(document_id)
