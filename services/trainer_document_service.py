"""
Trainer documents (CV, personal paperwork, certificates).

Files go to the trainer's folder under ``Formadores`` on the shared drive and
are stored as ``<type label> - <original name>``. The trainer folder is kept
when its last document is deleted because the trainer profile links to it.
"""

import uuid
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote

import models
from config import config
from services.document_service import DEFAULT_FILE_NAME, DocumentLifecycleService
from services.drive_lookup_service import content_link
from services.folder_resolver import sanitize_name
from services.google_drive_real import folder_link as drive_folder_link
from services.session_document_service import size_label, size_mismatch
from utils.errors import DocumentServiceError, NotFound, PayloadTooLarge, ValidationError
from utils.structured_logging import documents_logger

DOCUMENT_TYPE_LABELS = {
    "curriculum_vitae": "Curriculum Vitae",
    "personales": "Personales",
    "certificados": "Certificados",
    "otros": "Otros",
}
DEFAULT_DOCUMENT_LABEL = "Documento"
DECLARED_SIZE_TOLERANCE = 0.05


def parse_document_type(value: Optional[str]) -> Tuple[str, str]:
    key = (value or "").strip().lower()
    if not key:
        raise ValidationError("document_type is required")
    label = DOCUMENT_TYPE_LABELS.get(key)
    if label is None:
        raise ValidationError(f"Unsupported document_type: {key}")
    return key, label


def document_type_label(document_type: Optional[str]) -> str:
    key = (document_type or "otros").strip().lower()
    return DOCUMENT_TYPE_LABELS.get(key, key)


def normalize_incoming_file_name(name: Optional[str]) -> str:
    """Browsers sometimes send the name percent-encoded."""
    value = (name or "").strip()
    if "%" in value:
        value = unquote(value).strip()
    return value


def stored_file_name(label: str, base_name: str) -> str:
    label = label.strip() or DEFAULT_DOCUMENT_LABEL
    base_name = base_name.strip()
    if not base_name:
        return label
    prefix = f"{label} - "
    if base_name.lower().startswith(prefix.lower()):
        return base_name
    return f"{prefix}{base_name}"


class TrainerDocumentService(DocumentLifecycleService):
    document_type = "trainer_document"
    model = models.TrainerDocument

    def __init__(self, db, drive_service=None, max_bytes: Optional[int] = None, **kwargs):
        super().__init__(db, drive_service=drive_service, **kwargs)
        self.max_bytes = max_bytes or config.TRAINER_DOCUMENT_MAX_BYTES

    def _get_trainer(self, trainer_id: str) -> models.Trainer:
        trainer = self.db.get(models.Trainer, trainer_id)
        if trainer is None:
            raise NotFound(f"Trainer {trainer_id} not found")
        return trainer

    def _owner_folder_id(self, document, create_if_missing: bool) -> Optional[str]:
        return self.hierarchy.ensure_trainer_folder(self._get_trainer(document.trainer_id), create_if_missing)

    def _tags(self, document) -> Dict[str, str]:
        return {"trainerId": document.trainer_id, "recordId": document.id}

    def _remaining_siblings(self, document) -> int:
        return (
            self.db.query(models.TrainerDocument)
            .filter(models.TrainerDocument.trainer_id == document.trainer_id,
                    models.TrainerDocument.id != document.id)
            .count()
        )

    def _cleanup_owner_folder(self, document) -> bool:
        return False

    def folder_link(self, trainer: models.Trainer) -> Optional[str]:
        """Link to an existing trainer folder; lookup failures only cost the link."""
        try:
            return self.hierarchy.trainer_folder_link(trainer, create_if_missing=False)
        except DocumentServiceError as exc:
            documents_logger.warning(
                action="trainer_folder_link",
                message="Could not resolve trainer folder link",
                entity_type="trainer",
                entity_id=trainer.id,
                error=exc,
            )
            return None

    def list(self, trainer_id: str) -> Tuple[List[models.TrainerDocument], Optional[str]]:
        trainer = self._get_trainer(trainer_id)
        documents = (
            self.db.query(models.TrainerDocument)
            .filter_by(trainer_id=trainer_id)
            .order_by(models.TrainerDocument.created_at.desc())
            .all()
        )
        return documents, self.folder_link(trainer)

    def upload(
        self,
        trainer_id: str,
        document_type: Optional[str],
        file_name: Optional[str],
        data: bytes,
        mime_type: Optional[str] = None,
        declared_size: Optional[int] = None,
    ) -> Tuple[models.TrainerDocument, str]:
        """
        Store one trainer document. Returns the record and the trainer folder
        link.
        """
        type_key, type_label = parse_document_type(document_type)
        trainer = self._get_trainer(trainer_id)
        if not data:
            raise ValidationError("File content is empty")
        if len(data) > self.max_bytes:
            raise PayloadTooLarge(f"File exceeds the {size_label(self.max_bytes)} limit")
        if size_mismatch(declared_size, len(data), ratio=DECLARED_SIZE_TOLERANCE):
            raise ValidationError("Declared file size does not match the received content")

        original_name = sanitize_name(normalize_incoming_file_name(file_name)) or DEFAULT_DOCUMENT_LABEL
        safe_name = sanitize_name(stored_file_name(type_label, original_name)) or DEFAULT_FILE_NAME
        document = models.TrainerDocument(
            id=str(uuid.uuid4()),
            trainer_id=trainer_id,
            document_type=type_key,
            file_name=safe_name,
            original_file_name=original_name,
        )

        folder_id = self.hierarchy.ensure_trainer_folder(trainer)
        uploaded = self._upload_and_authorize(folder_id, safe_name, data, mime_type, tags=self._tags(document))

        document.mime_type = uploaded.mime_type
        document.file_size = len(data)
        document.drive_file_id = uploaded.id
        document.drive_folder_id = folder_id
        document.drive_web_view_link = uploaded.web_view_link
        document.drive_web_content_link = content_link(uploaded.id)
        document.file_data = data
        self._commit_new([document], [uploaded.id])

        documents_logger.info(
            action="upload",
            message="Stored trainer document",
            drive_file_id=uploaded.id,
            entity_type=self.document_type,
            entity_id=document.id,
            trainer_id=trainer_id,
        )
        return document, drive_folder_link(folder_id)
