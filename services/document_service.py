"""
Document lifecycle: Drive mirror plus local record.

Upload order is fixed: resolve the folder chain, upload the bytes tagged with
the owning record, grant domain access, and only then write the local row
(in one transaction together with any ledger side effects). A failure before
the commit leaves no local row.

Deletion is two-phase. The remote file (and, when it was the last record of
its owner, the owner's empty folder) is removed best-effort; the local row is
always removed. ``DeletionResult`` reports both phases.
"""

import base64
import binascii
import re
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

import models
from services.drive_lookup_service import DriveLookupService, content_link
from services.drive_permissions_service import DrivePermissionsService
from services.events import DomainEventBus, ExpenseDocumentUploaded
from services.folder_resolver import sanitize_name
from services.google_drive_real import UploadedFile, folder_link
from services.hierarchy_service import (
    HierarchyService,
    get_drive_service,
    get_user_documents_drive_service,
)
from services.payroll_ledger_service import build_event_bus
from utils.errors import NotFound, UpstreamError, ValidationError
from utils.prometheus import DOCUMENT_OPERATIONS
from utils.structured_logging import documents_logger

EXPENSE_DOCUMENT_TYPES = {"gasto", "expense"}
DEFAULT_FILE_NAME = "documento"
_DATA_URL_PREFIX = re.compile(r"^data:[^,]*;base64,", re.IGNORECASE)
_URL_SAFE_ALPHABET = str.maketrans("-_", "+/")


@dataclass(frozen=True)
class DeletionResult:
    local_deleted: bool
    remote_deleted: bool
    folder_deleted: bool = False
    remote_error: Optional[str] = None

    def to_payload(self) -> dict:
        payload = {"ok": True, "drive_deleted": self.remote_deleted, "folder_deleted": self.folder_deleted}
        if self.remote_error:
            payload["drive_error"] = self.remote_error
        return payload


@dataclass(frozen=True)
class ResyncResult:
    status: str  # "verified" | "relinked" | "reuploaded"
    drive_file_id: str


def decode_base64_payload(value: Optional[str], field: str = "file_data") -> bytes:
    """Decode a base64 (or ``data:`` URL) payload; empty or malformed input is a ValidationError."""
    if not value or not value.strip():
        raise ValidationError(f"{field} is required")
    cleaned = _DATA_URL_PREFIX.sub("", value.strip())
    cleaned = "".join(cleaned.split()).translate(_URL_SAFE_ALPHABET)
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        data = base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"{field} is not valid base64") from exc
    if not data:
        raise ValidationError(f"{field} is empty")
    return data


def file_extension(file_name: str) -> str:
    _, dot, extension = file_name.rpartition(".")
    extension = extension.strip().lower()
    if not dot or not extension or len(extension) > 10:
        return "bin"
    return extension


class DocumentLifecycleService:
    """Shared upload/delete/resync plumbing for the per-document-type services."""

    document_type = "document"
    model = None

    def __init__(
        self,
        db: Session,
        drive_service=None,
        hierarchy: Optional[HierarchyService] = None,
        permissions: Optional[DrivePermissionsService] = None,
        lookup: Optional[DriveLookupService] = None,
    ):
        self.db = db
        self.drive_service = drive_service or self._default_drive_service()
        self.hierarchy = hierarchy or HierarchyService(self.drive_service)
        self.permissions = permissions or DrivePermissionsService(self.drive_service)
        self.lookup = lookup or DriveLookupService(self.drive_service)

    def _default_drive_service(self):
        return get_drive_service()

    # --- hooks ---

    def _owner_folder_id(self, document, create_if_missing: bool) -> Optional[str]:
        raise NotImplementedError

    def _tags(self, document) -> Dict[str, str]:
        raise NotImplementedError

    def _remaining_siblings(self, document) -> int:
        raise NotImplementedError

    def _cleanup_owner_folder(self, document) -> bool:
        folder_id = document.drive_folder_id
        if not folder_id:
            return False
        return self._delete_folder_if_empty(folder_id)

    # --- upload ---

    def get(self, document_id: str):
        document = self.db.get(self.model, document_id)
        if document is None:
            raise NotFound(f"{self.document_type} {document_id} not found")
        return document

    def _upload_and_authorize(self, folder_id: str, file_name: str, data: bytes,
                              mime_type: Optional[str], tags: Dict[str, str]) -> UploadedFile:
        uploaded = self.drive_service.upload_file(folder_id, file_name, data, mime_type, app_properties=tags)
        try:
            self.permissions.grant_domain_access(uploaded.id)
        except Exception:
            self._discard_remote(uploaded.id, reason="permission grant failed")
            raise
        return uploaded

    def _discard_remote(self, file_id: str, reason: str) -> None:
        """Best-effort removal of a file whose local record will not be written."""
        try:
            self.drive_service.delete_file(file_id)
        except Exception as exc:
            documents_logger.error(
                action="discard_orphan",
                message=f"Could not remove orphaned Drive file after {reason}",
                error=exc,
                drive_file_id=file_id,
                entity_type=self.document_type,
            )

    def _commit_new(self, documents: List, uploaded_ids: List[str], publish=None) -> None:
        try:
            for document in documents:
                self.db.add(document)
            if publish:
                publish()
            self.db.commit()
        except Exception:
            self.db.rollback()
            for file_id in uploaded_ids:
                self._discard_remote(file_id, reason="database error")
            DOCUMENT_OPERATIONS.labels(self.document_type, "upload", "error").inc()
            raise
        for document in documents:
            self.db.refresh(document)
        DOCUMENT_OPERATIONS.labels(self.document_type, "upload", "success").inc()

    # --- delete ---

    def _delete_folder_if_empty(self, folder_id: str) -> bool:
        if self.drive_service.has_children(folder_id):
            return False
        self.drive_service.delete_file(folder_id)
        return True

    def _locate_remote(self, document) -> Optional[str]:
        return self.lookup.locate(
            folder_id=document.drive_folder_id,
            file_id=document.drive_file_id,
            links=[document.drive_web_view_link, document.drive_web_content_link],
            tags={"recordId": document.id},
            file_name=document.file_name,
        )

    def delete(self, document_id: str) -> DeletionResult:
        document = self.get(document_id)
        remote_deleted = False
        folder_deleted = False
        remote_error = None

        try:
            file_id = self._locate_remote(document)
            if file_id:
                self.drive_service.delete_file(file_id)
                remote_deleted = True
            else:
                remote_error = "Drive file not found"
        except Exception as exc:
            remote_error = str(exc)
            documents_logger.warning(
                action="delete_remote",
                message="Drive file could not be deleted; removing local record anyway",
                drive_file_id=document.drive_file_id,
                entity_type=self.document_type,
                entity_id=document.id,
                error=exc,
            )

        if remote_deleted and self._remaining_siblings(document) == 0:
            try:
                folder_deleted = self._cleanup_owner_folder(document)
            except Exception as exc:
                documents_logger.warning(
                    action="delete_folder",
                    message="Empty Drive folder could not be deleted",
                    drive_file_id=document.drive_folder_id,
                    entity_type=self.document_type,
                    entity_id=document.id,
                    error=exc,
                )

        drive_file_id = document.drive_file_id
        self.db.delete(document)
        self.db.commit()

        DOCUMENT_OPERATIONS.labels(self.document_type, "delete", "success" if remote_deleted else "partial").inc()
        documents_logger.info(
            action="delete",
            status="success" if remote_deleted else "partial",
            message=f"Deleted {self.document_type}",
            drive_file_id=drive_file_id,
            entity_type=self.document_type,
            entity_id=document_id,
            drive_deleted=remote_deleted,
            folder_deleted=folder_deleted,
        )
        return DeletionResult(
            local_deleted=True,
            remote_deleted=remote_deleted,
            folder_deleted=folder_deleted,
            remote_error=remote_error,
        )

    # --- resync ---

    def _remote_exists(self, file_id: str) -> bool:
        try:
            remote = self.drive_service.get_file(file_id)
        except UpstreamError as exc:
            if exc.status == 404:
                return False
            raise
        return not remote.get("trashed")

    def resync(self, document_id: str) -> Tuple[object, ResyncResult]:
        """
        Make sure the Drive copy of a record exists and is shared.

        The stored id is verified first, then the file is searched by its tags
        in the owner folder; as a last resort the local bytes are uploaded again.
        """
        document = self.get(document_id)
        folder_id = self._owner_folder_id(document, create_if_missing=True)
        tags = self._tags(document)

        if document.drive_file_id and self._remote_exists(document.drive_file_id):
            file_id, status = document.drive_file_id, "verified"
        else:
            file_id = self.lookup.find_by_tags(folder_id, {"recordId": document.id})
            status = "relinked"
            if not file_id:
                if not document.file_data:
                    raise NotFound(f"{self.document_type} {document.id} has no local copy to upload")
                uploaded = self.drive_service.upload_file(
                    folder_id, document.file_name, document.file_data, document.mime_type, app_properties=tags
                )
                file_id, status = uploaded.id, "reuploaded"

        self.permissions.grant_domain_access(file_id)

        remote = self.drive_service.get_file(file_id)
        document.drive_file_id = file_id
        document.drive_folder_id = folder_id
        document.drive_web_view_link = remote.get("webViewLink") or document.drive_web_view_link
        document.drive_web_content_link = content_link(file_id)
        self.db.commit()
        self.db.refresh(document)

        DOCUMENT_OPERATIONS.labels(self.document_type, "resync", status).inc()
        documents_logger.info(
            action="resync",
            status=status,
            message=f"Resynced {self.document_type}",
            drive_file_id=file_id,
            entity_type=self.document_type,
            entity_id=document.id,
        )
        return document, ResyncResult(status=status, drive_file_id=file_id)


class UserDocumentService(DocumentLifecycleService):
    document_type = "user_document"
    model = models.UserDocument

    def __init__(self, db: Session, drive_service=None, event_bus: Optional[DomainEventBus] = None, **kwargs):
        super().__init__(db, drive_service=drive_service, **kwargs)
        self.event_bus = event_bus or build_event_bus(db)

    def _default_drive_service(self):
        return get_user_documents_drive_service()

    def _get_user(self, user_id: str) -> models.User:
        user = self.db.get(models.User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def _owner_folder_id(self, document, create_if_missing: bool) -> Optional[str]:
        return self.hierarchy.ensure_user_folder(self._get_user(document.user_id), create_if_missing=create_if_missing)

    def _tags(self, document) -> Dict[str, str]:
        return {"ownerId": document.user_id, "recordId": document.id}

    def _remaining_siblings(self, document) -> int:
        return (
            self.db.query(models.UserDocument)
            .filter(models.UserDocument.user_id == document.user_id, models.UserDocument.id != document.id)
            .count()
        )

    def list(self, user_id: str) -> List[models.UserDocument]:
        return (
            self.db.query(models.UserDocument)
            .filter_by(user_id=user_id)
            .order_by(models.UserDocument.created_at.desc())
            .all()
        )

    @staticmethod
    def _expense_event(document_id: str, owner_id: str, document_type: Optional[str],
                       expense_amount, expense_date: Optional[date]) -> Optional[ExpenseDocumentUploaded]:
        if (document_type or "").strip().lower() not in EXPENSE_DOCUMENT_TYPES:
            return None
        if expense_amount is None or expense_date is None:
            raise ValidationError("Expense documents need expense_amount and expense_date")
        try:
            amount = Decimal(str(expense_amount))
        except InvalidOperation as exc:
            raise ValidationError("expense_amount is not a number") from exc
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("expense_amount must be positive")
        return ExpenseDocumentUploaded(
            owner_id=owner_id,
            amount=amount,
            year=expense_date.year,
            month=expense_date.month,
            document_id=document_id,
        )

    def upload(
        self,
        user_id: str,
        file_name: str,
        data: bytes,
        mime_type: Optional[str] = None,
        title: Optional[str] = None,
        document_type: Optional[str] = None,
        expense_amount=None,
        expense_date: Optional[date] = None,
    ) -> models.UserDocument:
        user = self._get_user(user_id)
        if not data:
            raise ValidationError("File content is empty")

        record_id = str(uuid.uuid4())
        safe_name = sanitize_name(file_name) or DEFAULT_FILE_NAME
        event = self._expense_event(record_id, user_id, document_type, expense_amount, expense_date)

        folder_id = self.hierarchy.ensure_user_folder(user)
        uploaded = self._upload_and_authorize(
            folder_id, safe_name, data, mime_type, tags={"ownerId": user_id, "recordId": record_id}
        )

        document = models.UserDocument(
            id=record_id,
            user_id=user_id,
            title=(title or "").strip() or safe_name,
            file_name=safe_name,
            mime_type=uploaded.mime_type,
            file_size=len(data),
            document_type=document_type,
            drive_file_id=uploaded.id,
            drive_folder_id=folder_id,
            drive_web_view_link=uploaded.web_view_link,
            drive_web_content_link=content_link(uploaded.id),
            file_data=data,
        )
        self._commit_new([document], [uploaded.id], publish=(lambda: self.event_bus.publish(event)) if event else None)

        documents_logger.info(
            action="upload",
            message="Stored user document",
            drive_file_id=uploaded.id,
            entity_type=self.document_type,
            entity_id=record_id,
            user_id=user_id,
        )
        return document


class DealDocumentService(DocumentLifecycleService):
    document_type = "deal_document"
    model = models.DealDocument

    def _get_deal(self, deal_id: str) -> models.Deal:
        deal = self.db.get(models.Deal, deal_id)
        if deal is None:
            raise NotFound(f"Deal {deal_id} not found")
        return deal

    def _owner_folder_id(self, document, create_if_missing: bool) -> Optional[str]:
        chain = self.hierarchy.ensure_deal_folder(self._get_deal(document.deal_id), create_if_missing)
        return chain.deal_folder_id if chain else None

    def _tags(self, document) -> Dict[str, str]:
        tags = {"ownerId": document.owner_id, "dealId": document.deal_id, "recordId": document.id}
        return {key: value for key, value in tags.items() if value}

    def _remaining_siblings(self, document) -> int:
        return (
            self.db.query(models.DealDocument)
            .filter(models.DealDocument.deal_id == document.deal_id, models.DealDocument.id != document.id)
            .count()
        )

    def _cleanup_owner_folder(self, document) -> bool:
        deleted = super()._cleanup_owner_folder(document)
        if deleted:
            deal = self.db.get(models.Deal, document.deal_id)
            if deal is not None and deal.drive_folder_id == document.drive_folder_id:
                deal.drive_folder_id = None
                deal.drive_folder_web_view_link = None
        return deleted

    def list(self, deal_id: str) -> List[models.DealDocument]:
        return (
            self.db.query(models.DealDocument)
            .filter_by(deal_id=deal_id)
            .order_by(models.DealDocument.created_at.desc())
            .all()
        )

    def delete_deal_folder(self, deal_id: str) -> bool:
        """
        Remove the whole deal folder from Drive, e.g. when the deal is dropped
        from the CRM. Local records keep their bytes; resync uploads them again.
        """
        deal = self._get_deal(deal_id)
        deleted = self.hierarchy.delete_deal_folder(deal)
        self.db.commit()
        DOCUMENT_OPERATIONS.labels("deal_folder", "delete", "success" if deleted else "partial").inc()
        return deleted

    def upload(self, deal_id: str, owner_id: str, file_name: str, data: bytes,
               mime_type: Optional[str] = None) -> models.DealDocument:
        deal = self._get_deal(deal_id)
        if not data:
            raise ValidationError("File content is empty")

        record_id = str(uuid.uuid4())
        safe_name = sanitize_name(file_name) or DEFAULT_FILE_NAME
        document = models.DealDocument(id=record_id, deal_id=deal_id, owner_id=owner_id or None, file_name=safe_name)

        chain = self.hierarchy.ensure_deal_folder(deal)
        uploaded = self._upload_and_authorize(chain.deal_folder_id, safe_name, data, mime_type,
                                              tags=self._tags(document))

        deal.drive_folder_id = chain.deal_folder_id
        deal.drive_folder_web_view_link = folder_link(chain.deal_folder_id)
        document.mime_type = uploaded.mime_type
        document.file_size = len(data)
        document.drive_file_id = uploaded.id
        document.drive_folder_id = chain.deal_folder_id
        document.drive_web_view_link = uploaded.web_view_link
        document.drive_web_content_link = content_link(uploaded.id)
        document.file_data = data
        self._commit_new([document], [uploaded.id])

        documents_logger.info(
            action="upload",
            message="Stored deal document",
            drive_file_id=uploaded.id,
            entity_type=self.document_type,
            entity_id=record_id,
            deal_id=deal_id,
        )
        return document
