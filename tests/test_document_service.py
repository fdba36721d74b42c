"""
Upload / delete / resync of user and deal documents against the in-memory
Drive and an in-memory SQLite database.
"""

import base64
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
from database import Base
from locks import FolderLockService
from services.document_service import (
    DealDocumentService,
    UserDocumentService,
    decode_base64_payload,
    file_extension,
)
from services.drive_permissions_service import DrivePermissionsService
from services.events import DomainEventBus, ExpenseDocumentUploaded
from services.folder_resolver import FolderResolver
from services.google_drive_mock import GoogleDriveService
from services.hierarchy_service import HierarchyService
from utils.errors import NotFound, UpstreamError, ValidationError

ROOT = "shared-root"
PDF_BYTES = b"%PDF-1.4 quarterly report"


def make_db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    db.add(models.Organization(id="org-1", name="Acme"))
    db.add(
        models.Deal(
            id="D-100",
            title="Formación PRL",
            organization_id="org-1",
            created_at=datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
        )
    )
    db.add(models.User(id="u1", first_name="Ana", last_name="García", email="ana@example.com"))
    db.commit()
    return db


def make_drive():
    return GoogleDriveService(shared_drive_id=ROOT, db_file="")


def service_kwargs(drive):
    resolver = FolderResolver(drive, locks=FolderLockService(backend="memory"))
    return {
        "drive_service": drive,
        "hierarchy": HierarchyService(drive, resolver=resolver, base_folder_name="Documentos ERP"),
        "permissions": DrivePermissionsService(drive, domain="example.com"),
    }


def drive_files(drive):
    return [item for item in drive.db["items"].values() if item["mimeType"] != "application/vnd.google-apps.folder"]


def drive_folders(drive, name):
    return [
        item
        for item in drive.db["items"].values()
        if item["mimeType"] == "application/vnd.google-apps.folder" and item["name"] == name
    ]


class TestPayloadHelpers:
    def test_decode_plain_and_data_url(self):
        encoded = base64.b64encode(PDF_BYTES).decode()
        assert decode_base64_payload(encoded) == PDF_BYTES
        assert decode_base64_payload("data:application/pdf;base64," + encoded) == PDF_BYTES

    def test_decode_url_safe_alphabet_without_padding(self):
        data = bytes([0xFB, 0xFF, 0xBF, 0x3E])
        encoded = base64.urlsafe_b64encode(data).decode().rstrip("=")

        assert "-" in encoded and "_" in encoded
        assert decode_base64_payload(encoded) == data

    def test_decode_rejects_garbage_and_empty(self):
        with pytest.raises(ValidationError):
            decode_base64_payload("not base64!!")
        with pytest.raises(ValidationError):
            decode_base64_payload("   ")

    def test_file_extension(self):
        assert file_extension("Informe Q1.PDF") == "pdf"
        assert file_extension("README") == "bin"
        assert file_extension("archive.") == "bin"


class TestDealDocuments:
    def test_upload_provisions_tree_tags_and_shares(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))

        document = service.upload("D-100", "u1", "Informe Q1.pdf", PDF_BYTES, "application/pdf")

        assert len(drive_folders(drive, "Acme")) == 1
        assert len(drive_folders(drive, "D-100 - Formación PRL")) == 1
        remote = drive.get_file(document.drive_file_id)
        assert remote["name"] == "Informe Q1.pdf"
        assert remote["appProperties"]["ownerId"] == "u1"
        assert remote["appProperties"]["dealId"] == "D-100"
        assert remote["appProperties"]["recordId"] == document.id
        permissions = drive.list_permissions(document.drive_file_id)
        assert [(p["type"], p["role"], p["domain"]) for p in permissions] == [("domain", "reader", "example.com")]
        assert document.file_size == len(PDF_BYTES)
        assert document.drive_web_view_link == f"https://drive.google.com/file/d/{document.drive_file_id}/view"

        deal = db.get(models.Deal, "D-100")
        assert deal.drive_folder_id == document.drive_folder_id
        assert deal.drive_folder_web_view_link.endswith(document.drive_folder_id)

    def test_second_upload_reuses_folders(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))

        first = service.upload("D-100", "u1", "a.pdf", b"aaa")
        second = service.upload("D-100", "u1", "b.pdf", b"bbb")

        assert first.drive_folder_id == second.drive_folder_id
        assert len(drive_folders(drive, "D-100 - Formación PRL")) == 1
        assert len(service.list("D-100")) == 2

    def test_upload_without_owner_has_no_owner_tag(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))

        document = service.upload("D-100", None, "a.pdf", b"a")

        tags = drive.get_file(document.drive_file_id)["appProperties"]
        assert "ownerId" not in tags
        assert tags == {"dealId": "D-100", "recordId": document.id}
        assert document.owner_id is None

    def test_unknown_deal(self):
        service = DealDocumentService(make_db(), **service_kwargs(make_drive()))

        with pytest.raises(NotFound):
            service.upload("nope", "u1", "a.pdf", b"a")

    def test_upload_failure_leaves_no_local_row(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))

        with patch.object(drive, "upload_file", side_effect=UpstreamError("Drive files.upload failed", status=503)):
            with pytest.raises(UpstreamError):
                service.upload("D-100", "u1", "a.pdf", b"a")

        assert db.query(models.DealDocument).count() == 0

    def test_permission_failure_discards_remote_file(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))

        with patch.object(drive, "create_permission", side_effect=UpstreamError("denied", status=403)):
            with pytest.raises(UpstreamError):
                service.upload("D-100", "u1", "a.pdf", b"a")

        assert db.query(models.DealDocument).count() == 0
        assert drive_files(drive) == []

    def test_database_failure_discards_remote_file(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))

        with patch.object(db, "commit", side_effect=SQLAlchemyError("disk full")):
            with pytest.raises(SQLAlchemyError):
                service.upload("D-100", "u1", "a.pdf", b"a")

        assert drive_files(drive) == []
        assert db.query(models.DealDocument).count() == 0

    def test_delete_last_document_removes_empty_folder(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))
        document = service.upload("D-100", "u1", "a.pdf", b"a")
        folder_id = document.drive_folder_id

        result = service.delete(document.id)

        assert result.local_deleted is True
        assert result.remote_deleted is True
        assert result.folder_deleted is True
        assert folder_id not in drive.db["items"]
        assert db.query(models.DealDocument).count() == 0
        assert db.get(models.Deal, "D-100").drive_folder_id is None

    def test_delete_keeps_folder_with_siblings(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))
        first = service.upload("D-100", "u1", "a.pdf", b"a")
        service.upload("D-100", "u1", "b.pdf", b"b")

        result = service.delete(first.id)

        assert result.remote_deleted is True
        assert result.folder_deleted is False
        assert first.drive_folder_id in drive.db["items"]

    def test_delete_when_drive_fails_still_removes_local_row(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))
        document = service.upload("D-100", "u1", "a.pdf", b"a")
        document_id = document.id

        with patch.object(drive, "delete_file", side_effect=UpstreamError("Drive files.delete failed", status=500)):
            result = service.delete(document_id)

        assert result.local_deleted is True
        assert result.remote_deleted is False
        assert result.folder_deleted is False
        assert "500" in result.remote_error
        assert db.get(models.DealDocument, document_id) is None
        assert result.to_payload() == {
            "ok": True,
            "drive_deleted": False,
            "folder_deleted": False,
            "drive_error": result.remote_error,
        }

    def test_delete_finds_file_by_tags_when_links_are_lost(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))
        document = service.upload("D-100", "u1", "a.pdf", b"a")
        file_id = document.drive_file_id
        document.drive_file_id = None
        document.drive_web_view_link = None
        document.drive_web_content_link = None
        db.commit()

        result = service.delete(document.id)

        assert result.remote_deleted is True
        assert file_id not in drive.db["items"]

    def test_delete_unknown(self):
        service = DealDocumentService(make_db(), **service_kwargs(make_drive()))

        with pytest.raises(NotFound):
            service.delete("missing")

    def test_delete_deal_folder_removes_tree_and_clears_link(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))
        document = service.upload("D-100", "u1", "a.pdf", b"a")
        folder_id = document.drive_folder_id
        organization_id = drive.get_file(folder_id)["parents"][0]

        assert service.delete_deal_folder("D-100") is True

        assert folder_id not in drive.db["items"]
        assert document.drive_file_id not in drive.db["items"]
        assert organization_id in drive.db["items"]
        deal = db.get(models.Deal, "D-100")
        assert deal.drive_folder_id is None
        assert deal.drive_folder_web_view_link is None
        # the local copy survives and can be pushed again
        _, result = service.resync(document.id)
        assert result.status == "reuploaded"

    def test_delete_deal_folder_without_folder_creates_nothing(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))

        assert service.delete_deal_folder("D-100") is False
        assert drive.db["items"] == {}

    def test_delete_deal_folder_propagates_drive_errors(self):
        db = make_db()
        drive = make_drive()
        service = DealDocumentService(db, **service_kwargs(drive))
        service.upload("D-100", "u1", "a.pdf", b"a")

        with patch.object(drive, "delete_file", side_effect=UpstreamError("Drive files.delete failed", status=500)):
            with pytest.raises(UpstreamError):
                service.delete_deal_folder("D-100")

        assert db.get(models.Deal, "D-100").drive_folder_id is not None


class TestUserDocuments:
    def test_upload_into_user_folder(self):
        db = make_db()
        drive = make_drive()
        service = UserDocumentService(db, **service_kwargs(drive))

        document = service.upload("u1", "DNI.pdf", b"dni", "application/pdf", title="DNI")

        folder = drive.get_file(document.drive_folder_id)
        assert folder["name"] == "Ana García"
        base = drive.get_file(folder["parents"][0])
        assert base["name"] == "Equipo GEP Group"
        assert base["parents"] == [ROOT]
        remote = drive.get_file(document.drive_file_id)
        assert remote["appProperties"] == {"ownerId": "u1", "recordId": document.id}
        assert document.title == "DNI"
        assert document.file_data == b"dni"
        assert [doc.id for doc in service.list("u1")] == [document.id]

    def test_expense_upload_updates_payroll(self):
        db = make_db()
        drive = make_drive()
        service = UserDocumentService(db, **service_kwargs(drive))

        service.upload("u1", "ticket.pdf", b"t1", document_type="gasto",
                       expense_amount="12.50", expense_date=date(2024, 5, 10))
        service.upload("u1", "taxi.pdf", b"t2", document_type="expense",
                       expense_amount=Decimal("7.255"), expense_date=date(2024, 5, 28))

        payroll = db.query(models.OfficePayroll).filter_by(user_id="u1", year=2024, month=5).one()
        assert Decimal(payroll.other_expenses) == Decimal("19.76")
        assert Decimal(payroll.total_extras) == Decimal("19.76")

    def test_non_expense_upload_does_not_touch_payroll(self):
        db = make_db()
        service = UserDocumentService(db, **service_kwargs(make_drive()))

        service.upload("u1", "contrato.pdf", b"c", document_type="contrato", expense_amount="10")

        assert db.query(models.OfficePayroll).count() == 0

    def test_expense_without_amount_is_rejected_before_upload(self):
        db = make_db()
        drive = make_drive()
        service = UserDocumentService(db, **service_kwargs(drive))

        with pytest.raises(ValidationError):
            service.upload("u1", "ticket.pdf", b"t", document_type="gasto", expense_date=date(2024, 5, 1))

        assert drive_files(drive) == []

    def test_failing_ledger_rolls_back_document(self):
        db = make_db()
        drive = make_drive()
        bus = DomainEventBus()

        def broken_handler(event):
            raise RuntimeError("ledger offline")

        bus.subscribe(ExpenseDocumentUploaded, broken_handler)
        service = UserDocumentService(db, event_bus=bus, **service_kwargs(drive))

        with pytest.raises(RuntimeError):
            service.upload("u1", "ticket.pdf", b"t", document_type="gasto",
                           expense_amount="5", expense_date=date(2024, 5, 1))

        assert db.query(models.UserDocument).count() == 0
        assert drive_files(drive) == []

    def test_resync_reuploads_missing_file(self):
        db = make_db()
        drive = make_drive()
        service = UserDocumentService(db, **service_kwargs(drive))
        document = service.upload("u1", "DNI.pdf", b"dni", "application/pdf")
        drive.delete_file(document.drive_file_id)

        refreshed, result = service.resync(document.id)

        assert result.status == "reuploaded"
        assert refreshed.drive_file_id == result.drive_file_id
        remote = drive.get_file(result.drive_file_id)
        assert remote["appProperties"]["recordId"] == document.id
        assert len(drive.list_permissions(result.drive_file_id)) == 1

    def test_resync_relinks_by_tags(self):
        db = make_db()
        drive = make_drive()
        service = UserDocumentService(db, **service_kwargs(drive))
        document = service.upload("u1", "DNI.pdf", b"dni")
        file_id = document.drive_file_id
        document.drive_file_id = None
        db.commit()

        refreshed, result = service.resync(document.id)

        assert result.status == "relinked"
        assert refreshed.drive_file_id == file_id
        assert len(drive.list_permissions(file_id)) == 1

    def test_resync_verifies_existing_file(self):
        db = make_db()
        drive = make_drive()
        service = UserDocumentService(db, **service_kwargs(drive))
        document = service.upload("u1", "DNI.pdf", b"dni")

        _, result = service.resync(document.id)

        assert result.status == "verified"
        assert result.drive_file_id == document.drive_file_id
