"""
Training-session documents: limits, batch compensation, share toggle and
folder cleanup.
"""

import base64
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
from database import Base
from locks import FolderLockService
from services.drive_permissions_service import DrivePermissionsService
from services.folder_resolver import FolderResolver
from services.google_drive_mock import GoogleDriveService
from services.hierarchy_service import HierarchyService
from services.session_document_service import (
    IncomingFile,
    SessionDocumentService,
    size_mismatch,
    validate_session_id,
)
from utils.errors import NotFound, PayloadTooLarge, UpstreamError, ValidationError

ROOT = "shared-root"
SESSION_1 = "0f8fad5b-d9cb-469f-a165-70867728950e"
SESSION_2 = "7c9e6679-7425-40de-944b-e07fc1f90ae7"
OTHER_DEAL_SESSION = "16fd2706-8baf-433b-82eb-8c7fada847da"


def make_db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    db.add(models.Organization(id="org-1", name="Acme"))
    db.add(models.Deal(id="D-100", title="Formación PRL", organization_id="org-1"))
    db.add(models.Deal(id="D-200", title="Otro", organization_id="org-1"))
    db.add(models.TrainingSession(
        id=SESSION_1, deal_id="D-100", name="Teoría", created_at=datetime(2024, 4, 1, tzinfo=timezone.utc)
    ))
    db.add(models.TrainingSession(
        id=SESSION_2, deal_id="D-100", created_at=datetime(2024, 4, 8, tzinfo=timezone.utc)
    ))
    db.add(models.TrainingSession(
        id=OTHER_DEAL_SESSION, deal_id="D-200", created_at=datetime(2024, 4, 1, tzinfo=timezone.utc)
    ))
    db.commit()
    return db


def make_service(max_bytes=4 * 1024 * 1024):
    db = make_db()
    drive = GoogleDriveService(shared_drive_id=ROOT, db_file="")
    resolver = FolderResolver(drive, locks=FolderLockService(backend="memory"))
    service = SessionDocumentService(
        db,
        drive_service=drive,
        max_bytes=max_bytes,
        hierarchy=HierarchyService(drive, resolver=resolver, base_folder_name="Documentos ERP"),
        permissions=DrivePermissionsService(drive, domain="example.com"),
    )
    return db, drive, service


def incoming(name, data, declared=None, mime_type="application/pdf"):
    return IncomingFile(
        file_name=name,
        content_base64=base64.b64encode(data).decode(),
        mime_type=mime_type,
        file_size=declared,
    )


def drive_files(drive):
    return [item for item in drive.db["items"].values() if item["mimeType"] != "application/vnd.google-apps.folder"]


def test_validate_session_id():
    assert validate_session_id(SESSION_1) == SESSION_1
    with pytest.raises(ValidationError):
        validate_session_id("session-1")
    with pytest.raises(ValidationError):
        validate_session_id("")


def test_size_mismatch_tolerance():
    assert size_mismatch(None, 10) is False
    assert size_mismatch(1400, 1000) is False
    assert size_mismatch(2000, 1000) is True
    # 1% of 100 000 is 1000 bytes
    assert size_mismatch(100_000, 99_100) is False
    assert size_mismatch(100_000, 98_900) is True
    assert size_mismatch(100_000, 98_900, ratio=0.05) is False


def test_upload_into_session_subfolder():
    db, drive, service = make_service()

    documents, drive_url = service.upload(
        "D-100",
        SESSION_1,
        [incoming("acta.pdf", b"acta"), incoming("lista firmas.PNG", b"png", mime_type="image/png")],
        share_with_trainer=True,
        target_subfolder="Certificados",
    )

    assert [doc.file_type for doc in documents] == ["pdf", "png"]
    assert all(doc.share_with_trainer for doc in documents)
    folder = drive.get_file(documents[0].drive_folder_id)
    assert folder["name"] == "Certificados"
    session_folder = drive.get_file(folder["parents"][0])
    assert session_folder["name"] == "1 - Teoría"
    assert drive_url == f"https://drive.google.com/drive/folders/{session_folder['id']}"
    assert db.get(models.TrainingSession, SESSION_1).drive_url == drive_url

    tags = drive.get_file(documents[0].drive_file_id)["appProperties"]
    assert tags["sessionId"] == SESSION_1
    assert tags["dealId"] == "D-100"
    assert tags["recordId"] == documents[0].id

    listed, listed_url = service.list("D-100", SESSION_1)
    assert {doc.id for doc in listed} == {doc.id for doc in documents}
    assert listed_url == drive_url


def test_session_number_follows_creation_order():
    _, drive, service = make_service()

    documents, _ = service.upload("D-100", SESSION_2, [incoming("a.pdf", b"a")])

    assert drive.get_file(documents[0].drive_folder_id)["name"] == "2 - Sesión 2"


def test_invalid_session_id():
    _, _, service = make_service()

    with pytest.raises(ValidationError):
        service.upload("D-100", "not-a-uuid", [incoming("a.pdf", b"a")])


def test_session_from_another_deal():
    _, drive, service = make_service()

    with pytest.raises(NotFound):
        service.upload("D-100", OTHER_DEAL_SESSION, [incoming("a.pdf", b"a")])
    assert drive.db["items"] == {}


def test_requires_files():
    _, _, service = make_service()

    with pytest.raises(ValidationError):
        service.upload("D-100", SESSION_1, [])


def test_single_file_over_limit():
    db, drive, service = make_service(max_bytes=10)

    with pytest.raises(PayloadTooLarge) as excinfo:
        service.upload("D-100", SESSION_1, [incoming("big.pdf", b"x" * 11)])

    assert excinfo.value.status_code == 413
    assert drive.db["items"] == {}
    assert db.query(models.SessionDocument).count() == 0


def test_total_over_limit():
    _, drive, service = make_service(max_bytes=10)

    with pytest.raises(PayloadTooLarge):
        service.upload("D-100", SESSION_1, [incoming("a.pdf", b"x" * 6), incoming("b.pdf", b"y" * 6)])
    assert drive.db["items"] == {}


def test_declared_total_over_limit():
    _, _, service = make_service(max_bytes=10)

    with pytest.raises(PayloadTooLarge):
        service.upload("D-100", SESSION_1, [incoming("a.pdf", b"x", declared=20)])


def test_declared_size_mismatch():
    _, _, service = make_service()

    with pytest.raises(ValidationError) as excinfo:
        service.upload("D-100", SESSION_1, [incoming("a.pdf", b"x" * 1000, declared=2000)])

    assert "a.pdf" in excinfo.value.message


def test_empty_content_rejected():
    _, _, service = make_service()

    with pytest.raises(ValidationError):
        service.upload("D-100", SESSION_1, [IncomingFile(file_name="a.pdf", content_base64="")])


def test_failed_upload_discards_earlier_files():
    db, drive, service = make_service()
    real_upload = drive.upload_file
    calls = []

    def flaky_upload(*args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise UpstreamError("Drive files.upload failed", status=500)
        return real_upload(*args, **kwargs)

    with patch.object(drive, "upload_file", side_effect=flaky_upload):
        with pytest.raises(UpstreamError):
            service.upload("D-100", SESSION_1, [incoming("a.pdf", b"a"), incoming("b.pdf", b"b")])

    assert drive_files(drive) == []
    assert db.query(models.SessionDocument).count() == 0
    assert db.get(models.TrainingSession, SESSION_1).drive_url is None


def test_update_share_flag():
    db, _, service = make_service()
    documents, _ = service.upload("D-100", SESSION_1, [incoming("a.pdf", b"a")])

    updated = service.update_share(documents[0].id, "D-100", SESSION_1, True)

    assert updated.share_with_trainer is True
    with pytest.raises(NotFound):
        service.update_share(documents[0].id, "D-100", SESSION_2, False)


def test_delete_last_document_cleans_session_folder():
    db, drive, service = make_service()
    documents, drive_url = service.upload(
        "D-100", SESSION_1, [incoming("a.pdf", b"a")], target_subfolder="Certificados"
    )
    certificates_id = documents[0].drive_folder_id
    session_folder_id = drive.get_file(certificates_id)["parents"][0]

    result = service.delete_for_session(documents[0].id, "D-100", SESSION_1)

    assert result.remote_deleted is True
    assert result.folder_deleted is True
    assert certificates_id not in drive.db["items"]
    assert session_folder_id not in drive.db["items"]
    assert db.get(models.TrainingSession, SESSION_1).drive_url is None
    assert db.query(models.SessionDocument).count() == 0


def test_delete_keeps_folder_while_documents_remain():
    db, drive, service = make_service()
    documents, _ = service.upload("D-100", SESSION_1, [incoming("a.pdf", b"a"), incoming("b.pdf", b"b")])

    result = service.delete_for_session(documents[0].id, "D-100", SESSION_1)

    assert result.remote_deleted is True
    assert result.folder_deleted is False
    assert documents[1].drive_folder_id in drive.db["items"]


def test_delete_checks_ownership():
    _, _, service = make_service()
    documents, _ = service.upload("D-100", SESSION_1, [incoming("a.pdf", b"a")])

    with pytest.raises(NotFound):
        service.delete_for_session(documents[0].id, "D-200", SESSION_1)
