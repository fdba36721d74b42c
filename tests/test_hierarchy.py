"""
Folder layout for deals, sessions and users on the in-memory Drive.
"""

from datetime import datetime, timezone

import models
from locks import FolderLockService
from services.folder_resolver import FolderResolver
from services.google_drive_mock import GoogleDriveService
from services.hierarchy_service import (
    HierarchyService,
    deal_folder_names,
    format_deal_date,
    organization_folder_names,
    session_folder_names,
    trainer_folder_names,
    user_folder_name,
)

ROOT = "shared-root"
BASE = "Documentos ERP"


def make_hierarchy():
    drive = GoogleDriveService(shared_drive_id=ROOT, db_file="")
    resolver = FolderResolver(drive, locks=FolderLockService(backend="memory"))
    return drive, HierarchyService(drive, resolver=resolver, base_folder_name=BASE)


def make_deal(deal_id="D-100", title="Formación PRL", org_name="Acme", org_id="org-1"):
    organization = models.Organization(id=org_id, name=org_name) if org_name else None
    return models.Deal(
        id=deal_id,
        title=title,
        organization_id=org_id,
        organization=organization,
        created_at=datetime(2024, 3, 1, 23, 30, tzinfo=timezone.utc),
    )


def names_under(drive, parent_id):
    return sorted(item["name"] for item in drive.list_children(parent_id)["files"])


def test_folder_name_rules():
    assert organization_folder_names("org-1", "Acme").preferred == "Acme"
    assert organization_folder_names("org-1", "Acme").legacy == ("org-1 - Acme",)
    assert organization_folder_names(None, None).preferred == "Sin organización"

    names = deal_folder_names("D-100", "Formación PRL", datetime(2024, 3, 1, 23, 30, tzinfo=timezone.utc))
    assert names.preferred == "D-100 - Formación PRL"
    # 23:30 UTC is already the next day in Madrid
    assert names.legacy == ("D-100 - 02_03_2024 - Formación PRL",)
    assert deal_folder_names(None, None).preferred == "sin-id - Sin título"

    assert session_folder_names("D-100", 2).preferred == "2 - Sesión 2"
    assert session_folder_names("D-100", 1, "Teoría").legacy == ("D-100 - 1 - Teoría",)


def test_format_deal_date_naive_is_utc():
    assert format_deal_date(datetime(2024, 7, 1, 10, 0)) == "01/07/2024"


def test_user_folder_name_fallbacks():
    assert user_folder_name(models.User(id="u1", first_name="Ana", last_name="García")) == "Ana García"
    assert user_folder_name(models.User(id="u1", email="ana@example.com")) == "ana@example.com"
    assert user_folder_name(models.User(id="u1")) == "u1"


def test_deal_chain_is_created_once():
    drive, hierarchy = make_hierarchy()
    deal = make_deal()

    first = hierarchy.ensure_deal_folder(deal)
    second = hierarchy.ensure_deal_folder(deal)

    assert first.created is True
    assert first.deal_folder_id == second.deal_folder_id
    assert second.created is False
    assert names_under(drive, ROOT) == [BASE]
    assert names_under(drive, first.base_folder_id) == ["Acme"]
    assert names_under(drive, first.organization_folder_id) == ["D-100 - Formación PRL"]


def test_deal_chain_without_create_returns_none():
    drive, hierarchy = make_hierarchy()

    assert hierarchy.ensure_deal_folder(make_deal(), create_if_missing=False) is None
    assert drive.list_children(ROOT)["files"] == []


def test_legacy_organization_and_deal_folders_are_renamed():
    drive, hierarchy = make_hierarchy()
    base = drive.create_folder(BASE, ROOT)
    legacy_org = drive.create_folder("org-1 - Acme", base["id"])
    legacy_deal = drive.create_folder("D-100 - 02_03_2024 - Formación PRL", legacy_org["id"])

    chain = hierarchy.ensure_deal_folder(make_deal())

    assert chain.organization_folder_id == legacy_org["id"]
    assert chain.deal_folder_id == legacy_deal["id"]
    assert drive.get_file(legacy_org["id"])["name"] == "Acme"
    assert drive.get_file(legacy_deal["id"])["name"] == "D-100 - Formación PRL"


def test_session_folder_with_subfolder():
    drive, hierarchy = make_hierarchy()
    deal = make_deal()
    session = models.TrainingSession(id="s-1", deal_id=deal.id, name="Teoría")

    chain = hierarchy.ensure_session_folder(deal, session, 1, target_subfolder="Certificados")

    assert names_under(drive, chain.deal.deal_folder_id) == ["1 - Teoría"]
    assert names_under(drive, chain.session_folder_id) == ["Certificados"]
    assert chain.target_folder_id != chain.session_folder_id

    again = hierarchy.ensure_session_folder(deal, session, 1, target_subfolder="Certificados")
    assert again.session_folder_id == chain.session_folder_id
    assert again.target_folder_id == chain.target_folder_id


def test_session_folder_under_organization_is_moved_into_deal():
    drive, hierarchy = make_hierarchy()
    deal = make_deal()
    chain = hierarchy.ensure_deal_folder(deal)
    stray = drive.create_folder("1 - Sesión 1", chain.organization_folder_id)
    session = models.TrainingSession(id="s-1", deal_id=deal.id)

    session_chain = hierarchy.ensure_session_folder(deal, session, 1)

    assert session_chain.session_folder_id == stray["id"]
    assert drive.get_file(stray["id"])["parents"] == [chain.deal_folder_id]


def test_session_lookup_without_create_leaves_stray_folder_alone():
    drive, hierarchy = make_hierarchy()
    deal = make_deal()
    chain = hierarchy.ensure_deal_folder(deal)
    stray = drive.create_folder("1 - Sesión 1", chain.organization_folder_id)
    session = models.TrainingSession(id="s-1", deal_id=deal.id)

    assert hierarchy.ensure_session_folder(deal, session, 1, create_if_missing=False) is None
    assert drive.get_file(stray["id"])["parents"] == [chain.organization_folder_id]


def test_session_lookup_without_create():
    drive, hierarchy = make_hierarchy()
    deal = make_deal()
    hierarchy.ensure_deal_folder(deal)
    session = models.TrainingSession(id="s-1", deal_id=deal.id)

    assert hierarchy.ensure_session_folder(deal, session, 1, create_if_missing=False) is None


def test_user_folder():
    drive, hierarchy = make_hierarchy()
    user = models.User(id="u1", first_name="Ana", last_name="García")

    folder_id = hierarchy.ensure_user_folder(user, base_folder_name="Documentos Equipo")

    assert hierarchy.ensure_user_folder(user, base_folder_name="Documentos Equipo") == folder_id
    assert names_under(drive, ROOT) == ["Documentos Equipo"]
    assert drive.get_file(folder_id)["name"] == "Ana García"


def test_trainer_folder_names():
    trainer = models.Trainer(id="T-7", first_name="Luis", last_name="Pérez")
    names = trainer_folder_names(trainer)
    assert names.preferred == "Luis Pérez"
    assert names.legacy == ("T-7", "T-7 - Luis Pérez")

    assert trainer_folder_names(models.Trainer(id="T-7", full_name="Luis Pérez Gil", first_name="Luis")).preferred \
        == "Luis Pérez Gil"
    anonymous = trainer_folder_names(models.Trainer(id="T-7"))
    assert anonymous.preferred == "T-7"
    assert anonymous.legacy == ("T-7 - T-7",)
    assert trainer_folder_names(models.Trainer(id="")).preferred == "Formador sin nombre"


def test_trainer_folder_sits_under_trainers_root():
    drive, hierarchy = make_hierarchy()
    trainer = models.Trainer(id="T-7", first_name="Luis", last_name="Pérez")

    folder_id = hierarchy.ensure_trainer_folder(trainer)

    assert hierarchy.ensure_trainer_folder(trainer) == folder_id
    assert names_under(drive, ROOT) == ["Formadores"]
    root_id = drive.get_file(folder_id)["parents"][0]
    assert names_under(drive, root_id) == ["Luis Pérez"]
    assert hierarchy.trainer_folder_link(trainer) == f"https://drive.google.com/drive/folders/{folder_id}"


def test_trainer_folder_named_by_id_is_renamed():
    drive, hierarchy = make_hierarchy()
    root = drive.create_folder("Formadores", ROOT)
    legacy = drive.create_folder("T-7", root["id"])
    trainer = models.Trainer(id="T-7", first_name="Luis", last_name="Pérez")

    assert hierarchy.ensure_trainer_folder(trainer) == legacy["id"]
    assert drive.get_file(legacy["id"])["name"] == "Luis Pérez"


def test_trainer_lookup_without_create():
    drive, hierarchy = make_hierarchy()
    trainer = models.Trainer(id="T-7", first_name="Luis")

    assert hierarchy.ensure_trainer_folder(trainer, create_if_missing=False) is None
    assert hierarchy.trainer_folder_link(trainer) is None
    assert drive.list_children(ROOT)["files"] == []


def test_delete_deal_folder_keeps_organization():
    drive, hierarchy = make_hierarchy()
    deal = make_deal()
    chain = hierarchy.ensure_deal_folder(deal)
    deal.drive_folder_id = chain.deal_folder_id
    deal.drive_folder_web_view_link = "https://drive.google.com/drive/folders/" + chain.deal_folder_id
    drive.create_folder("1 - Sesión 1", chain.deal_folder_id)

    assert hierarchy.delete_deal_folder(deal) is True

    assert names_under(drive, chain.organization_folder_id) == []
    assert names_under(drive, chain.base_folder_id) == ["Acme"]
    assert deal.drive_folder_id is None
    assert deal.drive_folder_web_view_link is None


def test_delete_missing_deal_folder_creates_nothing():
    drive, hierarchy = make_hierarchy()

    assert hierarchy.delete_deal_folder(make_deal()) is False
    assert drive.list_children(ROOT)["files"] == []
