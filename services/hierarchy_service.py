"""
Drive folder layout for ERP documents.

Deal and session documents live under::

    <shared drive>/<base folder>/<organization>/<deal id> - <title>/<n> - <session name>[/<subfolder>]

User documents live under ``<user documents drive>/<user base folder>/<user name>``
and trainer documents under ``<shared drive>/Formadores/<trainer name>``.
Older deployments used different names for some levels; those are recognised
and renamed on first access.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import models
from config import config
from services.folder_resolver import FolderRef, FolderResolver, sanitize_name, unique_sanitized_names
from services.google_drive_mock import MOCK_SHARED_DRIVE_ID, GoogleDriveService
from services.google_drive_real import GoogleDriveRealService, folder_link
from utils.errors import ConfigurationError, UpstreamError
from utils.structured_logging import drive_logger

NO_ORGANIZATION = "Sin organización"
NO_TITLE = "Sin título"
NO_DEAL_ID = "sin-id"
DEFAULT_USER_FOLDER = "Usuario"
CERTIFICATES_FOLDER_NAME = "Certificados"
DEAL_DOCUMENTS_FOLDER_NAME = "Documentos del deal"
TRAINERS_FOLDER_NAME = "Formadores"
UNNAMED_TRAINER = "Formador sin nombre"

DEAL_DATE_TIMEZONE = ZoneInfo("Europe/Madrid")

_mock_drives: Dict[str, GoogleDriveService] = {}


# Factory for Drive Service
def get_drive_service(shared_drive_id: Optional[str] = None):
    """
    Drive client for one shared drive. The mock keeps one store per drive id so
    folders survive across requests; the real client is built per request
    because the underlying HTTP transport is not thread-safe.
    """
    if config.USE_MOCK_DRIVE:
        drive_id = shared_drive_id or config.GOOGLE_DRIVE_SHARED_DRIVE_ID or MOCK_SHARED_DRIVE_ID
        if drive_id not in _mock_drives:
            _mock_drives[drive_id] = GoogleDriveService(shared_drive_id=drive_id)
        return _mock_drives[drive_id]
    return GoogleDriveRealService(shared_drive_id=shared_drive_id)


def get_user_documents_drive_service():
    return get_drive_service(config.USER_DOCUMENTS_DRIVE_ID or config.GOOGLE_DRIVE_SHARED_DRIVE_ID)


@dataclass(frozen=True)
class FolderNames:
    preferred: str
    legacy: tuple = ()


def organization_folder_names(organization_id: Optional[str], organization_name: Optional[str]) -> FolderNames:
    preferred = sanitize_name(organization_name) or NO_ORGANIZATION
    legacy = []
    org_id = sanitize_name(organization_id)
    if org_id and not preferred.startswith(org_id):
        legacy.append(sanitize_name(f"{org_id} - {preferred}"))
    return FolderNames(preferred, tuple(legacy))


def format_deal_date(created_at: Optional[datetime]) -> str:
    moment = created_at or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(DEAL_DATE_TIMEZONE).strftime("%d/%m/%Y")


def deal_folder_names(deal_id: Optional[str], title: Optional[str],
                      created_at: Optional[datetime] = None) -> FolderNames:
    safe_id = sanitize_name(deal_id) or NO_DEAL_ID
    safe_title = sanitize_name(title) or NO_TITLE
    preferred = sanitize_name(f"{safe_id} - {safe_title}")
    legacy = sanitize_name(f"{safe_id} - {format_deal_date(created_at)} - {safe_title}")
    return FolderNames(preferred, (legacy,) if legacy != preferred else ())


def session_folder_names(deal_id: Optional[str], session_number: int,
                         session_name: Optional[str] = None) -> FolderNames:
    label = str(session_number)
    base_name = sanitize_name(session_name) or f"Sesión {label}"
    preferred = sanitize_name(f"{label} - {base_name}")
    legacy = []
    if deal_id:
        prefixed = sanitize_name(f"{deal_id} - {preferred}")
        if prefixed != preferred:
            legacy.append(prefixed)
    return FolderNames(preferred, tuple(legacy))


def user_folder_name(user: models.User) -> str:
    pieces = [piece for piece in (user.first_name, user.last_name) if piece and piece.strip()]
    if not pieces and user.email:
        pieces = [user.email]
    return sanitize_name(" ".join(pieces)) or sanitize_name(user.id) or DEFAULT_USER_FOLDER


def trainer_folder_names(trainer: models.Trainer) -> FolderNames:
    """
    Preferred name is the trainer's display name; folders created by older
    deployments were named after the trainer id, alone or as ``<id> - <name>``.
    """
    first_name = (trainer.first_name or "").strip()
    last_name = (trainer.last_name or "").strip()
    combined = " ".join(piece for piece in (first_name, last_name) if piece)
    candidates = unique_sanitized_names([trainer.full_name, combined, first_name, last_name])
    trainer_id = sanitize_name(trainer.id)
    preferred = (candidates[0] if candidates else "") or trainer_id or UNNAMED_TRAINER

    legacy = []
    if trainer_id:
        legacy = [
            name for name in unique_sanitized_names([trainer_id, f"{trainer_id} - {preferred}"])
            if name != preferred
        ]
    return FolderNames(preferred, tuple(legacy))


@dataclass(frozen=True)
class DealFolderChain:
    base_folder_id: str
    organization_folder_id: str
    deal_folder_id: str
    created: bool = False


@dataclass(frozen=True)
class SessionFolderChain:
    deal: DealFolderChain
    session_folder_id: str
    target_folder_id: str


class HierarchyService:
    def __init__(
        self,
        drive_service,
        resolver: Optional[FolderResolver] = None,
        base_folder_name: Optional[str] = None,
    ):
        self.drive_service = drive_service
        self.resolver = resolver or FolderResolver(drive_service)
        self.base_folder_name = base_folder_name or config.GOOGLE_DRIVE_BASE_FOLDER_NAME

    @property
    def root_id(self) -> str:
        root = getattr(self.drive_service, "shared_drive_id", None)
        if not root:
            raise ConfigurationError("GOOGLE_DRIVE_SHARED_DRIVE_ID is not configured")
        return root

    def _folder(self, parent_id: str, name: str, create_if_missing: bool) -> Optional[str]:
        if create_if_missing:
            return self.resolver.ensure_folder(parent_id, name)
        return self.resolver.find_folder(parent_id, name)

    def ensure_base_folder(self, create_if_missing: bool = True) -> Optional[str]:
        return self._folder(self.root_id, self.base_folder_name, create_if_missing)

    def ensure_organization_folder(self, deal: models.Deal, create_if_missing: bool = True,
                                   base_id: Optional[str] = None) -> Optional[FolderRef]:
        base_id = base_id or self.ensure_base_folder(create_if_missing)
        if not base_id:
            return None
        organization = deal.organization
        names = organization_folder_names(
            organization.id if organization else deal.organization_id,
            organization.name if organization else None,
        )
        return self.resolver.ensure_folder_with_candidates(
            base_id, names.preferred, names.legacy, create_if_missing=create_if_missing
        )

    def ensure_deal_folder(self, deal: models.Deal, create_if_missing: bool = True) -> Optional[DealFolderChain]:
        """
        Resolve base → organization → deal. With ``create_if_missing=False``
        nothing is created and ``None`` is returned if any level is missing.
        """
        base_id = self.ensure_base_folder(create_if_missing)
        if not base_id:
            return None
        organization_folder = self.ensure_organization_folder(deal, create_if_missing, base_id=base_id)
        if not organization_folder:
            return None

        names = deal_folder_names(deal.id, deal.title, deal.created_at)
        deal_folder = self.resolver.ensure_folder_with_candidates(
            organization_folder.id, names.preferred, names.legacy, create_if_missing=create_if_missing
        )
        if not deal_folder:
            return None

        return DealFolderChain(
            base_folder_id=base_id,
            organization_folder_id=organization_folder.id,
            deal_folder_id=deal_folder.id,
            created=deal_folder.created,
        )

    def delete_deal_folder(self, deal: models.Deal) -> bool:
        """
        Remove the deal folder and everything below it, then clear the folder
        columns on ``deal`` (the caller commits). Nothing is created while
        looking the folder up; a missing chain returns False. Drive errors
        propagate.
        """
        chain = self.ensure_deal_folder(deal, create_if_missing=False)
        if not chain:
            drive_logger.warning(
                action="delete_deal_folder",
                message="Deal folder not found in Drive; nothing to delete",
                entity_type="deal",
                entity_id=deal.id,
            )
            return False

        deleted = self.drive_service.delete_file(chain.deal_folder_id)
        deal.drive_folder_id = None
        deal.drive_folder_web_view_link = None
        drive_logger.info(
            action="delete_deal_folder",
            status="success" if deleted else "already_deleted",
            message="Deleted deal folder",
            drive_file_id=chain.deal_folder_id,
            entity_type="deal",
            entity_id=deal.id,
        )
        return deleted

    def ensure_session_folder(
        self,
        deal: models.Deal,
        session: models.TrainingSession,
        session_number: int,
        target_subfolder: Optional[str] = None,
        create_if_missing: bool = True,
    ) -> Optional[SessionFolderChain]:
        chain = self.ensure_deal_folder(deal, create_if_missing)
        if not chain:
            return None

        names = session_folder_names(deal.id, session_number, session.name)
        session_folder = self.resolver.ensure_folder_with_candidates(
            chain.deal_folder_id, names.preferred, names.legacy, create_if_missing=False
        )
        if not session_folder:
            # lookups without create (deletion) never move folders around
            if not create_if_missing:
                return None
            session_folder = self._relocate_session_folder(deal, chain, names)
        if not session_folder:
            session_folder = self.resolver.ensure_folder_ref(chain.deal_folder_id, names.preferred)

        target_id = session_folder.id
        if target_subfolder:
            subfolder_name = sanitize_name(target_subfolder) or CERTIFICATES_FOLDER_NAME
            if create_if_missing:
                target_id = self.resolver.ensure_unique_subfolder(session_folder.id, subfolder_name)
            else:
                target_id = self.resolver.find_folder(session_folder.id, subfolder_name)
                if not target_id:
                    return None

        return SessionFolderChain(deal=chain, session_folder_id=session_folder.id, target_folder_id=target_id)

    def _relocate_session_folder(self, deal: models.Deal, chain: DealFolderChain,
                                 names: FolderNames) -> Optional[FolderRef]:
        """
        Older layouts kept session folders directly under the organization
        folder or under a deal folder with a legacy name. Move such a folder
        into the current deal folder.
        """
        search_parents: List[str] = [chain.organization_folder_id]
        for legacy_deal_name in deal_folder_names(deal.id, deal.title, deal.created_at).legacy:
            legacy_deal_id = self.resolver.find_folder(chain.organization_folder_id, legacy_deal_name)
            if legacy_deal_id and legacy_deal_id != chain.deal_folder_id:
                search_parents.append(legacy_deal_id)

        for parent_id in search_parents:
            for candidate in unique_sanitized_names([names.preferred, *names.legacy]):
                existing = self.resolver.find_folder(parent_id, candidate)
                if not existing:
                    continue
                try:
                    self.drive_service.move_file(existing, chain.deal_folder_id, previous_parent_id=parent_id)
                except UpstreamError as exc:
                    drive_logger.warning(
                        action="relocate_session_folder",
                        message="Could not move session folder into the deal folder",
                        drive_file_id=existing,
                        entity_type="deal",
                        entity_id=deal.id,
                        error=exc,
                    )
                    continue
                return self.resolver.ensure_folder_with_candidates(
                    chain.deal_folder_id, names.preferred, names.legacy, create_if_missing=False
                )
        return None

    def ensure_user_folder(self, user: models.User, base_folder_name: Optional[str] = None,
                           create_if_missing: bool = True) -> Optional[str]:
        base_name = base_folder_name or config.USER_DOCUMENTS_BASE_FOLDER_NAME
        base_id = self._folder(self.root_id, base_name, create_if_missing)
        if not base_id:
            return None
        name = user_folder_name(user)
        if create_if_missing:
            return self.resolver.ensure_unique_subfolder(base_id, name)
        return self.resolver.find_folder(base_id, name)

    def ensure_trainers_root_folder(self, create_if_missing: bool = True) -> Optional[str]:
        # sits at the shared drive root, next to the base folder
        if create_if_missing:
            return self.resolver.ensure_unique_subfolder(self.root_id, TRAINERS_FOLDER_NAME)
        return self.resolver.find_folder(self.root_id, TRAINERS_FOLDER_NAME)

    def ensure_trainer_folder(self, trainer: models.Trainer, create_if_missing: bool = True) -> Optional[str]:
        root_id = self.ensure_trainers_root_folder(create_if_missing)
        if not root_id:
            return None
        names = trainer_folder_names(trainer)
        folder = self.resolver.ensure_folder_with_candidates(
            root_id, names.preferred, names.legacy, create_if_missing=create_if_missing
        )
        return folder.id if folder else None

    def trainer_folder_link(self, trainer: models.Trainer, create_if_missing: bool = False) -> Optional[str]:
        folder_id = self.ensure_trainer_folder(trainer, create_if_missing)
        return folder_link(folder_id) if folder_id else None
