"""
Idempotent find-or-create of Drive folders.

Folder identity in Drive is (parent, name, folder mime type), but the API has
no unique constraint, so "look up, then create" runs under a lock keyed by
(parent, name). The lock covers one process (or every process sharing Redis
when FOLDER_LOCKS_BACKEND=redis); ``ensure_unique_subfolder`` additionally
merges same-named siblings left behind by races the lock could not see.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from locks import FolderLockService, get_folder_locks
from utils.errors import UpstreamError
from utils.structured_logging import drive_logger

_CONTROL_WHITESPACE = re.compile(r"[\r\n\t]+")
_FORBIDDEN_CHARS = re.compile(r'[\\/:*?"<>|]+')
_SPACES = re.compile(r"\s+")

DEFAULT_FOLDER_NAME = "carpeta"


def sanitize_name(raw: Optional[str]) -> str:
    """Make a string safe to use as a Drive folder or file name."""
    if raw is None:
        return ""
    value = _CONTROL_WHITESPACE.sub(" ", str(raw))
    value = _FORBIDDEN_CHARS.sub("_", value)
    return _SPACES.sub(" ", value).strip()


def unique_sanitized_names(names: Iterable[Optional[str]]) -> List[str]:
    seen: List[str] = []
    for name in names:
        cleaned = sanitize_name(name)
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


@dataclass(frozen=True)
class FolderRef:
    id: str
    name: str
    created: bool = False


class FolderResolver:
    def __init__(self, drive_service, locks: Optional[FolderLockService] = None):
        self.drive = drive_service
        self.locks = locks or get_folder_locks()

    def ensure_folder(self, parent_id: str, name: str) -> str:
        return self.ensure_folder_ref(parent_id, name).id

    def ensure_folder_ref(self, parent_id: str, name: str) -> FolderRef:
        name = sanitize_name(name) or DEFAULT_FOLDER_NAME
        with self.locks.hold(parent_id, name):
            existing = self.drive.find_folder(parent_id, name)
            if existing:
                return FolderRef(id=existing["id"], name=name)

            folder = self.drive.create_folder(name, parent_id)
            drive_logger.info(
                action="ensure_folder",
                status="created",
                message=f"Created folder '{name}'",
                drive_file_id=folder["id"],
                parent_id=parent_id,
            )
            return FolderRef(id=folder["id"], name=name, created=True)

    def find_folder(self, parent_id: str, name: str) -> Optional[str]:
        existing = self.drive.find_folder(parent_id, sanitize_name(name) or DEFAULT_FOLDER_NAME)
        return existing["id"] if existing else None

    def ensure_folder_with_candidates(
        self,
        parent_id: str,
        preferred_name: str,
        legacy_names: Iterable[Optional[str]] = (),
        create_if_missing: bool = True,
    ) -> Optional[FolderRef]:
        """
        Find a folder stored under its current name or any older naming scheme.

        A legacy-named folder is renamed to ``preferred_name``; if the rename
        fails the folder is still used under its old name.
        """
        preferred = sanitize_name(preferred_name) or DEFAULT_FOLDER_NAME
        for candidate in unique_sanitized_names([preferred, *legacy_names]):
            existing = self.drive.find_folder(parent_id, candidate)
            if not existing:
                continue
            if candidate == preferred:
                return FolderRef(id=existing["id"], name=preferred)
            try:
                self.drive.rename_file(existing["id"], preferred)
            except UpstreamError as exc:
                drive_logger.warning(
                    action="rename_legacy_folder",
                    message=f"Could not rename folder '{candidate}' to '{preferred}'",
                    drive_file_id=existing["id"],
                    error=exc,
                )
                return FolderRef(id=existing["id"], name=candidate)
            return FolderRef(id=existing["id"], name=preferred)

        if not create_if_missing:
            return None
        return self.ensure_folder_ref(parent_id, preferred)

    def ensure_unique_subfolder(self, parent_id: str, name: str) -> str:
        """
        Like ``ensure_folder`` but keeps the oldest same-named folder and merges
        any duplicates into it.
        """
        name = sanitize_name(name) or DEFAULT_FOLDER_NAME
        with self.locks.hold(parent_id, name):
            folders = self.drive.list_folders_named(parent_id, name)
            if folders:
                keep_id = folders[0]["id"]
                self.consolidate_duplicates(parent_id, name, keep_id, folders)
                return keep_id

            created = self.drive.create_folder(name, parent_id)
            keep_id = created["id"]

        # A concurrent creator outside this lock's reach may have won too.
        self.consolidate_duplicates(parent_id, name, keep_id)
        return keep_id

    def consolidate_duplicates(self, parent_id: str, name: str, keep_id: str,
                               folders: Optional[List[dict]] = None) -> List[str]:
        """Move children of same-named siblings into ``keep_id`` and delete them. Best-effort."""
        if folders is None:
            try:
                folders = self.drive.list_folders_named(parent_id, name)
            except UpstreamError as exc:
                drive_logger.warning(
                    action="consolidate_folders",
                    message=f"Could not list duplicates of '{name}'",
                    drive_file_id=keep_id,
                    error=exc,
                )
                return []

        removed = []
        for duplicate_id in [folder["id"] for folder in folders if folder["id"] != keep_id]:
            if not self._move_children(duplicate_id, keep_id):
                # Deleting it now would delete whatever could not be moved.
                continue
            try:
                self.drive.delete_file(duplicate_id)
                removed.append(duplicate_id)
            except UpstreamError as exc:
                drive_logger.warning(
                    action="consolidate_folders",
                    message=f"Could not delete duplicate folder '{name}'",
                    drive_file_id=duplicate_id,
                    error=exc,
                )

        if removed:
            drive_logger.info(
                action="consolidate_folders",
                message=f"Merged {len(removed)} duplicate folder(s) named '{name}'",
                drive_file_id=keep_id,
                parent_id=parent_id,
            )
        return removed

    def _move_children(self, source_id: str, target_id: str) -> bool:
        child_ids = []
        page_token = None
        try:
            while True:
                page = self.drive.list_children(source_id, page_size=100, page_token=page_token)
                child_ids.extend(child["id"] for child in page.get("files", []))
                page_token = page.get("nextPageToken")
                if not page_token:
                    break
        except UpstreamError as exc:
            drive_logger.warning(
                action="consolidate_folders",
                message="Could not list children of duplicate folder",
                drive_file_id=source_id,
                error=exc,
            )
            return False

        moved_all = True
        for child_id in child_ids:
            try:
                self.drive.move_file(child_id, target_id, previous_parent_id=source_id)
            except UpstreamError as exc:
                drive_logger.warning(
                    action="consolidate_folders",
                    message="Could not move item out of duplicate folder",
                    drive_file_id=child_id,
                    error=exc,
                )
                moved_all = False
        return moved_all
