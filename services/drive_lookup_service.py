"""
Recovering the Drive file behind a local document record.

The stored file id is preferred, then ids parsed from stored links, then the
``appProperties`` tags written at upload time, and finally an exact file name
match inside the record's folder.
"""

import re
from typing import Iterable, Mapping, Optional

from utils.errors import UpstreamError
from utils.structured_logging import drive_logger

_ID_IN_PATH = re.compile(r"/d/([a-zA-Z0-9_-]+)")
_ID_IN_QUERY = re.compile(r"[?&]id=([a-zA-Z0-9_-]+)")


def extract_drive_file_id(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    match = _ID_IN_PATH.search(link) or _ID_IN_QUERY.search(link)
    return match.group(1) if match else None


def content_link(file_id: str) -> str:
    return f"https://drive.google.com/uc?id={file_id}&export=download"


class DriveLookupService:
    def __init__(self, drive_service):
        self.drive_service = drive_service

    def find_by_tags(self, parent_id: str, tags: Mapping[str, str]) -> Optional[str]:
        """First non-trashed file under ``parent_id`` carrying every tag, or None."""
        if not tags:
            raise ValueError("find_by_tags needs at least one tag")
        found = self.drive_service.find_file_by_tags(parent_id, tags)
        return found["id"] if found else None

    def locate(
        self,
        folder_id: Optional[str] = None,
        file_id: Optional[str] = None,
        links: Iterable[Optional[str]] = (),
        tags: Optional[Mapping[str, str]] = None,
        file_name: Optional[str] = None,
    ) -> Optional[str]:
        if file_id:
            return file_id

        for link in links:
            parsed = extract_drive_file_id(link)
            if parsed:
                return parsed

        if not folder_id:
            return None

        if tags:
            try:
                found = self.find_by_tags(folder_id, tags)
            except UpstreamError as exc:
                drive_logger.warning(
                    action="lookup_by_tags",
                    message="Tag lookup failed",
                    drive_file_id=folder_id,
                    error=exc,
                )
                found = None
            if found:
                return found

        if file_name:
            try:
                found = self.drive_service.find_file_by_name(folder_id, file_name)
            except UpstreamError as exc:
                drive_logger.warning(
                    action="lookup_by_name",
                    message="Name lookup failed",
                    drive_file_id=folder_id,
                    error=exc,
                )
                return None
            if found:
                return found["id"]

        return None
