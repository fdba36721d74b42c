import io
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

import httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from config import config
from services import drive_query
from services.google_auth import ServiceAccountTokenProvider, get_token_provider
from utils.errors import ConfigurationError, UpstreamError
from utils.prometheus import DRIVE_REQUEST_LATENCY, DRIVE_REQUESTS

logger = logging.getLogger("erp_drive.google_drive")

FOLDER_MIME_TYPE = drive_query.FOLDER_MIME_TYPE
DEFAULT_MIME_TYPE = "application/octet-stream"
FILE_FIELDS = "id, name, mimeType, parents, webViewLink, webContentLink, appProperties, createdTime, size, trashed"


def default_file_link(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}/view"


def folder_link(folder_id: str) -> str:
    return f"https://drive.google.com/drive/folders/{folder_id}"


@dataclass(frozen=True)
class UploadedFile:
    id: str
    name: str
    mime_type: str
    web_view_link: str
    web_content_link: Optional[str] = None


def _build_drive_client(access_token: str):
    credentials = Credentials(token=access_token)
    return build("drive", "v3", credentials=credentials, cache_discovery=False)


def _error_body(exc: HttpError) -> str:
    content = exc.content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return content or ""


class GoogleDriveRealService:
    """
    Thin wrapper over the Drive v3 API scoped to one shared drive.

    Errors are never retried here: a non-2xx answer is raised as
    ``UpstreamError`` with the status and body Google returned.
    """

    def __init__(
        self,
        token_provider: Optional[ServiceAccountTokenProvider] = None,
        shared_drive_id: Optional[str] = None,
        service_factory: Callable[[str], Any] = _build_drive_client,
    ):
        self.token_provider = token_provider or get_token_provider()
        self.shared_drive_id = shared_drive_id or config.GOOGLE_DRIVE_SHARED_DRIVE_ID
        self._service_factory = service_factory
        self._service = None
        self._service_token: Optional[str] = None

    def _check_config(self):
        if not self.shared_drive_id:
            raise ConfigurationError("GOOGLE_DRIVE_SHARED_DRIVE_ID is not configured")

    @property
    def service(self):
        self._check_config()
        token = self.token_provider.get_access_token()
        if self._service is None or token != self._service_token:
            self._service = self._service_factory(token)
            self._service_token = token
        return self._service

    def _execute(self, request, operation: str) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            result = request.execute()
        except HttpError as exc:
            status = exc.resp.status if exc.resp is not None else None
            DRIVE_REQUESTS.labels(operation=operation, outcome="error").inc()
            raise UpstreamError(f"Drive {operation} failed", status=status, body=_error_body(exc)) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            DRIVE_REQUESTS.labels(operation=operation, outcome="error").inc()
            raise UpstreamError(f"Drive {operation} failed: {exc}") from exc
        finally:
            DRIVE_REQUEST_LATENCY.labels(operation=operation).observe(time.perf_counter() - started)

        DRIVE_REQUESTS.labels(operation=operation, outcome="success").inc()
        return result or {}

    def _list(self, query: str, fields: str, page_size: int, order_by: Optional[str] = None,
              page_token: Optional[str] = None) -> Dict[str, Any]:
        params = {
            "q": query,
            "fields": fields,
            "pageSize": page_size,
            "corpora": "drive",
            "driveId": self.shared_drive_id,
            "includeItemsFromAllDrives": True,
            "supportsAllDrives": True,
        }
        if order_by:
            params["orderBy"] = order_by
        if page_token:
            params["pageToken"] = page_token
        request = self.service.files().list(**params)
        return self._execute(request, "files.list")

    # --- Folders ---

    def find_folder(self, parent_id: str, name: str) -> Optional[Dict[str, Any]]:
        """First non-trashed folder named exactly ``name`` under ``parent_id``."""
        result = self._list(drive_query.folder_query(parent_id, name), "files(id, name, parents)", 1)
        files = result.get("files", [])
        return files[0] if files else None

    def list_folders_named(self, parent_id: str, name: str, page_size: int = 100) -> List[Dict[str, Any]]:
        """All same-named folders under ``parent_id``, oldest first."""
        result = self._list(
            drive_query.folder_query(parent_id, name),
            "files(id, name, parents, createdTime)",
            page_size,
            order_by="createdTime",
        )
        return result.get("files", [])

    def create_folder(self, name: str, parent_id: str) -> Dict[str, Any]:
        body = {"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]}
        request = self.service.files().create(
            body=body,
            fields="id, name, parents, webViewLink",
            supportsAllDrives=True,
        )
        folder = self._execute(request, "files.create_folder")
        logger.info("Created Drive folder", extra={"folder_id": folder.get("id"), "parent_id": parent_id})
        return folder

    def list_children(self, folder_id: str, page_size: int = 100,
                      page_token: Optional[str] = None) -> Dict[str, Any]:
        query = drive_query.build_query([drive_query.in_parents(folder_id), drive_query.not_trashed()])
        return self._list(
            query,
            "nextPageToken, files(id, name, mimeType, parents)",
            page_size,
            page_token=page_token,
        )

    def has_children(self, folder_id: str) -> bool:
        return bool(self.list_children(folder_id, page_size=1).get("files"))

    # --- Files ---

    def upload_file(
        self,
        parent_id: str,
        name: str,
        data: bytes,
        mime_type: Optional[str] = None,
        app_properties: Optional[Mapping[str, str]] = None,
    ) -> UploadedFile:
        """
        Upload ``data`` as a single multipart/related request.

        The metadata part carries the name, parent, mime type and
        ``appProperties`` tags; the media part carries the raw bytes.
        """
        mime_type = mime_type or DEFAULT_MIME_TYPE
        metadata: Dict[str, Any] = {"name": name, "parents": [parent_id], "mimeType": mime_type}
        if app_properties:
            metadata["appProperties"] = {str(k): str(v) for k, v in app_properties.items()}

        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        request = self.service.files().create(
            body=metadata,
            media_body=media,
            fields="id, name, mimeType, webViewLink, webContentLink",
            supportsAllDrives=True,
        )
        result = self._execute(request, "files.upload")
        file_id = result.get("id")
        if not file_id:
            raise UpstreamError("Drive upload returned no file id", body=json.dumps(result))

        return UploadedFile(
            id=file_id,
            name=result.get("name") or name,
            mime_type=result.get("mimeType") or mime_type,
            web_view_link=result.get("webViewLink") or default_file_link(file_id),
            web_content_link=result.get("webContentLink"),
        )

    def get_file(self, file_id: str) -> Dict[str, Any]:
        request = self.service.files().get(fileId=file_id, fields=FILE_FIELDS, supportsAllDrives=True)
        return self._execute(request, "files.get")

    def find_file_by_tags(self, parent_id: str, tags: Mapping[str, str]) -> Optional[Dict[str, Any]]:
        query = drive_query.build_query(
            [drive_query.in_parents(parent_id), drive_query.not_trashed(), *drive_query.app_properties(tags)]
        )
        files = self._list(query, "files(id, name, webViewLink, appProperties)", 1).get("files", [])
        return files[0] if files else None

    def find_file_by_name(self, parent_id: str, name: str) -> Optional[Dict[str, Any]]:
        query = drive_query.build_query(
            [
                drive_query.in_parents(parent_id),
                drive_query.name_equals(name),
                drive_query.is_not_folder(),
                drive_query.not_trashed(),
            ]
        )
        files = self._list(query, "files(id, name, webViewLink)", 1).get("files", [])
        return files[0] if files else None

    def rename_file(self, file_id: str, new_name: str) -> Dict[str, Any]:
        request = self.service.files().update(
            fileId=file_id,
            body={"name": new_name},
            fields="id, name, parents",
            supportsAllDrives=True,
        )
        return self._execute(request, "files.rename")

    def move_file(self, file_id: str, destination_parent_id: str,
                  previous_parent_id: Optional[str] = None) -> Dict[str, Any]:
        params = {
            "fileId": file_id,
            "addParents": destination_parent_id,
            "fields": "id, name, parents",
            "supportsAllDrives": True,
        }
        if previous_parent_id:
            params["removeParents"] = previous_parent_id
        return self._execute(self.service.files().update(**params), "files.move")

    def delete_file(self, file_id: str) -> bool:
        """
        Delete a file or folder. Returns False when Drive reports it already gone.
        """
        request = self.service.files().delete(fileId=file_id, supportsAllDrives=True)
        try:
            self._execute(request, "files.delete")
        except UpstreamError as exc:
            if exc.status == 404:
                logger.info("Drive item already deleted", extra={"file_id": file_id})
                return False
            raise
        return True

    # --- Permissions ---

    def create_permission(self, file_id: str, permission: Mapping[str, Any]) -> Dict[str, Any]:
        request = self.service.permissions().create(
            fileId=file_id,
            body=dict(permission),
            fields="id, type, role, domain",
            supportsAllDrives=True,
        )
        return self._execute(request, "permissions.create")

    # --- Shared drive ---

    def get_shared_drive(self) -> Dict[str, Any]:
        request = self.service.drives().get(driveId=self.shared_drive_id, fields="id, name")
        return self._execute(request, "drives.get")
