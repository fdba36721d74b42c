import copy
import datetime
import json
import os
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional

from config import config
from services.google_drive_real import (
    DEFAULT_MIME_TYPE,
    FOLDER_MIME_TYPE,
    UploadedFile,
    default_file_link,
)
from utils.errors import UpstreamError

MOCK_SHARED_DRIVE_ID = "mock-shared-drive"


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class GoogleDriveService:
    """
    In-memory stand-in for ``GoogleDriveRealService`` (USE_MOCK_DRIVE=true).

    Items live in ``self.db["items"]``; when ``db_file`` is set the store is
    persisted as JSON after every write so local development survives restarts.
    Error behaviour follows the real API: unknown ids raise ``UpstreamError``
    with status 404 and a duplicate permission raises it with status 409.
    """

    def __init__(self, shared_drive_id: Optional[str] = None, db_file: Optional[str] = None):
        self.shared_drive_id = shared_drive_id or config.GOOGLE_DRIVE_SHARED_DRIVE_ID or MOCK_SHARED_DRIVE_ID
        self.db_file = db_file if db_file is not None else config.MOCK_DRIVE_DB_FILE
        self._lock = threading.RLock()
        self._load_db()

    def _empty_db(self) -> Dict[str, Any]:
        return {"items": {}, "permissions": {}}

    def _load_db(self):
        self.db = self._empty_db()
        if self.db_file and os.path.exists(self.db_file):
            with open(self.db_file, "r", encoding="utf-8") as handle:
                try:
                    stored = json.load(handle)
                except json.JSONDecodeError:
                    stored = {}
            self.db["items"].update(stored.get("items", {}))
            self.db["permissions"].update(stored.get("permissions", {}))

    def _save_db(self):
        if not self.db_file:
            return
        with open(self.db_file, "w", encoding="utf-8") as handle:
            json.dump(self.db, handle, indent=2)

    def _require(self, file_id: str) -> Dict[str, Any]:
        item = self.db["items"].get(file_id)
        if item is None or item.get("trashed"):
            raise UpstreamError("Drive item not found", status=404, body=json.dumps({"fileId": file_id}))
        return item

    def _live_items(self):
        return [item for item in self.db["items"].values() if not item.get("trashed")]

    # --- Folders ---

    def find_folder(self, parent_id: str, name: str) -> Optional[Dict[str, Any]]:
        folders = self.list_folders_named(parent_id, name)
        return folders[0] if folders else None

    def list_folders_named(self, parent_id: str, name: str, page_size: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            matches = [
                copy.deepcopy(item)
                for item in self._live_items()
                if item["mimeType"] == FOLDER_MIME_TYPE
                and item["name"] == name
                and parent_id in item.get("parents", [])
            ]
        matches.sort(key=lambda item: (item["createdTime"], item["seq"]))
        return matches[:page_size]

    def create_folder(self, name: str, parent_id: str) -> Dict[str, Any]:
        with self._lock:
            folder_id = f"folder-{uuid.uuid4().hex[:12]}"
            folder = {
                "id": folder_id,
                "name": name,
                "mimeType": FOLDER_MIME_TYPE,
                "parents": [parent_id],
                "createdTime": _now(),
                "seq": len(self.db["items"]),
                "webViewLink": f"https://drive.google.com/drive/folders/{folder_id}",
                "appProperties": {},
            }
            self.db["items"][folder_id] = folder
            self._save_db()
            return copy.deepcopy(folder)

    def list_children(self, folder_id: str, page_size: int = 100,
                      page_token: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            children = [
                copy.deepcopy(item) for item in self._live_items() if folder_id in item.get("parents", [])
            ]
        children.sort(key=lambda item: item["seq"])
        start = int(page_token or 0)
        page = children[start:start + page_size]
        result: Dict[str, Any] = {"files": page}
        if start + page_size < len(children):
            result["nextPageToken"] = str(start + page_size)
        return result

    def has_children(self, folder_id: str) -> bool:
        return bool(self.list_children(folder_id, page_size=1)["files"])

    # --- Files ---

    def upload_file(
        self,
        parent_id: str,
        name: str,
        data: bytes,
        mime_type: Optional[str] = None,
        app_properties: Optional[Mapping[str, str]] = None,
    ) -> UploadedFile:
        mime_type = mime_type or DEFAULT_MIME_TYPE
        with self._lock:
            file_id = f"file-{uuid.uuid4().hex[:12]}"
            self.db["items"][file_id] = {
                "id": file_id,
                "name": name,
                "mimeType": mime_type,
                "parents": [parent_id],
                "size": len(data),
                "createdTime": _now(),
                "seq": len(self.db["items"]),
                "webViewLink": default_file_link(file_id),
                "webContentLink": f"https://drive.google.com/uc?id={file_id}&export=download",
                "appProperties": {str(k): str(v) for k, v in (app_properties or {}).items()},
            }
            self._save_db()
        return UploadedFile(
            id=file_id,
            name=name,
            mime_type=mime_type,
            web_view_link=default_file_link(file_id),
            web_content_link=f"https://drive.google.com/uc?id={file_id}&export=download",
        )

    def get_file(self, file_id: str) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._require(file_id))

    def find_file_by_tags(self, parent_id: str, tags: Mapping[str, str]) -> Optional[Dict[str, Any]]:
        with self._lock:
            for item in sorted(self._live_items(), key=lambda entry: entry["seq"]):
                if parent_id not in item.get("parents", []):
                    continue
                properties = item.get("appProperties", {})
                if all(properties.get(key) == str(value) for key, value in tags.items()):
                    return copy.deepcopy(item)
        return None

    def find_file_by_name(self, parent_id: str, name: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for item in sorted(self._live_items(), key=lambda entry: entry["seq"]):
                if (
                    item["name"] == name
                    and item["mimeType"] != FOLDER_MIME_TYPE
                    and parent_id in item.get("parents", [])
                ):
                    return copy.deepcopy(item)
        return None

    def rename_file(self, file_id: str, new_name: str) -> Dict[str, Any]:
        with self._lock:
            item = self._require(file_id)
            item["name"] = new_name
            self._save_db()
            return copy.deepcopy(item)

    def move_file(self, file_id: str, destination_parent_id: str,
                  previous_parent_id: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            item = self._require(file_id)
            parents = [p for p in item.get("parents", []) if p != previous_parent_id]
            if destination_parent_id not in parents:
                parents.append(destination_parent_id)
            item["parents"] = parents
            self._save_db()
            return copy.deepcopy(item)

    def delete_file(self, file_id: str) -> bool:
        with self._lock:
            if file_id not in self.db["items"]:
                return False
            self._delete_tree(file_id)
            self._save_db()
            return True

    def _delete_tree(self, file_id: str):
        # Deleting a folder in a shared drive removes its descendants too.
        for child_id in [i["id"] for i in self.db["items"].values() if file_id in i.get("parents", [])]:
            self._delete_tree(child_id)
        self.db["items"].pop(file_id, None)
        self.db["permissions"].pop(file_id, None)

    # --- Permissions ---

    def create_permission(self, file_id: str, permission: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._require(file_id)
            existing = self.db["permissions"].setdefault(file_id, [])
            for current in existing:
                if (
                    current.get("type") == permission.get("type")
                    and current.get("domain") == permission.get("domain")
                    and current.get("emailAddress") == permission.get("emailAddress")
                ):
                    raise UpstreamError(
                        "Drive permissions.create failed",
                        status=409,
                        body=json.dumps({"error": {"code": 409, "message": "Permission already exists"}}),
                    )
            created = dict(permission)
            created["id"] = f"perm-{uuid.uuid4().hex[:8]}"
            existing.append(created)
            self._save_db()
            return copy.deepcopy(created)

    def list_permissions(self, file_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self.db["permissions"].get(file_id, []))

    # --- Shared drive ---

    def get_shared_drive(self) -> Dict[str, Any]:
        return {"id": self.shared_drive_id, "name": "Mock Shared Drive"}
