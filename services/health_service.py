import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from config import config
from services.google_auth import get_token_provider
from services.hierarchy_service import get_drive_service
from utils.errors import DocumentServiceError, UpstreamError
from utils.structured_logging import StructuredLogger

SELF_CHECK_FAILED = "GOOGLE_DRIVE_SELF_CHECK_FAILED"


class DriveSelfCheckError(DocumentServiceError):
    status_code = 502
    error_code = SELF_CHECK_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None, error_code: Optional[str] = None):
        super().__init__(message, error_code=error_code)
        self.details = details or {}
        if status_code:
            self.status_code = status_code

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.details:
            payload["details"] = self.details
        return payload


class DriveHealthService:
    """
    Verifies that the service account can obtain a token and reach the shared drive.

    A successful result is remembered for the life of the process; ``force``
    re-runs both checks with a fresh token.
    """

    _last_result: Optional[Dict[str, Any]] = None
    _lock = threading.Lock()

    def __init__(
        self,
        drive_service=None,
        token_provider=None,
        now_provider: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.drive_service = drive_service
        self.token_provider = token_provider
        self.now_provider = now_provider
        self.logger = StructuredLogger(service="health", logger_name="erp_drive.health")

    def _drive(self):
        if self.drive_service is None:
            self.drive_service = get_drive_service()
        return self.drive_service

    def _provider(self):
        if self.token_provider is None and not config.USE_MOCK_DRIVE:
            self.token_provider = get_token_provider()
        return self.token_provider

    def self_check(self, force: bool = False) -> Dict[str, Any]:
        cls = type(self)
        with cls._lock:
            if cls._last_result is not None and not force:
                return dict(cls._last_result, cached=True)

            result = self._run_checks(force)
            cls._last_result = result
            return dict(result, cached=False)

    def _run_checks(self, force: bool) -> Dict[str, Any]:
        provider = self._provider()
        token_ok = None
        if provider is not None:
            try:
                provider.get_access_token(force_refresh=force)
            except DocumentServiceError as exc:
                self._fail("token", exc)
            token_ok = True

        try:
            shared_drive = self._drive().get_shared_drive()
        except DocumentServiceError as exc:
            self._fail("shared_drive", exc)

        result = {
            "ok": True,
            "checked_at": self.now_provider().isoformat(),
            "token_ok": token_ok,
            "shared_drive": {"id": shared_drive.get("id"), "name": shared_drive.get("name")},
            "mock": config.USE_MOCK_DRIVE,
        }
        self.logger.info(
            action="self_check",
            message="Google Drive self-check passed",
            drive_file_id=shared_drive.get("id"),
        )
        return result

    def _fail(self, stage: str, exc: DocumentServiceError):
        details: Dict[str, Any] = {"stage": stage, "cause": exc.error_code}
        if isinstance(exc, UpstreamError) and exc.status is not None:
            details["upstream_status"] = exc.status
        self.logger.error(
            action="self_check",
            message=f"Google Drive self-check failed at {stage}",
            error=exc,
            stage=stage,
        )
        raise DriveSelfCheckError(exc.message, details=details) from exc

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._last_result = None
